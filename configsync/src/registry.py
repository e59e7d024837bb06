from __future__ import annotations

import logging
import threading

from configsync.src.watch import WatcherHandle

LOGGER = logging.getLogger(__name__)


class WatcherRegistry:
    """Process-scoped collection of running watcher handles.

    Created by the lifecycle on start and drained on stop.  Only the registry
    adds or removes handles; all access goes through ``_lock`` so register and
    ``stop_all`` may race safely.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handles: list[WatcherHandle] = []

    def register(self, handle: WatcherHandle) -> None:
        with self._lock:
            self._handles.append(handle)

    def handles(self) -> list[WatcherHandle]:
        with self._lock:
            return list(self._handles)

    def active_count(self) -> int:
        with self._lock:
            return sum(1 for handle in self._handles if handle.alive)

    def __len__(self) -> int:
        with self._lock:
            return len(self._handles)

    def stop_all(self) -> int:
        """Signal every registered handle to stop and forget it.

        Fire-and-forget: handles that already terminated are signalled
        harmlessly, and no thread is joined.  Returns the number of handles
        signalled.
        """
        with self._lock:
            handles = self._handles
            self._handles = []

        for handle in handles:
            try:
                handle.cancel()
            except Exception:
                LOGGER.exception("Failed to cancel watcher for %s", handle.category.name)
        if handles:
            LOGGER.info("Signalled %d watcher(s) to stop", len(handles))
        return len(handles)
