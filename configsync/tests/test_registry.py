from __future__ import annotations

import threading
from collections.abc import Iterator
from typing import Any
from unittest.mock import MagicMock

from configsync.src.registry import WatcherRegistry
from configsync.src.resources import LabelSelector, ResourceCategory
from configsync.src.watch import WatcherHandle, start_watch


class HeldOpenWatch:
    """Watch stand-in whose stream stays open until ``stop()``."""

    def __init__(self) -> None:
        self._released = threading.Event()

    def stream(self, func: Any, **kwargs: Any) -> Iterator[dict[str, Any]]:
        self._released.wait(timeout=5)
        yield from ()

    def stop(self) -> None:
        self._released.set()


class EndedWatch:
    def stream(self, func: Any, **kwargs: Any) -> Iterator[dict[str, Any]]:
        yield from ()

    def stop(self) -> None:
        pass


def _start(name: str, watch_factory: Any) -> WatcherHandle:
    category = ResourceCategory(
        name=name,
        selector=LabelSelector.parse(f"nexus-type={name}"),
        callback=lambda config_map: None,
    )
    return start_watch(MagicMock(), "ci", category, watch_factory=watch_factory)


def test_stop_all_terminates_running_and_already_terminated_handles() -> None:
    registry = WatcherRegistry()
    finished = _start("blobstore", EndedWatch)
    assert finished.join(timeout=5)
    running = _start("repository", HeldOpenWatch)
    registry.register(finished)
    registry.register(running)
    assert registry.active_count() == 1

    signalled = registry.stop_all()

    assert signalled == 2
    assert finished.cancelled
    assert running.cancelled
    assert running.join(timeout=5)
    assert len(registry) == 0
    assert registry.active_count() == 0


def test_stop_all_is_idempotent_and_safe_when_empty() -> None:
    registry = WatcherRegistry()
    assert registry.stop_all() == 0

    registry.register(_start("repository", HeldOpenWatch))

    assert registry.stop_all() == 1
    assert registry.stop_all() == 0


def test_stop_all_continues_when_a_cancel_fails() -> None:
    registry = WatcherRegistry()
    broken = MagicMock()
    broken.cancel.side_effect = RuntimeError("boom")
    healthy = MagicMock()
    registry.register(broken)
    registry.register(healthy)

    assert registry.stop_all() == 2
    healthy.cancel.assert_called_once()


def test_stop_all_does_not_wait_for_handles() -> None:
    registry = WatcherRegistry()
    stuck = MagicMock()
    stuck.cancel.return_value = None
    registry.register(stuck)

    registry.stop_all()

    stuck.join.assert_not_called()


def test_handles_returns_a_snapshot() -> None:
    registry = WatcherRegistry()
    handle = MagicMock()
    registry.register(handle)

    snapshot = registry.handles()
    registry.stop_all()

    assert snapshot == [handle]
    assert registry.handles() == []
