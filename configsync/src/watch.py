from __future__ import annotations

import logging
import random
import threading
from collections.abc import Callable, Iterator
from typing import Any

from kubernetes import watch
from kubernetes.client import ApiException, CoreV1Api

from configsync.src.metrics import METRICS
from configsync.src.resources import (
    EventType,
    LabelSelector,
    ReconcileAction,
    ResourceCategory,
    WatchEvent,
    resource_name,
)

LOGGER = logging.getLogger(__name__)


def to_watch_event(raw_event: dict[str, Any]) -> WatchEvent | None:
    """Convert a raw ``kubernetes.watch`` entry into a :class:`WatchEvent`.

    Returns ``None`` for entries that carry no resource change (``BOOKMARK``,
    ``ERROR`` payloads the client did not raise, or events without an object).
    """
    raw_type = str(raw_event.get("type", ""))
    try:
        event_type = EventType(raw_type)
    except ValueError:
        LOGGER.warning("Skipping watch event of type %r", raw_type)
        return None

    obj = raw_event.get("object")
    if obj is None:
        LOGGER.warning("Skipping %s watch event without an object", raw_type)
        return None
    return WatchEvent(type=event_type, resource=obj)


class WatchSubscription:
    """One streaming watch call exposed as a lazy sequence of :class:`WatchEvent`.

    The call is opened on first iteration and held open with no client read
    timeout.  A subscription can be consumed only once; after the stream ends
    a new subscription has to be created.  ``timeout_seconds`` is always sent
    so the client library does not silently re-open the watch on its own;
    ``0`` leaves the duration to the API server.
    """

    def __init__(
        self,
        core_api: CoreV1Api,
        namespace: str,
        selector: LabelSelector,
        watch_factory: Callable[[], watch.Watch] = watch.Watch,
    ) -> None:
        self.core_api = core_api
        self.namespace = namespace
        self.selector = selector
        self._watcher = watch_factory()
        self._consumed = False

    def events(self) -> Iterator[WatchEvent]:
        if self._consumed:
            raise RuntimeError("Watch subscription has already been consumed")
        self._consumed = True
        return self._iter_events()

    def _iter_events(self) -> Iterator[WatchEvent]:
        stream = self._watcher.stream(
            self.core_api.list_namespaced_config_map,
            namespace=self.namespace,
            label_selector=self.selector.render(),
            timeout_seconds=0,
        )
        for raw_event in stream:
            event = to_watch_event(raw_event)
            if event is not None:
                yield event

    def stop(self) -> None:
        self._watcher.stop()


class WatcherHandle:
    """A running watcher thread for one category, and the only way to stop it.

    The thread pulls events from its subscription in delivery order and calls
    the category callback for each one.  A failing callback is logged and the
    watch keeps going.  When the stream ends the thread exits, unless
    ``reconnect`` is set, in which case a new subscription is opened after a
    jittered exponential backoff capped at ``max_backoff_seconds``.
    """

    def __init__(
        self,
        category: ResourceCategory,
        subscription_factory: Callable[[], WatchSubscription],
        *,
        reconnect: bool = False,
        max_backoff_seconds: float = 30,
    ) -> None:
        self.category = category
        self.reconnect = reconnect
        self.max_backoff_seconds = max_backoff_seconds
        self._subscription_factory = subscription_factory
        self._cancelled = threading.Event()
        self._lock = threading.Lock()
        self._subscription: WatchSubscription | None = subscription_factory()
        self._thread = threading.Thread(
            target=self._run, name=f"watch-{category.name}", daemon=True
        )

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def alive(self) -> bool:
        return self._thread.is_alive()

    def start(self) -> None:
        self._thread.start()

    def cancel(self) -> None:
        """Signal the watcher to stop and interrupt its stream.  Does not wait."""
        self._cancelled.set()
        with self._lock:
            subscription = self._subscription
        if subscription is not None:
            subscription.stop()

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the watcher thread to exit; return True if it has."""
        if self._thread.ident is None:
            return True
        self._thread.join(timeout=timeout)
        return not self._thread.is_alive()

    def _next_subscription(self) -> WatchSubscription | None:
        """Return the pending subscription, opening one if needed; ``None`` once cancelled."""
        with self._lock:
            if self._cancelled.is_set():
                return None
            subscription = self._subscription
            if subscription is None:
                subscription = self._subscription_factory()
                self._subscription = subscription
        return subscription

    def _dispatch(self, event: WatchEvent) -> None:
        METRICS.events_total.labels(category=self.category.name, type=event.type.value).inc()
        if event.action is not ReconcileAction.ENSURE:
            return
        LOGGER.debug(
            "Applying %s %s ConfigMap %s",
            event.type.value,
            self.category.name,
            resource_name(event.resource),
        )
        try:
            self.category.callback(event.resource)
        except Exception:
            LOGGER.exception(
                "Failed to apply %s event for %s ConfigMap %s",
                event.type.value,
                self.category.name,
                resource_name(event.resource),
            )
            METRICS.reconcile_errors_total.labels(category=self.category.name).inc()
            return
        METRICS.reconciled_total.labels(category=self.category.name, origin="watch").inc()

    def _consume(self, subscription: WatchSubscription) -> int:
        delivered = 0
        for event in subscription.events():
            if self._cancelled.is_set():
                break
            self._dispatch(event)
            delivered += 1
        return delivered

    def _run(self) -> None:
        METRICS.active_watchers.inc()
        LOGGER.info(
            "Watching %s ConfigMaps (selector=%s)", self.category.name, self.category.selector
        )
        backoff_seconds = 1.0
        try:
            while not self._cancelled.is_set():
                subscription = self._next_subscription()
                if subscription is None:
                    break
                try:
                    if self._consume(subscription) > 0:
                        backoff_seconds = 1.0
                    if not self._cancelled.is_set():
                        METRICS.watch_stream_ends_total.labels(category=self.category.name).inc()
                        LOGGER.info("Watch stream for %s ConfigMaps ended", self.category.name)
                except ApiException as exc:
                    METRICS.watch_errors_total.labels(category=self.category.name).inc()
                    LOGGER.error(
                        "Watch for %s ConfigMaps failed (status=%s): %s",
                        self.category.name,
                        exc.status,
                        exc.reason,
                    )
                except Exception:
                    METRICS.watch_errors_total.labels(category=self.category.name).inc()
                    LOGGER.exception("Unexpected error watching %s ConfigMaps", self.category.name)
                finally:
                    subscription.stop()
                    with self._lock:
                        if self._subscription is subscription:
                            self._subscription = None

                if self._cancelled.is_set():
                    break
                if not self.reconnect:
                    LOGGER.warning(
                        "Watch for %s ConfigMaps stopped; updates will not be applied "
                        "until restart",
                        self.category.name,
                    )
                    break

                jittered = backoff_seconds * (0.5 + random.random())  # noqa: S311
                LOGGER.info(
                    "Re-opening %s watch in %.1fs", self.category.name, jittered
                )
                if self._cancelled.wait(timeout=jittered):
                    break
                backoff_seconds = min(backoff_seconds * 2, float(self.max_backoff_seconds))
                METRICS.watch_reconnects_total.labels(category=self.category.name).inc()
        finally:
            METRICS.active_watchers.dec()
            LOGGER.info("Watcher for %s ConfigMaps exited", self.category.name)


def start_watch(
    core_api: CoreV1Api,
    namespace: str,
    category: ResourceCategory,
    *,
    reconnect: bool = False,
    max_backoff_seconds: float = 30,
    watch_factory: Callable[[], watch.Watch] = watch.Watch,
) -> WatcherHandle:
    """Open a watch for *category* and start its watcher thread."""
    handle = WatcherHandle(
        category,
        lambda: WatchSubscription(core_api, namespace, category.selector, watch_factory),
        reconnect=reconnect,
        max_backoff_seconds=max_backoff_seconds,
    )
    handle.start()
    return handle
