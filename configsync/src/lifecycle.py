from __future__ import annotations

import enum
import logging
import threading
from collections.abc import Callable, Mapping

from kubernetes import watch
from kubernetes.client import ApiClient, CoreV1Api

from configsync.src.bootstrap import BootstrapResult, reconcile_once
from configsync.src.config import SyncConfig
from configsync.src.credentials import CredentialOutcome, bootstrap_credential
from configsync.src.kube import build_client, load_kube_configuration, validate_client
from configsync.src.metrics import METRICS
from configsync.src.namespace import resolve_namespace
from configsync.src.registry import WatcherRegistry
from configsync.src.resources import (
    ConfigReconciler,
    ResourceCategory,
    SecurityUpdater,
    build_categories,
)
from configsync.src.watch import start_watch

LOGGER = logging.getLogger(__name__)


class LifecycleState(enum.Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    CONFIGURED = "configured"
    RUNNING = "running"


class StartupAbortedError(RuntimeError):
    """Raised by :meth:`ConfigSyncLifecycle.start` when the cluster client is unusable."""


def default_client_factory() -> tuple[ApiClient, CoreV1Api]:
    load_kube_configuration()
    return build_client()


class ConfigSyncLifecycle:
    """Starts and stops the ConfigMap sync for one host process.

    ``start()`` walks ``STOPPED -> STARTING -> CONFIGURED -> RUNNING``:

    1. Resolve the namespace.  When nothing is configured the lifecycle logs
       it and stays in ``STARTING``, without touching the cluster.
    2. Build and validate the cluster client.  Failure here is the only
       fatal error and raises :class:`StartupAbortedError`.
    3. Seed the admin password, bootstrap both categories from a full list,
       then start one watcher thread per category.  Failures in these steps
       are logged and do not prevent reaching ``RUNNING``.

    ``stop()`` signals every watcher, releases the client and returns to
    ``STOPPED``.  It is idempotent and safe when ``start()`` never ran.
    """

    def __init__(
        self,
        reconciler: ConfigReconciler,
        security: SecurityUpdater,
        config: SyncConfig | None = None,
        *,
        env: Mapping[str, str] | None = None,
        client_factory: Callable[[], tuple[ApiClient, CoreV1Api]] = default_client_factory,
        watch_factory: Callable[[], watch.Watch] = watch.Watch,
    ) -> None:
        self.config = config or SyncConfig()
        self.reconciler = reconciler
        self.security = security
        self.env = env
        self.client_factory = client_factory
        self.watch_factory = watch_factory
        self.categories: tuple[ResourceCategory, ...] = build_categories(
            reconciler,
            repository_selector=self.config.repository_selector,
            blobstore_selector=self.config.blobstore_selector,
        )

        self.ready = threading.Event()
        self.namespace: str | None = None
        self.api_client: ApiClient | None = None
        self.core_api: CoreV1Api | None = None
        self.registry: WatcherRegistry | None = None
        self.credential_outcome: CredentialOutcome | None = None
        self.bootstrap_results: list[BootstrapResult] = []
        self._state = LifecycleState.STOPPED
        self._state_lock = threading.Lock()
        self._publish_state(LifecycleState.STOPPED)

    @property
    def state(self) -> LifecycleState:
        with self._state_lock:
            return self._state

    def _set_state(self, state: LifecycleState) -> None:
        with self._state_lock:
            previous = self._state
            self._state = state
        if previous is not state:
            LOGGER.debug("Lifecycle %s -> %s", previous.value, state.value)
        self._publish_state(state)

    @staticmethod
    def _publish_state(state: LifecycleState) -> None:
        for candidate in LifecycleState:
            METRICS.lifecycle_state.labels(state=candidate.value).set(
                1 if candidate is state else 0
            )

    def start(self) -> LifecycleState:
        """Run the startup sequence and return the state it ended in."""
        if self.state is not LifecycleState.STOPPED:
            LOGGER.warning("Start requested while %s; ignoring", self.state.value)
            return self.state

        LOGGER.info("ConfigMap sync starting")
        self._set_state(LifecycleState.STARTING)

        resolution = resolve_namespace(self.config.namespace_file, self.env)
        if resolution is None:
            LOGGER.warning("No namespace configured; ConfigMap sync stays idle")
            return self.state
        self.namespace = resolution.namespace

        try:
            api_client, core_api = self.client_factory()
            host = validate_client(api_client)
        except Exception as exc:
            LOGGER.warning("Kubernetes client could not be configured", exc_info=True)
            self.namespace = None
            self._set_state(LifecycleState.STOPPED)
            raise StartupAbortedError("Unable to configure Kubernetes client") from exc

        self.api_client = api_client
        self.core_api = core_api
        self.registry = WatcherRegistry()
        self._set_state(LifecycleState.CONFIGURED)
        LOGGER.info("Kubernetes client successfully configured (host=%s)", host)

        self.credential_outcome = bootstrap_credential(
            core_api,
            self.namespace,
            self.security,
            secret_name=self.config.secret_name,
            env=self.env,
        )
        self.bootstrap_results = reconcile_once(core_api, self.namespace, self.categories)
        self._start_watchers(core_api, self.namespace, self.registry)

        self._set_state(LifecycleState.RUNNING)
        self.ready.set()
        LOGGER.info("ConfigMap sync running in namespace %s", self.namespace)
        return self.state

    def _start_watchers(
        self, core_api: CoreV1Api, namespace: str, registry: WatcherRegistry
    ) -> None:
        for category in self.categories:
            try:
                handle = start_watch(
                    core_api,
                    namespace,
                    category,
                    reconnect=self.config.watch_reconnect,
                    max_backoff_seconds=self.config.reconnect_max_backoff_seconds,
                    watch_factory=self.watch_factory,
                )
            except Exception:
                LOGGER.exception("Unable to start watcher for %s ConfigMaps", category.name)
                continue
            registry.register(handle)

    def watcher_counts(self) -> tuple[int, int]:
        """Return ``(running, registered)`` watcher counts; ``(0, 0)`` when not started."""
        registry = self.registry
        if registry is None:
            return 0, 0
        return registry.active_count(), len(registry)

    def stop(self) -> None:
        """Signal all watchers to stop and release the cluster client."""
        self.ready.clear()
        registry = self.registry
        self.registry = None
        if registry is not None:
            registry.stop_all()

        api_client = self.api_client
        self.api_client = None
        self.core_api = None
        self.namespace = None
        if api_client is not None:
            try:
                api_client.close()
            except Exception:
                LOGGER.warning("Failed to close Kubernetes client", exc_info=True)

        if self.state is not LifecycleState.STOPPED:
            LOGGER.info("ConfigMap sync stopped")
        self._set_state(LifecycleState.STOPPED)
