from __future__ import annotations

from dataclasses import dataclass, field

from prometheus_client import Counter, Gauge, Info


@dataclass(frozen=True)
class SyncMetrics:
    """Prometheus metrics exported on ``/metrics``.

    Per-category metrics use a ``category`` label (``repository`` or
    ``blobstore``) so a stalled or failing watch is visible on its own.
    """

    events_total: Counter = field(
        default_factory=lambda: Counter(
            "configsync_watch_events_total",
            "Total watch events delivered to reconcilers",
            ["category", "type"],
        )
    )
    reconciled_total: Counter = field(
        default_factory=lambda: Counter(
            "configsync_reconciled_total",
            "Total ConfigMaps successfully passed to a reconciler",
            ["category", "origin"],
        )
    )
    reconcile_errors_total: Counter = field(
        default_factory=lambda: Counter(
            "configsync_reconcile_errors_total",
            "Total reconciler callback failures",
            ["category"],
        )
    )
    list_errors_total: Counter = field(
        default_factory=lambda: Counter(
            "configsync_list_errors_total",
            "Total failed bootstrap list calls",
            ["category"],
        )
    )
    watch_errors_total: Counter = field(
        default_factory=lambda: Counter(
            "configsync_watch_errors_total",
            "Total watch call failures",
            ["category"],
        )
    )
    watch_stream_ends_total: Counter = field(
        default_factory=lambda: Counter(
            "configsync_watch_stream_ends_total",
            "Total watch streams closed by the API server",
            ["category"],
        )
    )
    watch_reconnects_total: Counter = field(
        default_factory=lambda: Counter(
            "configsync_watch_reconnects_total",
            "Total watch subscriptions re-opened after a stream end or error",
            ["category"],
        )
    )
    active_watchers: Gauge = field(
        default_factory=lambda: Gauge(
            "configsync_active_watchers",
            "Current number of running watcher threads",
        )
    )
    credential_bootstrap_total: Counter = field(
        default_factory=lambda: Counter(
            "configsync_credential_bootstrap_total",
            "Admin credential bootstrap outcomes",
            ["outcome"],
        )
    )
    lifecycle_state: Gauge = field(
        default_factory=lambda: Gauge(
            "configsync_lifecycle_state",
            "Whether the lifecycle is in the given state (1=yes, 0=no)",
            ["state"],
        )
    )
    build_info: Info = field(
        default_factory=lambda: Info(
            "configsync",
            "Build information for the config sync process",
        )
    )


METRICS = SyncMetrics()
