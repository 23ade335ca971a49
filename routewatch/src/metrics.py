from __future__ import annotations

from dataclasses import dataclass, field

from prometheus_client import Counter, Gauge, Histogram, Info


@dataclass(frozen=True)
class ControllerMetrics:
    """Prometheus metrics exported by the watch controllers on ``/metrics``.

    Per-cluster series carry a ``cluster`` label so operators can tell a
    single unhealthy cluster apart from a process-wide problem.
    """

    pod_events_total: Counter = field(
        default_factory=lambda: Counter(
            "routewatch_pod_events_total",
            "Total pod notifications processed by the event dispatcher",
            ["cluster", "kind"],
        )
    )
    rebuilds_enqueued_total: Counter = field(
        default_factory=lambda: Counter(
            "routewatch_rebuilds_enqueued_total",
            "Total routes rebuild requests enqueued after pod changes",
            ["cluster"],
        )
    )
    handler_errors_total: Counter = field(
        default_factory=lambda: Counter(
            "routewatch_handler_errors_total",
            "Total pod event handler errors",
            ["cluster", "kind"],
        )
    )
    sync_wait_failures_total: Counter = field(
        default_factory=lambda: Counter(
            "routewatch_sync_wait_failures_total",
            "Total informer sync waits that timed out or were cancelled",
            ["cluster", "outcome"],
        )
    )
    sync_wait_seconds: Histogram = field(
        default_factory=lambda: Histogram(
            "routewatch_sync_wait_seconds",
            "Seconds spent waiting for informer initial sync",
            buckets=(0.1, 0.25, 0.5, 1, 2, 5, 10, float("inf")),
        )
    )
    watch_errors_total: Counter = field(
        default_factory=lambda: Counter(
            "routewatch_watch_errors_total",
            "Total Kubernetes list/watch errors",
            ["resource"],
        )
    )
    watch_reconnects_total: Counter = field(
        default_factory=lambda: Counter(
            "routewatch_watch_reconnects_total",
            "Total watch stream reconnects after the initial connection",
            ["resource"],
        )
    )
    relists_total: Counter = field(
        default_factory=lambda: Counter(
            "routewatch_relists_total",
            "Total full re-lists after an expired resource version",
            ["resource"],
        )
    )
    active_controllers: Gauge = field(
        default_factory=lambda: Gauge(
            "routewatch_active_controllers",
            "Number of started per-cluster controllers",
        )
    )
    build_info: Info = field(
        default_factory=lambda: Info(
            "routewatch",
            "Build information for the watch controller",
        )
    )


METRICS = ControllerMetrics()
