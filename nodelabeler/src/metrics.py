from __future__ import annotations

from dataclasses import dataclass, field

from prometheus_client import Counter, Gauge, Info


@dataclass(frozen=True)
class AgentMetrics:
    """Prometheus metrics exported by the agent on ``/metrics``.

    Only served when the health server is enabled; the counters are always
    maintained so a later scrape sees the full history.
    """

    label_updates_total: Counter = field(
        default_factory=lambda: Counter(
            "nodelabeler_label_updates_total",
            "Total node label writes",
            ["value"],
        )
    )
    restarts_total: Counter = field(
        default_factory=lambda: Counter(
            "nodelabeler_restarts_total",
            "Total workload restarts triggered by IP activation",
            ["kind"],
        )
    )
    errors_total: Counter = field(
        default_factory=lambda: Counter(
            "nodelabeler_errors_total",
            "Total failed operations",
            ["operation"],
        )
    )
    ip_present: Gauge = field(
        default_factory=lambda: Gauge(
            "nodelabeler_ip_present",
            "Whether the watched IP was bound to a local interface on the last cycle (1=yes, 0=no)",
        )
    )
    build_info: Info = field(
        default_factory=lambda: Info(
            "nodelabeler_build",
            "Build information for the agent",
        )
    )


METRICS = AgentMetrics()
