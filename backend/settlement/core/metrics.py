"""
Prometheus metrics for settlement flows and reconciliation.
"""

from typing import Dict, List, Optional

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)
from prometheus_client.metrics import MetricWrapperBase

# Pending-record age, from a minute to a day
PENDING_AGE_BUCKETS = [60.0, 300.0, 900.0, 3600.0, 4 * 3600.0, 24 * 3600.0]


class SettlementMetrics:
    """
    Collector owning its own registry, so separate applications (and
    tests) never share counters.
    """

    content_type = CONTENT_TYPE_LATEST

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()
        self.metrics: Dict[str, MetricWrapperBase] = {}

        self.register_counter(
            "settlements_total",
            "Settlement records by kind and outcome",
            ["kind", "outcome"],
        )
        self.register_counter(
            "chain_errors_total",
            "Failed chain calls by contract function or RPC method",
            ["operation"],
        )
        self.register_counter(
            "reconciler_decisions_total",
            "Reconciler decisions on pending records",
            ["decision"],
        )
        self.metrics["pending_age_seconds"] = Histogram(
            "pending_age_seconds",
            "Age of pending records seen by a reconciliation pass",
            buckets=PENDING_AGE_BUCKETS,
            registry=self.registry,
        )
        self.metrics["pending_records"] = Gauge(
            "pending_records",
            "Records still pending after the last full reconciliation pass",
            registry=self.registry,
        )

    def register_counter(self, name: str, description: str, labels: List[str]) -> None:
        self.metrics[name] = Counter(
            name, description, labelnames=labels, registry=self.registry
        )

    def record_settlement(self, kind: str, outcome: str) -> None:
        self.metrics["settlements_total"].labels(kind=kind, outcome=outcome).inc()

    def record_chain_error(self, operation: Optional[str]) -> None:
        self.metrics["chain_errors_total"].labels(operation=operation or "unknown").inc()

    def record_decision(self, decision: str) -> None:
        self.metrics["reconciler_decisions_total"].labels(decision=decision).inc()

    def observe_pending_age(self, seconds: float) -> None:
        self.metrics["pending_age_seconds"].observe(max(seconds, 0.0))

    def set_pending_records(self, count: int) -> None:
        self.metrics["pending_records"].set(count)

    def sample(self, name: str, **labels: str) -> float:
        """Current value of one sample, 0 if it was never recorded."""
        return self.registry.get_sample_value(name, labels) or 0.0

    def render(self) -> bytes:
        """Exposition-format body for the metrics endpoint."""
        return generate_latest(self.registry)
