"""
Prometheus metrics for the autoscaler.

Every instance owns its collectors on an injected CollectorRegistry, so tests
and multiple engines in one process never share state.
"""
from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Gauge

from ..domain.models import ClusterRef, ScalingAction, ScalingDecision
from ..resilience.circuit_breaker import CircuitState

SUBSYSTEM = "neo4j_operator"

_BREAKER_STATE_VALUES = {
    CircuitState.CLOSED: 0,
    CircuitState.HALF_OPEN: 1,
    CircuitState.OPEN: 2,
}


class AutoscalerMetrics:
    """Counters and gauges describing scaling decisions."""

    def __init__(self, registry: CollectorRegistry | None = None):
        self.registry = registry if registry is not None else CollectorRegistry()
        labels = ["cluster_name", "namespace"]

        self.autoscaler_enabled = Gauge(
            "autoscaler_enabled", "Status of auto-scaler (1=enabled, 0=disabled)",
            labels, subsystem=SUBSYSTEM, registry=self.registry,
        )
        self.scale_events = Counter(
            "scale_events_total", "Total number of scale events",
            labels + ["tier", "direction"], subsystem=SUBSYSTEM, registry=self.registry,
        )
        self.current_replicas = Gauge(
            "autoscaler_current_replicas", "Current number of replicas per tier",
            labels + ["tier"], subsystem=SUBSYSTEM, registry=self.registry,
        )
        self.desired_replicas = Gauge(
            "autoscaler_desired_replicas", "Target number of replicas per tier",
            labels + ["tier"], subsystem=SUBSYSTEM, registry=self.registry,
        )
        self.decision_confidence = Gauge(
            "autoscaler_decision_confidence", "Confidence of the last decision (0-1)",
            labels + ["tier"], subsystem=SUBSYSTEM, registry=self.registry,
        )
        self.validation_outcomes = Counter(
            "autoscaler_validation_outcomes_total", "Safety check outcomes",
            labels + ["check", "outcome"], subsystem=SUBSYSTEM, registry=self.registry,
        )
        self.source_failures = Counter(
            "autoscaler_metric_source_failures_total", "Failed metric source fetches",
            labels + ["source"], subsystem=SUBSYSTEM, registry=self.registry,
        )
        self.webhook_requests = Counter(
            "autoscaler_webhook_requests_total", "Custom algorithm webhook calls",
            labels + ["result"], subsystem=SUBSYSTEM, registry=self.registry,
        )
        self.breaker_state = Gauge(
            "autoscaler_circuit_breaker_state", "Breaker state (0=closed, 1=half-open, 2=open)",
            labels + ["source"], subsystem=SUBSYSTEM, registry=self.registry,
        )

    def record_enabled(self, cluster: ClusterRef, enabled: bool) -> None:
        self.autoscaler_enabled.labels(cluster.name, cluster.namespace).set(1 if enabled else 0)

    def record_decision(self, cluster: ClusterRef, decision: ScalingDecision) -> None:
        tier = decision.tier.value
        self.current_replicas.labels(cluster.name, cluster.namespace, tier).set(decision.current_replicas)
        self.desired_replicas.labels(cluster.name, cluster.namespace, tier).set(decision.target_replicas)
        self.decision_confidence.labels(cluster.name, cluster.namespace, tier).set(decision.confidence)

        if decision.action == ScalingAction.SCALE_UP:
            self.scale_events.labels(cluster.name, cluster.namespace, tier, "up").inc()
        elif decision.action == ScalingAction.SCALE_DOWN:
            self.scale_events.labels(cluster.name, cluster.namespace, tier, "down").inc()

    def record_validation(self, cluster: ClusterRef, check: str, outcome: str) -> None:
        self.validation_outcomes.labels(cluster.name, cluster.namespace, check, outcome).inc()

    def record_source_failure(self, cluster: ClusterRef, source: str) -> None:
        self.source_failures.labels(cluster.name, cluster.namespace, source).inc()

    def record_webhook(self, cluster: ClusterRef, result: str) -> None:
        self.webhook_requests.labels(cluster.name, cluster.namespace, result).inc()

    def record_breaker_states(self, cluster: ClusterRef, states: dict[str, CircuitState]) -> None:
        for source, state in states.items():
            self.breaker_state.labels(cluster.name, cluster.namespace, source).set(_BREAKER_STATE_VALUES[state])
