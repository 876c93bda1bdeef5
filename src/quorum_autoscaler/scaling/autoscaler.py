"""
AutoScaler
Runs one reconciliation cycle for a cluster end to end.

Features:
- Per-cluster serialization of overlapping cycles
- Bounded cycle deadline; an expired cycle holds every tier
- Metrics collection with per-tier degradation
- Optional custom algorithm webhook with fallback to the internal decision
- Quorum-checked primary decisions, zone-planned secondary decisions
- Prometheus metrics for every decision
"""
from __future__ import annotations

import asyncio
from collections import Counter
from typing import Any

from prometheus_client import CollectorRegistry

from ..core.config import settings
from ..core.constants import Tier
from ..core.exceptions import MetricsUnavailableError, WebhookError, WebhookTimeoutError
from ..core.logging import get_logger, get_logger_with_context
from ..domain.models import (
    ClusterMetrics,
    ClusterRef,
    ClusterState,
    Proposal,
    QuorumState,
    ScalingAction,
    ScalingDecision,
    ScalingRecommendation,
    ZonePlan,
)
from ..domain.spec import ArbitrationPolicy, AutoScalingSpec
from ..metrics.collector import MetricsCollector
from ..monitoring.metrics import AutoscalerMetrics
from .decision_engine import DecisionEngine
from .webhook import WebhookClient
from .zone_planner import ZonePlanner

logger = get_logger(__name__)

# share of the remaining cycle time a webhook call may use
WEBHOOK_DEADLINE_SHARE = 0.9


class AutoScaler:
    """
    Produces a ScalingRecommendation per reconciliation.

    Holds no loop of its own; the controller calls ``reconcile`` whenever it
    reconciles a cluster.
    """

    def __init__(
        self,
        collector: MetricsCollector | None = None,
        engine: DecisionEngine | None = None,
        planner: ZonePlanner | None = None,
        webhook: WebhookClient | None = None,
        observer: AutoscalerMetrics | None = None,
        deadline: float | None = None,
    ):
        self.observer = observer or AutoscalerMetrics()
        self.collector = collector or MetricsCollector(observer=self.observer)
        self.engine = engine or DecisionEngine(observer=self.observer)
        self.planner = planner or ZonePlanner()
        self.webhook = webhook or WebhookClient()
        self.deadline = deadline or settings.reconcile_deadline_seconds
        self._cluster_locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, cluster_key: str) -> asyncio.Lock:
        return self._cluster_locks.setdefault(cluster_key, asyncio.Lock())

    async def reconcile(self, cluster: ClusterRef, spec: AutoScalingSpec, state: ClusterState) -> ScalingRecommendation:
        """
        Decide the next replica counts for ``cluster``.

        Never raises for metric, webhook or safety failures; the affected
        tiers hold their current count instead.
        """
        log = get_logger_with_context(__name__, cluster)

        async with self._lock_for(cluster.key):
            self.observer.record_enabled(cluster, spec.enabled)
            if not spec.enabled:
                return self._hold_all(cluster, spec, state, "autoscaling disabled")

            try:
                async with asyncio.timeout(self.deadline) as scope:
                    recommendation = await self._cycle(cluster, spec, state, scope.when())
            except TimeoutError:
                log.warning(f"Reconcile deadline of {self.deadline}s exceeded, holding all tiers")
                recommendation = self._hold_all(
                    cluster, spec, state, f"reconcile deadline of {self.deadline}s exceeded", degraded=True,
                )

        for decision in recommendation.decisions.values():
            self.observer.record_decision(cluster, decision)
        self.observer.record_breaker_states(cluster, self.collector.breakers.states(cluster.key))

        log.info(
            "Reconciled autoscaling: "
            + ", ".join(
                f"{tier.value} {d.action.value} {d.current_replicas}->{d.target_replicas}"
                for tier, d in recommendation.decisions.items()
            )
        )
        return recommendation

    async def _cycle(
        self,
        cluster: ClusterRef,
        spec: AutoScalingSpec,
        state: ClusterState,
        deadline_at: float,
    ) -> ScalingRecommendation:
        tiers = [tier for tier in Tier if spec.tier(tier) is not None]

        unavailable: set[Tier] = set()
        try:
            metrics = await self.collector.collect(cluster, spec.metric_specs())
        except MetricsUnavailableError as e:
            metrics = e.partial if e.partial is not None else ClusterMetrics(degraded=True)
            unavailable = {Tier(name) for name in e.tiers}
            get_logger_with_context(__name__, cluster).warning(
                f"Holding {sorted(t.value for t in unavailable)}: {e.message}"
            )

        webhook_proposals: dict[Tier, Proposal] = {}
        deciding = [tier for tier in tiers if tier not in unavailable]
        if spec.webhook is not None and any(
            not self.engine.in_cooldown(cluster, tier, spec.tier(tier)) for tier in deciding
        ):
            webhook_proposals = await self._consult_webhook(cluster, spec, metrics, state, deadline_at)

        arbitration = spec.webhook.arbitration if spec.webhook is not None else ArbitrationPolicy.CONFIDENCE
        decisions: dict[Tier, ScalingDecision] = {}
        for tier in tiers:
            current = state.replicas(tier)
            if tier in unavailable:
                decisions[tier] = ScalingDecision.hold(tier, current, "metrics unavailable", self.engine.now())
                continue
            decisions[tier] = self.engine.decide(
                cluster,
                tier,
                spec.tier(tier),
                metrics.for_tier(tier),
                current,
                quorum=self._quorum_state(spec, state) if tier == Tier.PRIMARY else None,
                webhook=webhook_proposals.get(tier),
                arbitration=arbitration,
            )

        zone_plan = None
        if Tier.SECONDARY in decisions and spec.zone_aware.enabled:
            zone_plan = self._plan_zones(spec, state, decisions[Tier.SECONDARY].target_replicas)
            if zone_plan.notes:
                decisions[Tier.SECONDARY] = decisions[Tier.SECONDARY].with_reason("; ".join(zone_plan.notes))
                self.observer.record_validation(cluster, "zone_plan", "relaxed")

        return ScalingRecommendation(
            cluster=cluster.key,
            decisions=decisions,
            zone_plan=zone_plan,
            metrics_degraded=metrics.degraded or bool(unavailable),
        )

    async def _consult_webhook(
        self,
        cluster: ClusterRef,
        spec: AutoScalingSpec,
        metrics: ClusterMetrics,
        state: ClusterState,
        deadline_at: float,
    ) -> dict[Tier, Proposal]:
        budget = (deadline_at - asyncio.get_running_loop().time()) * WEBHOOK_DEADLINE_SHARE
        try:
            response = await self.webhook.call(spec.webhook, cluster, metrics, state, timeout=budget)
        except WebhookTimeoutError as e:
            get_logger_with_context(__name__, cluster).warning(f"Degraded mode: {e.message}, using internal decision")
            self.observer.record_webhook(cluster, "timeout")
            return {}
        except WebhookError as e:
            get_logger_with_context(__name__, cluster).warning(f"Degraded mode: {e.message}, using internal decision")
            self.observer.record_webhook(cluster, "error")
            return {}

        self.observer.record_webhook(cluster, "success")
        return response.proposals(state)

    @staticmethod
    def _quorum_state(spec: AutoScalingSpec, state: ClusterState) -> QuorumState:
        healthy = state.healthy_primaries
        if healthy is None:
            healthy = state.replicas(Tier.PRIMARY)
        return QuorumState(
            current_healthy_primaries=healthy,
            min_healthy_primaries=spec.quorum_protection.min_healthy_primaries,
            allow_quorum_break=spec.quorum_protection.allow_quorum_break,
        )

    def _plan_zones(self, spec: AutoScalingSpec, state: ClusterState, total: int) -> ZonePlan:
        zone_aware = spec.zone_aware
        zones = list(zone_aware.zones)
        if state.available_zones is not None:
            zones = [zone for zone in zones if zone in state.available_zones]
        return self.planner.plan(
            total,
            zones,
            zone_preference=zone_aware.zone_preference,
            min_per_zone=zone_aware.min_replicas_per_zone,
            max_skew=zone_aware.max_zone_skew,
        )

    def _hold_all(
        self,
        cluster: ClusterRef,
        spec: AutoScalingSpec,
        state: ClusterState,
        reason: str,
        degraded: bool = False,
    ) -> ScalingRecommendation:
        now = self.engine.now()
        decisions = {
            tier: ScalingDecision.hold(tier, state.replicas(tier), reason, now)
            for tier in Tier
            if spec.tier(tier) is not None
        }
        return ScalingRecommendation(cluster=cluster.key, decisions=decisions, metrics_degraded=degraded)

    def get_scaling_stats(self, cluster: ClusterRef) -> dict[str, Any]:
        """Summary of the recent decisions recorded for ``cluster``."""
        entries = self.engine.history.snapshot(cluster.key)
        recent = entries[-20:]

        per_tier: dict[str, dict[str, Any]] = {}
        for tier in Tier:
            tier_entries = [e for e in entries if e.tier == tier]
            actions = Counter(e.action for e in tier_entries)
            per_tier[tier.value] = {
                "decisions": len(tier_entries),
                "scale_ups": actions[ScalingAction.SCALE_UP],
                "scale_downs": actions[ScalingAction.SCALE_DOWN],
                "last_decision_time": tier_entries[-1].timestamp.isoformat() if tier_entries else None,
            }

        return {
            "cluster": cluster.key,
            "tiers": per_tier,
            "recent_decisions": [
                {
                    "timestamp": e.timestamp.isoformat(),
                    "tier": e.tier.value,
                    "action": e.action.value,
                    "from_replicas": e.from_replicas,
                    "to_replicas": e.to_replicas,
                    "reason": e.reason,
                }
                for e in recent
            ],
            "circuit_breakers": {
                source: state.value for source, state in self.collector.breakers.states(cluster.key).items()
            },
        }

    def forget(self, cluster: ClusterRef) -> None:
        """Release all per-cluster state; called by the controller when a cluster is deleted."""
        self._cluster_locks.pop(cluster.key, None)
        self.collector.forget(cluster)
        self.engine.history.forget(cluster.key)
        get_logger_with_context(__name__, cluster).info("Forgot autoscaling state")

    async def close(self) -> None:
        await self.collector.close()
        await self.webhook.close()
        logger.info("AutoScaler closed")


# Factory function
def create_autoscaler(registry: CollectorRegistry | None = None) -> AutoScaler:
    """Create an AutoScaler wired from the process settings."""
    return AutoScaler(observer=AutoscalerMetrics(registry))
