"""
Autoscaling Decision Engine.

Turns one tier's metrics into a safety-checked ScalingDecision:

1. cooldown check against the tier's last recorded decision
2. composite scoring and the trigger policy produce an internal proposal
3. arbitration against an optional webhook proposal
4. quorum guard (primaries), behavior policies, parity and bounds
5. the result is appended to the cluster's history
"""
from __future__ import annotations

import math
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from ..core.constants import COOLDOWN_REASON, Tier
from ..core.logging import get_logger_with_context
from ..domain.models import (
    ClusterRef,
    DecisionSource,
    NodeMetrics,
    Proposal,
    QuorumState,
    ScalingAction,
    ScalingDecision,
    ScalingHistoryEntry,
)
from ..domain.spec import ArbitrationPolicy, TierSpec, TriggerPolicy
from ..metrics.normalizer import NormalizedMetrics, normalize
from .behavior import BehaviorPolicyEngine, direction_of
from .history import ScalingHistory, ScalingHistoryStore
from .quorum_guard import QuorumGuard
from .webhook import arbitrate

if TYPE_CHECKING:
    from ..monitoring.metrics import AutoscalerMetrics


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _action_for(target: int, current: int) -> ScalingAction:
    if target > current:
        return ScalingAction.SCALE_UP
    if target < current:
        return ScalingAction.SCALE_DOWN
    return ScalingAction.NONE


def _odd_near(target: int, current: int, low: int, high: int) -> int:
    """
    Nearest odd count to ``target`` inside [low, high], preferring the side of
    ``current``.

    When the side of ``current`` is ``current`` itself the step is widened to
    two instead, otherwise a one-replica step cap would pin the tier.
    """
    if target % 2 == 1:
        return target
    toward = target - 1 if current < target else target + 1
    away = target + 1 if current < target else target - 1
    order = (away, toward) if toward == current else (toward, away)
    for candidate in order:
        if low <= candidate <= high:
            return candidate
    return target


class DecisionEngine:
    """Per-tier scaling decisions with cooldown, arbitration and safety checks."""

    def __init__(
        self,
        history: ScalingHistoryStore | None = None,
        guard: QuorumGuard | None = None,
        behavior: BehaviorPolicyEngine | None = None,
        clock: Callable[[], datetime] = utcnow,
        observer: AutoscalerMetrics | None = None,
    ):
        self.history = history or ScalingHistoryStore()
        self.guard = guard or QuorumGuard()
        self.behavior = behavior or BehaviorPolicyEngine()
        self.observer = observer
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    def in_cooldown(self, cluster: ClusterRef, tier: Tier, tier_spec: TierSpec, now: datetime | None = None) -> bool:
        with self.history.locked(cluster.key) as history:
            return self._cooling(history, tier, tier_spec, now or self._clock())

    @staticmethod
    def _cooling(history: ScalingHistory, tier: Tier, tier_spec: TierSpec, now: datetime) -> bool:
        last = history.last_decision_time(tier)
        if last is None:
            return False
        return now - last < timedelta(seconds=tier_spec.cooldown_period_seconds)

    def propose(self, tier: Tier, tier_spec: TierSpec, snapshot: NodeMetrics, current: int) -> Proposal:
        """
        Internal proposal from metrics alone.

        No history, guards or behavior policies are consulted, so the same
        inputs always give the same proposal.
        """
        lo, hi = tier_spec.min_replicas, tier_spec.max_replicas
        if current < lo:
            return Proposal(DecisionSource.INTERNAL, ScalingAction.SCALE_UP, lo, 1.0,
                            f"{current} replicas below minReplicas {lo}")
        if current > hi:
            return Proposal(DecisionSource.INTERNAL, ScalingAction.SCALE_DOWN, hi, 1.0,
                            f"{current} replicas above maxReplicas {hi}")

        normalized = normalize(tier_spec.metrics, snapshot)
        composite = normalized.composite_score()
        if composite is None:
            return Proposal(DecisionSource.INTERNAL, ScalingAction.NONE, current, 0.0,
                            "no usable metrics")

        tolerance = tier_spec.tolerance
        confidence = normalized.availability * min(1.0, abs(composite - 1.0) / tolerance)
        action, driver, why = self._trigger(normalized, composite, tier_spec.trigger_policy, tolerance)

        summary = f"composite {composite:.3f}"
        if normalized.skipped:
            summary += f", skipped {sorted(normalized.skipped)}"

        if action == ScalingAction.NONE:
            return Proposal(DecisionSource.INTERNAL, action, current, confidence,
                            f"within tolerance ({summary})")

        raw = math.ceil(current * driver)
        if action == ScalingAction.SCALE_UP:
            raw = max(raw, current + 1)
        else:
            raw = min(raw, current - 1)
        target = min(max(raw, lo), hi)

        if target == current:
            bound = "maxReplicas" if action == ScalingAction.SCALE_UP else "minReplicas"
            return Proposal(DecisionSource.INTERNAL, ScalingAction.NONE, current, confidence,
                            f"{why}, already at {bound} ({summary})")
        return Proposal(DecisionSource.INTERNAL, action, target, confidence, f"{why} ({summary})")

    @staticmethod
    def _trigger(
        normalized: NormalizedMetrics,
        composite: float,
        policy: TriggerPolicy,
        tolerance: float,
    ) -> tuple[ScalingAction, float, str]:
        upper, lower = 1.0 + tolerance, 1.0 - tolerance

        if policy == TriggerPolicy.COMPOSITE:
            if composite > upper:
                return ScalingAction.SCALE_UP, composite, f"composite above {upper:.2f}"
            if composite < lower:
                return ScalingAction.SCALE_DOWN, composite, f"composite below {lower:.2f}"
            return ScalingAction.NONE, composite, ""

        worst = max(normalized.ratios, key=lambda r: r.ratio)
        if worst.ratio > upper:
            return (
                ScalingAction.SCALE_UP,
                worst.ratio,
                f"{worst.key} ratio {worst.ratio:.3f} above {upper:.2f}",
            )
        if worst.ratio < lower:
            return (
                ScalingAction.SCALE_DOWN,
                worst.ratio,
                f"all metric ratios below {lower:.2f}",
            )
        return ScalingAction.NONE, worst.ratio, ""

    def decide(
        self,
        cluster: ClusterRef,
        tier: Tier,
        tier_spec: TierSpec,
        snapshot: NodeMetrics,
        current: int,
        quorum: QuorumState | None = None,
        webhook: Proposal | None = None,
        arbitration: ArbitrationPolicy = ArbitrationPolicy.CONFIDENCE,
    ) -> ScalingDecision:
        """
        Decide for one tier and record the decision.

        ``quorum`` is required for the primary tier. A cooldown hold is
        returned without being recorded.
        """
        log = get_logger_with_context(__name__, cluster, tier)
        with self.history.locked(cluster.key) as history:
            now = self._clock()
            if self._cooling(history, tier, tier_spec, now):
                return ScalingDecision.hold(tier, current, COOLDOWN_REASON, now, confidence=1.0)

            internal = self.propose(tier, tier_spec, snapshot, current)
            chosen = arbitrate(internal, webhook, arbitration)
            proposals = (internal,) if webhook is None else (internal, webhook)
            if chosen is webhook:
                log.info(
                    "Adopting webhook proposal: "
                    f"{webhook.target_replicas} (confidence {webhook.confidence:.2f} "
                    f"vs {internal.confidence:.2f})"
                )

            decision = replace(
                self._finalize(cluster, tier, tier_spec, chosen, current, quorum, history, now),
                proposals=proposals,
            )

            history.append(ScalingHistoryEntry(
                timestamp=now,
                tier=tier,
                action=decision.action,
                from_replicas=current,
                to_replicas=decision.target_replicas,
                reason=decision.reason,
            ))
            history.prune(now - self.history.retention)

        log.info(
            f"Decision {decision.action.value} "
            f"{current}->{decision.target_replicas} ({decision.reason})"
        )
        return decision

    def _finalize(
        self,
        cluster: ClusterRef,
        tier: Tier,
        tier_spec: TierSpec,
        chosen: Proposal,
        current: int,
        quorum: QuorumState | None,
        history: ScalingHistory,
        now: datetime,
    ) -> ScalingDecision:
        lo, hi = tier_spec.min_replicas, tier_spec.max_replicas
        primary = tier == Tier.PRIMARY
        if primary and quorum is not None and not quorum.allow_quorum_break:
            lo = max(lo, quorum.min_healthy_primaries)

        notes = [chosen.reason] if chosen.reason else []
        target = min(max(chosen.target_replicas, lo), hi)
        if target == current:
            return ScalingDecision(
                tier=tier, action=ScalingAction.NONE, target_replicas=current, current_replicas=current,
                reason="; ".join(notes), confidence=chosen.confidence, timestamp=now, source=chosen.source,
            )

        quorum_break = False
        if primary and quorum is not None:
            result = self.guard.guard(target, current, quorum, tier_spec.min_replicas, tier_spec.max_replicas)
            if result.vetoed:
                self._validation(cluster, "quorum", "vetoed")
                notes.append(result.reason)
                return ScalingDecision(
                    tier=tier, action=ScalingAction.NONE, target_replicas=current, current_replicas=current,
                    reason="; ".join(notes), confidence=chosen.confidence, timestamp=now,
                    source=DecisionSource.GUARD, vetoed=True,
                )
            quorum_break = result.quorum_break
            self._validation(cluster, "quorum", "quorum_break" if quorum_break else "passed")
            if result.reason:
                notes.append(result.reason)
            target = result.allowed

        direction = direction_of(target - current)
        if direction is not None:
            clamp = self.behavior.clamp(
                target - current, direction, tier_spec.behavior, history.entries(tier), current, now,
            )
            if clamp.reason:
                notes.append(clamp.reason)
                self._validation(cluster, "behavior", "suppressed" if clamp.suppressed else "clamped")
            target = current + clamp.delta

        # bounds win over behavior caps
        target = min(max(target, lo), hi)
        if primary and target != current:
            adjusted = _odd_near(target, current, lo, hi)
            if abs(adjusted - current) > abs(target - current):
                notes.append(f"widened primaries step to stay odd at {adjusted}")
            elif adjusted != target:
                notes.append(f"kept primaries odd at {adjusted}")
            target = adjusted

        return ScalingDecision(
            tier=tier,
            action=_action_for(target, current),
            target_replicas=target,
            current_replicas=current,
            reason="; ".join(notes),
            confidence=chosen.confidence,
            timestamp=now,
            source=chosen.source,
            quorum_break=quorum_break and target < current,
        )

    def _validation(self, cluster: ClusterRef, check: str, outcome: str) -> None:
        if self.observer is not None:
            self.observer.record_validation(cluster, check, outcome)
