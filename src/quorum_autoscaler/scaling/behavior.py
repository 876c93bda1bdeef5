"""
Behavior Policy Engine.

Limits how fast a tier moves: stabilization windows suppress direction
flips, step policies cap the replicas added or removed per period.
"""
from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta

from ..core.logging import get_logger
from ..domain.models import ScalingAction, ScalingHistoryEntry
from ..domain.spec import BehaviorConfig, PolicyType, ScaleDirection, ScalingPolicy, SelectPolicy

logger = get_logger(__name__)

_ACTION_FOR = {
    ScaleDirection.UP: ScalingAction.SCALE_UP,
    ScaleDirection.DOWN: ScalingAction.SCALE_DOWN,
}
_OPPOSITE = {
    ScaleDirection.UP: ScalingAction.SCALE_DOWN,
    ScaleDirection.DOWN: ScalingAction.SCALE_UP,
}


@dataclass(frozen=True)
class ClampResult:
    delta: int
    reason: str = ""
    suppressed: bool = False


def direction_of(delta: int) -> ScaleDirection | None:
    if delta > 0:
        return ScaleDirection.UP
    if delta < 0:
        return ScaleDirection.DOWN
    return None


class BehaviorPolicyEngine:
    """Applies BehaviorConfig to a raw replica delta."""

    def clamp(
        self,
        raw_delta: int,
        direction: ScaleDirection,
        behavior: BehaviorConfig,
        history: Sequence[ScalingHistoryEntry],
        current: int,
        now: datetime,
    ) -> ClampResult:
        """
        Clamp ``raw_delta`` for ``direction``.

        ``history`` must hold the entries of the tier being scaled.
        """
        if raw_delta == 0:
            return ClampResult(0)

        rules = behavior.rules_for(direction)

        window = rules.stabilization_window_seconds or 0
        if window > 0:
            since = now - timedelta(seconds=window)
            opposing = [
                e for e in history
                if e.action == _OPPOSITE[direction] and e.timestamp >= since
            ]
            if opposing:
                last = opposing[-1]
                reason = (
                    f"stabilization: {last.action.value} at {last.timestamp.isoformat()} "
                    f"inside {window}s {direction.value} window"
                )
                logger.info(reason)
                return ClampResult(0, reason, suppressed=True)

        if rules.select_policy == SelectPolicy.DISABLED:
            return ClampResult(0, f"{direction.value} disabled by selectPolicy", suppressed=True)

        magnitude = abs(raw_delta)
        policies = rules.policies or []
        if not policies:
            return ClampResult(raw_delta)

        caps = [self._policy_cap(p, direction, history, current, now) for p in policies]
        cap = max(caps) if rules.select_policy == SelectPolicy.MAX else min(caps)

        if magnitude <= cap:
            return ClampResult(raw_delta)

        sign = 1 if raw_delta > 0 else -1
        reason = f"{direction.value} step limited to {cap} by {rules.select_policy.value} policy"
        if cap == 0:
            return ClampResult(0, reason, suppressed=True)
        return ClampResult(sign * cap, reason)

    @staticmethod
    def _policy_cap(
        policy: ScalingPolicy,
        direction: ScaleDirection,
        history: Sequence[ScalingHistoryEntry],
        current: int,
        now: datetime,
    ) -> int:
        if policy.type == PolicyType.PODS:
            allowance = policy.value
        else:
            allowance = math.ceil(current * policy.value / 100)

        since = now - timedelta(seconds=policy.period_seconds)
        moved = sum(
            abs(e.delta) for e in history
            if e.action == _ACTION_FOR[direction] and e.timestamp >= since
        )
        return max(0, allowance - moved)
