"""
Quorum Guard for the primary tier.

Primaries vote in cluster consensus: their count must stay odd and a
scale-down must leave at least ``min_healthy_primaries`` healthy members.
"""
from __future__ import annotations

from dataclasses import dataclass

from ..core.constants import QUORUM_BREAK_PREFIX
from ..core.logging import get_logger
from ..domain.models import QuorumState

logger = get_logger(__name__)


@dataclass(frozen=True)
class GuardResult:
    allowed: int
    vetoed: bool
    reason: str
    quorum_break: bool = False


def _odd_at_least(n: int) -> int:
    return n if n % 2 == 1 else n + 1


def _odd_at_most(n: int) -> int:
    return n if n % 2 == 1 else n - 1


class QuorumGuard:
    """Validates and clamps primary-tier proposals."""

    def guard(
        self,
        candidate: int,
        current: int,
        state: QuorumState,
        min_replicas: int = 1,
        max_replicas: int | None = None,
    ) -> GuardResult:
        """
        Clamp ``candidate`` to an odd count inside the bounds and veto unsafe
        scale-downs.

        Returns the allowed count; on a veto that is ``current``.
        """
        floor = min_replicas if state.allow_quorum_break else max(min_replicas, state.min_healthy_primaries)
        notes: list[str] = []

        allowed = candidate
        if allowed % 2 == 0:
            if allowed < current:
                allowed -= 1
            else:
                allowed += 1
            notes.append(f"rounded {candidate} to odd {allowed}")

        if max_replicas is not None and allowed > max_replicas:
            allowed = _odd_at_most(max_replicas)
        if allowed < floor:
            allowed = _odd_at_least(floor)
            notes.append(f"raised to quorum floor {allowed}")

        if allowed < current:
            healthy = state.current_healthy_primaries
            remaining = healthy - (current - allowed)
            if remaining < state.min_healthy_primaries:
                detail = (
                    f"scale-down {current}->{allowed} leaves {remaining} healthy primaries, "
                    f"minimum is {state.min_healthy_primaries}"
                )
                if state.allow_quorum_break:
                    logger.error(f"{QUORUM_BREAK_PREFIX}: {detail}")
                    return GuardResult(
                        allowed=allowed,
                        vetoed=False,
                        reason=f"{QUORUM_BREAK_PREFIX}: {detail}",
                        quorum_break=True,
                    )
                logger.warning(f"Quorum veto: {detail}")
                return GuardResult(allowed=current, vetoed=True, reason=f"quorum veto: {detail}")

        return GuardResult(allowed=allowed, vetoed=False, reason="; ".join(notes))
