"""
Zone Distribution Planner for the secondary tier.

Spreads a replica total over availability zones. Deterministic: the same
inputs always give the same plan.
"""
from __future__ import annotations

from collections.abc import Sequence

from ..core.constants import ZONE_PLAN_INFEASIBLE
from ..core.logging import get_logger
from ..domain.models import ZonePlan

logger = get_logger(__name__)


def _ordered_zones(zones: Sequence[str], zone_preference: Sequence[str]) -> list[str]:
    """Preferred zones first (in preference order), then the rest as given."""
    seen: set[str] = set()
    ordered: list[str] = []
    for zone in list(zone_preference) + list(zones):
        if zone in zones and zone not in seen:
            ordered.append(zone)
            seen.add(zone)
    return ordered


def _skew(counts: dict[str, int]) -> int:
    return max(counts.values()) - min(counts.values())


class ZonePlanner:
    """Builds ZonePlans honoring minimum-per-zone and maximum skew."""

    def plan(
        self,
        target_total: int,
        zones: Sequence[str],
        zone_preference: Sequence[str] = (),
        min_per_zone: int = 0,
        max_skew: int = 1,
    ) -> ZonePlan:
        notes: list[str] = []
        ordered = _ordered_zones(zones, zone_preference)

        if not ordered:
            if target_total > 0:
                notes.append(f"{ZONE_PLAN_INFEASIBLE}: no zones available for {target_total} replicas")
            return ZonePlan(counts={}, notes=tuple(notes))

        rank = {zone: i for i, zone in enumerate(ordered)}

        floor = min_per_zone
        if floor * len(ordered) > target_total:
            floor = target_total // len(ordered)
            notes.append(
                f"{ZONE_PLAN_INFEASIBLE}: {target_total} replicas cannot give {min_per_zone} "
                f"to each of {len(ordered)} zones, relaxed to {floor}"
            )

        counts = {zone: floor for zone in ordered}
        remaining = target_total - floor * len(ordered)

        while remaining > 0:
            running_max = max(counts.values())
            candidates = [z for z in ordered if counts[z] < running_max] or list(ordered)
            zone = min(candidates, key=lambda z: (counts[z], rank[z]))

            counts[zone] += 1
            if _skew(counts) > max_skew:
                counts[zone] -= 1
                zone = min(ordered, key=lambda z: (self._skew_after(counts, z), rank[z]))
                counts[zone] += 1
            remaining -= 1

        if _skew(counts) > max_skew:
            # only reachable with max_skew 0 and a total not divisible by the zone count
            notes.append(f"{ZONE_PLAN_INFEASIBLE}: skew {_skew(counts)} exceeds {max_skew}")

        if notes:
            logger.warning("; ".join(notes))
        return ZonePlan(counts=counts, notes=tuple(notes))

    @staticmethod
    def _skew_after(counts: dict[str, int], zone: str) -> int:
        trial = dict(counts)
        trial[zone] += 1
        return _skew(trial)
