"""
Runtime value objects exchanged between the engine's components.
"""
from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any

from ..core.constants import Tier


class ScalingAction(str, Enum):
    """Scaling action types"""
    SCALE_UP = "ScaleUp"
    SCALE_DOWN = "ScaleDown"
    NONE = "None"


class DecisionSource(str, Enum):
    """Which component produced the adopted proposal."""
    INTERNAL = "internal"
    WEBHOOK = "webhook"
    GUARD = "guard"


@dataclass(frozen=True)
class ClusterRef:
    """Identity of a cluster plus the member endpoints to probe per tier."""
    name: str
    namespace: str = "default"
    members: Mapping[Tier, Sequence[str]] = field(default_factory=dict, compare=False, hash=False)

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True)
class ClusterState:
    """Live state observed by the orchestrator for one cycle."""
    current_replicas: Mapping[Tier, int]
    healthy_primaries: int | None = None
    available_zones: Sequence[str] | None = None

    def replicas(self, tier: Tier) -> int:
        return int(self.current_replicas.get(tier, 0))


# Fields of NodeMetrics that hold built-in metric values, keyed by metric key
BUILTIN_FIELDS: Mapping[str, str] = MappingProxyType({
    "cpu": "cpu",
    "memory": "memory",
    "query_latency": "query_latency",
    "connection_count": "connection_count",
    "throughput": "throughput",
})


@dataclass
class NodeMetrics:
    """
    Per-tier metrics snapshot.

    cpu/memory are utilization percentages (0-100), query_latency is in
    milliseconds, throughput in operations per second. A value only counts
    if its key is in ``fresh``; stale fields are never read as zero.
    """
    cpu: float = 0.0
    memory: float = 0.0
    query_latency: float = 0.0
    connection_count: float = 0.0
    throughput: float = 0.0
    custom: dict[str, float] = field(default_factory=dict)
    fresh: set[str] = field(default_factory=set)

    def set(self, key: str, value: float) -> None:
        if key in BUILTIN_FIELDS:
            setattr(self, BUILTIN_FIELDS[key], float(value))
        else:
            self.custom[key] = float(value)
        self.fresh.add(key)

    def value(self, key: str) -> float | None:
        """Fresh value for ``key`` or None when missing or stale."""
        if key not in self.fresh:
            return None
        if key in BUILTIN_FIELDS:
            return getattr(self, BUILTIN_FIELDS[key])
        return self.custom.get(key)

    def to_dict(self) -> dict[str, float]:
        return {key: value for key in sorted(self.fresh) if (value := self.value(key)) is not None}


@dataclass
class ClusterMetrics:
    primary: NodeMetrics = field(default_factory=NodeMetrics)
    secondary: NodeMetrics = field(default_factory=NodeMetrics)
    collected_at: datetime | None = None
    degraded: bool = False
    failed_sources: list[str] = field(default_factory=list)

    def for_tier(self, tier: Tier) -> NodeMetrics:
        return self.primary if tier == Tier.PRIMARY else self.secondary

    def to_dict(self) -> dict[str, Any]:
        return {
            Tier.PRIMARY.value: self.primary.to_dict(),
            Tier.SECONDARY.value: self.secondary.to_dict(),
            "collected_at": self.collected_at.isoformat() if self.collected_at else None,
            "degraded": self.degraded,
        }


@dataclass(frozen=True)
class QuorumState:
    current_healthy_primaries: int
    min_healthy_primaries: int
    allow_quorum_break: bool = False


@dataclass(frozen=True)
class Proposal:
    """A candidate decision as produced by one algorithm, before safety checks."""
    source: DecisionSource
    action: ScalingAction
    target_replicas: int
    confidence: float
    reason: str


@dataclass(frozen=True)
class ScalingDecision:
    """Final per-tier decision handed to the executor."""
    tier: Tier
    action: ScalingAction
    target_replicas: int
    current_replicas: int
    reason: str
    confidence: float
    timestamp: datetime
    source: DecisionSource = DecisionSource.INTERNAL
    vetoed: bool = False
    quorum_break: bool = False
    proposals: tuple[Proposal, ...] = ()

    @property
    def delta(self) -> int:
        return self.target_replicas - self.current_replicas

    @classmethod
    def hold(
        cls,
        tier: Tier,
        current: int,
        reason: str,
        timestamp: datetime,
        confidence: float = 0.0,
    ) -> ScalingDecision:
        """A no-change decision."""
        return cls(
            tier=tier,
            action=ScalingAction.NONE,
            target_replicas=current,
            current_replicas=current,
            reason=reason,
            confidence=confidence,
            timestamp=timestamp,
        )

    def with_reason(self, note: str) -> ScalingDecision:
        return replace(self, reason=f"{self.reason}; {note}" if self.reason else note)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["tier"] = self.tier.value
        data["action"] = self.action.value
        data["source"] = self.source.value
        data["timestamp"] = self.timestamp.isoformat()
        data["proposals"] = [
            {**asdict(p), "source": p.source.value, "action": p.action.value}
            for p in self.proposals
        ]
        return data


@dataclass(frozen=True)
class ScalingHistoryEntry:
    timestamp: datetime
    tier: Tier
    action: ScalingAction
    from_replicas: int
    to_replicas: int
    reason: str = ""

    @property
    def delta(self) -> int:
        return self.to_replicas - self.from_replicas


@dataclass(frozen=True)
class ZonePlan:
    """Immutable per-zone replica counts for the secondary tier."""
    counts: Mapping[str, int]
    notes: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "counts", MappingProxyType(dict(self.counts)))

    def __getitem__(self, zone: str) -> int:
        return self.counts[zone]

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    @property
    def skew(self) -> int:
        if not self.counts:
            return 0
        return max(self.counts.values()) - min(self.counts.values())

    @property
    def feasible(self) -> bool:
        return not self.notes

    def to_dict(self) -> dict[str, int]:
        return dict(self.counts)


@dataclass(frozen=True)
class ScalingRecommendation:
    """Everything one reconciliation cycle produces for a cluster."""
    cluster: str
    decisions: Mapping[Tier, ScalingDecision]
    zone_plan: ZonePlan | None = None
    metrics_degraded: bool = False

    @property
    def primary(self) -> ScalingDecision | None:
        return self.decisions.get(Tier.PRIMARY)

    @property
    def secondary(self) -> ScalingDecision | None:
        return self.decisions.get(Tier.SECONDARY)

    def to_dict(self) -> dict[str, Any]:
        return {
            "cluster": self.cluster,
            "decisions": {tier.value: d.to_dict() for tier, d in self.decisions.items()},
            "zone_plan": self.zone_plan.to_dict() if self.zone_plan else None,
            "metrics_degraded": self.metrics_degraded,
        }
