"""
Metric target parsing and ratio computation.

Targets arrive as strings in three shapes: a bare number (absolute value in
the live metric's unit), a percentage (``"70%"``) or a duration
(``"250ms"``). Each metric kind is bound to an evaluator that knows the unit
of its live value, so every configured metric becomes a dimensionless
``current / target`` ratio.
"""
from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType

from ..core.exceptions import InvalidMetricTargetError
from ..core.logging import get_logger
from ..domain.models import NodeMetrics
from ..domain.spec import MetricKind, MetricSpec
from ..domain.units import is_duration, is_number, parse_duration

logger = get_logger(__name__)


class MetricUnit(Enum):
    """Unit of a live metric value."""
    PERCENT = "percent"            # utilization reported on a 0-100 scale
    MILLISECONDS = "milliseconds"
    SECONDS = "seconds"
    COUNT = "count"
    RATE = "per_second"


@dataclass(frozen=True)
class MetricEvaluator:
    """Reads the live value of one metric kind and converts targets to its unit."""
    unit: MetricUnit

    def current(self, spec: MetricSpec, snapshot: NodeMetrics) -> float | None:
        return snapshot.value(spec.key)

    def parse_target(self, raw: str) -> tuple[float, bool]:
        """
        Parse ``raw`` into ``(value, is_fraction)`` in this evaluator's unit.

        ``is_fraction`` is set for percentage targets, which compare against
        the live value rescaled to 0-1 for percent-valued metrics.
        """
        text = raw.strip()
        if text.endswith("%"):
            number = text[:-1].strip()
            if not is_number(number):
                raise InvalidMetricTargetError(f"invalid percentage target {raw!r}", target=raw)
            return float(number) / 100.0, True
        if is_number(text):
            return float(text), False
        if is_duration(text):
            seconds = parse_duration(text)
            if self.unit == MetricUnit.MILLISECONDS:
                return seconds * 1000.0, False
            if self.unit == MetricUnit.SECONDS:
                return seconds, False
            raise InvalidMetricTargetError(
                f"duration target {raw!r} used for a {self.unit.value} metric", target=raw
            )
        raise InvalidMetricTargetError(f"unparseable target {raw!r}", target=raw)

    def comparable(self, current: float, is_fraction: bool) -> float:
        if is_fraction and self.unit == MetricUnit.PERCENT:
            return current / 100.0
        return current


METRIC_EVALUATORS: Mapping[MetricKind, MetricEvaluator] = MappingProxyType({
    MetricKind.CPU: MetricEvaluator(MetricUnit.PERCENT),
    MetricKind.MEMORY: MetricEvaluator(MetricUnit.PERCENT),
    MetricKind.QUERY_LATENCY: MetricEvaluator(MetricUnit.MILLISECONDS),
    MetricKind.CONNECTION_COUNT: MetricEvaluator(MetricUnit.COUNT),
    MetricKind.THROUGHPUT: MetricEvaluator(MetricUnit.RATE),
    MetricKind.CUSTOM: MetricEvaluator(MetricUnit.SECONDS),
})

_unmapped = set(MetricKind) - set(METRIC_EVALUATORS)
if _unmapped:
    raise RuntimeError(f"metric kinds without evaluator: {sorted(k.value for k in _unmapped)}")


def parse_target(spec: MetricSpec) -> tuple[float, bool]:
    """
    Parse a spec's target into its live unit.

    Raises:
        InvalidMetricTargetError: unparseable or non-positive target
    """
    value, is_fraction = METRIC_EVALUATORS[spec.kind].parse_target(spec.target)
    if value <= 0:
        raise InvalidMetricTargetError(
            f"target for {spec.key} must be positive, got {spec.target!r}", target=spec.target
        )
    return value, is_fraction


@dataclass(frozen=True)
class MetricRatio:
    key: str
    kind: MetricKind
    current: float
    target: float
    weight: float

    @property
    def ratio(self) -> float:
        return self.current / self.target


@dataclass
class NormalizedMetrics:
    """Ratios for metrics present on both sides, plus what was left out and why."""
    ratios: list[MetricRatio] = field(default_factory=list)
    skipped: dict[str, str] = field(default_factory=dict)
    configured: int = 0

    @property
    def availability(self) -> float:
        if self.configured == 0:
            return 0.0
        return len(self.ratios) / self.configured

    def composite_score(self) -> float | None:
        """Weighted mean of the available ratios."""
        total_weight = sum(r.weight for r in self.ratios)
        if not self.ratios or total_weight <= 0:
            return None
        return sum(r.ratio * r.weight for r in self.ratios) / total_weight


def normalize(specs: Sequence[MetricSpec], snapshot: NodeMetrics) -> NormalizedMetrics:
    """
    Turn configured metric specs and a live snapshot into ratios.

    Metrics with an invalid target or no fresh live value are skipped; live
    values without a configured spec are ignored.
    """
    result = NormalizedMetrics(configured=len(specs))

    for spec in specs:
        evaluator = METRIC_EVALUATORS[spec.kind]
        try:
            target, is_fraction = parse_target(spec)
        except InvalidMetricTargetError as e:
            logger.warning(f"Skipping metric {spec.key}: {e.message}")
            result.skipped[spec.key] = e.error_code
            continue

        current = evaluator.current(spec, snapshot)
        if current is None:
            logger.debug(f"Skipping metric {spec.key}: no fresh live value")
            result.skipped[spec.key] = "missing"
            continue

        result.ratios.append(MetricRatio(
            key=spec.key,
            kind=spec.kind,
            current=evaluator.comparable(current, is_fraction),
            target=target,
            weight=spec.weight,
        ))

    return result
