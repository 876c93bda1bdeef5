"""
Cluster autoscaling specification models.

These mirror the ``autoScaling`` block of the cluster custom resource and
accept its camelCase JSON directly (``AutoScalingSpec.model_validate(doc)``).
Malformed specs are rejected here, before the engine ever runs.
"""
from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from ..core.constants import (
    DEFAULT_COOLDOWN_SECONDS,
    DEFAULT_POLICY_PERIOD_SECONDS,
    DEFAULT_SCALE_DOWN_PERCENT,
    DEFAULT_SCALE_DOWN_WINDOW_SECONDS,
    DEFAULT_SCALE_UP_PERCENT,
    DEFAULT_SCALE_UP_PODS,
    DEFAULT_SCALE_UP_WINDOW_SECONDS,
    DEFAULT_TOLERANCE,
    Tier,
)
from .units import parse_seconds


class MetricKind(str, Enum):
    """Closed set of metric kinds the engine knows how to evaluate."""

    CPU = "cpu"
    MEMORY = "memory"
    QUERY_LATENCY = "query_latency"
    CONNECTION_COUNT = "connection_count"
    THROUGHPUT = "throughput"
    CUSTOM = "custom"


class PolicyType(str, Enum):
    PODS = "Pods"
    PERCENT = "Percent"


class SelectPolicy(str, Enum):
    MAX = "Max"
    MIN = "Min"
    DISABLED = "Disabled"


class ScaleDirection(str, Enum):
    UP = "scaleUp"
    DOWN = "scaleDown"


class TriggerPolicy(str, Enum):
    """How per-metric ratios turn into a scale action."""

    # any metric above the band scales up, all metrics below the band scale down
    EAGER_UP_CONSERVATIVE_DOWN = "eager_up_conservative_down"
    # only the weighted composite score is compared against the band
    COMPOSITE = "composite"


class ArbitrationPolicy(str, Enum):
    """Precedence between the webhook proposal and the internal decision."""

    CONFIDENCE = "confidence"
    PREFER_WEBHOOK = "prefer_webhook"
    PREFER_INTERNAL = "prefer_internal"


class SpecModel(BaseModel):
    """Base for spec models: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        use_enum_values=False,
        str_strip_whitespace=True,
    )


class MetricSpec(SpecModel):
    """One configured scaling signal for a tier."""

    kind: MetricKind = Field(description="Metric kind")
    target: str = Field(description="Raw target: '70', '70%', '250ms'")
    weight: float = Field(default=1.0, gt=0, description="Weight in the composite score")
    custom_query: str | None = Field(default=None, description="PromQL for custom metrics")
    source: str | None = Field(default=None, description="Metric source override")
    name: str | None = Field(default=None, description="Name of a custom metric")

    @model_validator(mode="before")
    @classmethod
    def accept_type_alias(cls, data: Any) -> Any:
        # The custom resource historically called the kind field "type"
        if isinstance(data, dict) and "kind" not in data and "type" in data:
            data = {**data, "kind": data["type"]}
            data.pop("type")
        return data

    @field_validator("target", mode="before")
    @classmethod
    def coerce_target(cls, v: Any) -> Any:
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v

    @model_validator(mode="after")
    def check_custom_query(self) -> MetricSpec:
        if self.kind == MetricKind.CUSTOM and not self.custom_query:
            raise ValueError("custom metrics require customQuery")
        return self

    @property
    def key(self) -> str:
        """Key of this metric inside a NodeMetrics snapshot."""
        if self.kind == MetricKind.CUSTOM:
            return f"custom:{self.name or self.custom_query}"
        return self.kind.value

    @property
    def source_name(self) -> str:
        if self.source:
            return self.source
        return "prometheus" if self.kind == MetricKind.CUSTOM else "members"


class ScalingPolicy(SpecModel):
    """Maximum movement allowed within ``period_seconds``."""

    type: PolicyType
    value: int = Field(ge=0)
    period_seconds: int = Field(default=DEFAULT_POLICY_PERIOD_SECONDS, gt=0)


class ScalingRules(SpecModel):
    stabilization_window_seconds: int | None = Field(default=None, ge=0)
    policies: list[ScalingPolicy] | None = None
    select_policy: SelectPolicy = SelectPolicy.MAX


_DEFAULT_RULES = {
    ScaleDirection.UP: ScalingRules(
        stabilization_window_seconds=DEFAULT_SCALE_UP_WINDOW_SECONDS,
        policies=[
            ScalingPolicy(type=PolicyType.PODS, value=DEFAULT_SCALE_UP_PODS),
            ScalingPolicy(type=PolicyType.PERCENT, value=DEFAULT_SCALE_UP_PERCENT),
        ],
        select_policy=SelectPolicy.MAX,
    ),
    ScaleDirection.DOWN: ScalingRules(
        stabilization_window_seconds=DEFAULT_SCALE_DOWN_WINDOW_SECONDS,
        policies=[ScalingPolicy(type=PolicyType.PERCENT, value=DEFAULT_SCALE_DOWN_PERCENT)],
        select_policy=SelectPolicy.MAX,
    ),
}


class BehaviorConfig(SpecModel):
    """Per-direction stabilization and step policies."""

    scale_up: ScalingRules | None = None
    scale_down: ScalingRules | None = None

    def rules_for(self, direction: ScaleDirection) -> ScalingRules:
        """Rules for ``direction`` with unset fields filled from the HPA defaults."""
        configured = self.scale_up if direction == ScaleDirection.UP else self.scale_down
        default = _DEFAULT_RULES[direction]
        if configured is None:
            return default
        return ScalingRules(
            stabilization_window_seconds=(
                configured.stabilization_window_seconds
                if configured.stabilization_window_seconds is not None
                else default.stabilization_window_seconds
            ),
            policies=configured.policies if configured.policies is not None else default.policies,
            select_policy=configured.select_policy,
        )


class TierSpec(SpecModel):
    """Bounds, signals and behavior for one tier."""

    min_replicas: int = Field(ge=1)
    max_replicas: int = Field(ge=1)
    metrics: list[MetricSpec] = Field(
        default_factory=lambda: [MetricSpec(kind=MetricKind.CPU, target="70")]
    )
    cooldown_period_seconds: float = Field(
        default=DEFAULT_COOLDOWN_SECONDS,
        ge=0,
        validation_alias=AliasChoices("cooldownPeriodSeconds", "cooldownPeriod", "cooldown_period_seconds"),
    )
    tolerance: float = Field(default=DEFAULT_TOLERANCE, gt=0, lt=1)
    trigger_policy: TriggerPolicy = TriggerPolicy.EAGER_UP_CONSERVATIVE_DOWN
    behavior: BehaviorConfig = Field(default_factory=BehaviorConfig)

    @field_validator("cooldown_period_seconds", mode="before")
    @classmethod
    def parse_cooldown(cls, v: Any) -> Any:
        if isinstance(v, str):
            return parse_seconds(v)
        return v

    @model_validator(mode="after")
    def check_bounds(self) -> TierSpec:
        if self.min_replicas > self.max_replicas:
            raise ValueError(
                f"minReplicas ({self.min_replicas}) exceeds maxReplicas ({self.max_replicas})"
            )
        return self


class QuorumProtection(SpecModel):
    min_healthy_primaries: int = Field(default=2, ge=1)
    allow_quorum_break: bool = False


class ZoneAwareConfig(SpecModel):
    enabled: bool = False
    zones: list[str] = Field(default_factory=list)
    zone_preference: list[str] = Field(default_factory=list)
    min_replicas_per_zone: int = Field(default=1, ge=0)
    max_zone_skew: int = Field(default=1, ge=1)

    @model_validator(mode="after")
    def check_zones(self) -> ZoneAwareConfig:
        if self.enabled and not self.zones:
            raise ValueError("zone-aware scaling requires at least one zone")
        if len(set(self.zones)) != len(self.zones):
            raise ValueError("zones must be unique")
        return self


class WebhookConfig(SpecModel):
    """Custom scaling algorithm endpoint."""

    url: str = Field(min_length=1)
    method: str = "POST"
    timeout: float | None = Field(default=None, gt=0, description="Timeout in seconds")
    arbitration: ArbitrationPolicy = ArbitrationPolicy.CONFIDENCE

    @field_validator("method")
    @classmethod
    def validate_method(cls, v: str) -> str:
        method = v.upper()
        if method not in {"POST", "PUT"}:
            raise ValueError(f"unsupported webhook method: {v}")
        return method

    @field_validator("timeout", mode="before")
    @classmethod
    def parse_timeout(cls, v: Any) -> Any:
        if isinstance(v, str):
            return parse_seconds(v)
        return v


class AutoScalingSpec(SpecModel):
    """The whole ``autoScaling`` block of a cluster."""

    enabled: bool = True
    primaries: TierSpec | None = None
    secondaries: TierSpec | None = None
    quorum_protection: QuorumProtection = Field(default_factory=QuorumProtection)
    zone_aware: ZoneAwareConfig = Field(default_factory=ZoneAwareConfig)
    webhook: WebhookConfig | None = None

    @model_validator(mode="after")
    def check_primary_quorum(self) -> AutoScalingSpec:
        if self.primaries is None or self.quorum_protection.allow_quorum_break:
            return self
        floor = max(self.primaries.min_replicas, self.quorum_protection.min_healthy_primaries)
        if not any(n % 2 == 1 for n in range(floor, self.primaries.max_replicas + 1)):
            raise ValueError(
                "primaries bounds admit no odd replica count at or above minHealthyPrimaries"
            )
        return self

    def tier(self, tier: Tier) -> TierSpec | None:
        return self.primaries if tier == Tier.PRIMARY else self.secondaries

    def metric_specs(self) -> dict[Tier, list[MetricSpec]]:
        """Configured metric specs keyed by tier, for the collector."""
        return {
            tier: list(tier_spec.metrics)
            for tier in Tier
            if (tier_spec := self.tier(tier)) is not None
        }
