"""Domain models: cluster autoscaling spec and runtime value objects."""

from .models import (
    ClusterMetrics,
    ClusterRef,
    ClusterState,
    DecisionSource,
    NodeMetrics,
    Proposal,
    QuorumState,
    ScalingAction,
    ScalingDecision,
    ScalingHistoryEntry,
    ScalingRecommendation,
    ZonePlan,
)
from .spec import (
    ArbitrationPolicy,
    AutoScalingSpec,
    BehaviorConfig,
    MetricKind,
    MetricSpec,
    PolicyType,
    QuorumProtection,
    ScaleDirection,
    ScalingPolicy,
    ScalingRules,
    SelectPolicy,
    TierSpec,
    TriggerPolicy,
    WebhookConfig,
    ZoneAwareConfig,
)

__all__ = [
    "ArbitrationPolicy",
    "AutoScalingSpec",
    "BehaviorConfig",
    "ClusterMetrics",
    "ClusterRef",
    "ClusterState",
    "DecisionSource",
    "MetricKind",
    "MetricSpec",
    "NodeMetrics",
    "PolicyType",
    "Proposal",
    "QuorumProtection",
    "QuorumState",
    "ScaleDirection",
    "ScalingAction",
    "ScalingDecision",
    "ScalingHistoryEntry",
    "ScalingPolicy",
    "ScalingRecommendation",
    "ScalingRules",
    "SelectPolicy",
    "TierSpec",
    "TriggerPolicy",
    "WebhookConfig",
    "ZoneAwareConfig",
    "ZonePlan",
]
