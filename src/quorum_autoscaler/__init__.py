"""
Quorum-aware autoscaling decision engine for clustered databases.

Decides per reconciliation cycle how far to scale the quorum-bearing primary
tier and the read-replica secondary tier.
"""

from .domain import AutoScalingSpec, ClusterRef, ClusterState, ScalingDecision, ScalingRecommendation
from .scaling import AutoScaler, create_autoscaler

__version__ = "1.0.0"

__all__ = [
    "AutoScaler",
    "AutoScalingSpec",
    "ClusterRef",
    "ClusterState",
    "ScalingDecision",
    "ScalingRecommendation",
    "create_autoscaler",
]
