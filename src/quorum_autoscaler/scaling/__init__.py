"""Scaling decisions: engine, safety guards, planners and the reconcile orchestrator."""

from .autoscaler import AutoScaler, create_autoscaler
from .behavior import BehaviorPolicyEngine, ClampResult
from .decision_engine import DecisionEngine
from .history import ScalingHistory, ScalingHistoryStore
from .hpa import build_secondary_hpa
from .quorum_guard import GuardResult, QuorumGuard
from .webhook import WebhookClient, WebhookResponse, arbitrate
from .zone_planner import ZonePlanner

__all__ = [
    "AutoScaler",
    "BehaviorPolicyEngine",
    "ClampResult",
    "DecisionEngine",
    "GuardResult",
    "QuorumGuard",
    "ScalingHistory",
    "ScalingHistoryStore",
    "WebhookClient",
    "WebhookResponse",
    "ZonePlanner",
    "arbitrate",
    "build_secondary_hpa",
    "create_autoscaler",
]
