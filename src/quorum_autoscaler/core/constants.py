"""
Autoscaler constants and enumerations.
Central location for magic numbers shared across components.
"""

from enum import Enum
from typing import Final


class Tier(str, Enum):
    """Cluster tiers scaled independently."""

    PRIMARY = "primaries"
    SECONDARY = "secondaries"


# Decision engine
DEFAULT_TOLERANCE: Final[float] = 0.15
DEFAULT_COOLDOWN_SECONDS: Final[int] = 60

# Metrics collection
MIN_FETCH_WORKERS: Final[int] = 4
MAX_FETCH_WORKERS: Final[int] = 8

# Behavior defaults (Kubernetes HPA v2 semantics)
DEFAULT_SCALE_UP_WINDOW_SECONDS: Final[int] = 0
DEFAULT_SCALE_DOWN_WINDOW_SECONDS: Final[int] = 300
DEFAULT_POLICY_PERIOD_SECONDS: Final[int] = 15
DEFAULT_SCALE_UP_PODS: Final[int] = 4
DEFAULT_SCALE_UP_PERCENT: Final[int] = 100
DEFAULT_SCALE_DOWN_PERCENT: Final[int] = 100

# HPA rendering
DEFAULT_CPU_TARGET_PERCENT: Final[int] = 70
QUERY_LATENCY_POD_METRIC: Final[str] = "neo4j_query_latency_p99"

# Kubernetes labels
LABEL_NAME: Final[str] = "app.kubernetes.io/name"
LABEL_INSTANCE: Final[str] = "app.kubernetes.io/instance"
LABEL_COMPONENT: Final[str] = "app.kubernetes.io/component"
APP_NAME: Final[str] = "neo4j"

# Reason prefixes
QUORUM_BREAK_PREFIX: Final[str] = "HIGH SEVERITY: quorum break permitted"
ZONE_PLAN_INFEASIBLE: Final[str] = "ZonePlanInfeasible"
COOLDOWN_REASON: Final[str] = "cooldown active"
