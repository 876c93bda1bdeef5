"""Metric collection and normalization."""

from .collector import MetricsCollector
from .normalizer import METRIC_EVALUATORS, MetricRatio, NormalizedMetrics, normalize, parse_target
from .sources import MemberProbeSource, MetricSource, PrometheusQuerySource

__all__ = [
    "METRIC_EVALUATORS",
    "MemberProbeSource",
    "MetricRatio",
    "MetricSource",
    "MetricsCollector",
    "NormalizedMetrics",
    "PrometheusQuerySource",
    "normalize",
    "parse_target",
]
