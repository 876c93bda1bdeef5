"""Core module containing configuration, constants, and shared utilities."""

from .config import Settings, get_settings, settings
from .constants import DEFAULT_COOLDOWN_SECONDS, DEFAULT_TOLERANCE, Tier
from .exceptions import (
    AutoscalerException,
    CircuitBreakerOpenError,
    ConfigurationException,
    InvalidMetricTargetError,
    MetricSourceError,
    MetricsUnavailableError,
    WebhookError,
    WebhookTimeoutError,
)
from .logging import get_logger, get_logger_with_context

__all__ = [
    "settings",
    "Settings",
    "get_settings",
    "Tier",
    "DEFAULT_TOLERANCE",
    "DEFAULT_COOLDOWN_SECONDS",
    "AutoscalerException",
    "ConfigurationException",
    "InvalidMetricTargetError",
    "MetricSourceError",
    "CircuitBreakerOpenError",
    "MetricsUnavailableError",
    "WebhookError",
    "WebhookTimeoutError",
    "get_logger",
    "get_logger_with_context",
]
