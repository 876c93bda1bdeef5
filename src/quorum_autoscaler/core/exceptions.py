"""
Custom exception classes for the autoscaling engine.
Every failure mode of a reconciliation cycle has a specific type so callers
can degrade to "no change" instead of stalling the loop.
"""

from typing import Any


class AutoscalerException(Exception):
    """Base exception class for all autoscaler exceptions."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize base exception.

        Args:
            message: Error message
            error_code: Optional error code for categorization
            details: Optional additional error details
        """
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for status reporting."""
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationException(AutoscalerException):
    """Raised when the autoscaling configuration is invalid or missing."""

    pass


class InvalidMetricTargetError(AutoscalerException):
    """Raised when a metric target cannot be parsed or is not positive."""

    def __init__(self, message: str, target: str | None = None, **kwargs: Any) -> None:
        details = kwargs.pop("details", {})
        if target is not None:
            details["target"] = target
        super().__init__(message, details=details, **kwargs)
        self.target = target


class MetricSourceError(AutoscalerException):
    """Raised by a metric source when a single fetch fails."""

    def __init__(self, message: str, source: str | None = None, **kwargs: Any) -> None:
        details = kwargs.pop("details", {})
        if source is not None:
            details["source"] = source
        super().__init__(message, details=details, **kwargs)
        self.source = source


class CircuitBreakerOpenError(MetricSourceError):
    """Raised when a call is short-circuited by an open breaker."""

    pass


class MetricsUnavailableError(AutoscalerException):
    """
    Raised when every source for at least one tier failed.

    ``partial`` carries whatever was collected for the other tiers so the
    caller can still decide for them.
    """

    def __init__(self, message: str, tiers: list[str], partial: Any = None, **kwargs: Any) -> None:
        details = kwargs.pop("details", {})
        details["tiers"] = list(tiers)
        super().__init__(message, details=details, **kwargs)
        self.tiers = list(tiers)
        self.partial = partial


class WebhookError(AutoscalerException):
    """Raised when the custom algorithm webhook fails or answers malformed JSON."""

    def __init__(self, message: str, url: str | None = None, **kwargs: Any) -> None:
        details = kwargs.pop("details", {})
        if url is not None:
            details["url"] = url
        super().__init__(message, details=details, **kwargs)
        self.url = url


class WebhookTimeoutError(WebhookError):
    """Raised when the webhook does not answer within its timeout."""

    pass
