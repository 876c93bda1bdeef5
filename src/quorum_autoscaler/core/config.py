"""
Centralized configuration management using Pydantic BaseSettings.
Process-wide defaults for the autoscaling engine; per-cluster behavior lives
in the cluster spec models.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import MAX_FETCH_WORKERS, MIN_FETCH_WORKERS


class Environment(str, Enum):
    """Environment types for the controller process."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class Settings(BaseSettings):
    """
    Controller settings, overridable through ``AUTOSCALER_*`` environment
    variables or a ``.env`` file.
    """

    model_config = SettingsConfigDict(
        env_prefix="AUTOSCALER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Current environment (development, staging, production)",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Application log level",
    )
    log_format: str = Field(
        default="json",
        description="Log format (json/text)",
    )
    log_file_path: Path | None = Field(
        default=None,
        description="Optional log file path",
    )

    # Metrics collection
    metrics_cache_ttl_seconds: float = Field(
        default=30.0,
        gt=0,
        le=30.0,
        description="How long a collected ClusterMetrics snapshot is served from cache",
    )
    fetch_workers: int = Field(
        default=6,
        ge=MIN_FETCH_WORKERS,
        le=MAX_FETCH_WORKERS,
        description="Concurrent metric fetch tasks per collection",
    )
    fetch_timeout_seconds: float = Field(
        default=5.0,
        ge=5.0,
        le=10.0,
        description="Timeout applied to every individual metric fetch",
    )
    prometheus_url: str = Field(
        default="http://prometheus-operated.monitoring.svc:9090",
        description="Prometheus HTTP API base URL for custom metric queries",
    )
    member_metrics_path: str = Field(
        default="/metrics/scaling",
        description="Path of the per-member scaling metrics document",
    )

    # Circuit breaker
    breaker_failure_threshold: int = Field(
        default=5,
        ge=1,
        description="Consecutive failures that open a source's circuit",
    )
    breaker_recovery_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Time an open circuit waits before allowing a probe call",
    )
    breaker_success_threshold: int = Field(
        default=1,
        ge=1,
        description="Successful probes needed to close a half-open circuit",
    )

    # Decision engine
    history_size: int = Field(
        default=100,
        ge=1,
        description="Per-cluster decision history ring buffer size",
    )
    history_retention_seconds: float = Field(
        default=3600.0,
        gt=0,
        description="History entries older than this are pruned",
    )
    reconcile_deadline_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Upper bound for one reconciliation cycle",
    )

    # Webhook
    webhook_default_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Webhook timeout when the cluster spec does not set one",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize and validate the log level name."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {v}")
        return level

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        fmt = v.lower()
        if fmt not in {"json", "text"}:
            raise ValueError(f"Invalid log format: {v}")
        return fmt

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
