"""
Logging for the autoscaler.

Handlers live on the package logger only; module loggers propagate to it.
Records name the cluster, tier and metric source they concern, either through
a ``ClusterLogger`` or ``extra=``. JSON output lifts those to top-level keys
so one cluster's decisions can be filtered out of a shared controller log.
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import MutableMapping
from datetime import datetime, timezone
from enum import Enum
from functools import cache
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .config import settings
from .constants import Tier

if TYPE_CHECKING:
    from ..domain.models import ClusterRef

PACKAGE_LOGGER = "quorum_autoscaler"
CONTEXT_FIELDS = ("cluster", "namespace", "tier", "source")
TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(context)s%(message)s"


def _field(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


class ContextFilter(logging.Filter):
    """Renders the context fields as a ``[namespace/cluster tier source]`` prefix."""

    def filter(self, record: logging.LogRecord) -> bool:
        cluster = getattr(record, "cluster", None)
        namespace = getattr(record, "namespace", None)
        parts = []
        if cluster is not None:
            parts.append(f"{namespace}/{cluster}" if namespace else str(cluster))
        for name in ("tier", "source"):
            value = getattr(record, name, None)
            if value is not None:
                parts.append(str(_field(value)))
        record.context = f"[{' '.join(parts)}] " if parts else ""
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per record with the context fields at top level."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                log_data[name] = _field(value)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def configure_logging(
    level: str | None = None,
    use_json: bool | None = None,
    log_file: Path | None = None,
) -> logging.Logger:
    """
    (Re)configure the package logger.

    Args:
        level: Log level name (default from settings)
        use_json: JSON lines instead of text (default from settings)
        log_file: Optional extra file handler (default from settings)

    Returns:
        The package logger
    """
    logger = logging.getLogger(PACKAGE_LOGGER)

    level = level or settings.log_level
    use_json = use_json if use_json is not None else (settings.log_format == "json")
    log_file = log_file or settings.log_file_path

    log_level = getattr(logging, level.upper(), logging.INFO)
    logger.setLevel(log_level)
    logger.handlers.clear()

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    for handler in handlers:
        handler.setLevel(log_level)
        handler.addFilter(ContextFilter())
        handler.setFormatter(JSONFormatter() if use_json else logging.Formatter(TEXT_FORMAT))
        logger.addHandler(handler)

    logger.propagate = False
    return logger


@cache
def get_logger(name: str) -> logging.Logger:
    """Module logger; configures the package logger on first use."""
    package = logging.getLogger(PACKAGE_LOGGER)
    if not package.handlers:
        configure_logging()
    return logging.getLogger(name)


class ClusterLogger(logging.LoggerAdapter):
    """Logger adapter bound to one cluster and optionally one tier."""

    def __init__(self, logger: logging.Logger, cluster: ClusterRef, tier: Tier | None = None) -> None:
        context: dict[str, Any] = {"cluster": cluster.name, "namespace": cluster.namespace}
        if tier is not None:
            context["tier"] = tier.value
        super().__init__(logger, context)
        self.cluster = cluster

    def for_tier(self, tier: Tier) -> ClusterLogger:
        return ClusterLogger(self.logger, self.cluster, tier)

    def process(self, msg: str, kwargs: MutableMapping[str, Any]) -> tuple[str, MutableMapping[str, Any]]:
        # bound cluster context wins over per-call extra such as source=
        kwargs["extra"] = {**kwargs.get("extra", {}), **self.extra}
        return msg, kwargs


def get_logger_with_context(name: str, cluster: ClusterRef, tier: Tier | None = None) -> ClusterLogger:
    """Logger for ``name`` whose records carry ``cluster`` (and ``tier``)."""
    return ClusterLogger(get_logger(name), cluster, tier)
