"""Observability for the autoscaler."""

from .metrics import AutoscalerMetrics

__all__ = ["AutoscalerMetrics"]
