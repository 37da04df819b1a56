"""Observability layer - logging and metrics."""

from notepress.observability.logging import setup_logging
from notepress.observability.metrics import MetricsCollector, get_metrics

__all__ = ["setup_logging", "MetricsCollector", "get_metrics"]
