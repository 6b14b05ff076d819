"""Logging and metrics shared by every tokengate module.

Modules log through ``get_logger(__name__)`` with dotted event names
(``tokengate.<component>.<event>``) and record counters on the process-wide
collector returned by ``get_metrics()``.
"""

from tokengate.observability.logging import (
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    sanitize_for_logging,
)
from tokengate.observability.metrics import MetricsCollector, get_metrics, reset_metrics

__all__ = [
    "MetricsCollector",
    "bind_context",
    "clear_context",
    "configure_logging",
    "get_logger",
    "get_metrics",
    "reset_metrics",
    "sanitize_for_logging",
]
