"""
Observability module - Logging, Metrics, and Tracing.
"""

from chatgate.observability.logging import get_logger, setup_logging
from chatgate.observability.metrics import metrics
from chatgate.observability.tracing import setup_tracing

__all__ = [
    "get_logger",
    "setup_logging",
    "metrics",
    "setup_tracing",
]
