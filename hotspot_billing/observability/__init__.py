"""
Observability module - Logging, Metrics, and Tracing.
"""

from hotspot_billing.observability.logging import get_logger, log_context, setup_logging
from hotspot_billing.observability.metrics import metrics
from hotspot_billing.observability.tracing import setup_tracing

__all__ = [
    "get_logger",
    "log_context",
    "setup_logging",
    "metrics",
    "setup_tracing",
]
