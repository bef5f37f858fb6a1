"""
Observability module - Logging, Metrics, and Tracing.
"""

from credit_redemption.observability.logging import log_context, setup_logging
from credit_redemption.observability.metrics import metrics
from credit_redemption.observability.tracing import setup_tracing, trace_operation

__all__ = [
    "log_context",
    "setup_logging",
    "metrics",
    "setup_tracing",
    "trace_operation",
]
