"""
Structured Logging with Structlog.

Provides JSON-formatted logs with transaction and device context.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from credit_redemption.config import Settings, get_settings


def _app_context_processor(settings: Settings) -> Processor:
    """Build a processor adding application-level context to all log entries."""

    def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict["service"] = settings.service_name
        event_dict["version"] = settings.service_version
        return event_dict

    return add_app_context


def setup_logging(settings: Settings | None = None) -> None:
    """
    Configure structured logging with structlog.

    Logs are formatted as JSON for machine parsing with the following structure:
    {
        "event": "ledger_redeem_signed_succeeded",
        "level": "info",
        "timestamp": "2025-09-08T12:00:00.123456Z",
        "logger": "credit_redemption.services.ledger_client",
        "service": "credit-redemption",
        "version": "0.1.0",
        "transaction_id": "2000000123",
        ...additional context
    }
    """
    settings = settings or get_settings()

    # Configure standard library logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level.upper()),
    )

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        _app_context_processor(settings),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    if settings.log_level.upper() == "DEBUG":
        processors.append(structlog.processors.ExceptionRenderer())
    else:
        processors.append(structlog.processors.format_exc_info)

    if settings.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


class log_context:
    """
    Context manager for adding structured logging context.

    Usage:
        with log_context(transaction_id="2000000123", device_id="abc"):
            logger.info("redeeming_transaction")
            # All logs within this context include transaction_id and device_id
    """

    def __init__(self, **kwargs: Any) -> None:
        self.context = kwargs

    def __enter__(self) -> None:
        """Enter context - bind context variables."""
        structlog.contextvars.bind_contextvars(**self.context)

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Exit context - clear context variables."""
        structlog.contextvars.unbind_contextvars(*self.context.keys())
