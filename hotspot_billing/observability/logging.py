"""
Structured logging for the billing service.

Every line carries service, version and environment, plus whatever the
current purchase bound with `log_context` (session id, request id).
Phone numbers are masked before they reach a log line.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from hotspot_billing.config import settings


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Stamp service identity onto each event."""
    event_dict.update(
        service=settings.service_name,
        version=settings.api_version,
        environment=settings.environment,
    )
    return event_dict


def _renderer() -> Processor:
    if settings.log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())


def setup_logging() -> None:
    """
    Route structlog through stdlib logging on stdout.

    A JSON line looks like:
    {"event": "payment_status_checked", "level": "info", "logger": "...",
     "timestamp": "...Z", "service": "hotspot-billing-api", "session_id": "3f0c..."}
    """
    level = getattr(logging, settings.log_level.upper())
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    debug = level == logging.DEBUG
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_app_context,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.ExceptionRenderer() if debug else structlog.processors.format_exc_info,
        _renderer(),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Module logger, e.g. `logger.info("stk_push_accepted", checkout_request_id=token)`."""
    return structlog.get_logger(name)  # type: ignore[no-any-return]


def mask_phone(phone: str) -> str:
    """Keep only the last three digits of a phone number for logs."""
    if len(phone) <= 3:
        return "***"
    return f"{'*' * (len(phone) - 3)}{phone[-3:]}"


class log_context:
    """
    Bind keys to every log line emitted inside the block.

        with log_context(session_id=session.session_id):
            logger.info("purchase_started")
    """

    def __init__(self, **kwargs: Any) -> None:
        self.context = kwargs

    def __enter__(self) -> None:
        structlog.contextvars.bind_contextvars(**self.context)

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        structlog.contextvars.unbind_contextvars(*self.context)
