"""Structured logging infrastructure with structlog."""

import logging
import sys
from typing import Any, Optional

import structlog
from structlog.types import EventDict

from .settings import settings


def _add_service_name(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("service", settings.notifier_service_name)
    return event_dict


def setup_logging(log_level: Optional[str] = None) -> None:
    """
    Configure structured logging with structlog.

    Args:
        log_level: Overrides NOTIFIER_LOG_LEVEL. DEBUG switches to JSON output.
    """
    level_name = (log_level or settings.notifier_log_level).upper()
    level = getattr(logging, level_name, logging.INFO)

    # The realtime client and uvicorn log through the standard library
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    logging.getLogger("realtime").setLevel(max(level, logging.INFO))

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,  # trace_id
            structlog.processors.add_log_level,
            _add_service_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer()
            if level_name == "DEBUG"
            else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
