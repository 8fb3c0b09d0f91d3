"""Structured logging configuration for the dual n-back trainer."""

from __future__ import annotations

import logging
import os
import sys

import structlog
from structlog.types import Processor

LOG_LEVEL_ENV = "NBACK_LOG_LEVEL"
LOG_FORMAT_ENV = "NBACK_LOG_FORMAT"


def configure_logging(level: str | None = None, *, json: bool | None = None) -> None:
    """Configure structlog on top of the standard library logging module.

    ``level`` and ``json`` default to the NBACK_LOG_LEVEL / NBACK_LOG_FORMAT
    environment variables ("WARNING" and console output when unset).
    """

    level_name = (level or os.environ.get(LOG_LEVEL_ENV) or "WARNING").upper()
    if json is None:
        json = os.environ.get(LOG_FORMAT_ENV, "").strip().lower() == "json"

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    if json:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level_name, logging.WARNING),
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a named logger. Output follows whatever ``configure_logging`` set up."""

    return structlog.get_logger(name)
