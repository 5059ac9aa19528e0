"""Logging configuration for Infobyte."""

import logging
import sys
from typing import TextIO

import structlog

from infobyte.config import LoggingConfig, get_config


def configure_logging(
    settings: LoggingConfig | None = None,
    verbose: bool = False,
    stream: TextIO | None = None,
) -> None:
    """Configure structured logging for Infobyte.

    Args:
        settings: Logging section to apply (defaults to the global config)
        verbose: Force DEBUG level regardless of the configured level
        stream: Output stream (defaults to stderr)
    """
    settings = settings or get_config().logging

    level_name = "DEBUG" if verbose else settings.level.upper()
    log_level = getattr(logging, level_name, logging.INFO)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if settings.format == "console":
        processors.append(structlog.dev.ConsoleRenderer())
    else:
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream or sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    """Get a logger instance.

    Args:
        name: Optional logger name (usually __name__)

    Returns:
        Configured structlog logger
    """
    if name:
        return structlog.get_logger(name)
    return structlog.get_logger()


log = get_logger(__name__)
