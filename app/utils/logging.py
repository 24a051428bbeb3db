"""Structured Logging Configuration.

This module configures structlog once per process (web app or worker).
Outputs JSON for production log aggregation; console rendering is available
for local development.

Configuration:
- LOG_FORMAT: "json" (default) or "console"
- LOG_LEVEL: DEBUG, INFO (default), WARNING, ERROR, CRITICAL
- Context binding via structlog.contextvars (run_id, upload_token, ...)
"""

import logging
import os
import sys

import structlog

_configured = False


def configure_logging() -> None:
    """Configure structlog processors and the stdlib root handler.

    Safe to call more than once; only the first call has an effect.
    """
    global _configured
    if _configured:
        return

    level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    renderer: structlog.typing.Processor
    if os.getenv("LOG_FORMAT", "json").lower() == "console":
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _configured = True


def get_logger(name: str) -> structlog.typing.FilteringBoundLogger:
    """Get a structlog logger bound to the module name.

    Args:
        name: Module name (typically __name__)

    Returns:
        Bound structlog logger
    """
    return structlog.get_logger(name)
