"""Centralized structured logging configuration for the upload server.

Provides a single point of configuration for structlog across the entire
backend. The CLI calls ``configure_logging`` once at startup; modules use
``structlog.get_logger(__name__)``; scripts use ``get_logger``.

Features:
- JSON-formatted log output for production
- Console-friendly colored output for development
- Request ID context binding
- Consistent timestamp format (ISO-8601)
"""

import logging
import os
import sys

import structlog


def configure_logging(
    *,
    json_logs: bool | None = None,
    log_level: str = "INFO",
) -> None:
    """Configure structlog for the entire application.

    Subsequent calls replace the previous configuration.

    Args:
        json_logs: Force JSON output. Defaults to ``True`` when
            ``ENVIRONMENT`` is ``"production"``.
        log_level: Root log level (DEBUG, INFO, WARNING, ERROR).
    """
    if json_logs is None:
        json_logs = os.getenv("ENVIRONMENT", "development") == "production"

    log_level_value = getattr(logging, log_level.upper(), logging.INFO)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if json_logs:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[*shared_processors, renderer],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Mirror level to stdlib root so structlog's ``filter_by_level`` works.
    # Errors go to stderr, everything else to stdout.
    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.addFilter(lambda record: record.levelno < logging.ERROR)
    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(logging.ERROR)
    logging.basicConfig(
        format="%(message)s",
        handlers=[stdout_handler, stderr_handler],
        level=log_level_value,
        force=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a bound logger for *name*.

    Args:
        name: Typically ``__name__`` of the calling module.
    """
    return structlog.get_logger(name)
