"""structlog configuration shared by every module.

Call :func:`setup_logging` once at process start (scripts do this);
modules obtain loggers with ``log = get_logger(__name__)`` and emit
snake_case events with key/value context::

    log.info("order_filled", order_id=order.order_id, price=str(price))
"""

from __future__ import annotations

import logging
import sys

import structlog


def setup_logging(level: str | None = None, json_output: bool | None = None) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        level: Log level name. Defaults to ``Settings.log_level``.
        json_output: Render JSON lines instead of the console renderer.
            Defaults to ``Settings.log_json``.
    """
    if level is None or json_output is None:
        from config.settings import get_settings

        settings = get_settings()
        level = level or settings.log_level
        json_output = settings.log_json if json_output is None else json_output

    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=log_level)

    renderer: structlog.types.Processor
    if json_output:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a bound logger named after the calling module."""
    return structlog.get_logger(name)
