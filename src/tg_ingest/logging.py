"""Structured logging for the ingestion bot.

Every log line carries the ``logger`` name it was emitted from
(``tg_ingest.pipeline``, ``tg_ingest.storage`` and so on). Production
renders JSON lines; development renders coloured console output.
"""

import logging
import sys

import structlog

from tg_ingest.config import get_settings

# python-telegram-bot, its HTTP client, webhook server and job queue
QUIET_LOGGERS = ("telegram", "httpx", "httpcore", "tornado", "apscheduler")


def setup_logging() -> None:
    """Configure structlog and route third-party stdlib logging to stdout."""
    settings = get_settings()
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    renderer = (
        structlog.dev.ConsoleRenderer(colors=True)
        if settings.is_development
        else structlog.processors.JSONRenderer()
    )
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if settings.is_development:
        processors.append(structlog.dev.set_exc_info)
    else:
        # JSON output needs tracebacks as a string field
        processors.append(structlog.processors.format_exc_info)
    processors.append(renderer)

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stdout,
        level=log_level,
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger that tags every event with *name*.

    The binding is lazy, so module-level loggers created before
    ``setup_logging`` still pick up the final configuration.
    """
    return structlog.get_logger(name, logger=name)
