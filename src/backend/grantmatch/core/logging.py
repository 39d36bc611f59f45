"""
Structured logging configuration using structlog.

JSON lines in production for log aggregation, colored console output
while developing. Workers bind the current job to the context so every
event emitted while the job runs, from the fetcher down to the
repositories, carries its `job_id` and `source_id`.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from structlog.types import Processor

from grantmatch.core.config import get_settings

# Libraries that log every request at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "asyncio", "azure", "openai", "playwright")


def setup_logging(level: str | None = None) -> None:
    """
    Configure structlog and the standard library root logger.

    Args:
        level: Overrides `log_level` from settings
    """
    settings = get_settings()
    level_no = getattr(logging, (level or settings.log_level).upper())

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    if settings.log_format == "json":
        # Korean titles stay readable in the aggregated logs
        renderer: list[Processor] = [
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(ensure_ascii=False),
        ]
    else:
        renderer = [structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())]

    structlog.configure(
        processors=[*shared_processors, *renderer],
        wrapper_class=structlog.make_filtering_bound_logger(level_no),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level_no)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None, **initial_context: Any) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger, optionally with bound context.

    Example:
        >>> logger = get_logger(__name__, source_id="NTIS")
        >>> logger.info("listing_fetched", records=12)
    """
    logger = structlog.get_logger(name)
    if initial_context:
        logger = logger.bind(**initial_context)
    return logger


@contextmanager
def job_context(job_id: str, source_id: str, **extra: Any) -> Iterator[None]:
    """Bind a job's identifiers to every event logged inside the block."""
    with structlog.contextvars.bound_contextvars(job_id=job_id, source_id=source_id, **extra):
        yield


class LoggerMixin:
    """Gives a class a `logger` bound to its name."""

    @property
    def logger(self) -> structlog.stdlib.BoundLogger:
        return get_logger(self.__class__.__name__)
