"""Structured logging configuration with structlog.

Application loggers and stdlib loggers (uvicorn, asyncpg, apscheduler) share
one processor chain, so every line carries the same timestamp, level and
service fields whichever library emitted it.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from earnflow.config import Settings

SERVICE_NAME = "earnflow"

# httpx logs every request at INFO; apscheduler logs every job run
NOISY_LOGGERS = ("httpx", "httpcore", "apscheduler")


def _service_fields(env: str) -> structlog.types.Processor:
    def add_service(
        _logger: Any, _method: str, event_dict: structlog.types.EventDict
    ) -> structlog.types.EventDict:
        event_dict.setdefault("service", SERVICE_NAME)
        event_dict.setdefault("env", env)
        return event_dict

    return add_service


def setup_logging(settings: "Settings") -> None:
    """Configure structlog and route stdlib logging through the same renderer."""
    level = getattr(logging, settings.log_level)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _service_fields(settings.env),
    ]

    # Colored console output in development, JSON everywhere else
    renderers: list[structlog.types.Processor]
    if settings.env == "development":
        renderers = [structlog.dev.ConsoleRenderer(colors=True)]
    else:
        renderers = [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared_processors,
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *renderers,
        ],
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger instance."""
    logger: structlog.stdlib.BoundLogger = structlog.get_logger(name)
    return logger


@contextmanager
def run_context(job: str, run_id: str, day: date) -> Iterator[None]:
    """Bind job, run id and trading date to every log line inside the block."""
    with structlog.contextvars.bound_contextvars(job=job, run_id=run_id, date=day.isoformat()):
        yield
