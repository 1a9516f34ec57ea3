"""Cron scheduling of pipeline jobs."""

from __future__ import annotations

from collections.abc import Callable, Coroutine, Mapping
from datetime import date
from functools import partial
from typing import TYPE_CHECKING, Any
from zoneinfo import ZoneInfo

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from earnflow.core.exceptions import ConfigurationError
from earnflow.core.logging import get_logger
from earnflow.pipeline.orchestrator import JobKind

if TYPE_CHECKING:
    from earnflow.pipeline.orchestrator import FetchOrchestrator

logger = get_logger(__name__)

MISFIRE_GRACE_SECONDS = 60

TriggerFn = Callable[..., Coroutine[Any, Any, None]]


def create_scheduler(tz: ZoneInfo) -> AsyncIOScheduler:
    """Create a new scheduler instance in the exchange timezone."""
    return AsyncIOScheduler(timezone=tz)


def build_trigger(expression: str, tz: ZoneInfo) -> CronTrigger:
    """Parse a crontab expression, raising ConfigurationError if it is invalid."""
    try:
        return CronTrigger.from_crontab(expression, timezone=tz)
    except ValueError as e:
        raise ConfigurationError(f"Invalid cron expression {expression!r}: {e}") from e


async def pipeline_job(
    orchestrator: FetchOrchestrator,
    job_kind: JobKind,
    reset: bool = False,
    trading_date: date | None = None,
) -> None:
    """Run one pipeline invocation. Never raises into the scheduler."""
    try:
        result = await orchestrator.run(job_kind, trading_date=trading_date, reset=reset)
        if result.skipped:
            logger.debug("Pipeline job skipped", job=job_kind.value, status=result.status.value)
    except Exception:
        logger.exception("Pipeline job failed", job=job_kind.value)


def register_jobs(
    scheduler: AsyncIOScheduler,
    orchestrator: FetchOrchestrator,
    schedules: Mapping[str, str],
    tz: ZoneInfo,
) -> dict[str, TriggerFn]:
    """Add one cron job per job kind.

    Returns:
        Trigger functions for manual runs, keyed by job kind (including
        ``manual``)
    """
    trigger_fns: dict[str, TriggerFn] = {}
    for kind_name, expression in schedules.items():
        kind = JobKind(kind_name)
        scheduler.add_job(
            pipeline_job,
            build_trigger(expression, tz),
            args=[orchestrator, kind],
            id=f"earnings_{kind.value}",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=MISFIRE_GRACE_SECONDS,
        )
        trigger_fns[kind.value] = partial(pipeline_job, orchestrator, kind)
        logger.debug("Scheduled job", job=kind.value, cron=expression)

    trigger_fns[JobKind.MANUAL.value] = partial(pipeline_job, orchestrator, JobKind.MANUAL)
    return trigger_fns
