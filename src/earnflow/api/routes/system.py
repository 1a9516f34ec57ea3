"""System status, manual trigger and cache remediation endpoints."""

from datetime import date
from typing import Any

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from earnflow.core.dates import exchange_today
from earnflow.core.dependencies import CacheDep, PipelineStateDep
from earnflow.pipeline.orchestrator import JobKind

router = APIRouter()


class CacheClearRequest(BaseModel):
    pattern: str = Field(min_length=1, description="Base-key glob, e.g. 'earnings:*'")


@router.get("/status")
async def system_status(state: PipelineStateDep) -> dict[str, Any]:
    today = exchange_today(state.settings.tz)
    daily_state = await state.state_machine.get_state(today)
    jobs = []
    if state.scheduler:
        for job in state.scheduler.get_jobs():
            next_run = job.next_run_time
            jobs.append({"id": job.id, "next_run": next_run.isoformat() if next_run else None})
    return {
        "env": state.settings.env,
        "date": today.isoformat(),
        "daily_state": daily_state.value,
        "cache_version": await state.cache.get_version(),
        "latest": await state.publisher.get_latest_meta(),
        "jobs": jobs,
    }


@router.post("/trigger/{job_kind}")
async def trigger_job(
    job_kind: JobKind,
    state: PipelineStateDep,
    reset: bool = Query(default=False, description="Manual runs only: reset the day first"),
    trading_date: date | None = Query(default=None, alias="date"),
) -> dict[str, str]:
    """Trigger a pipeline run. The run happens in the scheduler; poll /status."""
    if reset and job_kind is not JobKind.MANUAL:
        raise HTTPException(status_code=400, detail="reset is only allowed for manual runs")
    trigger = state.trigger_fns.get(job_kind.value)
    if state.scheduler is None or trigger is None:
        raise HTTPException(status_code=503, detail=f"Job {job_kind.value} not available")

    kwargs: dict[str, Any] = {"trading_date": trading_date}
    if job_kind is JobKind.MANUAL:
        kwargs["reset"] = reset
    state.scheduler.add_job(
        trigger,
        kwargs=kwargs,
        id=f"earnings_{job_kind.value}_manual",
        replace_existing=True,
    )
    return {"status": "triggered", "job": job_kind.value}


@router.post("/cache/clear")
async def clear_cache(body: CacheClearRequest, cache: CacheDep) -> dict[str, Any]:
    """Invalidate every cached version of keys matching ``pattern``."""
    deleted = await cache.clear_namespace(body.pattern)
    return {"pattern": body.pattern, "deleted": deleted}


@router.get("/cache/stats")
async def cache_stats(cache: CacheDep) -> dict[str, Any]:
    return await cache.stats()
