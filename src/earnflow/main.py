"""FastAPI application entry point."""

import asyncio
from collections.abc import AsyncIterator, Awaitable
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI

from earnflow.api import api_router
from earnflow.config import get_settings
from earnflow.core.dependencies import PipelineStateDep
from earnflow.core.logging import get_logger, setup_logging
from earnflow.runtime import pipeline_lifespan

logger = get_logger(__name__)

READY_CHECK_TIMEOUT_SECONDS = 2.0


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Run the pipeline scheduler for as long as the HTTP server is up."""
    settings = get_settings()
    setup_logging(settings)

    async with pipeline_lifespan(settings) as state:
        app.state.pipeline = state
        logger.info("Earnflow ready", env=settings.env, timezone=settings.exchange_timezone)
        yield
        app.state.pipeline = None


app = FastAPI(
    title="Earnflow",
    description="Daily earnings ingestion and publish pipeline",
    version="0.1.0",
    lifespan=lifespan,
)


async def _probe(name: str, check: Awaitable[Any]) -> str:
    try:
        result = await asyncio.wait_for(check, timeout=READY_CHECK_TIMEOUT_SECONDS)
    except Exception as e:
        logger.warning("Readiness check failed", check=name, error=str(e))
        return "error"
    return "ok" if result else "error"


@app.get("/health")
async def health() -> dict[str, str]:
    """Liveness: the process is up."""
    return {"status": "ok"}


@app.get("/ready")
async def ready(state: PipelineStateDep) -> dict[str, str]:
    """Readiness: Redis and PostgreSQL answer and the scheduler is running."""
    redis_status, db_status = await asyncio.gather(
        _probe("redis", state.redis.ping()),
        _probe("db", state.db.ping()),
    )
    checks = {
        "redis": redis_status,
        "db": db_status,
        "scheduler": "ok" if state.scheduler and state.scheduler.running else "error",
    }
    status = "ready" if all(v == "ok" for v in checks.values()) else "not_ready"
    return {"status": status, **checks}


app.include_router(api_router, prefix="/api/v1")
