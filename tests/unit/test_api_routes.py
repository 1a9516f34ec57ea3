"""Tests for the system API endpoints and the health/readiness probes."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any
from unittest.mock import AsyncMock, MagicMock
from zoneinfo import ZoneInfo

import httpx
import pytest
from fastapi import FastAPI

from earnflow.api.router import api_router
from earnflow.coordination.daily_state import DailyState
from earnflow.core.dependencies import get_pipeline_state
from earnflow.main import app as main_app

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@dataclass
class _MockPipelineState:
    settings: Any = None
    state_machine: Any = None
    cache: Any = None
    publisher: Any = None
    scheduler: Any = None
    redis: Any = None
    db: Any = None
    trigger_fns: dict[str, Any] = field(default_factory=dict)


def _make_job(job_id: str, next_run: datetime | None) -> MagicMock:
    job = MagicMock()
    job.id = job_id
    job.next_run_time = next_run
    return job


@pytest.fixture()
def pipeline_state() -> _MockPipelineState:
    settings = MagicMock()
    settings.env = "development"
    settings.tz = ZoneInfo("America/New_York")

    state_machine = MagicMock()
    state_machine.get_state = AsyncMock(return_value=DailyState.FETCH_DONE)

    cache = MagicMock()
    cache.get_version = AsyncMock(return_value=7)
    cache.clear_namespace = AsyncMock(return_value=3)
    cache.stats = AsyncMock(
        return_value={"version": 7, "staging": 7, "keys_per_version": {"7": 4}, "negative": 1}
    )

    publisher = MagicMock()
    publisher.get_latest_meta = AsyncMock(
        return_value={"date": "2025-09-09", "status": "success", "version": 7}
    )

    scheduler = MagicMock()
    scheduler.running = True
    scheduler.get_jobs.return_value = [
        _make_job("earnings_bootstrap", datetime(2025, 9, 10, 6, 0, tzinfo=timezone.utc)),
        _make_job("earnings_paused", None),
    ]

    redis = MagicMock()
    redis.ping = AsyncMock(return_value=True)
    db = MagicMock()
    db.ping = AsyncMock(return_value=True)

    return _MockPipelineState(
        settings=settings,
        state_machine=state_machine,
        cache=cache,
        publisher=publisher,
        scheduler=scheduler,
        redis=redis,
        db=db,
        trigger_fns={"manual": AsyncMock(), "market_hours": AsyncMock()},
    )


@pytest.fixture()
def app(pipeline_state: _MockPipelineState) -> FastAPI:
    """Create a FastAPI app with the pipeline dependency overridden."""
    test_app = FastAPI()
    test_app.include_router(api_router, prefix="/api/v1")
    test_app.dependency_overrides[get_pipeline_state] = lambda: pipeline_state
    return test_app


@pytest.fixture()
async def client(app: FastAPI):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture()
async def main_client(pipeline_state: _MockPipelineState):
    main_app.dependency_overrides[get_pipeline_state] = lambda: pipeline_state
    transport = httpx.ASGITransport(app=main_app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    main_app.dependency_overrides.clear()


# ===========================================================================
# /system/status
# ===========================================================================


class TestStatus:
    @pytest.mark.anyio
    async def test_status(self, client: httpx.AsyncClient) -> None:
        resp = await client.get("/api/v1/system/status")

        assert resp.status_code == 200
        data = resp.json()
        assert data["env"] == "development"
        assert data["daily_state"] == "FETCH_DONE"
        assert data["cache_version"] == 7
        assert data["latest"]["status"] == "success"
        assert data["jobs"] == [
            {"id": "earnings_bootstrap", "next_run": "2025-09-10T06:00:00+00:00"},
            {"id": "earnings_paused", "next_run": None},
        ]
        date.fromisoformat(data["date"])

    @pytest.mark.anyio
    async def test_status_without_pipeline(self) -> None:
        bare = FastAPI()
        bare.include_router(api_router, prefix="/api/v1")
        transport = httpx.ASGITransport(app=bare)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
            resp = await c.get("/api/v1/system/status")

        assert resp.status_code == 503


# ===========================================================================
# /system/trigger/{job_kind}
# ===========================================================================


class TestTrigger:
    @pytest.mark.anyio
    async def test_manual_with_reset(
        self, client: httpx.AsyncClient, pipeline_state: _MockPipelineState
    ) -> None:
        resp = await client.post(
            "/api/v1/system/trigger/manual", params={"reset": "true", "date": "2025-09-09"}
        )

        assert resp.status_code == 200
        assert resp.json() == {"status": "triggered", "job": "manual"}
        pipeline_state.scheduler.add_job.assert_called_once_with(
            pipeline_state.trigger_fns["manual"],
            kwargs={"trading_date": date(2025, 9, 9), "reset": True},
            id="earnings_manual_manual",
            replace_existing=True,
        )

    @pytest.mark.anyio
    async def test_scheduled_kind(
        self, client: httpx.AsyncClient, pipeline_state: _MockPipelineState
    ) -> None:
        resp = await client.post("/api/v1/system/trigger/market_hours")

        assert resp.status_code == 200
        kwargs = pipeline_state.scheduler.add_job.call_args.kwargs["kwargs"]
        assert kwargs == {"trading_date": None}

    @pytest.mark.anyio
    async def test_reset_only_for_manual(
        self, client: httpx.AsyncClient, pipeline_state: _MockPipelineState
    ) -> None:
        resp = await client.post("/api/v1/system/trigger/market_hours", params={"reset": "true"})

        assert resp.status_code == 400
        pipeline_state.scheduler.add_job.assert_not_called()

    @pytest.mark.anyio
    async def test_unregistered_job(self, client: httpx.AsyncClient) -> None:
        resp = await client.post("/api/v1/system/trigger/weekend")

        assert resp.status_code == 503

    @pytest.mark.anyio
    async def test_unknown_kind(self, client: httpx.AsyncClient) -> None:
        resp = await client.post("/api/v1/system/trigger/hourly")

        assert resp.status_code == 422


# ===========================================================================
# /system/cache/*
# ===========================================================================


class TestCache:
    @pytest.mark.anyio
    async def test_clear(
        self, client: httpx.AsyncClient, pipeline_state: _MockPipelineState
    ) -> None:
        resp = await client.post("/api/v1/system/cache/clear", json={"pattern": "earnings:*"})

        assert resp.status_code == 200
        assert resp.json() == {"pattern": "earnings:*", "deleted": 3}
        pipeline_state.cache.clear_namespace.assert_awaited_once_with("earnings:*")

    @pytest.mark.anyio
    async def test_clear_requires_pattern(self, client: httpx.AsyncClient) -> None:
        resp = await client.post("/api/v1/system/cache/clear", json={"pattern": ""})

        assert resp.status_code == 422

    @pytest.mark.anyio
    async def test_stats(self, client: httpx.AsyncClient) -> None:
        resp = await client.get("/api/v1/system/cache/stats")

        assert resp.status_code == 200
        assert resp.json()["keys_per_version"] == {"7": 4}


# ===========================================================================
# Infrastructure endpoints
# ===========================================================================


class TestInfrastructure:
    @pytest.mark.anyio
    async def test_health(self, main_client: httpx.AsyncClient) -> None:
        resp = await main_client.get("/health")

        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    @pytest.mark.anyio
    async def test_ready(self, main_client: httpx.AsyncClient) -> None:
        resp = await main_client.get("/ready")

        assert resp.status_code == 200
        assert resp.json() == {"status": "ready", "redis": "ok", "db": "ok", "scheduler": "ok"}

    @pytest.mark.anyio
    async def test_not_ready_when_redis_down(
        self, main_client: httpx.AsyncClient, pipeline_state: _MockPipelineState
    ) -> None:
        pipeline_state.redis.ping = AsyncMock(side_effect=ConnectionError("down"))
        pipeline_state.db.ping = AsyncMock(return_value=False)

        resp = await main_client.get("/ready")

        data = resp.json()
        assert data["status"] == "not_ready"
        assert data["redis"] == "error"
        assert data["db"] == "error"
