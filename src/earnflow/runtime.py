"""Pipeline lifecycle used by the FastAPI server.

Provides `pipeline_lifespan()`: an async context manager that validates
configuration, connects Redis and PostgreSQL, wires providers, coordination,
cache, publisher and orchestrator together, and starts the cron scheduler.

Configuration (set in .env):
    - FINNHUB_API_KEY: Earnings calendar and company profiles
    - POLYGON_API_KEY: Prices, ticker details and guidance
    - DATABASE_URL, REDIS_URL
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING

from redis.asyncio import Redis

from earnflow.cache.versioning import VersionedCache
from earnflow.config import Settings
from earnflow.coordination.daily_state import DailyStateMachine
from earnflow.coordination.lock import InMemoryLockStore, LockManager, LockStore, RedisLockStore
from earnflow.core.exceptions import ConfigurationError
from earnflow.core.logging import get_logger
from earnflow.pipeline.orchestrator import FetchOrchestrator, OrchestratorConfig
from earnflow.pipeline.publisher import SnapshotPublisher
from earnflow.processing.coverage import CoverageThresholds
from earnflow.providers.base import RateLimiter
from earnflow.providers.finnhub import FinnhubClient
from earnflow.providers.market_data import MarketDataService
from earnflow.providers.polygon import PolygonClient
from earnflow.scheduler import TriggerFn, build_trigger, create_scheduler, register_jobs
from earnflow.storage.database import Database, close_database, init_database
from earnflow.storage.redis import close_redis, init_redis

if TYPE_CHECKING:
    from apscheduler.schedulers.asyncio import AsyncIOScheduler

logger = get_logger(__name__)


@dataclass
class PipelineState:
    """Holds references to all running pipeline resources."""

    redis: Redis
    db: Database
    settings: Settings
    cache: VersionedCache
    state_machine: DailyStateMachine
    publisher: SnapshotPublisher
    orchestrator: FetchOrchestrator
    scheduler: AsyncIOScheduler | None = None
    trigger_fns: dict[str, TriggerFn] = field(default_factory=dict)


def validate_startup(settings: Settings) -> None:
    """Refuse to start without credentials or with unparseable schedules.

    Raises:
        ConfigurationError: listing every problem found
    """
    problems: list[str] = []
    if settings.finnhub_api_key is None or not settings.finnhub_api_key.get_secret_value():
        problems.append("FINNHUB_API_KEY is not set")
    if settings.polygon_api_key is None or not settings.polygon_api_key.get_secret_value():
        problems.append("POLYGON_API_KEY is not set")
    for kind, expression in settings.cron_schedules.items():
        try:
            build_trigger(expression, settings.tz)
        except ConfigurationError as e:
            problems.append(f"{kind}: {e.message}")
    if problems:
        raise ConfigurationError("; ".join(problems))


@asynccontextmanager
async def pipeline_lifespan(settings: Settings) -> AsyncIterator[PipelineState]:
    """Async context manager that starts/stops the whole pipeline.

    Yields a PipelineState with references to all running resources.
    On exit, shuts everything down in reverse order.
    """
    validate_startup(settings)
    # Narrowed by validate_startup
    assert settings.finnhub_api_key is not None and settings.polygon_api_key is not None

    redis: Redis | None = None
    db: Database | None = None
    finnhub: FinnhubClient | None = None
    polygon: PolygonClient | None = None
    scheduler: AsyncIOScheduler | None = None

    try:
        # 1. Connect to Redis (also sets the module-level global for get_redis())
        logger.debug("Connecting to Redis")
        redis = await init_redis(settings.redis_url)

        # 2. Connect to PostgreSQL
        logger.debug("Connecting to PostgreSQL")
        db = await init_database(
            settings.database_url, slow_write_seconds=settings.slow_write_warning_seconds
        )

        # 3. Providers
        finnhub = FinnhubClient(
            api_key=settings.finnhub_api_key.get_secret_value(),
            base_url=settings.finnhub_api_url,
            timeout=settings.provider_timeout_seconds,
            limiter=RateLimiter(calls=settings.finnhub_calls_per_minute),
        )
        polygon = PolygonClient(
            api_key=settings.polygon_api_key.get_secret_value(),
            base_url=settings.polygon_api_url,
            timeout=settings.provider_timeout_seconds,
            limiter=RateLimiter(calls=settings.polygon_calls_per_minute),
        )

        # 4. Coordination, cache, publishing
        cache = VersionedCache(redis)
        lock_store: LockStore = (
            RedisLockStore(redis) if settings.lock_backend == "redis" else InMemoryLockStore()
        )
        locks = LockManager(lock_store)
        state_machine = DailyStateMachine(db)
        publisher = SnapshotPublisher(
            db,
            cache,
            CoverageThresholds(
                schedule=settings.dq_schedule_threshold,
                price=settings.dq_price_threshold,
                eps_rev=settings.dq_epsrev_threshold,
            ),
            stale_after=timedelta(seconds=settings.snapshot_stale_seconds),
        )
        market_data = MarketDataService(
            polygon,
            profile_provider=finnhub,
            cache=cache,
            concurrency=settings.market_data_concurrency,
            batch_delay=settings.market_data_batch_delay_seconds,
            negative_ttl=settings.negative_cache_ttl_seconds,
        )
        orchestrator = FetchOrchestrator(
            calendar=finnhub,
            market_data=market_data,
            guidance=polygon,
            db=db,
            state=state_machine,
            locks=locks,
            cache=cache,
            publisher=publisher,
            config=OrchestratorConfig.from_settings(settings),
        )

        # 5. Scheduler
        scheduler = create_scheduler(settings.tz)
        trigger_fns = register_jobs(scheduler, orchestrator, settings.cron_schedules, settings.tz)
        scheduler.start()

        logger.info(
            "Pipeline ready",
            timezone=settings.exchange_timezone,
            jobs=sorted(settings.cron_schedules),
            lock_backend=settings.lock_backend,
            lock_owner=locks.owner,
        )

        yield PipelineState(
            redis=redis,
            db=db,
            settings=settings,
            cache=cache,
            state_machine=state_machine,
            publisher=publisher,
            orchestrator=orchestrator,
            scheduler=scheduler,
            trigger_fns=trigger_fns,
        )

    finally:
        logger.info("Shutting down pipeline...")

        if scheduler and scheduler.running:
            scheduler.shutdown(wait=False)
            logger.debug("Scheduler stopped")

        for client, name in [(polygon, "Polygon"), (finnhub, "Finnhub")]:
            if client:
                try:
                    await client.close()
                except Exception as e:
                    logger.error(f"Failed to close {name} client", error=str(e))

        if db:
            await close_database()
            logger.debug("PostgreSQL disconnected")

        if redis:
            await close_redis()
            logger.debug("Redis disconnected")

        logger.info("Pipeline shutdown complete")
