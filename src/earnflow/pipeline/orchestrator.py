"""Fetch orchestrator: one ordered, awaitable pipeline per job invocation.

Stages never reorder: lock -> reset check -> calendar (soft-confirmed) ->
market data -> calculators -> upserts -> daily state -> publish -> unlock.
Only the per-ticker market and guidance lookups run concurrently.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import StrEnum
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from redis.exceptions import RedisError

from earnflow.coordination.lock import lock_name
from earnflow.core.constants import DEFAULT_SOFT_CONFIRM_DELAYS_SECONDS
from earnflow.core.dates import exchange_today, is_market_hours, is_premarket, now_utc
from earnflow.core.exceptions import ProviderError, StorageError
from earnflow.core.logging import get_logger, run_context
from earnflow.models import DailyState, EarningsRecord, GuidanceRecord, MarketSnapshot
from earnflow.pipeline.soft_confirm import fetch_with_soft_confirm, should_show_no_earnings
from earnflow.processing.guidance import DEFAULT_EXTREME_PCT, apply_surprises, reconcile_guidance
from earnflow.processing.price import DEFAULT_THRESHOLDS, PriceThresholds, calculate
from earnflow.providers.finnhub.client import to_earnings_record
from earnflow.providers.polygon.client import to_guidance_record

if TYPE_CHECKING:
    from earnflow.cache.versioning import VersionedCache
    from earnflow.config import Settings
    from earnflow.coordination.daily_state import DailyStateMachine
    from earnflow.coordination.lock import LockManager
    from earnflow.pipeline.publisher import SnapshotPublisher
    from earnflow.providers.base import EarningsCalendarProvider, GuidanceProvider
    from earnflow.providers.market_data import MarketDataService, MarketQuote
    from earnflow.storage.database import Database

logger = get_logger(__name__)


class JobKind(StrEnum):
    BOOTSTRAP = "bootstrap"
    AUTO_REPAIR = "auto_repair"
    PREMARKET = "premarket"
    MARKET_HOURS = "market_hours"
    AFTER_HOURS = "after_hours"
    WEEKEND = "weekend"
    MANUAL = "manual"


class RunStatus(StrEnum):
    COMPLETED = "completed"
    COMPLETED_SOFT_EMPTY = "completed_soft_empty"
    SKIPPED_LOCKED = "skipped_locked"
    SKIPPED_RESET_PENDING = "skipped_reset_pending"
    SKIPPED_OUT_OF_WINDOW = "skipped_out_of_window"
    SKIPPED_NOT_NEEDED = "skipped_not_needed"
    FAILED = "failed"


# Auto-repair retries the bootstrap, so it must not overlap one
_LOCK_GROUP: dict[JobKind, JobKind] = {JobKind.AUTO_REPAIR: JobKind.BOOTSTRAP}


@dataclass
class RunResult:
    job_kind: JobKind
    trading_date: date
    run_id: str
    status: RunStatus = RunStatus.FAILED
    calendar_count: int = 0
    calendar_attempts: int = 0
    earnings_written: int = 0
    snapshots_written: int = 0
    guidance_written: int = 0
    tickers_failed: list[str] = field(default_factory=list)
    validation_warnings: int = 0
    soft_empty: bool = False
    published_version: int | None = None
    error: str | None = None

    @property
    def skipped(self) -> bool:
        return self.status.value.startswith("skipped")


@dataclass(frozen=True)
class OrchestratorConfig:
    tz: ZoneInfo
    lock_ttl_seconds: int = 4200
    soft_confirm_delays: Sequence[float] = DEFAULT_SOFT_CONFIRM_DELAYS_SECONDS
    price_thresholds: PriceThresholds = DEFAULT_THRESHOLDS
    guidance_extreme_pct: float = DEFAULT_EXTREME_PCT
    guidance_concurrency: int = 5
    retention_days: int = 7
    guidance_retention_days: int = 30
    no_earnings_cutoff_hour: int = 1
    no_earnings_grace: timedelta = timedelta(hours=2)

    @classmethod
    def from_settings(cls, settings: Settings) -> OrchestratorConfig:
        return cls(
            tz=settings.tz,
            lock_ttl_seconds=settings.lock_ttl_seconds,
            soft_confirm_delays=tuple(settings.soft_confirm_delays_seconds),
            price_thresholds=PriceThresholds(
                max_price=settings.max_price,
                max_shares_outstanding=settings.max_shares_outstanding,
                max_price_change_pct=settings.max_price_change_pct,
                max_market_cap_change_pct=settings.max_market_cap_change_pct,
            ),
            guidance_extreme_pct=settings.guidance_extreme_pct,
            guidance_concurrency=settings.market_data_concurrency,
            retention_days=settings.retention_days,
            guidance_retention_days=settings.guidance_retention_days,
            no_earnings_cutoff_hour=settings.no_earnings_cutoff_hour,
            no_earnings_grace=timedelta(seconds=settings.no_earnings_grace_seconds),
        )


class FetchOrchestrator:
    """Runs the ingestion-and-publish pipeline for one job invocation.

    Usage:
        orchestrator = FetchOrchestrator(...)
        result = await orchestrator.run(JobKind.MARKET_HOURS)
    """

    def __init__(
        self,
        *,
        calendar: EarningsCalendarProvider,
        market_data: MarketDataService,
        guidance: GuidanceProvider | None,
        db: Database,
        state: DailyStateMachine,
        locks: LockManager,
        cache: VersionedCache,
        publisher: SnapshotPublisher,
        config: OrchestratorConfig,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self._calendar = calendar
        self._market_data = market_data
        self._guidance = guidance
        self._db = db
        self._state = state
        self._locks = locks
        self._cache = cache
        self._publisher = publisher
        self._config = config
        self._sleep = sleep
        self._clock = clock

    async def run(
        self,
        job_kind: JobKind | str,
        trading_date: date | None = None,
        reset: bool = False,
    ) -> RunResult:
        """Run the pipeline for ``job_kind``.

        Args:
            job_kind: Which scheduled (or manual) job this is
            trading_date: Day to fetch, defaults to today on the exchange
            reset: For manual runs, also perform the daily reset first

        Returns:
            RunResult; skips and failures are statuses, not exceptions
        """
        kind = JobKind(job_kind)
        now = self._clock()
        day = trading_date or exchange_today(self._config.tz, now)
        result = RunResult(job_kind=kind, trading_date=day, run_id=uuid.uuid4().hex[:12])

        with run_context(kind.value, result.run_id, day):
            if not self._in_window(kind, now):
                logger.debug("Outside job window, skipping")
                result.status = RunStatus.SKIPPED_OUT_OF_WINDOW
                return result

            name = lock_name(_LOCK_GROUP.get(kind, kind).value, day)
            async with self._locks.hold(name, self._config.lock_ttl_seconds) as acquired:
                if not acquired:
                    logger.info("Lock held by another run, skipping")
                    result.status = RunStatus.SKIPPED_LOCKED
                    return result

                try:
                    await self._run_locked(kind, day, reset, result)
                except (StorageError, RedisError) as e:
                    logger.error("Pipeline run failed", error=str(e))
                    result.status = RunStatus.FAILED
                    result.error = str(e)

            logger.info(
                "Pipeline run finished",
                status=result.status.value,
                calendar=result.calendar_count,
                earnings=result.earnings_written,
                snapshots=result.snapshots_written,
                guidance=result.guidance_written,
                failed=len(result.tickers_failed),
                version=result.published_version,
            )
            return result

    def _in_window(self, kind: JobKind, now: datetime) -> bool:
        if kind is JobKind.MARKET_HOURS:
            return is_market_hours(self._config.tz, now)
        if kind is JobKind.PREMARKET:
            return is_premarket(self._config.tz, now)
        return True

    async def _run_locked(self, kind: JobKind, day: date, reset: bool, result: RunResult) -> None:
        if kind is JobKind.BOOTSTRAP or (kind is JobKind.MANUAL and reset):
            await self._reset(day)
        elif not await self._state.is_reset_completed(day):
            logger.info("Daily reset not completed, skipping")
            result.status = RunStatus.SKIPPED_RESET_PENDING
            return

        if kind is JobKind.AUTO_REPAIR and await self._state.is_fetch_completed(day):
            logger.debug("Day already fetched, nothing to repair")
            result.status = RunStatus.SKIPPED_NOT_NEEDED
            return

        # Calendar
        calendar = await fetch_with_soft_confirm(
            lambda: self._calendar.fetch_calendar(day),
            self._config.soft_confirm_delays,
            sleep=self._sleep,
            clock=self._clock,
        )
        result.calendar_attempts = calendar.attempts
        if not calendar.ok:
            result.status = RunStatus.FAILED
            result.error = calendar.error
            return
        result.calendar_count = calendar.count
        result.soft_empty = calendar.soft_empty

        records: dict[str, EarningsRecord] = {}
        for entry in calendar.rows:
            record = to_earnings_record(entry, day)
            if record is not None:
                records[record.ticker] = record
        tickers = list(records)

        # Market data, then guidance
        quotes = await self._market_data.fetch_many(tickers)
        guidance_entries = await self._fetch_guidance(tickers)

        # Calculators
        snapshots: list[MarketSnapshot] = []
        for ticker, record in records.items():
            quote = quotes.get(ticker)
            if quote is None:
                result.tickers_failed.append(ticker)
                continue
            if quote.company_name and not record.company_name:
                records[ticker] = record.model_copy(update={"company_name": quote.company_name})
            snapshot = self._build_snapshot(day, quote)
            if not snapshot.is_valid:
                result.validation_warnings += 1
            snapshots.append(snapshot)

        guidance_records = [
            apply_surprises(g, records.get(g.ticker), self._config.guidance_extreme_pct)
            for g in reconcile_guidance(guidance_entries)
        ]

        # Persistence (per-record upserts, each durable on its own)
        for record in records.values():
            await self._db.upsert_earnings(record)
            result.earnings_written += 1
        for snapshot in snapshots:
            if await self._db.upsert_market_snapshot(snapshot):
                result.snapshots_written += 1
        for guidance in guidance_records:
            if await self._db.upsert_guidance(guidance):
                result.guidance_written += 1

        if result.earnings_written:
            await self._state.set_state(day, DailyState.FETCH_DONE)

        # Publish
        no_earnings_confirmed = calendar.soft_empty and should_show_no_earnings(
            day,
            calendar.last_attempt_at,
            self._config.tz,
            now=self._clock(),
            cutoff_hour=self._config.no_earnings_cutoff_hour,
            grace=self._config.no_earnings_grace,
        )
        snapshot = await self._publisher.publish(
            day,
            soft_empty=calendar.soft_empty,
            no_earnings_confirmed=no_earnings_confirmed,
        )
        result.published_version = snapshot.version
        result.status = (
            RunStatus.COMPLETED_SOFT_EMPTY if calendar.soft_empty else RunStatus.COMPLETED
        )

    async def _reset(self, day: date) -> None:
        """Daily rollover: clear negative cache, apply retention, reset the day."""
        await self._cache.clear_negative()
        await self._db.cleanup_old_data(
            self._config.retention_days, self._config.guidance_retention_days
        )
        if await self._state.get_state(day) is DailyState.INIT:
            await self._db.reset_day(day)
        await self._state.set_state(day, DailyState.RESET_DONE)

    async def _fetch_guidance(self, tickers: Sequence[str]) -> list[GuidanceRecord]:
        if self._guidance is None or not tickers:
            return []
        provider = self._guidance
        semaphore = asyncio.Semaphore(self._config.guidance_concurrency)

        async def fetch_one(ticker: str) -> list[GuidanceRecord]:
            async with semaphore:
                try:
                    entries = await provider.fetch_guidance(ticker)
                except ProviderError as e:
                    logger.warning("Guidance fetch failed", ticker=ticker, error=e.message)
                    return []
            records = [to_guidance_record(entry) for entry in entries]
            return [r for r in records if r is not None and r.ticker == ticker]

        batches = await asyncio.gather(*(fetch_one(t) for t in tickers))
        return [record for batch in batches for record in batch]

    def _build_snapshot(self, day: date, quote: MarketQuote) -> MarketSnapshot:
        calc = calculate(
            quote.current_price,
            quote.previous_close,
            quote.shares_outstanding,
            quote.ticker,
            self._config.price_thresholds,
        )
        if not calc.is_valid:
            logger.warning(
                "Price validation failed",
                ticker=quote.ticker,
                errors=calc.validation_errors,
            )
        return MarketSnapshot(
            ticker=quote.ticker,
            report_date=day,
            company_name=quote.company_name,
            current_price=quote.current_price,
            previous_close=quote.previous_close,
            shares_outstanding=quote.shares_outstanding,
            price_change_percent=calc.price_change_percent,
            market_cap=calc.market_cap,
            market_cap_diff_percent=calc.market_cap_diff_percent,
            market_cap_diff_billions=calc.market_cap_diff_billions,
            size_class=calc.size_class,
            is_valid=calc.is_valid,
            validation_errors=calc.validation_errors,
            price_fallback=quote.price_fallback,
        )
