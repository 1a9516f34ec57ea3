"""PostgreSQL persistence adapter using raw asyncpg.

All writes are keyed upserts; nothing is deleted-then-inserted, except by the
explicit daily reset and retention cleanup.
"""

from __future__ import annotations

import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, date, datetime, timedelta
from typing import Any, cast

import asyncpg

from earnflow.core.dates import report_date_utc
from earnflow.core.exceptions import PersistenceError
from earnflow.core.logging import get_logger
from earnflow.models import (
    DailyState,
    EarningsRecord,
    GuidanceRecord,
    MarketSnapshot,
    release_rank,
)

logger = get_logger(__name__)

_DB_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)


class Database:
    """Async PostgreSQL database wrapper using asyncpg."""

    def __init__(
        self,
        dsn: str,
        min_size: int = 2,
        max_size: int = 10,
        slow_write_seconds: float = 2.0,
    ) -> None:
        self._dsn = dsn
        self._min_size = min_size
        self._max_size = max_size
        self._slow_write_seconds = slow_write_seconds
        self._pool: asyncpg.Pool[asyncpg.Record] | None = None

    async def connect(self) -> None:
        """Create connection pool."""
        # Convert SQLAlchemy-style DSN to asyncpg format
        dsn = self._dsn.replace("postgresql+asyncpg://", "postgresql://")

        async def init_connection(conn: asyncpg.Connection[asyncpg.Record]) -> None:
            """Initialize each connection with earnflow schema search_path."""
            await conn.execute("SET search_path TO earnflow, public")

        self._pool = await asyncpg.create_pool(
            dsn,
            min_size=self._min_size,
            max_size=self._max_size,
            init=init_connection,
        )
        logger.debug("Database pool created", min_size=self._min_size, max_size=self._max_size)

    async def disconnect(self) -> None:
        """Close connection pool."""
        if self._pool:
            await self._pool.close()
            self._pool = None
            logger.debug("Database pool closed")

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[asyncpg.Connection[asyncpg.Record]]:
        """Acquire a connection from the pool."""
        if not self._pool:
            raise RuntimeError("Database not connected. Call connect() first.")
        async with self._pool.acquire() as conn:
            yield conn

    async def execute(self, query: str, *args: Any) -> str:
        """Execute a query and return status."""
        async with self.acquire() as conn:
            result = await conn.execute(query, *args)
            return cast(str, result)

    async def fetch(self, query: str, *args: Any) -> list[asyncpg.Record]:
        """Fetch multiple rows."""
        async with self.acquire() as conn:
            result = await conn.fetch(query, *args)
            return list(result)

    async def fetchrow(self, query: str, *args: Any) -> asyncpg.Record | None:
        """Fetch a single row."""
        async with self.acquire() as conn:
            return await conn.fetchrow(query, *args)

    async def fetchval(self, query: str, *args: Any) -> Any:
        """Fetch a single value."""
        async with self.acquire() as conn:
            return await conn.fetchval(query, *args)

    async def ping(self) -> bool:
        try:
            return await self.fetchval("SELECT 1") == 1
        except _DB_ERRORS:
            return False

    async def _timed_execute(self, operation: str, query: str, *args: Any) -> str:
        """Execute a write, logging slow statements and wrapping driver errors."""
        started = time.perf_counter()
        try:
            result = await self.execute(query, *args)
        except _DB_ERRORS as e:
            logger.error("Database write failed", operation=operation, error=str(e))
            raise PersistenceError(f"{operation} failed: {e}") from e
        elapsed = time.perf_counter() - started
        if elapsed > self._slow_write_seconds:
            logger.warning("Slow database write", operation=operation, seconds=round(elapsed, 3))
        return result

    # -------------------------------------------------------------------------
    # Earnings / market / guidance upserts
    # -------------------------------------------------------------------------

    async def upsert_earnings(self, record: EarningsRecord) -> None:
        """Insert or update one earnings row keyed by (ticker, report_date).

        Estimates and actuals are COALESCEd so a later fetch that lacks a value
        never nulls one that was already stored.
        """
        query = """
            INSERT INTO earnings_tickers_today (
                ticker, report_date, report_time,
                eps_estimate, eps_actual, revenue_estimate, revenue_actual,
                fiscal_period, fiscal_year, company_name, sector, exchange,
                data_source, last_updated
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14)
            ON CONFLICT (ticker, report_date) DO UPDATE SET
                report_time = EXCLUDED.report_time,
                eps_estimate = COALESCE(EXCLUDED.eps_estimate, earnings_tickers_today.eps_estimate),
                eps_actual = COALESCE(EXCLUDED.eps_actual, earnings_tickers_today.eps_actual),
                revenue_estimate = COALESCE(
                    EXCLUDED.revenue_estimate, earnings_tickers_today.revenue_estimate
                ),
                revenue_actual = COALESCE(
                    EXCLUDED.revenue_actual, earnings_tickers_today.revenue_actual
                ),
                fiscal_period = COALESCE(EXCLUDED.fiscal_period, earnings_tickers_today.fiscal_period),
                fiscal_year = COALESCE(EXCLUDED.fiscal_year, earnings_tickers_today.fiscal_year),
                company_name = COALESCE(EXCLUDED.company_name, earnings_tickers_today.company_name),
                sector = COALESCE(EXCLUDED.sector, earnings_tickers_today.sector),
                exchange = COALESCE(EXCLUDED.exchange, earnings_tickers_today.exchange),
                data_source = EXCLUDED.data_source,
                last_updated = EXCLUDED.last_updated
        """
        await self._timed_execute(
            "upsert_earnings",
            query,
            record.ticker,
            report_date_utc(record.report_date),
            record.report_time.value,
            record.eps_estimate,
            record.eps_actual,
            record.revenue_estimate,
            record.revenue_actual,
            record.fiscal_period.value if record.fiscal_period else None,
            record.fiscal_year,
            record.company_name,
            record.sector,
            record.exchange,
            record.data_source,
            record.last_updated,
        )

    async def upsert_market_snapshot(self, record: MarketSnapshot) -> bool:
        """Insert or update one market row keyed by (ticker, report_date).

        Raw prices and their derived columns travel together. A write that
        lacks a price input the stored row already has leaves the stored row
        untouched, so derived columns always match the stored raw inputs.

        Returns:
            True if the row was written, False if the stored row was kept
        """
        query = """
            INSERT INTO market_snapshots (
                ticker, report_date, company_name,
                current_price, previous_close, shares_outstanding,
                price_change_percent, market_cap,
                market_cap_diff_percent, market_cap_diff_billions, size_class,
                is_valid, validation_errors, price_fallback,
                data_source, last_updated
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, $16)
            ON CONFLICT (ticker, report_date) DO UPDATE SET
                company_name = COALESCE(EXCLUDED.company_name, market_snapshots.company_name),
                current_price = COALESCE(EXCLUDED.current_price, market_snapshots.current_price),
                previous_close = COALESCE(EXCLUDED.previous_close, market_snapshots.previous_close),
                shares_outstanding = COALESCE(
                    EXCLUDED.shares_outstanding, market_snapshots.shares_outstanding
                ),
                price_change_percent = EXCLUDED.price_change_percent,
                market_cap = EXCLUDED.market_cap,
                market_cap_diff_percent = EXCLUDED.market_cap_diff_percent,
                market_cap_diff_billions = EXCLUDED.market_cap_diff_billions,
                size_class = EXCLUDED.size_class,
                is_valid = EXCLUDED.is_valid,
                validation_errors = EXCLUDED.validation_errors,
                price_fallback = EXCLUDED.price_fallback,
                data_source = EXCLUDED.data_source,
                last_updated = EXCLUDED.last_updated
            WHERE (EXCLUDED.current_price IS NOT NULL OR market_snapshots.current_price IS NULL)
                AND (EXCLUDED.previous_close IS NOT NULL OR market_snapshots.previous_close IS NULL)
                AND (
                    EXCLUDED.shares_outstanding IS NOT NULL
                    OR market_snapshots.shares_outstanding IS NULL
                )
        """
        status = await self._timed_execute(
            "upsert_market_snapshot",
            query,
            record.ticker,
            report_date_utc(record.report_date),
            record.company_name,
            record.current_price,
            record.previous_close,
            record.shares_outstanding,
            record.price_change_percent,
            record.market_cap,
            record.market_cap_diff_percent,
            record.market_cap_diff_billions,
            record.size_class.value if record.size_class else None,
            record.is_valid,
            record.validation_errors,
            record.price_fallback,
            record.data_source,
            record.last_updated,
        )
        return not status.endswith(" 0")

    async def upsert_guidance(self, record: GuidanceRecord) -> bool:
        """Insert or update guidance keyed by (ticker, fiscal_period, fiscal_year).

        The stored row is only replaced by a record that is at least as
        authoritative: higher release rank, then newer ``last_updated``, then
        greater provider id.

        Returns:
            True if the row was written, False if a more authoritative row won
        """
        query = """
            INSERT INTO guidance (
                ticker, fiscal_period, fiscal_year, release_type, release_rank,
                estimated_eps_guidance, estimated_revenue_guidance,
                previous_min_eps_guidance, previous_max_eps_guidance,
                previous_min_revenue_guidance, previous_max_revenue_guidance,
                eps_method, revenue_method,
                eps_guide_vs_consensus_pct, revenue_guide_vs_consensus_pct,
                eps_guide_surprise, eps_guide_basis, eps_guide_extreme,
                revenue_guide_surprise, revenue_guide_basis, revenue_guide_extreme,
                provider_id, data_source, last_updated
            )
            VALUES (
                $1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12,
                $13, $14, $15, $16, $17, $18, $19, $20, $21, $22, $23, $24
            )
            ON CONFLICT (ticker, fiscal_period, fiscal_year) DO UPDATE SET
                release_type = EXCLUDED.release_type,
                release_rank = EXCLUDED.release_rank,
                estimated_eps_guidance = EXCLUDED.estimated_eps_guidance,
                estimated_revenue_guidance = EXCLUDED.estimated_revenue_guidance,
                previous_min_eps_guidance = EXCLUDED.previous_min_eps_guidance,
                previous_max_eps_guidance = EXCLUDED.previous_max_eps_guidance,
                previous_min_revenue_guidance = EXCLUDED.previous_min_revenue_guidance,
                previous_max_revenue_guidance = EXCLUDED.previous_max_revenue_guidance,
                eps_method = EXCLUDED.eps_method,
                revenue_method = EXCLUDED.revenue_method,
                eps_guide_vs_consensus_pct = EXCLUDED.eps_guide_vs_consensus_pct,
                revenue_guide_vs_consensus_pct = EXCLUDED.revenue_guide_vs_consensus_pct,
                eps_guide_surprise = EXCLUDED.eps_guide_surprise,
                eps_guide_basis = EXCLUDED.eps_guide_basis,
                eps_guide_extreme = EXCLUDED.eps_guide_extreme,
                revenue_guide_surprise = EXCLUDED.revenue_guide_surprise,
                revenue_guide_basis = EXCLUDED.revenue_guide_basis,
                revenue_guide_extreme = EXCLUDED.revenue_guide_extreme,
                provider_id = EXCLUDED.provider_id,
                data_source = EXCLUDED.data_source,
                last_updated = EXCLUDED.last_updated
            WHERE (EXCLUDED.release_rank, EXCLUDED.last_updated, COALESCE(EXCLUDED.provider_id, ''))
                >= (guidance.release_rank, guidance.last_updated, COALESCE(guidance.provider_id, ''))
        """
        status = await self._timed_execute(
            "upsert_guidance",
            query,
            record.ticker,
            record.fiscal_period.value,
            record.fiscal_year,
            record.release_type,
            release_rank(record.release_type),
            record.estimated_eps_guidance,
            record.estimated_revenue_guidance,
            record.previous_min_eps_guidance,
            record.previous_max_eps_guidance,
            record.previous_min_revenue_guidance,
            record.previous_max_revenue_guidance,
            record.eps_method,
            record.revenue_method,
            record.eps_guide_vs_consensus_pct,
            record.revenue_guide_vs_consensus_pct,
            record.eps_guide_surprise,
            record.eps_guide_basis,
            record.eps_guide_extreme,
            record.revenue_guide_surprise,
            record.revenue_guide_basis,
            record.revenue_guide_extreme,
            record.provider_id,
            record.data_source,
            record.last_updated,
        )
        # asyncpg returns "INSERT 0 <rows>"
        return not status.endswith(" 0")

    # -------------------------------------------------------------------------
    # Daily state
    # -------------------------------------------------------------------------

    async def get_daily_state(self, day: date) -> DailyState | None:
        row = await self.fetchrow("SELECT state FROM daily_reset_state WHERE date = $1", day)
        if row is None:
            return None
        return DailyState(row["state"])

    async def advance_daily_state(self, day: date, state: DailyState) -> bool:
        """Move the day's state forward. Never moves it backwards.

        Returns:
            True if the stored state changed
        """
        query = """
            INSERT INTO daily_reset_state (date, state, state_rank, reset_at, fetch_at, updated_at)
            VALUES (
                $1, $2, $3,
                CASE WHEN $3 >= 1 THEN NOW() END,
                CASE WHEN $3 >= 2 THEN NOW() END,
                NOW()
            )
            ON CONFLICT (date) DO UPDATE SET
                state = EXCLUDED.state,
                state_rank = EXCLUDED.state_rank,
                reset_at = COALESCE(daily_reset_state.reset_at, EXCLUDED.reset_at),
                fetch_at = COALESCE(daily_reset_state.fetch_at, EXCLUDED.fetch_at),
                updated_at = NOW()
            WHERE daily_reset_state.state_rank < EXCLUDED.state_rank
        """
        status = await self._timed_execute(
            "advance_daily_state", query, day, state.value, state.rank
        )
        return not status.endswith(" 0")

    async def delete_daily_state(self, day: date) -> None:
        await self._timed_execute(
            "delete_daily_state", "DELETE FROM daily_reset_state WHERE date = $1", day
        )

    # -------------------------------------------------------------------------
    # Reset / retention
    # -------------------------------------------------------------------------

    async def reset_day(self, day: date) -> None:
        """Clear the working set for ``day``. The only path that removes actuals."""
        report_date = report_date_utc(day)
        try:
            async with self.acquire() as conn, conn.transaction():
                await conn.execute(
                    "DELETE FROM market_snapshots WHERE report_date = $1", report_date
                )
                await conn.execute(
                    "DELETE FROM earnings_tickers_today WHERE report_date = $1", report_date
                )
        except _DB_ERRORS as e:
            raise PersistenceError(f"reset_day failed: {e}") from e
        logger.info("Daily working set reset", date=day.isoformat())

    async def cleanup_old_data(
        self,
        retention_days: int,
        guidance_retention_days: int,
        now: datetime | None = None,
    ) -> dict[str, int]:
        """Delete rows older than the retention windows.

        Returns:
            Deleted row count per table
        """
        now = now or datetime.now(UTC)
        cutoff = report_date_utc((now - timedelta(days=retention_days)).date())
        guidance_cutoff = now - timedelta(days=guidance_retention_days)

        deleted: dict[str, int] = {}
        statements = {
            "market_snapshots": ("DELETE FROM market_snapshots WHERE report_date < $1", cutoff),
            "earnings_tickers_today": (
                "DELETE FROM earnings_tickers_today WHERE report_date < $1",
                cutoff,
            ),
            "daily_reset_state": (
                "DELETE FROM daily_reset_state WHERE date < $1",
                cutoff.date(),
            ),
            "guidance": ("DELETE FROM guidance WHERE last_updated < $1", guidance_cutoff),
        }
        for table, (query, arg) in statements.items():
            status = await self._timed_execute(f"cleanup_{table}", query, arg)
            deleted[table] = _rowcount(status)

        logger.info("Old data cleaned up", **deleted)
        return deleted

    # -------------------------------------------------------------------------
    # Snapshot reads
    # -------------------------------------------------------------------------

    async def fetch_day_rows(self, day: date) -> list[dict[str, Any]]:
        """Joined earnings + market + matching-period guidance rows for ``day``."""
        query = """
            SELECT
                e.ticker, e.report_time, e.eps_estimate, e.eps_actual,
                e.revenue_estimate, e.revenue_actual, e.fiscal_period, e.fiscal_year,
                COALESCE(m.company_name, e.company_name) AS company_name,
                e.sector, e.exchange,
                m.current_price, m.previous_close, m.price_change_percent,
                m.market_cap, m.market_cap_diff_percent, m.market_cap_diff_billions,
                m.size_class, m.is_valid AS market_valid, m.price_fallback,
                g.estimated_eps_guidance, g.estimated_revenue_guidance,
                g.eps_guide_surprise, g.eps_guide_basis, g.eps_guide_extreme,
                g.revenue_guide_surprise, g.revenue_guide_basis, g.revenue_guide_extreme,
                GREATEST(e.last_updated, m.last_updated) AS last_updated
            FROM earnings_tickers_today e
            LEFT JOIN market_snapshots m
                ON m.ticker = e.ticker AND m.report_date = e.report_date
            LEFT JOIN guidance g
                ON g.ticker = e.ticker
                AND g.fiscal_period = e.fiscal_period
                AND g.fiscal_year = e.fiscal_year
            WHERE e.report_date = $1
            ORDER BY m.market_cap DESC NULLS LAST, e.ticker
        """
        try:
            rows = await self.fetch(query, report_date_utc(day))
        except _DB_ERRORS as e:
            raise PersistenceError(f"fetch_day_rows failed: {e}") from e
        return [dict(row) for row in rows]


def _rowcount(status: str) -> int:
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (ValueError, IndexError):
        return 0


# Global database instance (initialized in lifespan)
_db: Database | None = None


def get_database() -> Database:
    """Get the global database instance."""
    if _db is None:
        raise RuntimeError("Database not initialized")
    return _db


async def init_database(dsn: str, slow_write_seconds: float = 2.0) -> Database:
    """Initialize the global database instance."""
    global _db
    _db = Database(dsn, slow_write_seconds=slow_write_seconds)
    await _db.connect()
    return _db


async def close_database() -> None:
    """Close the global database instance."""
    global _db
    if _db:
        await _db.disconnect()
        _db = None
