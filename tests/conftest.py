"""Pytest fixtures and configuration."""

import fnmatch
from collections.abc import AsyncIterator
from datetime import date, datetime
from typing import Any
from unittest.mock import AsyncMock

import pytest

from earnflow.cache.versioning import ALLOCATE_SCRIPT, PROMOTE_SCRIPT
from earnflow.coordination.lock import RELEASE_SCRIPT
from earnflow.models import (
    DailyState,
    EarningsRecord,
    GuidanceRecord,
    MarketSnapshot,
    release_rank,
)


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip integration tests by default unless -m integration is specified."""
    # Check if user explicitly requested integration tests
    markexpr = config.getoption("-m", default="")
    if "integration" in markexpr:
        # User wants integration tests, don't skip
        return

    # Skip integration tests by default
    skip_integration = pytest.mark.skip(reason="Integration test - run with: pytest -m integration")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


@pytest.fixture
def anyio_backend() -> str:
    """Use asyncio for async tests."""
    return "asyncio"


def _as_bytes(value: Any) -> bytes:
    if isinstance(value, bytes):
        return value
    return str(value).encode()


def _as_str(key: Any) -> str:
    return key.decode() if isinstance(key, bytes) else str(key)


@pytest.fixture
def mock_redis() -> Any:
    """Create mock Redis with stateful string storage.

    Understands the Lua scripts used by the lock store and the versioned
    cache, so callers see the same semantics as a real server.

    Internal state attributes:
        _test_strings: Dict of key -> stored bytes
        _test_ttls: Dict of key -> ``ex`` passed on the last set
    """
    redis = AsyncMock()

    _test_strings: dict[str, bytes] = {}
    _test_ttls: dict[str, int | None] = {}

    redis._test_strings = _test_strings
    redis._test_ttls = _test_ttls

    async def mock_set(key: str, value: Any, ex: int | None = None, nx: bool = False) -> bool:
        # nx=True means "only set if key does not exist"
        if nx and key in _test_strings:
            return False
        _test_strings[key] = _as_bytes(value)
        _test_ttls[key] = ex
        return True

    async def mock_get(key: str) -> bytes | None:
        return _test_strings.get(key)

    async def mock_exists(*keys: str) -> int:
        return sum(1 for key in keys if key in _test_strings)

    async def mock_delete(*keys: Any) -> int:
        count = 0
        for key in keys:
            if _test_strings.pop(_as_str(key), None) is not None:
                count += 1
        return count

    async def mock_incr(key: str) -> int:
        value = int(_test_strings.get(key, b"0")) + 1
        _test_strings[key] = _as_bytes(value)
        return value

    async def mock_eval(script: str, numkeys: int, *keys_and_args: Any) -> int:
        keys = [_as_str(k) for k in keys_and_args[:numkeys]]
        args = keys_and_args[numkeys:]
        if script == RELEASE_SCRIPT:
            if _test_strings.get(keys[0]) == _as_bytes(args[0]):
                return await mock_delete(keys[0])
            return 0
        if script == ALLOCATE_SCRIPT:
            current = int(_test_strings.get(keys[0], b"0"))
            staged = await mock_incr(keys[1])
            if staged <= current:
                staged = current + 1
                _test_strings[keys[1]] = _as_bytes(staged)
            return staged
        if script == PROMOTE_SCRIPT:
            current = int(_test_strings.get(keys[0], b"0"))
            candidate = int(args[0])
            if candidate > current:
                _test_strings[keys[0]] = _as_bytes(candidate)
                return 1
            return 0
        raise AssertionError(f"Unexpected script: {script!r}")

    def mock_scan_iter(match: str = "*", count: int | None = None) -> AsyncIterator[bytes]:
        async def _iter() -> AsyncIterator[bytes]:
            for key in list(_test_strings):
                if fnmatch.fnmatchcase(key, match):
                    yield key.encode()

        return _iter()

    redis.set = AsyncMock(side_effect=mock_set)
    redis.get = AsyncMock(side_effect=mock_get)
    redis.exists = AsyncMock(side_effect=mock_exists)
    redis.delete = AsyncMock(side_effect=mock_delete)
    redis.incr = AsyncMock(side_effect=mock_incr)
    redis.eval = AsyncMock(side_effect=mock_eval)
    redis.scan_iter = mock_scan_iter
    redis.ping = AsyncMock(return_value=True)
    redis.aclose = AsyncMock()

    return redis


class InMemoryDatabase:
    """Dict-backed stand-in for ``Database`` with the same upsert semantics."""

    def __init__(self) -> None:
        self.earnings: dict[tuple[str, date], EarningsRecord] = {}
        self.snapshots: dict[tuple[str, date], MarketSnapshot] = {}
        self.guidance: dict[tuple[str, str, int], GuidanceRecord] = {}
        self.states: dict[date, DailyState] = {}
        self.reset_days: list[date] = []
        self.cleanups = 0

    async def upsert_earnings(self, record: EarningsRecord) -> None:
        key = (record.ticker, record.report_date)
        stored = self.earnings.get(key)
        if stored is not None:
            kept = {
                name: getattr(stored, name)
                for name in _COALESCED_EARNINGS
                if getattr(record, name) is None
            }
            record = record.model_copy(update=kept)
        self.earnings[key] = record

    async def upsert_market_snapshot(self, record: MarketSnapshot) -> bool:
        key = (record.ticker, record.report_date)
        stored = self.snapshots.get(key)
        if stored is not None:
            if any(
                getattr(record, name) is None and getattr(stored, name) is not None
                for name in ("current_price", "previous_close", "shares_outstanding")
            ):
                return False
            if record.company_name is None:
                record = record.model_copy(update={"company_name": stored.company_name})
        self.snapshots[key] = record
        return True

    async def upsert_guidance(self, record: GuidanceRecord) -> bool:
        key = (record.ticker, record.fiscal_period.value, record.fiscal_year)
        stored = self.guidance.get(key)
        if stored is not None and _authority(record) < _authority(stored):
            return False
        self.guidance[key] = record
        return True

    async def get_daily_state(self, day: date) -> DailyState | None:
        return self.states.get(day)

    async def advance_daily_state(self, day: date, state: DailyState) -> bool:
        current = self.states.get(day)
        if current is not None and current.rank >= state.rank:
            return False
        self.states[day] = state
        return True

    async def delete_daily_state(self, day: date) -> None:
        self.states.pop(day, None)

    async def reset_day(self, day: date) -> None:
        self.reset_days.append(day)
        for store in (self.earnings, self.snapshots):
            for key in [k for k in store if k[1] == day]:
                del store[key]

    async def cleanup_old_data(
        self, retention_days: int, guidance_retention_days: int, now: Any = None
    ) -> dict[str, int]:
        self.cleanups += 1
        return {}

    async def fetch_day_rows(self, day: date) -> list[dict[str, Any]]:
        rows = []
        for (ticker, report_date), record in self.earnings.items():
            if report_date != day:
                continue
            row = record.model_dump(mode="python")
            row["report_time"] = record.report_time.value
            snapshot = self.snapshots.get((ticker, day))
            row["current_price"] = snapshot.current_price if snapshot else None
            row["market_cap"] = snapshot.market_cap if snapshot else None
            row["price_change_percent"] = snapshot.price_change_percent if snapshot else None
            rows.append(row)
        return rows


_COALESCED_EARNINGS = (
    "eps_estimate",
    "eps_actual",
    "revenue_estimate",
    "revenue_actual",
    "fiscal_period",
    "fiscal_year",
    "company_name",
    "sector",
    "exchange",
)


def _authority(record: GuidanceRecord) -> tuple[int, datetime, str]:
    return (release_rank(record.release_type), record.last_updated, record.provider_id or "")


@pytest.fixture
def fake_db() -> InMemoryDatabase:
    return InMemoryDatabase()
