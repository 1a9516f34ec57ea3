"""Tests for the soft-confirmation retry policy and the empty-day display rule."""

from datetime import UTC, date, datetime, timedelta
from unittest.mock import AsyncMock
from zoneinfo import ZoneInfo

import pytest

from earnflow.core.exceptions import (
    ProviderRateLimitError,
    ProviderResponseError,
    ProviderTimeoutError,
)
from earnflow.pipeline.soft_confirm import (
    empty_state_message,
    fetch_with_soft_confirm,
    should_show_no_earnings,
)
from earnflow.providers.finnhub.models import CalendarEntry

NY = ZoneInfo("America/New_York")
DELAYS = (600.0, 900.0, 1800.0)


def _clock() -> datetime:
    return datetime(2025, 9, 9, 13, 0, tzinfo=UTC)


class TestFetchWithSoftConfirm:
    """Tests for fetch_with_soft_confirm()."""

    @pytest.mark.asyncio
    async def test_first_attempt_has_rows(self) -> None:
        fetch = AsyncMock(return_value=[CalendarEntry(symbol="AAPL")])
        sleep = AsyncMock()

        result = await fetch_with_soft_confirm(fetch, DELAYS, sleep=sleep, clock=_clock)

        assert result.ok
        assert result.count == 1
        assert not result.soft_empty
        assert result.attempts == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_all_attempts_empty_is_soft_empty(self) -> None:
        fetch = AsyncMock(return_value=[])
        sleep = AsyncMock()

        result = await fetch_with_soft_confirm(fetch, DELAYS, sleep=sleep, clock=_clock)

        assert result.ok
        assert result.count == 0
        assert result.soft_empty
        assert result.attempts == 4
        assert [c.args[0] for c in sleep.await_args_list] == list(DELAYS)
        assert result.last_attempt_at == _clock()

    @pytest.mark.asyncio
    async def test_rows_appear_on_retry(self) -> None:
        fetch = AsyncMock(side_effect=[[], [], [CalendarEntry(symbol="MSFT")]])
        sleep = AsyncMock()

        result = await fetch_with_soft_confirm(fetch, DELAYS, sleep=sleep, clock=_clock)

        assert result.ok
        assert result.count == 1
        assert result.attempts == 3
        assert sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_transient_errors_are_retried(self) -> None:
        fetch = AsyncMock(
            side_effect=[
                ProviderRateLimitError("slow down", "finnhub"),
                ProviderTimeoutError("timeout", "finnhub"),
                [CalendarEntry(symbol="AAPL")],
            ]
        )

        result = await fetch_with_soft_confirm(fetch, DELAYS, sleep=AsyncMock(), clock=_clock)

        assert result.ok
        assert result.count == 1
        assert result.attempts == 3

    @pytest.mark.asyncio
    async def test_non_transient_error_stops_immediately(self) -> None:
        fetch = AsyncMock(side_effect=ProviderResponseError("bad payload", "finnhub"))
        sleep = AsyncMock()

        result = await fetch_with_soft_confirm(fetch, DELAYS, sleep=sleep, clock=_clock)

        assert not result.ok
        assert result.error == "bad payload"
        assert result.attempts == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_never_answered_is_failure(self) -> None:
        fetch = AsyncMock(side_effect=ProviderTimeoutError("timeout", "finnhub"))

        result = await fetch_with_soft_confirm(fetch, DELAYS, sleep=AsyncMock(), clock=_clock)

        assert not result.ok
        assert not result.soft_empty
        assert result.attempts == 4
        assert result.error == "timeout"

    @pytest.mark.asyncio
    async def test_mixed_errors_and_empty_is_soft_empty(self) -> None:
        fetch = AsyncMock(
            side_effect=[ProviderTimeoutError("timeout", "finnhub"), [], [], []]
        )

        result = await fetch_with_soft_confirm(fetch, DELAYS, sleep=AsyncMock(), clock=_clock)

        assert result.ok
        assert result.soft_empty


class TestShouldShowNoEarnings:
    """Tests for should_show_no_earnings()."""

    def test_past_date(self) -> None:
        now = datetime(2025, 9, 10, 14, 0, tzinfo=UTC)
        assert should_show_no_earnings(date(2025, 9, 9), None, NY, now=now)

    def test_recent_attempt_same_day(self) -> None:
        now = datetime(2025, 9, 9, 14, 0, tzinfo=UTC)
        last = now - timedelta(minutes=30)
        assert not should_show_no_earnings(date(2025, 9, 9), last, NY, now=now)

    def test_grace_elapsed(self) -> None:
        now = datetime(2025, 9, 9, 14, 0, tzinfo=UTC)
        last = now - timedelta(hours=2)
        assert should_show_no_earnings(date(2025, 9, 9), last, NY, now=now)

    def test_no_attempt_yet(self) -> None:
        now = datetime(2025, 9, 9, 14, 0, tzinfo=UTC)
        assert not should_show_no_earnings(date(2025, 9, 9), None, NY, now=now)

    def test_future_date(self) -> None:
        now = datetime(2025, 9, 9, 14, 0, tzinfo=UTC)
        assert not should_show_no_earnings(date(2025, 9, 10), None, NY, now=now)


class TestEmptyStateMessage:
    """Tests for empty_state_message()."""

    def test_messages(self) -> None:
        now = datetime(2025, 9, 9, 14, 0, tzinfo=UTC)
        day = date(2025, 9, 9)

        assert empty_state_message(day, now, NY, soft_empty=True, now=now) == (
            "Checking for earnings data..."
        )
        assert empty_state_message(day, None, NY, soft_empty=False, now=now) == (
            "Preparing today's earnings data..."
        )
        assert empty_state_message(day, now - timedelta(hours=3), NY, True, now=now) == (
            "No earnings scheduled for today"
        )
