"""Exchange-calendar date helpers.

Report dates are calendar dates in the exchange's timezone. When stored as a
timestamp they are expressed as that local date at midnight UTC.
"""

from __future__ import annotations

from datetime import UTC, date, datetime, time
from zoneinfo import ZoneInfo

from earnflow.core.constants import (
    MARKET_CLOSE_HOUR,
    MARKET_OPEN_HOUR,
    MARKET_OPEN_MINUTE,
)


def now_utc() -> datetime:
    return datetime.now(UTC)


def exchange_now(tz: ZoneInfo, now: datetime | None = None) -> datetime:
    """Current wall-clock time on the exchange."""
    return (now or now_utc()).astimezone(tz)


def exchange_today(tz: ZoneInfo, now: datetime | None = None) -> date:
    """Today's trading date in the exchange timezone."""
    return exchange_now(tz, now).date()


def report_date_utc(day: date) -> datetime:
    """Normalize a calendar date to its midnight expressed in UTC."""
    return datetime.combine(day, time.min, tzinfo=UTC)


def is_market_hours(tz: ZoneInfo, now: datetime | None = None) -> bool:
    """True between 09:30 and 16:00 exchange time."""
    local = exchange_now(tz, now)
    open_time = time(MARKET_OPEN_HOUR, MARKET_OPEN_MINUTE)
    close_time = time(MARKET_CLOSE_HOUR, 0)
    return open_time <= local.time() < close_time


def is_premarket(tz: ZoneInfo, now: datetime | None = None) -> bool:
    """True before 09:30 exchange time."""
    local = exchange_now(tz, now)
    return local.time() < time(MARKET_OPEN_HOUR, MARKET_OPEN_MINUTE)
