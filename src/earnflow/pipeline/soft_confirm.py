"""Soft-confirmation retry policy for the earnings calendar.

Providers backfill calendar entries during the day, so an empty response is
not proof that nobody reports. An empty (or transiently failing) fetch is
retried at increasing delays; when every attempt comes back empty the result
is ``soft_empty`` rather than a confirmed "no earnings".
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from earnflow.core.constants import DEFAULT_SOFT_CONFIRM_DELAYS_SECONDS
from earnflow.core.dates import exchange_now, now_utc
from earnflow.core.exceptions import ProviderError
from earnflow.core.logging import get_logger
from earnflow.providers.finnhub.models import CalendarEntry

logger = get_logger(__name__)

CalendarFetch = Callable[[], Awaitable[list[CalendarEntry]]]


@dataclass(frozen=True)
class CalendarFetchResult:
    ok: bool
    count: int
    soft_empty: bool = False
    rows: list[CalendarEntry] = field(default_factory=list)
    attempts: int = 0
    last_attempt_at: datetime | None = None
    error: str | None = None


async def fetch_with_soft_confirm(
    fetch: CalendarFetch,
    delays: Sequence[float] = DEFAULT_SOFT_CONFIRM_DELAYS_SECONDS,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    clock: Callable[[], datetime] = now_utc,
) -> CalendarFetchResult:
    """Fetch the calendar, retrying empty or transiently failing attempts.

    One immediate attempt plus one retry per entry in ``delays``. A
    non-transient provider error ends the attempt sequence with ``ok=False``.
    """
    attempts = 0
    last_attempt_at: datetime | None = None
    last_error: str | None = None
    answered = False

    for delay in (0.0, *delays):
        if delay > 0:
            logger.info(
                "Retrying calendar fetch",
                attempt=attempts + 1,
                delay_seconds=delay,
            )
            await sleep(delay)

        attempts += 1
        last_attempt_at = clock()
        try:
            rows = await fetch()
        except ProviderError as e:
            if not e.transient:
                logger.error(
                    "Calendar fetch failed",
                    attempt=attempts,
                    provider=e.provider,
                    error=e.message,
                )
                return CalendarFetchResult(
                    ok=False,
                    count=0,
                    attempts=attempts,
                    last_attempt_at=last_attempt_at,
                    error=e.message,
                )
            last_error = e.message
            logger.warning(
                "Transient calendar fetch error",
                attempt=attempts,
                provider=e.provider,
                error=e.message,
            )
            continue

        answered = True
        if rows:
            logger.info("Calendar fetched", attempt=attempts, count=len(rows))
            return CalendarFetchResult(
                ok=True,
                count=len(rows),
                rows=rows,
                attempts=attempts,
                last_attempt_at=last_attempt_at,
            )

    if not answered:
        logger.warning("Calendar provider never answered", attempts=attempts, error=last_error)
        return CalendarFetchResult(
            ok=False,
            count=0,
            attempts=attempts,
            last_attempt_at=last_attempt_at,
            error=last_error,
        )

    logger.info("All calendar attempts empty, marking soft empty", attempts=attempts)
    return CalendarFetchResult(
        ok=True,
        count=0,
        soft_empty=True,
        attempts=attempts,
        last_attempt_at=last_attempt_at,
    )


def should_show_no_earnings(
    trading_date: date,
    last_attempt_at: datetime | None,
    tz: ZoneInfo,
    now: datetime | None = None,
    cutoff_hour: int = 1,
    grace: timedelta = timedelta(hours=2),
) -> bool:
    """Whether an empty day may be presented as "no earnings".

    True when the trading date is in the past, when it is past ``cutoff_hour``
    on the following day, or when ``grace`` has elapsed since the last attempt.
    """
    local_now = exchange_now(tz, now)
    if trading_date < local_now.date():
        return True

    cutoff = datetime.combine(trading_date + timedelta(days=1), time(cutoff_hour), tzinfo=tz)
    if local_now >= cutoff:
        return True

    if last_attempt_at is not None and local_now - last_attempt_at >= grace:
        return True
    return False


def empty_state_message(
    trading_date: date,
    last_attempt_at: datetime | None,
    tz: ZoneInfo,
    soft_empty: bool,
    now: datetime | None = None,
    cutoff_hour: int = 1,
    grace: timedelta = timedelta(hours=2),
) -> str:
    if should_show_no_earnings(trading_date, last_attempt_at, tz, now, cutoff_hour, grace):
        return "No earnings scheduled for today"
    if soft_empty:
        return "Checking for earnings data..."
    return "Preparing today's earnings data..."
