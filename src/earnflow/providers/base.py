"""Provider protocols, shared DTOs and HTTP plumbing.

This module defines the interfaces (Protocols) the fetch pipeline consumes so
that the earnings-calendar and market-data vendors can be swapped without
touching the orchestrator.

Provider Types:
- EarningsCalendarProvider: Daily earnings calendar + company profile
- MarketDataProvider: Previous close, last trade, company profile
- GuidanceProvider: Corporate guidance releases

Zero results are always an empty list or ``None``. Rate limits, timeouts and
upstream failures are raised as typed ``ProviderError`` subclasses so callers
can tell "nothing there" apart from "could not ask".
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import httpx
import orjson

from earnflow.core.exceptions import (
    ProviderNotFoundError,
    ProviderRateLimitError,
    ProviderResponseError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)
from earnflow.core.logging import get_logger

if TYPE_CHECKING:
    from earnflow.providers.finnhub.models import CalendarEntry
    from earnflow.providers.polygon.models import GuidanceEntry

logger = get_logger(__name__)


# =============================================================================
# DTOs returned by market-data providers
# =============================================================================


@dataclass(frozen=True)
class PreviousClose:
    close: float


@dataclass(frozen=True)
class LastTrade:
    price: float


@dataclass(frozen=True)
class CompanyProfile:
    """Company-level enrichment. Every field except the name is optional."""

    name: str | None = None
    market_cap: float | None = None
    shares_outstanding: int | None = None


# =============================================================================
# Protocols
# =============================================================================


@runtime_checkable
class EarningsCalendarProvider(Protocol):
    """Protocol for the daily earnings calendar."""

    async def fetch_calendar(self, target_date: date) -> list[CalendarEntry]:
        """Get every earnings report scheduled for ``target_date``.

        Returns:
            Calendar entries, empty when the provider has none (yet).

        Raises:
            ProviderError: rate limit, timeout or upstream failure.
        """
        ...

    async def fetch_company_profile(self, ticker: str) -> CompanyProfile | None: ...

    async def close(self) -> None: ...


@runtime_checkable
class MarketDataProvider(Protocol):
    """Protocol for per-ticker price data."""

    async def fetch_previous_close(self, ticker: str) -> PreviousClose | None: ...

    async def fetch_last_trade(self, ticker: str) -> LastTrade | None: ...

    async def fetch_company_profile(self, ticker: str) -> CompanyProfile | None: ...

    async def close(self) -> None: ...


@runtime_checkable
class GuidanceProvider(Protocol):
    """Protocol for corporate guidance releases."""

    async def fetch_guidance(self, ticker: str) -> list[GuidanceEntry]: ...

    async def close(self) -> None: ...


# =============================================================================
# Rate limiting
# =============================================================================


class RateLimiter:
    """Sliding-window rate limiter shared by all calls to one provider."""

    def __init__(self, calls: int, period: float = 60.0) -> None:
        self._max_calls = calls
        self._period = period
        self._calls: list[float] = []
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        async with self._lock:
            loop = asyncio.get_running_loop()
            now = loop.time()
            self._calls = [t for t in self._calls if t > now - self._period]
            if len(self._calls) >= self._max_calls:
                sleep_time = self._period - (now - self._calls[0]) + 0.05
                if sleep_time > 0:
                    logger.debug("Rate limit reached, waiting", sleep=round(sleep_time, 2))
                    await asyncio.sleep(sleep_time)
                now = loop.time()
                self._calls = [t for t in self._calls if t > now - self._period]
            self._calls.append(now)


# =============================================================================
# HTTP helpers
# =============================================================================


async def get_json(
    client: httpx.AsyncClient,
    url: str,
    *,
    provider: str,
    params: Mapping[str, str | int] | None = None,
    limiter: RateLimiter | None = None,
) -> Any:
    """GET ``url`` and decode JSON, translating failures to typed provider errors."""
    if limiter is not None:
        await limiter.acquire()

    try:
        response = await client.get(url, params=params)
    except httpx.TimeoutException as e:
        raise ProviderTimeoutError(f"{provider} request timed out: {url}", provider) from e
    except httpx.TransportError as e:
        raise ProviderUnavailableError(f"{provider} connection failed: {e}", provider) from e

    status = response.status_code
    if status == 429:
        retry_after = _parse_retry_after(response.headers.get("Retry-After"))
        raise ProviderRateLimitError(
            f"{provider} rate limit exceeded", provider, status, retry_after=retry_after
        )
    if status == 404:
        raise ProviderNotFoundError(f"{provider} returned 404 for {url}", provider, status)
    if status >= 500:
        raise ProviderUnavailableError(f"{provider} returned {status}", provider, status)
    if status >= 400:
        raise ProviderResponseError(f"{provider} returned {status}", provider, status)

    try:
        return orjson.loads(response.content)
    except orjson.JSONDecodeError as e:
        raise ProviderResponseError(f"{provider} returned invalid JSON", provider, status) from e


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def parse_float(value: object) -> float | None:
    """Parse a provider number, treating blanks, 'N/A' and NaN as missing."""
    if value is None or value == "" or value == "N/A":
        return None
    try:
        result = float(value)  # type: ignore[arg-type]
    except (ValueError, TypeError):
        return None
    if result != result or result in (float("inf"), float("-inf")):
        return None
    return result


def parse_int(value: object) -> int | None:
    """Parse a provider number and round to an integer."""
    result = parse_float(value)
    return None if result is None else round(result)
