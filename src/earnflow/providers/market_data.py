"""Per-ticker market data assembly.

Combines previous close, last trade and company profile lookups into the raw
inputs the price calculator needs. Each sub-call is optional enrichment: one
failing never aborts the others.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from earnflow.core.exceptions import ProviderError, ProviderNotFoundError
from earnflow.core.logging import get_logger
from earnflow.providers.base import (
    CompanyProfile,
    EarningsCalendarProvider,
    LastTrade,
    MarketDataProvider,
    PreviousClose,
)

if TYPE_CHECKING:
    from earnflow.cache.versioning import VersionedCache

logger = get_logger(__name__)


@dataclass(frozen=True)
class MarketQuote:
    """Raw market inputs for one ticker, before any derivation."""

    ticker: str
    current_price: float | None = None
    previous_close: float | None = None
    shares_outstanding: int | None = None
    company_name: str | None = None
    price_fallback: bool = False
    errors: tuple[str, ...] = ()

    @property
    def has_price(self) -> bool:
        return self.current_price is not None and self.previous_close is not None


def negative_cache_key(ticker: str) -> str:
    return f"market:{ticker}"


class MarketDataService:
    """Fetches market quotes for many tickers under a concurrency ceiling.

    Usage:
        service = MarketDataService(polygon, profile_provider=finnhub, cache=cache)
        quotes = await service.fetch_many(["AAPL", "MSFT"])
    """

    def __init__(
        self,
        market: MarketDataProvider,
        profile_provider: EarningsCalendarProvider | None = None,
        cache: VersionedCache | None = None,
        concurrency: int = 5,
        batch_delay: float = 0.2,
        negative_ttl: int = 120,
    ) -> None:
        self._market = market
        self._profile_provider = profile_provider
        self._cache = cache
        self._concurrency = max(1, concurrency)
        self._batch_delay = batch_delay
        self._negative_ttl = negative_ttl

    async def fetch_market_data(self, ticker: str) -> MarketQuote | None:
        """Fetch one ticker. Returns None when the ticker is known-missing upstream."""
        if self._cache is not None and await self._cache.is_negative(negative_cache_key(ticker)):
            logger.debug("Skipping negatively cached ticker", ticker=ticker)
            return None

        coros = [
            self._market.fetch_previous_close(ticker),
            self._market.fetch_last_trade(ticker),
            self._market.fetch_company_profile(ticker),
        ]
        if self._profile_provider is not None:
            coros.append(self._profile_provider.fetch_company_profile(ticker))

        results = await asyncio.gather(*coros, return_exceptions=True)
        errors: list[str] = []
        for label, result in zip(("prev_close", "last_trade", "details", "profile"), results):
            if isinstance(result, ProviderNotFoundError):
                errors.append(f"{label}: not found")
            elif isinstance(result, ProviderError):
                errors.append(f"{label}: {result.message}")
                logger.warning(
                    "Market data sub-call failed",
                    ticker=ticker,
                    call=label,
                    provider=result.provider,
                    error=result.message,
                )
            elif isinstance(result, BaseException):
                raise result

        # Reference data 404 means Polygon does not know the symbol at all
        if isinstance(results[2], ProviderNotFoundError) and self._cache is not None:
            await self._cache.set_negative(negative_cache_key(ticker), 404, self._negative_ttl)
            logger.info("Ticker not found upstream, negatively cached", ticker=ticker)

        prev = results[0] if isinstance(results[0], PreviousClose) else None
        trade = results[1] if isinstance(results[1], LastTrade) else None
        details = results[2] if isinstance(results[2], CompanyProfile) else None
        profile = (
            results[3] if len(results) > 3 and isinstance(results[3], CompanyProfile) else None
        )

        previous_close = prev.close if prev else None
        current_price = trade.price if trade else None
        price_fallback = False
        if current_price is None and previous_close is not None:
            current_price = previous_close
            price_fallback = True

        shares = _first_not_none(
            details.shares_outstanding if details else None,
            profile.shares_outstanding if profile else None,
        )
        market_cap = _first_not_none(
            details.market_cap if details else None,
            profile.market_cap if profile else None,
        )
        if shares is None and market_cap and current_price:
            shares = round(market_cap / current_price)

        company_name = _first_not_none(
            profile.name if profile else None,
            details.name if details else None,
        )

        return MarketQuote(
            ticker=ticker,
            current_price=current_price,
            previous_close=previous_close,
            shares_outstanding=shares,
            company_name=company_name,
            price_fallback=price_fallback,
            errors=tuple(errors),
        )

    async def fetch_many(self, tickers: Sequence[str]) -> dict[str, MarketQuote | None]:
        """Fetch tickers in batches of ``concurrency`` with a delay between batches.

        Unexpected per-ticker exceptions are logged and map to None.
        """
        quotes: dict[str, MarketQuote | None] = {}
        unique = list(dict.fromkeys(tickers))
        for start in range(0, len(unique), self._concurrency):
            batch = unique[start : start + self._concurrency]
            results = await asyncio.gather(
                *(self.fetch_market_data(t) for t in batch), return_exceptions=True
            )
            for ticker, result in zip(batch, results):
                if isinstance(result, BaseException):
                    logger.warning("Market data fetch failed", ticker=ticker, error=str(result))
                    quotes[ticker] = None
                else:
                    quotes[ticker] = result
            if start + self._concurrency < len(unique) and self._batch_delay > 0:
                await asyncio.sleep(self._batch_delay)
        return quotes


def _first_not_none(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None
