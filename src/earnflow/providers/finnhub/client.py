"""Finnhub API client for the earnings calendar and company profiles.

- Earnings calendar: /calendar/earnings?from=YYYY-MM-DD&to=YYYY-MM-DD
- Company profile: /stock/profile2?symbol=AAPL

Rate limiting: Free tier = 60 calls/min across ALL endpoints.
"""

from __future__ import annotations

from datetime import date
from typing import Any

import httpx
from pydantic import ValidationError

from earnflow.core.exceptions import ProviderNotFoundError, ProviderResponseError
from earnflow.core.logging import get_logger
from earnflow.models import EarningsRecord, ReportTime, normalize_fiscal_period
from earnflow.providers.base import (
    CompanyProfile,
    RateLimiter,
    get_json,
    parse_float,
    parse_int,
)
from earnflow.providers.finnhub.models import CalendarEntry

logger = get_logger(__name__)

PROVIDER = "finnhub"

_HOUR_MAP: dict[str, ReportTime] = {
    "bmo": ReportTime.BEFORE_OPEN,
    "amc": ReportTime.AFTER_CLOSE,
}


class FinnhubClient:
    """Client for the Finnhub REST API.

    Usage:
        client = FinnhubClient(api_key="...", base_url=settings.finnhub_api_url)
        entries = await client.fetch_calendar(date(2025, 9, 9))
        await client.close()
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        timeout: float = 8.0,
        limiter: RateLimiter | None = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._limiter = limiter or RateLimiter(calls=60)
        self._http_client: httpx.AsyncClient | None = None

    def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=self._timeout,
                follow_redirects=True,
                headers={"Accept": "application/json"},
            )
        return self._http_client

    async def _fetch(self, endpoint: str, params: dict[str, str | int]) -> Any:
        params["token"] = self._api_key
        return await get_json(
            self._get_http_client(),
            f"{self._base_url}{endpoint}",
            provider=PROVIDER,
            params=params,
            limiter=self._limiter,
        )

    async def fetch_calendar(self, target_date: date) -> list[CalendarEntry]:
        """Get all earnings reports for a specific date.

        Args:
            target_date: Trading date to look up

        Returns:
            Calendar entries for that date (empty if none published yet)
        """
        date_str = target_date.isoformat()
        data = await self._fetch("/calendar/earnings", {"from": date_str, "to": date_str})

        if isinstance(data, dict):
            rows = data.get("earningsCalendar") or []
        elif isinstance(data, list):
            rows = data
        else:
            raise ProviderResponseError("Unexpected calendar payload", PROVIDER)

        entries: list[CalendarEntry] = []
        for row in rows:
            if not isinstance(row, dict):
                continue
            symbol = str(row.get("symbol") or "").strip()
            if not symbol:
                continue
            try:
                entry = CalendarEntry(
                    symbol=symbol,
                    report_date=_parse_date(row.get("date")) or target_date,
                    hour=row.get("hour") or None,
                    eps_estimate=parse_float(row.get("epsEstimate")),
                    eps_actual=parse_float(row.get("epsActual")),
                    revenue_estimate=parse_int(row.get("revenueEstimate")),
                    revenue_actual=parse_int(row.get("revenueActual")),
                    quarter=parse_int(row.get("quarter")),
                    year=parse_int(row.get("year")),
                    sector=row.get("sector") or None,
                    exchange=row.get("exchange") or None,
                )
            except ValidationError as e:
                logger.warning(
                    "Skipping malformed calendar row", symbol=symbol, errors=e.error_count()
                )
                continue
            entries.append(entry)

        logger.debug("Fetched Finnhub calendar", date=date_str, count=len(entries))
        return entries

    async def fetch_company_profile(self, ticker: str) -> CompanyProfile | None:
        """Company name, market cap and shares outstanding from /stock/profile2."""
        try:
            data = await self._fetch("/stock/profile2", {"symbol": ticker})
        except ProviderNotFoundError:
            return None
        if not data or not isinstance(data, dict) or not data.get("name"):
            return None

        # Finnhub reports market cap and shares in millions
        market_cap = parse_float(data.get("marketCapitalization"))
        shares = parse_float(data.get("shareOutstanding"))
        return CompanyProfile(
            name=data["name"],
            market_cap=market_cap * 1_000_000 if market_cap is not None else None,
            shares_outstanding=round(shares * 1_000_000) if shares is not None else None,
        )

    async def close(self) -> None:
        """Clean up resources."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
        logger.debug("FinnhubClient closed")


def to_earnings_record(entry: CalendarEntry, report_date: date) -> EarningsRecord | None:
    """Normalize a calendar row into the canonical EarningsRecord.

    Returns None (and logs) when the row cannot be represented, e.g. a ticker
    longer than the allowed length.
    """
    try:
        return EarningsRecord(
            ticker=entry.symbol,
            report_date=entry.report_date or report_date,
            report_time=_HOUR_MAP.get((entry.hour or "").lower(), ReportTime.DURING_SESSION),
            eps_estimate=entry.eps_estimate,
            eps_actual=entry.eps_actual,
            revenue_estimate=entry.revenue_estimate,
            revenue_actual=entry.revenue_actual,
            fiscal_period=normalize_fiscal_period(entry.quarter),
            fiscal_year=entry.year,
            sector=entry.sector,
            exchange=entry.exchange,
            data_source=PROVIDER,
        )
    except ValueError as e:
        logger.warning("Dropping malformed calendar row", symbol=entry.symbol, error=str(e))
        return None


def _parse_date(value: object) -> date | None:
    if not value or not isinstance(value, str):
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None
