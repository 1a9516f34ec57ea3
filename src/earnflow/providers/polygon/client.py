"""Polygon API client for prices, ticker reference data and corporate guidance.

- Previous close: /v2/aggs/ticker/{ticker}/prev
- Last trade: /v2/last/trade/{ticker}
- Ticker details: /v3/reference/tickers/{ticker}
- Guidance (Benzinga): /benzinga/v1/guidance?ticker=...&limit=10&sort=date.desc
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import httpx
from pydantic import ValidationError

from earnflow.core.constants import GUIDANCE_FETCH_LIMIT
from earnflow.core.exceptions import ProviderResponseError
from earnflow.core.logging import get_logger
from earnflow.models import GuidanceRecord, normalize_fiscal_period
from earnflow.providers.base import (
    CompanyProfile,
    LastTrade,
    PreviousClose,
    RateLimiter,
    get_json,
    parse_float,
    parse_int,
)
from earnflow.providers.polygon.models import GuidanceEntry, TickerDetails

logger = get_logger(__name__)

PROVIDER = "polygon"


class PolygonClient:
    """Client for the Polygon REST API.

    A 404 for an unknown symbol is raised as ``ProviderNotFoundError`` so the
    caller can negative-cache it; a 200 with no results returns ``None``.
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
        self._limiter = limiter or RateLimiter(calls=300)
        self._http_client: httpx.AsyncClient | None = None

    def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=self._timeout,
                follow_redirects=True,
                headers={"Accept": "application/json"},
            )
        return self._http_client

    async def _fetch(self, endpoint: str, params: dict[str, str | int] | None = None) -> Any:
        params = dict(params or {})
        params["apiKey"] = self._api_key
        return await get_json(
            self._get_http_client(),
            f"{self._base_url}{endpoint}",
            provider=PROVIDER,
            params=params,
            limiter=self._limiter,
        )

    async def fetch_previous_close(self, ticker: str) -> PreviousClose | None:
        data = await self._fetch(f"/v2/aggs/ticker/{ticker}/prev", {"adjusted": "true"})
        results = data.get("results") if isinstance(data, dict) else None
        if not results:
            return None
        close = parse_float(results[0].get("c"))
        if close is None:
            return None
        return PreviousClose(close=close)

    async def fetch_last_trade(self, ticker: str) -> LastTrade | None:
        data = await self._fetch(f"/v2/last/trade/{ticker}")
        results = data.get("results") if isinstance(data, dict) else None
        if not isinstance(results, dict):
            return None
        price = parse_float(results.get("p"))
        if price is None:
            return None
        return LastTrade(price=price)

    async def fetch_ticker_details(self, ticker: str) -> TickerDetails | None:
        data = await self._fetch(f"/v3/reference/tickers/{ticker}")
        results = data.get("results") if isinstance(data, dict) else None
        if not isinstance(results, dict):
            return None

        shares = parse_int(results.get("share_class_shares_outstanding"))
        if shares is None:
            shares = parse_int(results.get("weighted_shares_outstanding"))
        try:
            return TickerDetails(
                ticker=results.get("ticker") or ticker,
                name=results.get("name"),
                market_cap=parse_float(results.get("market_cap")),
                shares_outstanding=shares,
            )
        except ValidationError as e:
            raise ProviderResponseError(f"Malformed ticker details: {e}", PROVIDER) from e

    async def fetch_company_profile(self, ticker: str) -> CompanyProfile | None:
        details = await self.fetch_ticker_details(ticker)
        if details is None:
            return None
        return CompanyProfile(
            name=details.name,
            market_cap=details.market_cap,
            shares_outstanding=details.shares_outstanding,
        )

    async def fetch_guidance(self, ticker: str) -> list[GuidanceEntry]:
        """Latest guidance releases for a ticker, newest first."""
        data = await self._fetch(
            "/benzinga/v1/guidance",
            {"ticker": ticker, "limit": GUIDANCE_FETCH_LIMIT, "sort": "date.desc"},
        )
        rows = data.get("results") if isinstance(data, dict) else None
        if not rows:
            return []

        entries: list[GuidanceEntry] = []
        for row in rows:
            if not isinstance(row, dict):
                continue
            try:
                entry = GuidanceEntry(
                    ticker=str(row.get("ticker") or ticker),
                    provider_id=str(row["id"]) if row.get("id") is not None else None,
                    fiscal_period=row.get("fiscal_period"),
                    fiscal_year=parse_int(row.get("fiscal_year")),
                    release_type=row.get("release_type"),
                    estimated_eps_guidance=parse_float(row.get("estimated_eps_guidance")),
                    min_eps_guidance=parse_float(row.get("min_eps_guidance")),
                    max_eps_guidance=parse_float(row.get("max_eps_guidance")),
                    estimated_revenue_guidance=parse_int(row.get("estimated_revenue_guidance")),
                    min_revenue_guidance=parse_int(row.get("min_revenue_guidance")),
                    max_revenue_guidance=parse_int(row.get("max_revenue_guidance")),
                    previous_min_eps_guidance=parse_float(row.get("previous_min_eps_guidance")),
                    previous_max_eps_guidance=parse_float(row.get("previous_max_eps_guidance")),
                    previous_min_revenue_guidance=parse_int(
                        row.get("previous_min_revenue_guidance")
                    ),
                    previous_max_revenue_guidance=parse_int(
                        row.get("previous_max_revenue_guidance")
                    ),
                    eps_method=row.get("eps_method") or None,
                    revenue_method=row.get("revenue_method") or None,
                    eps_guide_vs_consensus_pct=parse_float(
                        row.get("eps_guide_vs_consensus_pct")
                    ),
                    revenue_guide_vs_consensus_pct=parse_float(
                        row.get("revenue_guide_vs_consensus_pct")
                    ),
                    last_updated=_parse_timestamp(row.get("last_updated")),
                )
            except ValidationError as e:
                logger.warning(
                    "Skipping malformed guidance row",
                    ticker=ticker,
                    provider_id=row.get("id"),
                    errors=e.error_count(),
                )
                continue
            entries.append(entry)
        logger.debug("Fetched Polygon guidance", ticker=ticker, count=len(entries))
        return entries

    async def close(self) -> None:
        """Clean up resources."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
        logger.debug("PolygonClient closed")


def to_guidance_record(entry: GuidanceEntry) -> GuidanceRecord | None:
    """Normalize a guidance release into a GuidanceRecord.

    Releases without a recognisable fiscal period or year cannot be keyed and
    are dropped. A missing point estimate falls back to the midpoint of the
    release's own min/max range.
    """
    period = normalize_fiscal_period(entry.fiscal_period)
    if period is None or entry.fiscal_year is None:
        logger.debug(
            "Dropping guidance without fiscal period",
            ticker=entry.ticker,
            fiscal_period=entry.fiscal_period,
            fiscal_year=entry.fiscal_year,
        )
        return None

    eps = entry.estimated_eps_guidance
    if eps is None and entry.min_eps_guidance is not None and entry.max_eps_guidance is not None:
        eps = (entry.min_eps_guidance + entry.max_eps_guidance) / 2
    revenue = entry.estimated_revenue_guidance
    if (
        revenue is None
        and entry.min_revenue_guidance is not None
        and entry.max_revenue_guidance is not None
    ):
        revenue = round((entry.min_revenue_guidance + entry.max_revenue_guidance) / 2)

    record_kwargs: dict[str, Any] = {
        "ticker": entry.ticker,
        "fiscal_period": period,
        "fiscal_year": entry.fiscal_year,
        "release_type": entry.release_type,
        "estimated_eps_guidance": eps,
        "estimated_revenue_guidance": revenue,
        "previous_min_eps_guidance": entry.previous_min_eps_guidance,
        "previous_max_eps_guidance": entry.previous_max_eps_guidance,
        "previous_min_revenue_guidance": entry.previous_min_revenue_guidance,
        "previous_max_revenue_guidance": entry.previous_max_revenue_guidance,
        "eps_method": entry.eps_method,
        "revenue_method": entry.revenue_method,
        "eps_guide_vs_consensus_pct": entry.eps_guide_vs_consensus_pct,
        "revenue_guide_vs_consensus_pct": entry.revenue_guide_vs_consensus_pct,
        "provider_id": entry.provider_id,
    }
    if entry.last_updated is not None:
        record_kwargs["last_updated"] = entry.last_updated
    try:
        return GuidanceRecord(**record_kwargs)
    except ValueError as e:
        logger.warning("Dropping malformed guidance row", ticker=entry.ticker, error=str(e))
        return None


def _parse_timestamp(value: object) -> datetime | None:
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
