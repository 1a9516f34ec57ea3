"""Pydantic models for Polygon responses."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class TickerDetails(BaseModel):
    """Subset of ``/v3/reference/tickers/{ticker}`` we care about."""

    ticker: str
    name: str | None = None
    market_cap: float | None = None
    shares_outstanding: int | None = None


class GuidanceEntry(BaseModel):
    """A single Benzinga corporate-guidance release served through Polygon."""

    ticker: str
    provider_id: str | None = None
    fiscal_period: str | None = None
    fiscal_year: int | None = None
    release_type: str | None = None
    estimated_eps_guidance: float | None = None
    min_eps_guidance: float | None = None
    max_eps_guidance: float | None = None
    estimated_revenue_guidance: int | None = None
    min_revenue_guidance: int | None = None
    max_revenue_guidance: int | None = None
    previous_min_eps_guidance: float | None = None
    previous_max_eps_guidance: float | None = None
    previous_min_revenue_guidance: int | None = None
    previous_max_revenue_guidance: int | None = None
    eps_method: str | None = None
    revenue_method: str | None = None
    eps_guide_vs_consensus_pct: float | None = None
    revenue_guide_vs_consensus_pct: float | None = None
    last_updated: datetime | None = None
