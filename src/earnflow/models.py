"""Canonical domain records shared by providers, calculators and storage."""

from __future__ import annotations

from datetime import date, datetime
from enum import StrEnum

from pydantic import BaseModel, Field, field_validator

from earnflow.core.constants import TICKER_MAX_LENGTH
from earnflow.core.dates import now_utc


class ReportTime(StrEnum):
    BEFORE_OPEN = "BeforeOpen"
    AFTER_CLOSE = "AfterClose"
    DURING_SESSION = "DuringSession"


class FiscalPeriod(StrEnum):
    Q1 = "Q1"
    Q2 = "Q2"
    Q3 = "Q3"
    Q4 = "Q4"
    H1 = "H1"
    H2 = "H2"
    FY = "FY"


class SizeClass(StrEnum):
    MEGA = "Mega"
    LARGE = "Large"
    MID = "Mid"
    SMALL = "Small"


class DailyState(StrEnum):
    """Per-day pipeline state. Order matters: states only move forward."""

    INIT = "INIT"
    RESET_DONE = "RESET_DONE"
    FETCH_DONE = "FETCH_DONE"

    @property
    def rank(self) -> int:
        return _STATE_RANK[self]


_STATE_RANK = {DailyState.INIT: 0, DailyState.RESET_DONE: 1, DailyState.FETCH_DONE: 2}


_RELEASE_RANK = {"final": 3, "revised": 2, "update": 2, "updated": 2}


def release_rank(release_type: str | None) -> int:
    """Authority of a guidance release: final > revised/update > preliminary/other."""
    if not release_type:
        return 1
    return _RELEASE_RANK.get(release_type.strip().lower(), 1)


_PERIOD_ALIASES = {
    "1H": FiscalPeriod.H1,
    "2H": FiscalPeriod.H2,
    "1Q": FiscalPeriod.Q1,
    "2Q": FiscalPeriod.Q2,
    "3Q": FiscalPeriod.Q3,
    "4Q": FiscalPeriod.Q4,
    "FULL YEAR": FiscalPeriod.FY,
}


def normalize_fiscal_period(value: str | int | None) -> FiscalPeriod | None:
    """Map provider period labels ('3Q', '1H', 'Full Year', 2) onto FiscalPeriod.

    Integers are treated as quarter numbers. Anything unrecognised is None.
    """
    if value is None:
        return None
    if isinstance(value, int):
        return FiscalPeriod(f"Q{value}") if 1 <= value <= 4 else None
    label = value.strip().upper()
    if label in _PERIOD_ALIASES:
        return _PERIOD_ALIASES[label]
    try:
        return FiscalPeriod(label)
    except ValueError:
        return None


def normalize_ticker(value: str) -> str:
    ticker = value.strip().upper()
    if not 1 <= len(ticker) <= TICKER_MAX_LENGTH:
        raise ValueError(f"Ticker must be 1-{TICKER_MAX_LENGTH} characters: {value!r}")
    return ticker


class EarningsRecord(BaseModel):
    """One earnings calendar entry per (ticker, report_date)."""

    ticker: str
    report_date: date
    report_time: ReportTime = ReportTime.DURING_SESSION
    eps_estimate: float | None = None
    eps_actual: float | None = None
    revenue_estimate: int | None = None
    revenue_actual: int | None = None
    fiscal_period: FiscalPeriod | None = None
    fiscal_year: int | None = None
    company_name: str | None = None
    sector: str | None = None
    exchange: str | None = None
    data_source: str = "finnhub"
    last_updated: datetime = Field(default_factory=now_utc)

    @field_validator("ticker")
    @classmethod
    def validate_ticker(cls, v: str) -> str:
        return normalize_ticker(v)


class MarketSnapshot(BaseModel):
    """Price and market-cap facts per (ticker, report_date).

    Derived fields are only ever produced by the price calculator from the raw
    inputs stored alongside them.
    """

    ticker: str
    report_date: date
    company_name: str | None = None
    current_price: float | None = None
    previous_close: float | None = None
    shares_outstanding: int | None = None
    price_change_percent: float | None = None
    market_cap: int | None = None
    market_cap_diff_percent: float | None = None
    market_cap_diff_billions: float | None = None
    size_class: SizeClass | None = None
    is_valid: bool = False
    validation_errors: list[str] = Field(default_factory=list)
    price_fallback: bool = False
    data_source: str = "polygon"
    last_updated: datetime = Field(default_factory=now_utc)

    @field_validator("ticker")
    @classmethod
    def validate_ticker(cls, v: str) -> str:
        return normalize_ticker(v)


class GuidanceRecord(BaseModel):
    """Forward guidance per (ticker, fiscal_period, fiscal_year)."""

    ticker: str
    fiscal_period: FiscalPeriod
    fiscal_year: int
    release_type: str | None = None
    estimated_eps_guidance: float | None = None
    estimated_revenue_guidance: int | None = None
    previous_min_eps_guidance: float | None = None
    previous_max_eps_guidance: float | None = None
    previous_min_revenue_guidance: int | None = None
    previous_max_revenue_guidance: int | None = None
    eps_method: str | None = None
    revenue_method: str | None = None
    eps_guide_vs_consensus_pct: float | None = None
    revenue_guide_vs_consensus_pct: float | None = None
    eps_guide_surprise: float | None = None
    eps_guide_basis: str | None = None
    eps_guide_extreme: bool = False
    revenue_guide_surprise: float | None = None
    revenue_guide_basis: str | None = None
    revenue_guide_extreme: bool = False
    provider_id: str | None = None
    data_source: str = "benzinga"
    last_updated: datetime = Field(default_factory=now_utc)

    @field_validator("ticker")
    @classmethod
    def validate_ticker(cls, v: str) -> str:
        return normalize_ticker(v)
