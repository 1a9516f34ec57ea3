"""Pydantic models for Finnhub responses."""

from __future__ import annotations

from datetime import date

from pydantic import BaseModel


class CalendarEntry(BaseModel):
    """A single row of Finnhub's ``/calendar/earnings`` response."""

    symbol: str
    report_date: date | None = None
    hour: str | None = None  # "bmo", "amc", "dmh" or blank
    eps_estimate: float | None = None
    eps_actual: float | None = None
    revenue_estimate: int | None = None
    revenue_actual: int | None = None
    quarter: int | None = None
    year: int | None = None
    sector: str | None = None
    exchange: str | None = None
