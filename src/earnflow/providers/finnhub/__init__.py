"""Finnhub provider for the earnings calendar and company profiles."""

from earnflow.providers.finnhub.client import FinnhubClient, to_earnings_record
from earnflow.providers.finnhub.models import CalendarEntry

__all__ = [
    "CalendarEntry",
    "FinnhubClient",
    "to_earnings_record",
]
