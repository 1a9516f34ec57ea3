"""Polygon provider for prices, ticker details and corporate guidance."""

from earnflow.providers.polygon.client import PolygonClient, to_guidance_record
from earnflow.providers.polygon.models import GuidanceEntry, TickerDetails

__all__ = [
    "GuidanceEntry",
    "PolygonClient",
    "TickerDetails",
    "to_guidance_record",
]
