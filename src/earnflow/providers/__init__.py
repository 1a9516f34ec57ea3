"""Earnings and market data providers.

## Provider Types

- **EarningsCalendarProvider**: Daily earnings calendar (Finnhub)
- **MarketDataProvider**: Previous close, last trade, ticker details (Polygon)
- **GuidanceProvider**: Corporate guidance releases (Benzinga via Polygon)

## Usage

```python
from earnflow.providers import FinnhubClient, PolygonClient, MarketDataService

finnhub = FinnhubClient(api_key="...", base_url=settings.finnhub_api_url)
polygon = PolygonClient(api_key="...", base_url=settings.polygon_api_url)
service = MarketDataService(polygon, profile_provider=finnhub, cache=cache)

entries = await finnhub.fetch_calendar(date.today())
quotes = await service.fetch_many([e.symbol for e in entries])
```
"""

from earnflow.providers.base import (
    CompanyProfile,
    EarningsCalendarProvider,
    GuidanceProvider,
    LastTrade,
    MarketDataProvider,
    PreviousClose,
    RateLimiter,
)
from earnflow.providers.finnhub import CalendarEntry, FinnhubClient, to_earnings_record
from earnflow.providers.market_data import MarketDataService, MarketQuote
from earnflow.providers.polygon import GuidanceEntry, PolygonClient, to_guidance_record

__all__ = [
    "CalendarEntry",
    "CompanyProfile",
    "EarningsCalendarProvider",
    "FinnhubClient",
    "GuidanceEntry",
    "GuidanceProvider",
    "LastTrade",
    "MarketDataProvider",
    "MarketDataService",
    "MarketQuote",
    "PolygonClient",
    "PreviousClose",
    "RateLimiter",
    "to_earnings_record",
    "to_guidance_record",
]
