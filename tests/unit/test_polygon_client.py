"""Tests for the Polygon provider."""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import AsyncMock, patch

import httpx
import orjson
import pytest

from earnflow.core.exceptions import ProviderNotFoundError, ProviderResponseError
from earnflow.models import FiscalPeriod
from earnflow.providers.base import RateLimiter
from earnflow.providers.polygon import GuidanceEntry, PolygonClient, to_guidance_record

# ---------------------------------------------------------------------------
# Sample Data
# ---------------------------------------------------------------------------

SAMPLE_PREV = {"ticker": "AAPL", "results": [{"T": "AAPL", "c": 148.5, "o": 147.0}]}
SAMPLE_TRADE = {"results": {"T": "AAPL", "p": 150.25, "s": 100}}
SAMPLE_DETAILS = {
    "results": {
        "ticker": "AAPL",
        "name": "Apple Inc.",
        "market_cap": 3_400_000_000_000,
        "share_class_shares_outstanding": None,
        "weighted_shares_outstanding": 15_204_137_000,
    }
}
SAMPLE_GUIDANCE = {
    "results": [
        {
            "id": "abc123",
            "ticker": "AAPL",
            "fiscal_period": "Q4",
            "fiscal_year": 2025,
            "release_type": "Final",
            "min_eps_guidance": 1.60,
            "max_eps_guidance": 1.70,
            "estimated_revenue_guidance": 95_000_000_000,
            "eps_method": "adj",
            "last_updated": "2025-09-01T12:00:00Z",
        },
        {
            "id": "def456",
            "ticker": "AAPL",
            "fiscal_period": None,
            "fiscal_year": 2025,
        },
    ]
}


def _response(payload: object, status: int = 200) -> httpx.Response:
    return httpx.Response(status, content=orjson.dumps(payload))


@pytest.fixture()
def client() -> PolygonClient:
    return PolygonClient(
        api_key="poly-key",
        base_url="https://polygon.test",
        limiter=RateLimiter(calls=1000),
    )


class TestPrices:
    async def test_previous_close(self, client: PolygonClient) -> None:
        with patch.object(client, "_get_http_client") as mock_http:
            mock_http.return_value.get = AsyncMock(return_value=_response(SAMPLE_PREV))
            prev = await client.fetch_previous_close("AAPL")

        assert prev is not None
        assert prev.close == 148.5
        call = mock_http.return_value.get.call_args
        assert call.args[0] == "https://polygon.test/v2/aggs/ticker/AAPL/prev"
        assert call.kwargs["params"] == {"adjusted": "true", "apiKey": "poly-key"}

    async def test_previous_close_empty(self, client: PolygonClient) -> None:
        with patch.object(client, "_get_http_client") as mock_http:
            mock_http.return_value.get = AsyncMock(return_value=_response({"results": []}))
            assert await client.fetch_previous_close("AAPL") is None

    async def test_last_trade(self, client: PolygonClient) -> None:
        with patch.object(client, "_get_http_client") as mock_http:
            mock_http.return_value.get = AsyncMock(return_value=_response(SAMPLE_TRADE))
            trade = await client.fetch_last_trade("AAPL")

        assert trade is not None
        assert trade.price == 150.25


class TestTickerDetails:
    async def test_falls_back_to_weighted_shares(self, client: PolygonClient) -> None:
        with patch.object(client, "_get_http_client") as mock_http:
            mock_http.return_value.get = AsyncMock(return_value=_response(SAMPLE_DETAILS))
            profile = await client.fetch_company_profile("AAPL")

        assert profile is not None
        assert profile.name == "Apple Inc."
        assert profile.shares_outstanding == 15_204_137_000
        assert profile.market_cap == 3_400_000_000_000

    async def test_unknown_symbol_raises_not_found(self, client: PolygonClient) -> None:
        with patch.object(client, "_get_http_client") as mock_http:
            mock_http.return_value.get = AsyncMock(return_value=_response({}, status=404))
            with pytest.raises(ProviderNotFoundError):
                await client.fetch_ticker_details("ZZZZ")


class TestGuidance:
    async def test_fetch_guidance(self, client: PolygonClient) -> None:
        with patch.object(client, "_get_http_client") as mock_http:
            mock_http.return_value.get = AsyncMock(return_value=_response(SAMPLE_GUIDANCE))
            entries = await client.fetch_guidance("AAPL")

        assert len(entries) == 2
        assert entries[0].provider_id == "abc123"
        assert entries[0].last_updated == datetime(2025, 9, 1, 12, tzinfo=UTC)
        params = mock_http.return_value.get.call_args.kwargs["params"]
        assert params["ticker"] == "AAPL"
        assert params["limit"] == 10
        assert params["sort"] == "date.desc"

    async def test_no_results(self, client: PolygonClient) -> None:
        with patch.object(client, "_get_http_client") as mock_http:
            mock_http.return_value.get = AsyncMock(return_value=_response({"results": None}))
            assert await client.fetch_guidance("AAPL") == []

    async def test_malformed_row_skipped(self, client: PolygonClient) -> None:
        payload = {
            "results": [
                {"id": "bad1", "ticker": "AAPL", "fiscal_period": "Q4", "eps_method": 7},
                SAMPLE_GUIDANCE["results"][0],
            ]
        }
        with patch.object(client, "_get_http_client") as mock_http:
            mock_http.return_value.get = AsyncMock(return_value=_response(payload))
            entries = await client.fetch_guidance("AAPL")

        assert [e.provider_id for e in entries] == ["abc123"]

    async def test_malformed_details_raise_response_error(self, client: PolygonClient) -> None:
        payload = {"results": {"ticker": "AAPL", "name": ["Apple"]}}
        with patch.object(client, "_get_http_client") as mock_http:
            mock_http.return_value.get = AsyncMock(return_value=_response(payload))
            with pytest.raises(ProviderResponseError):
                await client.fetch_ticker_details("AAPL")


class TestToGuidanceRecord:
    def test_midpoint_fallback(self) -> None:
        entry = GuidanceEntry(
            ticker="AAPL",
            fiscal_period="4Q",
            fiscal_year=2025,
            min_eps_guidance=1.60,
            max_eps_guidance=1.70,
            min_revenue_guidance=90,
            max_revenue_guidance=95,
            last_updated=datetime(2025, 9, 1, tzinfo=UTC),
        )
        record = to_guidance_record(entry)

        assert record is not None
        assert record.fiscal_period is FiscalPeriod.Q4
        assert record.estimated_eps_guidance == pytest.approx(1.65)
        assert record.estimated_revenue_guidance == 92
        assert record.last_updated == datetime(2025, 9, 1, tzinfo=UTC)

    def test_point_estimate_preferred(self) -> None:
        entry = GuidanceEntry(
            ticker="AAPL",
            fiscal_period="FY",
            fiscal_year=2025,
            estimated_eps_guidance=6.0,
            min_eps_guidance=5.0,
            max_eps_guidance=8.0,
        )
        record = to_guidance_record(entry)

        assert record is not None
        assert record.estimated_eps_guidance == 6.0

    def test_missing_period_dropped(self) -> None:
        entry = GuidanceEntry(ticker="AAPL", fiscal_period=None, fiscal_year=2025)
        assert to_guidance_record(entry) is None

    def test_missing_year_dropped(self) -> None:
        entry = GuidanceEntry(ticker="AAPL", fiscal_period="Q1")
        assert to_guidance_record(entry) is None
