"""Shared fixtures for integration tests.

These fixtures talk to REAL services: Finnhub and Polygon with keys from the
environment / .env, and a Redis server at REDIS_TEST_URL (database 15 by
default, flushed after each test). Anything unavailable skips the test.
"""

import os
from collections.abc import AsyncIterator
from typing import Any

import pytest
from redis.asyncio import Redis

from earnflow.config import Settings, get_settings
from earnflow.providers.finnhub import FinnhubClient
from earnflow.providers.polygon import PolygonClient


@pytest.fixture
def test_settings() -> Settings:
    """Settings loaded from environment variables / .env."""
    return get_settings()


@pytest.fixture
async def finnhub_client(test_settings: Settings) -> AsyncIterator[FinnhubClient]:
    if not test_settings.finnhub_api_key:
        pytest.skip("FINNHUB_API_KEY not set")
    client = FinnhubClient(
        api_key=test_settings.finnhub_api_key.get_secret_value(),
        base_url=test_settings.finnhub_api_url,
        timeout=test_settings.provider_timeout_seconds,
    )
    yield client
    await client.close()


@pytest.fixture
async def polygon_client(test_settings: Settings) -> AsyncIterator[PolygonClient]:
    if not test_settings.polygon_api_key:
        pytest.skip("POLYGON_API_KEY not set")
    client = PolygonClient(
        api_key=test_settings.polygon_api_key.get_secret_value(),
        base_url=test_settings.polygon_api_url,
        timeout=test_settings.provider_timeout_seconds,
    )
    yield client
    await client.close()


@pytest.fixture
async def real_redis() -> AsyncIterator[Any]:
    """Real Redis on a scratch database. Skips if the server is unreachable."""
    url = os.environ.get("REDIS_TEST_URL", "redis://localhost:6379/15")
    client = Redis.from_url(url, decode_responses=False)
    try:
        await client.ping()
    except Exception as e:
        await client.aclose()
        pytest.skip(f"Redis unavailable at {url}: {e}")
    await client.flushdb()
    yield client
    await client.flushdb()
    await client.aclose()
