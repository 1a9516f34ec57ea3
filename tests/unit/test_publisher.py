"""Tests for the snapshot publisher."""

from datetime import UTC, date, datetime, timedelta
from typing import Any

import pytest

from earnflow.cache.versioning import VersionedCache
from earnflow.core.constants import LATEST_META_KEY
from earnflow.models import EarningsRecord, MarketSnapshot, ReportTime
from earnflow.pipeline.publisher import PublishedSnapshot, SnapshotPublisher, published_key
from earnflow.processing.coverage import CoverageThresholds

DAY = date(2025, 9, 9)
NOW = datetime(2025, 9, 9, 20, 0, tzinfo=UTC)


class _Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock() -> _Clock:
    return _Clock(NOW)


@pytest.fixture
def cache(mock_redis: Any) -> VersionedCache:
    return VersionedCache(mock_redis)


@pytest.fixture
def publisher(fake_db: Any, cache: VersionedCache, clock: _Clock) -> SnapshotPublisher:
    return SnapshotPublisher(
        fake_db,
        cache,
        CoverageThresholds(),
        stale_after=timedelta(minutes=30),
        clock=clock,
    )


async def _seed(fake_db: Any, ticker: str, price: float | None) -> None:
    await fake_db.upsert_earnings(
        EarningsRecord(
            ticker=ticker,
            report_date=DAY,
            report_time=ReportTime.BEFORE_OPEN,
            eps_estimate=1.0,
            revenue_estimate=100,
        )
    )
    if price is not None:
        await fake_db.upsert_market_snapshot(
            MarketSnapshot(ticker=ticker, report_date=DAY, current_price=price)
        )


class TestPublish:
    """Tests for SnapshotPublisher.publish()."""

    @pytest.mark.anyio
    async def test_publish_promotes_new_version(
        self, publisher: SnapshotPublisher, fake_db: Any, cache: VersionedCache
    ) -> None:
        await _seed(fake_db, "AAPL", 150.0)

        snapshot = await publisher.publish(DAY)

        assert snapshot.version == 1
        assert snapshot.status == "fresh"
        assert await cache.get_version() == 1
        payload = await cache.get_json(published_key(DAY))
        assert payload["day"] == "2025-09-09"
        assert payload["coverage"] == {"schedule": 100, "price": 100, "epsRev": 100}
        assert payload["data"][0]["ticker"] == "AAPL"
        assert payload["data"][0]["report_date"] == "2025-09-09"

    @pytest.mark.anyio
    async def test_low_price_coverage_is_partial(
        self, publisher: SnapshotPublisher, fake_db: Any
    ) -> None:
        await _seed(fake_db, "AAPL", 150.0)
        await _seed(fake_db, "MSFT", None)

        snapshot = await publisher.publish(DAY)

        assert snapshot.status == "partial"
        assert snapshot.coverage.price == 50

    @pytest.mark.anyio
    async def test_latest_meta_excludes_rows(
        self, publisher: SnapshotPublisher, fake_db: Any
    ) -> None:
        await _seed(fake_db, "AAPL", 150.0)
        await publisher.publish(DAY, soft_empty=False)

        meta = await publisher.get_latest_meta()

        assert meta is not None
        assert "data" not in meta
        assert meta["version"] == 1
        assert meta["publishedAt"] == NOW.isoformat()

    @pytest.mark.anyio
    async def test_empty_day_flags(self, publisher: SnapshotPublisher) -> None:
        snapshot = await publisher.publish(DAY, soft_empty=True, no_earnings_confirmed=False)

        assert snapshot.data == []
        assert snapshot.soft_empty
        assert not snapshot.no_earnings_confirmed

    @pytest.mark.anyio
    async def test_previous_version_stays_readable_until_promotion(
        self, publisher: SnapshotPublisher, fake_db: Any, cache: VersionedCache
    ) -> None:
        await _seed(fake_db, "AAPL", 150.0)
        await publisher.publish(DAY)
        await _seed(fake_db, "MSFT", 300.0)
        await publisher.publish(DAY)

        assert await cache.get_version() == 2
        old = await cache.get_json(published_key(DAY), version=1)
        new = await cache.get_json(published_key(DAY), version=2)
        assert len(old["data"]) == 1
        assert len(new["data"]) == 2
        assert (await cache.get_json(LATEST_META_KEY, version=2))["version"] == 2


class TestGetPublished:
    """Tests for SnapshotPublisher.get_published()."""

    @pytest.mark.anyio
    async def test_round_trip(self, publisher: SnapshotPublisher, fake_db: Any) -> None:
        await _seed(fake_db, "AAPL", 150.0)
        published = await publisher.publish(DAY)

        snapshot = await publisher.get_published(DAY)

        assert isinstance(snapshot, PublishedSnapshot)
        assert snapshot.version == published.version
        assert snapshot.status == "fresh"

    @pytest.mark.anyio
    async def test_old_snapshot_marked_stale(
        self, publisher: SnapshotPublisher, clock: _Clock
    ) -> None:
        await publisher.publish(DAY)
        clock.now = NOW + timedelta(minutes=31)

        snapshot = await publisher.get_published(DAY)

        assert snapshot is not None
        assert snapshot.status == "stale"

    @pytest.mark.anyio
    async def test_missing(self, publisher: SnapshotPublisher) -> None:
        assert await publisher.get_published(DAY) is None
