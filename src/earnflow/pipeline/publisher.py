"""Builds and reads the published per-day earnings snapshot."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING, Any, Literal

from earnflow.core.constants import LATEST_META_KEY, SNAPSHOT_TTL_SECONDS
from earnflow.core.dates import now_utc
from earnflow.core.logging import get_logger
from earnflow.processing.coverage import (
    Coverage,
    CoverageThresholds,
    compute_coverage,
    passes_gate,
)

if TYPE_CHECKING:
    from earnflow.cache.versioning import VersionedCache
    from earnflow.storage.database import Database

logger = get_logger(__name__)

SnapshotStatus = Literal["fresh", "partial", "stale"]


def published_key(day: date) -> str:
    return f"earnings:{day.isoformat()}:published"


@dataclass(frozen=True)
class PublishedSnapshot:
    day: date
    data: list[dict[str, Any]]
    coverage: Coverage
    published_at: datetime
    version: int
    status: SnapshotStatus
    soft_empty: bool = False
    no_earnings_confirmed: bool = False

    def to_payload(self) -> dict[str, Any]:
        return {
            "day": self.day.isoformat(),
            "data": self.data,
            "coverage": self.coverage.to_dict(),
            "publishedAt": self.published_at.isoformat(),
            "version": self.version,
            "status": self.status,
            "softEmpty": self.soft_empty,
            "noEarningsConfirmed": self.no_earnings_confirmed,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> PublishedSnapshot:
        coverage = payload.get("coverage") or {}
        return cls(
            day=date.fromisoformat(payload["day"]),
            data=payload.get("data") or [],
            coverage=Coverage(
                schedule=coverage.get("schedule", 0),
                price=coverage.get("price", 0),
                eps_rev=coverage.get("epsRev", 0),
            ),
            published_at=datetime.fromisoformat(payload["publishedAt"]),
            version=payload["version"],
            status=payload.get("status", "partial"),
            soft_empty=payload.get("softEmpty", False),
            no_earnings_confirmed=payload.get("noEarningsConfirmed", False),
        )


class SnapshotPublisher:
    """Writes a day's snapshot into a staging version and promotes it."""

    def __init__(
        self,
        db: Database,
        cache: VersionedCache,
        thresholds: CoverageThresholds,
        stale_after: timedelta = timedelta(minutes=30),
        snapshot_ttl: int = SNAPSHOT_TTL_SECONDS,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self._db = db
        self._cache = cache
        self._thresholds = thresholds
        self._stale_after = stale_after
        self._snapshot_ttl = snapshot_ttl
        self._clock = clock

    async def publish(
        self,
        day: date,
        *,
        soft_empty: bool = False,
        no_earnings_confirmed: bool = False,
    ) -> PublishedSnapshot:
        """Publish the persisted rows for ``day`` as a new cache version.

        Raises:
            PersistenceError: the rows could not be read
        """
        rows = [_jsonable(row) for row in await self._db.fetch_day_rows(day)]
        coverage = compute_coverage(rows)
        status: SnapshotStatus = "fresh" if passes_gate(coverage, self._thresholds) else "partial"

        version = await self._cache.allocate_staging_version()
        snapshot = PublishedSnapshot(
            day=day,
            data=rows,
            coverage=coverage,
            published_at=self._clock(),
            version=version,
            status=status,
            soft_empty=soft_empty,
            no_earnings_confirmed=no_earnings_confirmed,
        )
        payload = snapshot.to_payload()
        meta = {key: value for key, value in payload.items() if key != "data"}

        await self._cache.set_json(
            published_key(day), payload, ttl=self._snapshot_ttl, version=version
        )
        await self._cache.set_json(LATEST_META_KEY, meta, ttl=self._snapshot_ttl, version=version)
        await self._cache.promote(version)

        logger.info(
            "Snapshot published",
            date=day.isoformat(),
            version=version,
            rows=len(rows),
            status=status,
            price_coverage=coverage.price,
            eps_rev_coverage=coverage.eps_rev,
            soft_empty=soft_empty,
        )
        return snapshot

    async def get_published(self, day: date) -> PublishedSnapshot | None:
        """Snapshot for ``day`` from the live version, marked stale when too old."""
        payload = await self._cache.get_json(published_key(day))
        if payload is None:
            return None
        snapshot = PublishedSnapshot.from_payload(payload)
        if self._clock() - snapshot.published_at > self._stale_after:
            return replace(snapshot, status="stale")
        return snapshot

    async def get_latest_meta(self) -> dict[str, Any] | None:
        result: dict[str, Any] | None = await self._cache.get_json(LATEST_META_KEY)
        return result


def _jsonable(row: dict[str, Any]) -> dict[str, Any]:
    return {
        key: value.isoformat() if isinstance(value, (date, datetime)) else value
        for key, value in row.items()
    }
