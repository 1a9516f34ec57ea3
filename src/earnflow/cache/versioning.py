"""Versioned cache namespace for published snapshots.

Every key lives under ``v{version}:{base_key}``. Readers resolve the current
version first, then read the namespaced key. Writers never touch the live
version: each publish writes into a freshly allocated staging version and
then promotes it with a compare-and-set that only moves forward. A reader
therefore sees either the old complete snapshot or the new complete one.

Negative entries (e.g. upstream 404) live outside the version namespace under
``earnflow:cache:neg:{base_key}`` with a short TTL. They can never be mistaken
for an empty result, and a publish does not hide them before their TTL runs out.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Any

import orjson

from earnflow.core.constants import (
    CACHE_NEGATIVE_PREFIX,
    CACHE_STAGING_COUNTER_KEY,
    CACHE_VERSION_KEY,
)
from earnflow.core.dates import now_utc
from earnflow.core.logging import get_logger

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = get_logger(__name__)

# KEYS[1]=version, KEYS[2]=staging counter. Staging ids always exceed the live version.
ALLOCATE_SCRIPT = """
local current = tonumber(redis.call("get", KEYS[1]) or "0")
local staged = redis.call("incr", KEYS[2])
if staged <= current then
    staged = current + 1
    redis.call("set", KEYS[2], staged)
end
return staged
"""

# KEYS[1]=version, ARGV[1]=candidate. Only ever moves forward.
PROMOTE_SCRIPT = """
local current = tonumber(redis.call("get", KEYS[1]) or "0")
local candidate = tonumber(ARGV[1])
if candidate > current then
    redis.call("set", KEYS[1], candidate)
    return 1
end
return 0
"""

def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    raise TypeError(f"Type is not JSON serializable: {type(value).__name__}")


def _decode(value: bytes | str) -> str:
    return value.decode() if isinstance(value, bytes) else value


class VersionedCache:
    """Redis-backed versioned cache.

    Usage:
        cache = VersionedCache(redis)
        version = await cache.allocate_staging_version()
        await cache.set_json("earnings:2025-09-09:published", payload, version=version)
        await cache.promote(version)
        snapshot = await cache.get_json("earnings:2025-09-09:published")
    """

    def __init__(self, redis: Redis) -> None:
        self._redis = redis

    async def get_version(self) -> int:
        raw = await self._redis.get(CACHE_VERSION_KEY)
        return int(raw) if raw is not None else 0

    @staticmethod
    def namespaced_key(base_key: str, version: int) -> str:
        return f"v{version}:{base_key}"

    async def allocate_staging_version(self) -> int:
        staged = await self._redis.eval(
            ALLOCATE_SCRIPT, 2, CACHE_VERSION_KEY, CACHE_STAGING_COUNTER_KEY
        )
        return int(staged)

    async def promote(self, version: int) -> bool:
        """Make ``version`` live if it is newer than the current one."""
        promoted = bool(await self._redis.eval(PROMOTE_SCRIPT, 1, CACHE_VERSION_KEY, version))
        if promoted:
            logger.info("Cache version promoted", version=version)
        else:
            logger.info("Cache version not promoted, newer version is live", version=version)
        return promoted

    async def set_json(
        self,
        base_key: str,
        value: Any,
        ttl: int | None = None,
        version: int | None = None,
    ) -> str:
        """Write ``value`` under ``version`` (default: the live version). Returns the key."""
        if version is None:
            version = await self.get_version()
        key = self.namespaced_key(base_key, version)
        await self._redis.set(key, orjson.dumps(value, default=_json_default), ex=ttl)
        return key

    async def get_json(self, base_key: str, version: int | None = None) -> Any | None:
        if version is None:
            version = await self.get_version()
        raw = await self._redis.get(self.namespaced_key(base_key, version))
        if raw is None:
            return None
        return orjson.loads(raw)

    @staticmethod
    def negative_key(base_key: str) -> str:
        return f"{CACHE_NEGATIVE_PREFIX}:{base_key}"

    async def set_negative(self, base_key: str, code: int, ttl: int) -> None:
        await self._redis.set(
            self.negative_key(base_key),
            orjson.dumps({"code": code, "at": now_utc().isoformat()}), ex=ttl
        )

    async def is_negative(self, base_key: str) -> bool:
        return bool(await self._redis.exists(self.negative_key(base_key)))

    async def clear_namespace(self, pattern: str) -> int:
        """Delete ``pattern`` under every version. Returns the number of keys removed."""
        deleted = 0
        async for key in self._redis.scan_iter(match=f"v*:{pattern}", count=500):
            deleted += await self._redis.delete(key)
        logger.info("Cache namespace cleared", pattern=pattern, deleted=deleted)
        return deleted

    async def clear_negative(self) -> int:
        deleted = 0
        async for key in self._redis.scan_iter(match=f"{CACHE_NEGATIVE_PREFIX}:*", count=500):
            deleted += await self._redis.delete(key)
        logger.info("Negative cache cleared", deleted=deleted)
        return deleted

    async def stats(self) -> dict[str, Any]:
        """Live version, staging counter, and key counts per version."""
        per_version: dict[str, int] = {}
        async for raw_key in self._redis.scan_iter(match="v*:*", count=500):
            prefix = _decode(raw_key).partition(":")[0]
            per_version[prefix] = per_version.get(prefix, 0) + 1
        negative = 0
        async for _ in self._redis.scan_iter(match=f"{CACHE_NEGATIVE_PREFIX}:*", count=500):
            negative += 1
        staging = await self._redis.get(CACHE_STAGING_COUNTER_KEY)
        return {
            "version": await self.get_version(),
            "staging_counter": int(staging) if staging is not None else 0,
            "keys_per_version": per_version,
            "negative_entries": negative,
            "total_keys": sum(per_version.values()),
        }
