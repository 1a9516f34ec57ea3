"""TTL lock manager for scheduled jobs.

Locks are named per (job kind, date). Acquisition is non-blocking: a held
lock means "someone else is on it", and the caller skips. Expiry is computed
from the acquisition time and TTL, so a crashed holder never needs a
watchdog. If the store cannot be reached, acquisition fails closed.
"""

from __future__ import annotations

import asyncio
import os
import socket
import time
import uuid
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import date
from typing import TYPE_CHECKING, Protocol

import orjson

from earnflow.core.constants import LOCK_PREFIX
from earnflow.core.dates import now_utc
from earnflow.core.logging import get_logger

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = get_logger(__name__)

# Atomic compare-and-delete: only the holder may release
RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


def lock_name(job_kind: str, day: date) -> str:
    return f"{LOCK_PREFIX}:{job_kind}:{day.isoformat()}"


def default_owner() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


class LockStore(Protocol):
    async def set_if_absent(self, key: str, value: bytes, ttl: int) -> bool: ...

    async def delete_if_value(self, key: str, value: bytes) -> bool: ...


class RedisLockStore:
    """``SET NX EX`` for acquisition, a Lua compare-and-delete for release."""

    def __init__(self, redis: Redis) -> None:
        self._redis = redis

    async def set_if_absent(self, key: str, value: bytes, ttl: int) -> bool:
        return bool(await self._redis.set(key, value, nx=True, ex=ttl))

    async def delete_if_value(self, key: str, value: bytes) -> bool:
        return bool(await self._redis.eval(RELEASE_SCRIPT, 1, key, value))


class InMemoryLockStore:
    """Single-process store. Expired entries are replaced on the next acquire."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[bytes, float, int]] = {}
        self._lock = asyncio.Lock()

    async def set_if_absent(self, key: str, value: bytes, ttl: int) -> bool:
        async with self._lock:
            now = self._clock()
            entry = self._entries.get(key)
            if entry is not None:
                _, acquired_at, entry_ttl = entry
                if now - acquired_at < entry_ttl:
                    return False
            self._entries[key] = (value, now, ttl)
            return True

    async def delete_if_value(self, key: str, value: bytes) -> bool:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry[0] != value:
                return False
            del self._entries[key]
            return True


class LockManager:
    """Acquire/release named locks on behalf of one owner.

    Usage:
        locks = LockManager(RedisLockStore(redis))
        async with locks.hold(lock_name("bootstrap", day), ttl=4200) as acquired:
            if not acquired:
                return
            ...
    """

    def __init__(self, store: LockStore, owner: str | None = None) -> None:
        self._store = store
        self.owner = owner or default_owner()
        self._held: dict[str, bytes] = {}

    async def acquire(self, name: str, ttl_seconds: int) -> bool:
        """True iff no live lock named ``name`` existed. Never blocks."""
        value = orjson.dumps(
            {
                "owner": self.owner,
                "token": uuid.uuid4().hex,
                "acquired_at": now_utc().isoformat(),
                "ttl": ttl_seconds,
            }
        )
        try:
            acquired = await self._store.set_if_absent(name, value, ttl_seconds)
        except Exception as e:
            logger.warning("Lock store unavailable, treating as locked", lock=name, error=str(e))
            return False

        if acquired:
            self._held[name] = value
            logger.debug("Lock acquired", lock=name, owner=self.owner, ttl=ttl_seconds)
        else:
            logger.debug("Lock held elsewhere", lock=name)
        return acquired

    async def release(self, name: str) -> None:
        """Release ``name`` if we hold it. Expired or foreign locks are left alone."""
        value = self._held.pop(name, None)
        if value is None:
            return
        try:
            released = await self._store.delete_if_value(name, value)
        except Exception as e:
            # TTL will expire it
            logger.warning("Lock release failed", lock=name, error=str(e))
            return
        if released:
            logger.debug("Lock released", lock=name)
        else:
            logger.warning("Lock expired before release", lock=name)

    @asynccontextmanager
    async def hold(self, name: str, ttl_seconds: int) -> AsyncIterator[bool]:
        acquired = await self.acquire(name, ttl_seconds)
        try:
            yield acquired
        finally:
            if acquired:
                await self.release(name)
