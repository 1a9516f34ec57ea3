"""Coordination between overlapping scheduled jobs: daily state and TTL locks."""

from earnflow.coordination.daily_state import (
    DailyStateMachine,
    DailyStateStore,
    InMemoryDailyStateStore,
)
from earnflow.coordination.lock import (
    InMemoryLockStore,
    LockManager,
    RedisLockStore,
    lock_name,
)

__all__ = [
    "DailyStateMachine",
    "DailyStateStore",
    "InMemoryDailyStateStore",
    "InMemoryLockStore",
    "LockManager",
    "RedisLockStore",
    "lock_name",
]
