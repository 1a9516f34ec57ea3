"""Per-day pipeline state: INIT -> RESET_DONE -> FETCH_DONE.

Transitions only move forward within a day. The only way back to INIT is an
explicit rollover. Read failures are reported as INIT so that callers skip
work instead of writing into a day whose reset status is unknown.
"""

from __future__ import annotations

from datetime import date
from typing import Protocol

from earnflow.core.exceptions import StateStoreError
from earnflow.core.logging import get_logger
from earnflow.models import DailyState

logger = get_logger(__name__)


class DailyStateStore(Protocol):
    """Backing store. ``Database`` implements this."""

    async def get_daily_state(self, day: date) -> DailyState | None: ...

    async def advance_daily_state(self, day: date, state: DailyState) -> bool: ...

    async def delete_daily_state(self, day: date) -> None: ...


class InMemoryDailyStateStore:
    """Process-local store for single-process runs and tests."""

    def __init__(self) -> None:
        self._states: dict[date, DailyState] = {}

    async def get_daily_state(self, day: date) -> DailyState | None:
        return self._states.get(day)

    async def advance_daily_state(self, day: date, state: DailyState) -> bool:
        current = self._states.get(day, DailyState.INIT)
        if state.rank <= current.rank and day in self._states:
            return False
        self._states[day] = state
        return True

    async def delete_daily_state(self, day: date) -> None:
        self._states.pop(day, None)


class DailyStateMachine:
    def __init__(self, store: DailyStateStore) -> None:
        self._store = store

    async def get_state(self, day: date) -> DailyState:
        try:
            state = await self._store.get_daily_state(day)
        except Exception as e:
            logger.warning("Daily state read failed, assuming INIT", date=day.isoformat(), error=str(e))
            return DailyState.INIT
        return state or DailyState.INIT

    async def set_state(self, day: date, state: DailyState) -> bool:
        """Advance the day to ``state``.

        Returns:
            True if the state changed. Setting the current state again is a
            no-op and moving backwards is refused; both return False.

        Raises:
            StateStoreError: the store could not be written
        """
        current = await self.get_state(day)
        if state == current:
            return False
        if state.rank < current.rank:
            logger.warning(
                "Refusing to move daily state backwards",
                date=day.isoformat(),
                current=current.value,
                requested=state.value,
            )
            return False

        try:
            changed = await self._store.advance_daily_state(day, state)
        except Exception as e:
            raise StateStoreError(f"Failed to set {state.value} for {day}: {e}") from e
        if changed:
            logger.info("Daily state advanced", date=day.isoformat(), state=state.value)
        return changed

    async def is_reset_completed(self, day: date) -> bool:
        return (await self.get_state(day)).rank >= DailyState.RESET_DONE.rank

    async def is_fetch_completed(self, day: date) -> bool:
        return (await self.get_state(day)) == DailyState.FETCH_DONE

    async def rollover(self, day: date) -> None:
        """Explicit reset of ``day`` back to INIT."""
        try:
            await self._store.delete_daily_state(day)
        except Exception as e:
            raise StateStoreError(f"Failed to roll over {day}: {e}") from e
        logger.info("Daily state rolled over", date=day.isoformat())
