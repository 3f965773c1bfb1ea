"""Workload State - live pool capacity counters.

WorkloadState exposes read-only properties only. Counters change through a
CapacityLedger, which exists solely inside ``WorkloadState.exclusive()``;
the ledger is closed when the section exits, so a leaked handle cannot
mutate the state afterwards.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

from taskrouter.config import EngineConfig
from taskrouter.errors import ConcurrencyViolationError
from taskrouter.models import Pool


@dataclass(frozen=True)
class WorkloadSnapshot:
    """Point-in-time copy of the counters."""

    human_active: int
    ai_active: int
    hours_worked_today: float
    api_calls_today: int
    max_human_tasks: int
    max_ai_tasks: int
    max_human_hours_per_day: float
    api_call_limit: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "human": {
                "active": self.human_active,
                "max": self.max_human_tasks,
                "hours_worked_today": self.hours_worked_today,
                "max_hours_per_day": self.max_human_hours_per_day,
            },
            "ai": {
                "active": self.ai_active,
                "max": self.max_ai_tasks,
                "api_calls_today": self.api_calls_today,
                "api_call_limit": self.api_call_limit,
            },
        }


class WorkloadState:
    """
    Per-pool active counts and daily saturation counters.

    Invariant: the active count of each pool never exceeds its cap.
    """

    def __init__(
        self,
        max_human_tasks: int = 5,
        max_ai_tasks: int = 20,
        max_human_hours_per_day: float = 6.0,
        api_call_limit: int = 1000,
        human_active: int = 0,
        ai_active: int = 0,
        hours_worked_today: float = 0.0,
        api_calls_today: int = 0,
    ) -> None:
        if not 0 <= human_active <= max_human_tasks:
            raise ValueError(f"human_active must be in [0, {max_human_tasks}], got {human_active}")
        if not 0 <= ai_active <= max_ai_tasks:
            raise ValueError(f"ai_active must be in [0, {max_ai_tasks}], got {ai_active}")
        if hours_worked_today < 0 or api_calls_today < 0:
            raise ValueError("Daily counters cannot be negative")

        self._max_human_tasks = max_human_tasks
        self._max_ai_tasks = max_ai_tasks
        self._max_human_hours = max_human_hours_per_day
        self._api_call_limit = api_call_limit
        self._human_active = human_active
        self._ai_active = ai_active
        self._hours_worked = hours_worked_today
        self._api_calls = api_calls_today
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: EngineConfig, **counters: Any) -> WorkloadState:
        return cls(
            max_human_tasks=config.max_human_tasks,
            max_ai_tasks=config.max_ai_tasks,
            max_human_hours_per_day=config.max_human_hours_per_day,
            api_call_limit=config.api_call_limit,
            **counters,
        )

    # Read-only view -------------------------------------------------------

    @property
    def human_active(self) -> int:
        return self._human_active

    @property
    def ai_active(self) -> int:
        return self._ai_active

    @property
    def hours_worked_today(self) -> float:
        return self._hours_worked

    @property
    def api_calls_today(self) -> int:
        return self._api_calls

    @property
    def max_human_tasks(self) -> int:
        return self._max_human_tasks

    @property
    def max_ai_tasks(self) -> int:
        return self._max_ai_tasks

    @property
    def max_human_hours_per_day(self) -> float:
        return self._max_human_hours

    @property
    def api_call_limit(self) -> int:
        return self._api_call_limit

    def active(self, pool: Pool) -> int:
        if pool is Pool.HUMAN:
            return self._human_active
        if pool is Pool.AI:
            return self._ai_active
        raise ValueError(f"{pool.value} has no counter of its own")

    def cap(self, pool: Pool) -> int:
        if pool is Pool.HUMAN:
            return self._max_human_tasks
        if pool is Pool.AI:
            return self._max_ai_tasks
        raise ValueError(f"{pool.value} has no cap of its own")

    def at_capacity(self, pool: Pool) -> bool:
        """Hard capacity check. Hybrid work needs a slot in both pools."""
        if pool is Pool.HYBRID:
            return self.at_capacity(Pool.HUMAN) or self.at_capacity(Pool.AI)
        return self.active(pool) >= self.cap(pool)

    def snapshot(self) -> WorkloadSnapshot:
        return WorkloadSnapshot(
            human_active=self._human_active,
            ai_active=self._ai_active,
            hours_worked_today=self._hours_worked,
            api_calls_today=self._api_calls,
            max_human_tasks=self._max_human_tasks,
            max_ai_tasks=self._max_ai_tasks,
            max_human_hours_per_day=self._max_human_hours,
            api_call_limit=self._api_call_limit,
        )

    def copy(self) -> WorkloadState:
        """Independent state with the same counters and caps."""
        snap = self.snapshot()
        return WorkloadState(
            max_human_tasks=snap.max_human_tasks,
            max_ai_tasks=snap.max_ai_tasks,
            max_human_hours_per_day=snap.max_human_hours_per_day,
            api_call_limit=snap.api_call_limit,
            human_active=snap.human_active,
            ai_active=snap.ai_active,
            hours_worked_today=snap.hours_worked_today,
            api_calls_today=snap.api_calls_today,
        )

    # Exclusive section ----------------------------------------------------

    @contextmanager
    def exclusive(self) -> Iterator[CapacityLedger]:
        """Hold the state's lock and yield the only handle that can mutate it."""
        with self._lock:
            ledger = CapacityLedger(self)
            try:
                yield ledger
            finally:
                ledger._close()


class CapacityLedger:
    """Mutation handle valid only inside WorkloadState.exclusive()."""

    def __init__(self, state: WorkloadState) -> None:
        self._state = state
        self._open = True

    def _close(self) -> None:
        self._open = False

    def _check_open(self) -> WorkloadState:
        if not self._open:
            raise ConcurrencyViolationError(
                "Workload counters can only change inside WorkloadState.exclusive()"
            )
        return self._state

    @property
    def state(self) -> WorkloadState:
        return self._check_open()

    def at_capacity(self, pool: Pool) -> bool:
        return self._check_open().at_capacity(pool)

    def reserve(self, pool: Pool, hours: float = 0.0, api_calls: int = 0) -> None:
        """Take one slot in the pool (both pools for hybrid work)."""
        state = self._check_open()
        if state.at_capacity(pool):
            raise ValueError(f"{pool.value} pool is at capacity")
        if pool in (Pool.HUMAN, Pool.HYBRID):
            state._human_active += 1
            state._hours_worked += max(0.0, hours)
        if pool in (Pool.AI, Pool.HYBRID):
            state._ai_active += 1
            state._api_calls += max(0, api_calls)

    def release(self, pool: Pool) -> None:
        """Return the slot(s) held by a finished task."""
        state = self._check_open()
        if pool in (Pool.HUMAN, Pool.HYBRID):
            state._human_active = max(0, state._human_active - 1)
        if pool in (Pool.AI, Pool.HYBRID):
            state._ai_active = max(0, state._ai_active - 1)

    def reset_day(self) -> None:
        state = self._check_open()
        state._hours_worked = 0.0
        state._api_calls = 0
