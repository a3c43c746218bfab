"""Utilities for configuring periodic job cadences.

Background jobs (memory compression, stat decay, message cleanup, soul
evolution) run on their own schedules, independent of the decision tick.
Each job remembers when it last ran and consults its cadence against the
world clock before firing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional


@dataclass(frozen=True)
class Interval:
    """Represents an ``every N seconds`` cadence."""

    every_seconds: float
    run_immediately: bool = False

    def is_due(self, *, now: datetime, last_run: Optional[datetime]) -> bool:
        """Return ``True`` when the cadence fires at ``now``."""

        if self.every_seconds <= 0:
            return True

        if last_run is None:
            return self.run_immediately

        return now - last_run >= timedelta(seconds=self.every_seconds)


@dataclass
class PeriodicJob:
    """A named coroutine run on an :class:`Interval`.

    ``last_run`` starts at the first time the job is checked so a job with
    ``run_immediately=False`` waits one full interval before firing.
    """

    name: str
    interval: Interval
    action: Callable[[], Awaitable[object]]
    last_run: Optional[datetime] = field(default=None)
    runs: int = 0

    def prime(self, now: datetime) -> None:
        if self.last_run is None and not self.interval.run_immediately:
            self.last_run = now

    def is_due(self, now: datetime) -> bool:
        self.prime(now)
        return self.interval.is_due(now=now, last_run=self.last_run)

    async def run(self, now: datetime) -> object:
        self.last_run = now
        self.runs += 1
        return await self.action()


def day_key(moment: datetime) -> str:
    """Calendar day label used for summaries, insights and the evolution log."""

    return moment.strftime("%Y-%m-%d")
