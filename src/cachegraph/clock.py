"""Time sources.

The in-memory store and the analytics engine read time through a clock
object so tests can move time forward without sleeping.
"""

from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    """Source of the current UNIX time in seconds."""

    def now(self) -> float: ...


class SystemClock:
    """Wall clock."""

    def now(self) -> float:
        return time.time()


class ManualClock:
    """Clock that only moves when told to.

    Example:
        clock = ManualClock(start=1_700_000_000)
        clock.advance(3600)
    """

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self._now = start

    def now(self) -> float:
        return self._now

    def advance(self, seconds: float) -> None:
        self._now += seconds

    def set(self, timestamp: float) -> None:
        self._now = timestamp
