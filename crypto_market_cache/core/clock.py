"""Injectable clocks returning wall-clock time in epoch milliseconds."""

import time
from abc import ABC, abstractmethod


class Clock(ABC):
    """Source of the current time for freshness checks and write stamps."""

    @abstractmethod
    def now_ms(self) -> int:
        """Return the current time in milliseconds since the epoch."""
        pass


class SystemClock(Clock):
    """Clock backed by the system wall clock."""

    def now_ms(self) -> int:
        return int(time.time() * 1000)


class ManualClock(Clock):
    """Clock that only moves when told to.

    Useful for deterministic TTL checks and for replaying a timeline.
    """

    def __init__(self, start_ms: int = 0):
        self._now_ms = int(start_ms)

    def now_ms(self) -> int:
        return self._now_ms

    def set(self, value_ms: int) -> None:
        """Jump to an absolute time."""
        self._now_ms = int(value_ms)

    def advance(self, delta_ms: int) -> int:
        """Move forward by ``delta_ms`` and return the new time."""
        self._now_ms += int(delta_ms)
        return self._now_ms
