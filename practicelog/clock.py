"""
Time sources for the practice timer.

Everything that measures practice time reads the clock through this
interface, so tests can drive the timer with simulated time.
"""
import threading
import time
from typing import Protocol


class Clock(Protocol):
    def now(self) -> int:
        """Current time in milliseconds."""
        ...


class SystemClock:
    """Wall-clock milliseconds since the epoch."""

    def now(self) -> int:
        return time.time_ns() // 1_000_000


class ManualClock:
    """
    Clock that only moves when told to.

    Used to replay classification sequences deterministically.
    """

    def __init__(self, start_millis: int = 0):
        self._lock = threading.Lock()
        self._now = int(start_millis)

    def now(self) -> int:
        with self._lock:
            return self._now

    def advance(self, millis: int) -> int:
        """Move the clock by `millis` (negative values simulate a regression)."""
        with self._lock:
            self._now += int(millis)
            return self._now

    def set(self, millis: int):
        with self._lock:
            self._now = int(millis)
