"""
clock.py - Injected time sources

Every operation that needs "now" reads it from a Clock, so tests control time
exactly. Times are integer Unix seconds.
"""

from __future__ import annotations
import threading
import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Source of the current Unix time in whole seconds."""

    def now(self) -> int:
        ...


class SystemClock:
    """
    Wall-clock time that never steps backwards.

    If the system clock is set back, now() keeps returning the latest value
    it has seen until the wall clock catches up.
    """

    def __init__(self):
        self._last = 0
        self._lock = threading.Lock()

    def now(self) -> int:
        with self._lock:
            self._last = max(self._last, int(time.time()))
            return self._last

    def __repr__(self):
        return "SystemClock()"


class ManualClock:
    """
    Clock that only moves when told to.

    Time can only move forward, never backward.

    Example:
        clock = ManualClock(1_700_000_000)
        clock.advance(SECONDS_PER_YEAR)
    """

    def __init__(self, start: int = 0):
        if start < 0:
            raise ValueError(f"Clock cannot start before the epoch: {start}")
        self._now = int(start)
        self._lock = threading.Lock()

    def now(self) -> int:
        return self._now

    def set(self, new_time: int) -> None:
        """
        Jump to an absolute time.

        Raises:
            ValueError: If new_time is before the current time
        """
        with self._lock:
            if new_time < self._now:
                raise ValueError(
                    f"Cannot move time backwards: {new_time} < {self._now}"
                )
            self._now = int(new_time)

    def advance(self, seconds: int) -> int:
        """Move forward by a number of seconds and return the new time."""
        if seconds < 0:
            raise ValueError(f"Cannot advance by a negative amount: {seconds}")
        with self._lock:
            self._now += int(seconds)
            return self._now

    def __repr__(self):
        return f"ManualClock({self._now})"
