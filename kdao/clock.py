"""
Clock capability.

All deadline logic in the engines compares against `Clock.now()` at call
time. Values are integer seconds and must never decrease.
"""

import time
from typing import Protocol, runtime_checkable

from .exceptions import InvalidInputError


@runtime_checkable
class Clock(Protocol):
    """Monotonically non-decreasing timestamp source."""

    def now(self) -> int:
        ...


class SystemClock:
    """Wall clock, clamped so it never runs backwards."""

    def __init__(self):
        self._last = 0

    def now(self) -> int:
        current = int(time.time())
        if current < self._last:
            return self._last
        self._last = current
        return current


class ManualClock:
    """Clock advanced explicitly; used by tests and simulations."""

    def __init__(self, start: int = 1_700_000_000):
        if start < 0:
            raise InvalidInputError("Clock start cannot be negative")
        self._now = start

    def now(self) -> int:
        return self._now

    def advance(self, seconds: int) -> int:
        if seconds < 0:
            raise InvalidInputError("Clock cannot move backwards")
        self._now += seconds
        return self._now

    def set(self, timestamp: int) -> int:
        if timestamp < self._now:
            raise InvalidInputError(
                f"Clock cannot move backwards ({timestamp} < {self._now})"
            )
        self._now = timestamp
        return self._now

    def __repr__(self) -> str:
        return f"<ManualClock now={self._now}>"
