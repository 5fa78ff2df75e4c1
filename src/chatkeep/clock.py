"""Injectable time sources.

Every timestamp written by the store and every aging cutoff computed by the
lifecycle manager comes from a ``Clock``.  Production code uses
``SystemClock``; tests drive a ``ManualClock`` forward explicitly so that
retention windows can be exercised without sleeping.
"""

from __future__ import annotations

import time
from typing import Protocol, runtime_checkable

MS_PER_DAY = 24 * 60 * 60 * 1000


@runtime_checkable
class Clock(Protocol):
    """Anything that can report the current time in epoch milliseconds."""

    def now_ms(self) -> int: ...


class SystemClock:
    """Wall-clock time source."""

    def now_ms(self) -> int:
        return int(time.time() * 1000)


class ManualClock:
    """
    A clock that only moves when told to.

    Example::

        clock = ManualClock(start_ms=1_700_000_000_000)
        clock.advance(days=8)
    """

    def __init__(self, start_ms: int = 1_700_000_000_000) -> None:
        self._now = start_ms

    def now_ms(self) -> int:
        return self._now

    def set(self, now_ms: int) -> None:
        self._now = now_ms

    def advance(self, *, ms: int = 0, days: float = 0) -> int:
        """Move the clock forward and return the new time."""
        if ms < 0 or days < 0:
            raise ValueError("ManualClock cannot move backwards")
        self._now += ms + int(days * MS_PER_DAY)
        return self._now


def days_ago(clock: Clock, days: float) -> int:
    """Return the epoch-ms cutoff that lies ``days`` before the clock's now."""
    return clock.now_ms() - int(days * MS_PER_DAY)
