"""Time sources for the distributor.

Timestamps are integer seconds. The engine reads the clock once per call
and compares only against submitted_at + timelock.
"""

from __future__ import annotations

import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Monotonically non-decreasing source of integer seconds."""

    def now(self) -> int:
        ...


class SystemClock:
    """Wall-clock time, truncated to whole seconds."""

    def now(self) -> int:
        return int(time.time())


class ManualClock:
    """A clock that only moves when told to.

    Usage:
        clock = ManualClock(1_700_000_000)
        clock.advance(12 * 3600)
        clock.set(1_700_086_400)
    """

    def __init__(self, start: int = 0) -> None:
        if start < 0:
            raise ValueError("Clock cannot start before the epoch")
        self._now = start

    def now(self) -> int:
        return self._now

    def advance(self, seconds: int) -> int:
        if seconds < 0:
            raise ValueError("Clock cannot move backwards")
        self._now += seconds
        return self._now

    def set(self, timestamp: int) -> int:
        if timestamp < self._now:
            raise ValueError(
                f"Clock cannot move backwards: {timestamp} < {self._now}"
            )
        self._now = timestamp
        return self._now


class FixedClock:
    """A clock pinned to a single instant (CLI --now override)."""

    def __init__(self, timestamp: int) -> None:
        self._now = timestamp

    def now(self) -> int:
        return self._now
