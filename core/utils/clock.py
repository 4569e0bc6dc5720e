# SPDX-License-Identifier: MIT
"""Clock sources used to keep time-dependent components reproducible."""

from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone
from typing import Protocol

ClockInput = datetime | float | int


def _normalize_datetime(value: ClockInput) -> datetime:
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromtimestamp(float(value), tz=timezone.utc)
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class Clock(Protocol):
    """Source of wall-clock and monotonic time."""

    def now(self) -> datetime:
        """Return the current time as an aware UTC datetime."""

    def monotonic(self) -> float:
        """Return a monotonic reading in seconds."""


class SystemClock:
    """Clock backed by the operating system."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def monotonic(self) -> float:
        return time.monotonic()


class ManualClock:
    """Clock that only moves when told to.

    Example:
        >>> clock = ManualClock(0)
        >>> clock.advance(90)
        >>> clock.now().isoformat()
        '1970-01-01T00:01:30+00:00'
    """

    def __init__(self, start: ClockInput | None = None) -> None:
        self._now = _normalize_datetime(start if start is not None else time.time())
        self._monotonic = 0.0

    def now(self) -> datetime:
        return self._now

    def monotonic(self) -> float:
        return self._monotonic

    def advance(self, seconds: float) -> None:
        if seconds < 0:
            raise ValueError("seconds must be non-negative")
        self._now += timedelta(seconds=seconds)
        self._monotonic += seconds

    def set(self, value: ClockInput) -> None:
        target = _normalize_datetime(value)
        delta = (target - self._now).total_seconds()
        self._now = target
        self._monotonic += max(delta, 0.0)


__all__ = ["Clock", "ManualClock", "SystemClock"]
