"""Injectable time sources used by the run engine."""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]
Sleeper = Callable[[float], None]


def utc_now() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def system_sleep(seconds: float) -> None:
    """Block the calling thread; negative or zero durations return immediately."""
    if seconds > 0:
        time.sleep(seconds)


def elapsed_ms(start: datetime, end: datetime) -> int:
    """Return the whole milliseconds between two timestamps (never negative)."""
    delta = end - start
    return max(0, int(delta.total_seconds() * 1000))


__all__ = ["Clock", "Sleeper", "elapsed_ms", "system_sleep", "utc_now"]
