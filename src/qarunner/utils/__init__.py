"""Utility helpers shared across the qa-runner package."""

from .timing import Clock, Sleeper, elapsed_ms, system_sleep, utc_now

__all__ = ["Clock", "Sleeper", "elapsed_ms", "system_sleep", "utc_now"]
