"""Circuit breaker that short-circuits calls to a degraded provider."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, TypeVar

from .llm_client import CircuitOpenError

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker state."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreaker:
    """Count consecutive failures and refuse calls while the provider is degraded.

    After ``failure_threshold`` consecutive failures the circuit opens and every
    call is refused until ``reset_timeout`` seconds have passed. The next call is
    then let through as a trial: success closes the circuit, failure re-opens it.
    """

    name: str = "ai-service"
    failure_threshold: int = 5
    reset_timeout: float = 60.0
    clock: Callable[[], float] = time.monotonic
    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _consecutive_failures: int = field(default=0, init=False)
    _opened_at: Optional[float] = field(default=None, init=False)
    _trial_in_flight: bool = field(default=False, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False)

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._maybe_half_open()
            return self._state

    def allow(self) -> bool:
        """Return True when a call may proceed (reserving the half-open trial slot)."""
        with self._lock:
            self._maybe_half_open()
            if self._state is CircuitState.CLOSED:
                return True
            if self._state is CircuitState.HALF_OPEN and not self._trial_in_flight:
                self._trial_in_flight = True
                return True
            return False

    def record_success(self) -> None:
        with self._lock:
            if self._state is not CircuitState.CLOSED:
                LOGGER.info("Circuit '%s' closed after successful trial call", self.name)
            self._state = CircuitState.CLOSED
            self._consecutive_failures = 0
            self._opened_at = None
            self._trial_in_flight = False

    def record_failure(self) -> None:
        with self._lock:
            self._consecutive_failures += 1
            self._trial_in_flight = False
            if (
                self._state is CircuitState.HALF_OPEN
                or self._consecutive_failures >= self.failure_threshold
            ):
                if self._state is not CircuitState.OPEN:
                    LOGGER.warning(
                        "Circuit '%s' opened after %d consecutive failure(s)",
                        self.name,
                        self._consecutive_failures,
                    )
                self._state = CircuitState.OPEN
                self._opened_at = self.clock()

    def reset(self) -> None:
        with self._lock:
            self._state = CircuitState.CLOSED
            self._consecutive_failures = 0
            self._opened_at = None
            self._trial_in_flight = False

    def call(
        self,
        operation: Callable[[], T],
        fallback: Optional[Callable[[Exception], T]] = None,
    ) -> T:
        """Run ``operation`` through the breaker.

        When the circuit is open, or the operation raises, ``fallback`` receives the
        error and its value is returned. Without a fallback the error propagates.
        """
        if not self.allow():
            refused = CircuitOpenError(f"Circuit '{self.name}' is open; call refused")
            if fallback is None:
                raise refused
            LOGGER.warning("Circuit '%s' is open; using fallback", self.name)
            return fallback(refused)

        try:
            result = operation()
        except Exception as error:
            self.record_failure()
            if fallback is None:
                raise
            LOGGER.warning(
                "Call guarded by circuit '%s' failed (%s: %s); using fallback",
                self.name,
                type(error).__name__,
                error,
            )
            return fallback(error)

        self.record_success()
        return result

    def _maybe_half_open(self) -> None:
        if self._state is not CircuitState.OPEN or self._opened_at is None:
            return
        if self.clock() - self._opened_at >= self.reset_timeout:
            self._state = CircuitState.HALF_OPEN
            self._trial_in_flight = False


__all__ = ["CircuitBreaker", "CircuitState"]
