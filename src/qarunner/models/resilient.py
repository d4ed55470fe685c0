"""Timeout-bounded, rate-limit-aware wrapper around blocking model calls.

Every planning, repair, selector and summary request goes through
:class:`ResilientCallClient`. Calls run on a fixed-size worker pool owned by
the composition root, so the number of outstanding provider calls stays capped
no matter how many runs are active. Rate-limit failures are retried with
truncated exponential backoff and jitter (or the provider's retry-after hint),
then failed over to a secondary model when one is configured. Every other
error propagates immediately.
"""

from __future__ import annotations

import logging
import random
import re
from concurrent.futures import Executor, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, Iterator, Mapping, Optional, Tuple

from ..utils.timing import Sleeper, system_sleep
from .llm_client import (
    LLMClient,
    LLMClientError,
    LLMRateLimitError,
    LLMRequest,
    LLMResponse,
    LLMTimeoutError,
    LLMTransportError,
)

LOGGER = logging.getLogger(__name__)

DEFAULT_POOL_SIZE = 20

RATE_LIMIT_PATTERNS: Tuple[str, ...] = (
    "resource_exhausted",
    "429",
    "rate limit",
    "ratelimit",
    "quota",
    "too many requests",
)

_RETRY_AFTER_RE = re.compile(r"retry\s+(?:in|after)\s+([\d.]+)\s*s", re.IGNORECASE)


class CallKind(str, Enum):
    """Call classes with distinct default timeouts."""

    PLAN = "plan"
    REPAIR = "repair"
    SELECTOR = "selector"
    SUMMARY = "summary"
    OBSTACLE = "obstacle"
    SUGGESTION = "suggestion"


DEFAULT_TIMEOUTS: Dict[CallKind, float] = {
    CallKind.PLAN: 120.0,
    CallKind.REPAIR: 120.0,
    CallKind.SELECTOR: 60.0,
    CallKind.SUMMARY: 300.0,
    CallKind.OBSTACLE: 60.0,
    CallKind.SUGGESTION: 60.0,
}


@dataclass(slots=True)
class RetryPolicy:
    """Backoff configuration applied to rate-limited calls."""

    max_retries: int = 4
    base_delay_ms: int = 2000
    max_delay_ms: int = 60_000
    min_retry_after_ms: int = 1000

    def backoff_ms(self, attempt: int, rng: random.Random) -> int:
        """Jittered delay for zero-based ``attempt``: uniform in [cap/2, cap]."""
        cap = min((2 ** (attempt + 1)) * self.base_delay_ms, self.max_delay_ms)
        return int(rng.uniform(cap / 2, cap))

    def clamp_retry_after(self, delay_ms: int) -> int:
        return max(self.min_retry_after_ms, min(delay_ms, self.max_delay_ms))


@dataclass(slots=True)
class CallTimeouts:
    """Per call-kind wall-clock budgets in seconds."""

    values: Dict[CallKind, float] = field(default_factory=lambda: dict(DEFAULT_TIMEOUTS))

    @classmethod
    def from_mapping(cls, overrides: Optional[Mapping[str, float]]) -> "CallTimeouts":
        values = dict(DEFAULT_TIMEOUTS)
        for key, seconds in (overrides or {}).items():
            kind = CallKind(key)
            if seconds is not None and float(seconds) > 0:
                values[kind] = float(seconds)
        return cls(values=values)

    def for_kind(self, kind: CallKind) -> float:
        return self.values.get(kind, DEFAULT_TIMEOUTS[kind])


class _RateLimitExhausted(Exception):
    """Internal signal: one model used up its rate-limit retry budget."""


def iter_error_chain(error: BaseException) -> Iterator[BaseException]:
    """Yield ``error`` and its causes/contexts without revisiting any node."""
    seen: set[int] = set()
    current: Optional[BaseException] = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def is_rate_limit_error(error: BaseException) -> bool:
    """True when any message or class name in the chain carries a rate-limit signature."""
    for node in iter_error_chain(error):
        text = f"{type(node).__name__} {node}".lower()
        if any(pattern in text for pattern in RATE_LIMIT_PATTERNS):
            return True
    return False


def extract_retry_after_ms(error: BaseException, policy: Optional[RetryPolicy] = None) -> Optional[int]:
    """Parse a "retry in 12.5s" style hint from the error chain, clamped by ``policy``."""
    active_policy = policy or RetryPolicy()
    for node in iter_error_chain(error):
        match = _RETRY_AFTER_RE.search(str(node))
        if match:
            try:
                seconds = float(match.group(1))
            except ValueError:
                continue
            return active_policy.clamp_retry_after(int(seconds * 1000))
    return None


def root_message(error: BaseException) -> str:
    """Return the deepest non-empty message in the chain."""
    message = str(error) or type(error).__name__
    for node in iter_error_chain(error):
        text = str(node)
        if text:
            message = text
    return message


def build_call_pool(size: int = DEFAULT_POOL_SIZE) -> ThreadPoolExecutor:
    """Create the shared worker pool; the caller owns its shutdown."""
    if size < 1:
        raise ValueError("The call pool needs at least one worker.")
    return ThreadPoolExecutor(max_workers=size, thread_name_prefix="ai-call")


class ResilientCallClient:
    """Run model calls with a hard timeout, rate-limit retries and model failover."""

    def __init__(
        self,
        client: LLMClient,
        *,
        executor: Executor,
        primary_model: Optional[str] = None,
        fallback_model: Optional[str] = None,
        fallback_client: Optional[LLMClient] = None,
        policy: Optional[RetryPolicy] = None,
        timeouts: Optional[CallTimeouts] = None,
        sleeper: Sleeper = system_sleep,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._client = client
        self._executor = executor
        self._primary_model = primary_model or client.model
        self._fallback_model = fallback_model or (fallback_client.model if fallback_client else None)
        self._fallback_client = fallback_client or client
        self._policy = policy or RetryPolicy()
        self._timeouts = timeouts or CallTimeouts()
        self._sleeper = sleeper
        self._rng = rng or random.Random()

    @property
    def primary_model(self) -> str:
        return self._primary_model

    @property
    def fallback_model(self) -> Optional[str]:
        return self._fallback_model

    def timeout_for(self, kind: CallKind) -> float:
        return self._timeouts.for_kind(kind)

    def call(self, request: LLMRequest, kind: CallKind = CallKind.PLAN) -> LLMResponse:
        """Invoke the model with the default timeout of ``kind``."""
        return self.call_with_timeout(request, self._timeouts.for_kind(kind), kind=kind)

    def call_with_timeout(
        self,
        request: LLMRequest,
        timeout_seconds: float,
        *,
        kind: Optional[CallKind] = None,
    ) -> LLMResponse:
        """Invoke the model with an explicit wall-clock budget per attempt."""
        if not request.prompt or not request.prompt.strip():
            raise ValueError("User prompt is required")

        label = kind.value if kind else "custom"
        LOGGER.info(
            "[AI CALL START] kind=%s model=%s prompt=%d chars timeout=%ss",
            label,
            self._primary_model,
            request.prompt_chars(),
            timeout_seconds,
        )
        try:
            response = self._execute_with_retries(
                self._client, request, self._primary_model, timeout_seconds
            )
        except _RateLimitExhausted as exhausted:
            if not self._fallback_model:
                LOGGER.error("[AI CALL FAILED] kind=%s model=%s rate limited with no fallback", label, self._primary_model)
                raise LLMRateLimitError(
                    "Primary model rate limited with no fallback configured"
                ) from exhausted
            LOGGER.warning(
                "Primary model %s exhausted rate limit retries. Failing over to %s",
                self._primary_model,
                self._fallback_model,
            )
            try:
                response = self._execute_with_retries(
                    self._fallback_client, request, self._fallback_model, timeout_seconds
                )
            except _RateLimitExhausted as fallback_exhausted:
                message = (
                    f"Both primary ({self._primary_model}) and fallback "
                    f"({self._fallback_model}) models exhausted rate limits"
                )
                LOGGER.error("[AI CALL FAILED] kind=%s %s", label, message)
                raise LLMRateLimitError(message) from fallback_exhausted

        LOGGER.info(
            "[AI CALL SUCCESS] kind=%s model=%s latency=%dms",
            label,
            response.model,
            response.latency_ms,
        )
        return response

    def _execute_with_retries(
        self,
        client: LLMClient,
        request: LLMRequest,
        model: str,
        timeout_seconds: float,
    ) -> LLMResponse:
        attempt = 0
        while True:
            try:
                response = self._execute_once(client, request, model, timeout_seconds)
            except LLMTimeoutError:
                raise
            except Exception as error:
                if not is_rate_limit_error(error):
                    message = f"AI request to {model} failed: {root_message(error)}"
                    LOGGER.error(message)
                    if isinstance(error, LLMClientError) and not isinstance(error, LLMTransportError):
                        raise type(error)(message) from error
                    raise LLMTransportError(message) from error
                if attempt >= self._policy.max_retries:
                    raise _RateLimitExhausted(f"Rate limit retries exhausted for {model}") from error
                delay_ms = extract_retry_after_ms(error, self._policy)
                if delay_ms is None:
                    delay_ms = self._policy.backoff_ms(attempt, self._rng)
                LOGGER.warning(
                    "Rate limit hit on %s (attempt %d/%d). Retrying in %dms. Error: %s",
                    model,
                    attempt + 1,
                    self._policy.max_retries + 1,
                    delay_ms,
                    root_message(error),
                )
                self._sleeper(delay_ms / 1000.0)
                attempt += 1
                continue

            if attempt > 0:
                LOGGER.info("AI request to %s succeeded after %d retries", model, attempt)
            return response

    def _execute_once(
        self,
        client: LLMClient,
        request: LLMRequest,
        model: str,
        timeout_seconds: float,
    ) -> LLMResponse:
        """Run one attempt on the pool, handing the deadline down to the client transport."""
        deadline = timeout_seconds
        if request.timeout_seconds is not None:
            deadline = min(deadline, request.timeout_seconds)
        routed = replace(request, model=model, timeout_seconds=deadline)
        future = self._executor.submit(client.complete, routed)
        try:
            return future.result(timeout=timeout_seconds)
        except FuturesTimeoutError as error:
            cancelled = future.cancel()
            LOGGER.warning("[AI TIMEOUT] model=%s cancelled underlying task: %s", model, cancelled)
            raise LLMTimeoutError(
                f"AI API call timed out after {timeout_seconds:g} seconds. "
                f"Provider may be slow or unresponsive. Prompt size: {request.prompt_chars()} chars."
            ) from error


__all__ = [
    "CallKind",
    "CallTimeouts",
    "DEFAULT_POOL_SIZE",
    "DEFAULT_TIMEOUTS",
    "RATE_LIMIT_PATTERNS",
    "ResilientCallClient",
    "RetryPolicy",
    "build_call_pool",
    "extract_retry_after_ms",
    "is_rate_limit_error",
    "root_message",
]
