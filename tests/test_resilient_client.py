from __future__ import annotations

import random
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Iterator, List, Optional

import pytest

from qarunner.models.llm_client import (
    LLMClient,
    LLMRateLimitError,
    LLMRequest,
    LLMResponseFormatError,
    LLMTimeoutError,
    LLMTransportError,
)
from qarunner.models.resilient import (
    CallKind,
    CallTimeouts,
    ResilientCallClient,
    RetryPolicy,
    extract_retry_after_ms,
    is_rate_limit_error,
)


class ScriptedClient(LLMClient):
    """Returns or raises scripted replies and records the model of every call."""

    def __init__(self, replies: List[Any], model: str = "primary-model") -> None:
        super().__init__(model=model)
        self.replies = list(replies)
        self.models: List[str] = []

    def _raw_invoke(self, payload: Dict[str, Any], timeout: Optional[float] = None) -> str:
        self.models.append(payload["model"])
        reply = self.replies.pop(0) if self.replies else "[]"
        if isinstance(reply, Exception):
            raise reply
        return reply


class ProviderQuotaError(Exception):
    pass


@pytest.fixture()
def pool() -> Iterator[ThreadPoolExecutor]:
    executor = ThreadPoolExecutor(max_workers=2)
    yield executor
    executor.shutdown(wait=True, cancel_futures=True)


def _rate_limited(message: str = "429 Too Many Requests") -> Exception:
    return LLMTransportError(message)


def test_backoff_is_jittered_within_half_and_full_cap() -> None:
    policy = RetryPolicy(base_delay_ms=2000, max_delay_ms=60_000)
    rng = random.Random(7)

    for attempt, cap in [(0, 4000), (1, 8000), (2, 16000), (3, 32000), (4, 60000), (9, 60000)]:
        delay = policy.backoff_ms(attempt, rng)
        assert cap / 2 <= delay <= cap


def test_rate_limit_detection_walks_the_cause_chain() -> None:
    try:
        try:
            raise ProviderQuotaError("RESOURCE_EXHAUSTED: quota exceeded")
        except ProviderQuotaError as inner:
            raise RuntimeError("request failed") from inner
    except RuntimeError as outer:
        assert is_rate_limit_error(outer)

    assert not is_rate_limit_error(ValueError("bad request"))


def test_retry_after_hint_is_parsed_and_clamped() -> None:
    policy = RetryPolicy()

    assert extract_retry_after_ms(RuntimeError("Please retry in 12.5s"), policy) == 12500
    assert extract_retry_after_ms(RuntimeError("retry after 0.1s"), policy) == 1000
    assert extract_retry_after_ms(RuntimeError("retry after 600s"), policy) == 60000
    assert extract_retry_after_ms(RuntimeError("no hint"), policy) is None


def test_rate_limited_call_retries_then_succeeds(pool, sleeper) -> None:
    client = ScriptedClient([_rate_limited("429 rate limit, retry in 3s"), _rate_limited(), "ok"])
    calls = ResilientCallClient(client, executor=pool, sleeper=sleeper, rng=random.Random(1))

    response = calls.call(LLMRequest(prompt="plan"), CallKind.PLAN)

    assert response.content == "ok"
    assert response.model == "primary-model"
    assert len(sleeper.calls) == 2
    assert sleeper.calls[0] == 3.0
    assert 4.0 <= sleeper.calls[1] <= 8.0


def test_exhausted_primary_fails_over_to_fallback_model(pool, sleeper) -> None:
    replies = [_rate_limited() for _ in range(5)] + ["from fallback"]
    client = ScriptedClient(replies)
    calls = ResilientCallClient(
        client,
        executor=pool,
        fallback_model="fallback-model",
        sleeper=sleeper,
        rng=random.Random(3),
    )

    response = calls.call(LLMRequest(prompt="plan"))

    assert response.content == "from fallback"
    assert client.models == ["primary-model"] * 5 + ["fallback-model"]
    assert len(sleeper.calls) == 4


def test_exhausted_primary_without_fallback_raises(pool, sleeper) -> None:
    client = ScriptedClient([_rate_limited() for _ in range(5)])
    calls = ResilientCallClient(client, executor=pool, sleeper=sleeper)

    with pytest.raises(LLMRateLimitError, match="no fallback configured"):
        calls.call(LLMRequest(prompt="plan"))


def test_both_models_exhausted_names_them(pool, sleeper) -> None:
    policy = RetryPolicy(max_retries=1)
    client = ScriptedClient([_rate_limited() for _ in range(4)])
    calls = ResilientCallClient(
        client,
        executor=pool,
        fallback_model="fallback-model",
        policy=policy,
        sleeper=sleeper,
    )

    with pytest.raises(LLMRateLimitError) as excinfo:
        calls.call(LLMRequest(prompt="plan"))

    assert "primary (primary-model)" in str(excinfo.value)
    assert "fallback (fallback-model)" in str(excinfo.value)
    assert len(client.models) == 4


def test_non_rate_limit_errors_are_not_retried(pool, sleeper) -> None:
    client = ScriptedClient([LLMTransportError("connection refused")])
    calls = ResilientCallClient(client, executor=pool, sleeper=sleeper)

    with pytest.raises(LLMTransportError, match="AI request to primary-model failed: connection refused"):
        calls.call(LLMRequest(prompt="plan"))

    assert sleeper.calls == []
    assert client.models == ["primary-model"]


def test_client_error_subclass_keeps_its_type(pool, sleeper) -> None:
    client = ScriptedClient([LLMResponseFormatError("empty body")])
    calls = ResilientCallClient(client, executor=pool, sleeper=sleeper)

    with pytest.raises(LLMResponseFormatError, match="failed: empty body"):
        calls.call(LLMRequest(prompt="plan"))


def test_slow_call_times_out(pool) -> None:
    release = threading.Event()

    class SlowClient(LLMClient):
        def _raw_invoke(self, payload: Dict[str, Any], timeout: Optional[float] = None) -> str:
            release.wait(5)
            return "late"

    calls = ResilientCallClient(SlowClient(model="slow-model"), executor=pool)
    try:
        with pytest.raises(LLMTimeoutError, match="timed out after 0.05 seconds"):
            calls.call_with_timeout(LLMRequest(prompt="plan"), 0.05, kind=CallKind.SELECTOR)
    finally:
        release.set()


def test_timed_out_call_releases_its_worker_for_the_next_call() -> None:
    class DeadlineClient(LLMClient):
        """Blocks like a silent socket until the deadline it is handed expires."""

        def __init__(self) -> None:
            super().__init__(model="deadline-model")
            self.deadlines: List[Optional[float]] = []
            self.hang = threading.Event()
            self.hang.set()

        def _raw_invoke(self, payload: Dict[str, Any], timeout: Optional[float] = None) -> str:
            self.deadlines.append(timeout)
            if self.hang.is_set():
                self.hang.clear()
                threading.Event().wait(timeout if timeout is not None else 5)
                raise LLMTransportError("socket read timed out")
            return "[]"

    single = ThreadPoolExecutor(max_workers=1)
    client = DeadlineClient()
    calls = ResilientCallClient(client, executor=single)
    try:
        # The wrapper deadline and the socket deadline expire together.
        with pytest.raises((LLMTimeoutError, LLMTransportError)):
            calls.call_with_timeout(LLMRequest(prompt="plan"), 0.1, kind=CallKind.SELECTOR)

        response = calls.call_with_timeout(LLMRequest(prompt="plan"), 2.0, kind=CallKind.SELECTOR)
    finally:
        single.shutdown(wait=True, cancel_futures=True)

    assert response.content == "[]"
    assert client.deadlines == [0.1, 2.0]


def test_blank_prompt_is_rejected(pool) -> None:
    calls = ResilientCallClient(ScriptedClient([]), executor=pool)

    with pytest.raises(ValueError, match="User prompt is required"):
        calls.call(LLMRequest(prompt="   "))


def test_call_timeouts_from_mapping() -> None:
    timeouts = CallTimeouts.from_mapping({"plan": 30, "summary": 0})

    assert timeouts.for_kind(CallKind.PLAN) == 30.0
    assert timeouts.for_kind(CallKind.SUMMARY) == 300.0
    with pytest.raises(ValueError):
        CallTimeouts.from_mapping({"unknown": 1})
