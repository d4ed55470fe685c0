"""Post-run summary generation with a circuit-breaker guarded model call."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Sequence

from .. import prompts
from ..domain.schema import ExecutedStep, HealthCheck, IssueStats, RunStatus, RunSummary
from ..domain.test_run import TestRun
from ..models.circuit import CircuitBreaker
from ..models.llm_client import LLMRequest, LLMResponse, LLMResponseFormatError, parse_json_payload
from ..models.resilient import DEFAULT_TIMEOUTS, CallKind, ResilientCallClient

LOGGER = logging.getLogger(__name__)

MAX_FALLBACK_ACHIEVEMENTS = 5


@dataclass(slots=True)
class SignalCounts:
    network_errors: int = 0
    console_errors: int = 0
    accessibility_warnings: int = 0

    @classmethod
    def from_steps(cls, steps: Sequence[ExecutedStep]) -> "SignalCounts":
        return cls(
            network_errors=sum(len(step.signals.network_errors) for step in steps),
            console_errors=sum(len(step.signals.console_errors) for step in steps),
            accessibility_warnings=sum(len(step.signals.accessibility_warnings) for step in steps),
        )


class SummaryWriter:
    """Builds a :class:`RunSummary` for a finished run.

    Without a call client, or when the breaker is open, the call fails, or the
    reply cannot be parsed, a deterministic summary built from the run itself is
    returned instead.
    """

    def __init__(
        self,
        calls: Optional[ResilientCallClient] = None,
        *,
        breaker: Optional[CircuitBreaker] = None,
        timeout_seconds: float = DEFAULT_TIMEOUTS[CallKind.SUMMARY],
    ) -> None:
        self._calls = calls
        self._breaker = breaker or CircuitBreaker(name="ai-service")
        self._timeout_seconds = timeout_seconds

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    def write(self, run: TestRun) -> RunSummary:
        if self._calls is None:
            return fallback_summary(run)

        succeeded = run.status is RunStatus.COMPLETED
        counts = SignalCounts.from_steps(run.executed_steps)
        prompt = prompts.report_summary_prompt(
            succeeded,
            run.goals,
            step_lines(run.executed_steps),
            run.failure_reason,
            network_errors=counts.network_errors,
            console_errors=counts.console_errors,
            accessibility_warnings=counts.accessibility_warnings,
        )
        request = LLMRequest(
            prompt=prompt,
            system_prompt=prompts.SUMMARY_SYSTEM_PROMPT,
            temperature=0.2,
            metadata={"kind": CallKind.SUMMARY.value, "run_id": run.id},
        )
        LOGGER.info(
            "[SUMMARY] Generating summary with %ss timeout, prompt size: %d chars",
            self._timeout_seconds,
            len(prompt),
        )
        calls = self._calls
        response: Optional[LLMResponse] = self._breaker.call(
            lambda: calls.call_with_timeout(request, self._timeout_seconds, kind=CallKind.SUMMARY),
            fallback=self._on_call_failure,
        )
        if response is None:
            return fallback_summary(run)
        try:
            return parse_summary(response.content, run)
        except LLMResponseFormatError as error:
            LOGGER.warning("Failed to parse summary response, using fallback: %s", error)
            return fallback_summary(run)

    @staticmethod
    def _on_call_failure(error: Exception) -> None:
        LOGGER.warning(
            "[CIRCUIT BREAKER] Summary fallback triggered. Reason: %s, Message: %s",
            type(error).__name__,
            error,
        )
        return None


def step_lines(steps: Sequence[ExecutedStep]) -> List[str]:
    return [
        f"{index}. {'+' if record.is_success() else 'x'} {record.step.action} on {record.step.target or 'unknown'}"
        for index, record in enumerate(steps, start=1)
    ]


def parse_summary(raw_response: str, run: TestRun) -> RunSummary:
    """Map the model's JSON reply onto a :class:`RunSummary`."""
    data = parse_json_payload(raw_response)
    if not isinstance(data, Mapping):
        raise LLMResponseFormatError("Summary response was not a JSON object.")

    achievements_raw = data.get("keyAchievements")
    achievements = (
        [str(item) for item in achievements_raw if item is not None]
        if isinstance(achievements_raw, list)
        else []
    )
    health_raw = data.get("healthCheck")
    health_data: Mapping[str, Any] = health_raw if isinstance(health_raw, Mapping) else {}
    health = HealthCheck(
        network_issues=_issue_stats(health_data.get("networkIssues"), "No network issues detected"),
        console_issues=_issue_stats(health_data.get("consoleIssues"), "No console errors detected"),
        accessibility_score=_text(health_data.get("accessibilityScore"), "N/A"),
        accessibility_summary=_text(health_data.get("accessibilitySummary"), "No accessibility data available"),
    )

    if run.status is RunStatus.COMPLETED:
        return RunSummary.success(
            _text(data.get("goalOverview"), "Test execution completed"),
            _text(data.get("outcomeShort"), "All steps executed successfully"),
            achievements,
            health,
        )
    return RunSummary.failure(
        _text(data.get("goalOverview"), "Test execution attempted"),
        _text(data.get("outcomeShort"), "Test failed during execution"),
        _text(data.get("failureAnalysis"), run.failure_reason or "Unknown failure"),
        _text(data.get("actionableFix"), "Review the failed step for potential fixes"),
        achievements,
        health,
    )


def fallback_summary(run: TestRun) -> RunSummary:
    """Summary assembled from the run alone when no model output is available."""
    goals_overview = ", ".join(run.goals)
    achievements = [
        f"{record.step.action} on {record.step.target}"
        for record in run.executed_steps
        if record.is_success()
    ][:MAX_FALLBACK_ACHIEVEMENTS]
    health = HealthCheck(
        network_issues=IssueStats(count=0, summary="Data unavailable"),
        console_issues=IssueStats(count=0, summary="Data unavailable"),
        accessibility_score="N/A",
        accessibility_summary="Analysis failed",
    )
    if run.status is RunStatus.COMPLETED:
        return RunSummary.success(goals_overview, "Test run completed successfully", achievements, health)
    return RunSummary.failure(
        goals_overview,
        "Test run failed",
        run.failure_reason or "Execution error",
        "Review the execution log for details",
        achievements,
        health,
    )


def _issue_stats(raw: Any, default_summary: str) -> IssueStats:
    if not isinstance(raw, Mapping):
        return IssueStats(count=0, summary=default_summary)
    try:
        count = int(raw.get("count") or 0)
    except (TypeError, ValueError):
        count = 0
    return IssueStats(count=max(0, count), summary=_text(raw.get("summary"), default_summary))


def _text(value: Any, default: str) -> str:
    if value is None:
        return default
    text = str(value).strip()
    return text or default


__all__ = ["SignalCounts", "SummaryWriter", "fallback_summary", "parse_summary", "step_lines"]
