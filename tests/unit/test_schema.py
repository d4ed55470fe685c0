from __future__ import annotations

import pytest

from qarunner.domain import steps
from qarunner.domain.persona import Persona
from qarunner.domain.result import Result
from qarunner.domain.schema import (
    DomSnapshot,
    ExecutedStep,
    IssueSeverity,
    PerformanceIssue,
    PerformanceMetrics,
    RunStatus,
)


def test_snapshot_helpers(page_snapshot: DomSnapshot) -> None:
    assert page_snapshot.has_content()
    assert page_snapshot.line_count() == 6
    assert page_snapshot.contains_text("accept COOKIES")
    assert not page_snapshot.contains_text("")
    context = page_snapshot.extract_context("Email", context_lines=1)
    assert context is not None
    assert [line.strip() for line in context.splitlines()] == [
        "- main",
        '- textbox "Email" [ref=e2]',
        '- button "Subscribe" [ref=e3]',
    ]
    assert page_snapshot.extract_context("missing") is None
    assert DomSnapshot.empty().line_count() == 0


def test_step_describe_falls_back_to_selector_then_action() -> None:
    assert steps.click("Buy").describe() == "Buy"
    assert steps.click("", selector="#buy").describe() == "#buy"
    assert steps.screenshot("").describe() == "screenshot"
    assert steps.wait_duration_ms(steps.click("x")) == 1000


def test_executed_step_queries() -> None:
    timed_out = ExecutedStep.timeout(steps.click("Buy"))

    assert timed_out.is_failed()
    assert timed_out.error_message == "Execution timed out"
    assert not ExecutedStep.skipped(steps.click("Buy"), "optional").is_failed()


def test_performance_summary_and_critical_issues() -> None:
    metrics = PerformanceMetrics(
        web_vitals={"lcp": 2650.0, "cls": 0.05, "ttfb": 320.0},
        navigation={"pageLoad": 1800.0},
        issues=[PerformanceIssue(severity=IssueSeverity.HIGH, category="lcp", message="Slow LCP")],
    )

    assert metrics.has_metrics()
    assert metrics.has_critical_issues()
    assert metrics.summary() == "LCP: 2.65s | CLS: 0.050 | TTFB: 320ms | Load: 1.80s"
    assert not PerformanceMetrics().has_metrics()


def test_result_map_and_unwrap() -> None:
    assert Result.ok(2).map(lambda value: value * 3).unwrap() == 6
    failed: Result[int] = Result.failure("nope")
    assert failed.map(lambda value: value).failure_reason == "nope"
    with pytest.raises(ValueError, match="nope"):
        failed.unwrap()


def test_status_and_persona_queries() -> None:
    assert RunStatus.TIMEOUT.is_terminal
    assert not RunStatus.PAUSED.is_active
    assert RunStatus.PAUSED.can_cancel
    assert not RunStatus.COMPLETED.can_cancel
    assert Persona.parse(" chaos ") is Persona.CHAOS
    assert Persona.parse(None) is Persona.STANDARD
    assert Persona.HACKER.temperature == 0.4
    with pytest.raises(ValueError):
        Persona.parse("pirate")
