"""Typed value objects exchanged between the planner, the executor and the run engine."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..utils.timing import utc_now


class ValueModel(BaseModel):
    """Immutable Pydantic base with strict field handling."""

    model_config = ConfigDict(extra="forbid", frozen=True)


class ActionType(str, Enum):
    """Action verbs understood by the engine; planners may emit others."""

    NAVIGATE = "navigate"
    CLICK = "click"
    TYPE = "type"
    WAIT = "wait"
    SCREENSHOT = "screenshot"
    MEASURE_PERFORMANCE = "measure_performance"


class ActionStep(ValueModel):
    """One planned unit of interaction with the page under test."""

    step_id: str
    action: str
    target: str = ""
    selector: Optional[str] = None
    value: Optional[str] = None
    params: Dict[str, str] = Field(default_factory=dict)

    def has_selector(self) -> bool:
        return bool(self.selector and self.selector.strip())

    def describe(self) -> str:
        """Human-readable label: target, else selector, else the action verb."""
        if self.target and self.target.strip():
            return self.target
        if self.has_selector():
            return self.selector or ""
        return self.action


class DomSnapshot(ValueModel):
    """Accessibility-tree text captured from the page at one point in time."""

    content: str = ""
    url: str = ""
    title: str = ""
    captured_at: datetime = Field(default_factory=utc_now)

    @classmethod
    def empty(cls) -> "DomSnapshot":
        """Sentinel for the pre-navigation state."""
        return cls()

    def has_content(self) -> bool:
        return bool(self.content.strip())

    def line_count(self) -> int:
        if not self.has_content():
            return 0
        return len(self.content.split("\n"))

    def contains_text(self, text: str) -> bool:
        if not text:
            return False
        return text.lower() in self.content.lower()

    def extract_context(self, keyword: str, context_lines: int = 2) -> Optional[str]:
        """Return the lines surrounding the first line mentioning ``keyword``."""
        if not keyword:
            return None
        needle = keyword.lower()
        lines = self.content.split("\n")
        for index, line in enumerate(lines):
            if needle in line.lower():
                start = max(0, index - context_lines)
                end = min(len(lines), index + context_lines + 1)
                return "\n".join(lines[start:end]).strip()
        return None


class ExecutionStatus(str, Enum):
    """Outcome recorded for a committed step attempt."""

    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"
    TIMEOUT = "TIMEOUT"


class IssueSeverity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class PerformanceIssue(ValueModel):
    severity: IssueSeverity
    category: str
    message: str
    value: Optional[float] = None
    threshold: Optional[float] = None


class PerformanceMetrics(ValueModel):
    """Core Web Vitals and navigation timings observed for a step."""

    web_vitals: Dict[str, float] = Field(default_factory=dict)
    navigation: Dict[str, float] = Field(default_factory=dict)
    total_resources: Optional[int] = None
    total_transfer_size_kb: Optional[int] = None
    issues: List[PerformanceIssue] = Field(default_factory=list)

    def has_metrics(self) -> bool:
        return bool(self.web_vitals or self.navigation)

    def has_critical_issues(self) -> bool:
        return any(
            issue.severity in (IssueSeverity.CRITICAL, IssueSeverity.HIGH) for issue in self.issues
        )

    def summary(self) -> str:
        parts: list[str] = []
        lcp = self.web_vitals.get("lcp")
        if lcp is not None:
            parts.append(f"LCP: {_format_ms(lcp)}")
        cls_value = self.web_vitals.get("cls")
        if cls_value is not None:
            parts.append(f"CLS: {cls_value:.3f}")
        ttfb = self.web_vitals.get("ttfb")
        if ttfb is not None:
            parts.append(f"TTFB: {_format_ms(ttfb)}")
        page_load = self.navigation.get("pageLoad")
        if page_load is not None:
            parts.append(f"Load: {_format_ms(page_load)}")
        return " | ".join(parts)


def _format_ms(value: float) -> str:
    if value >= 1000:
        return f"{value / 1000:.2f}s"
    return f"{value:.0f}ms"


class SideChannels(ValueModel):
    """Signals observed by the automation layer alongside a step."""

    network_errors: List[str] = Field(default_factory=list)
    console_errors: List[str] = Field(default_factory=list)
    accessibility_warnings: List[str] = Field(default_factory=list)
    performance: Optional[PerformanceMetrics] = None


class ExecutedStep(ValueModel):
    """Committed record of one step attempt; never mutated after creation."""

    step: ActionStep
    status: ExecutionStatus
    executed_at: datetime = Field(default_factory=utc_now)
    duration_ms: int = 0
    selector_used: Optional[str] = None
    snapshot_before: Optional[DomSnapshot] = None
    snapshot_after: Optional[DomSnapshot] = None
    error_message: Optional[str] = None
    retry_count: int = 0
    optimization_suggestion: Optional[str] = None
    signals: SideChannels = Field(default_factory=SideChannels)

    @classmethod
    def success(
        cls,
        step: ActionStep,
        *,
        selector_used: Optional[str] = None,
        before: Optional[DomSnapshot] = None,
        after: Optional[DomSnapshot] = None,
        duration_ms: int = 0,
        retry_count: int = 0,
        signals: Optional[SideChannels] = None,
        executed_at: Optional[datetime] = None,
        optimization_suggestion: Optional[str] = None,
    ) -> "ExecutedStep":
        return cls(
            step=step,
            status=ExecutionStatus.SUCCESS,
            executed_at=executed_at or utc_now(),
            duration_ms=duration_ms,
            selector_used=selector_used,
            snapshot_before=before,
            snapshot_after=after,
            retry_count=retry_count,
            optimization_suggestion=optimization_suggestion,
            signals=signals or SideChannels(),
        )

    @classmethod
    def failed(
        cls,
        step: ActionStep,
        error: str,
        *,
        before: Optional[DomSnapshot] = None,
        after: Optional[DomSnapshot] = None,
        duration_ms: int = 0,
        retry_count: int = 0,
        signals: Optional[SideChannels] = None,
        executed_at: Optional[datetime] = None,
    ) -> "ExecutedStep":
        return cls(
            step=step,
            status=ExecutionStatus.FAILED,
            executed_at=executed_at or utc_now(),
            duration_ms=duration_ms,
            snapshot_before=before,
            snapshot_after=after,
            error_message=error,
            retry_count=retry_count,
            signals=signals or SideChannels(),
        )

    @classmethod
    def timeout(
        cls,
        step: ActionStep,
        *,
        before: Optional[DomSnapshot] = None,
        duration_ms: int = 0,
        retry_count: int = 0,
        executed_at: Optional[datetime] = None,
    ) -> "ExecutedStep":
        return cls(
            step=step,
            status=ExecutionStatus.TIMEOUT,
            executed_at=executed_at or utc_now(),
            duration_ms=duration_ms,
            snapshot_before=before,
            error_message="Execution timed out",
            retry_count=retry_count,
        )

    @classmethod
    def skipped(
        cls,
        step: ActionStep,
        reason: str,
        *,
        before: Optional[DomSnapshot] = None,
        after: Optional[DomSnapshot] = None,
        duration_ms: int = 0,
        retry_count: int = 0,
        signals: Optional[SideChannels] = None,
        executed_at: Optional[datetime] = None,
        optimization_suggestion: Optional[str] = None,
    ) -> "ExecutedStep":
        return cls(
            step=step,
            status=ExecutionStatus.SKIPPED,
            executed_at=executed_at or utc_now(),
            duration_ms=duration_ms,
            snapshot_before=before,
            snapshot_after=after,
            error_message=reason,
            retry_count=retry_count,
            optimization_suggestion=optimization_suggestion,
            signals=signals or SideChannels(),
        )

    def is_success(self) -> bool:
        return self.status is ExecutionStatus.SUCCESS

    def is_failed(self) -> bool:
        return self.status in (ExecutionStatus.FAILED, ExecutionStatus.TIMEOUT)

    def is_skipped(self) -> bool:
        return self.status is ExecutionStatus.SKIPPED

    def has_network_errors(self) -> bool:
        return bool(self.signals.network_errors)

    def has_console_errors(self) -> bool:
        return bool(self.signals.console_errors)


class RunStatus(str, Enum):
    """Lifecycle states for a test run."""

    PENDING = "PENDING"
    PLANNING = "PLANNING"
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    TIMEOUT = "TIMEOUT"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        """Only active runs accept step execution or repair injection."""
        return self in (RunStatus.RUNNING, RunStatus.PLANNING)

    @property
    def can_cancel(self) -> bool:
        return not self.is_terminal

    @property
    def can_resume(self) -> bool:
        return self is RunStatus.PAUSED


_TERMINAL_STATUSES = frozenset(
    {RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED, RunStatus.TIMEOUT}
)


class SummaryStatus(str, Enum):
    """Progress of the post-run summary generation."""

    PENDING = "PENDING"
    GENERATING = "GENERATING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class IssueStats(ValueModel):
    count: int = 0
    summary: str = ""


class HealthCheck(ValueModel):
    network_issues: IssueStats = Field(default_factory=IssueStats)
    console_issues: IssueStats = Field(default_factory=IssueStats)
    accessibility_score: str = "N/A"
    accessibility_summary: str = ""


class RunSummary(ValueModel):
    """Structured report summary attached to a finished run."""

    status: str
    goal_overview: str
    outcome_short: str
    failure_analysis: Optional[str] = None
    actionable_fix: Optional[str] = None
    key_achievements: List[str] = Field(default_factory=list)
    health_check: HealthCheck = Field(default_factory=HealthCheck)

    @classmethod
    def success(
        cls,
        goal_overview: str,
        outcome_short: str,
        key_achievements: List[str],
        health_check: HealthCheck,
    ) -> "RunSummary":
        return cls(
            status="SUCCESS",
            goal_overview=goal_overview,
            outcome_short=outcome_short,
            key_achievements=list(key_achievements),
            health_check=health_check,
        )

    @classmethod
    def failure(
        cls,
        goal_overview: str,
        outcome_short: str,
        failure_analysis: str,
        actionable_fix: str,
        key_achievements: List[str],
        health_check: HealthCheck,
    ) -> "RunSummary":
        return cls(
            status="FAILURE",
            goal_overview=goal_overview,
            outcome_short=outcome_short,
            failure_analysis=failure_analysis,
            actionable_fix=actionable_fix,
            key_achievements=list(key_achievements),
            health_check=health_check,
        )

    def is_success(self) -> bool:
        return self.status == "SUCCESS"


__all__ = [
    "ActionStep",
    "ActionType",
    "DomSnapshot",
    "ExecutedStep",
    "ExecutionStatus",
    "HealthCheck",
    "IssueSeverity",
    "IssueStats",
    "PerformanceIssue",
    "PerformanceMetrics",
    "RunStatus",
    "RunSummary",
    "SideChannels",
    "SummaryStatus",
    "ValueModel",
]
