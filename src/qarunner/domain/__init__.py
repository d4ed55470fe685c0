"""Domain records for autonomous browser test runs."""

from .persona import Persona
from .result import Result
from .schema import (
    ActionStep,
    ActionType,
    DomSnapshot,
    ExecutedStep,
    ExecutionStatus,
    HealthCheck,
    IssueSeverity,
    IssueStats,
    PerformanceIssue,
    PerformanceMetrics,
    RunStatus,
    RunSummary,
    SideChannels,
    SummaryStatus,
)
from .test_run import TestRun

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
    "Persona",
    "Result",
    "RunStatus",
    "RunSummary",
    "SideChannels",
    "SummaryStatus",
    "TestRun",
]
