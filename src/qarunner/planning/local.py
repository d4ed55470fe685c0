"""Deterministic planner used when no model endpoint is configured."""

from __future__ import annotations

import logging
import re
from typing import List, Optional

from .. import prompts
from ..domain import steps as step_factory
from ..domain.persona import Persona
from ..domain.schema import ActionStep, ActionType, DomSnapshot
from .planner import Planner, PlanningContext, fallback_repair

LOGGER = logging.getLogger(__name__)

_CLAUSE_SPLIT_RE = re.compile(r"\s*(?:;|,|\n|\bthen\b)\s*", re.IGNORECASE)
_CLICK_RE = re.compile(r"^(?:click|press|tap|open)\s+(?:on\s+)?(?:the\s+)?(?P<target>.+)$", re.IGNORECASE)
_TYPE_RE = re.compile(
    r"^(?:type|enter|fill in)\s+[\"'](?P<value>.+?)[\"']\s+(?:into|in)\s+(?:the\s+)?(?P<target>.+)$",
    re.IGNORECASE,
)
_WAIT_RE = re.compile(r"^wait(?:\s+(?:for\s+)?(?P<amount>\d+)\s*(?P<unit>ms|s|sec|secs|seconds?)?)?", re.IGNORECASE)
_REF_RE = re.compile(r"\[ref=(e\d+)\]|@(e\d+)")
_STOPWORDS = frozenset({"the", "a", "an", "on", "in", "into", "to", "of", "and", "button", "link", "field"})


class LocalStepPlanner(Planner):
    """Plans from simple imperative goal phrasing without calling a model.

    Supported clauses: ``click X``, ``type 'value' into X``, ``wait [N ms|s]``,
    ``screenshot`` and ``measure performance``. Clauses are separated by commas,
    semicolons, newlines or ``then``.
    """

    def plan_goal(self, goal: str, context: PlanningContext) -> List[ActionStep]:
        planned: List[ActionStep] = []
        for clause in _CLAUSE_SPLIT_RE.split(goal or ""):
            step = _parse_clause(clause.strip())
            if step is not None:
                planned.append(step)

        if not planned:
            label = prompts.truncate(goal, 50)
            LOGGER.info("No actionable clauses in goal '%s'; planning an observation pass", label)
            planned = [
                step_factory.wait_for("page to stabilize", 1000),
                step_factory.screenshot(f"Page state for: {label}"),
            ]

        if context.persona is Persona.PERFORMANCE_HAWK and not any(
            step.action == ActionType.MEASURE_PERFORMANCE.value for step in planned
        ):
            planned.append(step_factory.measure_performance())
        return planned

    def plan_repair(
        self,
        failed_step: ActionStep,
        error: str,
        snapshot: Optional[DomSnapshot],
        context: PlanningContext,
    ) -> List[ActionStep]:
        return fallback_repair(failed_step)

    def find_selector(self, description: str, snapshot: Optional[DomSnapshot]) -> Optional[str]:
        """Return the aria ref of the snapshot line sharing the most words with ``description``."""
        if snapshot is None or not snapshot.has_content():
            return None
        keywords = [
            word for word in re.findall(r"[a-z0-9]+", (description or "").lower()) if word not in _STOPWORDS
        ]
        if not keywords:
            return None

        best_ref: Optional[str] = None
        best_score = 0
        for line in snapshot.content.split("\n"):
            match = _REF_RE.search(line)
            if not match:
                continue
            lowered = line.lower()
            score = sum(1 for word in keywords if word in lowered)
            if score > best_score:
                best_score = score
                best_ref = f"@{match.group(1) or match.group(2)}"
        return best_ref


def _parse_clause(clause: str) -> Optional[ActionStep]:
    if not clause:
        return None
    lowered = clause.lower()

    typed = _TYPE_RE.match(clause)
    if typed:
        return step_factory.type_text(typed.group("target").strip(), typed.group("value"))

    waited = _WAIT_RE.match(clause)
    if waited:
        amount = waited.group("amount")
        if amount is None:
            return step_factory.wait_for("page to settle", 1000)
        unit = (waited.group("unit") or "ms").lower()
        duration_ms = int(amount) * (1 if unit == "ms" else 1000)
        return step_factory.wait_for("page to settle", duration_ms)

    if "screenshot" in lowered or lowered.startswith("capture"):
        return step_factory.screenshot(clause)
    if "performance" in lowered:
        return step_factory.measure_performance()

    clicked = _CLICK_RE.match(clause)
    if clicked:
        return step_factory.click(clicked.group("target").strip())
    return None


__all__ = ["LocalStepPlanner"]
