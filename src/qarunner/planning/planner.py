"""Planner contract and the model-backed step planner.

The planner turns natural-language goals into :class:`ActionStep` lists, proposes
repair steps after a failure and resolves element descriptions to selectors.
Unparseable or malformed model output never escapes as an exception: it is
replaced by a deterministic plan made of waits and screenshots. Call failures (rate limits
exhausted on every model, timeouts, transport errors) propagate so the caller
can fail the run.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional, Sequence

from .. import prompts
from ..domain import steps as step_factory
from ..domain.persona import Persona
from ..domain.schema import ActionStep, ActionType, DomSnapshot, ExecutedStep
from ..models.llm_client import (
    LLMRequest,
    LLMResponseFormatError,
    parse_json_payload,
    recover_truncated_array,
)
from ..models.resilient import CallKind, ResilientCallClient

LOGGER = logging.getLogger(__name__)

NOT_FOUND = "NOT_FOUND"
NOT_FOUND_PHRASES = ("element not found", "cannot find", "no matching")
FALLBACK_GOAL_CHARS = 50

_ARIA_REF_RE = re.compile(r"(?<![\w@])@?(?:e|ref_?)\d+\b", re.IGNORECASE)
_CSS_SELECTOR_PATTERNS = (
    re.compile(r"\[data-testid=[\"']?([^\"'\]]+)[\"']?\]"),
    re.compile(r"#[a-zA-Z][a-zA-Z0-9_-]*"),
    re.compile(r"\[[a-zA-Z-]+=[\"']?[^\"'\]]+[\"']?\]"),
    re.compile(r"\.[a-zA-Z][a-zA-Z0-9_-]*"),
    re.compile(r"(?:button|a|input|div|span)(?:#|\.|\[)[a-zA-Z][^\s,]*"),
)


@dataclass(slots=True)
class PlanningContext:
    """What the planner knows about the run when asked for more steps."""

    target_url: str
    persona: Persona = Persona.STANDARD
    goals: Sequence[str] = ()
    recent_history: List[ExecutedStep] = field(default_factory=list)

    def history_lines(self) -> List[str]:
        return [
            f"{record.step.action} '{record.step.describe()}' -> {record.status.value}"
            + (f" ({record.error_message})" if record.error_message else "")
            for record in self.recent_history
        ]


class Planner:
    """Base planner. Subclasses implement goal, repair and selector planning."""

    def create_plan(
        self,
        target_url: str,
        goals: Sequence[str],
        persona: Persona = Persona.STANDARD,
    ) -> List[ActionStep]:
        """Build the initial plan: navigate to ``target_url`` then plan every goal."""
        effective_goals = [goal for goal in goals if goal and goal.strip()]
        if not effective_goals:
            effective_goals = [persona.default_goal()]
        LOGGER.info(
            "Creating plan for %s with %d goal(s) using %s persona",
            target_url,
            len(effective_goals),
            persona.value,
        )
        context = PlanningContext(target_url=target_url, persona=persona, goals=tuple(effective_goals))
        plan: List[ActionStep] = [step_factory.navigate(target_url)]
        for goal in effective_goals:
            plan.extend(self.plan_goal(goal, context))
        LOGGER.info("Created plan with %d steps", len(plan))
        return plan

    def plan_goal(self, goal: str, context: PlanningContext) -> List[ActionStep]:
        raise NotImplementedError("Subclasses must implement plan_goal().")

    def plan_repair(
        self,
        failed_step: ActionStep,
        error: str,
        snapshot: Optional[DomSnapshot],
        context: PlanningContext,
    ) -> List[ActionStep]:
        raise NotImplementedError("Subclasses must implement plan_repair().")

    def find_selector(self, description: str, snapshot: Optional[DomSnapshot]) -> Optional[str]:
        raise NotImplementedError("Subclasses must implement find_selector().")


def fallback_plan_for_goal(goal: str) -> List[ActionStep]:
    """Observation-only plan used when the model cannot produce usable steps."""
    label = prompts.truncate(goal, FALLBACK_GOAL_CHARS)
    LOGGER.warning("AI failed to generate plan - using fallback for goal: '%s'", label)
    return [
        step_factory.wait_for("page to stabilize", 3000),
        step_factory.screenshot(f"Page state - AI could not plan: {label}"),
        step_factory.wait_for("dynamic content to load", 2000),
        step_factory.screenshot(f"Final state - manual review needed for: {label}"),
    ]


def fallback_repair(failed_step: ActionStep) -> List[ActionStep]:
    """Wait, then retry the failed step with its selector cleared."""
    return [
        step_factory.wait_for("recovery", 2000),
        step_factory.with_selector(failed_step, None),
    ]


def parse_steps_response(raw_response: str | None) -> List[ActionStep]:
    """Turn model output into steps; returns an empty list when nothing is usable."""
    if not raw_response or not raw_response.strip():
        return []
    try:
        payload: Any = parse_json_payload(raw_response)
    except LLMResponseFormatError:
        payload = recover_truncated_array(raw_response)
        if payload is None:
            LOGGER.warning("Could not parse steps from response: %s", prompts.truncate(raw_response, 200))
            return []
        LOGGER.info("Recovered %d step(s) from a truncated response", len(payload))

    if isinstance(payload, dict):
        payload = next((value for value in payload.values() if isinstance(value, list)), None)
    if not isinstance(payload, list):
        return []

    parsed: List[ActionStep] = []
    for entry in payload:
        if not isinstance(entry, Mapping):
            continue
        step = _map_step(entry)
        if step is None:
            continue
        if step.action == ActionType.NAVIGATE.value:
            LOGGER.debug("Dropping model-emitted navigate step (target: '%s')", step.target)
            continue
        parsed.append(step)
    return parsed


def _map_step(entry: Mapping[str, Any]) -> Optional[ActionStep]:
    action = _text(entry.get("action")).strip().lower()
    if not action:
        return None
    target = _text(entry.get("target"))
    value = _optional_text(entry.get("value"))
    if action == ActionType.NAVIGATE.value and not target.strip() and value:
        target = value
    raw_params = entry.get("params")
    params = (
        {str(key): _param_text(item) for key, item in raw_params.items()}
        if isinstance(raw_params, Mapping)
        else {}
    )
    return step_factory.reconstitute(
        step_factory.new_step_id(),
        action,
        target,
        _optional_text(entry.get("selector")),
        value,
        params,
    )


def _text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def _optional_text(value: Any) -> Optional[str]:
    text = _text(value)
    return text if text.strip() else None


def _param_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"))
    return _text(value)


def extract_selector(raw_response: str | None, *, aria_mode: bool = True) -> Optional[str]:
    """Pull a selector or aria ref out of a model reply; ``None`` when not found."""
    if not raw_response or not raw_response.strip():
        return None
    trimmed = raw_response.strip()

    if len(trimmed) < 100 and "\n" not in trimmed and not trimmed.lower().startswith("looking"):
        candidate = trimmed.replace('"', "").replace("'", "").strip()
        if not candidate or candidate.upper() == NOT_FOUND:
            return None
        return candidate

    LOGGER.warning("Selector response contains reasoning text (%d chars), extracting selector", len(trimmed))
    if aria_mode:
        match = _ARIA_REF_RE.search(trimmed)
        if match:
            ref = match.group(0)
            return ref if ref.startswith("@") else f"@{ref}"
    else:
        for pattern in _CSS_SELECTOR_PATTERNS:
            match = pattern.search(trimmed)
            if match:
                return match.group(0)

    lowered = trimmed.lower()
    if NOT_FOUND in trimmed.upper() or any(phrase in lowered for phrase in NOT_FOUND_PHRASES):
        LOGGER.debug("Model indicated element not found")
        return None
    LOGGER.error("Failed to extract selector from response: %s", prompts.truncate(trimmed, 200))
    return None


class AIStepPlanner(Planner):
    """Planner backed by a language model reached through the resilient call client."""

    def __init__(self, calls: ResilientCallClient, *, aria_mode: bool = True) -> None:
        self._calls = calls
        self._aria_mode = aria_mode

    def plan_goal(self, goal: str, context: PlanningContext) -> List[ActionStep]:
        LOGGER.info(
            "Planning goal: %s for %s with %s persona (temperature: %s)",
            goal,
            context.target_url,
            context.persona.value,
            context.persona.temperature,
        )
        request = LLMRequest(
            prompt=prompts.goal_planning_prompt(goal, context.target_url, context.history_lines()),
            system_prompt=prompts.system_prompt(context.persona),
            temperature=context.persona.temperature,
            metadata={"kind": CallKind.PLAN.value, "goal": goal},
        )
        try:
            response = self._calls.call(request, CallKind.PLAN)
        except LLMResponseFormatError as error:
            LOGGER.warning("Plan response for goal '%s' was malformed: %s", goal, error)
            return fallback_plan_for_goal(goal)
        planned = parse_steps_response(response.content)
        if not planned:
            return fallback_plan_for_goal(goal)
        LOGGER.info("Generated %d steps for goal: '%s'", len(planned), goal)
        return planned

    def plan_repair(
        self,
        failed_step: ActionStep,
        error: str,
        snapshot: Optional[DomSnapshot],
        context: PlanningContext,
    ) -> List[ActionStep]:
        LOGGER.info("Planning repair for failed step: %s '%s'", failed_step.action, failed_step.describe())
        last = context.recent_history[-1] if context.recent_history else None
        request = LLMRequest(
            prompt=prompts.repair_planning_prompt(
                failed_step.action,
                failed_step.target,
                error,
                snapshot.content if snapshot else "",
                network_errors=last.signals.network_errors if last else (),
                console_errors=last.signals.console_errors if last else (),
            ),
            system_prompt=prompts.system_prompt(context.persona),
            temperature=context.persona.temperature,
            metadata={"kind": CallKind.REPAIR.value, "step_id": failed_step.step_id},
        )
        try:
            response = self._calls.call(request, CallKind.REPAIR)
        except LLMResponseFormatError as format_error:
            LOGGER.warning("Repair response was malformed: %s", format_error)
            return fallback_repair(failed_step)
        repaired = parse_steps_response(response.content)
        if not repaired:
            LOGGER.warning("Repair response unusable; retrying '%s' after a pause", failed_step.describe())
            return fallback_repair(failed_step)
        return repaired

    def find_selector(self, description: str, snapshot: Optional[DomSnapshot]) -> Optional[str]:
        content = snapshot.content if snapshot else ""
        request = LLMRequest(
            prompt=prompts.selector_finder_prompt(description, content),
            temperature=0.0,
            metadata={"kind": CallKind.SELECTOR.value},
        )
        try:
            response = self._calls.call(request, CallKind.SELECTOR)
        except LLMResponseFormatError as error:
            LOGGER.warning("Selector response for '%s' was malformed: %s", description, error)
            return None
        selector = extract_selector(response.content, aria_mode=self._aria_mode)
        if selector:
            LOGGER.debug("Found selector %s for: %s", selector, description)
        else:
            LOGGER.debug("Element not found for: %s", description)
        return selector


__all__ = [
    "AIStepPlanner",
    "NOT_FOUND",
    "Planner",
    "PlanningContext",
    "extract_selector",
    "fallback_plan_for_goal",
    "fallback_repair",
    "parse_steps_response",
]
