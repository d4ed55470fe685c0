"""Factories for building :class:`ActionStep` instances."""

from __future__ import annotations

import uuid
from typing import Mapping, Optional

from .schema import ActionStep, ActionType


def new_step_id() -> str:
    return f"step-{uuid.uuid4()}"


def navigate(url: str) -> ActionStep:
    return ActionStep(step_id=new_step_id(), action=ActionType.NAVIGATE.value, target=url, value=url)


def click(target: str, selector: Optional[str] = None) -> ActionStep:
    return ActionStep(
        step_id=new_step_id(),
        action=ActionType.CLICK.value,
        target=target,
        selector=selector,
    )


def type_text(target: str, value: str, selector: Optional[str] = None) -> ActionStep:
    return ActionStep(
        step_id=new_step_id(),
        action=ActionType.TYPE.value,
        target=target,
        selector=selector,
        value=value,
    )


def wait_for(target: str, timeout_ms: int) -> ActionStep:
    """Build a wait step; the duration travels in ``params["timeout"]``."""
    return ActionStep(
        step_id=new_step_id(),
        action=ActionType.WAIT.value,
        target=target,
        params={"timeout": str(timeout_ms)},
    )


def screenshot(target: str) -> ActionStep:
    return ActionStep(step_id=new_step_id(), action=ActionType.SCREENSHOT.value, target=target)


def measure_performance(target: str = "page performance") -> ActionStep:
    return ActionStep(
        step_id=new_step_id(),
        action=ActionType.MEASURE_PERFORMANCE.value,
        target=target,
        params={"includeResources": "true"},
    )


def with_selector(step: ActionStep, selector: Optional[str]) -> ActionStep:
    """Return a copy of ``step`` (same id) carrying ``selector``."""
    return step.model_copy(update={"selector": selector})


def reconstitute(
    step_id: str,
    action: str,
    target: str = "",
    selector: Optional[str] = None,
    value: Optional[str] = None,
    params: Optional[Mapping[str, str]] = None,
) -> ActionStep:
    return ActionStep(
        step_id=step_id,
        action=action,
        target=target,
        selector=selector,
        value=value,
        params=dict(params or {}),
    )


def wait_duration_ms(step: ActionStep, default: int = 1000) -> int:
    """Read the wait duration from ``params["timeout"]`` or a model-emitted ``params["ms"]``."""
    raw = step.params.get("timeout", step.params.get("ms"))
    if raw is None:
        return default
    try:
        return max(0, int(float(raw)))
    except ValueError:
        return default


__all__ = [
    "click",
    "measure_performance",
    "navigate",
    "new_step_id",
    "reconstitute",
    "screenshot",
    "type_text",
    "wait_duration_ms",
    "wait_for",
    "with_selector",
]
