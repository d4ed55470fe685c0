"""Step planning: model-backed and offline planners plus plan validation."""

from .local import LocalStepPlanner
from .planner import (
    AIStepPlanner,
    Planner,
    PlanningContext,
    extract_selector,
    fallback_plan_for_goal,
    fallback_repair,
    parse_steps_response,
)
from .sanitizer import PlanSanitizer

__all__ = [
    "AIStepPlanner",
    "LocalStepPlanner",
    "PlanSanitizer",
    "Planner",
    "PlanningContext",
    "extract_selector",
    "fallback_plan_for_goal",
    "fallback_repair",
    "parse_steps_response",
]
