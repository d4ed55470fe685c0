from __future__ import annotations

from qarunner.domain import steps
from qarunner.domain.persona import Persona
from qarunner.domain.schema import DomSnapshot
from qarunner.planning.local import LocalStepPlanner
from qarunner.planning.planner import (
    PlanningContext,
    extract_selector,
    fallback_plan_for_goal,
    fallback_repair,
    parse_steps_response,
)


def test_parse_steps_handles_fenced_json_and_drops_navigation() -> None:
    raw = """Here is the plan:
```json
[
  {"action": "navigate", "target": "https://example.com"},
  {"action": "wait", "target": "page", "params": {"ms": 1500}},
  {"action": "Click", "target": "Sign in button"},
  {"action": "type", "target": "Email", "value": "qa@example.com"}
]
```"""

    parsed = parse_steps_response(raw)

    assert [step.action for step in parsed] == ["wait", "click", "type"]
    assert parsed[0].params == {"ms": "1500"}
    assert steps.wait_duration_ms(parsed[0]) == 1500
    assert parsed[2].value == "qa@example.com"
    assert len({step.step_id for step in parsed}) == 3


def test_parse_steps_unwraps_object_and_stringifies_params() -> None:
    raw = '{"steps": [{"action": "measure_performance", "params": {"includeResources": true, "extra": [1, 2]}}]}'

    parsed = parse_steps_response(raw)

    assert parsed[0].params == {"includeResources": "true", "extra": "[1,2]"}


def test_parse_steps_recovers_truncated_array() -> None:
    raw = '[{"action": "click", "target": "A"}, {"action": "click", "target": "B"}, {"action": "cli'

    parsed = parse_steps_response(raw)

    assert [step.target for step in parsed] == ["A", "B"]


def test_parse_steps_returns_empty_for_garbage() -> None:
    assert parse_steps_response("I cannot help with that.") == []
    assert parse_steps_response("") == []
    assert parse_steps_response('[{"target": "no action"}, "text"]') == []


def test_fallback_plan_is_observation_only() -> None:
    plan = fallback_plan_for_goal("Verify the checkout flow works end to end for a guest user")

    assert [step.action for step in plan] == ["wait", "screenshot", "wait", "screenshot"]
    assert [steps.wait_duration_ms(step) for step in plan if step.action == "wait"] == [3000, 2000]
    assert plan[1].target.endswith("...")


def test_fallback_repair_keeps_step_id_and_clears_selector() -> None:
    failed = steps.click("Buy", selector="#buy")

    wait_step, retried = fallback_repair(failed)

    assert steps.wait_duration_ms(wait_step) == 2000
    assert retried.step_id == failed.step_id
    assert retried.selector is None


def test_extract_selector_direct_and_reasoning_replies() -> None:
    assert extract_selector('"@e12"') == "@e12"
    assert extract_selector("NOT_FOUND") is None
    reasoning = (
        "Looking at the tree, the cookie banner has an Accept button.\n"
        "The best match is ref e7 which is labelled Accept all."
    )
    assert extract_selector(reasoning) == "@e7"
    css_reasoning = "Looking at the markup, the element you want is\nbutton#submit-order near the footer."
    assert extract_selector(css_reasoning, aria_mode=False) == "#submit-order"
    assert extract_selector("Looking carefully...\nElement not found in this tree.") is None


def test_local_planner_parses_imperative_clauses() -> None:
    planner = LocalStepPlanner()
    context = PlanningContext(target_url="https://example.com")

    plan = planner.plan_goal(
        "click the Accept cookies button; type 'qa@example.com' into Email, wait 2s then take a screenshot",
        context,
    )

    assert [step.action for step in plan] == ["click", "type", "wait", "screenshot"]
    assert plan[0].target == "Accept cookies button"
    assert plan[1].target == "Email"
    assert plan[1].value == "qa@example.com"
    assert steps.wait_duration_ms(plan[2]) == 2000


def test_local_planner_create_plan_uses_persona_default_goal() -> None:
    plan = LocalStepPlanner().create_plan("https://example.com", [], Persona.PERFORMANCE_HAWK)

    assert plan[0].action == "navigate"
    assert plan[0].value == "https://example.com"
    assert plan[-1].action == "measure_performance"


def test_local_planner_find_selector_matches_by_keywords(page_snapshot: DomSnapshot) -> None:
    planner = LocalStepPlanner()

    assert planner.find_selector("Accept cookies", page_snapshot) == "@e1"
    assert planner.find_selector("the email field", page_snapshot) == "@e2"
    assert planner.find_selector("checkout", page_snapshot) is None
    assert planner.find_selector("subscribe", DomSnapshot.empty()) is None
