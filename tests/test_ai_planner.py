from __future__ import annotations

import json
from concurrent.futures import ThreadPoolExecutor
from typing import Iterator

import pytest

from qarunner.domain import steps
from qarunner.models.chat import ChatCompletionsClient
from qarunner.models.resilient import ResilientCallClient
from qarunner.planning.planner import AIStepPlanner, PlanningContext

NULL_CONTENT = '{"choices":[{"message":{"content":null}}]}'


@pytest.fixture()
def pool() -> Iterator[ThreadPoolExecutor]:
    executor = ThreadPoolExecutor(max_workers=2)
    yield executor
    executor.shutdown(wait=True)


def _planner(pool: ThreadPoolExecutor, body: str) -> AIStepPlanner:
    client = ChatCompletionsClient(transport=lambda _: body)
    return AIStepPlanner(ResilientCallClient(client, executor=pool))


def test_goal_with_empty_message_content_gets_fallback_plan(pool) -> None:
    planner = _planner(pool, NULL_CONTENT)
    context = PlanningContext(target_url="https://shop.example.com")

    plan = planner.plan_goal("buy a hat", context)

    assert [step.action for step in plan] == ["wait", "screenshot", "wait", "screenshot"]
    assert plan[1].target == "Page state - AI could not plan: buy a hat"


def test_repair_with_empty_message_content_retries_failed_step(pool) -> None:
    planner = _planner(pool, NULL_CONTENT)
    failed = steps.click("Buy", selector="@e9")

    repair = planner.plan_repair(failed, "Detached from frame", None, PlanningContext(target_url="https://x.test"))

    assert [step.action for step in repair] == ["wait", "click"]
    assert repair[1].step_id == failed.step_id
    assert repair[1].selector is None


def test_selector_lookup_with_empty_message_content_finds_nothing(pool) -> None:
    planner = _planner(pool, NULL_CONTENT)

    assert planner.find_selector("Buy button", None) is None


def test_goal_plan_is_parsed_from_chat_envelope(pool) -> None:
    content = '[{"action": "click", "target": "Buy"}, {"action": "screenshot", "target": "cart"}]'
    body = json.dumps({"choices": [{"message": {"content": content}}]})
    planner = _planner(pool, body)

    plan = planner.plan_goal("buy a hat", PlanningContext(target_url="https://shop.example.com"))

    assert [(step.action, step.target) for step in plan] == [("click", "Buy"), ("screenshot", "cart")]
