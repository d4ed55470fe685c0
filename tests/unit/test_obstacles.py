from __future__ import annotations

import json
from concurrent.futures import ThreadPoolExecutor
from typing import Iterator, List, Optional

import pytest

from qarunner.domain.schema import DomSnapshot
from qarunner.engine.obstacles import (
    AIObstacleDetector,
    KeywordObstacleDetector,
    ObstacleConfidence,
    css_selector_for,
    extract_consent_lines,
    parse_obstacle_response,
)
from qarunner.models.llm_client import LLMClient, LLMTransportError
from qarunner.models.resilient import ResilientCallClient

CONSENT_PAGE = """- document "News"
  - dialog "We value your privacy"
    - button "Manage options" [ref=e1]
    - button "I Agree" [ref=e2]
  - main
    - heading "Headlines" [ref=e3]"""


class ScriptedClient(LLMClient):
    def __init__(self, replies: List[object]) -> None:
        super().__init__(model="primary")
        self.replies = list(replies)
        self.payloads: List[dict] = []

    def _raw_invoke(self, payload, timeout: Optional[float] = None) -> str:
        self.payloads.append(payload)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return str(reply)


@pytest.fixture()
def pool() -> Iterator[ThreadPoolExecutor]:
    executor = ThreadPoolExecutor(max_workers=1)
    yield executor
    executor.shutdown(wait=True)


def _detector(pool: ThreadPoolExecutor, *replies: object) -> AIObstacleDetector:
    client = ScriptedClient(list(replies))
    calls = ResilientCallClient(client, executor=pool, sleeper=lambda _: None)
    return AIObstacleDetector(calls)


def test_keyword_detector_finds_agree_button() -> None:
    obstacle = KeywordObstacleDetector().detect(DomSnapshot(content=CONSENT_PAGE))

    assert obstacle is not None
    assert obstacle.obstacle_type == "consent_dialog"
    assert obstacle.dismiss_selector == "@e2"
    assert obstacle.dismiss_text == "I Agree"
    assert obstacle.confidence is ObstacleConfidence.HIGH


def test_keyword_detector_ignores_pages_without_consent_controls(page_snapshot) -> None:
    plain = DomSnapshot(content='- main\n  - link "Privacy policy" [ref=e1]\n  - button "Submit" [ref=e2]')

    assert KeywordObstacleDetector().detect(plain) is None
    assert KeywordObstacleDetector().detect(DomSnapshot.empty()) is None
    assert KeywordObstacleDetector().detect(page_snapshot).obstacle_type == "cookie_consent"


def test_confidence_parse_defaults_to_medium() -> None:
    assert ObstacleConfidence.parse("HIGH") is ObstacleConfidence.HIGH
    assert ObstacleConfidence.parse(" low ") is ObstacleConfidence.LOW
    assert ObstacleConfidence.parse(None) is ObstacleConfidence.MEDIUM
    assert ObstacleConfidence.parse("certain") is ObstacleConfidence.MEDIUM


def test_jquery_selectors_become_aria_label_matches() -> None:
    assert css_selector_for("button:contains('Accept all')") == 'button[aria-label*="Accept all"]'
    assert css_selector_for(":contains(\"OK\")") == 'button[aria-label*="OK"]'
    assert css_selector_for("a:first", "Got it") == 'a[aria-label*="Got it"]'
    assert css_selector_for("#onetrust-accept-btn-handler") == "#onetrust-accept-btn-handler"


def test_parse_obstacle_response_variants() -> None:
    fenced = "```json\n" + json.dumps(
        {
            "obstacleDetected": True,
            "obstacleType": "cookie_consent",
            "description": "OneTrust banner",
            "dismissSelector": "button:contains('Accept')",
            "dismissText": "Accept",
            "confidence": "low",
        }
    ) + "\n```"

    obstacle = parse_obstacle_response(fenced)

    assert obstacle.obstacle_type == "cookie_consent"
    assert obstacle.dismiss_selector == 'button[aria-label*="Accept"]'
    assert obstacle.confidence is ObstacleConfidence.LOW
    assert parse_obstacle_response('{"obstacleDetected": false}') is None
    assert parse_obstacle_response('{"obstacleDetected": true, "obstacleType": "modal"}') is None
    assert parse_obstacle_response("not json at all") is None


def test_consent_lines_are_extracted_only_from_oversized_snapshots() -> None:
    filler = "\n".join(f'- paragraph "Story {index}"' for index in range(1500))
    large = f'{filler}\n- dialog "Cookie consent"\n  - button "Accept" [ref=e9]'

    assert extract_consent_lines(CONSENT_PAGE) == ""
    extract = extract_consent_lines(large)
    assert '- dialog "Cookie consent"' in extract
    assert "Story" not in extract


def test_ai_detector_returns_model_obstacle(pool) -> None:
    reply = json.dumps(
        {
            "obstacleDetected": True,
            "obstacleType": "newsletter_popup",
            "dismissSelector": "@e7",
            "dismissText": "No thanks",
            "confidence": "high",
        }
    )
    detector = _detector(pool, reply)

    obstacle = detector.detect(DomSnapshot(content=CONSENT_PAGE, url="https://news.example.com", title="News"))

    assert obstacle.obstacle_type == "newsletter_popup"
    assert obstacle.dismiss_selector == "@e7"


def test_ai_detector_treats_call_failure_as_no_obstacle(pool) -> None:
    detector = _detector(pool, LLMTransportError("connection reset"))

    assert detector.detect(DomSnapshot(content=CONSENT_PAGE)) is None
    assert detector.detect(DomSnapshot.empty()) is None
