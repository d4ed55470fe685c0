"""Detection of overlays (cookie banners, consent dialogs, popups) that block a page."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional

from .. import prompts
from ..domain.schema import DomSnapshot
from ..models.llm_client import LLMClientError, LLMRequest, parse_json_payload
from ..models.resilient import CallKind, ResilientCallClient

LOGGER = logging.getLogger(__name__)

MAX_CONSENT_LINES = 50

QUICK_CONSENT_RE = re.compile(r"accept|agree|consent|cookie|privacy|gdpr|onetrust|sp_message", re.IGNORECASE)
CONSENT_SECTION_RE = re.compile(
    r"IFRAME CONTENT|CONSENT|cookie|onetrust|privacy.?banner|gdpr|sp_message|fc-consent|"
    r"legal.?agreement|terms.?of.?service|\"Agree\"|\"Accept\"|accept.*button|agree.*button|"
    r"cmp-|privacy-?manager|truste|evidon",
    re.IGNORECASE,
)
_JQUERY_PSEUDO_RE = re.compile(r":contains\(|:has\(|:first(?!-)|:last(?!-)|:eq\(|:gt\(|:lt\(|:even|:odd")
_CONTAINS_RE = re.compile(r":contains\(['\"]([^'\"]+)['\"]\)")
_DISMISS_CONTROL_RE = re.compile(
    r"^\s*-\s*(?:button|link)\s+\"(?P<label>[^\"]*\b(?:accept|agree|allow all|got it)\b[^\"]*)\""
    r".*\[ref=(?P<ref>e\d+)\]",
    re.IGNORECASE,
)


class ObstacleConfidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @classmethod
    def parse(cls, value: Any) -> "ObstacleConfidence":
        """Case-insensitive lookup; anything unrecognised is MEDIUM."""
        text = str(value or "").strip().lower()
        for member in cls:
            if member.value == text:
                return member
        return cls.MEDIUM


@dataclass(frozen=True, slots=True)
class Obstacle:
    """A blocking overlay and the control that dismisses it."""

    obstacle_type: str
    description: str
    dismiss_selector: str
    dismiss_text: str = ""
    confidence: ObstacleConfidence = ObstacleConfidence.MEDIUM


class ObstacleDetector:
    """Finds the overlay blocking ``snapshot``, if any. Subclasses implement :meth:`detect`."""

    def detect(self, snapshot: Optional[DomSnapshot]) -> Optional[Obstacle]:
        raise NotImplementedError("Subclasses must implement detect().")


class KeywordObstacleDetector(ObstacleDetector):
    """Offline detector: consent keywords plus an accept-style control with an aria ref."""

    def detect(self, snapshot: Optional[DomSnapshot]) -> Optional[Obstacle]:
        if snapshot is None or not snapshot.has_content():
            return None
        content = snapshot.content
        if not QUICK_CONSENT_RE.search(content):
            return None
        for line in content.split("\n"):
            match = _DISMISS_CONTROL_RE.match(line)
            if match is None:
                continue
            label = match.group("label")
            obstacle_type = "cookie_consent" if re.search(r"cookie", content, re.IGNORECASE) else "consent_dialog"
            LOGGER.info("[OBSTACLE] Found '%s' control for %s", label, obstacle_type)
            return Obstacle(
                obstacle_type=obstacle_type,
                description=f"Overlay dismissed via '{label}'",
                dismiss_selector=f"@{match.group('ref')}",
                dismiss_text=label,
                confidence=ObstacleConfidence.HIGH,
            )
        return None


class AIObstacleDetector(ObstacleDetector):
    """Asks the model whether an overlay blocks the page and how to dismiss it.

    Call failures and unusable replies are logged and reported as no obstacle.
    """

    def __init__(self, calls: ResilientCallClient) -> None:
        self._calls = calls

    def detect(self, snapshot: Optional[DomSnapshot]) -> Optional[Obstacle]:
        if snapshot is None or not snapshot.has_content():
            LOGGER.debug("[OBSTACLE] Skipping detection - snapshot is empty")
            return None
        LOGGER.info(
            "[OBSTACLE] Scanning page (DOM: %d chars, URL: %s, consent keywords present: %s)",
            len(snapshot.content),
            snapshot.url,
            bool(QUICK_CONSENT_RE.search(snapshot.content)),
        )
        request = LLMRequest(
            prompt=prompts.obstacle_detection_prompt(
                snapshot.url,
                snapshot.title,
                snapshot.content,
                extract_consent_lines(snapshot.content),
            ),
            system_prompt=prompts.OBSTACLE_SYSTEM_PROMPT,
            temperature=0.1,
            metadata={"kind": CallKind.OBSTACLE.value},
        )
        try:
            response = self._calls.call(request, CallKind.OBSTACLE)
        except LLMClientError as error:
            LOGGER.error("[OBSTACLE] Detection failed, consent dialogs may not be dismissed: %s", error)
            return None
        LOGGER.info("[OBSTACLE] AI response (%d chars): %s", len(response.content), prompts.truncate(response.content, 500))
        return parse_obstacle_response(response.content)


def extract_consent_lines(content: str) -> str:
    """Consent-looking lines from a snapshot too large to send whole."""
    if len(content) <= prompts.MAX_OBSTACLE_SNAPSHOT_CHARS:
        return ""
    matches = [line for line in content.split("\n") if CONSENT_SECTION_RE.search(line)][:MAX_CONSENT_LINES]
    return "\n".join(matches)[: prompts.MAX_CONSENT_EXTRACT_CHARS]


def parse_obstacle_response(raw_response: str) -> Optional[Obstacle]:
    try:
        data = parse_json_payload(raw_response)
    except LLMClientError as error:
        LOGGER.warning("[OBSTACLE] Failed to parse response: %s", error)
        return None
    if not isinstance(data, Mapping) or not data.get("obstacleDetected"):
        LOGGER.info("[OBSTACLE] No obstacle detected on this page")
        return None

    selector = str(data.get("dismissSelector") or "").strip()
    if not selector:
        LOGGER.warning("[OBSTACLE] Obstacle detected but no dismiss selector provided")
        return None
    dismiss_text = str(data.get("dismissText") or "").strip()
    obstacle = Obstacle(
        obstacle_type=str(data.get("obstacleType") or "unknown").strip() or "unknown",
        description=str(data.get("description") or "").strip(),
        dismiss_selector=css_selector_for(selector, dismiss_text),
        dismiss_text=dismiss_text,
        confidence=ObstacleConfidence.parse(data.get("confidence")),
    )
    LOGGER.info(
        "[OBSTACLE] Detected %s - dismiss via: %s (%s)",
        obstacle.obstacle_type,
        obstacle.dismiss_text,
        obstacle.confidence.value,
    )
    return obstacle


def css_selector_for(selector: str, dismiss_text: str = "") -> str:
    """Rewrite jQuery pseudo-selectors (``:contains`` and friends) as aria-label matches."""
    if not _JQUERY_PSEUDO_RE.search(selector):
        return selector
    element = selector.split(":", 1)[0].strip() or "button"
    match = _CONTAINS_RE.search(selector)
    text = match.group(1) if match else dismiss_text
    converted = f'{element}[aria-label*="{text}"]'
    LOGGER.info("[OBSTACLE] Converted jQuery-style selector: %s -> %s", selector, converted)
    return converted


__all__ = [
    "AIObstacleDetector",
    "KeywordObstacleDetector",
    "Obstacle",
    "ObstacleConfidence",
    "ObstacleDetector",
    "css_selector_for",
    "extract_consent_lines",
    "parse_obstacle_response",
]
