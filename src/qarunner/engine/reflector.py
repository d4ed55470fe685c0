"""Outcome classification for executed steps.

The reflector compares the page before and after an action, together with any
error reported by the automation layer, and returns one of four verdicts:
``Success``, ``Retry``, ``Wait`` or ``Skip``. It is a pure function of its
inputs: no I/O and no AI calls, so every heuristic can be exercised directly
in unit tests.

Error paths never abort a run. Once a step has used up ``MAX_RETRIES`` it is
downgraded to ``Skip`` and the run moves on.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Tuple, Union

from ..domain import steps as step_factory
from ..domain.schema import ActionStep, ActionType, DomSnapshot

LOGGER = logging.getLogger(__name__)

MAX_RETRIES = 3
DEFAULT_WAIT_MS = 1000
ELEMENT_WAIT_MS = 1000
TIMEOUT_WAIT_MS = 3000
NAVIGATION_WAIT_MS = 2000
NO_SNAPSHOT_ERROR = "No snapshot after execution"


@dataclass(frozen=True, slots=True)
class Success:
    selector_used: Optional[str] = None


@dataclass(frozen=True, slots=True)
class Retry:
    reason: str
    repair_steps: Tuple[ActionStep, ...] = ()


@dataclass(frozen=True, slots=True)
class Wait:
    reason: str
    wait_ms: int = DEFAULT_WAIT_MS


@dataclass(frozen=True, slots=True)
class Skip:
    reason: str


ReflectionResult = Union[Success, Retry, Wait, Skip]


@dataclass(frozen=True, slots=True)
class PatternTable:
    """Named list of lower-case substrings matched against free text."""

    name: str
    patterns: Tuple[str, ...]

    def matches(self, text: Optional[str]) -> bool:
        if not text:
            return False
        lowered = text.lower()
        return any(pattern in lowered for pattern in self.patterns)


COOKIE_CONSENT = PatternTable(
    "cookie_consent",
    ("cookie", "consent", "accept all", "accept cookies", "gdpr", "privacy"),
)
LEGAL = PatternTable("legal", ("agree", "legal", "terms", "tos", "i accept"))
POPUP = PatternTable("popup", ("newsletter", "popup", "dismiss", "close modal", "no thanks"))
CHAT_WIDGET = PatternTable("chat_widget", ("chat widget", "chatbot", "live chat"))
AD_FEEDBACK = PatternTable("ad_feedback", ("ad feedback", "ad_feedback", "ad choice", "ad-feedback"))
DISMISS_VERBS = PatternTable("dismiss_verbs", ("close", "dismiss"))
TRANSIENT_UI = PatternTable(
    "transient_ui",
    (
        "banner",
        "modal",
        "dialog",
        "overlay",
        "notification",
        "alert",
        "welcome",
        "announcement",
        "toast",
        "popover",
    ),
)
WELCOME_QUALIFIERS = PatternTable("welcome_qualifiers", ("banner", "modal", "screen", "got it", "skip"))

OPTIONAL_UI_TABLES: Tuple[PatternTable, ...] = (
    COOKIE_CONSENT,
    LEGAL,
    POPUP,
    CHAT_WIDGET,
    AD_FEEDBACK,
)

ELEMENT_NOT_FOUND_ERRORS = PatternTable(
    "element_not_found",
    ("not found", "no such element", "unable to locate", "selector"),
)
TIMEOUT_ERRORS = PatternTable("timeout", ("timeout", "timed out"))

PASSIVE_ACTIONS = frozenset(
    {ActionType.WAIT.value, ActionType.SCREENSHOT.value, ActionType.MEASURE_PERFORMANCE.value}
)


def is_dismiss_action(step: ActionStep) -> bool:
    """True for closing transient UI (banners, modals, close buttons) or welcome screens."""
    target = (step.target or "").lower()
    return _is_dismiss_of_transient_element(target) or _is_welcome_element(target)


def is_optional_step(step: ActionStep) -> bool:
    """True when the target names UI that may legitimately be absent."""
    target = step.target or ""
    if any(table.matches(target) for table in OPTIONAL_UI_TABLES):
        return True
    return is_dismiss_action(step)


def _is_dismiss_of_transient_element(target: str) -> bool:
    if not DISMISS_VERBS.matches(target):
        return False
    return TRANSIENT_UI.matches(target) or _is_close_button(target)


def _is_close_button(target: str) -> bool:
    return target.endswith("button") or target.endswith("btn") or "close button" in target


def _is_welcome_element(target: str) -> bool:
    return "welcome" in target and WELCOME_QUALIFIERS.matches(target)


class Reflector:
    """Deterministic decision table mapping an attempt to a verdict."""

    def __init__(self, *, max_retries: int = MAX_RETRIES) -> None:
        self._max_retries = max_retries

    @property
    def max_retries(self) -> int:
        return self._max_retries

    def reflect(
        self,
        action: ActionStep,
        before: Optional[DomSnapshot],
        after: Optional[DomSnapshot],
        error: Optional[str] = None,
        retry_count: int = 0,
    ) -> ReflectionResult:
        """Classify one attempt of ``action``.

        ``retry_count`` is the number of prior attempts of the same step, tracked
        by the caller.
        """
        if action.action in PASSIVE_ACTIONS:
            return Success()

        if error is not None and error.strip():
            return self._handle_failure(action, error, retry_count)

        if after is None:
            if retry_count >= self._max_retries:
                return self._skip(action, NO_SNAPSHOT_ERROR, retry_count)
            return Retry(NO_SNAPSHOT_ERROR, (action,))

        previous = before if before is not None else DomSnapshot.empty()
        if action.action == ActionType.NAVIGATE.value:
            return self._verify_navigation(action, after, retry_count)
        if action.action == ActionType.CLICK.value:
            return self._verify_click(action, previous, after, retry_count)
        if action.action == ActionType.TYPE.value:
            return self._verify_type(action, previous, after)
        return self._verify_generic(action, previous, after, retry_count)

    def _verify_navigation(
        self,
        action: ActionStep,
        after: DomSnapshot,
        retry_count: int,
    ) -> ReflectionResult:
        if after.url and after.url.strip():
            LOGGER.debug("Navigation verified: %s", after.url)
            return Success()
        if retry_count >= self._max_retries:
            return self._skip(action, "Navigation did not complete", retry_count)
        return Retry(
            "Navigation may not have completed",
            (step_factory.wait_for("page load", NAVIGATION_WAIT_MS),),
        )

    def _verify_click(
        self,
        action: ActionStep,
        before: DomSnapshot,
        after: DomSnapshot,
        retry_count: int,
    ) -> ReflectionResult:
        if before.content != after.content or action.has_selector():
            return Success(action.selector)
        # Analytics or tracking clicks can leave the DOM untouched; assume success at the bound.
        if retry_count >= self._max_retries:
            LOGGER.info(
                "Click on '%s' left the DOM unchanged after %d attempts; assuming success",
                action.describe(),
                retry_count + 1,
            )
            return Success(action.selector)
        return Wait("Waiting for DOM update after click", DEFAULT_WAIT_MS)

    def _verify_type(self, action: ActionStep, before: DomSnapshot, after: DomSnapshot) -> ReflectionResult:
        typed = action.value or ""
        if typed.strip() and after.contains_text(typed):
            LOGGER.debug("Type verified: value found in DOM")
        elif before.content != after.content:
            LOGGER.debug("Type verified: DOM changed (value may be masked)")
        # Inputs that never echo the value back still count as typed.
        return Success(action.selector)

    def _verify_generic(
        self,
        action: ActionStep,
        before: DomSnapshot,
        after: DomSnapshot,
        retry_count: int,
    ) -> ReflectionResult:
        if action.has_selector() or before.content != after.content:
            return Success(action.selector)
        if retry_count >= self._max_retries:
            return Success(action.selector)
        return Wait(f"Waiting for page to react to {action.action}", DEFAULT_WAIT_MS)

    def _handle_failure(self, action: ActionStep, error: str, retry_count: int) -> ReflectionResult:
        LOGGER.warning(
            "Action failed: %s - %s (attempt %d)",
            action.action,
            error,
            retry_count + 1,
        )
        if retry_count >= self._max_retries:
            return self._skip(action, error, retry_count)

        if ELEMENT_NOT_FOUND_ERRORS.matches(error):
            wait_ms = ELEMENT_WAIT_MS * (retry_count + 1)
            return Retry(
                "Element not found, need new selector",
                (
                    step_factory.wait_for("element to appear", wait_ms),
                    step_factory.with_selector(action, None),
                ),
            )
        if TIMEOUT_ERRORS.matches(error):
            wait_ms = TIMEOUT_WAIT_MS * (retry_count + 1)
            return Retry("Timeout occurred", (step_factory.wait_for("element to appear", wait_ms),))
        return Retry(f"Retrying action: {error}")

    @staticmethod
    def _skip(action: ActionStep, error: str, retry_count: int) -> Skip:
        description = action.describe()
        attempts = retry_count + 1
        if is_dismiss_action(action):
            reason = f"Dismiss step '{description}' skipped: element already handled"
        elif is_optional_step(action):
            reason = f"Optional step '{description}' skipped after {attempts} attempts: {error}"
        else:
            reason = f"Step '{description}' skipped after {attempts} attempts: {error}"
        LOGGER.info("Skipping step '%s' after %d attempts: %s", description, attempts, error)
        return Skip(reason)


_DEFAULT_REFLECTOR = Reflector()


def reflect(
    action: ActionStep,
    before: Optional[DomSnapshot],
    after: Optional[DomSnapshot],
    error: Optional[str] = None,
    retry_count: int = 0,
) -> ReflectionResult:
    """Module-level shortcut using ``MAX_RETRIES``."""
    return _DEFAULT_REFLECTOR.reflect(action, before, after, error, retry_count)


__all__ = [
    "MAX_RETRIES",
    "NO_SNAPSHOT_ERROR",
    "PatternTable",
    "ReflectionResult",
    "Reflector",
    "Retry",
    "Skip",
    "Success",
    "Wait",
    "is_dismiss_action",
    "is_optional_step",
    "reflect",
]
