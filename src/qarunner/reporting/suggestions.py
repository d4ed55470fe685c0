"""Per-step optimization suggestions derived from errors seen while a step ran."""

from __future__ import annotations

import logging
import re
from typing import Mapping, Optional, Sequence

from .. import prompts
from ..domain.schema import ActionStep, DomSnapshot
from ..models.llm_client import LLMClientError, LLMRequest, parse_json_payload
from ..models.resilient import CallKind, ResilientCallClient

LOGGER = logging.getLogger(__name__)

BRITTLE_SELECTOR_MARKERS = (":nth-child", ":nth-of-type", "nth=", "> div > ", "xpath=")
_SERVER_ERROR_RE = re.compile(r"\b5\d\d\b")


class OptimizationAdvisor:
    """Produces one actionable suggestion for a step, or ``None``.

    Steps that succeeded without console or network errors get nothing. With a
    call client the model writes the suggestion; without one, or when the call
    or its reply fails, a rule-based hint is used.
    """

    def __init__(self, calls: Optional[ResilientCallClient] = None) -> None:
        self._calls = calls

    def suggest(
        self,
        step: ActionStep,
        *,
        selector_used: Optional[str],
        succeeded: bool,
        snapshot: Optional[DomSnapshot] = None,
        console_errors: Sequence[str] = (),
        network_errors: Sequence[str] = (),
    ) -> Optional[str]:
        if succeeded and not console_errors and not network_errors:
            return None
        if self._calls is not None:
            suggestion = self._ask_model(step, selector_used, succeeded, snapshot, console_errors, network_errors)
            if suggestion:
                return suggestion
        return heuristic_suggestion(
            step,
            selector_used=selector_used,
            succeeded=succeeded,
            console_errors=console_errors,
            network_errors=network_errors,
        )

    def _ask_model(
        self,
        step: ActionStep,
        selector_used: Optional[str],
        succeeded: bool,
        snapshot: Optional[DomSnapshot],
        console_errors: Sequence[str],
        network_errors: Sequence[str],
    ) -> Optional[str]:
        request = LLMRequest(
            prompt=prompts.optimization_suggestion_prompt(
                step.action,
                step.target,
                selector_used,
                succeeded,
                snapshot.content if snapshot else "",
                console_errors=console_errors,
                network_errors=network_errors,
            ),
            system_prompt=prompts.SUGGESTION_SYSTEM_PROMPT,
            temperature=0.3,
            metadata={"kind": CallKind.SUGGESTION.value, "step_id": step.step_id},
        )
        LOGGER.debug("[HEALER] Generating optimization suggestion for %s on %s", step.action, step.target)
        try:
            response = self._calls.call(request, CallKind.SUGGESTION)
            data = parse_json_payload(response.content)
        except LLMClientError as error:
            LOGGER.warning("[HEALER] Failed to generate suggestion: %s", error)
            return None
        if not isinstance(data, Mapping) or not data.get("hasSuggestion"):
            LOGGER.debug("[HEALER] No suggestion needed")
            return None
        suggestion = str(data.get("suggestion") or "").strip()
        if not suggestion:
            return None
        LOGGER.info("[HEALER] Generated suggestion (%s): %s", data.get("rootCause"), prompts.truncate(suggestion, 100))
        return suggestion


def heuristic_suggestion(
    step: ActionStep,
    *,
    selector_used: Optional[str],
    succeeded: bool,
    console_errors: Sequence[str] = (),
    network_errors: Sequence[str] = (),
) -> Optional[str]:
    """Rule-based hint used when no model is available."""
    if network_errors:
        failing = [error for error in network_errors if _SERVER_ERROR_RE.search(error)]
        if failing:
            return f"Backend returned server errors during '{step.describe()}' ({failing[0]}); check the service logs."
        return f"Network requests failed during '{step.describe()}' ({network_errors[0]}); verify the endpoint is reachable."
    if console_errors:
        return f"JavaScript error during '{step.describe()}': {prompts.truncate(console_errors[0], 160)}"
    if selector_used and any(marker in selector_used for marker in BRITTLE_SELECTOR_MARKERS):
        return f"Selector '{selector_used}' depends on page structure; add a data-testid or aria-label to the element."
    if not succeeded:
        return f"Could not act on '{step.describe()}'; give the element an accessible name so it can be located reliably."
    return None


__all__ = ["BRITTLE_SELECTOR_MARKERS", "OptimizationAdvisor", "heuristic_suggestion"]
