"""Plan validation applied before a run starts."""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence
from urllib.parse import urlparse

from ..domain.schema import ActionStep, ActionType

LOGGER = logging.getLogger(__name__)

MAX_INPUT_LENGTH = 1200


class PlanSanitizer:
    """Drops malformed steps and rejects plans that leave the target domain."""

    def __init__(self, *, max_input_length: int = MAX_INPUT_LENGTH) -> None:
        self._max_input_length = max_input_length

    def sanitize(self, steps: Sequence[ActionStep]) -> List[ActionStep]:
        """Remove navigate steps without a URL and type steps with oversized input."""
        kept: List[ActionStep] = []
        removed = 0
        for step in steps:
            if self._is_recoverable(step):
                kept.append(step)
                continue
            removed += 1
            LOGGER.warning("Removed invalid step: action='%s', target='%s'", step.action, step.target)
        if removed:
            LOGGER.info("Sanitized plan: removed %d invalid steps, %d steps remaining", removed, len(kept))
        return kept

    def is_safe(self, steps: Sequence[ActionStep], allowed_url: str) -> bool:
        """True when every navigation stays on the host of ``allowed_url``."""
        allowed_host = _host_of(allowed_url)
        for step in steps:
            value = step.value or ""
            if step.action == ActionType.NAVIGATE.value and not self._navigation_allowed(value, allowed_host):
                return False
            if step.action == ActionType.TYPE.value and len(value) > self._max_input_length:
                LOGGER.warning("Unsafe input: value exceeds max length of %d", self._max_input_length)
                return False
        return True

    def _is_recoverable(self, step: ActionStep) -> bool:
        value = step.value or ""
        if step.action == ActionType.NAVIGATE.value:
            return bool(value.strip())
        if step.action == ActionType.TYPE.value:
            return len(value) <= self._max_input_length
        return True

    @staticmethod
    def _navigation_allowed(url: str, allowed_host: Optional[str]) -> bool:
        if not url.strip():
            LOGGER.warning("Unsafe navigation: empty URL")
            return False
        if _is_relative(url.strip()):
            return True
        target_host = _host_of(url)
        if target_host is None:
            LOGGER.warning("Unsafe navigation: invalid URL format '%s'", url)
            return False
        if allowed_host is None:
            return True
        if target_host != allowed_host and not target_host.endswith(f".{allowed_host}"):
            LOGGER.warning("Unsafe navigation: URL '%s' does not match allowed host '%s'", url, allowed_host)
            return False
        return True


def _is_relative(value: str) -> bool:
    return value.startswith(("/", "./", "../")) or ("://" not in value and "." not in value)


def _host_of(value: Optional[str]) -> Optional[str]:
    if not value or not value.strip():
        return None
    trimmed = value.strip()
    normalised = trimmed if "://" in trimmed else f"https://{trimmed}"
    try:
        host = urlparse(normalised).hostname
    except ValueError:
        return None
    return host.lower() if host else None


__all__ = ["MAX_INPUT_LENGTH", "PlanSanitizer"]
