"""In-memory page simulator used for dry runs without a browser."""

from __future__ import annotations

import logging
import re
from typing import Dict, List, Mapping, Optional

from ..domain.schema import ActionStep, ActionType, DomSnapshot, PerformanceMetrics, SideChannels
from ..engine.executor import AutomationExecutor, ExecutionOutcome
from ..utils.timing import Clock, utc_now

LOGGER = logging.getLogger(__name__)

DEFAULT_PAGE = """- document "Offline page"
  - banner
    - link "Home" [ref=e1]
  - dialog "Cookie consent"
    - button "Accept cookies" [ref=e2]
  - main
    - heading "Welcome" [ref=e3]
    - textbox "Search" [ref=e4]
    - button "Submit" [ref=e5]
  - contentinfo
    - link "Privacy policy" [ref=e6]"""

_REF_RE = re.compile(r"\[ref=(e\d+)\]")


class OfflineExecutor(AutomationExecutor):
    """Simulates a page as accessibility-tree text.

    ``pages`` maps URLs to snapshot content; unknown URLs render
    :data:`DEFAULT_PAGE`. Clicks and typing append an event line so the
    reflector can observe a DOM change; clicking a control inside a ``dialog``
    also closes that dialog. Selectors are aria refs (``@e2``) that
    must exist on the current page.
    """

    def __init__(self, pages: Optional[Mapping[str, str]] = None, *, clock: Clock = utc_now) -> None:
        self._pages: Dict[str, str] = dict(pages or {})
        self._clock = clock
        self._url = ""
        self._title = ""
        self._lines: List[str] = []
        self.executed: List[ActionStep] = []

    def capture_snapshot(self) -> DomSnapshot:
        if not self._url:
            return DomSnapshot.empty()
        return DomSnapshot(
            content="\n".join(self._lines),
            url=self._url,
            title=self._title,
            captured_at=self._clock(),
        )

    def execute(self, step: ActionStep) -> ExecutionOutcome:
        self.executed.append(step)
        action = step.action

        if action == ActionType.NAVIGATE.value:
            url = (step.value or step.target or "").strip()
            if not url:
                return self._error("Navigation target is empty")
            self._url = url
            self._lines = self._pages.get(url, DEFAULT_PAGE).split("\n")
            self._title = _title_of(self._lines) or url
            LOGGER.debug("Offline navigation to %s", url)
            return self._ok(step)

        if not self._url:
            return self._error("No page loaded")

        if action in (ActionType.CLICK.value, ActionType.TYPE.value):
            ref = self._resolve_ref(step.selector)
            if ref is None:
                return self._error(f"Element not found: {step.selector or step.target}")
            if action == ActionType.CLICK.value:
                self._close_dialog_around(ref)
                self._lines.append(f'  - event "clicked {ref}"')
            else:
                self._lines.append(f'  - textbox value "{step.value or ""}" [{ref}]')
            return self._ok(step, selector_used=step.selector)

        if action == ActionType.MEASURE_PERFORMANCE.value:
            metrics = PerformanceMetrics(
                web_vitals={"lcp": 0.0, "cls": 0.0, "ttfb": 0.0},
                navigation={"pageLoad": 0.0},
                total_resources=0,
            )
            return self._ok(step, signals=SideChannels(performance=metrics))

        if action == "scroll":
            self._lines.append(f'  - event "scrolled to {step.target}"')
        return self._ok(step)

    def _resolve_ref(self, selector: Optional[str]) -> Optional[str]:
        if not selector:
            return None
        ref = selector.strip().lstrip("@")
        for line in self._lines:
            match = _REF_RE.search(line)
            if match and match.group(1) == ref:
                return ref
        return None

    def _close_dialog_around(self, ref: str) -> None:
        """Remove the ``dialog`` subtree that contains the element ``ref``."""
        index = next((i for i, line in enumerate(self._lines) if f"[ref={ref}]" in line), None)
        if index is None:
            return
        depth = _indent_of(self._lines[index])
        for start in range(index - 1, -1, -1):
            line = self._lines[start]
            if _indent_of(line) >= depth:
                continue
            depth = _indent_of(line)
            if line.strip().startswith("- dialog"):
                end = start + 1
                while end < len(self._lines) and _indent_of(self._lines[end]) > depth:
                    end += 1
                LOGGER.debug("Offline dialog closed: %s", line.strip())
                del self._lines[start:end]
                return

    def _ok(
        self,
        step: ActionStep,
        *,
        selector_used: Optional[str] = None,
        signals: Optional[SideChannels] = None,
    ) -> ExecutionOutcome:
        return ExecutionOutcome(
            snapshot_after=self.capture_snapshot(),
            selector_used=selector_used,
            signals=signals or SideChannels(),
        )

    def _error(self, message: str) -> ExecutionOutcome:
        LOGGER.debug("Offline step failed: %s", message)
        return ExecutionOutcome(snapshot_after=self.capture_snapshot(), error=message)


def _indent_of(line: str) -> int:
    return len(line) - len(line.lstrip(" "))


def _title_of(lines: List[str]) -> str:
    match = re.search(r'document "([^"]*)"', lines[0]) if lines else None
    return match.group(1) if match else ""


__all__ = ["DEFAULT_PAGE", "OfflineExecutor"]
