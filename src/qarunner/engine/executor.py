"""Contract for the browser-automation collaborator."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from ..domain.schema import ActionStep, DomSnapshot, SideChannels


@dataclass(slots=True)
class ExecutionOutcome:
    """What the automation layer observed while performing one step."""

    snapshot_after: Optional[DomSnapshot] = None
    selector_used: Optional[str] = None
    error: Optional[str] = None
    signals: SideChannels = field(default_factory=SideChannels)

    @property
    def ok(self) -> bool:
        return not self.error and self.snapshot_after is not None


class AutomationExecutor:
    """Performs actions against a live page. Subclasses provide the transport.

    Expected step-level problems (missing element, slow page) are reported through
    ``ExecutionOutcome.error``. Raising signals an infrastructure failure and ends
    the run.
    """

    def capture_snapshot(self) -> DomSnapshot:
        """Return the current page state; the empty sentinel before navigation."""
        raise NotImplementedError("Subclasses must implement capture_snapshot().")

    def execute(self, step: ActionStep) -> ExecutionOutcome:
        """Perform ``step`` synchronously and report the resulting state."""
        raise NotImplementedError("Subclasses must implement execute().")

    def close(self) -> None:
        """Release browser resources; the default has nothing to release."""


__all__ = ["AutomationExecutor", "ExecutionOutcome"]
