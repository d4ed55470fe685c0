from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from qarunner.domain.schema import DomSnapshot  # noqa: E402

START = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

PAGE_TREE = """- document "Shop"
  - banner
    - button "Accept cookies" [ref=e1]
  - main
    - textbox "Email" [ref=e2]
    - button "Subscribe" [ref=e3]"""


class ManualClock:
    """Clock that only moves when a test advances it."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now = self.now + timedelta(**delta)


class RecordingSleeper:
    """Sleeper that records requested durations instead of blocking."""

    def __init__(self) -> None:
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture()
def sleeper() -> RecordingSleeper:
    return RecordingSleeper()


@pytest.fixture()
def page_snapshot() -> DomSnapshot:
    return DomSnapshot(content=PAGE_TREE, url="https://shop.example.com", title="Shop", captured_at=START)
