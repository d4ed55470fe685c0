"""Per-run pending-step queue and executed-step history."""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, Generic, Iterable, List, Optional, TypeVar

from ..domain.schema import ActionStep, ExecutedStep

T = TypeVar("T")


@dataclass(slots=True)
class _Bucket(Generic[T]):
    items: Deque[T] = field(default_factory=deque)
    lock: threading.Lock = field(default_factory=threading.Lock)


class _RunKeyedStore(Generic[T]):
    """Map of run id to an independently locked deque.

    The registry lock is only held while a bucket is created or dropped, so
    operations on different runs never contend with each other.
    """

    def __init__(self) -> None:
        self._registry_lock = threading.Lock()
        self._buckets: Dict[str, _Bucket[T]] = {}

    def bucket(self, run_id: str) -> _Bucket[T]:
        existing = self._buckets.get(run_id)
        if existing is not None:
            return existing
        with self._registry_lock:
            return self._buckets.setdefault(run_id, _Bucket())

    def peek_bucket(self, run_id: str) -> Optional[_Bucket[T]]:
        return self._buckets.get(run_id)

    def drop(self, run_id: str) -> None:
        with self._registry_lock:
            self._buckets.pop(run_id, None)

    def run_ids(self) -> List[str]:
        with self._registry_lock:
            return list(self._buckets)


class ActionQueue:
    """FIFO of pending steps, one independent queue per run."""

    def __init__(self) -> None:
        self._store: _RunKeyedStore[ActionStep] = _RunKeyedStore()

    def push(self, run_id: str, step: ActionStep) -> None:
        bucket = self._store.bucket(run_id)
        with bucket.lock:
            bucket.items.append(step)

    def push_all(self, run_id: str, steps: Iterable[ActionStep]) -> None:
        bucket = self._store.bucket(run_id)
        with bucket.lock:
            bucket.items.extend(steps)

    def push_front(self, run_id: str, step: ActionStep) -> None:
        bucket = self._store.bucket(run_id)
        with bucket.lock:
            bucket.items.appendleft(step)

    def push_front_all(self, run_id: str, steps: Iterable[ActionStep]) -> None:
        """Prepend ``steps`` so ``steps[0]`` becomes the new head, order preserved."""
        bucket = self._store.bucket(run_id)
        with bucket.lock:
            bucket.items.extendleft(reversed(list(steps)))

    def pop(self, run_id: str) -> Optional[ActionStep]:
        bucket = self._store.peek_bucket(run_id)
        if bucket is None:
            return None
        with bucket.lock:
            return bucket.items.popleft() if bucket.items else None

    def peek(self, run_id: str) -> Optional[ActionStep]:
        bucket = self._store.peek_bucket(run_id)
        if bucket is None:
            return None
        with bucket.lock:
            return bucket.items[0] if bucket.items else None

    def size(self, run_id: str) -> int:
        bucket = self._store.peek_bucket(run_id)
        if bucket is None:
            return 0
        with bucket.lock:
            return len(bucket.items)

    def is_empty(self, run_id: str) -> bool:
        return self.size(run_id) == 0

    def get_all(self, run_id: str) -> List[ActionStep]:
        bucket = self._store.peek_bucket(run_id)
        if bucket is None:
            return []
        with bucket.lock:
            return list(bucket.items)

    def clear(self, run_id: str) -> None:
        self._store.drop(run_id)

    def active_runs(self) -> List[str]:
        return self._store.run_ids()


class DoneQueue:
    """Append-only history of executed steps, one log per run."""

    def __init__(self) -> None:
        self._store: _RunKeyedStore[ExecutedStep] = _RunKeyedStore()

    def record(self, run_id: str, executed: ExecutedStep) -> None:
        bucket = self._store.bucket(run_id)
        with bucket.lock:
            bucket.items.append(executed)

    def get_history(self, run_id: str) -> List[ExecutedStep]:
        bucket = self._store.peek_bucket(run_id)
        if bucket is None:
            return []
        with bucket.lock:
            return list(bucket.items)

    def get_recent_history(self, run_id: str, count: int) -> List[ExecutedStep]:
        """Return up to ``count`` most recent entries, oldest first."""
        if count <= 0:
            return []
        history = self.get_history(run_id)
        return history[-count:]

    def get_last_step(self, run_id: str) -> Optional[ExecutedStep]:
        bucket = self._store.peek_bucket(run_id)
        if bucket is None:
            return None
        with bucket.lock:
            return bucket.items[-1] if bucket.items else None

    def size(self, run_id: str) -> int:
        bucket = self._store.peek_bucket(run_id)
        if bucket is None:
            return 0
        with bucket.lock:
            return len(bucket.items)

    def clear(self, run_id: str) -> None:
        self._store.drop(run_id)

    def active_runs(self) -> List[str]:
        return self._store.run_ids()


@dataclass(slots=True)
class QueueStats:
    """Point-in-time counts across both queues."""

    action_queues: int
    done_queues: int
    pending_steps: int

    @classmethod
    def collect(cls, actions: ActionQueue, done: DoneQueue) -> "QueueStats":
        action_runs = actions.active_runs()
        return cls(
            action_queues=len(action_runs),
            done_queues=len(done.active_runs()),
            pending_steps=sum(actions.size(run_id) for run_id in action_runs),
        )


__all__ = ["ActionQueue", "DoneQueue", "QueueStats"]
