from __future__ import annotations

import threading

from qarunner.domain import steps
from qarunner.domain.schema import ExecutedStep
from qarunner.engine.queues import ActionQueue, DoneQueue, QueueStats


def test_push_front_all_preserves_order_ahead_of_pending_steps() -> None:
    queue = ActionQueue()
    first, second, repair_a, repair_b = (steps.click(name) for name in ("first", "second", "a", "b"))
    queue.push_all("run-1", [first, second])

    queue.push_front_all("run-1", [repair_a, repair_b])

    assert [step.target for step in queue.get_all("run-1")] == ["a", "b", "first", "second"]
    assert queue.pop("run-1") is repair_a
    assert queue.size("run-1") == 3


def test_runs_are_isolated_and_clear_drops_only_one_run() -> None:
    queue = ActionQueue()
    queue.push("run-1", steps.click("one"))
    queue.push("run-2", steps.click("two"))

    queue.clear("run-1")

    assert queue.pop("run-1") is None
    assert queue.is_empty("run-1")
    assert queue.peek("run-2").target == "two"
    assert queue.active_runs() == ["run-2"]


def test_done_queue_recent_history_is_oldest_first() -> None:
    done = DoneQueue()
    for name in ("a", "b", "c", "d"):
        done.record("run-1", ExecutedStep.success(steps.click(name)))

    recent = done.get_recent_history("run-1", 2)

    assert [record.step.target for record in recent] == ["c", "d"]
    assert done.get_last_step("run-1").step.target == "d"
    assert done.get_recent_history("run-1", 0) == []
    assert done.get_history("unknown") == []


def test_concurrent_pushes_from_many_runs_are_not_lost() -> None:
    queue = ActionQueue()

    def worker(run_id: str) -> None:
        for index in range(50):
            queue.push(run_id, steps.click(f"{run_id}-{index}"))

    threads = [threading.Thread(target=worker, args=(f"run-{n}",)) for n in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    stats = QueueStats.collect(queue, DoneQueue())
    assert stats.action_queues == 8
    assert stats.pending_steps == 400
    assert stats.done_queues == 0
