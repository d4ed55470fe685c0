"""Run loop that drives a test run from planning to a terminal state."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Set, Tuple

from .domain import steps as step_factory
from .domain.schema import ActionStep, ActionType, DomSnapshot, ExecutedStep, ExecutionStatus
from .domain.test_run import TestRun
from .engine.executor import AutomationExecutor, ExecutionOutcome
from .engine.obstacles import ObstacleConfidence, ObstacleDetector
from .engine.queues import ActionQueue, DoneQueue
from .engine.reflector import MAX_RETRIES, ReflectionResult, Reflector, Retry, Skip, Success, Wait
from .engine.selector_cache import SelectorCache
from .planning.planner import Planner, PlanningContext
from .planning.sanitizer import PlanSanitizer
from .reporting.suggestions import OptimizationAdvisor
from .reporting.summary import SummaryWriter
from .utils.timing import Clock, Sleeper, elapsed_ms, system_sleep, utc_now

LOGGER = logging.getLogger(__name__)

RECENT_HISTORY_SIZE = 5
SELECTOR_ACTIONS = frozenset({ActionType.CLICK.value, ActionType.TYPE.value})
MAX_ATTEMPTS_PER_OBSTACLE = 2
OBSTACLE_SETTLE_SECONDS = 0.25
OBSTACLE_DISMISS_WAIT_SECONDS = 0.5
OBSTACLE_DISMISS_MS = 750


@dataclass(slots=True)
class OrchestratorSettings:
    """Runtime limits for a single run."""

    max_retries: int = MAX_RETRIES
    max_loop_iterations: int = 50
    test_timeout_minutes: float = 30
    clear_obstacles: bool = True
    max_obstacle_clear_attempts: int = 3

    @property
    def max_duration(self) -> timedelta:
        return timedelta(minutes=self.test_timeout_minutes)


@dataclass(slots=True)
class _LoopState:
    started_at: datetime
    retry_counts: Dict[str, int] = field(default_factory=dict)
    # Steps whose cached selector failed; they resolve through the planner from now on.
    cache_bypass: Set[str] = field(default_factory=set)
    iterations: int = 0


class AgentOrchestrator:
    """Coordinates planner, executor, reflector and queues for one run at a time.

    The orchestrator holds no per-run state between calls to :meth:`execute`, so
    one instance can drive several runs from different threads.
    """

    def __init__(
        self,
        *,
        planner: Planner,
        executor: AutomationExecutor,
        settings: Optional[OrchestratorSettings] = None,
        action_queue: Optional[ActionQueue] = None,
        done_queue: Optional[DoneQueue] = None,
        reflector: Optional[Reflector] = None,
        sanitizer: Optional[PlanSanitizer] = None,
        summary_writer: Optional[SummaryWriter] = None,
        obstacle_detector: Optional[ObstacleDetector] = None,
        selector_cache: Optional[SelectorCache] = None,
        advisor: Optional[OptimizationAdvisor] = None,
        sleeper: Sleeper = system_sleep,
        clock: Clock = utc_now,
    ) -> None:
        self._planner = planner
        self._executor = executor
        self._settings = settings or OrchestratorSettings()
        self._actions = action_queue or ActionQueue()
        self._done = done_queue or DoneQueue()
        self._reflector = reflector or Reflector(max_retries=self._settings.max_retries)
        self._sanitizer = sanitizer or PlanSanitizer()
        self._summary_writer = summary_writer
        self._obstacle_detector = obstacle_detector
        self._selector_cache = selector_cache if selector_cache is not None else SelectorCache(clock=clock)
        self._advisor = advisor or OptimizationAdvisor()
        self._sleeper = sleeper
        self._clock = clock

    @property
    def settings(self) -> OrchestratorSettings:
        return self._settings

    @property
    def action_queue(self) -> ActionQueue:
        return self._actions

    @property
    def done_queue(self) -> DoneQueue:
        return self._done

    @property
    def selector_cache(self) -> SelectorCache:
        return self._selector_cache

    def execute(self, run: TestRun) -> TestRun:
        """Plan and execute ``run`` until it reaches a terminal (or paused) state."""
        state = _LoopState(started_at=self._clock())
        LOGGER.info(
            "Test run %s started with overall timeout of %s minutes",
            run.id,
            self._settings.test_timeout_minutes,
        )
        try:
            if self._prepare(run):
                self._loop(run, state)
        except Exception as error:
            LOGGER.exception("Test run %s crashed", run.id)
            self._fail(run, f"SYSTEM_ERROR: Internal Engine Error: {type(error).__name__} - {error}")
        finally:
            self._actions.clear(run.id)
            self._done.clear(run.id)

        if run.status.is_terminal:
            self._write_summary(run)
        LOGGER.info(
            "Test run %s finished with status %s (%d steps executed, %d skipped)",
            run.id,
            run.status.value,
            len(run.executed_steps),
            run.skipped_count(),
        )
        return run

    def _prepare(self, run: TestRun) -> bool:
        LOGGER.info("Generating plan for goals: %s with %s persona", run.goals, run.persona.value)
        raw_plan = self._planner.create_plan(run.target_url, run.goals, run.persona)
        plan = self._sanitizer.sanitize(raw_plan)
        if not plan:
            self._fail(run, "Plan generation failed: No valid steps after sanitization.")
            return False
        if not self._sanitizer.is_safe(plan, run.target_url):
            self._fail(run, "Security check failed: Unsafe actions in plan.")
            return False

        started = run.start(plan, self._clock())
        if started.is_failure:
            LOGGER.warning("Cannot start run %s: %s", run.id, started.failure_reason)
            return False
        self._actions.push_all(run.id, plan)
        return True

    def _loop(self, run: TestRun, state: _LoopState) -> None:
        while True:
            if run.status.is_terminal:
                LOGGER.info("Run %s is %s; stopping dispatch", run.id, run.status.value)
                return
            if not run.status.is_active:
                LOGGER.info("Run %s is %s; leaving remaining steps queued in the plan", run.id, run.status.value)
                return

            state.iterations += 1
            if state.iterations > self._settings.max_loop_iterations:
                LOGGER.error(
                    "Test run %s exceeded %d iterations; terminating",
                    run.id,
                    self._settings.max_loop_iterations,
                )
                self._fail(
                    run,
                    "SYSTEM_ERROR: Test exceeded maximum iterations "
                    f"({self._settings.max_loop_iterations}) - terminated to prevent infinite loop",
                )
                return

            now = self._clock()
            if now - state.started_at > self._settings.max_duration:
                elapsed_seconds = elapsed_ms(state.started_at, now) // 1000
                LOGGER.error("Test run %s exceeded its maximum duration; terminating", run.id)
                run.timeout(
                    f"TIMEOUT: Test exceeded maximum duration of {self._settings.test_timeout_minutes:g} minutes "
                    f"(elapsed: {elapsed_seconds // 60} min {elapsed_seconds % 60} sec)",
                    now,
                )
                return

            step = self._actions.pop(run.id)
            if step is None:
                self._finalize(run)
                return

            try:
                self._execute_step(run, step, state)
            except Exception as error:
                LOGGER.exception("Step execution failed for run %s", run.id)
                self._fail(run, f"SYSTEM_ERROR: Step execution failed: {type(error).__name__} - {error}")
                return

    def _finalize(self, run: TestRun) -> None:
        failed = [
            record
            for record in run.executed_steps
            if record.status in (ExecutionStatus.FAILED, ExecutionStatus.TIMEOUT)
        ]
        if failed:
            self._fail(run, f"{len(failed)} step(s) failed: {failed[-1].error_message or 'unknown error'}")
            return
        run.complete(self._clock())

    def _execute_step(self, run: TestRun, step: ActionStep, state: _LoopState) -> None:
        retry_count = state.retry_counts.get(step.step_id, 0)
        LOGGER.debug("Executing step %s (%s '%s'), attempt %d", step.step_id, step.action, step.describe(), retry_count + 1)
        started = self._clock()
        before = self._clear_obstacles(run, self._executor.capture_snapshot())

        resolved = step
        from_cache = False
        if step.action in SELECTOR_ACTIONS and not step.has_selector():
            selector, from_cache = self._resolve_selector(run, step, before, state)
            if not selector:
                verdict = self._reflector.reflect(
                    step,
                    before,
                    None,
                    f"Element not found for target: {step.target or ''}",
                    retry_count,
                )
                self._apply(run, step, verdict, before, ExecutionOutcome(), started, retry_count, state)
                return
            resolved = step_factory.with_selector(step, selector)

        outcome = self._executor.execute(resolved)
        verdict = self._reflector.reflect(
            resolved,
            before,
            outcome.snapshot_after,
            outcome.error,
            retry_count,
        )
        if resolved is not step:
            self._remember_selector(run, resolved, before, verdict, from_cache, state)
        self._apply(run, resolved, verdict, before, outcome, started, retry_count, state)

    def _clear_obstacles(self, run: TestRun, snapshot: DomSnapshot) -> DomSnapshot:
        """Dismiss overlays blocking the page and return the snapshot taken afterwards.

        Each dismissal is recorded as an ``Auto-dismiss`` click. Overlay types are
        remembered on the run once handled, or once they resist
        :data:`MAX_ATTEMPTS_PER_OBSTACLE` clicks, and are not touched again.
        """
        detector = self._obstacle_detector
        if detector is None or not self._settings.clear_obstacles:
            return snapshot

        current = snapshot
        attempts: Dict[str, int] = {}
        for _ in range(self._settings.max_obstacle_clear_attempts):
            obstacle = detector.detect(current)
            if obstacle is None:
                self._mark_dismissed(run, attempts)
                return current

            kind = obstacle.obstacle_type
            if run.has_dismissed_obstacle(kind):
                LOGGER.info("[OBSTACLE] Already dismissed '%s' earlier in this run - skipping", kind)
                return current
            tried = attempts.get(kind, 0)
            if tried >= MAX_ATTEMPTS_PER_OBSTACLE:
                LOGGER.warning("[OBSTACLE] Failed to dismiss '%s' after %d attempts - giving up on it", kind, tried)
                run.mark_obstacle_dismissed(kind)
                continue
            if tried > 0 and obstacle.confidence is ObstacleConfidence.LOW:
                LOGGER.debug("[OBSTACLE] Ignoring low-confidence '%s' after %d attempts", kind, tried)
                run.mark_obstacle_dismissed(kind)
                continue

            attempts[kind] = tried + 1
            LOGGER.info(
                "[OBSTACLE] '%s' blocks the page - clicking '%s' (attempt %d)",
                kind,
                obstacle.dismiss_text or obstacle.dismiss_selector,
                tried + 1,
            )
            self._sleeper(OBSTACLE_SETTLE_SECONDS)
            dismiss = step_factory.click(f"Auto-dismiss: {kind}", selector=obstacle.dismiss_selector)
            outcome = self._executor.execute(dismiss)
            if outcome.error:
                LOGGER.warning("[OBSTACLE] Dismiss click for '%s' failed: %s", kind, outcome.error)
                continue
            self._sleeper(OBSTACLE_DISMISS_WAIT_SECONDS)
            after = self._executor.capture_snapshot()
            now = self._clock()
            record = ExecutedStep.success(
                dismiss,
                selector_used=obstacle.dismiss_selector,
                before=current,
                after=after,
                duration_ms=OBSTACLE_DISMISS_MS,
                signals=outcome.signals,
                executed_at=now,
            )
            added = run.add_repair_steps([dismiss])
            if added.is_success:
                self._commit(run, record, now)
            current = after

        self._mark_dismissed(run, attempts)
        LOGGER.warning(
            "[OBSTACLE] Reached %d clearing attempts; attempted types: %s",
            self._settings.max_obstacle_clear_attempts,
            sorted(attempts),
        )
        return current

    @staticmethod
    def _mark_dismissed(run: TestRun, attempts: Dict[str, int]) -> None:
        for kind in attempts:
            run.mark_obstacle_dismissed(kind)

    def _resolve_selector(
        self,
        run: TestRun,
        step: ActionStep,
        snapshot: DomSnapshot,
        state: _LoopState,
    ) -> Tuple[Optional[str], bool]:
        """Return ``(selector, from_cache)``; the cache is consulted before the planner."""
        description = (step.target or "").strip()
        page_url = snapshot.url or run.target_url
        if description and page_url and step.step_id not in state.cache_bypass:
            cached = self._selector_cache.find(description, page_url)
            if cached is not None:
                LOGGER.debug("Using cached selector %s for '%s'", cached.selector, description)
                return cached.selector, True
        return self._planner.find_selector(step.target, snapshot), False

    def _remember_selector(
        self,
        run: TestRun,
        step: ActionStep,
        snapshot: DomSnapshot,
        verdict: ReflectionResult,
        from_cache: bool,
        state: _LoopState,
    ) -> None:
        description = (step.target or "").strip()
        page_url = snapshot.url or run.target_url
        if not description or not page_url or not step.selector:
            return
        if isinstance(verdict, Success):
            if from_cache:
                self._selector_cache.record_success(description, page_url)
            else:
                self._selector_cache.store(description, page_url, step.selector)
        elif from_cache and isinstance(verdict, (Retry, Skip)):
            self._selector_cache.record_failure(description, page_url)
            state.cache_bypass.add(step.step_id)

    def _apply(
        self,
        run: TestRun,
        step: ActionStep,
        verdict: ReflectionResult,
        before: DomSnapshot,
        outcome: ExecutionOutcome,
        started: datetime,
        retry_count: int,
        state: _LoopState,
    ) -> None:
        now = self._clock()
        duration = elapsed_ms(started, now)

        if isinstance(verdict, Success):
            selector_used = verdict.selector_used or outcome.selector_used
            record = ExecutedStep.success(
                step,
                selector_used=selector_used,
                before=before,
                after=outcome.snapshot_after,
                duration_ms=duration,
                retry_count=retry_count,
                signals=outcome.signals,
                executed_at=now,
                optimization_suggestion=self._suggest(step, selector_used, True, outcome, before),
            )
            self._commit(run, record, now)
            state.retry_counts.pop(step.step_id, None)
        elif isinstance(verdict, Skip):
            LOGGER.info("Skipping step: %s", verdict.reason)
            record = ExecutedStep.skipped(
                step,
                verdict.reason,
                before=before,
                after=outcome.snapshot_after,
                duration_ms=duration,
                retry_count=retry_count,
                signals=outcome.signals,
                executed_at=now,
                optimization_suggestion=self._suggest(step, step.selector, False, outcome, before),
            )
            self._commit(run, record, now)
            state.retry_counts.pop(step.step_id, None)
        elif isinstance(verdict, Wait):
            LOGGER.info("Waiting %dms: %s", verdict.wait_ms, verdict.reason)
            self._sleeper(verdict.wait_ms / 1000.0)
            self._actions.push_front(run.id, step)
            state.retry_counts[step.step_id] = retry_count + 1
        elif isinstance(verdict, Retry):
            LOGGER.info("Retrying step '%s': %s", step.describe(), verdict.reason)
            state.retry_counts[step.step_id] = retry_count + 1
            if verdict.repair_steps:
                replacement = list(verdict.repair_steps)
                if not any(repair.step_id == step.step_id for repair in replacement):
                    replacement.append(step)
            else:
                replacement = self._request_repair(run, step, verdict.reason, outcome, before)
                if not any(repair.step_id == step.step_id for repair in replacement):
                    # Superseded by the repair: record it before the replacements are spliced in.
                    record = ExecutedStep.skipped(
                        step,
                        f"Step '{step.describe()}' replaced by repair steps: {outcome.error or verdict.reason}",
                        before=before,
                        after=outcome.snapshot_after,
                        duration_ms=duration,
                        retry_count=retry_count,
                        signals=outcome.signals,
                        executed_at=now,
                    )
                    self._commit(run, record, now)
                    state.retry_counts.pop(step.step_id, None)
            self._inject(run, step, replacement)

    def _suggest(
        self,
        step: ActionStep,
        selector_used: Optional[str],
        succeeded: bool,
        outcome: ExecutionOutcome,
        before: DomSnapshot,
    ) -> Optional[str]:
        return self._advisor.suggest(
            step,
            selector_used=selector_used,
            succeeded=succeeded,
            snapshot=outcome.snapshot_after if succeeded and outcome.snapshot_after else before,
            console_errors=outcome.signals.console_errors,
            network_errors=outcome.signals.network_errors,
        )

    def _request_repair(
        self,
        run: TestRun,
        step: ActionStep,
        reason: str,
        outcome: ExecutionOutcome,
        before: DomSnapshot,
    ) -> List[ActionStep]:
        context = PlanningContext(
            target_url=run.target_url,
            persona=run.persona,
            goals=tuple(run.goals),
            recent_history=self._done.get_recent_history(run.id, RECENT_HISTORY_SIZE),
        )
        snapshot = outcome.snapshot_after or before
        repair = self._planner.plan_repair(step, outcome.error or reason, snapshot, context)
        if not repair:
            LOGGER.info("Planner returned no repair steps; re-queueing '%s'", step.describe())
            return [step]
        return list(repair)

    def _inject(self, run: TestRun, failed: ActionStep, replacement: List[ActionStep]) -> None:
        new_steps = [repair for repair in replacement if repair.step_id != failed.step_id]
        if new_steps:
            added = run.add_repair_steps(new_steps)
            if added.is_failure:
                LOGGER.warning("Could not add repair steps to run %s: %s", run.id, added.failure_reason)
        self._actions.push_front_all(run.id, replacement)

    def _commit(self, run: TestRun, record: ExecutedStep, now: datetime) -> None:
        recorded = run.record_step_execution(record, now)
        if recorded.is_failure:
            LOGGER.warning("Could not record step for run %s: %s", run.id, recorded.failure_reason)
            return
        self._done.record(run.id, record)

    def _fail(self, run: TestRun, reason: str) -> None:
        LOGGER.error("Failing run %s: %s", run.id, reason)
        run.fail(reason, self._clock())

    def _write_summary(self, run: TestRun) -> None:
        if self._summary_writer is None:
            return
        run.mark_summary_generating()
        try:
            summary = self._summary_writer.write(run)
        except Exception:
            LOGGER.exception("Summary generation failed for run %s", run.id)
            run.mark_summary_failed()
            return
        run.set_summary(summary)


__all__ = ["AgentOrchestrator", "OrchestratorSettings", "RECENT_HISTORY_SIZE"]
