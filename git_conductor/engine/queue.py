"""
Step scheduling and resource limits.

This module provides the two scheduling primitives of the execution engine:

1. :class:`ResourceManager`: a semaphore shared by every workflow that uses
   the same engine, capping how many steps execute at once across all of
   them.

2. :class:`ExecutionQueue`: runs the steps of one parallel group. Ready
   steps (dependencies satisfied) are started in priority order; as steps
   finish, dependents become ready.

Execution Flow:
    1. Steps are submitted together with the ids already completed or failed
    2. Steps whose dependencies are satisfied are sorted by priority
    3. Ready steps start while the queue has free slots
    4. Each finished step may unblock others
    5. Steps depending on a failed step fail without running

Error Handling:
    - A failing step does not stop independent steps of the same group
    - Steps whose dependency failed get a failed result
    - Unsatisfiable dependency graphs raise RuntimeError
    - Cancelling the queue cancels every in-flight step
"""

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable
from contextlib import asynccontextmanager
from typing import Any

import structlog

from git_conductor.engine.steps import WorkflowStep
from git_conductor.enums import StepStatus
from git_conductor.exceptions import StepExecutionError
from git_conductor.models.domain import StepResult

log = structlog.get_logger(__name__)

StepRunner = Callable[[WorkflowStep], Awaitable[StepResult]]
ResultCallback = Callable[[str, StepResult], None]


class ResourceManager:
    """Global cap on simultaneously executing steps.

    Attributes:
        max_concurrent: Maximum number of steps holding a slot at once
    """

    def __init__(self, max_concurrent: int = 4) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._active = 0
        self._peak = 0
        self._total = 0
        self._wait_time = 0.0

    @asynccontextmanager
    async def slot(self, step_id: str) -> AsyncIterator[None]:
        """Hold one execution slot for the duration of the block."""
        requested = time.monotonic()
        async with self._semaphore:
            self._wait_time += time.monotonic() - requested
            self._active += 1
            self._total += 1
            self._peak = max(self._peak, self._active)
            log.debug("resource_slot_acquired", step_id=step_id, active=self._active)
            try:
                yield
            finally:
                self._active -= 1

    @property
    def active(self) -> int:
        return self._active

    def get_stats(self) -> dict[str, Any]:
        return {
            "max_concurrent": self.max_concurrent,
            "active": self._active,
            "peak": self._peak,
            "total_acquired": self._total,
            "total_wait_time": self._wait_time,
        }


class ExecutionQueue:
    """Priority and dependency aware runner for one group of steps.

    Example:
        >>> queue = ExecutionQueue(group_steps, completed={"analyze"})
        >>> results = await queue.run(runner, max_parallel=3)
    """

    def __init__(
        self,
        steps: Iterable[WorkflowStep],
        completed: Iterable[str] = (),
        failed: Iterable[str] = (),
        skipped: Iterable[str] = (),
    ) -> None:
        self._pending: dict[str, WorkflowStep] = {step.step_id: step for step in steps}
        self._completed: set[str] = set(completed)
        self._failed: set[str] = set(failed)
        self._skipped: set[str] = set(skipped)
        self._on_result: ResultCallback | None = None
        # Dependencies outside the group that never ran count as failed.
        known = set(self._pending) | self._completed | self._failed | self._skipped
        for step in self._pending.values():
            self._failed |= step.depends_on - known

    def __len__(self) -> int:
        return len(self._pending)

    def ready_steps(self) -> list[WorkflowStep]:
        """Steps whose dependencies all completed, highest priority first."""
        ready = [step for step in self._pending.values() if not (step.depends_on - self._completed)]
        ready.sort(key=lambda s: s.priority, reverse=True)
        return ready

    async def run(
        self,
        runner: StepRunner,
        max_parallel: int | None = None,
        on_result: ResultCallback | None = None,
    ) -> dict[str, StepResult]:
        """Run every queued step through ``runner``.

        Args:
            runner: Coroutine function executing a single step
            max_parallel: Maximum steps of this group in flight at once
                (unbounded when None; the ResourceManager still applies)
            on_result: Called with each result as soon as it is known

        Returns:
            Results keyed by step id, in completion order

        Raises:
            RuntimeError: If the remaining steps can never become ready
        """
        results: dict[str, StepResult] = {}
        self._on_result = on_result
        in_flight: dict[asyncio.Task[StepResult], str] = {}
        limit = max_parallel or len(self._pending) or 1

        try:
            while self._pending or in_flight:
                self._resolve_blocked(results)

                ready = self.ready_steps()
                if not ready and not in_flight:
                    if not self._pending:
                        break
                    log.error("dependency_deadlock", remaining_steps=sorted(self._pending))
                    raise RuntimeError("Dependency deadlock detected")

                for step in ready[: max(limit - len(in_flight), 0)]:
                    del self._pending[step.step_id]
                    in_flight[asyncio.create_task(runner(step))] = step.step_id

                if not in_flight:
                    continue

                done, _ = await asyncio.wait(in_flight, return_when=asyncio.FIRST_COMPLETED)
                for finished in done:
                    step_id = in_flight.pop(finished)
                    self._finish(step_id, finished.result(), results)
        except BaseException:
            for task in in_flight:
                task.cancel()
            if in_flight:
                await asyncio.gather(*in_flight, return_exceptions=True)
                # Steps that finished before the cancellation landed still count.
                for task, step_id in in_flight.items():
                    if not task.cancelled() and task.exception() is None:
                        self._finish(step_id, task.result(), results)
            raise

        return results

    def _finish(self, step_id: str, result: StepResult, results: dict[str, StepResult]) -> None:
        results[step_id] = result
        if result.was_skipped:
            self._skipped.add(step_id)
        elif result.success:
            self._completed.add(step_id)
        else:
            self._failed.add(step_id)
        if self._on_result is not None:
            self._on_result(step_id, result)

    def _resolve_blocked(self, results: dict[str, StepResult]) -> None:
        """Resolve pending steps whose dependencies can no longer complete.

        A step depending on a failed step fails; a step depending only on
        skipped steps is skipped as well.
        """
        changed = True
        while changed:
            changed = False
            for step_id, step in list(self._pending.items()):
                blocked_by = step.depends_on & self._failed
                if not blocked_by:
                    if step.depends_on & self._skipped:
                        del self._pending[step_id]
                        self._finish(step_id, StepResult.skipped(step_id, reason="dependency_skipped"), results)
                        changed = True
                    continue
                log.warning("step_blocked_by_dependency", step_id=step_id, failed_dependencies=sorted(blocked_by))
                del self._pending[step_id]
                blocked = StepResult(
                    step_id=step_id,
                    success=False,
                    error=StepExecutionError(
                        f"Dependency failed: {', '.join(sorted(blocked_by))}",
                        step_id=step_id,
                        critical=step.critical,
                    ),
                    status=StepStatus.FAILED,
                )
                self._finish(step_id, blocked, results)
                changed = True
