"""
Sequential execution engine.

The engine runs a :class:`~git_conductor.engine.builder.ComposedWorkflow`
against a :class:`~git_conductor.engine.context.WorkflowContext`:

- Units run in the order produced by the selected strategy. Steps of a
  parallel group run concurrently through an
  :class:`~git_conductor.engine.queue.ExecutionQueue` and are joined before
  the next unit.
- Every step holds a slot of the shared
  :class:`~git_conductor.engine.queue.ResourceManager` while it runs, so the
  concurrency cap applies across all workflows using the same engine.
- Every step runs under ``asyncio.wait_for`` with its own timeout.

Failure Semantics:
    - Each executed, skipped or failed step appends one checkpoint to the
      context history.
    - A failing non-critical step is recorded and execution continues.
    - A failing critical step, or any timed-out step, stops the run. Every
      completed reversible step is rolled back in reverse completion order.
    - Cancelling the coroutine cancels in-flight steps, rolls back completed
      reversible steps and re-raises ``asyncio.CancelledError``. The partial
      result stays available through :meth:`SequentialExecutionEngine.last_result`.
    - Any other exception escaping a unit rolls back completed reversible
      steps and is returned as the failed result's error.

Example:
    >>> engine = SequentialExecutionEngine(ExecutionConfig(max_concurrent_steps=2))
    >>> result = await engine.execute(workflow, context, strategy="batch")
    >>> result.success, result.failed_step
    (False, 'tests')
"""

import asyncio
import time
from collections.abc import Iterable
from typing import Any

import structlog

from git_conductor.config.settings import ExecutionConfig
from git_conductor.engine.builder import ComposedWorkflow, WorkflowEntry
from git_conductor.engine.context import WorkflowContext
from git_conductor.engine.queue import ExecutionQueue, ResourceManager
from git_conductor.engine.steps import BatchAction, WorkflowStep
from git_conductor.engine.strategies import (
    BatchSequentialStrategy,
    ExecutionStrategy,
    PlannedUnit,
    StepHistory,
    get_execution_strategy,
)
from git_conductor.enums import StepStatus
from git_conductor.exceptions import StepExecutionError, StepTimeoutError, WorkflowCancelledError, WorkflowError
from git_conductor.models.domain import StepResult, WorkflowExecutionResult
from git_conductor.utils.caching import AsyncCache

log = structlog.get_logger(__name__)


class _RunState:
    """Bookkeeping of one ``execute`` call."""

    def __init__(self, workflow: ComposedWorkflow, strategy: ExecutionStrategy, result: WorkflowExecutionResult):
        self.workflow = workflow
        self.strategy = strategy
        self.result = result
        self.completed_steps: list[WorkflowStep] = []
        self.succeeded: set[str] = set()
        self.failed: set[str] = set()
        self.skipped: set[str] = set()
        self.unit_ids: list[str] = []


class SequentialExecutionEngine:
    """Execute composed workflows with timeouts, caching and rollback.

    Attributes:
        config: Execution settings
        resources: Global concurrency cap shared by all workflows
        cache: Step output cache used by the optimized and smart strategies
        history: Per-step-type history used by the smart strategy
    """

    def __init__(
        self,
        config: ExecutionConfig | None = None,
        resource_manager: ResourceManager | None = None,
        cache: AsyncCache | None = None,
        history: StepHistory | None = None,
        strategy: ExecutionStrategy | str | None = None,
    ) -> None:
        self.config = config or ExecutionConfig()
        self.resources = resource_manager or ResourceManager(self.config.max_concurrent_steps)
        self.cache = cache or AsyncCache(ttl_seconds=self.config.cache_ttl_seconds, max_size=self.config.cache_max_size)
        self.history = history or StepHistory(window=self.config.smart_history_window)
        self.default_strategy = strategy or self.config.strategy
        self._workflows: dict[str, ComposedWorkflow] = {}
        self._rolled_back: dict[str, set[str]] = {}
        self._results: dict[str, WorkflowExecutionResult] = {}

    def get_strategy(self, strategy: ExecutionStrategy | str | None = None) -> ExecutionStrategy:
        """Resolve a strategy instance from an instance, a registered name or the default."""
        chosen = strategy or self.default_strategy
        if isinstance(chosen, ExecutionStrategy):
            return chosen
        if chosen == BatchSequentialStrategy.name:
            return get_execution_strategy(chosen, batch_size=self.config.batch_size)
        return get_execution_strategy(chosen)

    async def execute(
        self,
        workflow: ComposedWorkflow,
        context: WorkflowContext,
        strategy: ExecutionStrategy | str | None = None,
    ) -> WorkflowExecutionResult:
        """Execute ``workflow`` against ``context``.

        Args:
            workflow: The composed workflow
            context: Context of this execution; receives outputs and checkpoints
            strategy: Strategy instance or name (optimized, batch, smart)

        Returns:
            Result with per-step results, the aborting step and rollbacks

        Raises:
            asyncio.CancelledError: If the execution is cancelled (after rollback)

        Any other exception raised while running, such as a strategy error or
        a parallel group with unsatisfiable dependencies, rolls back completed
        steps and is returned as the result's error.
        """
        chosen = self.get_strategy(strategy)
        result = WorkflowExecutionResult(success=True, strategy=chosen.name)
        run = _RunState(workflow, chosen, result)
        self._workflows[context.workflow_id] = workflow
        self._rolled_back.setdefault(context.workflow_id, set())
        self._results[context.workflow_id] = result
        start_time = time.monotonic()

        with structlog.contextvars.bound_contextvars(workflow_id=context.workflow_id):
            log.info(
                "workflow_execution_started",
                workflow=workflow.name,
                steps=len(workflow),
                strategy=chosen.name,
            )
            try:
                for unit in chosen.plan(workflow, context, self.history):
                    run.unit_ids = []
                    await self._run_unit(unit, run, context)

                    aborting = self._first_critical_failure(run)
                    if aborting is not None:
                        result.success = False
                        result.failed_step = aborting.step_id
                        result.error = aborting.error
                        log.error(
                            "workflow_execution_aborted",
                            failed_step=aborting.step_id,
                            status=aborting.status.value,
                            error=str(aborting.error),
                        )
                        await self._rollback_steps(run.completed_steps, context, result)
                        break
            except asyncio.CancelledError:
                result.success = False
                result.cancelled = True
                result.error = WorkflowCancelledError("Workflow cancelled during step execution", stage="executing")
                log.warning("workflow_execution_cancelled", completed=len(run.completed_steps))
                await self._rollback_steps(run.completed_steps, context, result)
                result.duration = time.monotonic() - start_time
                raise
            except Exception as e:
                result.success = False
                result.error = e
                log.error(
                    "workflow_execution_crashed",
                    error=str(e),
                    completed=len(run.completed_steps),
                    exc_info=True,
                )
                await self._rollback_steps(run.completed_steps, context, result)

            result.duration = time.monotonic() - start_time
            log.info(
                "workflow_execution_complete",
                success=result.success,
                executed=len(result.step_results),
                failures=len(result.failures),
                rolled_back=result.rolled_back,
                duration=result.duration,
            )
        return result

    async def _run_unit(self, unit: PlannedUnit, run: _RunState, context: WorkflowContext) -> None:
        def on_result(step_id: str, step_result: StepResult) -> None:
            self._record(step_id, step_result, run, context)

        if unit.mode == "batch":
            batch_results = await run.strategy.run_batch(self, unit.entries, context)
            for step_id, step_result in batch_results.items():
                on_result(step_id, step_result)
            return

        entries = {entry.step_id: entry for entry in unit.entries}
        queue = ExecutionQueue(
            [entry.step for entry in unit.entries],
            completed=run.succeeded,
            failed=run.failed,
            skipped=run.skipped,
        )

        async def runner(step: WorkflowStep) -> StepResult:
            return await self._run_entry(entries[step.step_id], run.strategy, context)

        await queue.run(runner, max_parallel=None if unit.mode == "parallel" else 1, on_result=on_result)

    async def _run_entry(self, entry: WorkflowEntry, strategy: ExecutionStrategy, context: WorkflowContext) -> StepResult:
        try:
            should_run = entry.should_run(context)
        except Exception as e:
            error = StepExecutionError(f"Condition raised {type(e).__name__}: {e}", step_id=entry.step_id)
            error.__cause__ = e
            return StepResult(step_id=entry.step_id, success=False, error=error, status=StepStatus.FAILED)

        if not should_run:
            log.info("step_skipped", step_id=entry.step_id, reason="condition_false")
            return StepResult.skipped(entry.step_id)

        return await strategy.run_step(self, entry.step, context)

    def _record(self, step_id: str, step_result: StepResult, run: _RunState, context: WorkflowContext) -> None:
        step = run.workflow.get_step(step_id)
        context.checkpoint(step_id, step_result)
        run.result.step_results[step_id] = step_result
        run.unit_ids.append(step_id)
        run.strategy.record(self, step, step_result)

        if step_result.was_skipped:
            run.skipped.add(step_id)
        elif step_result.success:
            run.succeeded.add(step_id)
            run.completed_steps.append(step)
        else:
            run.failed.add(step_id)
            if not self.is_critical_failure(step, step_result):
                log.warning("non_critical_step_failed", step_id=step_id, error=str(step_result.error))

    def _first_critical_failure(self, run: _RunState) -> StepResult | None:
        for step_id in run.unit_ids:
            step_result = run.result.step_results[step_id]
            if self.is_critical_failure(run.workflow.get_step(step_id), step_result):
                return step_result
        return None

    @staticmethod
    def is_critical_failure(step: WorkflowStep, step_result: StepResult) -> bool:
        """A failed critical step, or any timed-out step."""
        if step_result.success:
            return False
        return step.critical or step_result.status is StepStatus.TIMED_OUT

    async def run_step(self, step: WorkflowStep, context: WorkflowContext) -> StepResult:
        """Run one step with its precondition check, resource slot and timeout."""
        if not step.can_execute(context):
            log.warning("step_preconditions_not_met", step_id=step.step_id)
            return StepResult(
                step_id=step.step_id,
                success=False,
                error=StepExecutionError("Step preconditions not met", step_id=step.step_id, critical=step.critical),
                status=StepStatus.FAILED,
            )

        async with self.resources.slot(step.step_id):
            start_time = time.monotonic()
            try:
                return await asyncio.wait_for(step.execute(context), timeout=step.timeout)
            except TimeoutError:
                log.error("step_timeout", step_id=step.step_id, timeout=step.timeout)
                return StepResult(
                    step_id=step.step_id,
                    success=False,
                    duration=time.monotonic() - start_time,
                    error=StepTimeoutError("Step exceeded its time budget", step.step_id, step.timeout),
                    status=StepStatus.TIMED_OUT,
                )

    async def run_batch(
        self,
        batch_action: BatchAction,
        steps: list[WorkflowStep],
        context: WorkflowContext,
    ) -> dict[str, StepResult]:
        """Run ``steps`` through one ``batch_action`` call.

        The batch holds a single resource slot. Its timeout is the sum of the
        member timeouts. Each payload is evaluated and stored as if the
        member had run on its own.
        """
        results: dict[str, StepResult] = {}
        runnable: list[WorkflowStep] = []
        for step in steps:
            if step.can_execute(context):
                runnable.append(step)
            else:
                results[step.step_id] = StepResult(
                    step_id=step.step_id,
                    success=False,
                    error=StepExecutionError("Step preconditions not met", step_id=step.step_id, critical=step.critical),
                    status=StepStatus.FAILED,
                )
        if not runnable:
            return results

        timeout = sum(step.timeout for step in runnable)
        batch_id = "+".join(step.step_id for step in runnable)
        async with self.resources.slot(batch_id):
            start_time = time.monotonic()
            try:
                payloads = await asyncio.wait_for(
                    batch_action(context, [step.inputs for step in runnable]), timeout=timeout
                )
                if len(payloads) != len(runnable):
                    raise StepExecutionError(f"Batch returned {len(payloads)} payloads for {len(runnable)} steps")
            except TimeoutError:
                duration = time.monotonic() - start_time
                log.error("batch_timeout", steps=batch_id, timeout=timeout)
                for step in runnable:
                    results[step.step_id] = StepResult(
                        step_id=step.step_id,
                        success=False,
                        duration=duration,
                        error=StepTimeoutError("Batch exceeded its time budget", step.step_id, timeout),
                        status=StepStatus.TIMED_OUT,
                    )
                return results
            except Exception as e:
                duration = time.monotonic() - start_time
                log.error("batch_failed", steps=batch_id, error=str(e))
                for step in runnable:
                    error = StepExecutionError(f"Batch failed: {e}", step_id=step.step_id, critical=step.critical)
                    error.__cause__ = e
                    results[step.step_id] = StepResult(
                        step_id=step.step_id,
                        success=False,
                        duration=duration,
                        error=error,
                        status=StepStatus.FAILED,
                    )
                return results

        share = (time.monotonic() - start_time) / len(runnable)
        for step, payload in zip(runnable, payloads, strict=True):
            try:
                step.evaluate(payload)
            except StepExecutionError as e:
                results[step.step_id] = StepResult(
                    step_id=step.step_id, success=False, duration=share, error=e, status=StepStatus.FAILED
                )
                continue
            context.set_output(step.output_key, payload)
            results[step.step_id] = StepResult(step_id=step.step_id, success=True, payload=payload, duration=share)
        log.info("batch_completed", steps=batch_id, duration=share * len(runnable))
        return results

    async def _rollback_steps(
        self,
        steps: Iterable[WorkflowStep],
        context: WorkflowContext,
        result: WorkflowExecutionResult,
    ) -> None:
        """Roll back completed reversible steps, newest first."""
        rolled = self._rolled_back.setdefault(context.workflow_id, set())
        for step in reversed(list(steps)):
            step_result = result.step_results.get(step.step_id)
            if not step.reversible or step.step_id in rolled or (step_result is not None and step_result.cached):
                continue
            try:
                await step.rollback(context)
            except Exception as e:
                log.error("step_rollback_failed", step_id=step.step_id, error=str(e), exc_info=True)
                result.rollback_errors[step.step_id] = str(e)
                continue
            rolled.add(step.step_id)
            result.rolled_back.append(step.step_id)

    async def rollback(self, context: WorkflowContext, checkpoint_index: int) -> list[str]:
        """Undo every reversible step completed after ``checkpoint_index``.

        Steps are undone newest first, then the context fields recorded at the
        checkpoint are restored. History is left untouched.

        Returns:
            Ids of the steps that were rolled back

        Raises:
            IndexError: If the checkpoint does not exist
            WorkflowError: If this engine never executed the context's workflow
        """
        workflow = self._workflows.get(context.workflow_id)
        if workflow is None:
            raise WorkflowError(f"No workflow executed for {context.workflow_id}", stage="executing")
        context.state.get(checkpoint_index)

        rolled = self._rolled_back.setdefault(context.workflow_id, set())
        undone: list[str] = []
        for entry in reversed(context.state.steps_after(checkpoint_index)):
            step_result = entry.result
            if not step_result.success or step_result.was_skipped or step_result.cached:
                continue
            if entry.step_id in rolled:
                continue
            step = workflow.get_step(entry.step_id)
            if not step.reversible:
                continue
            await step.rollback(context)
            rolled.add(entry.step_id)
            undone.append(entry.step_id)

        context.restore_checkpoint(checkpoint_index)
        log.info(
            "workflow_rolled_back",
            workflow_id=context.workflow_id,
            checkpoint_index=checkpoint_index,
            rolled_back=undone,
        )
        return undone

    def last_result(self, workflow_id: str) -> WorkflowExecutionResult | None:
        """Most recent (possibly partial) result for ``workflow_id``."""
        return self._results.get(workflow_id)

    def release(self, workflow_id: str) -> None:
        """Forget everything kept for ``workflow_id``."""
        self._workflows.pop(workflow_id, None)
        self._rolled_back.pop(workflow_id, None)
        self._results.pop(workflow_id, None)

    async def get_stats(self) -> dict[str, Any]:
        return {
            "cache": await self.cache.get_stats(),
            "resources": self.resources.get_stats(),
            "history": self.history.to_dict(),
            "tracked_workflows": len(self._workflows),
        }
