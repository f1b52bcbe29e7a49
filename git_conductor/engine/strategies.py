"""
Execution strategies for the sequential engine.

A strategy decides how the units of a composed workflow are planned and how
individual steps are run. Three interchangeable strategies exist:

- :class:`OptimizedSequentialStrategy` caches successful outputs of
  cacheable steps keyed by ``(step_type, input_hash)`` and skips execution on
  a cache hit.
- :class:`BatchSequentialStrategy` combines consecutive, independent,
  batch-capable documentation steps that share a batch action into one call.
- :class:`SmartSequentialStrategy` reorders independent sequential steps so
  that cheap steps and steps likely to fail run first.

Safety Rules:
    Reordering and batching only ever happen inside a *segment*: a run of
    consecutive sequential units with no conditions, no declared
    dependencies and no refactoring steps. Parallel groups, conditional
    steps, steps with dependencies and refactoring steps are barriers that
    keep their declared position.

Example:
    >>> engine = SequentialExecutionEngine()
    >>> await engine.execute(workflow, context, strategy="smart")
"""

from abc import ABC, abstractmethod
from collections import defaultdict, deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

import structlog

from git_conductor.engine.builder import ComposedWorkflow, ExecutionUnit, WorkflowEntry
from git_conductor.engine.context import WorkflowContext
from git_conductor.engine.steps import DocumentationStep, WorkflowStep
from git_conductor.enums import StepType
from git_conductor.models.domain import StepResult
from git_conductor.utils.caching import AsyncCache, build_step_key

if TYPE_CHECKING:
    from git_conductor.engine.execution import SequentialExecutionEngine

log = structlog.get_logger(__name__)


@dataclass
class PlannedUnit:
    """A unit as the engine will execute it.

    ``mode`` is ``single`` for one sequential step, ``parallel`` for a
    parallel group and ``batch`` for steps combined into one batched call.
    """

    entries: list[WorkflowEntry] = field(default_factory=list)
    mode: Literal["single", "parallel", "batch"] = "single"

    @property
    def step_ids(self) -> list[str]:
        return [entry.step_id for entry in self.entries]


class StepHistory:
    """Rolling per-step-type record of durations and outcomes.

    Attributes:
        window: Number of executions kept per step type
    """

    def __init__(self, window: int = 50) -> None:
        self.window = window
        self._records: dict[str, deque[tuple[float, bool]]] = defaultdict(lambda: deque(maxlen=self.window))

    def record(self, step_type: StepType | str, duration: float, success: bool) -> None:
        self._records[str(step_type)].append((duration, success))

    def samples(self, step_type: StepType | str) -> int:
        return len(self._records.get(str(step_type), ()))

    def average_duration(self, step_type: StepType | str) -> float | None:
        records = self._records.get(str(step_type))
        if not records:
            return None
        return sum(duration for duration, _ in records) / len(records)

    def failure_rate(self, step_type: StepType | str) -> float:
        """Share of failed executions, 0.0 without history."""
        records = self._records.get(str(step_type))
        if not records:
            return 0.0
        return sum(1 for _, success in records if not success) / len(records)

    def estimated_duration(self, step: WorkflowStep) -> float:
        """Historical average for the step's type, else the step's own estimate."""
        average = self.average_duration(step.step_type)
        return step.estimated_duration if average is None else average

    def to_dict(self) -> dict[str, Any]:
        return {
            step_type: {
                "samples": len(records),
                "average_duration": self.average_duration(step_type),
                "failure_rate": self.failure_rate(step_type),
            }
            for step_type, records in self._records.items()
        }


def _default_plan(workflow: ComposedWorkflow) -> list[PlannedUnit]:
    return [
        PlannedUnit(entries=list(unit.entries), mode="parallel" if unit.is_parallel else "single")
        for unit in workflow.units
    ]


def _is_movable(unit: ExecutionUnit) -> bool:
    """Whether a unit may be reordered or batched with its neighbours."""
    if unit.is_parallel or len(unit.entries) != 1:
        return False
    entry = unit.entries[0]
    step = entry.step
    return entry.condition is None and not step.depends_on and step.step_type is not StepType.REFACTORING


def split_segments(workflow: ComposedWorkflow) -> list[tuple[bool, list[ExecutionUnit]]]:
    """Split units into ``(movable, units)`` runs, preserving declared order."""
    segments: list[tuple[bool, list[ExecutionUnit]]] = []
    for unit in workflow.units:
        movable = _is_movable(unit)
        if segments and movable and segments[-1][0]:
            segments[-1][1].append(unit)
        else:
            segments.append((movable, [unit]))
    return segments


class ExecutionStrategy(ABC):
    """Interface shared by all execution strategies."""

    name: str = "base"

    @abstractmethod
    def plan(self, workflow: ComposedWorkflow, context: WorkflowContext, history: StepHistory) -> list[PlannedUnit]:
        """Turn the workflow's units into the units that will be executed."""

    async def run_step(
        self, engine: "SequentialExecutionEngine", step: WorkflowStep, context: WorkflowContext
    ) -> StepResult:
        """Run one step through the engine."""
        return await engine.run_step(step, context)

    async def run_batch(
        self, engine: "SequentialExecutionEngine", entries: list[WorkflowEntry], context: WorkflowContext
    ) -> dict[str, StepResult]:
        """Run a batch unit. The base implementation runs members one by one."""
        results: dict[str, StepResult] = {}
        for entry in entries:
            results[entry.step_id] = await self.run_step(engine, entry.step, context)
        return results

    def record(self, engine: "SequentialExecutionEngine", step: WorkflowStep, result: StepResult) -> None:
        """Feed an executed step's outcome into the engine's history."""
        if result.was_skipped or result.cached:
            return
        engine.history.record(step.step_type, result.duration, result.success)


class OptimizedSequentialStrategy(ExecutionStrategy):
    """Declared order, with output caching for cacheable steps."""

    name = "optimized"

    def plan(self, workflow: ComposedWorkflow, context: WorkflowContext, history: StepHistory) -> list[PlannedUnit]:
        return _default_plan(workflow)

    async def run_step(
        self, engine: "SequentialExecutionEngine", step: WorkflowStep, context: WorkflowContext
    ) -> StepResult:
        if not step.cacheable:
            return await engine.run_step(step, context)
        return await cached_run(engine.cache, step, context, lambda: engine.run_step(step, context))


async def cached_run(
    cache: AsyncCache,
    step: WorkflowStep,
    context: WorkflowContext,
    run: Callable[[], Any],
) -> StepResult:
    """Serve ``step`` from ``cache`` or run it and cache a successful payload."""
    key = build_step_key(step.step_type.value, step.cache_inputs(context))
    hit = await cache.get(key)
    if hit is not None:
        (payload,) = hit
        context.set_output(step.output_key, payload)
        log.info("step_cache_hit", step_id=step.step_id, step_type=step.step_type.value)
        return StepResult(step_id=step.step_id, success=True, payload=payload, cached=True)

    result: StepResult = await run()
    if result.success and not result.was_skipped:
        await cache.set(key, (result.payload,))
    return result


class BatchSequentialStrategy(ExecutionStrategy):
    """Declared order, with batching of independent documentation steps.

    Attributes:
        batch_size: Maximum steps per batch call
    """

    name = "batch"

    def __init__(self, batch_size: int = 10) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.batch_size = batch_size

    def plan(self, workflow: ComposedWorkflow, context: WorkflowContext, history: StepHistory) -> list[PlannedUnit]:
        planned: list[PlannedUnit] = []
        for movable, units in split_segments(workflow):
            if not movable:
                planned.extend(
                    PlannedUnit(entries=list(u.entries), mode="parallel" if u.is_parallel else "single") for u in units
                )
                continue
            planned.extend(self._batch_segment([u.entries[0] for u in units]))
        return planned

    def _batch_segment(self, entries: list[WorkflowEntry]) -> list[PlannedUnit]:
        """Group runs of steps sharing a batch action into ``batch_size`` chunks.

        Every chunk of a run with more than one member is batched, including a
        one-step remainder, so the whole run goes through the batch action.
        """
        planned: list[PlannedUnit] = []
        run: list[WorkflowEntry] = []

        def flush() -> None:
            mode = "batch" if len(run) > 1 else "single"
            for start in range(0, len(run), self.batch_size):
                planned.append(PlannedUnit(entries=run[start : start + self.batch_size], mode=mode))
            run.clear()

        for entry in entries:
            step = entry.step
            if not step.batchable:
                flush()
                planned.append(PlannedUnit(entries=[entry], mode="single"))
                continue
            if run and run[0].step.batch_action is not step.batch_action:  # type: ignore[attr-defined]
                flush()
            run.append(entry)
        flush()
        return planned

    async def run_batch(
        self, engine: "SequentialExecutionEngine", entries: list[WorkflowEntry], context: WorkflowContext
    ) -> dict[str, StepResult]:
        steps = [entry.step for entry in entries]
        first = steps[0]
        if not isinstance(first, DocumentationStep) or first.batch_action is None:
            return await super().run_batch(engine, entries, context)

        log.info("batch_started", step_ids=[s.step_id for s in steps], batch_size=len(steps))
        return await engine.run_batch(first.batch_action, steps, context)


class SmartSequentialStrategy(OptimizedSequentialStrategy):
    """Reorders independent steps using execution history.

    Within a movable segment, steps are sorted by
    ``estimated_duration * (1 - failure_rate)`` ascending: cheap steps come
    first, and steps that usually fail are pulled forward so that a failing
    run stops early. Ties keep declared order. Cacheable steps are also
    served from the output cache.
    """

    name = "smart"

    def plan(self, workflow: ComposedWorkflow, context: WorkflowContext, history: StepHistory) -> list[PlannedUnit]:
        planned: list[PlannedUnit] = []
        for movable, units in split_segments(workflow):
            if not movable:
                planned.extend(
                    PlannedUnit(entries=list(u.entries), mode="parallel" if u.is_parallel else "single") for u in units
                )
                continue
            ordered = sorted(
                enumerate(units),
                key=lambda item: (self.score(item[1].entries[0].step, history), item[0]),
            )
            planned.extend(PlannedUnit(entries=list(unit.entries), mode="single") for _, unit in ordered)
        return planned

    @staticmethod
    def score(step: WorkflowStep, history: StepHistory) -> float:
        return history.estimated_duration(step) * (1.0 - history.failure_rate(step.step_type))


_STRATEGIES: dict[str, Callable[..., ExecutionStrategy]] = {
    OptimizedSequentialStrategy.name: OptimizedSequentialStrategy,
    BatchSequentialStrategy.name: BatchSequentialStrategy,
    SmartSequentialStrategy.name: SmartSequentialStrategy,
}


def register_strategy(name: str, factory: Callable[..., ExecutionStrategy]) -> None:
    """Register an additional strategy under ``name``."""
    _STRATEGIES[name] = factory


def get_execution_strategy(name: str, **kwargs: Any) -> ExecutionStrategy:
    """Build the strategy registered under ``name``.

    Raises:
        ValueError: If no strategy is registered under ``name``
    """
    try:
        factory = _STRATEGIES[name]
    except KeyError:
        raise ValueError(f"Unknown execution strategy: {name!r} (known: {sorted(_STRATEGIES)})") from None
    return factory(**kwargs)
