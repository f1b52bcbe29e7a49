"""
Workflow composition.

:class:`WorkflowBuilder` collects steps in declared order and produces a
:class:`ComposedWorkflow` made of execution units. A unit is either a single
step or a run of consecutive steps sharing a ``parallel_group``; the steps of
a group run concurrently and are joined before the next unit starts.

Conditions are evaluated immediately before the step would run. A false
condition records the step as skipped, which is not a failure.

Example:
    >>> workflow = (
    ...     WorkflowBuilder("refactor-auth")
    ...     .add_step(AnalysisStep("analyze", analyze))
    ...     .add_step(RefactoringStep("refactor", refactor, undo=revert))
    ...     .add_step(DocumentationStep("doc-api", doc_api), parallel_group="docs")
    ...     .add_step(DocumentationStep("doc-cli", doc_cli), parallel_group="docs")
    ...     .add_step(TestingStep("tests", run_tests), condition=lambda ctx: ctx.has_output("refactor"))
    ...     .build()
    ... )
    >>> result = await workflow.execute(context)
"""

from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from git_conductor.engine.context import WorkflowContext
from git_conductor.engine.steps import WorkflowStep

if TYPE_CHECKING:
    from git_conductor.engine.execution import SequentialExecutionEngine
    from git_conductor.models.domain import WorkflowExecutionResult

StepCondition = Callable[[WorkflowContext], bool]


@dataclass(frozen=True)
class WorkflowEntry:
    """A step together with its optional run condition."""

    step: WorkflowStep
    condition: StepCondition | None = None

    @property
    def step_id(self) -> str:
        return self.step.step_id

    def should_run(self, context: WorkflowContext) -> bool:
        return self.condition is None or bool(self.condition(context))


@dataclass
class ExecutionUnit:
    """One sequential position of a composed workflow."""

    entries: list[WorkflowEntry] = field(default_factory=list)
    parallel_group: str | None = None

    @property
    def is_parallel(self) -> bool:
        return self.parallel_group is not None

    @property
    def steps(self) -> list[WorkflowStep]:
        return [entry.step for entry in self.entries]


class ComposedWorkflow:
    """Immutable, ordered collection of execution units."""

    def __init__(self, name: str, units: list[ExecutionUnit]) -> None:
        self.name = name
        self._units = tuple(units)
        self._entries = {entry.step_id: entry for unit in self._units for entry in unit.entries}

    @property
    def units(self) -> tuple[ExecutionUnit, ...]:
        return self._units

    @property
    def steps(self) -> list[WorkflowStep]:
        """All steps in declared order."""
        return [entry.step for unit in self._units for entry in unit.entries]

    def get_step(self, step_id: str) -> WorkflowStep:
        """Step with ``step_id``.

        Raises:
            KeyError: If no such step exists
        """
        return self._entries[step_id].step

    def get_entry(self, step_id: str) -> WorkflowEntry:
        return self._entries[step_id]

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[ExecutionUnit]:
        return iter(self._units)

    async def execute(
        self,
        context: WorkflowContext,
        engine: "SequentialExecutionEngine | None" = None,
        strategy: Any = None,
    ) -> "WorkflowExecutionResult":
        """Run the workflow with ``engine`` (a default engine when omitted)."""
        if engine is None:
            from git_conductor.engine.execution import SequentialExecutionEngine

            engine = SequentialExecutionEngine()
        return await engine.execute(self, context, strategy=strategy)


class WorkflowBuilder:
    """Fluent builder for :class:`ComposedWorkflow`."""

    def __init__(self, name: str = "workflow") -> None:
        self.name = name
        self._units: list[ExecutionUnit] = []
        self._seen_ids: set[str] = set()
        self._closed_groups: set[str] = set()

    def add_step(
        self,
        step: WorkflowStep,
        parallel_group: str | None = None,
        condition: StepCondition | None = None,
    ) -> "WorkflowBuilder":
        """Append a step.

        Args:
            step: The step to add
            parallel_group: Name of the concurrent group the step joins. Members
                of a group must be added consecutively.
            condition: Predicate evaluated right before the step runs

        Returns:
            The builder, for chaining

        Raises:
            ValueError: On a duplicate step id, a dependency on a step that
                was not declared earlier, or a non-contiguous parallel group
        """
        if step.step_id in self._seen_ids:
            raise ValueError(f"Duplicate step id: {step.step_id}")

        current = self._units[-1] if self._units else None
        joins_current = (
            parallel_group is not None and current is not None and current.parallel_group == parallel_group
        )

        unknown = step.depends_on - self._seen_ids
        if unknown:
            raise ValueError(f"Step {step.step_id} depends on undeclared step(s): {sorted(unknown)}")

        entry = WorkflowEntry(step=step, condition=condition)
        if joins_current and current is not None:
            current.entries.append(entry)
        else:
            if parallel_group is not None and parallel_group in self._closed_groups:
                raise ValueError(f"Parallel group {parallel_group!r} must be declared contiguously")
            if current is not None and current.parallel_group is not None:
                self._closed_groups.add(current.parallel_group)
            self._units.append(ExecutionUnit(entries=[entry], parallel_group=parallel_group))

        self._seen_ids.add(step.step_id)
        return self

    def build(self) -> ComposedWorkflow:
        """Freeze the declared steps into a :class:`ComposedWorkflow`.

        Raises:
            ValueError: If no steps were added
        """
        if not self._units:
            raise ValueError("Cannot build an empty workflow")
        units = [ExecutionUnit(entries=list(unit.entries), parallel_group=unit.parallel_group) for unit in self._units]
        return ComposedWorkflow(self.name, units)
