"""
Workflow step variants.

A step wraps an async action with the metadata the execution engine needs:
criticality, timeout, priority, dependencies, optional undo and caching
hints. Four variants exist, one per :class:`~git_conductor.enums.StepType`:

- :class:`AnalysisStep`: read-only inspection of the project. Never reversible.
- :class:`RefactoringStep`: changes code on the workflow branch.
- :class:`TestingStep`: runs or generates tests; fails on failing tests.
- :class:`DocumentationStep`: generates documentation; can be batched.

Actions:
    An action is ``async def action(context, inputs) -> payload``. An undo is
    ``async def undo(context) -> None``. Providing an undo makes the step
    reversible.

Example:
    >>> async def lint(context, inputs):
    ...     return {"warnings": 0}
    >>> step = AnalysisStep("lint", lint, inputs={"paths": ["src"]}, critical=False)
"""

import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Iterable
from enum import Enum
from pathlib import Path
from typing import Any

import structlog

from git_conductor.engine.context import WorkflowContext
from git_conductor.enums import StepStatus, StepType
from git_conductor.exceptions import StepExecutionError
from git_conductor.models.domain import StepResult

log = structlog.get_logger(__name__)

StepAction = Callable[[WorkflowContext, dict[str, Any]], Awaitable[Any]]
UndoAction = Callable[[WorkflowContext], Awaitable[None]]
BatchAction = Callable[[WorkflowContext, list[dict[str, Any]]], Awaitable[list[Any]]]


class StepPriority(int, Enum):
    """Priority levels used to order ready steps inside a parallel group.

    Attributes:
        LOW: Background work (priority 0).
        NORMAL: Default priority (priority 50).
        HIGH: Elevated priority (priority 100).
        CRITICAL: Highest priority (priority 150).
    """

    LOW = 0
    NORMAL = 50
    HIGH = 100
    CRITICAL = 150


class WorkflowStep(ABC):
    """Base class for workflow steps.

    Attributes:
        step_id: Unique id within a workflow
        action: Async callable doing the work
        inputs: Arguments passed to the action; also the basis of the cache key
        critical: When True a failure aborts the workflow and triggers rollback
        timeout: Time budget in seconds
        priority: Ordering hint inside a parallel group
        depends_on: Ids of steps that must complete first
        undo: Async callable reverting the step's side effects
        cacheable: Whether successful outputs may be reused
        estimated_duration: Expected run time in seconds, used for reordering
        output_key: Key under which the payload is stored in the context outputs
    """

    step_type: StepType
    default_timeout: float = 300.0
    default_duration: float = 1.0
    default_cacheable: bool = False

    def __init__(
        self,
        step_id: str,
        action: StepAction,
        *,
        inputs: dict[str, Any] | None = None,
        critical: bool = True,
        timeout: float | None = None,
        priority: int = StepPriority.NORMAL,
        depends_on: Iterable[str] = (),
        undo: UndoAction | None = None,
        cacheable: bool | None = None,
        estimated_duration: float | None = None,
        output_key: str | None = None,
    ) -> None:
        if not step_id:
            raise ValueError("step_id must not be empty")
        if timeout is not None and timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout}")
        self.step_id = step_id
        self.action = action
        self.inputs = dict(inputs or {})
        self.critical = critical
        self.timeout = timeout if timeout is not None else self.default_timeout
        self.priority = int(priority)
        self.depends_on = frozenset(depends_on)
        self.undo = undo
        self.cacheable = self.default_cacheable if cacheable is None else cacheable
        self.estimated_duration = estimated_duration if estimated_duration is not None else self.default_duration
        self.output_key = output_key or step_id

    def __repr__(self) -> str:
        return f"{type(self).__name__}(step_id={self.step_id!r}, critical={self.critical})"

    @property
    def reversible(self) -> bool:
        """Whether the step's side effects can be undone."""
        return self.undo is not None

    @property
    def batchable(self) -> bool:
        return False

    @abstractmethod
    def can_execute(self, context: WorkflowContext) -> bool:
        """Check the step's preconditions against the context."""

    def cache_inputs(self, context: WorkflowContext) -> dict[str, Any]:
        """Data hashed into the step's cache key."""
        action_name = getattr(self.action, "__qualname__", repr(self.action))
        return {
            "action": f"{getattr(self.action, '__module__', '')}.{action_name}",
            "project_path": str(context.project_path),
            "inputs": self.inputs,
        }

    def evaluate(self, payload: Any) -> None:
        """Inspect a payload and raise StepExecutionError if it denotes failure."""

    async def execute(self, context: WorkflowContext) -> StepResult:
        """Run the action and store its payload in the context outputs.

        Errors raised by the action are captured in the returned result as a
        :class:`StepExecutionError`. Cancellation propagates.
        """
        start_time = time.monotonic()
        log.info("step_started", step_id=self.step_id, step_type=self.step_type.value)

        try:
            payload = await self.action(context, self.inputs)
            self.evaluate(payload)
        except StepExecutionError as e:
            return self._failure(e, start_time)
        except Exception as e:
            error = StepExecutionError(f"{type(e).__name__}: {e}", step_id=self.step_id, critical=self.critical)
            error.__cause__ = e
            return self._failure(error, start_time)

        context.set_output(self.output_key, payload)
        duration = time.monotonic() - start_time
        log.info("step_completed", step_id=self.step_id, duration=duration)
        return StepResult(step_id=self.step_id, success=True, payload=payload, duration=duration)

    def _failure(self, error: StepExecutionError, start_time: float) -> StepResult:
        duration = time.monotonic() - start_time
        log.warning("step_failed", step_id=self.step_id, critical=self.critical, error=str(error))
        return StepResult(
            step_id=self.step_id,
            success=False,
            duration=duration,
            error=error,
            status=StepStatus.FAILED,
        )

    async def rollback(self, context: WorkflowContext) -> None:
        """Undo the step's side effects. A no-op for irreversible steps."""
        if self.undo is None:
            return
        log.info("step_rollback", step_id=self.step_id)
        await self.undo(context)


class AnalysisStep(WorkflowStep):
    """Read-only analysis of the project. Cached by default."""

    step_type = StepType.ANALYSIS
    default_duration = 5.0
    default_cacheable = True

    def __init__(self, step_id: str, action: StepAction, **kwargs: Any) -> None:
        if kwargs.get("undo") is not None:
            raise ValueError("Analysis steps have no side effects to undo")
        super().__init__(step_id, action, **kwargs)

    def can_execute(self, context: WorkflowContext) -> bool:
        return Path(context.project_path).exists()


class RefactoringStep(WorkflowStep):
    """Code change applied on the workflow branch."""

    step_type = StepType.REFACTORING
    default_duration = 4.0

    def can_execute(self, context: WorkflowContext) -> bool:
        # Never refactor directly on the base branch.
        return bool(context.branch_name) and context.branch_name != context.base_branch


class TestingStep(WorkflowStep):
    """Runs or generates tests.

    A payload mapping with a positive ``failed`` count is a failure.
    """

    __test__ = False

    step_type = StepType.TESTING
    default_timeout = 900.0
    default_duration = 3.0

    def can_execute(self, context: WorkflowContext) -> bool:
        return Path(context.project_path).exists()

    def evaluate(self, payload: Any) -> None:
        if isinstance(payload, dict):
            failed = payload.get("failed", 0) or 0
            if failed > 0:
                raise StepExecutionError(f"{failed} test(s) failed", step_id=self.step_id, critical=self.critical)


class DocumentationStep(WorkflowStep):
    """Documentation generation.

    Steps sharing the same ``batch_action`` can be combined by the batch
    strategy into one call that receives every step's inputs and returns one
    payload per step, in order.
    """

    step_type = StepType.DOCUMENTATION
    default_duration = 2.0
    default_cacheable = True

    def __init__(
        self,
        step_id: str,
        action: StepAction,
        *,
        batch_action: BatchAction | None = None,
        **kwargs: Any,
    ) -> None:
        kwargs.setdefault("critical", False)
        super().__init__(step_id, action, **kwargs)
        self.batch_action = batch_action

    @property
    def batchable(self) -> bool:
        return self.batch_action is not None

    def can_execute(self, context: WorkflowContext) -> bool:
        return Path(context.project_path).exists()
