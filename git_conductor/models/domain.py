"""
Domain models for the workflow engine.

This module contains the value objects that flow between the engine's
components: the incoming task, per-step results, the results of each git
stage and the immutable audit record. They are plain dataclasses; the only
validated model (analyzer output) lives in :mod:`git_conductor.models.review`.

Example:
    Building a task from collaborator input::

        task = Task.from_dict(
            {
                "id": "a1b2c3d4e5f6",
                "type": "bug",
                "title": "Fix login redirect",
                "priority": "high",
                "tags": ["auth"],
            }
        )
"""

import copy
from dataclasses import dataclass, field
from datetime import UTC, datetime
from types import MappingProxyType
from typing import Any

from git_conductor.enums import (
    AutomationLevel,
    MergeMethod,
    ReviewStatus,
    StepStatus,
    TaskType,
    WorkflowStage,
)


def _freeze(mapping: dict[str, Any] | MappingProxyType | None) -> MappingProxyType:
    return MappingProxyType(copy.deepcopy(dict(mapping or {})))


@dataclass(frozen=True)
class Task:
    """A development task handed to the engine.

    Tasks are immutable once created. Unknown task types are kept as the raw
    string so that policy lookups can fail closed instead of guessing.

    Attributes:
        id: Unique task identifier (the first 8 characters appear in branch names)
        type: Task type, or the raw string when the type is unknown
        title: Short human-readable title
        description: Longer description of the requested change
        priority: Free-form priority (low, normal, high, critical, ...)
        tags: Labels attached to the task
        metadata: Read-only extra data (``automation_level``, ``version``, ...)
    """

    id: str
    type: TaskType | str
    title: str
    description: str = ""
    priority: str = "normal"
    tags: tuple[str, ...] = ()
    metadata: MappingProxyType = field(default_factory=lambda: MappingProxyType({}))

    def __post_init__(self) -> None:
        if isinstance(self.type, str) and not isinstance(self.type, TaskType):
            try:
                object.__setattr__(self, "type", TaskType(self.type.lower()))
            except ValueError:
                pass
        object.__setattr__(self, "priority", "normal" if self.priority is None else str(self.priority))
        object.__setattr__(self, "tags", tuple(self.tags))
        if not isinstance(self.metadata, MappingProxyType):
            object.__setattr__(self, "metadata", _freeze(self.metadata))

    @property
    def type_name(self) -> str:
        """Task type as a plain string."""
        return self.type.value if isinstance(self.type, TaskType) else str(self.type)

    @property
    def is_known_type(self) -> bool:
        return isinstance(self.type, TaskType)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        """Build a task from the task-management collaborator's payload."""
        return cls(
            id=str(data["id"]),
            type=data.get("type", ""),
            title=data.get("title", ""),
            description=data.get("description", ""),
            priority=str(data.get("priority", "normal")),
            tags=tuple(data.get("tags", ())),
            metadata=data.get("metadata") or {},
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type_name,
            "title": self.title,
            "description": self.description,
            "priority": self.priority,
            "tags": list(self.tags),
            "metadata": copy.deepcopy(dict(self.metadata)),
        }


@dataclass
class StepResult:
    """Outcome of executing one workflow step.

    Attributes:
        step_id: Step that produced this result
        success: True if the step completed without error
        payload: Value returned by the step action
        duration: Wall-clock execution time in seconds
        error: Exception that caused the failure, if any
        status: Detailed outcome (succeeded, failed, skipped, timed_out, cancelled)
        cached: True when the payload came from the step output cache
    """

    step_id: str
    success: bool
    payload: Any = None
    duration: float = 0.0
    error: Exception | None = None
    status: StepStatus = StepStatus.SUCCEEDED
    cached: bool = False

    @classmethod
    def skipped(cls, step_id: str, reason: str = "condition_false") -> "StepResult":
        """Result for a step whose condition or pre-check did not hold."""
        return cls(step_id=step_id, success=True, payload={"reason": reason}, status=StepStatus.SKIPPED)

    @property
    def was_skipped(self) -> bool:
        return self.status is StepStatus.SKIPPED

    def to_dict(self) -> dict[str, Any]:
        return {
            "step_id": self.step_id,
            "success": self.success,
            "status": self.status.value,
            "duration": self.duration,
            "cached": self.cached,
            "error": str(self.error) if self.error else None,
        }


@dataclass
class OperationResult:
    """Common shape of the git stage results: ``{success, data, error}``.

    ``skipped`` marks a stage that was deliberately not performed (for
    example pull request creation at full_auto); ``reason`` explains why.
    """

    success: bool
    data: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    skipped: bool = False
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"success": self.success, "data": copy.deepcopy(self.data), "error": self.error}
        if self.skipped:
            result["skipped"] = True
            result["reason"] = self.reason
        return result


@dataclass
class BranchResult(OperationResult):
    """Result of creating (or deleting) a workflow branch."""

    @property
    def branch_name(self) -> str | None:
        return self.data.get("branch_name")


@dataclass
class PullRequestResult(OperationResult):
    """Result of pull request creation."""

    @property
    def pr_id(self) -> str | None:
        value = self.data.get("pr_id")
        return None if value is None else str(value)


@dataclass
class SubReviewResult:
    """Outcome of one analyzer-backed sub-review."""

    name: str
    score: float | None = None
    issues: list[Any] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    error: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.score is not None


@dataclass
class ReviewResult(OperationResult):
    """Aggregated automated review of a pull request."""

    score: float = 0.0
    status: ReviewStatus = ReviewStatus.SKIPPED
    recommendations: list[str] = field(default_factory=list)
    sub_reviews: dict[str, SubReviewResult] = field(default_factory=dict)


@dataclass
class MergeResult(OperationResult):
    """Result of a merge attempt."""

    method: MergeMethod | None = None
    conflicts: list[str] = field(default_factory=list)
    requires_confirmation: bool = False


@dataclass(frozen=True)
class AuditRecord:
    """Immutable record of one workflow stage transition.

    The context snapshot is deep-copied on creation and exposed read-only, so
    later changes to the live context never alter the trail.
    """

    workflow_id: str
    stage: str
    outcome: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    context_snapshot: MappingProxyType = field(default_factory=lambda: MappingProxyType({}))
    details: MappingProxyType = field(default_factory=lambda: MappingProxyType({}))

    def __post_init__(self) -> None:
        object.__setattr__(self, "context_snapshot", _freeze(self.context_snapshot))
        object.__setattr__(self, "details", _freeze(self.details))

    def to_dict(self) -> dict[str, Any]:
        return {
            "workflow_id": self.workflow_id,
            "stage": self.stage,
            "outcome": self.outcome,
            "timestamp": self.timestamp.isoformat(),
            "context_snapshot": copy.deepcopy(dict(self.context_snapshot)),
            "details": copy.deepcopy(dict(self.details)),
        }


@dataclass
class WorkflowExecutionResult:
    """Result of running a composed workflow through the execution engine.

    Attributes:
        success: False when a critical step failed or the run was cancelled
        step_results: Results keyed by step id, in completion order
        failed_step: Id of the critical step that aborted the run
        error: Error raised by the aborting step
        rolled_back: Ids of steps whose rollback ran, in rollback order
        rollback_errors: Errors raised by failing rollbacks, keyed by step id
        cancelled: True if the run was cancelled
        duration: Total wall-clock time in seconds
        strategy: Name of the execution strategy used
    """

    success: bool
    step_results: dict[str, StepResult] = field(default_factory=dict)
    failed_step: str | None = None
    error: Exception | None = None
    rolled_back: list[str] = field(default_factory=list)
    rollback_errors: dict[str, str] = field(default_factory=dict)
    cancelled: bool = False
    duration: float = 0.0
    strategy: str = "optimized"

    @property
    def failures(self) -> list[StepResult]:
        """Results of every step that did not succeed (critical or not)."""
        return [r for r in self.step_results.values() if not r.success]


@dataclass
class GitWorkflowResult:
    """Structured, user-visible outcome of a full git workflow.

    ``summary()`` is the stable public shape
    ``{success, stage, error, recoverable}``. A recoverable result can be
    passed back to ``GitWorkflowManager.resume`` once the blocking problem
    (merge conflict, missing confirmation, low review score) is handled.
    """

    workflow_id: str
    success: bool
    stage: WorkflowStage
    error: str | None = None
    recoverable: bool = False
    failed_stage: WorkflowStage | None = None
    automation_level: AutomationLevel | None = None
    branch: BranchResult | None = None
    execution: WorkflowExecutionResult | None = None
    pull_request: PullRequestResult | None = None
    review: ReviewResult | None = None
    merge: MergeResult | None = None
    context: Any = None

    def summary(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "stage": self.stage.value,
            "error": self.error,
            "recoverable": self.recoverable,
        }

    to_dict = summary
