"""Execution context for workflow runs.

This module provides the :class:`WorkflowContext` that carries state through
one workflow execution, and the append-only :class:`State` history of
checkpoints used for rollback and auditing.

Rollback never edits history. Restoring a checkpoint copies the field values
recorded in that checkpoint's snapshot back onto the context; the history
itself keeps every entry.
"""

import copy
import uuid
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from types import MappingProxyType
from typing import Any

from git_conductor.enums import AutomationLevel
from git_conductor.models.domain import StepResult, Task

# Context fields captured in every checkpoint and restored on rollback.
RESTORABLE_FIELDS = ("branch_name", "base_branch", "automation_level", "reviewers", "outputs")


def copy_value(value: Any) -> Any:
    """Deep copy of ``value`` that shares whatever cannot be copied.

    Step payloads may hold locks or client handles. When ``deepcopy`` fails,
    containers are copied item by item and any item it rejects is kept by
    reference.
    """
    try:
        return copy.deepcopy(value)
    except (TypeError, ValueError, copy.Error):
        pass
    if isinstance(value, dict):
        return {key: copy_value(item) for key, item in value.items()}
    if isinstance(value, list):
        return [copy_value(item) for item in value]
    if isinstance(value, tuple):
        return tuple(copy_value(item) for item in value)
    return value


@dataclass(frozen=True)
class Checkpoint:
    """One entry of the append-only history.

    Attributes:
        step_id: Step whose execution produced this checkpoint
        result: The step's result
        timestamp: When the checkpoint was recorded
        snapshot: Read-only copy of the restorable context fields
    """

    step_id: str
    result: StepResult
    timestamp: datetime
    snapshot: MappingProxyType

    def to_dict(self) -> dict[str, Any]:
        return {
            "step_id": self.step_id,
            "status": self.result.status.value,
            "success": self.result.success,
            "timestamp": self.timestamp.isoformat(),
        }


class State:
    """Append-only checkpoint history of a workflow context."""

    def __init__(self) -> None:
        self._history: list[Checkpoint] = []

    @property
    def history(self) -> tuple[Checkpoint, ...]:
        """Read-only view of all checkpoints in recording order."""
        return tuple(self._history)

    def append(self, checkpoint: Checkpoint) -> int:
        """Append a checkpoint and return its index."""
        self._history.append(checkpoint)
        return len(self._history) - 1

    def get(self, index: int) -> Checkpoint:
        """Checkpoint at ``index``.

        Raises:
            IndexError: If ``index`` is negative or past the end
        """
        if index < 0 or index >= len(self._history):
            raise IndexError(f"Checkpoint index {index} out of range (history length {len(self._history)})")
        return self._history[index]

    def steps_after(self, index: int) -> list[Checkpoint]:
        """Checkpoints recorded after ``index``, oldest first."""
        return self._history[index + 1 :]

    @property
    def last(self) -> Checkpoint | None:
        return self._history[-1] if self._history else None

    def __len__(self) -> int:
        return len(self._history)

    def __iter__(self) -> Iterator[Checkpoint]:
        return iter(tuple(self._history))


@dataclass
class WorkflowContext:
    """Context passed through one workflow execution.

    Attributes:
        task: The task being executed (immutable)
        project_path: Repository the workflow operates on
        automation_level: Effective automation level
        branch_name: Workflow branch, set once the branch exists
        base_branch: Branch the workflow branch starts from and merges into
        reviewers: Reviewers requested on the pull request
        outputs: Key-value store of step outputs
        state: Append-only checkpoint history
        workflow_id: Unique id of this execution
        created_at: Creation time, also used in the branch name
        user_id: User on whose behalf the workflow runs
    """

    task: Task
    project_path: str | Path
    automation_level: AutomationLevel = AutomationLevel.MANUAL
    branch_name: str | None = None
    base_branch: str = "main"
    reviewers: list[str] = field(default_factory=list)
    outputs: dict[str, Any] = field(default_factory=dict)
    state: State = field(default_factory=State)
    workflow_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    user_id: str | None = None

    def get_output(self, key: str, default: Any = None) -> Any:
        """Get output recorded by a previous step."""
        return self.outputs.get(key, default)

    def set_output(self, key: str, value: Any) -> None:
        """Record a step output."""
        self.outputs[key] = value

    def has_output(self, key: str) -> bool:
        return key in self.outputs

    def snapshot(self) -> dict[str, Any]:
        """Copy of the restorable fields."""
        return {name: copy_value(getattr(self, name)) for name in RESTORABLE_FIELDS}

    def checkpoint(self, step_id: str, result: StepResult) -> int:
        """Record a checkpoint for ``step_id`` and return its index."""
        entry = Checkpoint(
            step_id=step_id,
            result=result,
            timestamp=datetime.now(UTC),
            snapshot=MappingProxyType(self.snapshot()),
        )
        return self.state.append(entry)

    def restore_checkpoint(self, index: int) -> Checkpoint:
        """Restore the restorable fields to the values recorded at ``index``.

        History is read, never modified.

        Raises:
            IndexError: If ``index`` does not exist
        """
        entry = self.state.get(index)
        for name in RESTORABLE_FIELDS:
            setattr(self, name, copy_value(entry.snapshot[name]))
        return entry

    def audit_snapshot(self) -> dict[str, Any]:
        """Full, JSON-friendly picture of the context for audit records."""
        return {
            "workflow_id": self.workflow_id,
            "task": self.task.to_dict(),
            "project_path": str(self.project_path),
            "branch_name": self.branch_name,
            "base_branch": self.base_branch,
            "automation_level": self.automation_level.value,
            "reviewers": list(self.reviewers),
            "output_keys": sorted(self.outputs),
            "history": [entry.to_dict() for entry in self.state.history],
            "created_at": self.created_at.isoformat(),
        }
