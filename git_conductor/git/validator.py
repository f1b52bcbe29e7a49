"""Pre-flight validation of git workflows.

Runs before any git-mutating call. Any error aborts the workflow while the
repository is still untouched.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import aiofiles.os
import structlog

from git_conductor.config.settings import BranchingConfig
from git_conductor.git.branching import RESERVED_BRANCH_NAMES, validate_branch_name
from git_conductor.models.domain import Task

log = structlog.get_logger(__name__)


@dataclass
class ValidationResult:
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"is_valid": self.is_valid, "errors": list(self.errors), "warnings": list(self.warnings)}


class GitWorkflowValidator:
    """Checks task completeness, project path and branch names."""

    def __init__(self, config: BranchingConfig | None = None) -> None:
        self.config = config or BranchingConfig()

    async def validate(
        self,
        task: Task,
        project_path: str | Path,
        branch_name: str | None = None,
        base_branch: str | None = None,
    ) -> ValidationResult:
        """Validate everything a workflow needs before touching the repository.

        Args:
            task: Task to execute
            project_path: Repository path
            branch_name: Workflow branch about to be created
            base_branch: Branch the workflow branch starts from

        Returns:
            ValidationResult; ``is_valid`` is False when any error was found
        """
        errors: list[str] = []
        warnings: list[str] = []

        task_errors, task_warnings = self.validate_task(task)
        errors += task_errors
        warnings += task_warnings

        path_errors, path_warnings = await self.validate_project_path(project_path)
        errors += path_errors
        warnings += path_warnings

        if branch_name is not None:
            errors += validate_branch_name(branch_name, self.config.max_length)
        if base_branch is not None:
            errors += self.validate_base_branch(base_branch)
        if branch_name and base_branch and branch_name == base_branch:
            errors.append("Workflow branch must differ from the base branch")

        result = ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)
        if result.is_valid:
            log.debug("workflow_validated", task_id=task.id, warnings=len(warnings))
        else:
            log.warning("workflow_validation_failed", task_id=task.id, errors=errors)
        return result

    def validate_task(self, task: Task) -> tuple[list[str], list[str]]:
        errors: list[str] = []
        warnings: list[str] = []
        if not task.id or not str(task.id).strip():
            errors.append("Task id is required")
        if not task.title or not task.title.strip():
            errors.append("Task title is required")
        if not task.type_name:
            errors.append("Task type is required")
        elif not task.is_known_type:
            warnings.append(f"Unknown task type '{task.type_name}' runs at manual automation")
        if not task.description:
            warnings.append("Task has no description")
        return errors, warnings

    async def validate_project_path(self, project_path: str | Path) -> tuple[list[str], list[str]]:
        """Check that the project path exists and is a readable, writable directory."""
        if not project_path or not str(project_path).strip():
            return ["Project path is required"], []

        path = Path(project_path).expanduser()
        if not await aiofiles.os.path.exists(path):
            return [f"Project path does not exist: {path}"], []
        if not await aiofiles.os.path.isdir(path):
            return [f"Project path is not a directory: {path}"], []
        if not os.access(path, os.R_OK | os.W_OK):
            return [f"Project path is not readable and writable: {path}"], []

        warnings: list[str] = []
        if not await aiofiles.os.path.exists(path / ".git"):
            warnings.append(f"Project path has no .git directory: {path}")
        return [], warnings

    def validate_base_branch(self, base_branch: str) -> list[str]:
        """Base branches may use reserved names such as ``main``."""
        if not base_branch:
            return ["Base branch is required"]
        return [
            error
            for error in validate_branch_name(base_branch, self.config.max_length)
            if base_branch.lower() not in RESERVED_BRANCH_NAMES or "reserved" not in error
        ]
