"""Custom exception hierarchy for git-conductor.

This module defines a structured exception hierarchy that lets callers tell
pre-flight validation problems apart from step failures, git conflicts and
review gate rejections.

Exception Hierarchy:
    GitConductorError (base)
    ├── ConfigurationError
    ├── ValidationError
    ├── StepExecutionError
    │   └── StepTimeoutError (also a builtin TimeoutError)
    ├── GitOperationError
    │   └── PullRequestError
    ├── ReviewGateError
    ├── MergeConfirmationError
    ├── WorkflowError
    │   └── WorkflowCancelledError
    └── ExternalServiceError

Example Usage:
    >>> from git_conductor.exceptions import GitOperationError
    >>> try:
    ...     await git.merge(path, source, target, "squash", {})
    ... except RuntimeError as e:
    ...     raise GitOperationError(f"Merge failed: {e}", operation="merge") from e
"""

from typing import Any


class GitConductorError(Exception):
    """Base exception for all git-conductor errors.

    Attributes:
        message: Human-readable error description
    """

    def __init__(self, message: str) -> None:
        """Initialize exception.

        Args:
            message: Error message
        """
        self.message = message
        super().__init__(message)


class ConfigurationError(GitConductorError):
    """Configuration-related errors.

    Examples:
        - Configuration file not found
        - Invalid YAML syntax
        - Missing environment variable referenced by the config
    """

    pass


class ValidationError(GitConductorError):
    """Pre-flight validation failed before any git mutation.

    Attributes:
        errors: Individual validation messages
    """

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        self.errors = list(errors or [])
        full_message = message
        if self.errors:
            full_message = f"{message}: {'; '.join(self.errors)}"
        super().__init__(full_message)
        self.message = message


class StepExecutionError(GitConductorError):
    """A workflow step failed.

    Step errors normally live inside a StepResult. They are raised only when
    the failing step is critical and the engine aborts the sequence.

    Attributes:
        step_id: Identifier of the failing step
        critical: Whether the step aborts the workflow
    """

    def __init__(self, message: str, step_id: str | None = None, critical: bool = True) -> None:
        self.step_id = step_id
        self.critical = critical
        full_message = message if step_id is None else f"{message} (step: {step_id})"
        super().__init__(full_message)
        self.message = message


class StepTimeoutError(StepExecutionError, TimeoutError):
    """A step exceeded its time budget and was cancelled.

    Timeouts are always treated as critical failures.

    Attributes:
        timeout_seconds: The budget that was exceeded
    """

    def __init__(self, message: str, step_id: str | None = None, timeout_seconds: float | None = None) -> None:
        self.timeout_seconds = timeout_seconds
        if timeout_seconds is not None and "timeout" not in message.lower():
            message = f"{message} (timeout: {timeout_seconds}s)"
        super().__init__(message, step_id=step_id, critical=True)


class GitOperationError(GitConductorError):
    """Git operation errors raised by or around the GitService.

    Merge failures are never retried automatically. Conflict details are
    surfaced so a human can resolve them and resume the workflow.

    Attributes:
        operation: Name of the git operation (create_branch, merge, ...)
        conflicts: Conflicting paths reported by the provider
    """

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        conflicts: list[str] | None = None,
    ) -> None:
        self.operation = operation
        self.conflicts = list(conflicts or [])
        full_message = message
        if self.conflicts:
            full_message = f"{message} (conflicts: {', '.join(self.conflicts)})"
        super().__init__(full_message)
        self.message = message

    @property
    def is_conflict(self) -> bool:
        """True when the provider reported merge conflicts."""
        return bool(self.conflicts)


class PullRequestError(GitOperationError):
    """Pull request creation failed or was rejected by validation."""

    pass


class ReviewGateError(GitConductorError):
    """Review score is below the merge threshold.

    Attributes:
        score: Aggregate review score
        threshold: Minimum score required to merge
    """

    def __init__(self, message: str, score: float | None = None, threshold: float | None = None) -> None:
        self.score = score
        self.threshold = threshold
        full_message = message
        if score is not None and threshold is not None:
            full_message = f"{message} (score: {score:.1f}, threshold: {threshold:.1f})"
        super().__init__(full_message)
        self.message = message


class MergeConfirmationError(GitConductorError):
    """Merge requires an explicit confirmation that was not given."""

    pass


class WorkflowError(GitConductorError):
    """Workflow orchestration errors.

    Attributes:
        stage: Workflow stage where the error occurred
        recoverable: Whether the workflow can resume from that stage
    """

    def __init__(self, message: str, stage: str | None = None, recoverable: bool = False) -> None:
        self.stage = stage
        self.recoverable = recoverable
        super().__init__(message)


class WorkflowCancelledError(WorkflowError):
    """The workflow was cancelled by its caller."""

    def __init__(self, message: str = "Workflow cancelled", stage: str | None = None) -> None:
        super().__init__(message, stage=stage, recoverable=False)


class ExternalServiceError(GitConductorError):
    """A collaborator (git provider, analyzer, preference store) failed.

    Attributes:
        service: Name of the collaborator
        details: Optional structured details returned by the collaborator
    """

    def __init__(self, message: str, service: str | None = None, details: dict[str, Any] | None = None) -> None:
        self.service = service
        self.details = details or {}
        full_message = message if service is None else f"{message} (service: {service})"
        super().__init__(full_message)
        self.message = message
