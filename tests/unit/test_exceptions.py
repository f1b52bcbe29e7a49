"""Tests for the exception hierarchy."""

import pytest

from git_conductor.exceptions import (
    ConfigurationError,
    ExternalServiceError,
    GitConductorError,
    GitOperationError,
    MergeConfirmationError,
    PullRequestError,
    ReviewGateError,
    StepExecutionError,
    StepTimeoutError,
    ValidationError,
    WorkflowCancelledError,
    WorkflowError,
)


@pytest.mark.parametrize(
    "error_class",
    [
        ConfigurationError,
        ValidationError,
        StepExecutionError,
        GitOperationError,
        ReviewGateError,
        MergeConfirmationError,
        WorkflowError,
        ExternalServiceError,
    ],
)
def test_all_derive_from_base(error_class):
    error = error_class("boom")

    assert isinstance(error, GitConductorError)
    assert error.message == "boom"


def test_validation_error_lists_errors():
    error = ValidationError("Workflow validation failed", ["Task title is required", "Base branch is required"])

    assert error.message == "Workflow validation failed"
    assert error.errors == ["Task title is required", "Base branch is required"]
    assert str(error) == "Workflow validation failed: Task title is required; Base branch is required"


def test_step_execution_error():
    error = StepExecutionError("Step failed", step_id="tests", critical=False)

    assert str(error) == "Step failed (step: tests)"
    assert error.message == "Step failed"
    assert not error.critical


def test_step_timeout_is_timeout_error():
    """Test that timeouts can be caught as builtin TimeoutError and are critical."""
    error = StepTimeoutError("Step exceeded its time budget", "tests", 900)

    assert isinstance(error, TimeoutError)
    assert isinstance(error, StepExecutionError)
    assert error.critical
    assert error.timeout_seconds == 900
    assert "(timeout: 900s)" in str(error)


def test_git_operation_conflicts():
    error = GitOperationError("Merge failed", operation="merge", conflicts=["a.py", "b.py"])

    assert error.is_conflict
    assert error.operation == "merge"
    assert str(error) == "Merge failed (conflicts: a.py, b.py)"
    assert not GitOperationError("Push failed").is_conflict


def test_pull_request_error_is_git_error():
    assert isinstance(PullRequestError("rejected"), GitOperationError)


def test_review_gate_error():
    error = ReviewGateError("Review score too low", score=55.0, threshold=70.0)

    assert error.score == 55.0
    assert str(error) == "Review score too low (score: 55.0, threshold: 70.0)"
    assert str(ReviewGateError("No review score")) == "No review score"


def test_workflow_errors():
    error = WorkflowError("Merge blocked", stage="merging", recoverable=True)
    cancelled = WorkflowCancelledError(stage="executing")

    assert error.recoverable
    assert error.stage == "merging"
    assert isinstance(cancelled, WorkflowError)
    assert cancelled.message == "Workflow cancelled"
    assert not cancelled.recoverable


def test_external_service_error():
    error = ExternalServiceError("Analyzer unavailable", service="analyzer", details={"status": 503})

    assert str(error) == "Analyzer unavailable (service: analyzer)"
    assert error.details == {"status": 503}
