"""Tests for pull request creation."""

import pytest

from git_conductor.config.settings import PullRequestConfig
from git_conductor.enums import AutomationLevel
from git_conductor.exceptions import GitOperationError
from git_conductor.git.pull_requests import (
    PullRequestData,
    PullRequestManager,
    pull_request_description,
    pull_request_labels,
    pull_request_title,
)
from git_conductor.models.domain import StepResult, WorkflowExecutionResult

SOURCE = "feature/feature-add-user-authentication"


@pytest.fixture
def pr_manager(fake_git):
    return PullRequestManager(fake_git, PullRequestConfig(max_attempts=3, backoff_factor=0))


@pytest.fixture
def pr_data():
    return PullRequestData(
        title="[FEATURE] Add user authentication",
        source_branch=SOURCE,
        target_branch="main",
        labels=["type-feature", "automated"],
        reviewers=["alice"],
    )


@pytest.fixture
def existing_branch(fake_git, project_dir):
    fake_git.branches[str(project_dir)] = {SOURCE}


def test_title_and_labels(feature_task):
    assert pull_request_title(feature_task) == "[FEATURE] Add user authentication"
    assert pull_request_labels(feature_task, ("fast-track", "automated")) == [
        "type-feature",
        "automated",
        "priority-normal",
        "tag-auth",
        "fast-track",
    ]


def test_description_includes_execution_summary(feature_task):
    execution = WorkflowExecutionResult(
        success=True,
        step_results={
            "a": StepResult(step_id="a", success=True),
            "b": StepResult.skipped("b"),
        },
        duration=1.5,
    )

    description = pull_request_description(feature_task, execution)

    assert "## Task: Add user authentication" in description
    assert "**Task ID:** task-0001-feature" in description
    assert "Implement login and logout endpoints" in description
    assert "- Steps: 2 (1 succeeded, 0 failed, 1 skipped)" in description
    assert "## Review Checklist" in description


def test_draft_only_at_manual(pr_manager, feature_task):
    manual = pr_manager.build_pull_request_data(feature_task, SOURCE, "main", AutomationLevel.MANUAL)
    assisted = pr_manager.build_pull_request_data(feature_task, SOURCE, "main", AutomationLevel.ASSISTED)

    assert manual.draft
    assert not assisted.draft


@pytest.mark.asyncio
async def test_full_auto_skips_pull_request(pr_manager, pr_data, fake_git, project_dir):
    """Test that full_auto never calls the provider."""
    result = await pr_manager.create_pull_request(project_dir, pr_data, AutomationLevel.FULL_AUTO)

    assert result.success
    assert result.skipped
    assert result.reason == "full_auto_mode"
    assert fake_git.calls == []


@pytest.mark.asyncio
async def test_create_pull_request(pr_manager, pr_data, fake_git, project_dir, existing_branch):
    result = await pr_manager.create_pull_request(project_dir, pr_data, AutomationLevel.SEMI_AUTO)

    assert result.success
    assert result.pr_id == "1"
    assert result.data["url"] == "https://git.example.com/pulls/1"
    assert result.data["reviewers"] == ["alice"]
    call = fake_git.calls[0][1]
    assert call["source"] == SOURCE and call["target"] == "main"
    assert call["meta"]["title"] == "[FEATURE] Add user authentication"
    assert call["meta"]["labels"] == ["type-feature", "automated"]


@pytest.mark.asyncio
async def test_same_source_and_target(pr_manager, fake_git, project_dir):
    data = PullRequestData(title="t", source_branch="main", target_branch="main")

    result = await pr_manager.create_pull_request(project_dir, data, AutomationLevel.SEMI_AUTO)

    assert not result.success
    assert "both 'main'" in result.error
    assert fake_git.calls == []


@pytest.mark.asyncio
async def test_missing_source_branch(pr_manager, pr_data, fake_git, project_dir):
    result = await pr_manager.create_pull_request(project_dir, pr_data, AutomationLevel.ASSISTED)

    assert not result.success
    assert "does not exist" in result.error
    assert fake_git.calls == []


@pytest.mark.asyncio
async def test_transient_errors_are_retried(pr_manager, pr_data, fake_git, project_dir, existing_branch):
    """Test that connection errors are retried until the provider succeeds."""
    fake_git.pr_errors = [ConnectionError("reset"), TimeoutError("slow")]

    result = await pr_manager.create_pull_request(project_dir, pr_data, AutomationLevel.SEMI_AUTO)

    assert result.success
    assert fake_git.call_names() == ["create_pull_request"] * 3


@pytest.mark.asyncio
async def test_retries_exhausted(pr_manager, pr_data, fake_git, project_dir, existing_branch):
    fake_git.pr_errors = [ConnectionError("down")] * 3

    result = await pr_manager.create_pull_request(project_dir, pr_data, AutomationLevel.SEMI_AUTO)

    assert not result.success
    assert result.error == "Pull request creation failed: down"
    assert len(fake_git.calls) == 3


@pytest.mark.asyncio
async def test_provider_rejection_is_not_retried(pr_manager, pr_data, fake_git, project_dir, existing_branch):
    fake_git.pr_errors = [GitOperationError("Pull request already exists", operation="create_pull_request")]

    result = await pr_manager.create_pull_request(project_dir, pr_data, AutomationLevel.SEMI_AUTO)

    assert not result.success
    assert "already exists" in result.error
    assert len(fake_git.calls) == 1
