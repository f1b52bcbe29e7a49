"""Tests for merge strategies and their selection."""

import pytest

from git_conductor.config.settings import MergeConfig, ReviewConfig
from git_conductor.enums import AutomationLevel, MergeMethod, MergeMode, TaskType
from git_conductor.exceptions import GitOperationError, MergeConfirmationError, ReviewGateError
from git_conductor.git.merging import (
    ConfirmedMergeStrategy,
    ImmediateMergeStrategy,
    ManualMergeStrategy,
    MergeStrategyRegistry,
    merge_method_for,
)

SOURCE = "feature/feature-add-login"


@pytest.mark.parametrize(
    "task_type,method",
    [
        (TaskType.FEATURE, MergeMethod.SQUASH),
        ("refactor", MergeMethod.SQUASH),
        ("bug", MergeMethod.MERGE),
        ("release", MergeMethod.MERGE),
        ("analysis", MergeMethod.FAST_FORWARD),
        ("chore", MergeMethod.SQUASH),
    ],
)
def test_merge_method_for(task_type, method):
    assert merge_method_for(task_type) == method


def test_merge_method_overrides():
    assert merge_method_for("feature", {"feature": MergeMethod.REBASE}) == MergeMethod.REBASE


@pytest.fixture
def registry(fake_git):
    return MergeStrategyRegistry(fake_git)


@pytest.mark.parametrize(
    "level,strategy_class,gated",
    [
        (AutomationLevel.MANUAL, ManualMergeStrategy, True),
        (AutomationLevel.ASSISTED, ConfirmedMergeStrategy, True),
        (AutomationLevel.SEMI_AUTO, ConfirmedMergeStrategy, True),
        (AutomationLevel.FULL_AUTO, ImmediateMergeStrategy, False),
    ],
)
def test_strategy_per_level(registry, level, strategy_class, gated):
    strategy = registry.get_strategy("feature", level)

    assert type(strategy) is strategy_class
    assert strategy.gate_on_score is gated
    assert strategy.method == MergeMethod.SQUASH


def test_adaptive_selection(registry):
    """Test that adaptive uses the resolved level, and manual without one."""
    assert isinstance(registry.get_strategy("bug", AutomationLevel.ADAPTIVE), ManualMergeStrategy)

    resolved = registry.get_strategy("bug", AutomationLevel.ADAPTIVE, AutomationLevel.FULL_AUTO)

    assert isinstance(resolved, ImmediateMergeStrategy)
    assert resolved.method == MergeMethod.MERGE


def test_gate_full_auto_setting(fake_git):
    registry = MergeStrategyRegistry(fake_git, ReviewConfig(gate_full_auto=True, min_score_threshold=80))

    strategy = registry.get_strategy("feature", AutomationLevel.FULL_AUTO)

    assert strategy.gate_on_score
    assert strategy.threshold == 80


def test_strategy_selection_has_no_side_effects(registry, fake_git):
    registry.get_strategy("feature", AutomationLevel.FULL_AUTO)

    assert fake_git.calls == []


@pytest.mark.asyncio
async def test_manual_merge_never_calls_git(registry, fake_git, project_dir):
    strategy = registry.get_strategy("feature", AutomationLevel.MANUAL)

    result = await strategy.merge(project_dir, SOURCE, "main", {"review_score": 99})

    assert result.success
    assert result.skipped
    assert result.reason == "manual_merge_required"
    assert strategy.merge_mode == MergeMode.HUMAN
    assert fake_git.calls == []


@pytest.mark.asyncio
async def test_confirmed_merge_below_threshold(registry, fake_git, project_dir):
    """Test that a low score blocks the merge even when confirmed."""
    strategy = registry.get_strategy("feature", AutomationLevel.SEMI_AUTO)

    with pytest.raises(ReviewGateError) as exc_info:
        await strategy.merge(project_dir, SOURCE, "main", {"review_score": 50, "confirmed": True})

    assert exc_info.value.score == 50
    assert exc_info.value.threshold == 70
    assert fake_git.calls == []


@pytest.mark.asyncio
async def test_confirmed_merge_without_score(registry, project_dir):
    strategy = registry.get_strategy("feature", AutomationLevel.ASSISTED)

    with pytest.raises(ReviewGateError, match="No review score"):
        await strategy.merge(project_dir, SOURCE, "main", {"confirmed": True})


@pytest.mark.asyncio
async def test_confirmed_merge_requires_confirmation(registry, fake_git, project_dir):
    strategy = registry.get_strategy("feature", AutomationLevel.SEMI_AUTO)

    with pytest.raises(MergeConfirmationError):
        await strategy.merge(project_dir, SOURCE, "main", {"review_score": 90})

    assert fake_git.calls == []


@pytest.mark.asyncio
async def test_confirmed_merge_succeeds(registry, fake_git, project_dir):
    """Test a confirmed merge passes the method and options and deletes the source branch."""
    strategy = registry.get_strategy("release", AutomationLevel.SEMI_AUTO)

    result = await strategy.merge(
        project_dir,
        SOURCE,
        "main",
        {"review_score": 90, "confirmed": True, "tag": "v1.0.0", "commit_message": "Release 1.0.0"},
    )

    assert result.success
    assert result.method == MergeMethod.MERGE
    assert result.data["source_branch_deleted"] is True
    assert fake_git.call_names() == ["merge", "delete_branch"]
    merge_args = fake_git.calls[0][1]
    assert merge_args["method"] == "merge"
    assert merge_args["opts"] == {"tag": "v1.0.0", "commit_message": "Release 1.0.0"}


@pytest.mark.asyncio
async def test_source_branch_kept_when_configured(fake_git, project_dir):
    registry = MergeStrategyRegistry(fake_git, merge_config=MergeConfig(delete_source_branch=False))

    result = await registry.get_strategy("feature", AutomationLevel.FULL_AUTO).merge(project_dir, SOURCE, "main")

    assert result.success
    assert fake_git.call_names() == ["merge"]


@pytest.mark.asyncio
async def test_immediate_merge_ignores_score(registry, fake_git, project_dir):
    strategy = registry.get_strategy("feature", AutomationLevel.FULL_AUTO)

    result = await strategy.merge(project_dir, SOURCE, "main", {"review_score": 10})

    assert result.success
    assert "merge" in fake_git.call_names()


@pytest.mark.asyncio
async def test_conflict_reply_is_failed_result(registry, fake_git, project_dir):
    """Test that conflicts come back as a failed result and are not retried."""
    fake_git.merge_conflicts = ["src/app.py"]
    strategy = registry.get_strategy("feature", AutomationLevel.FULL_AUTO)

    result = await strategy.merge(project_dir, SOURCE, "main")

    assert not result.success
    assert result.conflicts == ["src/app.py"]
    assert fake_git.call_names() == ["merge"]


@pytest.mark.asyncio
async def test_conflict_error_is_failed_result(registry, fake_git, project_dir):
    fake_git.merge_error = GitOperationError("Merge conflict", operation="merge", conflicts=["README.md"])
    strategy = registry.get_strategy("feature", AutomationLevel.FULL_AUTO)

    result = await strategy.merge(project_dir, SOURCE, "main")

    assert not result.success
    assert result.conflicts == ["README.md"]
    assert result.error == "Merge conflict"


@pytest.mark.asyncio
async def test_provider_errors_propagate(registry, fake_git, project_dir):
    strategy = registry.get_strategy("feature", AutomationLevel.FULL_AUTO)

    fake_git.merge_error = GitOperationError("Branch protected", operation="merge")
    with pytest.raises(GitOperationError, match="Branch protected"):
        await strategy.merge(project_dir, SOURCE, "main")

    fake_git.merge_error = RuntimeError("socket closed")
    with pytest.raises(GitOperationError, match="socket closed"):
        await strategy.merge(project_dir, SOURCE, "main")
