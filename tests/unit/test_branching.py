"""Tests for branch strategies and branch name generation."""

from datetime import UTC, datetime

import pytest

from git_conductor.config.settings import BranchingConfig
from git_conductor.engine.context import WorkflowContext
from git_conductor.enums import TaskType
from git_conductor.exceptions import ValidationError
from git_conductor.git.branching import (
    BranchStrategyRegistry,
    FeatureBranchStrategy,
    HotfixBranchStrategy,
    ReleaseBranchStrategy,
    sanitize_title,
    validate_branch_name,
)

CREATED_AT = datetime(2024, 5, 1, 12, 30, 45, 123456, tzinfo=UTC)
TIMESTAMP = "20240501-123045123456"


def make_context(task, project_dir):
    return WorkflowContext(task=task, project_path=project_dir, created_at=CREATED_AT)


@pytest.fixture
def registry():
    return BranchStrategyRegistry()


def test_sanitize_title():
    assert sanitize_title("Fix: Login redirect (SSO)!") == "fix-login-redirect-sso"
    assert sanitize_title("   ") == "task"
    assert sanitize_title("a" * 50, max_length=10) == "a" * 10
    assert sanitize_title("abc def ghi", max_length=4) == "abc"


def test_feature_branch_name(registry, feature_task, project_dir):
    """Test the full branch name format."""
    strategy = registry.get_strategy(feature_task.type)
    name = strategy.generate_branch_name(feature_task, make_context(feature_task, project_dir))

    assert name == f"feature/feature-add-user-authentication-task-000-{TIMESTAMP}"
    assert validate_branch_name(name) == []


def test_branch_name_is_deterministic(registry, feature_task, project_dir):
    strategy = registry.get_strategy(feature_task.type)
    context = make_context(feature_task, project_dir)

    assert strategy.generate_branch_name(feature_task, context) == strategy.generate_branch_name(feature_task, context)


def test_branch_name_differs_per_creation_time(registry, feature_task, project_dir):
    strategy = registry.get_strategy(feature_task.type)
    first = make_context(feature_task, project_dir)
    second = WorkflowContext(
        task=feature_task,
        project_path=project_dir,
        created_at=CREATED_AT.replace(microsecond=123457),
    )

    assert strategy.generate_branch_name(feature_task, first) != strategy.generate_branch_name(feature_task, second)


def test_long_titles_are_shortened(feature_task, project_dir):
    """Test that the title slug is cut so the name fits the length limit."""
    registry = BranchStrategyRegistry(BranchingConfig(max_length=60))

    name = registry.get_strategy("feature").generate_branch_name(feature_task, make_context(feature_task, project_dir))

    assert len(name) <= 60
    assert name.endswith(f"task-000-{TIMESTAMP}")
    assert name.startswith("feature/feature-add-user")


@pytest.mark.parametrize(
    "task_type,strategy_name",
    [
        ("bug", "hotfix"),
        ("hotfix", "hotfix"),
        ("security", "hotfix"),
        ("release", "release"),
        ("feature", "feature"),
        ("refactor", "feature"),
        ("documentation", "feature"),
        ("chore", "feature"),
    ],
)
def test_strategy_mapping(registry, task_type, strategy_name):
    assert registry.get_strategy(task_type).name == strategy_name


def test_hotfix_flags(registry, task_factory, project_dir):
    task = task_factory("bug", title="Fix login redirect")
    strategy = registry.get_strategy(TaskType.BUG)

    name = strategy.generate_branch_name(task, make_context(task, project_dir))

    assert isinstance(strategy, HotfixBranchStrategy)
    assert strategy.protected and strategy.fast_track
    assert "fast-track" in strategy.labels
    assert name.startswith("hotfix/bug-fix-login-redirect-")


def test_release_branch_uses_version(registry, task_factory, project_dir):
    """Test that release branches carry the version and produce a tag."""
    task = task_factory("release", title="Spring release", metadata={"version": "v1.2.0"})
    strategy = registry.get_strategy("release")

    name = strategy.generate_branch_name(task, make_context(task, project_dir))

    assert name.startswith("release/v1.2.0-spring-release-")
    assert strategy.tag_for(task) == "v1.2.0"
    assert validate_branch_name(name) == []


def test_release_build_metadata(task_factory):
    task = task_factory("release", metadata={"release_version": "2.0.0-rc.1+build.5"})
    strategy = ReleaseBranchStrategy("release")

    assert strategy.type_segment(task) == "v2.0.0-rc.1-build.5"
    assert strategy.tag_for(task) == "v2.0.0-rc.1+build.5"


def test_release_without_version(task_factory):
    task = task_factory("release")
    strategy = ReleaseBranchStrategy("release")

    assert strategy.type_segment(task) == "release"
    assert strategy.tag_for(task) is None


def test_release_invalid_version(task_factory, project_dir):
    task = task_factory("release", metadata={"version": "1.2"})

    with pytest.raises(ValidationError, match="Invalid release version"):
        ReleaseBranchStrategy("release").generate_branch_name(task, make_context(task, project_dir))


@pytest.mark.parametrize(
    "name",
    ["main", "feature/../x", "bad name", "feature//x", "/feature", "feature/x.lock", "feature/.hidden", "a" * 101],
)
def test_invalid_branch_names(name):
    assert validate_branch_name(name)


def test_valid_branch_name():
    assert validate_branch_name("feature/add-login-1234") == []
    assert validate_branch_name("") == ["Branch name is empty"]


def test_custom_strategy_registration(task_factory, project_dir):
    class ChoreBranchStrategy(FeatureBranchStrategy):
        name = "chore"

    registry = BranchStrategyRegistry()
    registry.register(ChoreBranchStrategy("chore"), task_types=("chore",))
    task = task_factory("chore", title="Bump dependencies")

    name = registry.get_strategy("chore").generate_branch_name(task, make_context(task, project_dir))

    assert name.startswith("chore/chore-bump-dependencies-")
    assert "chore" in registry.names


def test_strategy_for_branch(registry):
    assert registry.strategy_for_branch("hotfix/bug-x").name == "hotfix"
    assert registry.strategy_for_branch("experiments/x") is None


def test_registries_are_independent():
    custom = BranchStrategyRegistry(BranchingConfig(hotfix_prefix="fix"))

    assert custom.get_strategy("security").prefix == "fix"
    assert BranchStrategyRegistry().get_strategy("security").prefix == "hotfix"
