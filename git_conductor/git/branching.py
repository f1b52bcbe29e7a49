"""
Branch strategies.

A branch strategy is a pure policy object: it turns a task and its context
into the workflow branch name and exposes the flags the rest of the workflow
needs (protection, fast-tracking, pull request labels).

Strategy Mapping:
    bug, hotfix, security  -> HotfixBranchStrategy   (protected, fast-tracked)
    release                -> ReleaseBranchStrategy  (tag-aware)
    everything else        -> FeatureBranchStrategy

Branch Name Format::

    {prefix}/{task_type}-{title_slug}-{task_id[:8]}-{YYYYmmdd-HHMMSSffffff}

The timestamp is the context's creation time, so the name is a deterministic
function of its inputs and unique per task id and creation time. Release
branches replace the task type segment with ``v{version}`` when the task
metadata carries a semantic version.
"""

import re
from abc import ABC
from collections.abc import Mapping
from types import MappingProxyType

import structlog

from git_conductor.config.settings import BranchingConfig
from git_conductor.engine.context import WorkflowContext
from git_conductor.enums import TaskType
from git_conductor.exceptions import ValidationError
from git_conductor.models.domain import Task

log = structlog.get_logger(__name__)

SEMVER_PATTERN = re.compile(r"^\d+\.\d+\.\d+(-[a-zA-Z0-9.-]+)?(\+[a-zA-Z0-9.-]+)?$")
ALLOWED_CHARACTERS = re.compile(r"^[a-zA-Z0-9\-_/.]+$")
RESERVED_BRANCH_NAMES = frozenset({"main", "master", "develop", "staging", "production", "head"})


def sanitize_title(title: str, max_length: int = 40) -> str:
    """Lowercase slug of ``title`` made of ``[a-z0-9-]``.

    Example:
        >>> sanitize_title("Fix: Login redirect (SSO)!")
        'fix-login-redirect-sso'
    """
    slug = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")
    slug = slug[:max_length].rstrip("-")
    return slug or "task"


def validate_branch_name(name: str, max_length: int = 100) -> list[str]:
    """Check ``name`` against git ref rules and local conventions.

    Returns:
        Error messages; empty when the name is legal
    """
    errors: list[str] = []
    if not name:
        return ["Branch name is empty"]
    if len(name) > max_length:
        errors.append(f"Branch name exceeds {max_length} characters")
    if not ALLOWED_CHARACTERS.match(name):
        errors.append("Branch name contains characters outside [a-zA-Z0-9-_/.]")
    if name.lower() in RESERVED_BRANCH_NAMES:
        errors.append(f"Branch name '{name}' is reserved")
    if name.startswith(("/", "-", ".")) or name.endswith(("/", ".")):
        errors.append("Branch name must not start or end with '/', '.' or start with '-'")
    if ".." in name or "//" in name or "@{" in name:
        errors.append("Branch name must not contain '..', '//' or '@{'")
    if name.endswith(".lock") or any(part.startswith(".") for part in name.split("/")):
        errors.append("Branch name components must not start with '.' or end with '.lock'")
    return errors


def format_timestamp(context: WorkflowContext) -> str:
    created = context.created_at
    return f"{created:%Y%m%d-%H%M%S}{created.microsecond:06d}"


class BranchStrategy(ABC):
    """Base class of the branch strategies.

    Attributes:
        name: Registry key of the strategy
        prefix: First path component of generated names
        protected: Whether the branch should be protected on the provider
        fast_track: Whether reviews are expedited
        labels: Extra labels attached to pull requests from this branch
    """

    name: str = "base"
    protected: bool = False
    fast_track: bool = False
    labels: tuple[str, ...] = ()

    def __init__(self, prefix: str, max_length: int = 100, max_title_length: int = 40) -> None:
        self.prefix = prefix.strip("/")
        self.max_length = max_length
        self.max_title_length = max_title_length

    def type_segment(self, task: Task) -> str:
        return sanitize_title(task.type_name, 20)

    def generate_branch_name(self, task: Task, context: WorkflowContext) -> str:
        """Deterministic branch name for ``task`` created at ``context.created_at``.

        The title slug is shortened when the full name would exceed
        ``max_length``; the unique suffix is never cut.

        Raises:
            ValidationError: If no legal name can be produced
        """
        head = f"{self.prefix}/{self.type_segment(task)}"
        suffix = f"{sanitize_title(task.id, 8)}-{format_timestamp(context)}"
        slug = sanitize_title(task.title, self.max_title_length)

        room = self.max_length - len(head) - len(suffix) - 2
        if room < len(slug):
            slug = slug[: max(room, 0)].rstrip("-")
        name = f"{head}-{slug}-{suffix}" if slug else f"{head}-{suffix}"

        errors = validate_branch_name(name, self.max_length)
        if errors:
            raise ValidationError(f"Cannot build a legal branch name for task {task.id}", errors)
        return name

    def matches(self, branch_name: str) -> bool:
        return branch_name.startswith(f"{self.prefix}/")


class FeatureBranchStrategy(BranchStrategy):
    """Default strategy for regular development work."""

    name = "feature"


class HotfixBranchStrategy(BranchStrategy):
    """Protected, fast-tracked branches for fixes."""

    name = "hotfix"
    protected = True
    fast_track = True
    labels = ("hotfix", "fast-track")


class ReleaseBranchStrategy(BranchStrategy):
    """Tag-aware release branches."""

    name = "release"
    protected = True
    labels = ("release",)

    @staticmethod
    def version_of(task: Task) -> str | None:
        """Semantic version from the task metadata, without a leading ``v``.

        Raises:
            ValidationError: If a version is present but not a semantic version
        """
        raw = task.metadata.get("version") or task.metadata.get("release_version")
        if raw is None:
            return None
        version = str(raw).strip().removeprefix("v")
        if not SEMVER_PATTERN.match(version):
            raise ValidationError(
                f"Invalid release version for task {task.id}",
                [f"'{raw}' is not X.Y.Z[-prerelease][+build]"],
            )
        return version

    def type_segment(self, task: Task) -> str:
        version = self.version_of(task)
        if version is None:
            return super().type_segment(task)
        # '+' build metadata is not allowed in branch names.
        return "v" + version.replace("+", "-")

    def tag_for(self, task: Task) -> str | None:
        """Tag to create when the release branch is merged."""
        version = self.version_of(task)
        return None if version is None else f"v{version}"


DEFAULT_STRATEGY_MAPPING: Mapping[str, str] = MappingProxyType(
    {
        TaskType.BUG.value: HotfixBranchStrategy.name,
        TaskType.HOTFIX.value: HotfixBranchStrategy.name,
        TaskType.SECURITY.value: HotfixBranchStrategy.name,
        TaskType.RELEASE.value: ReleaseBranchStrategy.name,
    }
)


class BranchStrategyRegistry:
    """Registry mapping task types to branch strategies.

    Example:
        >>> registry = BranchStrategyRegistry()
        >>> registry.get_strategy(TaskType.BUG).name
        'hotfix'
    """

    def __init__(self, config: BranchingConfig | None = None) -> None:
        self.config = config or BranchingConfig()
        limits = {"max_length": self.config.max_length, "max_title_length": self.config.max_title_length}
        self._strategies: dict[str, BranchStrategy] = {
            FeatureBranchStrategy.name: FeatureBranchStrategy(self.config.feature_prefix, **limits),
            HotfixBranchStrategy.name: HotfixBranchStrategy(self.config.hotfix_prefix, **limits),
            ReleaseBranchStrategy.name: ReleaseBranchStrategy(self.config.release_prefix, **limits),
        }
        self._mapping: dict[str, str] = dict(DEFAULT_STRATEGY_MAPPING)

    def register(self, strategy: BranchStrategy, task_types: tuple[str, ...] = ()) -> None:
        """Add or replace a strategy and route ``task_types`` to it."""
        self._strategies[strategy.name] = strategy
        for task_type in task_types:
            self._mapping[str(task_type)] = strategy.name

    def get_strategy(self, task_type: TaskType | str) -> BranchStrategy:
        """Strategy for ``task_type``. Unknown types get the feature strategy."""
        key = task_type.value if isinstance(task_type, TaskType) else str(task_type)
        return self._strategies[self._mapping.get(key, FeatureBranchStrategy.name)]

    def strategy_for_branch(self, branch_name: str) -> BranchStrategy | None:
        for strategy in self._strategies.values():
            if strategy.matches(branch_name):
                return strategy
        return None

    @property
    def names(self) -> list[str]:
        return sorted(self._strategies)
