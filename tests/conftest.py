"""Pytest configuration and shared fixtures."""

import asyncio
from pathlib import Path
from typing import Any

import pytest

from git_conductor.config.settings import ConductorSettings
from git_conductor.engine.context import WorkflowContext
from git_conductor.git.manager import GitWorkflowManager
from git_conductor.models.domain import Task
from git_conductor.providers.base import GitService, ObservabilitySink, ReviewAnalyzer
from git_conductor.providers.preferences import InMemoryPreferenceStore


class FakeGitService(GitService):
    """In-memory git provider recording every call.

    ``events`` records the start and end of every git-mutating call, which
    lets tests check that calls on one repository never interleave.
    """

    def __init__(self, delay: float = 0.0) -> None:
        self.delay = delay
        self.calls: list[tuple[str, Any]] = []
        self.events: list[tuple[str, str, str]] = []
        self.branches: dict[str, set[str]] = {}
        self.create_branch_error: Exception | None = None
        self.leave_partial_branch = False
        self.pr_errors: list[Exception] = []
        self.merge_conflicts: list[str] = []
        self.merge_error: Exception | None = None
        self._pr_counter = 0

    def _branches(self, project_path: str | Path) -> set[str]:
        return self.branches.setdefault(str(project_path), set())

    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]

    async def _mutate(self, operation: str, detail: str) -> None:
        self.events.append(("start", operation, detail))
        await asyncio.sleep(self.delay)
        self.events.append(("end", operation, detail))

    async def create_branch(self, project_path: str | Path, name: str, base: str) -> dict[str, Any]:
        self.calls.append(("create_branch", {"path": str(project_path), "name": name, "base": base}))
        await self._mutate("create_branch", name)
        if self.create_branch_error is not None:
            if self.leave_partial_branch:
                self._branches(project_path).add(name)
            raise self.create_branch_error
        self._branches(project_path).add(name)
        return {"name": name, "sha": "abc123"}

    async def delete_branch(self, project_path: str | Path, name: str) -> None:
        self.calls.append(("delete_branch", {"path": str(project_path), "name": name}))
        await self._mutate("delete_branch", name)
        self._branches(project_path).discard(name)

    async def branch_exists(self, project_path: str | Path, name: str) -> bool:
        return name in self._branches(project_path)

    async def create_pull_request(
        self, project_path: str | Path, source: str, target: str, meta: dict[str, Any]
    ) -> dict[str, Any]:
        self.calls.append(("create_pull_request", {"source": source, "target": target, "meta": meta}))
        if self.pr_errors:
            raise self.pr_errors.pop(0)
        self._pr_counter += 1
        return {"id": self._pr_counter, "url": f"https://git.example.com/pulls/{self._pr_counter}"}

    async def merge(
        self, project_path: str | Path, source: str, target: str, method: str, opts: dict[str, Any]
    ) -> dict[str, Any]:
        self.calls.append(("merge", {"source": source, "target": target, "method": method, "opts": opts}))
        await self._mutate("merge", source)
        if self.merge_error is not None:
            raise self.merge_error
        if self.merge_conflicts:
            return {"merged": False, "conflicts": list(self.merge_conflicts)}
        return {"merged": True, "sha": "def456"}


class FakeAnalyzer(ReviewAnalyzer):
    """Analyzer returning configurable scores per sub-review."""

    def __init__(self, score: float = 85.0) -> None:
        self.scores: dict[str, float] = {
            "code_quality": score,
            "security": score,
            "test_coverage": score,
            "performance": score,
        }
        self.errors: dict[str, Exception] = {}
        self.delays: dict[str, float] = {}
        self.security_issues: list[Any] = []
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def _reply(self, name: str, opts: dict[str, Any]) -> dict[str, Any]:
        self.calls.append((name, opts))
        if name in self.delays:
            await asyncio.sleep(self.delays[name])
        if name in self.errors:
            raise self.errors[name]
        issues = self.security_issues if name == "security" else []
        return {"score": self.scores[name], "issues": issues, "recommendations": [f"improve {name}"]}

    def called(self) -> list[str]:
        return [name for name, _ in self.calls]

    async def analyze_code_quality(self, project_path: str | Path, opts: dict[str, Any]) -> dict[str, Any]:
        return await self._reply("code_quality", opts)

    async def analyze_security(self, project_path: str | Path, opts: dict[str, Any]) -> dict[str, Any]:
        return await self._reply("security", opts)

    async def analyze_test_coverage(self, project_path: str | Path, opts: dict[str, Any]) -> dict[str, Any]:
        return await self._reply("test_coverage", opts)

    async def analyze_performance(self, project_path: str | Path, opts: dict[str, Any]) -> dict[str, Any]:
        return await self._reply("performance", opts)


class MemorySink(ObservabilitySink):
    """Sink keeping every event in memory."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    async def emit(self, event_type: str, payload: dict[str, Any]) -> None:
        self.events.append((event_type, payload))

    def of_type(self, event_type: str) -> list[dict[str, Any]]:
        return [payload for kind, payload in self.events if kind == event_type]


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """Temporary repository directory."""
    repo = tmp_path / "repo"
    (repo / ".git").mkdir(parents=True)
    return repo


@pytest.fixture
def feature_task() -> Task:
    """Feature task for testing."""
    return Task(
        id="task-0001-feature",
        type="feature",
        title="Add user authentication",
        description="Implement login and logout endpoints",
        priority="normal",
        tags=("auth",),
    )


@pytest.fixture
def context(feature_task: Task, project_dir: Path) -> WorkflowContext:
    """Context with a workflow branch already set."""
    return WorkflowContext(
        task=feature_task,
        project_path=project_dir,
        branch_name="feature/feature-add-user-authentication",
        base_branch="main",
    )


@pytest.fixture
def fake_git() -> FakeGitService:
    return FakeGitService()


@pytest.fixture
def analyzer() -> FakeAnalyzer:
    return FakeAnalyzer()


@pytest.fixture
def sink() -> MemorySink:
    return MemorySink()


@pytest.fixture
def preferences() -> InMemoryPreferenceStore:
    return InMemoryPreferenceStore()


@pytest.fixture
def settings() -> ConductorSettings:
    """Settings without retry backoff delays."""
    return ConductorSettings(pull_requests={"max_attempts": 3, "backoff_factor": 0})


@pytest.fixture
def manager(
    fake_git: FakeGitService,
    analyzer: FakeAnalyzer,
    preferences: InMemoryPreferenceStore,
    sink: MemorySink,
    settings: ConductorSettings,
) -> GitWorkflowManager:
    """Manager wired to the fakes."""
    return GitWorkflowManager(fake_git, analyzer, preferences, sink, settings=settings)


def make_task(task_type: str = "feature", level: str | None = None, **kwargs: Any) -> Task:
    """Build a task, optionally requesting an automation level in its metadata."""
    metadata = dict(kwargs.pop("metadata", {}))
    if level is not None:
        metadata["automation_level"] = level
    return Task(
        id=kwargs.pop("id", f"task-{task_type}-0001"),
        type=task_type,
        title=kwargs.pop("title", f"Sample {task_type} task"),
        description=kwargs.pop("description", "Sample description"),
        metadata=metadata,
        **kwargs,
    )


@pytest.fixture
def task_factory():
    """Factory building tasks: ``task_factory("bug", level="semi_auto")``."""
    return make_task
