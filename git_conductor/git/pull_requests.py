"""
Pull request creation.

:class:`PullRequestManager` validates and opens pull requests through the
:class:`GitService`. At full_auto no pull request is opened at all; the
result is skipped with reason ``full_auto_mode`` and the provider is never
called.

A failed pull request is reported in the result instead of raised, so the
workflow itself does not fail here. The manager then refuses to merge at
levels that require a pull request.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog

from git_conductor.config.settings import PullRequestConfig
from git_conductor.engine.automation import gate_policy
from git_conductor.enums import AutomationLevel
from git_conductor.exceptions import ExternalServiceError, PullRequestError
from git_conductor.models.domain import PullRequestResult, Task, WorkflowExecutionResult
from git_conductor.providers.base import GitService
from git_conductor.utils.retry import call_with_retry

log = structlog.get_logger(__name__)

TRANSIENT_ERRORS: tuple[type[Exception], ...] = (ConnectionError, TimeoutError, ExternalServiceError)


@dataclass
class PullRequestData:
    """Everything needed to open one pull request."""

    title: str
    source_branch: str
    target_branch: str
    description: str = ""
    labels: list[str] = field(default_factory=list)
    reviewers: list[str] = field(default_factory=list)
    draft: bool = False

    def meta(self) -> dict[str, Any]:
        """Provider ``meta`` argument."""
        return {
            "title": self.title,
            "description": self.description,
            "labels": list(self.labels),
            "reviewers": list(self.reviewers),
            "draft": self.draft,
        }


def pull_request_title(task: Task) -> str:
    title = task.title or task.description or "Workflow changes"
    return f"[{task.type_name.upper()}] {title}"


def pull_request_labels(task: Task, extra: tuple[str, ...] | list[str] = ()) -> list[str]:
    """Labels for ``task``: type, automated, priority, tags, then ``extra``."""
    labels = [f"type-{task.type_name}", "automated"]
    if task.priority:
        labels.append(f"priority-{task.priority}")
    labels.extend(f"tag-{tag}" for tag in task.tags)
    for label in extra:
        if label not in labels:
            labels.append(label)
    return labels


def pull_request_description(task: Task, execution: WorkflowExecutionResult | None = None) -> str:
    """Markdown body with task details, execution summary and a review checklist."""
    lines = [
        f"## Task: {task.title or task.description}",
        f"**Type:** {task.type_name}",
        f"**Task ID:** {task.id}",
        "",
    ]
    if task.description and task.description != task.title:
        lines += [task.description, ""]

    if execution is not None:
        succeeded = sum(1 for r in execution.step_results.values() if r.success and not r.was_skipped)
        skipped = sum(1 for r in execution.step_results.values() if r.was_skipped)
        lines += [
            "## Execution Details",
            f"- Result: {'succeeded' if execution.success else 'failed'}",
            f"- Strategy: {execution.strategy}",
            f"- Duration: {execution.duration:.2f}s",
            f"- Steps: {len(execution.step_results)} ({succeeded} succeeded, "
            f"{len(execution.failures)} failed, {skipped} skipped)",
            "",
        ]

    lines += [
        "## Review Checklist",
        "- [ ] Code changes are appropriate",
        "- [ ] Tests pass",
        "- [ ] Documentation updated",
        "- [ ] No breaking changes",
        "",
        "This pull request was opened automatically by git-conductor.",
    ]
    return "\n".join(lines)


class PullRequestManager:
    """Opens pull requests with validation and retry on transient errors.

    Attributes:
        git: Git provider
        config: Retry and draft settings
    """

    def __init__(self, git: GitService, config: PullRequestConfig | None = None) -> None:
        self.git = git
        self.config = config or PullRequestConfig()

    def build_pull_request_data(
        self,
        task: Task,
        source_branch: str,
        target_branch: str,
        automation_level: AutomationLevel,
        execution: WorkflowExecutionResult | None = None,
        reviewers: list[str] | None = None,
        extra_labels: tuple[str, ...] = (),
    ) -> PullRequestData:
        return PullRequestData(
            title=pull_request_title(task),
            source_branch=source_branch,
            target_branch=target_branch,
            description=pull_request_description(task, execution),
            labels=pull_request_labels(task, extra_labels),
            reviewers=list(reviewers or []),
            draft=self.config.draft_for_manual and automation_level == AutomationLevel.MANUAL,
        )

    async def create_pull_request(
        self,
        project_path: str | Path,
        pr_data: PullRequestData,
        automation_level: AutomationLevel,
    ) -> PullRequestResult:
        """Open a pull request unless the level skips it.

        Args:
            project_path: Repository path
            pr_data: Title, branches, description, labels and reviewers
            automation_level: Concrete automation level of the workflow

        Returns:
            Skipped result at full_auto, otherwise the outcome. Failures are
            returned with ``success=False``, never raised.
        """
        if not gate_policy(automation_level).create_pull_request:
            log.info("pull_request_skipped", reason="full_auto_mode", source=pr_data.source_branch)
            return PullRequestResult(success=True, skipped=True, reason="full_auto_mode")

        try:
            await self.validate(project_path, pr_data)
            reply = await call_with_retry(
                self.git.create_pull_request,
                project_path,
                pr_data.source_branch,
                pr_data.target_branch,
                pr_data.meta(),
                max_attempts=self.config.max_attempts,
                backoff_factor=self.config.backoff_factor,
                exceptions=TRANSIENT_ERRORS,
            )
        except PullRequestError as e:
            log.warning("pull_request_invalid", error=e.message, source=pr_data.source_branch)
            return PullRequestResult(success=False, error=e.message)
        except Exception as e:
            log.error("pull_request_failed", error=str(e), source=pr_data.source_branch)
            return PullRequestResult(success=False, error=f"Pull request creation failed: {e}")

        reply = dict(reply or {})
        if reply.get("id") is None:
            log.error("pull_request_without_id", source=pr_data.source_branch)
            return PullRequestResult(success=False, data=reply, error="Provider returned no pull request id")

        data = {
            "pr_id": str(reply["id"]),
            "url": reply.get("url"),
            "title": pr_data.title,
            "source_branch": pr_data.source_branch,
            "target_branch": pr_data.target_branch,
            "labels": list(pr_data.labels),
            "reviewers": list(pr_data.reviewers),
            "draft": pr_data.draft,
        }
        log.info("pull_request_created", pr_id=data["pr_id"], url=data["url"], source=pr_data.source_branch)
        return PullRequestResult(success=True, data=data)

    async def validate(self, project_path: str | Path, pr_data: PullRequestData) -> None:
        """Check branches before calling the provider.

        Raises:
            PullRequestError: Same source and target, or missing source branch
        """
        if not pr_data.source_branch or not pr_data.target_branch:
            raise PullRequestError("Source and target branch are required", operation="create_pull_request")
        if pr_data.source_branch == pr_data.target_branch:
            raise PullRequestError(
                f"Source and target branch are both '{pr_data.source_branch}'",
                operation="create_pull_request",
            )
        if not await self.git.branch_exists(project_path, pr_data.source_branch):
            raise PullRequestError(
                f"Source branch '{pr_data.source_branch}' does not exist",
                operation="create_pull_request",
            )
