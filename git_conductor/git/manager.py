"""
Top-level git workflow state machine.

:class:`GitWorkflowManager` drives one task through::

    Validating -> BranchCreating -> Executing -> ReviewGating -> Merging -> Completed

``Failed`` is reachable from every non-terminal stage. Failures in the
merging stage (conflict, missing confirmation, missing pull request, review
score below threshold) are recoverable: :meth:`GitWorkflowManager.resume`
continues from the merge without replaying the executed steps.

Which gated stages run is decided by :data:`GATE_POLICY` for the effective
automation level. Every branch creation, branch deletion and merge holds the
per-project-path lock, so concurrent workflows on one repository never
interleave git state changes.

Every stage is measured in :class:`GitWorkflowMetrics` and every major
transition leaves one record in :class:`GitWorkflowAudit`.

Example:
    >>> manager = GitWorkflowManager(git, analyzer, preferences, LoggingSink())
    >>> result = await manager.execute_workflow(task, "/srv/repo", workflow)
    >>> result.summary()
    {'success': True, 'stage': 'completed', 'error': None, 'recoverable': False}
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

import structlog

from git_conductor.config.settings import ConductorSettings
from git_conductor.engine.automation import AutomationManager, ConfidenceSignals, gate_policy
from git_conductor.engine.builder import ComposedWorkflow
from git_conductor.engine.context import WorkflowContext
from git_conductor.engine.execution import SequentialExecutionEngine
from git_conductor.engine.strategies import ExecutionStrategy
from git_conductor.enums import MergeMode, ReviewStatus, WorkflowStage
from git_conductor.exceptions import (
    GitOperationError,
    MergeConfirmationError,
    ReviewGateError,
    ValidationError,
    WorkflowError,
)
from git_conductor.git.audit import GitWorkflowAudit
from git_conductor.git.branching import BranchStrategyRegistry, ReleaseBranchStrategy
from git_conductor.git.merging import MergeStrategyRegistry
from git_conductor.git.metrics import GitWorkflowMetrics
from git_conductor.git.pull_requests import PullRequestManager
from git_conductor.git.review import AutoReviewService, review_depth_for
from git_conductor.git.validator import GitWorkflowValidator
from git_conductor.models.domain import (
    BranchResult,
    GitWorkflowResult,
    MergeResult,
    PullRequestResult,
    ReviewResult,
    Task,
    WorkflowExecutionResult,
)
from git_conductor.observability.sinks import FanOutSink, JsonlFileSink
from git_conductor.providers.base import GitService, ObservabilitySink, PreferenceStore, ReviewAnalyzer
from git_conductor.utils.locks import PathLockRegistry

log = structlog.get_logger(__name__)

ConfirmMerge = Callable[[WorkflowContext, ReviewResult | None], Awaitable[bool]]


def commit_message(task: Task) -> str:
    title = task.title or task.description or "Workflow execution"
    lines = [f"{task.type_name}: {title}", "", f"Task ID: {task.id}"]
    if task.description and task.description != title:
        lines += ["", task.description]
    return "\n".join(lines)


class GitWorkflowManager:
    """Runs tasks through branch, execution, review and merge.

    All collaborators are injected. Only ``git``, ``analyzer``,
    ``preferences`` and ``sink`` are required; everything else is built from
    ``settings`` when omitted.

    Attributes:
        settings: Engine settings
        engine: Step execution engine
        automation: Automation level resolution
        locks: Per-project-path locks for git-mutating calls
        metrics: Stage metrics
        audit: Audit trail
        confirm_merge: Async callback asked for confirmation at assisted and
            semi_auto levels; without it those merges wait for :meth:`resume`
    """

    def __init__(
        self,
        git: GitService,
        analyzer: ReviewAnalyzer,
        preferences: PreferenceStore,
        sink: ObservabilitySink,
        *,
        settings: ConductorSettings | None = None,
        engine: SequentialExecutionEngine | None = None,
        automation: AutomationManager | None = None,
        locks: PathLockRegistry | None = None,
        metrics: GitWorkflowMetrics | None = None,
        audit: GitWorkflowAudit | None = None,
        confirm_merge: ConfirmMerge | None = None,
    ) -> None:
        self.settings = settings or ConductorSettings()
        self.git = git
        self.preferences = preferences
        if self.settings.audit_path is not None:
            sink = FanOutSink(sink, JsonlFileSink(self.settings.audit_path))
        self.sink = sink

        self.engine = engine or SequentialExecutionEngine(self.settings.execution)
        self.automation = automation or AutomationManager(self.settings.automation)
        self.locks = locks or PathLockRegistry()
        self.metrics = metrics or GitWorkflowMetrics(sink)
        self.audit = audit or GitWorkflowAudit(sink, enabled=self.settings.audit.enabled)
        self.confirm_merge = confirm_merge

        self.validator = GitWorkflowValidator(self.settings.branching)
        self.branch_strategies = BranchStrategyRegistry(self.settings.branching)
        self.merge_strategies = MergeStrategyRegistry(git, self.settings.review, self.settings.merge)
        self.pull_requests = PullRequestManager(git, self.settings.pull_requests)
        self.reviewer = AutoReviewService(analyzer, self.settings.review)

        self._running: dict[str, asyncio.Task[Any]] = {}
        self._results: dict[str, GitWorkflowResult] = {}

    # Workflow lifecycle

    async def execute_workflow(
        self,
        task: Task,
        project_path: str | Path,
        workflow: ComposedWorkflow,
        user_id: str | None = None,
        confidence: float | ConfidenceSignals | None = None,
        strategy: ExecutionStrategy | str | None = None,
        workflow_id: str | None = None,
    ) -> GitWorkflowResult:
        """Run ``task`` through the full git workflow.

        Args:
            task: Task to execute
            project_path: Repository path
            workflow: Composed steps to run on the workflow branch
            user_id: User whose preferences apply
            confidence: Confidence for adaptive resolution; derived from
                metrics history when omitted
            strategy: Execution strategy instance or name
            workflow_id: Id to use for this execution, e.g. to cancel it later

        Returns:
            Structured result; ``summary()`` gives ``{success, stage, error, recoverable}``

        Raises:
            asyncio.CancelledError: If the workflow is cancelled (after
                rollback, cleanup and the audit record)

        Any other exception escaping a stage fails the workflow at that stage
        with the same cleanup.
        """
        context = WorkflowContext(task=task, project_path=project_path, user_id=user_id)
        if workflow_id is not None:
            context.workflow_id = workflow_id
        result = GitWorkflowResult(workflow_id=context.workflow_id, success=False, stage=WorkflowStage.VALIDATING)
        result.context = context
        self._remember(result)

        current = asyncio.current_task()
        if current is not None:
            self._running[context.workflow_id] = current
        started = time.monotonic()

        with structlog.contextvars.bound_contextvars(workflow_id=context.workflow_id, task_id=task.id):
            log.info("git_workflow_started", task_type=task.type_name, project_path=str(project_path))
            try:
                if not await self._validating(result, context, user_id, confidence):
                    return result
                if not await self._branch_creating(result, context):
                    return result
                if not await self._executing(result, context, workflow, strategy):
                    return result
                await self._review_gating(result, context)
                await self._merging(result, context, confirmed=None)
                return result
            except asyncio.CancelledError:
                await self._abort(result, context, "Workflow cancelled", outcome="workflow_cancelled", cancelled=True)
                log.warning("git_workflow_cancelled", stage=result.failed_stage.value)
                raise
            except Exception as e:
                log.error("git_workflow_crashed", stage=result.stage.value, error=str(e), exc_info=True)
                await self._abort(result, context, f"Unexpected error: {e}")
                return result
            finally:
                if result.stage.is_terminal:
                    self.metrics.record_workflow(task.type_name, time.monotonic() - started, result.success)
                self._running.pop(context.workflow_id, None)
                self.engine.release(context.workflow_id)

    async def resume(
        self,
        result: GitWorkflowResult,
        confirmed: bool = False,
        rerun_review: bool = False,
    ) -> GitWorkflowResult:
        """Continue a recoverable workflow from its merging stage.

        Executed steps are not replayed. A missing pull request is created
        first; the review runs again when requested or when it never ran.

        Args:
            result: A failed, recoverable result of :meth:`execute_workflow`
            confirmed: Explicit merge confirmation for assisted and semi_auto
            rerun_review: Review again, e.g. after a human fixed the code

        Raises:
            WorkflowError: If the result cannot be resumed
        """
        if result.success or not result.recoverable or not isinstance(result.context, WorkflowContext):
            raise WorkflowError(
                f"Workflow {result.workflow_id} is not resumable",
                stage=result.stage.value,
                recoverable=False,
            )

        context: WorkflowContext = result.context
        policy = gate_policy(context.automation_level)
        with structlog.contextvars.bound_contextvars(workflow_id=context.workflow_id, task_id=context.task.id):
            log.info("git_workflow_resumed", failed_stage=result.failed_stage.value if result.failed_stage else None)
            result.error = None
            result.recoverable = False
            result.failed_stage = None

            pr_missing = result.pull_request is None or not result.pull_request.success
            if policy.create_pull_request and pr_missing:
                await self._review_gating(result, context)
            elif rerun_review or (policy.auto_review and (result.review is None or not result.review.success)):
                self._transition(result, WorkflowStage.REVIEW_GATING)
                result.review = await self._review_stage(result, context)

            await self._merging(result, context, confirmed=confirmed)
            if result.stage.is_terminal:
                self.metrics.record_workflow(context.task.type_name, 0.0, result.success)
        return result

    async def cancel(self, workflow_id: str) -> bool:
        """Cancel a running workflow.

        In-flight steps are cancelled, completed reversible steps are rolled
        back and an audit record is written before the workflow's task ends.

        Returns:
            True if a running workflow was cancelled
        """
        running = self._running.get(workflow_id)
        if running is None or running.done():
            return False
        log.info("git_workflow_cancel_requested", workflow_id=workflow_id)
        running.cancel()
        return True

    def get_result(self, workflow_id: str) -> GitWorkflowResult | None:
        """Latest result of ``workflow_id``, including cancelled ones."""
        return self._results.get(workflow_id)

    def forget(self, workflow_id: str) -> bool:
        """Drop the stored result of a workflow that is no longer running.

        Returns:
            True if a result was removed
        """
        if workflow_id in self.running_workflows():
            return False
        return self._results.pop(workflow_id, None) is not None

    def running_workflows(self) -> list[str]:
        return [workflow_id for workflow_id, running in self._running.items() if not running.done()]

    # Stages

    async def _validating(
        self,
        result: GitWorkflowResult,
        context: WorkflowContext,
        user_id: str | None,
        confidence: float | ConfidenceSignals | None,
    ) -> bool:
        started = time.monotonic()
        task = context.task
        try:
            project_settings = await self._load_preferences(self.preferences.get_project_settings, context.project_path)
            user_preferences = await self._load_preferences(self.preferences.get_user_preferences, user_id)

            if confidence is None:
                confidence = self._confidence_from_history(task)
            level = self.automation.resolve_level(task, project_settings, user_preferences, confidence)
            context.automation_level = level
            result.automation_level = level
            context.base_branch = str(
                task.metadata.get("base_branch")
                or project_settings.get("base_branch")
                or self.settings.branching.default_base_branch
            )
            context.reviewers = list(user_preferences.get("reviewers") or project_settings.get("reviewers") or [])

            branch_name = self.branch_strategies.get_strategy(task.type).generate_branch_name(task, context)
            validation = await self.validator.validate(task, context.project_path, branch_name, context.base_branch)
            if not validation.is_valid:
                raise ValidationError("Workflow validation failed", validation.errors)
        except ValidationError as e:
            message = e.message if not e.errors else f"{e.message}: {'; '.join(e.errors)}"
            await self._finish_stage(result, context, WorkflowStage.VALIDATING, started, False, errors=e.errors)
            await self._fail(result, context, WorkflowStage.VALIDATING, message, outcome="validation_failed")
            return False

        context.set_output("branch_name", branch_name)
        await self._finish_stage(
            result, context, WorkflowStage.VALIDATING, started, True, warnings=validation.warnings
        )
        return True

    async def _branch_creating(self, result: GitWorkflowResult, context: WorkflowContext) -> bool:
        self._transition(result, WorkflowStage.BRANCH_CREATING)
        started = time.monotonic()
        branch = await self.create_branch(context, context.get_output("branch_name"))
        result.branch = branch
        await self._finish_stage(result, context, WorkflowStage.BRANCH_CREATING, started, branch.success)
        if not branch.success:
            await self._fail(result, context, WorkflowStage.BRANCH_CREATING, branch.error or "Branch creation failed")
            return False
        await self.audit.record(context, WorkflowStage.BRANCH_CREATING, "branch_created", dict(branch.data))
        return True

    async def _executing(
        self,
        result: GitWorkflowResult,
        context: WorkflowContext,
        workflow: ComposedWorkflow,
        strategy: ExecutionStrategy | str | None,
    ) -> bool:
        self._transition(result, WorkflowStage.EXECUTING)
        started = time.monotonic()
        execution = await self.engine.execute(workflow, context, strategy)
        result.execution = execution
        details = {
            "strategy": execution.strategy,
            "steps": len(execution.step_results),
            "failures": [r.step_id for r in execution.failures],
            "rolled_back": list(execution.rolled_back),
        }
        await self._finish_stage(result, context, WorkflowStage.EXECUTING, started, execution.success, **details)

        if not execution.success:
            await self.audit.record(context, WorkflowStage.EXECUTING, "steps_failed", details)
            if self.settings.merge.delete_branch_on_failure:
                await self._delete_branch(context)
            message = f"Step '{execution.failed_step}' failed: {execution.error}"
            await self._fail(result, context, WorkflowStage.EXECUTING, message)
            return False

        await self.audit.record(context, WorkflowStage.EXECUTING, "steps_completed", details)
        return True

    async def _review_gating(self, result: GitWorkflowResult, context: WorkflowContext) -> None:
        self._transition(result, WorkflowStage.REVIEW_GATING)
        started = time.monotonic()
        pull_request = await self.create_pull_request(context, result.execution)
        result.pull_request = pull_request
        if pull_request.skipped:
            await self.audit.record(
                context, WorkflowStage.REVIEW_GATING, "pull_request_skipped", {"reason": pull_request.reason}
            )
        elif pull_request.success:
            await self.audit.record(context, WorkflowStage.REVIEW_GATING, "pull_request_created", dict(pull_request.data))
        else:
            await self.audit.record(
                context, WorkflowStage.REVIEW_GATING, "pull_request_failed", {"error": pull_request.error}
            )
        await self._finish_stage(
            result, context, WorkflowStage.REVIEW_GATING, started, pull_request.success, operation="pull_request"
        )

        result.review = await self._review_stage(result, context)

    async def _review_stage(self, result: GitWorkflowResult, context: WorkflowContext) -> ReviewResult:
        started = time.monotonic()
        review = await self.perform_auto_review(context, result.pull_request)
        if review.skipped:
            await self.audit.record(context, WorkflowStage.REVIEW_GATING, "review_skipped", {"reason": review.reason})
        else:
            self.metrics.record_review(review.status == ReviewStatus.APPROVED)
            await self.audit.record(
                context,
                WorkflowStage.REVIEW_GATING,
                "review_completed",
                {
                    "score": review.score,
                    "status": review.status.value,
                    "sub_reviews": sorted(review.sub_reviews),
                    "error": review.error,
                },
            )
        await self._finish_stage(
            result, context, WorkflowStage.REVIEW_GATING, started, review.success, operation="review"
        )
        return review

    async def _merging(self, result: GitWorkflowResult, context: WorkflowContext, confirmed: bool | None) -> None:
        self._transition(result, WorkflowStage.MERGING)
        started = time.monotonic()
        merge = await self.merge_changes(context, result.review, result.pull_request, confirmed)
        result.merge = merge
        await self._finish_stage(result, context, WorkflowStage.MERGING, started, merge.success)

        if not merge.success:
            blocked_by = merge.data.get("blocked_by")
            if merge.conflicts:
                outcome = "merge_conflict"
            elif blocked_by is not None:
                outcome = "merge_blocked"
            else:
                outcome = "merge_failed"
            await self.audit.record(
                context,
                WorkflowStage.MERGING,
                outcome,
                {"error": merge.error, "conflicts": list(merge.conflicts), "blocked_by": blocked_by},
            )
            await self._fail(
                result, context, WorkflowStage.MERGING, merge.error or "Merge failed", recoverable=True
            )
            return

        outcome = "merge_left_to_human" if merge.skipped else "merge_completed"
        method = merge.method.value if merge.method else None
        await self.audit.record(context, WorkflowStage.MERGING, outcome, {"method": method, **merge.data})

        result.success = True
        self._transition(result, WorkflowStage.COMPLETED)
        await self.audit.record(context, WorkflowStage.COMPLETED, "workflow_completed", result.summary())
        log.info("git_workflow_completed", automation_level=context.automation_level.value, merged=not merge.skipped)

    async def _abort(
        self,
        result: GitWorkflowResult,
        context: WorkflowContext,
        error: str,
        outcome: str = "workflow_failed",
        **details: Any,
    ) -> None:
        """Fail the interrupted stage after deleting the workflow branch."""
        stage = result.stage
        if stage.is_terminal:
            stage = result.failed_stage or WorkflowStage.MERGING
        result.execution = result.execution or self.engine.last_result(context.workflow_id)
        if context.branch_name is not None and self.settings.merge.delete_branch_on_failure:
            await self._delete_branch(context)
        await self._finish_stage(result, context, stage, time.monotonic(), False, **details)
        await self._fail(result, context, stage, error, outcome=outcome)

    # Stage operations

    async def create_branch(self, context: WorkflowContext, branch_name: str | None = None) -> BranchResult:
        """Create the workflow branch under the project path lock.

        When the provider fails, a partially created branch is deleted.

        Returns:
            BranchResult; ``context.branch_name`` is set on success
        """
        task = context.task
        strategy = self.branch_strategies.get_strategy(task.type)
        name = branch_name or strategy.generate_branch_name(task, context)

        async with self.locks.hold(context.project_path, operation="create_branch"):
            try:
                reply = await self.git.create_branch(context.project_path, name, context.base_branch)
            except Exception as e:
                log.error("branch_create_failed", branch=name, error=str(e))
                await self._cleanup_partial_branch(context, name)
                return BranchResult(success=False, data={"branch_name": name}, error=f"Branch creation failed: {e}")

        context.branch_name = name
        log.info("branch_created", branch=name, base=context.base_branch, strategy=strategy.name)
        return BranchResult(
            success=True,
            data={
                **dict(reply or {}),
                "branch_name": name,
                "base_branch": context.base_branch,
                "strategy": strategy.name,
                "protected": strategy.protected,
                "fast_track": strategy.fast_track,
            },
        )

    async def create_pull_request(
        self,
        context: WorkflowContext,
        execution: WorkflowExecutionResult | None = None,
    ) -> PullRequestResult:
        """Open the pull request of the workflow branch (skipped at full_auto)."""
        if context.branch_name is None:
            return PullRequestResult(success=False, error="No workflow branch to open a pull request from")

        strategy = self.branch_strategies.get_strategy(context.task.type)
        pr_data = self.pull_requests.build_pull_request_data(
            context.task,
            context.branch_name,
            context.base_branch,
            context.automation_level,
            execution=execution,
            reviewers=context.reviewers,
            extra_labels=strategy.labels,
        )
        pull_request = await self.pull_requests.create_pull_request(
            context.project_path, pr_data, context.automation_level
        )
        if pull_request.success and not pull_request.skipped:
            context.set_output("pull_request", dict(pull_request.data))
        return pull_request

    async def perform_auto_review(
        self,
        context: WorkflowContext,
        pull_request: PullRequestResult | None = None,
    ) -> ReviewResult:
        """Review the workflow changes unless the level disables it."""
        policy = gate_policy(context.automation_level)
        if not policy.auto_review:
            log.info("review_skipped", reason="manual_mode")
            return ReviewResult(success=True, skipped=True, reason="manual_mode")

        pr_id = pull_request.pr_id if pull_request is not None else None
        options = {
            "review_depth": (self.settings.review.default_depth or review_depth_for(context.automation_level)).value,
            "automation_level": context.automation_level.value,
            "task_type": context.task.type_name,
            "branch_name": context.branch_name,
        }
        review = await self.reviewer.review_pull_request(context.project_path, pr_id, options)
        context.set_output("review", {"score": review.score, "status": review.status.value})
        return review

    async def merge_changes(
        self,
        context: WorkflowContext,
        review: ReviewResult | None,
        pull_request: PullRequestResult | None = None,
        confirmed: bool | None = None,
    ) -> MergeResult:
        """Merge the workflow branch if the gates allow it.

        Gate failures are returned as failed results with ``blocked_by`` in
        ``data`` instead of raised. The merge itself runs under the project
        path lock and is never retried.
        """
        task = context.task
        level = context.automation_level
        policy = gate_policy(level)
        strategy = self.merge_strategies.get_strategy(task.type, level)

        if context.branch_name is None:
            return MergeResult(success=False, error="No workflow branch to merge", data={"blocked_by": "branch"})
        if policy.create_pull_request and (pull_request is None or not pull_request.success):
            log.warning("merge_blocked", reason="pull_request_missing")
            return MergeResult(
                success=False,
                error="Merge blocked: no pull request was created",
                data={"blocked_by": "pull_request"},
                method=strategy.method,
            )
        if review is not None and review.status == ReviewStatus.BLOCKED:
            log.warning("merge_blocked", reason="review_blocked")
            return MergeResult(
                success=False,
                error="Merge blocked: review reported a critical security issue",
                data={"blocked_by": "review", "score": review.score},
                method=strategy.method,
            )

        if confirmed is None and self.confirm_merge is not None and strategy.merge_mode == MergeMode.CONFIRM:
            try:
                confirmed = bool(await self.confirm_merge(context, review))
            except Exception as e:
                log.warning("merge_confirmation_failed", branch=context.branch_name, error=str(e))
                return MergeResult(
                    success=False,
                    error=f"Merge awaiting confirmation: confirmation request failed: {e}",
                    data={"blocked_by": "confirmation"},
                    method=strategy.method,
                    requires_confirmation=True,
                )

        branch_strategy = self.branch_strategies.get_strategy(task.type)
        tag = branch_strategy.tag_for(task) if isinstance(branch_strategy, ReleaseBranchStrategy) else None
        options: dict[str, Any] = {
            "review_score": review.score if review is not None and not review.skipped and review.success else None,
            "confirmed": bool(confirmed),
            "tag": tag,
            "commit_message": commit_message(task),
            "pr_id": pull_request.pr_id if pull_request is not None else None,
        }

        try:
            async with self.locks.hold(context.project_path, operation="merge"):
                merge = await strategy.merge(context.project_path, context.branch_name, context.base_branch, options)
        except ReviewGateError as e:
            log.warning("merge_blocked", reason="review_score", score=e.score, threshold=e.threshold)
            return MergeResult(
                success=False,
                error=e.message,
                data={"blocked_by": "review_score", "score": e.score, "threshold": e.threshold},
                method=strategy.method,
            )
        except MergeConfirmationError as e:
            log.info("merge_awaiting_confirmation", branch=context.branch_name)
            return MergeResult(
                success=False,
                error=e.message,
                data={"blocked_by": "confirmation"},
                method=strategy.method,
                requires_confirmation=True,
            )
        except GitOperationError as e:
            log.error("merge_failed", branch=context.branch_name, error=e.message)
            return MergeResult(success=False, error=e.message, method=strategy.method, conflicts=list(e.conflicts))

        if merge.success and not merge.skipped and merge.data.get("source_branch_deleted"):
            context.set_output("merged_branch", context.branch_name)
        return merge

    # Helpers

    def _remember(self, result: GitWorkflowResult) -> None:
        """Store ``result``, evicting the oldest finished, non-recoverable results over the cap."""
        self._results[result.workflow_id] = result
        excess = len(self._results) - self.settings.execution.max_retained_results
        if excess <= 0:
            return
        for workflow_id, kept in list(self._results.items()):
            if excess <= 0:
                break
            if kept.stage.is_terminal and not kept.recoverable:
                del self._results[workflow_id]
                excess -= 1
                log.debug("workflow_result_evicted", workflow_id=workflow_id)

    def _transition(self, result: GitWorkflowResult, stage: WorkflowStage) -> None:
        log.info("workflow_stage_entered", stage=stage.value, previous=result.stage.value)
        result.stage = stage

    async def _finish_stage(
        self,
        result: GitWorkflowResult,
        context: WorkflowContext,
        stage: WorkflowStage,
        started: float,
        success: bool,
        **details: Any,
    ) -> None:
        level = result.automation_level.value if result.automation_level else "unresolved"
        await self.metrics.record_stage(
            stage,
            context.task.type_name,
            level,
            time.monotonic() - started,
            success,
            workflow_id=context.workflow_id,
            **details,
        )

    async def _fail(
        self,
        result: GitWorkflowResult,
        context: WorkflowContext,
        stage: WorkflowStage,
        error: str,
        recoverable: bool = False,
        outcome: str = "workflow_failed",
    ) -> None:
        result.success = False
        result.failed_stage = stage
        result.error = error
        result.recoverable = recoverable
        self._transition(result, WorkflowStage.FAILED)
        await self.audit.record(
            context,
            WorkflowStage.FAILED,
            outcome,
            {"failed_stage": stage.value, "error": error, "recoverable": recoverable},
        )
        log.error("git_workflow_failed", failed_stage=stage.value, error=error, recoverable=recoverable)

    async def _delete_branch(self, context: WorkflowContext) -> None:
        if context.branch_name is None:
            return
        async with self.locks.hold(context.project_path, operation="delete_branch"):
            try:
                await self.git.delete_branch(context.project_path, context.branch_name)
            except Exception as e:
                log.error("branch_delete_failed", branch=context.branch_name, error=str(e))
                return
        log.info("branch_deleted", branch=context.branch_name)

    async def _cleanup_partial_branch(self, context: WorkflowContext, name: str) -> None:
        """Delete ``name`` if the failed create left it behind. Caller holds the path lock."""
        try:
            if await self.git.branch_exists(context.project_path, name):
                await self.git.delete_branch(context.project_path, name)
                log.info("partial_branch_deleted", branch=name)
        except Exception as e:
            log.error("partial_branch_cleanup_failed", branch=name, error=str(e))

    async def _load_preferences(self, loader: Callable[[Any], Awaitable[dict[str, Any]]], key: Any) -> dict[str, Any]:
        try:
            return dict(await loader(key) or {})
        except Exception as e:
            log.warning("preferences_unavailable", loader=loader.__name__, error=str(e))
            return {}

    def _confidence_from_history(self, task: Task) -> ConfidenceSignals | None:
        signals = ConfidenceSignals(
            review_pass_rate=self.metrics.review_pass_rate(),
            historical_success_rate=self.metrics.success_rate(task.type_name),
        )
        if signals.review_pass_rate is None and signals.historical_success_rate is None:
            return None
        return signals

    def get_stats(self) -> dict[str, Any]:
        return {
            "metrics": self.metrics.export(),
            "audit": self.audit.statistics(),
            "running": self.running_workflows(),
        }
