"""
Merge strategies.

The merge strategy decides *whether* and *how* the workflow branch is merged.
Whether depends on the automation level through :data:`GATE_POLICY`; how
(the merge method) depends on the task type.

Strategies:
    manual      -> ManualMergeStrategy      (never merges, a human does)
    assisted    -> ConfirmedMergeStrategy   (needs an explicit confirmation)
    semi_auto   -> ConfirmedMergeStrategy
    full_auto   -> ImmediateMergeStrategy
    adaptive    -> strategy of the resolved concrete level

Merges are never retried. A conflict is returned as a failed
:class:`MergeResult` carrying the conflicting paths, so a human can resolve it
and resume the workflow.
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from pathlib import Path
from types import MappingProxyType
from typing import Any

import structlog

from git_conductor.config.settings import MergeConfig, ReviewConfig
from git_conductor.engine.automation import gate_policy
from git_conductor.enums import AutomationLevel, MergeMethod, MergeMode, TaskType
from git_conductor.exceptions import GitOperationError, MergeConfirmationError, ReviewGateError
from git_conductor.models.domain import MergeResult
from git_conductor.providers.base import GitService

log = structlog.get_logger(__name__)

DEFAULT_MERGE_METHODS: Mapping[str, MergeMethod] = MappingProxyType(
    {
        TaskType.FEATURE.value: MergeMethod.SQUASH,
        TaskType.REFACTOR.value: MergeMethod.SQUASH,
        TaskType.TESTING.value: MergeMethod.SQUASH,
        TaskType.DOCUMENTATION.value: MergeMethod.SQUASH,
        TaskType.BUG.value: MergeMethod.MERGE,
        TaskType.HOTFIX.value: MergeMethod.MERGE,
        TaskType.SECURITY.value: MergeMethod.MERGE,
        TaskType.RELEASE.value: MergeMethod.MERGE,
        TaskType.DEPLOYMENT.value: MergeMethod.MERGE,
        TaskType.ANALYSIS.value: MergeMethod.FAST_FORWARD,
    }
)


def merge_method_for(
    task_type: TaskType | str, overrides: Mapping[str, MergeMethod] | None = None
) -> MergeMethod:
    """Merge method of a task type; unknown types squash."""
    key = task_type.value if isinstance(task_type, TaskType) else str(task_type)
    if overrides and key in overrides:
        return MergeMethod(overrides[key])
    return DEFAULT_MERGE_METHODS.get(key, MergeMethod.SQUASH)


class MergeStrategy(ABC):
    """Base class of the merge strategies.

    Attributes:
        git: Git provider performing the merge
        method: Merge method passed to the provider
        gate_on_score: Refuse to merge below ``threshold``
        threshold: Minimum review score
        delete_source_branch: Delete the source branch after a successful merge
    """

    name: str = "base"
    merge_mode: MergeMode = MergeMode.HUMAN

    def __init__(
        self,
        git: GitService,
        method: MergeMethod,
        gate_on_score: bool = True,
        threshold: float = 70.0,
        delete_source_branch: bool = True,
    ) -> None:
        self.git = git
        self.method = method
        self.gate_on_score = gate_on_score
        self.threshold = threshold
        self.delete_source_branch = delete_source_branch

    @abstractmethod
    async def merge(
        self,
        project_path: str | Path,
        source: str,
        target: str,
        options: dict[str, Any] | None = None,
    ) -> MergeResult:
        """Merge ``source`` into ``target``.

        Args:
            project_path: Repository path
            source: Workflow branch
            target: Base branch
            options: ``review_score``, ``confirmed``, ``tag``, ``commit_message``

        Raises:
            ReviewGateError: If the review score is below the threshold
            MergeConfirmationError: If a required confirmation is missing
            GitOperationError: For provider errors other than conflicts
        """
        pass

    def check_score(self, options: Mapping[str, Any]) -> None:
        """Enforce the review gate when this strategy is gated.

        Raises:
            ReviewGateError: Score missing or below threshold
        """
        if not self.gate_on_score:
            return
        threshold = float(options.get("threshold", self.threshold))
        score = options.get("review_score")
        if score is None:
            raise ReviewGateError("No review score available for a gated merge", threshold=threshold)
        if float(score) < threshold:
            raise ReviewGateError(
                f"Review score {float(score):.1f} is below threshold {threshold:.1f}",
                score=float(score),
                threshold=threshold,
            )

    async def _perform_merge(
        self,
        project_path: str | Path,
        source: str,
        target: str,
        options: Mapping[str, Any],
    ) -> MergeResult:
        opts: dict[str, Any] = {
            key: options[key] for key in ("tag", "commit_message", "pr_id") if options.get(key) is not None
        }
        log.info("merge_started", source=source, target=target, method=self.method.value, strategy=self.name)

        try:
            reply = await self.git.merge(project_path, source, target, self.method.value, opts)
        except GitOperationError as e:
            if not e.is_conflict:
                raise
            reply = {"merged": False, "conflicts": e.conflicts, "error": e.message}
        except Exception as e:
            raise GitOperationError(f"Merge of {source} into {target} failed: {e}", operation="merge") from e

        reply = dict(reply or {})
        conflicts = list(reply.get("conflicts") or [])
        if reply.get("merged") is False or conflicts:
            log.warning("merge_conflict", source=source, target=target, conflicts=conflicts)
            return MergeResult(
                success=False,
                data=reply,
                error=reply.get("error") or f"Merge conflict in {len(conflicts)} file(s)",
                method=self.method,
                conflicts=conflicts,
            )

        if self.delete_source_branch:
            try:
                await self.git.delete_branch(project_path, source)
                reply["source_branch_deleted"] = True
            except Exception as e:
                # The merge itself succeeded; a leftover branch is reported only.
                log.warning("source_branch_delete_failed", branch=source, error=str(e))
                reply["source_branch_deleted"] = False

        log.info("merge_completed", source=source, target=target, method=self.method.value)
        return MergeResult(success=True, data=reply, method=self.method)


class ManualMergeStrategy(MergeStrategy):
    """No automatic merge; the pull request is left for a human."""

    name = "manual"
    merge_mode = MergeMode.HUMAN

    async def merge(
        self,
        project_path: str | Path,
        source: str,
        target: str,
        options: dict[str, Any] | None = None,
    ) -> MergeResult:
        log.info("merge_left_to_human", source=source, target=target)
        return MergeResult(
            success=True,
            skipped=True,
            reason="manual_merge_required",
            data={"source": source, "target": target},
            method=self.method,
        )


class ConfirmedMergeStrategy(MergeStrategy):
    """Merge only after an explicit confirmation signal and a passing review."""

    name = "confirmed"
    merge_mode = MergeMode.CONFIRM

    async def merge(
        self,
        project_path: str | Path,
        source: str,
        target: str,
        options: dict[str, Any] | None = None,
    ) -> MergeResult:
        options = options or {}
        self.check_score(options)
        if not options.get("confirmed"):
            raise MergeConfirmationError(f"Merge of {source} into {target} requires confirmation")
        return await self._perform_merge(project_path, source, target, options)


class ImmediateMergeStrategy(MergeStrategy):
    """Merge right away. Score gating is off unless explicitly enabled."""

    name = "immediate"
    merge_mode = MergeMode.IMMEDIATE

    async def merge(
        self,
        project_path: str | Path,
        source: str,
        target: str,
        options: dict[str, Any] | None = None,
    ) -> MergeResult:
        options = options or {}
        self.check_score(options)
        return await self._perform_merge(project_path, source, target, options)


_STRATEGY_BY_MODE: Mapping[MergeMode, type[MergeStrategy]] = MappingProxyType(
    {
        MergeMode.HUMAN: ManualMergeStrategy,
        MergeMode.CONFIRM: ConfirmedMergeStrategy,
        MergeMode.IMMEDIATE: ImmediateMergeStrategy,
    }
)


class MergeStrategyRegistry:
    """Selects merge strategies from task type and automation level.

    Selection has no side effects: each call builds a fresh strategy object
    from the gate policy table and the configuration.

    Example:
        >>> registry = MergeStrategyRegistry(git)
        >>> registry.get_strategy(TaskType.FEATURE, AutomationLevel.FULL_AUTO).method
        <MergeMethod.SQUASH: 'squash'>
    """

    def __init__(
        self,
        git: GitService,
        review_config: ReviewConfig | None = None,
        merge_config: MergeConfig | None = None,
    ) -> None:
        self.git = git
        self.review_config = review_config or ReviewConfig()
        self.merge_config = merge_config or MergeConfig()
        self._strategies: dict[MergeMode, type[MergeStrategy]] = dict(_STRATEGY_BY_MODE)

    def register(self, mode: MergeMode, strategy_class: type[MergeStrategy]) -> None:
        self._strategies[mode] = strategy_class

    def get_strategy(
        self,
        task_type: TaskType | str,
        level: AutomationLevel,
        resolved_level: AutomationLevel | None = None,
    ) -> MergeStrategy:
        """Strategy for ``task_type`` at ``level``.

        Args:
            task_type: Determines the merge method
            level: Requested or effective automation level
            resolved_level: Concrete level ``adaptive`` resolved to; without it
                an adaptive request falls back to manual
        """
        if level == AutomationLevel.ADAPTIVE:
            level = resolved_level if resolved_level is not None and resolved_level.is_concrete else None
            if level is None:
                level = AutomationLevel.MANUAL

        policy = gate_policy(level)
        gate_on_score = policy.gate_on_score or (
            level == AutomationLevel.FULL_AUTO and self.review_config.gate_full_auto
        )
        strategy_class = self._strategies[policy.merge_mode]
        return strategy_class(
            self.git,
            merge_method_for(task_type, self.merge_config.method_overrides),
            gate_on_score=gate_on_score,
            threshold=self.review_config.min_score_threshold,
            delete_source_branch=self.merge_config.delete_source_branch,
        )
