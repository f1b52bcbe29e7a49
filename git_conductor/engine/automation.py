"""
Automation level resolution and the gate policy table.

:class:`AutomationManager` computes the effective automation level of a task.
:data:`GATE_POLICY` is the single table that decides, per concrete level,
which gated stages of the git workflow run. No other component branches on
the automation level directly; they all ask the table.

Resolution Order:
    1. Unknown task type: manual
    2. ``task.metadata["automation_level"]``
    3. ``user_preferences["automation_level"]``
    4. ``project_settings["automation_level"]``
    5. Nothing found, or an unparseable value: manual

    ``adaptive`` is then resolved from a confidence score in ``[0, 1]`` and
    capped by the task priority's ceiling.

Example:
    >>> manager = AutomationManager()
    >>> manager.resolve_level(task, {"automation_level": "adaptive"}, {}, 0.9)
    <AutomationLevel.FULL_AUTO: 'full_auto'>
"""

from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

import structlog

from git_conductor.config.settings import AutomationConfig
from git_conductor.enums import AutomationLevel, MergeMode, ReviewDepth
from git_conductor.models.domain import Task

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class GatePolicy:
    """Which gated stages run at one automation level.

    Attributes:
        create_pull_request: Open a pull request before merging
        auto_review: Run the automated review
        review_depth: Depth of the automated review
        merge_mode: Who merges (human, after confirmation, immediately)
        gate_on_score: Block the merge when the review score is below threshold
    """

    create_pull_request: bool
    auto_review: bool
    review_depth: ReviewDepth
    merge_mode: MergeMode
    gate_on_score: bool


# The review still runs at full_auto so that every merge has an audited score.
GATE_POLICY: Mapping[AutomationLevel, GatePolicy] = MappingProxyType(
    {
        AutomationLevel.MANUAL: GatePolicy(
            create_pull_request=True,
            auto_review=False,
            review_depth=ReviewDepth.NONE,
            merge_mode=MergeMode.HUMAN,
            gate_on_score=True,
        ),
        AutomationLevel.ASSISTED: GatePolicy(
            create_pull_request=True,
            auto_review=True,
            review_depth=ReviewDepth.BASIC,
            merge_mode=MergeMode.CONFIRM,
            gate_on_score=True,
        ),
        AutomationLevel.SEMI_AUTO: GatePolicy(
            create_pull_request=True,
            auto_review=True,
            review_depth=ReviewDepth.STANDARD,
            merge_mode=MergeMode.CONFIRM,
            gate_on_score=True,
        ),
        AutomationLevel.FULL_AUTO: GatePolicy(
            create_pull_request=False,
            auto_review=True,
            review_depth=ReviewDepth.COMPREHENSIVE,
            merge_mode=MergeMode.IMMEDIATE,
            gate_on_score=False,
        ),
    }
)


def gate_policy(level: AutomationLevel) -> GatePolicy:
    """Policy of a concrete level.

    Raises:
        ValueError: For ``adaptive``, which must be resolved first
    """
    if not level.is_concrete:
        raise ValueError("adaptive must be resolved to a concrete level before gating")
    return GATE_POLICY[level]


@dataclass(frozen=True)
class ConfidenceSignals:
    """Inputs of the adaptive confidence score, each in ``[0, 1]``.

    Signals left as None are ignored and the remaining weights renormalized.
    """

    review_pass_rate: float | None = None
    historical_success_rate: float | None = None
    model_confidence: float | None = None


def parse_level(value: Any) -> AutomationLevel | None:
    """Parse a level from a preference value; None when absent or invalid."""
    if value is None or value == "":
        return None
    if isinstance(value, AutomationLevel):
        return value
    try:
        return AutomationLevel(str(value).strip().lower().replace("-", "_"))
    except ValueError:
        return None


class AutomationManager:
    """Pure policy layer computing effective automation levels.

    Attributes:
        config: Thresholds, confidence weights and priority ceilings
    """

    def __init__(self, config: AutomationConfig | None = None) -> None:
        self.config = config or AutomationConfig()

    def requested_level(
        self,
        task: Task,
        project_settings: Mapping[str, Any] | None,
        user_preferences: Mapping[str, Any] | None,
    ) -> AutomationLevel | None:
        """Level asked for by the highest-precedence source, if any.

        An unparseable value at a source fails closed instead of falling
        through to a lower-precedence source.
        """
        sources = (
            ("task_metadata", task.metadata),
            ("user_preferences", user_preferences or {}),
            ("project_settings", project_settings or {}),
        )
        for source, values in sources:
            raw = values.get("automation_level")
            if raw is None or raw == "":
                continue
            level = parse_level(raw)
            if level is None:
                log.warning("invalid_automation_level", source=source, value=str(raw), task_id=task.id)
                return AutomationLevel.MANUAL
            return level
        return None

    def resolve_level(
        self,
        task: Task,
        project_settings: Mapping[str, Any] | None,
        user_preferences: Mapping[str, Any] | None,
        confidence_score: float | ConfidenceSignals | None = None,
    ) -> AutomationLevel:
        """Compute the concrete automation level for ``task``.

        Args:
            task: The task to execute
            project_settings: Project defaults from the preference store
            user_preferences: User preferences from the preference store
            confidence_score: Already-weighted score in ``[0, 1]`` or raw signals;
                only used when the requested level is adaptive

        Returns:
            A concrete level (never adaptive)
        """
        if not task.is_known_type:
            log.warning("unknown_task_type", task_id=task.id, task_type=task.type_name)
            return AutomationLevel.MANUAL

        requested = self.requested_level(task, project_settings, user_preferences)
        if requested is None:
            log.info("automation_level_defaulted", task_id=task.id, level=AutomationLevel.MANUAL.value)
            return AutomationLevel.MANUAL
        if requested.is_concrete:
            return requested

        score = self.confidence(confidence_score)
        if score is None:
            log.info("adaptive_without_confidence", task_id=task.id)
            return AutomationLevel.MANUAL

        level = self.level_for_score(score)
        ceiling = self.config.priority_ceilings.get(task.priority.lower())
        if ceiling is not None and ceiling.is_concrete and level > ceiling:
            log.info("automation_level_capped", task_id=task.id, level=level.value, ceiling=ceiling.value)
            level = ceiling

        log.info("adaptive_level_resolved", task_id=task.id, confidence=score, level=level.value)
        return level

    def confidence(self, value: float | ConfidenceSignals | None) -> float | None:
        """Weighted confidence in ``[0, 1]``, or None without usable signals."""
        if value is None:
            return None
        if not isinstance(value, ConfidenceSignals):
            return min(max(float(value), 0.0), 1.0)

        weights = self.config.weights
        pairs = [
            (value.review_pass_rate, weights.review_pass_rate),
            (value.historical_success_rate, weights.historical_success_rate),
            (value.model_confidence, weights.model_confidence),
        ]
        used = [(min(max(signal, 0.0), 1.0), weight) for signal, weight in pairs if signal is not None and weight > 0]
        total_weight = sum(weight for _, weight in used)
        if not used or total_weight <= 0:
            return None
        return sum(signal * weight for signal, weight in used) / total_weight

    def level_for_score(self, score: float) -> AutomationLevel:
        """Map a confidence score onto a concrete level."""
        thresholds = self.config.thresholds
        if score < thresholds.manual_below:
            return AutomationLevel.MANUAL
        if score < thresholds.assisted_below:
            return AutomationLevel.ASSISTED
        if score < thresholds.semi_auto_below:
            return AutomationLevel.SEMI_AUTO
        return AutomationLevel.FULL_AUTO

    @staticmethod
    def policy(level: AutomationLevel) -> GatePolicy:
        return gate_policy(level)
