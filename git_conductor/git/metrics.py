"""
Per-stage metrics for git workflows.

Every stage of every workflow, successful or not, records its duration and
outcome keyed by ``(stage, task_type, automation_level)``. Completed
workflows and reviews are also counted so the adaptive automation level can
be fed with historical success and review pass rates.
"""

from dataclasses import dataclass
from typing import Any

import structlog

from git_conductor.enums import WorkflowStage
from git_conductor.providers.base import ObservabilitySink

log = structlog.get_logger(__name__)


@dataclass
class StageStats:
    """Aggregated counters of one ``(stage, task_type, level)`` key."""

    count: int = 0
    successes: int = 0
    failures: int = 0
    total_duration: float = 0.0
    max_duration: float = 0.0

    def add(self, duration: float, success: bool) -> None:
        self.count += 1
        if success:
            self.successes += 1
        else:
            self.failures += 1
        self.total_duration += duration
        self.max_duration = max(self.max_duration, duration)

    @property
    def average_duration(self) -> float:
        return self.total_duration / self.count if self.count else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "count": self.count,
            "successes": self.successes,
            "failures": self.failures,
            "average_duration": round(self.average_duration, 4),
            "max_duration": round(self.max_duration, 4),
        }


class GitWorkflowMetrics:
    """Workflow metrics with optional sink forwarding.

    Attributes:
        sink: Receives every stage measurement as a ``metric`` event
    """

    def __init__(self, sink: ObservabilitySink | None = None) -> None:
        self.sink = sink
        self._stages: dict[tuple[str, str, str], StageStats] = {}
        self._workflows: dict[str, StageStats] = {}
        self._reviews = {"passed": 0, "total": 0}

    async def record_stage(
        self,
        stage: WorkflowStage,
        task_type: str,
        automation_level: str,
        duration: float,
        success: bool,
        workflow_id: str | None = None,
        **details: Any,
    ) -> None:
        """Record one stage measurement.

        Args:
            stage: Stage that finished
            task_type: Task type name
            automation_level: Effective automation level, ``unresolved`` before resolution
            duration: Stage wall-clock time in seconds
            success: Outcome of the stage
            workflow_id: Workflow the stage belongs to
            **details: Extra event fields forwarded to the sink
        """
        key = (stage.value, task_type, automation_level)
        self._stages.setdefault(key, StageStats()).add(duration, success)

        if self.sink is not None:
            payload = {
                "workflow_id": workflow_id,
                "stage": stage.value,
                "task_type": task_type,
                "automation_level": automation_level,
                "duration": round(duration, 6),
                "success": success,
                **details,
            }
            try:
                await self.sink.emit("metric", payload)
            except Exception as e:
                log.error("metric_sink_failed", stage=stage.value, error=str(e))

    def record_workflow(self, task_type: str, duration: float, success: bool) -> None:
        self._workflows.setdefault(task_type, StageStats()).add(duration, success)

    def record_review(self, passed: bool) -> None:
        self._reviews["total"] += 1
        if passed:
            self._reviews["passed"] += 1

    def success_rate(self, task_type: str | None = None) -> float | None:
        """Share of successful workflows, overall or for one task type.

        Returns:
            A rate in ``[0, 1]``, or None without any finished workflow
        """
        if task_type is not None:
            stats = self._workflows.get(task_type)
            return stats.successes / stats.count if stats and stats.count else None
        total = sum(s.count for s in self._workflows.values())
        if not total:
            return None
        return sum(s.successes for s in self._workflows.values()) / total

    def review_pass_rate(self) -> float | None:
        if not self._reviews["total"]:
            return None
        return self._reviews["passed"] / self._reviews["total"]

    def stage_stats(
        self,
        stage: WorkflowStage,
        task_type: str | None = None,
        automation_level: str | None = None,
    ) -> StageStats:
        """Stats of ``stage`` merged over the keys matching the filters."""
        merged = StageStats()
        for (stage_value, key_type, key_level), stats in self._stages.items():
            if stage_value != stage.value:
                continue
            if task_type is not None and key_type != task_type:
                continue
            if automation_level is not None and key_level != automation_level:
                continue
            merged.count += stats.count
            merged.successes += stats.successes
            merged.failures += stats.failures
            merged.total_duration += stats.total_duration
            merged.max_duration = max(merged.max_duration, stats.max_duration)
        return merged

    def export(self) -> dict[str, Any]:
        return {
            "stages": [
                {"stage": stage, "task_type": task_type, "automation_level": level, **stats.to_dict()}
                for (stage, task_type, level), stats in sorted(self._stages.items())
            ],
            "workflows": {task_type: stats.to_dict() for task_type, stats in sorted(self._workflows.items())},
            "reviews": dict(self._reviews),
            "success_rate": self.success_rate(),
            "review_pass_rate": self.review_pass_rate(),
        }

    def reset(self) -> None:
        self._stages.clear()
        self._workflows.clear()
        self._reviews = {"passed": 0, "total": 0}
