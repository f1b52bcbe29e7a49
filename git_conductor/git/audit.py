"""
Append-only audit trail of git workflow stage transitions.

Every major transition (branch created, steps completed, pull request
created or skipped, review completed, merge completed or blocked, workflow
failed or cancelled) produces one immutable :class:`AuditRecord` carrying a
snapshot of the workflow context. Records are kept in memory and forwarded
to an :class:`ObservabilitySink`.

Example:
    >>> audit = GitWorkflowAudit(sink=LoggingSink())
    >>> await audit.record(context, WorkflowStage.BRANCH_CREATING, "branch_created", {"branch": name})
    >>> audit.query(workflow_id=context.workflow_id)
"""

from collections import Counter
from datetime import UTC, datetime
from typing import Any

import structlog

from git_conductor.engine.context import WorkflowContext
from git_conductor.enums import WorkflowStage
from git_conductor.models.domain import AuditRecord
from git_conductor.providers.base import ObservabilitySink

log = structlog.get_logger(__name__)

FAILURE_OUTCOMES = frozenset(
    {"workflow_failed", "workflow_cancelled", "merge_blocked", "merge_conflict", "validation_failed"}
)


class GitWorkflowAudit:
    """In-memory audit log with sink forwarding.

    Attributes:
        sink: Receives every record as an ``audit`` event; optional
        enabled: When False nothing is recorded
    """

    def __init__(self, sink: ObservabilitySink | None = None, enabled: bool = True) -> None:
        self.sink = sink
        self.enabled = enabled
        self._records: list[AuditRecord] = []

    @property
    def records(self) -> tuple[AuditRecord, ...]:
        return tuple(self._records)

    def __len__(self) -> int:
        return len(self._records)

    async def record(
        self,
        context: WorkflowContext,
        stage: WorkflowStage,
        outcome: str,
        details: dict[str, Any] | None = None,
    ) -> AuditRecord | None:
        """Append one record and forward it to the sink.

        Sink failures are logged; the record is kept either way.

        Returns:
            The new record, or None when auditing is disabled
        """
        if not self.enabled:
            return None

        entry = AuditRecord(
            workflow_id=context.workflow_id,
            stage=stage.value,
            outcome=outcome,
            context_snapshot=context.audit_snapshot(),
            details=details or {},
        )
        self._records.append(entry)
        log.info("audit_recorded", workflow_id=entry.workflow_id, stage=entry.stage, outcome=outcome)

        if self.sink is not None:
            try:
                await self.sink.emit("audit", entry.to_dict())
            except Exception as e:
                log.error("audit_sink_failed", workflow_id=entry.workflow_id, outcome=outcome, error=str(e))
        return entry

    def query(
        self,
        workflow_id: str | None = None,
        stage: WorkflowStage | str | None = None,
        outcome: str | None = None,
        task_id: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int | None = None,
    ) -> list[AuditRecord]:
        """Filter records, oldest first. ``limit`` keeps the most recent ones."""
        stage_value = stage.value if isinstance(stage, WorkflowStage) else stage
        matches = [
            entry
            for entry in self._records
            if (workflow_id is None or entry.workflow_id == workflow_id)
            and (stage_value is None or entry.stage == stage_value)
            and (outcome is None or entry.outcome == outcome)
            and (task_id is None or entry.context_snapshot.get("task", {}).get("id") == task_id)
            and (since is None or entry.timestamp >= since)
            and (until is None or entry.timestamp <= until)
        ]
        if limit is not None:
            matches = matches[-limit:] if limit > 0 else []
        return matches

    def statistics(self) -> dict[str, Any]:
        outcomes = Counter(entry.outcome for entry in self._records)
        stages = Counter(entry.stage for entry in self._records)
        failures = sum(count for outcome, count in outcomes.items() if outcome in FAILURE_OUTCOMES)
        return {
            "total_records": len(self._records),
            "workflows": len({entry.workflow_id for entry in self._records}),
            "outcomes": dict(outcomes),
            "stages": dict(stages),
            "failures": failures,
        }

    def export(self, **filters: Any) -> dict[str, Any]:
        """Serializable dump of the filtered records plus statistics."""
        return {
            "records": [entry.to_dict() for entry in self.query(**filters)],
            "statistics": self.statistics(),
            "exported_at": datetime.now(UTC).isoformat(),
        }
