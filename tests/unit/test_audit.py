"""Tests for the audit trail."""

from datetime import UTC, datetime, timedelta

import pytest

from git_conductor.engine.context import WorkflowContext
from git_conductor.enums import WorkflowStage
from git_conductor.git.audit import GitWorkflowAudit


class BrokenSink:
    async def emit(self, event_type, payload):
        raise OSError("disk full")


@pytest.mark.asyncio
async def test_record_forwards_to_sink(context: WorkflowContext, sink):
    audit = GitWorkflowAudit(sink=sink)

    entry = await audit.record(context, WorkflowStage.BRANCH_CREATING, "branch_created", {"branch": "feature/x"})

    assert entry.workflow_id == context.workflow_id
    assert entry.stage == "branch_creating"
    assert entry.details["branch"] == "feature/x"
    assert len(audit) == 1
    (payload,) = sink.of_type("audit")
    assert payload["outcome"] == "branch_created"
    assert payload["context_snapshot"]["task"]["id"] == "task-0001-feature"


@pytest.mark.asyncio
async def test_records_are_immutable_snapshots(context: WorkflowContext):
    """Test that later context changes never alter recorded snapshots."""
    audit = GitWorkflowAudit()
    entry = await audit.record(context, WorkflowStage.EXECUTING, "steps_completed")

    context.branch_name = "feature/changed"

    assert entry.context_snapshot["branch_name"] == "feature/feature-add-user-authentication"
    with pytest.raises(TypeError):
        entry.context_snapshot["branch_name"] = "x"
    with pytest.raises(AttributeError):
        entry.outcome = "other"


@pytest.mark.asyncio
async def test_sink_failure_keeps_record(context: WorkflowContext):
    audit = GitWorkflowAudit(sink=BrokenSink())

    await audit.record(context, WorkflowStage.MERGING, "merge_completed")

    assert len(audit) == 1


@pytest.mark.asyncio
async def test_disabled_audit_records_nothing(context: WorkflowContext, sink):
    audit = GitWorkflowAudit(sink=sink, enabled=False)

    assert await audit.record(context, WorkflowStage.MERGING, "merge_completed") is None
    assert len(audit) == 0
    assert sink.events == []


@pytest.mark.asyncio
async def test_query_filters(context: WorkflowContext, feature_task, project_dir):
    audit = GitWorkflowAudit()
    other = WorkflowContext(task=feature_task, project_path=project_dir)
    await audit.record(context, WorkflowStage.BRANCH_CREATING, "branch_created")
    await audit.record(context, WorkflowStage.MERGING, "merge_blocked")
    await audit.record(other, WorkflowStage.FAILED, "workflow_failed")

    assert len(audit.query(workflow_id=context.workflow_id)) == 2
    assert [r.outcome for r in audit.query(stage=WorkflowStage.MERGING)] == ["merge_blocked"]
    assert [r.workflow_id for r in audit.query(outcome="workflow_failed")] == [other.workflow_id]
    assert len(audit.query(task_id="task-0001-feature")) == 3
    assert audit.query(task_id="unknown") == []
    assert [r.outcome for r in audit.query(limit=1)] == ["workflow_failed"]
    assert audit.query(limit=0) == []

    future = datetime.now(UTC) + timedelta(hours=1)
    assert audit.query(since=future) == []
    assert len(audit.query(until=future)) == 3


@pytest.mark.asyncio
async def test_statistics_and_export(context: WorkflowContext):
    audit = GitWorkflowAudit()
    await audit.record(context, WorkflowStage.BRANCH_CREATING, "branch_created")
    await audit.record(context, WorkflowStage.MERGING, "merge_conflict")
    await audit.record(context, WorkflowStage.FAILED, "workflow_failed")

    stats = audit.statistics()
    assert stats["total_records"] == 3
    assert stats["workflows"] == 1
    assert stats["failures"] == 2
    assert stats["stages"]["merging"] == 1

    exported = audit.export(outcome="branch_created")
    assert [record["outcome"] for record in exported["records"]] == ["branch_created"]
    assert exported["statistics"]["total_records"] == 3
