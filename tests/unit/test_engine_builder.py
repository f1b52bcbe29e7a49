"""Tests for WorkflowBuilder and ComposedWorkflow."""

import pytest

from git_conductor.engine.builder import WorkflowBuilder
from git_conductor.engine.context import WorkflowContext
from git_conductor.engine.steps import AnalysisStep, DocumentationStep, RefactoringStep


async def action(context, inputs):
    return inputs


def test_units_follow_declared_order():
    """Test that sequential steps become single units and groups are merged."""
    workflow = (
        WorkflowBuilder("wf")
        .add_step(AnalysisStep("analyze", action))
        .add_step(DocumentationStep("doc-a", action), parallel_group="docs")
        .add_step(DocumentationStep("doc-b", action), parallel_group="docs")
        .add_step(RefactoringStep("refactor", action))
        .build()
    )

    assert [[e.step_id for e in unit.entries] for unit in workflow.units] == [
        ["analyze"],
        ["doc-a", "doc-b"],
        ["refactor"],
    ]
    assert workflow.units[1].is_parallel
    assert len(workflow) == 4
    assert [step.step_id for step in workflow.steps] == ["analyze", "doc-a", "doc-b", "refactor"]


def test_duplicate_step_id_rejected():
    builder = WorkflowBuilder().add_step(AnalysisStep("analyze", action))

    with pytest.raises(ValueError, match="Duplicate"):
        builder.add_step(AnalysisStep("analyze", action))


def test_dependency_must_be_declared_first():
    """Test that forward and unknown dependencies are rejected."""
    builder = WorkflowBuilder()

    with pytest.raises(ValueError, match="undeclared"):
        builder.add_step(RefactoringStep("refactor", action, depends_on=["analyze"]))


def test_parallel_group_must_be_contiguous():
    builder = (
        WorkflowBuilder()
        .add_step(DocumentationStep("doc-a", action), parallel_group="docs")
        .add_step(AnalysisStep("analyze", action))
    )

    with pytest.raises(ValueError, match="contiguously"):
        builder.add_step(DocumentationStep("doc-b", action), parallel_group="docs")


def test_build_empty_workflow_fails():
    with pytest.raises(ValueError, match="empty"):
        WorkflowBuilder().build()


def test_get_step_and_entry():
    def condition(ctx):
        return True

    workflow = WorkflowBuilder().add_step(AnalysisStep("analyze", action), condition=condition).build()

    assert workflow.get_step("analyze").step_id == "analyze"
    assert workflow.get_entry("analyze").condition is condition
    with pytest.raises(KeyError):
        workflow.get_step("missing")


def test_entry_condition(context: WorkflowContext):
    workflow = (
        WorkflowBuilder()
        .add_step(AnalysisStep("always", action))
        .add_step(AnalysisStep("never", action), condition=lambda ctx: False)
        .build()
    )

    assert workflow.get_entry("always").should_run(context)
    assert not workflow.get_entry("never").should_run(context)


@pytest.mark.asyncio
async def test_composed_workflow_execute_uses_default_engine(context: WorkflowContext):
    workflow = WorkflowBuilder().add_step(AnalysisStep("analyze", action, inputs={"x": 1})).build()

    result = await workflow.execute(context)

    assert result.success
    assert context.get_output("analyze") == {"x": 1}
