"""Tests for ExecutionQueue and ResourceManager."""

import asyncio

import pytest

from git_conductor.engine.queue import ExecutionQueue, ResourceManager
from git_conductor.engine.steps import StepPriority, TestingStep
from git_conductor.enums import StepStatus
from git_conductor.models.domain import StepResult


async def noop(context, inputs):
    return None


def make_step(step_id, priority=StepPriority.NORMAL, depends_on=()):
    return TestingStep(step_id, noop, priority=priority, depends_on=depends_on)


def make_runner(order, fail=()):
    async def runner(step):
        order.append(step.step_id)
        await asyncio.sleep(0)
        if step.step_id in fail:
            return StepResult(step_id=step.step_id, success=False, status=StepStatus.FAILED)
        return StepResult(step_id=step.step_id, success=True)

    return runner


@pytest.mark.asyncio
async def test_ready_steps_start_by_priority():
    """Test that higher priority steps start first."""
    order = []
    queue = ExecutionQueue(
        [
            make_step("low", StepPriority.LOW),
            make_step("critical", StepPriority.CRITICAL),
            make_step("normal", StepPriority.NORMAL),
        ]
    )

    results = await queue.run(make_runner(order), max_parallel=1)

    assert order == ["critical", "normal", "low"]
    assert set(results) == {"low", "critical", "normal"}


@pytest.mark.asyncio
async def test_dependents_wait_for_dependencies():
    order = []
    queue = ExecutionQueue(
        [
            make_step("publish", StepPriority.CRITICAL, depends_on=["build"]),
            make_step("build", StepPriority.LOW),
        ]
    )

    await queue.run(make_runner(order))

    assert order == ["build", "publish"]


@pytest.mark.asyncio
async def test_dependency_on_failed_step_fails():
    order = []
    seen = []
    queue = ExecutionQueue([make_step("build"), make_step("publish", depends_on=["build"])])

    results = await queue.run(make_runner(order, fail={"build"}), on_result=lambda sid, res: seen.append(sid))

    assert order == ["build"]
    assert results["publish"].status == StepStatus.FAILED
    assert seen == ["build", "publish"]


@pytest.mark.asyncio
async def test_dependency_on_skipped_step_skips():
    queue = ExecutionQueue([make_step("publish", depends_on=["build"])], skipped={"build"})

    results = await queue.run(make_runner([]))

    assert results["publish"].was_skipped


@pytest.mark.asyncio
async def test_unknown_outside_dependency_counts_as_failed():
    """Test that a dependency that never ran blocks its dependent."""
    order = []
    queue = ExecutionQueue([make_step("publish", depends_on=["missing"])])

    results = await queue.run(make_runner(order))

    assert order == []
    assert not results["publish"].success


@pytest.mark.asyncio
async def test_completed_outside_dependency_is_satisfied():
    order = []
    queue = ExecutionQueue([make_step("publish", depends_on=["build"])], completed={"build"})

    await queue.run(make_runner(order))

    assert order == ["publish"]


@pytest.mark.asyncio
async def test_dependency_cycle_raises():
    queue = ExecutionQueue([make_step("a", depends_on=["b"]), make_step("b", depends_on=["a"])])

    with pytest.raises(RuntimeError, match="Dependency deadlock detected"):
        await queue.run(make_runner([]))


@pytest.mark.asyncio
async def test_resource_manager_limits_slots():
    resources = ResourceManager(2)
    active = []
    peak = 0

    async def work(name):
        nonlocal peak
        async with resources.slot(name):
            active.append(name)
            peak = max(peak, len(active))
            await asyncio.sleep(0.01)
            active.remove(name)

    await asyncio.gather(*(work(str(i)) for i in range(5)))

    stats = resources.get_stats()
    assert peak == 2
    assert stats["peak"] == 2
    assert stats["total_acquired"] == 5
    assert resources.active == 0


def test_resource_manager_rejects_zero():
    with pytest.raises(ValueError):
        ResourceManager(0)
