"""Tests for retry helpers and per-path locks."""

import asyncio

import pytest

from git_conductor.utils.locks import PathLockRegistry
from git_conductor.utils.retry import async_retry, call_with_retry


@pytest.mark.asyncio
async def test_async_retry_recovers():
    calls = []

    @async_retry(max_attempts=3, backoff_factor=0, exceptions=(ConnectionError,))
    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise ConnectionError("reset")
        return "ok"

    assert await flaky() == "ok"
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_async_retry_exhausted():
    calls = []

    @async_retry(max_attempts=2, backoff_factor=0, exceptions=(ConnectionError,))
    async def always_down():
        calls.append(1)
        raise ConnectionError("down")

    with pytest.raises(ConnectionError):
        await always_down()
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_non_retryable_error_propagates_immediately():
    calls = []

    async def rejected():
        calls.append(1)
        raise ValueError("bad request")

    with pytest.raises(ValueError):
        await call_with_retry(rejected, max_attempts=5, backoff_factor=0, exceptions=(ConnectionError,))
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_call_with_retry_passes_arguments():
    async def add(a, b, scale=1):
        return (a + b) * scale

    assert await call_with_retry(add, 1, 2, scale=10, backoff_factor=0) == 30


def test_invalid_max_attempts():
    with pytest.raises(ValueError):
        async_retry(max_attempts=0)


def test_normalize(tmp_path):
    assert PathLockRegistry.normalize(tmp_path / "repo" / ".." / "repo") == PathLockRegistry.normalize(
        tmp_path / "repo"
    )


@pytest.mark.asyncio
async def test_same_path_is_serialized(tmp_path):
    """Test that holders of one path never overlap."""
    locks = PathLockRegistry()
    events = []

    async def hold(name):
        async with locks.hold(tmp_path, operation=name):
            events.append(("start", name))
            await asyncio.sleep(0.01)
            events.append(("end", name))

    await asyncio.gather(hold("a"), hold("b"), hold("c"))

    for start, end in zip(events[::2], events[1::2], strict=True):
        assert start[0] == "start"
        assert end == ("end", start[1])


@pytest.mark.asyncio
async def test_different_paths_run_concurrently(tmp_path):
    locks = PathLockRegistry()
    inside = asyncio.Event()

    async with locks.hold(tmp_path / "one"):
        assert locks.is_locked(tmp_path / "one")
        async with locks.hold(tmp_path / "two"):
            inside.set()

    assert inside.is_set()
    assert not locks.is_locked(tmp_path / "one")
    assert not locks.is_locked(tmp_path / "unknown")


@pytest.mark.asyncio
async def test_same_lock_for_equivalent_paths(tmp_path):
    locks = PathLockRegistry()

    assert await locks.get_lock(tmp_path) is await locks.get_lock(str(tmp_path))
