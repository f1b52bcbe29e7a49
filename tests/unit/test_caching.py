"""Tests for the step output cache."""

import asyncio

import pytest

from git_conductor.utils.caching import AsyncCache, build_step_key, hash_inputs


@pytest.mark.asyncio
async def test_set_and_get():
    cache = AsyncCache(ttl_seconds=60)

    await cache.set("analysis:abc", {"files": 3})

    assert await cache.get("analysis:abc") == {"files": 3}
    assert await cache.get("analysis:missing") is None


@pytest.mark.asyncio
async def test_expired_entries_are_removed():
    """Test that an entry past its TTL is a miss and is dropped."""
    cache = AsyncCache(ttl_seconds=0)
    await cache.set("key", "value")
    await asyncio.sleep(0.01)

    assert await cache.get("key") is None
    assert (await cache.get_stats())["size"] == 0


@pytest.mark.asyncio
async def test_oldest_entry_evicted():
    cache = AsyncCache(ttl_seconds=60, max_size=2)
    await cache.set("first", 1)
    await asyncio.sleep(0.001)
    await cache.set("second", 2)
    await asyncio.sleep(0.001)
    await cache.set("third", 3)

    assert await cache.get("first") is None
    assert await cache.get("second") == 2
    assert await cache.get("third") == 3


@pytest.mark.asyncio
async def test_overwrite_does_not_evict():
    cache = AsyncCache(ttl_seconds=60, max_size=2)
    await cache.set("first", 1)
    await cache.set("second", 2)
    await cache.set("second", 22)

    assert await cache.get("first") == 1
    assert await cache.get("second") == 22


@pytest.mark.asyncio
async def test_delete_and_clear():
    cache = AsyncCache()
    await cache.set("key", "value")

    assert await cache.delete("key") is True
    assert await cache.delete("key") is False

    await cache.set("other", 1)
    await cache.get("other")
    await cache.clear()

    stats = await cache.get_stats()
    assert stats["size"] == 0
    assert stats["hits"] == 0


@pytest.mark.asyncio
async def test_stats():
    cache = AsyncCache(ttl_seconds=30, max_size=10)
    await cache.set("key", "value")
    await cache.get("key")
    await cache.get("key")
    await cache.get("missing")

    stats = await cache.get_stats()

    assert stats["hits"] == 2
    assert stats["misses"] == 1
    assert stats["hit_rate"] == pytest.approx(2 / 3)
    assert stats["max_size"] == 10
    assert stats["ttl_seconds"] == 30.0


def test_hash_inputs_ignores_key_order():
    assert hash_inputs({"a": 1, "b": [1, 2]}) == hash_inputs({"b": [1, 2], "a": 1})
    assert hash_inputs({"a": 1}) != hash_inputs({"a": 2})


def test_hash_inputs_handles_unserializable_values():
    class Marker:
        def __repr__(self):
            return "Marker()"

    assert hash_inputs({"marker": Marker()}) == hash_inputs({"marker": Marker()})


def test_build_step_key():
    key = build_step_key("analysis", {"path": "/repo"})

    assert key.startswith("analysis:")
    assert key == build_step_key("analysis", {"path": "/repo"})
    assert key != build_step_key("documentation", {"path": "/repo"})
