"""
Tests for the coordination store implementations.
The in-memory store always runs; the Redis store runs when a server answers.
"""
import asyncio
import uuid

import pytest

from handoff.store import (
    DistributedLock,
    InMemoryCoordinationStore,
    LockAcquisitionError,
    RedisCoordinationStore,
    create_coordination_store,
)


# ===========================
# Fixtures
# ===========================

@pytest.fixture
async def redis_store():
    """Redis store on a test database (skipped when Redis is not running)."""
    store = RedisCoordinationStore(
        redis_url="redis://localhost:6379/15",
        key_prefix="test:handoff:"
    )
    if not await store.ping():
        await store.close()
        pytest.skip("Redis not running")

    yield store

    await store.close()


@pytest.fixture(params=["in_memory", "redis"])
async def any_store(request):
    """Parametrized fixture to test both store implementations."""
    if request.param == "in_memory":
        yield InMemoryCoordinationStore()
        return

    store = RedisCoordinationStore(
        redis_url="redis://localhost:6379/15",
        key_prefix=f"test:handoff:{uuid.uuid4().hex}:"
    )
    if not await store.ping():
        await store.close()
        pytest.skip("Redis not running")
    yield store
    await store.close()


# ===========================
# Factory Tests
# ===========================

def test_factory_builds_in_memory_store():
    assert isinstance(create_coordination_store("in_memory"), InMemoryCoordinationStore)


def test_factory_requires_redis_url():
    with pytest.raises(ValueError):
        create_coordination_store("redis")


def test_factory_rejects_unknown_backend():
    with pytest.raises(ValueError):
        create_coordination_store("memcached")


# ===========================
# Document Tests
# ===========================

async def test_put_get_delete(any_store):
    """Test document round trip and deletion."""
    await any_store.put("doc:1", {"name": "alpha", "count": 1})

    assert await any_store.get("doc:1") == {"name": "alpha", "count": 1}
    assert await any_store.exists("doc:1") is True

    assert await any_store.delete("doc:1") is True
    assert await any_store.get("doc:1") is None
    assert await any_store.delete("doc:1") is False


async def test_put_if_absent(any_store):
    assert await any_store.put_if_absent("doc:2", {"v": 1}) is True
    assert await any_store.put_if_absent("doc:2", {"v": 2}) is False
    assert await any_store.get("doc:2") == {"v": 1}
    await any_store.delete("doc:2")


async def test_update_applies_mutator(any_store):
    """Test read-modify-write, including creation from a missing key."""
    def bump(current):
        current = current or {"count": 0}
        current["count"] += 1
        return current

    await any_store.update("doc:3", bump)
    written = await any_store.update("doc:3", bump)

    assert written == {"count": 2}
    assert await any_store.get("doc:3") == {"count": 2}
    await any_store.delete("doc:3")


async def test_update_declined_leaves_key_untouched(any_store):
    await any_store.put("doc:4", {"v": 1})

    assert await any_store.update("doc:4", lambda current: None) is None
    assert await any_store.get("doc:4") == {"v": 1}
    await any_store.delete("doc:4")


async def test_update_mutator_error_aborts(any_store):
    await any_store.put("doc:5", {"v": 1})

    def explode(current):
        raise RuntimeError("no")

    with pytest.raises(RuntimeError):
        await any_store.update("doc:5", explode)
    assert await any_store.get("doc:5") == {"v": 1}
    await any_store.delete("doc:5")


async def test_concurrent_updates_are_not_lost(any_store):
    """Test that parallel increments through update all land."""
    def bump(current):
        current = current or {"count": 0}
        current["count"] += 1
        return current

    await asyncio.gather(*(any_store.update("doc:6", bump) for _ in range(8)))

    assert (await any_store.get("doc:6"))["count"] == 8
    await any_store.delete("doc:6")


async def test_ttl_reporting(any_store):
    await any_store.put("doc:7", {"v": 1}, ttl=60)
    await any_store.put("doc:8", {"v": 1})

    assert 0 < await any_store.ttl("doc:7") <= 60
    assert await any_store.ttl("doc:8") == -1
    assert await any_store.ttl("doc:missing") == -2

    await any_store.delete("doc:7")
    await any_store.delete("doc:8")


# ===========================
# Counter & Token Tests
# ===========================

async def test_incr_counts_and_sets_ttl_once(any_store):
    assert await any_store.incr("counter:1", ttl=60) == 1
    assert await any_store.incr("counter:1", ttl=60) == 2
    assert await any_store.get_counter("counter:1") == 2
    assert await any_store.get_counter("counter:missing") == 0
    assert await any_store.ttl("counter:1") > 0
    await any_store.delete("counter:1")


async def test_tokens_only_release_for_holder(any_store):
    assert await any_store.acquire_token("token:1", "a", 30) is True
    assert await any_store.acquire_token("token:1", "b", 30) is False
    assert await any_store.get_token("token:1") == "a"

    assert await any_store.release_token("token:1", "b") is False
    assert await any_store.release_token("token:1", "a") is True
    assert await any_store.get_token("token:1") is None


async def test_renew_token_without_ttl_makes_it_permanent(any_store):
    await any_store.acquire_token("token:2", "a", 30)

    assert await any_store.renew_token("token:2", "a", None) is True
    assert await any_store.ttl("token:2") == -1
    assert await any_store.renew_token("token:2", "b", 30) is False
    await any_store.delete("token:2")


# ===========================
# List, Set & Sorted Set Tests
# ===========================

async def test_list_is_fifo(any_store):
    for i in range(3):
        await any_store.list_push("list:1", {"i": i})

    assert await any_store.list_length("list:1") == 3
    assert await any_store.list_peek("list:1") == {"i": 0}
    assert [await any_store.list_pop("list:1") for _ in range(3)] == [{"i": 0}, {"i": 1}, {"i": 2}]
    assert await any_store.list_pop("list:1") is None


async def test_list_push_capped_keeps_newest(any_store):
    for i in range(5):
        await any_store.list_push_capped("list:2", {"i": i}, max_length=3)

    assert await any_store.list_range("list:2") == [{"i": 2}, {"i": 3}, {"i": 4}]
    await any_store.delete("list:2")


async def test_sets(any_store):
    assert await any_store.set_add("set:1", "a", "b") == 2
    assert await any_store.set_add("set:1", "b") == 0
    assert await any_store.set_contains("set:1", "a") is True
    assert await any_store.set_remove("set:1", "a") == 1
    assert await any_store.set_members("set:1") == {"b"}
    await any_store.delete("set:1")


async def test_sorted_set_orders_by_score_then_member(any_store):
    await any_store.sorted_add("zset:1", "late", 5.0)
    await any_store.sorted_add("zset:1", "b", 1.0)
    await any_store.sorted_add("zset:1", "a", 1.0)

    assert await any_store.sorted_range("zset:1") == ["a", "b", "late"]
    assert await any_store.sorted_rank("zset:1", "late") == 2
    assert await any_store.sorted_rank("zset:1", "missing") is None

    await any_store.sorted_add("zset:1", "late", 0.5)
    assert await any_store.sorted_range("zset:1", 0, 0) == ["late"]

    assert await any_store.sorted_remove("zset:1", "a") is True
    assert await any_store.sorted_size("zset:1") == 2
    await any_store.delete("zset:1")


# ===========================
# In-Memory Expiry Tests
# ===========================

async def test_in_memory_expiry_and_cleanup(ticking_store, ticker):
    """Test that expired keys vanish on access and on cleanup."""
    await ticking_store.put("short", {"v": 1}, ttl=10)
    await ticking_store.put("long", {"v": 1}, ttl=100)
    await ticking_store.incr("window", ttl=10)

    ticker.advance(11)

    assert await ticking_store.get("short") is None
    assert await ticking_store.get("long") == {"v": 1}
    assert await ticking_store.cleanup_expired() == 1  # "window"; "short" was already dropped
    assert await ticking_store.get_counter("window") == 0


async def test_in_memory_update_keeps_remaining_ttl(ticking_store, ticker):
    await ticking_store.put("doc", {"v": 1}, ttl=10)
    ticker.advance(5)

    await ticking_store.update("doc", lambda current: {"v": 2})

    assert await ticking_store.ttl("doc") == 5


# ===========================
# Distributed Lock Tests
# ===========================

async def test_lock_is_exclusive(store):
    first = DistributedLock(store, "sweep", timeout=30)
    second = DistributedLock(store, "sweep", timeout=30)

    assert await first.acquire(blocking=False) is True
    assert await second.acquire(blocking=False) is False

    await first.release()
    assert await second.acquire(blocking=False) is True
    await second.release()


async def test_blocking_lock_gives_up(store):
    holder = DistributedLock(store, "busy", timeout=30)
    await holder.acquire()

    waiter = DistributedLock(store, "busy", timeout=30, wait_timeout=0.05, poll_interval=0.01)
    with pytest.raises(LockAcquisitionError):
        await waiter.acquire()

    assert waiter.acquired is False
    await holder.release()


async def test_stale_holder_cannot_release_new_lease(ticking_store, ticker):
    stale = DistributedLock(ticking_store, "sweep", timeout=10)
    await stale.acquire(blocking=False)
    ticker.advance(11)

    fresh = DistributedLock(ticking_store, "sweep", timeout=10)
    assert await fresh.acquire(blocking=False) is True

    assert await stale.release() is False
    assert await ticking_store.get_token("lock:sweep") == fresh.token


async def test_lock_context_manager_releases(store):
    async with DistributedLock(store, "ctx") as lock:
        assert lock.acquired is True
        assert await store.get_token("lock:ctx") is not None

    assert await store.get_token("lock:ctx") is None


@pytest.mark.requires_redis
async def test_redis_store_health_check(redis_store):
    health = await redis_store.health_check()
    assert health["healthy"] is True
