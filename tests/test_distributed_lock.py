import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from nocrop.locking.distributed_lock import DistributedLock
from nocrop.storage.base import LockRecord
from nocrop.storage.memory_storage import MemoryStorage
from nocrop.utils.errors import LockBusyError, PersistenceError


class Clock:
    def __init__(self):
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


class BrokenDeleteStore(MemoryStorage):
    async def delete(self, user_id):
        raise PersistenceError("store down")


@pytest.mark.asyncio
async def test_concurrent_acquire_exactly_one_wins():
    lock = DistributedLock(MemoryStorage())
    results = await asyncio.gather(lock.acquire("u1", "A"), lock.acquire("u1", "B"))
    assert sorted(results) == [False, True]


@pytest.mark.asyncio
async def test_release_lets_new_trace_acquire():
    store = MemoryStorage()
    lock = DistributedLock(store)
    assert await lock.acquire("u1", "A")
    assert not await lock.acquire("u1", "B")

    await lock.release("u1")
    assert await lock.acquire("u1", "C")
    record = await lock.get("u1")
    assert record.trace_id == "C"


@pytest.mark.asyncio
async def test_release_is_idempotent():
    lock = DistributedLock(MemoryStorage())
    await lock.release("nobody")
    await lock.release("nobody")


@pytest.mark.asyncio
async def test_expired_lock_is_taken_over():
    clock = Clock()
    store = MemoryStorage()
    lock = DistributedLock(store, ttl_seconds=600, time_fn=clock)
    assert await lock.acquire("u1", "crashed")

    clock.advance(599)
    assert not await lock.acquire("u1", "B")

    clock.advance(2)
    assert await lock.acquire("u1", "B")
    assert (await store.get("u1")).trace_id == "B"


@pytest.mark.asyncio
async def test_unlocked_record_is_taken_over():
    clock = Clock()
    store = MemoryStorage()
    await store.insert(LockRecord("u1", "old", clock() + timedelta(hours=1), locked=False))
    lock = DistributedLock(store, time_fn=clock)
    assert await lock.acquire("u1", "new")


@pytest.mark.asyncio
async def test_users_do_not_block_each_other():
    lock = DistributedLock(MemoryStorage())
    assert await lock.acquire("u1", "A")
    assert await lock.acquire("u2", "B")


@pytest.mark.asyncio
async def test_held_releases_on_error():
    store = MemoryStorage()
    lock = DistributedLock(store)
    with pytest.raises(RuntimeError):
        async with lock.held("u1", "A"):
            assert await store.get("u1") is not None
            raise RuntimeError("boom")
    assert await store.get("u1") is None


@pytest.mark.asyncio
async def test_held_retries_once_then_raises_busy():
    store = MemoryStorage()
    lock = DistributedLock(store, retry_delay=0)
    assert await lock.acquire("u1", "holder")

    with pytest.raises(LockBusyError):
        async with lock.held("u1", "waiter"):
            pytest.fail("body must not run")
    # the holder keeps its lock
    assert (await store.get("u1")).trace_id == "holder"


@pytest.mark.asyncio
async def test_held_succeeds_when_holder_releases_during_retry_delay():
    store = MemoryStorage()
    lock = DistributedLock(store, retry_delay=0.05)
    assert await lock.acquire("u1", "holder")

    async def release_soon():
        await asyncio.sleep(0.01)
        await lock.release("u1")

    releaser = asyncio.create_task(release_soon())
    async with lock.held("u1", "waiter") as trace_id:
        assert trace_id == "waiter"
        assert (await store.get("u1")).trace_id == "waiter"
    await releaser
    assert await store.get("u1") is None


@pytest.mark.asyncio
async def test_release_failure_is_logged_not_raised(caplog):
    lock = DistributedLock(BrokenDeleteStore())
    assert await lock.acquire("u1", "A")
    await lock.release("u1")
    assert "release_failed" in caplog.text


@pytest.mark.asyncio
async def test_list_locks_and_reap():
    clock = Clock()
    store = MemoryStorage()
    lock = DistributedLock(store, ttl_seconds=10, time_fn=clock)
    await lock.acquire("u1", "A")
    clock.advance(5)
    await lock.acquire("u2", "B")

    listed = await lock.list_locks()
    assert [record.user_id for record in listed] == ["u2", "u1"]

    clock.advance(6)
    assert await lock.reap_expired() == 1
    assert [record.user_id for record in await lock.list_locks()] == ["u2"]
    assert await lock.get("u1") is None
