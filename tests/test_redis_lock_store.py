import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from nocrop.locking.distributed_lock import DistributedLock
from nocrop.storage.base import LockRecord
from nocrop.storage.redis_lock_store import KEY_PREFIX, RedisLockStore, lock_key
from nocrop.utils.errors import DuplicateKeyError, PersistenceError
from tests.fakes.fake_redis import FakeRedis


class Clock:
    def __init__(self):
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def ms(self):
        return int(self.now.timestamp() * 1000)

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def fake_redis(clock):
    return FakeRedis(clock_ms=clock.ms)


@pytest.mark.asyncio
async def test_acquire_and_release_round_trip(fake_redis, clock):
    lock = DistributedLock(RedisLockStore(fake_redis), ttl_seconds=60, time_fn=clock)

    assert await lock.acquire("42", "A")
    assert not await lock.acquire("42", "B")
    stored = await fake_redis.hgetall(lock_key("42"))
    assert stored["trace_id"] == "A"
    assert stored["locked"] == "1"

    await lock.release("42")
    assert await fake_redis.hgetall(lock_key("42")) == {}
    assert await lock.acquire("42", "B")


@pytest.mark.asyncio
async def test_concurrent_acquire_exactly_one_wins(fake_redis, clock):
    lock = DistributedLock(RedisLockStore(fake_redis), time_fn=clock)
    results = await asyncio.gather(*(lock.acquire("u1", f"t{i}") for i in range(5)))
    assert results.count(True) == 1


@pytest.mark.asyncio
async def test_key_expires_natively(fake_redis, clock):
    store = RedisLockStore(fake_redis)
    lock = DistributedLock(store, ttl_seconds=30, time_fn=clock)
    assert await lock.acquire("u1", "crashed")

    clock.advance(31)
    assert await store.get("u1") is None
    assert await store.reap_expired(clock()) == 0
    assert await lock.acquire("u1", "next")


@pytest.mark.asyncio
async def test_insert_collision_raises_duplicate(fake_redis, clock):
    store = RedisLockStore(fake_redis)
    record = LockRecord("u1", "A", clock() + timedelta(seconds=60))
    await store.insert(record)
    with pytest.raises(DuplicateKeyError):
        await store.insert(record)


@pytest.mark.asyncio
async def test_get_and_list(fake_redis, clock):
    store = RedisLockStore(fake_redis)
    lock = DistributedLock(store, ttl_seconds=60, time_fn=clock)
    await lock.acquire("u1", "A")
    clock.advance(1)
    await lock.acquire("u2", "B")

    record = await store.get("u1")
    assert record.trace_id == "A"
    assert record.expires_at == datetime(2024, 1, 1, 0, 1, tzinfo=timezone.utc)

    listed = await store.list_locks()
    assert [item.user_id for item in listed] == ["u2", "u1"]
    assert all(key.startswith(KEY_PREFIX) for key in fake_redis._hashes)


@pytest.mark.asyncio
async def test_redis_errors_become_persistence_errors(fake_redis, clock):
    store = RedisLockStore(fake_redis)
    lock = DistributedLock(store, time_fn=clock)
    fake_redis.down = True

    with pytest.raises(PersistenceError):
        await lock.acquire("u1", "A")
    with pytest.raises(PersistenceError):
        await store.list_locks()
    # release swallows store errors
    await lock.release("u1")


@pytest.mark.asyncio
async def test_close_closes_client(fake_redis):
    store = RedisLockStore(fake_redis)
    await store.close()
    assert fake_redis.closed
