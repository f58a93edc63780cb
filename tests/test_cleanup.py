import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from nocrop.storage.base import LockRecord
from nocrop.storage.memory_storage import MemoryStorage
from nocrop.tasks.cleanup import lock_reaper_loop, run_reaper_once
from nocrop.utils.errors import PersistenceError


class FlakyStore(MemoryStorage):
    def __init__(self):
        super().__init__()
        self.calls = 0

    async def reap_expired(self, now):
        self.calls += 1
        if self.calls == 1:
            raise PersistenceError("db down")
        return await super().reap_expired(now)


@pytest.mark.asyncio
async def test_run_reaper_once_removes_only_expired(memory_storage):
    now = datetime.now(timezone.utc)
    await memory_storage.insert(LockRecord("old", "a", now - timedelta(minutes=5)))
    await memory_storage.insert(LockRecord("live", "b", now + timedelta(minutes=5)))

    assert await run_reaper_once(memory_storage) == 1
    assert await memory_storage.get("old") is None
    assert await memory_storage.get("live") is not None


@pytest.mark.asyncio
async def test_reaper_loop_survives_store_errors():
    store = FlakyStore()
    await store.insert(LockRecord("old", "a", datetime.now(timezone.utc) - timedelta(minutes=5)))

    task = asyncio.create_task(lock_reaper_loop(store, interval_seconds=0.01))
    for _ in range(50):
        await asyncio.sleep(0.01)
        if store.calls >= 2:
            break
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)

    assert store.calls >= 2
    assert await store.get("old") is None
