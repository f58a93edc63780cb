"""
Per-user distributed lock over a LockStore.

acquire():
    1. conditional update: take the record if it is not held or expired
    2. no match -> insert a new held record
    3. insert hits the unique key -> someone else holds it -> False

release() deletes the record and never raises. held() wraps both with a
single retry after a short delay.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Callable, List, Optional

from nocrop.storage.base import LockRecord, LockStore
from nocrop.utils.errors import DuplicateKeyError, LockBusyError, PersistenceError

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 600.0
DEFAULT_RETRY_DELAY_SECONDS = 0.5


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DistributedLock:
    def __init__(
        self,
        store: LockStore,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        retry_delay: float = DEFAULT_RETRY_DELAY_SECONDS,
        time_fn: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.retry_delay = retry_delay
        self._now = time_fn

    async def acquire(self, user_id: object, trace_id: str) -> bool:
        """Try once to take the lock for user_id. Store errors propagate."""
        key = str(user_id)
        now = self._now()
        expires_at = now + timedelta(seconds=self.ttl_seconds)

        if await self.store.try_update(key, trace_id, expires_at, now):
            logger.info("[LOCK] acquired user_id=%s trace_id=%s path=update", key, trace_id)
            return True

        try:
            await self.store.insert(LockRecord(key, trace_id, expires_at, locked=True))
        except DuplicateKeyError:
            logger.info("[LOCK] busy user_id=%s trace_id=%s", key, trace_id)
            return False

        logger.info("[LOCK] acquired user_id=%s trace_id=%s path=insert", key, trace_id)
        return True

    async def release(self, user_id: object) -> None:
        key = str(user_id)
        try:
            await self.store.delete(key)
        except PersistenceError as exc:
            # the TTL reaps it eventually
            logger.warning("[LOCK] release_failed user_id=%s error=%s", key, exc)
            return
        logger.info("[LOCK] released user_id=%s", key)

    @asynccontextmanager
    async def held(
        self,
        user_id: object,
        trace_id: str,
        *,
        retry_delay: Optional[float] = None,
    ) -> AsyncIterator[str]:
        """Hold the lock for the block; one retry, then LockBusyError."""
        delay = self.retry_delay if retry_delay is None else retry_delay
        acquired = await self.acquire(user_id, trace_id)
        if not acquired:
            await asyncio.sleep(delay)
            acquired = await self.acquire(user_id, trace_id)
        if not acquired:
            raise LockBusyError(f"lock busy for user {user_id}")
        try:
            yield trace_id
        finally:
            await self.release(user_id)

    async def get(self, user_id: object) -> Optional[LockRecord]:
        """Current live record for the user, if any."""
        record = await self.store.get(str(user_id))
        if record is None or not record.is_live(self._now()):
            return None
        return record

    async def list_locks(self, limit: int = 50) -> List[LockRecord]:
        return await self.store.list_locks(limit)

    async def reap_expired(self) -> int:
        return await self.store.reap_expired(self._now())
