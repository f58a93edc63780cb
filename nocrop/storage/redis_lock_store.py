"""
Redis-backed lock store.

One hash per user (locked, trace_id, expires_at in epoch ms) with the key's
own PEXPIREAT as TTL, so expired locks disappear without a reaper. The
conditional update and the insert-if-absent are Lua scripts to stay atomic
across instances.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import List, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from nocrop.storage.base import LockRecord, LockStore
from nocrop.utils.errors import DuplicateKeyError, PersistenceError

logger = logging.getLogger(__name__)

KEY_PREFIX = "nocrop:lock:"

UPDATE_SCRIPT = """
local locked = redis.call('HGET', KEYS[1], 'locked')
if not locked then
    return 0
end
local expires_at = tonumber(redis.call('HGET', KEYS[1], 'expires_at') or '0')
if locked == '1' and expires_at > tonumber(ARGV[3]) then
    return 0
end
redis.call('HSET', KEYS[1], 'locked', '1', 'trace_id', ARGV[1], 'expires_at', ARGV[2])
redis.call('PEXPIREAT', KEYS[1], ARGV[2])
return 1
"""

INSERT_SCRIPT = """
if redis.call('EXISTS', KEYS[1]) == 1 then
    return 0
end
redis.call('HSET', KEYS[1], 'locked', '1', 'trace_id', ARGV[1], 'expires_at', ARGV[2])
redis.call('PEXPIREAT', KEYS[1], ARGV[2])
return 1
"""


def lock_key(user_id: str) -> str:
    return f"{KEY_PREFIX}{user_id}"


def _to_ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def _from_ms(value) -> datetime:
    return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)


class RedisLockStore(LockStore):
    def __init__(self, client):
        self._client = client

    @classmethod
    async def from_url(
        cls,
        url: str,
        *,
        connect_timeout: float = 1.0,
        read_timeout: float = 1.0,
    ) -> "RedisLockStore":
        client = redis.from_url(
            url,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=connect_timeout,
            socket_timeout=read_timeout,
        )
        try:
            await asyncio.wait_for(client.ping(), timeout=max(connect_timeout, read_timeout) + 1.0)
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            await client.aclose()
            raise PersistenceError(f"cannot connect to Redis: {exc}") from exc
        logger.info("[LOCK] backend=redis url=%s", url.split("@")[-1] if "@" in url else "configured")
        return cls(client)

    async def _call(self, coro):
        try:
            return await coro
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            logger.warning("[LOCK] redis_error error=%s", exc)
            raise PersistenceError(str(exc)) from exc

    async def try_update(self, user_id: str, trace_id: str, expires_at: datetime, now: datetime) -> bool:
        result = await self._call(
            self._client.eval(UPDATE_SCRIPT, 1, lock_key(user_id), trace_id, _to_ms(expires_at), _to_ms(now))
        )
        return int(result) == 1

    async def insert(self, record: LockRecord) -> None:
        result = await self._call(
            self._client.eval(INSERT_SCRIPT, 1, lock_key(record.user_id), record.trace_id, _to_ms(record.expires_at))
        )
        if int(result) != 1:
            raise DuplicateKeyError(f"lock for user {record.user_id} already exists")

    async def delete(self, user_id: str) -> None:
        await self._call(self._client.delete(lock_key(user_id)))

    async def get(self, user_id: str) -> Optional[LockRecord]:
        data = await self._call(self._client.hgetall(lock_key(user_id)))
        if not data:
            return None
        return LockRecord(
            user_id=user_id,
            trace_id=data.get("trace_id", ""),
            expires_at=_from_ms(data.get("expires_at", 0)),
            locked=data.get("locked") == "1",
        )

    async def list_locks(self, limit: int = 50) -> List[LockRecord]:
        records: List[LockRecord] = []
        try:
            async for key in self._client.scan_iter(match=f"{KEY_PREFIX}*"):
                record = await self.get(key[len(KEY_PREFIX):])
                if record is not None:
                    records.append(record)
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            raise PersistenceError(str(exc)) from exc
        records.sort(key=lambda record: record.expires_at, reverse=True)
        return records[:limit]

    async def reap_expired(self, now: datetime) -> int:
        # keys carry their own PEXPIREAT
        return 0

    async def close(self) -> None:
        await self._client.aclose()
