"""
In-memory stand-in for a redis.asyncio client (decode_responses=True).
Understands the lock store's two Lua scripts plus the plain commands it uses.
"""

import time
from typing import Callable, Dict, Optional

from redis.exceptions import ConnectionError as RedisConnectionError

from nocrop.storage import redis_lock_store


class FakeRedis:
    def __init__(self, clock_ms: Optional[Callable[[], int]] = None):
        self._hashes: Dict[str, Dict[str, str]] = {}
        self._expire_at_ms: Dict[str, int] = {}
        self._clock_ms = clock_ms or (lambda: int(time.time() * 1000))
        self.down = False
        self.closed = False
        self.eval_calls = 0

    def _check(self):
        if self.down:
            raise RedisConnectionError("redis is down")

    def _purge(self):
        now = self._clock_ms()
        for key, expire_at in list(self._expire_at_ms.items()):
            if expire_at <= now:
                self._hashes.pop(key, None)
                self._expire_at_ms.pop(key, None)

    def _set_lock(self, key: str, trace_id: str, expires_ms) -> None:
        self._hashes[key] = {"locked": "1", "trace_id": str(trace_id), "expires_at": str(expires_ms)}
        self._expire_at_ms[key] = int(expires_ms)

    async def ping(self):
        self._check()
        return True

    async def eval(self, script, numkeys, *args):
        self._check()
        self._purge()
        self.eval_calls += 1
        key = args[0]
        if script == redis_lock_store.UPDATE_SCRIPT:
            trace_id, expires_ms, now_ms = args[1], args[2], args[3]
            current = self._hashes.get(key)
            if not current:
                return 0
            if current["locked"] == "1" and int(current["expires_at"]) > int(now_ms):
                return 0
            self._set_lock(key, trace_id, expires_ms)
            return 1
        if script == redis_lock_store.INSERT_SCRIPT:
            trace_id, expires_ms = args[1], args[2]
            if key in self._hashes:
                return 0
            self._set_lock(key, trace_id, expires_ms)
            return 1
        raise AssertionError("unexpected script")

    async def hgetall(self, key):
        self._check()
        self._purge()
        return dict(self._hashes.get(key, {}))

    async def delete(self, *keys):
        self._check()
        removed = 0
        for key in keys:
            if self._hashes.pop(key, None) is not None:
                removed += 1
            self._expire_at_ms.pop(key, None)
        return removed

    async def scan_iter(self, match=None):
        self._check()
        self._purge()
        prefix = (match or "*").rstrip("*")
        for key in list(self._hashes):
            if key.startswith(prefix):
                yield key

    async def aclose(self):
        self.closed = True
