"""
Fake asyncpg pool for PostgresStorage tests.
Dispatches on the storage module's SQL constants; rows are plain dicts.
"""

from contextlib import asynccontextmanager
from typing import Any, Dict, List

import asyncpg

from nocrop.storage import pg_storage as pg


class FakeConnection:
    def __init__(self, pool: "FakePool"):
        self.pool = pool

    async def execute(self, sql: str, *args: Any) -> str:
        pool = self.pool
        pool.queries.append(sql)
        if sql == pg.SCHEMA_SQL:
            pool.schema_applied = True
            return "CREATE TABLE"
        if sql == pg.LOCK_INSERT_SQL:
            user_id, locked, trace_id, expires_at = args
            if user_id in pool.locks:
                raise asyncpg.UniqueViolationError('duplicate key value violates unique constraint "user_locks_pkey"')
            pool.locks[user_id] = {"user_id": user_id, "locked": locked, "trace_id": trace_id, "expires_at": expires_at}
            return "INSERT 0 1"
        if sql == pg.LOCK_DELETE_SQL:
            removed = pool.locks.pop(args[0], None)
            return f"DELETE {1 if removed else 0}"
        if sql == pg.LOCK_REAP_SQL:
            now = args[0]
            expired = [key for key, row in pool.locks.items() if row["expires_at"] <= now]
            for key in expired:
                del pool.locks[key]
            return f"DELETE {len(expired)}"
        if sql == pg.JOB_LOG_INSERT_SQL:
            trace_id, user_id, job_type, count, size, ms, created_at = args
            if trace_id in pool.job_logs:
                raise asyncpg.UniqueViolationError('duplicate key value violates unique constraint "job_logs_pkey"')
            pool.job_logs[trace_id] = {
                "trace_id": trace_id,
                "user_id": user_id,
                "type": job_type,
                "count": count,
                "bytes": size,
                "ms": ms,
                "created_at": created_at,
            }
            return "INSERT 0 1"
        if sql == pg.SETTINGS_UPSERT_SQL:
            user_id, ratio, color = args
            pool.settings[user_id] = {"user_id": user_id, "ratio": ratio, "color": color, "updated_at": None}
            return "INSERT 0 1"
        raise AssertionError(f"unexpected execute: {sql}")

    async def fetchval(self, sql: str, *args: Any):
        pool = self.pool
        pool.queries.append(sql)
        if sql == "SELECT 1":
            return 1
        if sql == pg.LOCK_UPDATE_SQL:
            user_id, trace_id, expires_at, now = args
            row = pool.locks.get(user_id)
            if row is None:
                return None
            if row["locked"] is True and row["expires_at"] > now:
                return None
            row.update(locked=True, trace_id=trace_id, expires_at=expires_at)
            return user_id
        raise AssertionError(f"unexpected fetchval: {sql}")

    async def fetchrow(self, sql: str, *args: Any):
        pool = self.pool
        pool.queries.append(sql)
        if sql == pg.LOCK_GET_SQL:
            row = pool.locks.get(args[0])
            return dict(row) if row else None
        if sql == pg.SETTINGS_GET_SQL:
            row = pool.settings.get(args[0])
            return dict(row) if row else None
        raise AssertionError(f"unexpected fetchrow: {sql}")

    async def fetch(self, sql: str, *args: Any) -> List[Dict[str, Any]]:
        pool = self.pool
        pool.queries.append(sql)
        if sql == pg.LOCK_LIST_SQL:
            rows = sorted(pool.locks.values(), key=lambda row: row["expires_at"], reverse=True)
            return [dict(row) for row in rows[: args[0]]]
        if sql == pg.JOB_LOG_RECENT_SQL:
            rows = sorted(pool.job_logs.values(), key=lambda row: row["created_at"], reverse=True)
            return [dict(row) for row in rows[: args[0]]]
        if sql == pg.JOB_LOG_SUMMARY_SQL:
            since = args[0]
            grouped: Dict[str, Dict[str, Any]] = {}
            for row in pool.job_logs.values():
                if since is not None and row["created_at"] < since:
                    continue
                bucket = grouped.setdefault(row["type"], {"type": row["type"], "jobs": 0, "items": 0, "bytes": 0, "ms": []})
                bucket["jobs"] += 1
                bucket["items"] += row["count"]
                bucket["bytes"] += row["bytes"]
                bucket["ms"].append(row["ms"])
            result = []
            for bucket in grouped.values():
                ms_values = bucket.pop("ms")
                bucket["avg_ms"] = round(sum(ms_values) / len(ms_values))
                result.append(bucket)
            return result
        raise AssertionError(f"unexpected fetch: {sql}")


class FakePool:
    def __init__(self):
        self.locks: Dict[str, Dict[str, Any]] = {}
        self.job_logs: Dict[str, Dict[str, Any]] = {}
        self.settings: Dict[str, Dict[str, Any]] = {}
        self.queries: List[str] = []
        self.schema_applied = False
        self.down = False
        self.closed = False

    @asynccontextmanager
    async def acquire(self):
        if self.down:
            raise ConnectionRefusedError("connection refused")
        yield FakeConnection(self)

    async def close(self):
        self.closed = True
