"""
PostgreSQL storage (asyncpg pool).

Tables:
- user_locks: one row per user, conditional update + insert-if-absent
- job_logs: append-only, primary key trace_id
- user_configs: ratio/colour per user

Expired lock rows are removed by the lock reaper task (nocrop.tasks.cleanup).
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional

import asyncpg

from nocrop.storage.base import (
    JobLogRecord,
    LockRecord,
    LockStore,
    MetricsStore,
    SettingsStore,
    UserSettings,
)
from nocrop.utils.errors import DuplicateKeyError, PersistenceError

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS user_locks (
    user_id     TEXT PRIMARY KEY,
    locked      BOOLEAN NOT NULL DEFAULT TRUE,
    trace_id    TEXT NOT NULL,
    expires_at  TIMESTAMPTZ NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_user_locks_expires_at ON user_locks (expires_at);

CREATE TABLE IF NOT EXISTS job_logs (
    trace_id    TEXT PRIMARY KEY,
    user_id     TEXT NOT NULL,
    type        TEXT NOT NULL CHECK (type IN ('photo', 'album', 'document', 'layout')),
    count       INTEGER NOT NULL DEFAULT 1,
    bytes       BIGINT NOT NULL DEFAULT 0,
    ms          INTEGER NOT NULL DEFAULT 0,
    created_at  TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_job_logs_user_created ON job_logs (user_id, created_at DESC);

CREATE TABLE IF NOT EXISTS user_configs (
    user_id     TEXT PRIMARY KEY,
    ratio       TEXT NOT NULL,
    color       TEXT NOT NULL,
    updated_at  TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""

LOCK_UPDATE_SQL = """
UPDATE user_locks
   SET locked = TRUE, trace_id = $2, expires_at = $3
 WHERE user_id = $1 AND (locked IS NOT TRUE OR expires_at <= $4)
RETURNING user_id
"""
LOCK_INSERT_SQL = "INSERT INTO user_locks (user_id, locked, trace_id, expires_at) VALUES ($1, $2, $3, $4)"
LOCK_DELETE_SQL = "DELETE FROM user_locks WHERE user_id = $1"
LOCK_GET_SQL = "SELECT user_id, locked, trace_id, expires_at FROM user_locks WHERE user_id = $1"
LOCK_LIST_SQL = "SELECT user_id, locked, trace_id, expires_at FROM user_locks ORDER BY expires_at DESC LIMIT $1"
LOCK_REAP_SQL = "DELETE FROM user_locks WHERE expires_at <= $1"

JOB_LOG_INSERT_SQL = """
INSERT INTO job_logs (trace_id, user_id, type, count, bytes, ms, created_at)
VALUES ($1, $2, $3, $4, $5, $6, $7)
"""
JOB_LOG_RECENT_SQL = """
SELECT trace_id, user_id, type, count, bytes, ms, created_at
  FROM job_logs ORDER BY created_at DESC LIMIT $1
"""
JOB_LOG_SUMMARY_SQL = """
SELECT type, COUNT(*) AS jobs, COALESCE(SUM(count), 0) AS items,
       COALESCE(SUM(bytes), 0) AS bytes, COALESCE(ROUND(AVG(ms)), 0) AS avg_ms
  FROM job_logs
 WHERE $1::timestamptz IS NULL OR created_at >= $1
 GROUP BY type
"""

SETTINGS_GET_SQL = "SELECT user_id, ratio, color, updated_at FROM user_configs WHERE user_id = $1"
SETTINGS_UPSERT_SQL = """
INSERT INTO user_configs (user_id, ratio, color, updated_at)
VALUES ($1, $2, $3, NOW())
ON CONFLICT (user_id) DO UPDATE SET ratio = EXCLUDED.ratio, color = EXCLUDED.color, updated_at = NOW()
"""


def _deleted_count(status: str) -> int:
    # asyncpg returns the command tag, e.g. "DELETE 3"
    try:
        return int(str(status).rsplit(" ", 1)[-1])
    except ValueError:
        return 0


def _lock_from_row(row) -> LockRecord:
    return LockRecord(
        user_id=row["user_id"],
        trace_id=row["trace_id"],
        expires_at=row["expires_at"],
        locked=bool(row["locked"]),
    )


class PostgresStorage(LockStore, MetricsStore, SettingsStore):
    """Lock, metrics and settings store on one asyncpg pool."""

    def __init__(self, pool):
        self._pool = pool

    @classmethod
    async def connect(
        cls,
        dsn: str,
        *,
        min_size: int = 1,
        max_size: int = 10,
        timeout: float = 10.0,
    ) -> "PostgresStorage":
        if not dsn:
            raise ValueError("DATABASE_URL not set - postgres storage requires database URL")
        try:
            pool = await asyncio.wait_for(
                asyncpg.create_pool(dsn, min_size=min_size, max_size=max_size, command_timeout=60.0),
                timeout=timeout,
            )
        except (asyncpg.PostgresError, OSError, asyncio.TimeoutError) as exc:
            raise PersistenceError(f"cannot connect to PostgreSQL: {exc}") from exc
        logger.info("[STORAGE] postgres_pool_created min=%s max=%s", min_size, max_size)
        storage = cls(pool)
        await storage.apply_schema()
        return storage

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[Any]:
        if self._pool is None:
            raise PersistenceError("PostgreSQL pool is closed")
        try:
            async with self._pool.acquire() as conn:
                yield conn
        except asyncpg.UniqueViolationError as exc:
            raise DuplicateKeyError(str(exc)) from exc
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError) as exc:
            logger.warning("[STORAGE] postgres_error error=%s", exc)
            raise PersistenceError(str(exc)) from exc

    async def apply_schema(self) -> None:
        async with self._connection() as conn:
            await conn.execute(SCHEMA_SQL)
        logger.info("[STORAGE] schema_applied tables=user_locks,job_logs,user_configs")

    async def ping(self) -> bool:
        try:
            async with self._connection() as conn:
                return await conn.fetchval("SELECT 1") == 1
        except PersistenceError:
            return False

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    # ==================== LOCKS ====================

    async def try_update(self, user_id: str, trace_id: str, expires_at: datetime, now: datetime) -> bool:
        async with self._connection() as conn:
            matched = await conn.fetchval(LOCK_UPDATE_SQL, user_id, trace_id, expires_at, now)
        return matched is not None

    async def insert(self, record: LockRecord) -> None:
        async with self._connection() as conn:
            await conn.execute(LOCK_INSERT_SQL, record.user_id, record.locked, record.trace_id, record.expires_at)

    async def delete(self, user_id: str) -> None:
        async with self._connection() as conn:
            await conn.execute(LOCK_DELETE_SQL, user_id)

    async def get(self, user_id: str) -> Optional[LockRecord]:
        async with self._connection() as conn:
            row = await conn.fetchrow(LOCK_GET_SQL, user_id)
        return _lock_from_row(row) if row else None

    async def list_locks(self, limit: int = 50) -> List[LockRecord]:
        async with self._connection() as conn:
            rows = await conn.fetch(LOCK_LIST_SQL, limit)
        return [_lock_from_row(row) for row in rows]

    async def reap_expired(self, now: datetime) -> int:
        async with self._connection() as conn:
            status = await conn.execute(LOCK_REAP_SQL, now)
        return _deleted_count(status)

    # ==================== JOB LOGS ====================

    async def insert_job_log(self, record: JobLogRecord) -> None:
        async with self._connection() as conn:
            await conn.execute(
                JOB_LOG_INSERT_SQL,
                record.trace_id,
                record.user_id,
                record.type,
                record.count,
                record.bytes,
                record.ms,
                record.created_at,
            )

    async def recent_job_logs(self, limit: int = 100) -> List[JobLogRecord]:
        async with self._connection() as conn:
            rows = await conn.fetch(JOB_LOG_RECENT_SQL, limit)
        return [
            JobLogRecord(
                trace_id=row["trace_id"],
                user_id=row["user_id"],
                type=row["type"],
                count=row["count"],
                bytes=row["bytes"],
                ms=row["ms"],
                created_at=row["created_at"],
            )
            for row in rows
        ]

    async def summary_stats(self, since: Optional[datetime] = None) -> Dict[str, Any]:
        async with self._connection() as conn:
            rows = await conn.fetch(JOB_LOG_SUMMARY_SQL, since)
        by_type = {
            row["type"]: {
                "jobs": int(row["jobs"]),
                "items": int(row["items"]),
                "bytes": int(row["bytes"]),
                "avg_ms": int(row["avg_ms"]),
            }
            for row in rows
        }
        return {
            "jobs": sum(bucket["jobs"] for bucket in by_type.values()),
            "items": sum(bucket["items"] for bucket in by_type.values()),
            "bytes": sum(bucket["bytes"] for bucket in by_type.values()),
            "by_type": by_type,
        }

    # ==================== SETTINGS ====================

    async def get_settings(self, user_id: str) -> Optional[UserSettings]:
        async with self._connection() as conn:
            row = await conn.fetchrow(SETTINGS_GET_SQL, user_id)
        if not row:
            return None
        return UserSettings(
            user_id=row["user_id"],
            ratio=row["ratio"],
            color=row["color"],
            updated_at=row["updated_at"],
        )

    async def save_settings(self, settings: UserSettings) -> None:
        async with self._connection() as conn:
            await conn.execute(SETTINGS_UPSERT_SQL, settings.user_id, settings.ratio, settings.color)
