"""
In-memory storage for single-instance deployments and tests.

Every operation yields to the event loop once before touching state so
concurrent callers interleave the way they would against a real store.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from nocrop.storage.base import (
    JobLogRecord,
    LockRecord,
    LockStore,
    MetricsStore,
    SettingsStore,
    UserSettings,
    summarize_job_logs,
)
from nocrop.utils.errors import DuplicateKeyError

logger = logging.getLogger(__name__)


class MemoryStorage(LockStore, MetricsStore, SettingsStore):
    def __init__(self, max_job_logs: int = 10000):
        self._locks: Dict[str, LockRecord] = {}
        self._job_logs: Dict[str, JobLogRecord] = {}
        self._settings: Dict[str, UserSettings] = {}
        self._max_job_logs = max_job_logs

    # ==================== LOCKS ====================

    async def try_update(self, user_id: str, trace_id: str, expires_at: datetime, now: datetime) -> bool:
        await asyncio.sleep(0)
        current = self._locks.get(user_id)
        if current is None or current.is_live(now):
            return False
        self._locks[user_id] = LockRecord(user_id, trace_id, expires_at, locked=True)
        return True

    async def insert(self, record: LockRecord) -> None:
        await asyncio.sleep(0)
        if record.user_id in self._locks:
            raise DuplicateKeyError(f"lock for user {record.user_id} already exists")
        self._locks[record.user_id] = record

    async def delete(self, user_id: str) -> None:
        await asyncio.sleep(0)
        self._locks.pop(user_id, None)

    async def get(self, user_id: str) -> Optional[LockRecord]:
        return self._locks.get(user_id)

    async def list_locks(self, limit: int = 50) -> List[LockRecord]:
        records = sorted(self._locks.values(), key=lambda record: record.expires_at, reverse=True)
        return records[:limit]

    async def reap_expired(self, now: datetime) -> int:
        expired = [user_id for user_id, record in self._locks.items() if record.expires_at <= now]
        for user_id in expired:
            del self._locks[user_id]
        return len(expired)

    # ==================== JOB LOGS ====================

    async def insert_job_log(self, record: JobLogRecord) -> None:
        if record.trace_id in self._job_logs:
            raise DuplicateKeyError(f"job log {record.trace_id} already exists")
        self._job_logs[record.trace_id] = record
        if len(self._job_logs) > self._max_job_logs:
            oldest = next(iter(self._job_logs))
            del self._job_logs[oldest]

    async def recent_job_logs(self, limit: int = 100) -> List[JobLogRecord]:
        records = sorted(self._job_logs.values(), key=lambda record: record.created_at, reverse=True)
        return records[:limit]

    async def summary_stats(self, since: Optional[datetime] = None) -> Dict[str, Any]:
        records = [
            record for record in self._job_logs.values() if since is None or record.created_at >= since
        ]
        return summarize_job_logs(records)

    # ==================== SETTINGS ====================

    async def get_settings(self, user_id: str) -> Optional[UserSettings]:
        return self._settings.get(user_id)

    async def save_settings(self, settings: UserSettings) -> None:
        self._settings[settings.user_id] = settings
