"""
Completed-job statistics.

record() writes one JobLogRecord per finished job (album = one record) to the
metrics store and keeps a short in-memory window of durations for the health
snapshot. A store failure is logged and swallowed; metrics never fail a job.
"""

from __future__ import annotations

import logging
from collections import deque
from datetime import datetime
from typing import Any, Deque, Dict, Optional

from nocrop.storage.base import JOB_TYPES, JobLogRecord, MetricsStore
from nocrop.utils.errors import PersistenceError, ValidationError

logger = logging.getLogger(__name__)

WINDOW_SIZE = 1000


def _percentile(values, pct: float) -> int:
    if not values:
        return 0
    ordered = sorted(values)
    index = min(len(ordered) - 1, max(0, int(round(pct / 100 * (len(ordered) - 1)))))
    return int(ordered[index])


class JobMetricsSink:
    def __init__(self, store: MetricsStore, *, window_size: int = WINDOW_SIZE):
        self.store = store
        self._durations: Deque[int] = deque(maxlen=window_size)
        self._counters: Dict[str, int] = {job_type: 0 for job_type in JOB_TYPES}
        self._write_failures = 0

    async def record(
        self,
        trace_id: str,
        user_id: object,
        job_type: str,
        *,
        count: int = 1,
        bytes: int = 0,
        ms: int = 0,
        created_at: Optional[datetime] = None,
    ) -> bool:
        """Persist a job log. Returns False when the store rejected it."""
        if job_type not in JOB_TYPES:
            raise ValidationError(f"unknown job type: {job_type}")
        kwargs: Dict[str, Any] = {}
        if created_at is not None:
            kwargs["created_at"] = created_at
        record = JobLogRecord(
            trace_id=trace_id,
            user_id=str(user_id),
            type=job_type,
            count=count,
            bytes=bytes,
            ms=int(ms),
            **kwargs,
        )
        self._counters[job_type] += 1
        self._durations.append(record.ms)

        try:
            await self.store.insert_job_log(record)
        except PersistenceError as exc:
            self._write_failures += 1
            logger.warning("[METRICS] job_log_write_failed trace_id=%s error=%s", trace_id, exc)
            return False

        logger.info(
            "[METRICS] job_logged trace_id=%s user_id=%s type=%s count=%s bytes=%s ms=%s",
            trace_id,
            record.user_id,
            job_type,
            count,
            bytes,
            record.ms,
        )
        return True

    def snapshot(self) -> Dict[str, Any]:
        durations = list(self._durations)
        return {
            "jobs_by_type": dict(self._counters),
            "write_failures": self._write_failures,
            "ms_p50": _percentile(durations, 50),
            "ms_p95": _percentile(durations, 95),
            "window": len(durations),
        }

    async def summary(self, since: Optional[datetime] = None) -> Dict[str, Any]:
        return await self.store.summary_stats(since)
