"""
Storage contracts.

Three narrow stores instead of one god object:

- LockStore: conditional update / insert-if-absent on per-user lock records
- MetricsStore: append-only job log keyed by trace id
- SettingsStore: per-user ratio and colour

Implementations raise PersistenceError when the backend is unavailable and
DuplicateKeyError when an insert hits the uniqueness constraint.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

JOB_TYPES = ("photo", "album", "document", "layout")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class LockRecord:
    user_id: str
    trace_id: str
    expires_at: datetime
    locked: bool = True

    def is_live(self, now: datetime) -> bool:
        return self.locked and self.expires_at > now


@dataclass(frozen=True)
class JobLogRecord:
    trace_id: str
    user_id: str
    type: str
    count: int = 1
    bytes: int = 0
    ms: int = 0
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trace_id": self.trace_id,
            "user_id": self.user_id,
            "type": self.type,
            "count": self.count,
            "bytes": self.bytes,
            "ms": self.ms,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class UserSettings:
    user_id: str
    ratio: str
    color: str
    updated_at: Optional[datetime] = None


class LockStore(ABC):
    @abstractmethod
    async def try_update(self, user_id: str, trace_id: str, expires_at: datetime, now: datetime) -> bool:
        """Take over the record if it is not held or already expired."""

    @abstractmethod
    async def insert(self, record: LockRecord) -> None:
        """Insert a new held record; DuplicateKeyError if one exists."""

    @abstractmethod
    async def delete(self, user_id: str) -> None:
        """Remove the record; missing records are fine."""

    @abstractmethod
    async def get(self, user_id: str) -> Optional[LockRecord]:
        ...

    @abstractmethod
    async def list_locks(self, limit: int = 50) -> List[LockRecord]:
        ...

    @abstractmethod
    async def reap_expired(self, now: datetime) -> int:
        """Delete expired records, return how many went away."""

    async def close(self) -> None:
        return None


class MetricsStore(ABC):
    @abstractmethod
    async def insert_job_log(self, record: JobLogRecord) -> None:
        ...

    @abstractmethod
    async def recent_job_logs(self, limit: int = 100) -> List[JobLogRecord]:
        ...

    @abstractmethod
    async def summary_stats(self, since: Optional[datetime] = None) -> Dict[str, Any]:
        """Totals by job type: jobs, items, bytes, average ms."""

    async def close(self) -> None:
        return None


class SettingsStore(ABC):
    @abstractmethod
    async def get_settings(self, user_id: str) -> Optional[UserSettings]:
        ...

    @abstractmethod
    async def save_settings(self, settings: UserSettings) -> None:
        ...

    async def close(self) -> None:
        return None


def summarize_job_logs(records: List[JobLogRecord]) -> Dict[str, Any]:
    """Aggregate job logs the same way the SQL summary does."""
    by_type: Dict[str, Dict[str, Any]] = {}
    for record in records:
        bucket = by_type.setdefault(record.type, {"jobs": 0, "items": 0, "bytes": 0, "total_ms": 0})
        bucket["jobs"] += 1
        bucket["items"] += record.count
        bucket["bytes"] += record.bytes
        bucket["total_ms"] += record.ms
    for bucket in by_type.values():
        total_ms = bucket.pop("total_ms")
        bucket["avg_ms"] = round(total_ms / bucket["jobs"]) if bucket["jobs"] else 0
    return {
        "jobs": sum(bucket["jobs"] for bucket in by_type.values()),
        "items": sum(bucket["items"] for bucket in by_type.values()),
        "bytes": sum(bucket["bytes"] for bucket in by_type.values()),
        "by_type": by_type,
    }
