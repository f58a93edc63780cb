"""Storage package."""
from nocrop.storage.base import JobLogRecord, LockRecord, LockStore, MetricsStore, SettingsStore, UserSettings
from nocrop.storage.memory_storage import MemoryStorage

__all__ = [
    "JobLogRecord",
    "LockRecord",
    "LockStore",
    "MemoryStorage",
    "MetricsStore",
    "SettingsStore",
    "UserSettings",
]
