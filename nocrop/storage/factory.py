"""
Storage factory: pick lock/metrics/settings backends from Config.

STORAGE_MODE (metrics + settings):
    auto      -> postgres when DATABASE_URL is set, memory otherwise
    memory    -> in-process only
    postgres  -> DATABASE_URL required

LOCK_BACKEND:
    auto      -> redis when REDIS_URL is set, else same as STORAGE_MODE
    memory | postgres | redis
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from nocrop.config import Config
from nocrop.storage.base import LockStore, MetricsStore, SettingsStore
from nocrop.storage.memory_storage import MemoryStorage
from nocrop.storage.pg_storage import PostgresStorage
from nocrop.storage.redis_lock_store import RedisLockStore

logger = logging.getLogger(__name__)


@dataclass
class Storages:
    locks: LockStore
    metrics: MetricsStore
    settings: SettingsStore
    lock_backend: str = "memory"
    storage_mode: str = "memory"
    _owned: List[object] = field(default_factory=list, repr=False)

    async def close(self) -> None:
        for backend in self._owned:
            try:
                await backend.close()
            except Exception as exc:
                logger.warning("[STORAGE] close_failed backend=%s error=%s", type(backend).__name__, exc)
        self._owned.clear()


def resolve_modes(config: Config) -> tuple[str, str]:
    """Return (storage_mode, lock_backend) after resolving 'auto'."""
    storage_mode = config.storage_mode
    if storage_mode == "auto":
        storage_mode = "postgres" if config.database_url else "memory"

    lock_backend = config.lock_backend
    if lock_backend == "auto":
        if config.redis_url:
            lock_backend = "redis"
        else:
            lock_backend = storage_mode
    return storage_mode, lock_backend


async def create_storages(config: Config, *, memory: Optional[MemoryStorage] = None) -> Storages:
    storage_mode, lock_backend = resolve_modes(config)
    owned: List[object] = []

    postgres: Optional[PostgresStorage] = None
    if storage_mode == "postgres" or lock_backend == "postgres":
        postgres = await PostgresStorage.connect(config.database_url)
        owned.append(postgres)

    memory = memory or MemoryStorage()
    data_store = postgres if storage_mode == "postgres" else memory

    locks: LockStore
    if lock_backend == "redis":
        locks = await RedisLockStore.from_url(config.redis_url)
        owned.append(locks)
    elif lock_backend == "postgres":
        locks = postgres
    else:
        locks = memory

    logger.info("[STORAGE] storage_mode=%s lock_backend=%s", storage_mode, lock_backend)
    if lock_backend == "memory":
        logger.warning("[STORAGE] lock_backend=memory locks are not shared between instances")

    return Storages(
        locks=locks,
        metrics=data_store,
        settings=data_store,
        lock_backend=lock_backend,
        storage_mode=storage_mode,
        _owned=owned,
    )
