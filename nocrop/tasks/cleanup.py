"""
Background cleanup tasks.

Runs periodic maintenance operations:
- Delete expired per-user lock records (crashed holders)
"""
import asyncio
import logging
from datetime import datetime, timezone

from nocrop.storage.base import LockStore
from nocrop.utils.errors import PersistenceError

logger = logging.getLogger(__name__)


async def run_reaper_once(store: LockStore) -> int:
    """Delete expired locks once; returns how many were removed."""
    removed = await store.reap_expired(datetime.now(timezone.utc))
    if removed:
        logger.info(f"🧹 Reaped {removed} expired lock(s)")
    return removed


async def lock_reaper_loop(store: LockStore, interval_seconds: float = 60.0):
    """
    Reap expired locks periodically.

    Args:
        store: Lock store to clean
        interval_seconds: Pause between runs (default: 60s)
    """
    logger.info(f"🧹 Lock reaper started (runs every {interval_seconds:g}s)")

    while True:
        try:
            await asyncio.sleep(interval_seconds)
            await run_reaper_once(store)
        except asyncio.CancelledError:
            logger.info("🛑 Lock reaper cancelled")
            break
        except PersistenceError as e:
            logger.warning(f"Lock reaper: store unavailable: {e}")
        except Exception as e:
            logger.error(f"Error in lock reaper loop: {e}", exc_info=True)
            # Continue running despite errors
