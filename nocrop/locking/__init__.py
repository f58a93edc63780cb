"""Per-user distributed locking."""

from nocrop.locking.distributed_lock import DistributedLock

__all__ = ["DistributedLock"]
