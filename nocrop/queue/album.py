"""
Media-group debounce buffer.

The first item of a group opens a buffer and schedules one alarm; later items
only append. When the alarm fires the buffer is removed and handed over as a
single batch. An item arriving after the flush opens a fresh buffer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, TypeVar

from nocrop.utils.alarm import Alarm, AlarmClock, AsyncioAlarmClock

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_AGGREGATE_SECONDS = 1.0


@dataclass
class AlbumBuffer(Generic[T]):
    group_id: str
    items: List[T] = field(default_factory=list)
    alarm: Optional[Alarm] = None


FlushCallback = Callable[[str, List[Any]], Awaitable[None]]


class AlbumAggregator:
    def __init__(
        self,
        on_flush: FlushCallback,
        *,
        delay: float = DEFAULT_AGGREGATE_SECONDS,
        clock: Optional[AlarmClock] = None,
    ):
        self._on_flush = on_flush
        self.delay = delay
        self._clock = clock or AsyncioAlarmClock()
        self._buffers: Dict[str, AlbumBuffer] = {}

    def add_item(self, group_id: object, item: Any) -> int:
        """Buffer item under group_id; returns the group's size so far."""
        key = str(group_id)
        buffer = self._buffers.get(key)
        if buffer is None:
            buffer = AlbumBuffer(group_id=key)
            self._buffers[key] = buffer
            buffer.alarm = self._clock.schedule(key, self.delay, lambda: self._flush(key))
            logger.debug("[ALBUM] opened group_id=%s delay=%.2fs", key, self.delay)
        buffer.items.append(item)
        return len(buffer.items)

    async def _flush(self, group_id: str) -> None:
        buffer = self._buffers.pop(group_id, None)
        if buffer is None or not buffer.items:
            return
        logger.info("[ALBUM] flush group_id=%s items=%d", group_id, len(buffer.items))
        try:
            await self._on_flush(group_id, buffer.items)
        except Exception as exc:
            logger.exception("[ALBUM] flush_failed group_id=%s error=%s", group_id, exc)

    def pending_groups(self) -> Dict[str, int]:
        return {group_id: len(buffer.items) for group_id, buffer in self._buffers.items()}

    def close(self) -> int:
        """Cancel pending alarms and drop unflushed buffers."""
        dropped = len(self._buffers)
        for buffer in self._buffers.values():
            if buffer.alarm is not None:
                buffer.alarm.cancel()
        self._buffers.clear()
        if dropped:
            logger.warning("[ALBUM] closed dropped_groups=%d", dropped)
        return dropped
