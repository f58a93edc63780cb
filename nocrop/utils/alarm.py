"""Cancellable one-shot alarms bound to a key."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

AlarmCallback = Callable[[], Awaitable[None]]


class Alarm:
    """Fires its callback at most once unless cancelled first."""

    def __init__(self, key: str, callback: AlarmCallback):
        self.key = key
        self._callback = callback
        self.fired = False
        self.cancelled = False

    @property
    def pending(self) -> bool:
        return not (self.fired or self.cancelled)

    async def fire(self) -> None:
        if not self.pending:
            return
        self.fired = True
        await self._callback()

    def cancel(self) -> None:
        if self.pending:
            self.cancelled = True


class AlarmClock(ABC):
    @abstractmethod
    def schedule(self, key: str, delay: float, callback: AlarmCallback) -> Alarm:
        ...


class _TaskAlarm(Alarm):
    def __init__(self, key: str, callback: AlarmCallback):
        super().__init__(key, callback)
        self.task: Optional[asyncio.Task] = None

    def cancel(self) -> None:
        super().cancel()
        if self.task is not None and not self.task.done() and not self.fired:
            self.task.cancel()


class AsyncioAlarmClock(AlarmClock):
    """Alarms as sleeping asyncio tasks on the running loop."""

    def schedule(self, key: str, delay: float, callback: AlarmCallback) -> Alarm:
        alarm = _TaskAlarm(key, callback)

        async def _wait_and_fire() -> None:
            await asyncio.sleep(delay)
            try:
                await alarm.fire()
            except Exception:
                logger.exception("[ALARM] callback_failed key=%s", key)

        alarm.task = asyncio.create_task(_wait_and_fire(), name=f"alarm:{key}")
        return alarm
