"""AlarmClock whose alarms fire only when the test says so."""

from typing import List

from nocrop.utils.alarm import Alarm, AlarmCallback, AlarmClock


class ManualAlarmClock(AlarmClock):
    def __init__(self):
        self.alarms: List[Alarm] = []
        self.delays: List[float] = []

    def schedule(self, key: str, delay: float, callback: AlarmCallback) -> Alarm:
        alarm = Alarm(key, callback)
        self.alarms.append(alarm)
        self.delays.append(delay)
        return alarm

    def pending(self) -> List[Alarm]:
        return [alarm for alarm in self.alarms if alarm.pending]

    async def fire(self, key: str) -> None:
        for alarm in self.pending():
            if alarm.key == key:
                await alarm.fire()

    async def fire_all(self) -> None:
        for alarm in self.pending():
            await alarm.fire()
