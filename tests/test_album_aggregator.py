import asyncio

import pytest

from nocrop.queue.album import AlbumAggregator
from nocrop.utils.alarm import AsyncioAlarmClock
from tests.fakes.manual_alarm import ManualAlarmClock


class Collector:
    def __init__(self):
        self.batches = []

    async def __call__(self, group_id, items):
        self.batches.append((group_id, list(items)))


@pytest.mark.asyncio
async def test_items_of_one_group_flush_as_single_batch():
    clock = ManualAlarmClock()
    collector = Collector()
    albums = AlbumAggregator(collector, delay=1.0, clock=clock)

    assert albums.add_item("g1", "a") == 1
    assert albums.add_item("g1", "b") == 2
    assert albums.add_item("g1", "c") == 3
    # one alarm per group, never re-armed
    assert len(clock.alarms) == 1
    assert clock.delays == [1.0]

    await clock.fire("g1")

    assert collector.batches == [("g1", ["a", "b", "c"])]
    assert albums.pending_groups() == {}


@pytest.mark.asyncio
async def test_item_after_flush_opens_new_group():
    clock = ManualAlarmClock()
    collector = Collector()
    albums = AlbumAggregator(collector, clock=clock)

    albums.add_item("g1", "a")
    albums.add_item("g1", "b")
    albums.add_item("g1", "c")
    await clock.fire("g1")

    assert albums.add_item("g1", "late") == 1
    assert len(clock.pending()) == 1
    await clock.fire("g1")

    assert collector.batches == [("g1", ["a", "b", "c"]), ("g1", ["late"])]


@pytest.mark.asyncio
async def test_groups_are_independent():
    clock = ManualAlarmClock()
    collector = Collector()
    albums = AlbumAggregator(collector, clock=clock)

    albums.add_item("g1", 1)
    albums.add_item("g2", 2)
    albums.add_item("g1", 3)
    assert albums.pending_groups() == {"g1": 2, "g2": 1}

    await clock.fire("g2")
    assert collector.batches == [("g2", [2])]
    assert albums.pending_groups() == {"g1": 2}


@pytest.mark.asyncio
async def test_flush_failure_is_logged(caplog):
    clock = ManualAlarmClock()

    async def broken(group_id, items):
        raise RuntimeError("queue full")

    albums = AlbumAggregator(broken, clock=clock)
    albums.add_item("g1", "a")
    await clock.fire_all()

    assert "flush_failed" in caplog.text
    assert albums.pending_groups() == {}


@pytest.mark.asyncio
async def test_close_cancels_pending_alarms():
    clock = ManualAlarmClock()
    collector = Collector()
    albums = AlbumAggregator(collector, clock=clock)
    albums.add_item("g1", "a")
    albums.add_item("g2", "b")

    assert albums.close() == 2
    assert clock.pending() == []
    await clock.fire_all()
    assert collector.batches == []


@pytest.mark.asyncio
async def test_asyncio_clock_flushes_after_delay():
    collector = Collector()
    albums = AlbumAggregator(collector, delay=0.05, clock=AsyncioAlarmClock())

    albums.add_item("g1", "a")
    await asyncio.sleep(0.01)
    albums.add_item("g1", "b")
    assert collector.batches == []

    await asyncio.sleep(0.1)
    assert collector.batches == [("g1", ["a", "b"])]


@pytest.mark.asyncio
async def test_asyncio_clock_close_prevents_flush():
    collector = Collector()
    albums = AlbumAggregator(collector, delay=0.02, clock=AsyncioAlarmClock())
    albums.add_item("g1", "a")
    albums.close()

    await asyncio.sleep(0.05)
    assert collector.batches == []
