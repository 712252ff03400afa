"""Tests for BridgeScheduler: immediate first cycle, period, single-flight, cooperative stop."""

import asyncio

import pytest
from fakes import FakeMessageSink, FakeTagSource, snapshot_of

from uns_bridge import BridgeScheduler, CycleExecutor, TopicMapping, TopicMappingTable, TopicNamespace
from uns_bridge.errors import BridgeConnectionError
from uns_bridge.types import SchedulerState

NS = TopicNamespace.parse("v1/beverage/plant-1/filling/line-1")
TABLE = TopicMappingTable(
    [
        TopicMapping(tag="GoodBottles", suffix="good_count"),
        TopicMapping(tag="TotalBadBottles", suffix="bad_count"),
    ]
)
SNAPSHOT = snapshot_of({"GoodBottles": 120, "TotalBadBottles": 4})


def make_scheduler(
    period_s: float = 0.01, read_delay: float = 0.0, publish_delay: float = 0.0
) -> tuple[BridgeScheduler, FakeTagSource, FakeMessageSink]:
    events: list = []
    source = FakeTagSource([SNAPSHOT], tag_ids=TABLE.tag_ids, read_delay=read_delay, events=events)
    sink = FakeMessageSink(publish_delay=publish_delay, events=events, source=source)
    scheduler = BridgeScheduler(source, CycleExecutor(TABLE, NS, sink), period_s=period_s)
    return scheduler, source, sink


def test_first_cycle_fires_immediately() -> None:
    scheduler, source, sink = make_scheduler(period_s=60.0)

    async def scenario() -> None:
        task = asyncio.create_task(scheduler.run())
        await asyncio.sleep(0.05)
        assert source.reads == 1
        assert len(sink.published) == 2
        scheduler.stop()
        await asyncio.wait_for(task, timeout=1.0)

    asyncio.run(scenario())
    assert scheduler.state == SchedulerState.STOPPED
    assert scheduler.cycles == 1


def test_runs_on_period_until_max_cycles() -> None:
    scheduler, source, sink = make_scheduler(period_s=0.01)
    asyncio.run(scheduler.run(max_cycles=3))
    assert source.reads == 3
    assert len(sink.published) == 6
    assert scheduler.last_result is not None
    assert scheduler.last_result.counts() == {"published": 2, "skipped": 0, "failed": 0}


def test_cycles_never_interleave() -> None:
    # Each cycle takes several periods; overdue ticks must wait for the running cycle.
    scheduler, source, _sink = make_scheduler(period_s=0.005, read_delay=0.02, publish_delay=0.005)
    asyncio.run(scheduler.run(max_cycles=4))

    cycle_of_event = [e[1] for e in source.events if isinstance(e, tuple)]
    assert cycle_of_event == sorted(cycle_of_event)
    for cycle in range(1, 5):
        read_done = source.events.index(("read-done", cycle))
        publishes = [i for i, e in enumerate(source.events) if e == ("publish", cycle)]
        assert len(publishes) == 2
        assert all(i > read_done for i in publishes)
        if cycle < 4:
            assert max(publishes) < source.events.index(("read", cycle + 1))


def test_stop_lets_in_flight_cycle_finish() -> None:
    scheduler, source, sink = make_scheduler(period_s=0.01, read_delay=0.05)

    async def scenario() -> None:
        task = asyncio.create_task(scheduler.run())
        await asyncio.sleep(0.01)
        scheduler.stop()
        await asyncio.wait_for(task, timeout=1.0)

    asyncio.run(scenario())
    assert source.reads == 1
    assert len(sink.published) == 2
    assert scheduler.state == SchedulerState.STOPPED


def test_stop_before_start_runs_no_cycle() -> None:
    scheduler, source, _ = make_scheduler()
    scheduler.stop()
    asyncio.run(scheduler.run())
    assert source.reads == 0
    assert scheduler.state == SchedulerState.STOPPED


def test_connection_fault_ends_run() -> None:
    source = FakeTagSource(read_error=BridgeConnectionError("session closed"))
    scheduler = BridgeScheduler(source, CycleExecutor(TABLE, NS, FakeMessageSink()), period_s=0.01)
    with pytest.raises(BridgeConnectionError):
        asyncio.run(scheduler.run())
    assert scheduler.state == SchedulerState.STOPPED


def test_cannot_restart() -> None:
    scheduler, _, _ = make_scheduler()
    asyncio.run(scheduler.run(max_cycles=1))
    with pytest.raises(RuntimeError):
        asyncio.run(scheduler.run())


def test_period_must_be_positive() -> None:
    with pytest.raises(ValueError):
        BridgeScheduler(FakeTagSource(), CycleExecutor(TABLE, NS, FakeMessageSink()), period_s=0)


def test_cycle_summary_is_logged(caplog: pytest.LogCaptureFixture) -> None:
    scheduler, _, _ = make_scheduler()
    with caplog.at_level("INFO", logger="uns_bridge.scheduler"):
        asyncio.run(scheduler.run(max_cycles=1))
    assert "Cycle 1: published=2/2 skipped=0 failed=0 read_errors=0" in caplog.text
