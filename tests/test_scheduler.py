"""Tests for the time-indexed trigger scheduler."""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone

import pytest

from raidplanner.domain.models import Trigger, TriggerKind
from raidplanner.services.scheduler import TriggerScheduler

_NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture()
def clock():
    return FakeClock(_NOW)


@pytest.fixture()
def scheduler(clock):
    return TriggerScheduler(clock=clock)


def _trigger(raid_id: str = "r1", minutes: int = 30, label: str = "1 hour") -> Trigger:
    return Trigger(
        raid_id=raid_id,
        fires_at=_NOW + timedelta(minutes=minutes),
        kind=TriggerKind.REMINDER,
        label=label,
    )


def test_past_due_trigger_dropped(scheduler):
    fired = []

    assert scheduler.schedule_at(_trigger(minutes=-5), fired.append) is False
    assert scheduler.schedule_at(_trigger(minutes=0), fired.append) is False

    scheduler.run_due(_NOW + timedelta(days=1))
    assert fired == []
    assert scheduler.pending() == []


def test_fires_once_at_or_after_time(scheduler):
    fired = []
    trigger = _trigger(minutes=30)
    scheduler.schedule_at(trigger, fired.append)

    assert scheduler.run_due(_NOW + timedelta(minutes=29)) == []
    assert fired == []

    assert scheduler.run_due(_NOW + timedelta(minutes=31)) == [trigger]
    assert fired == [trigger]

    scheduler.run_due(_NOW + timedelta(hours=5))
    assert fired == [trigger]


def test_fires_in_time_order(scheduler):
    fired = []
    late = _trigger(minutes=90, label="late")
    early = _trigger(minutes=10, label="early")
    scheduler.schedule_at(late, fired.append)
    scheduler.schedule_at(early, fired.append)

    assert scheduler.next_fire_time() == early.fires_at
    scheduler.run_due(_NOW + timedelta(hours=2))

    assert [t.label for t in fired] == ["early", "late"]


def test_duplicate_key_not_queued_twice(scheduler):
    fired = []
    assert scheduler.schedule_at(_trigger(), fired.append) is True
    assert scheduler.schedule_at(_trigger(), fired.append) is False

    scheduler.run_due(_NOW + timedelta(hours=1))
    assert len(fired) == 1


def test_discard_drops_raid_triggers(scheduler):
    fired = []
    scheduler.schedule_at(_trigger(raid_id="r1"), fired.append)
    scheduler.schedule_at(_trigger(raid_id="r1", label="3 hours", minutes=20), fired.append)
    scheduler.schedule_at(_trigger(raid_id="r2"), fired.append)

    assert scheduler.discard("r1") == 2
    scheduler.run_due(_NOW + timedelta(hours=1))

    assert [t.raid_id for t in fired] == ["r2"]


def test_failing_callback_does_not_stop_others(scheduler):
    fired = []

    def boom(trigger):
        raise RuntimeError("delivery exploded")

    scheduler.schedule_at(_trigger(raid_id="r1", minutes=5), boom)
    scheduler.schedule_at(_trigger(raid_id="r2", minutes=6), fired.append)

    scheduler.run_due(_NOW + timedelta(minutes=10))

    assert [t.raid_id for t in fired] == ["r2"]


def test_background_loop_fires_due_triggers(clock):
    scheduler = TriggerScheduler(clock=clock, poll_seconds=0.01)
    done = threading.Event()
    scheduler.schedule_at(_trigger(minutes=1), lambda t: done.set())

    scheduler.start()
    try:
        clock.now = _NOW + timedelta(minutes=2)
        assert done.wait(timeout=5)
    finally:
        scheduler.stop()

    assert scheduler.pending() == []


def test_slow_fire_does_not_block_other_fires(clock):
    """Each fire runs as its own unit of work."""
    scheduler = TriggerScheduler(clock=clock, poll_seconds=0.01)
    release = threading.Event()
    second_fired = threading.Event()

    scheduler.schedule_at(_trigger(raid_id="slow", minutes=1), lambda t: release.wait(5))
    scheduler.schedule_at(_trigger(raid_id="fast", minutes=2), lambda t: second_fired.set())

    scheduler.start()
    try:
        clock.now = _NOW + timedelta(minutes=3)
        assert second_fired.wait(timeout=5)
    finally:
        release.set()
        scheduler.stop()
