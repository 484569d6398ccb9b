# tests/test_milestones.py

from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone

import pytest

from twodo.tasks.milestones import MilestoneAggregator, is_milestone, week_start, weekly_completed_count
from twodo.tasks.task_models import Task, UserProfile

from .fakes import NOW, make_record


def _completed(n: int, *, start: int = 0, when: datetime = NOW - timedelta(hours=1)) -> list[Task]:
    return [
        Task.from_record(make_record(f"d{i}", status="completed", completed_at=when))
        for i in range(start, start + n)
    ]


def test_week_start_is_local_midnight_of_start_day() -> None:
    wednesday = datetime(2026, 10, 14, 15, 30).astimezone()

    sunday = week_start(wednesday, 6)
    assert (sunday.year, sunday.month, sunday.day) == (2026, 10, 11)
    assert (sunday.hour, sunday.minute, sunday.second, sunday.microsecond) == (0, 0, 0, 0)

    monday = week_start(wednesday, 0)
    assert (monday.month, monday.day) == (10, 12)

    same_day = week_start(wednesday, 2)
    assert (same_day.month, same_day.day) == (10, 14)


@pytest.fixture()
def new_york_tz(monkeypatch):
    if not hasattr(time, "tzset"):
        pytest.skip("time.tzset is not available")
    monkeypatch.setenv("TZ", "America/New_York")
    time.tzset()
    yield
    monkeypatch.undo()
    time.tzset()


def test_week_start_uses_offset_of_its_own_midnight(new_york_tz) -> None:
    # Clocks went forward on Sunday 2025-03-09; that midnight was still EST.
    start = week_start(datetime(2025, 3, 12, 16, 0, tzinfo=timezone.utc), 6)

    assert start == datetime(2025, 3, 9, 5, 0, tzinfo=timezone.utc)

    late_saturday = datetime(2025, 3, 9, 4, 30, tzinfo=timezone.utc)
    assert late_saturday < start


def test_weekly_completed_count_ignores_last_week_and_open_tasks() -> None:
    since = week_start(NOW)
    tasks = [
        *_completed(3),
        *_completed(2, start=3, when=NOW - timedelta(days=8)),
        Task.from_record(make_record("open")),
    ]

    assert weekly_completed_count(tasks, since) == 3


def test_is_milestone_only_at_multiples_of_five() -> None:
    assert [n for n in range(0, 21) if is_milestone(n)] == [5, 10, 15, 20]


@pytest.mark.asyncio
async def test_fifth_completion_celebrates_sixth_does_not(milestones, celebrations, bus) -> None:
    assert await milestones.on_task_completed(_completed(4)) == 5
    assert celebrations == [{"count": 5}]

    assert await milestones.on_task_completed(_completed(5)) is None
    assert celebrations == [{"count": 5}]

    for n in (6, 7, 8):
        assert await milestones.on_task_completed(_completed(n)) is None
    assert await milestones.on_task_completed(_completed(9)) == 10

    assert celebrations == [{"count": 5}, {"count": 10}]
    assert [m.payload for m in bus.sent] == [{"count": 5}, {"count": 10}]
    assert {m.channel for m in bus.sent} == {"milestone_partner"}


@pytest.mark.asyncio
async def test_no_partner_celebrates_locally_only(signals, celebrations, bus, clock) -> None:
    solo = MilestoneAggregator(profile=UserProfile(id="me", name="Me"), signals=signals, bus=bus, clock=clock)

    assert await solo.on_task_completed(_completed(4)) == 5
    assert celebrations == [{"count": 5}]
    assert bus.sent == []


@pytest.mark.asyncio
async def test_partner_broadcast_failure_still_celebrates(milestones, celebrations, bus) -> None:
    bus.fail_broadcasts = True

    assert await milestones.on_task_completed(_completed(4)) == 5
    assert celebrations == [{"count": 5}]
