# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from twodo.core.signals import LocalSignals
from twodo.tasks.milestones import MilestoneAggregator
from twodo.tasks.sync_engine import TaskSyncEngine
from twodo.tasks.task_models import UserProfile

from .fakes import FakeClock, FakeNotifier, FakeRemoteStore, RecordingBus


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and the bootstrap.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="twodo",
        backend="local",
        data_dir=tmp_path,
        tasks_db_path=tmp_path / "tasks.sqlite3",
        matrix_store_path=tmp_path / "matrix_store",
        matrix_enabled=False,
        console_enabled=False,
        user_id="me",
        user_name="Me",
        user_email="me@example.com",
        partner_id="partner",
        partner_name="Pat",
        watchdog_interval_seconds=0,
        week_start_day=6,
    )


@pytest.fixture()
def profile() -> UserProfile:
    return UserProfile(id="me", name="Me", email="me@example.com", partner_id="partner", partner_name="Pat")


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def store(clock: FakeClock) -> FakeRemoteStore:
    return FakeRemoteStore(clock=clock)


@pytest.fixture()
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture()
def bus() -> RecordingBus:
    return RecordingBus()


@pytest.fixture()
def signals() -> LocalSignals:
    return LocalSignals()


@pytest.fixture()
def celebrations(signals: LocalSignals) -> list[dict]:
    """Payloads of every celebrate_milestone signal."""
    seen: list[dict] = []
    signals.connect("celebrate_milestone", seen.append)
    return seen


@pytest.fixture()
def milestones(profile, signals, bus, clock) -> MilestoneAggregator:
    return MilestoneAggregator(profile=profile, signals=signals, bus=bus, clock=clock)


@pytest.fixture()
def engine(store, profile, milestones, clock) -> TaskSyncEngine:
    return TaskSyncEngine(store, profile=profile, milestones=milestones, clock=clock)
