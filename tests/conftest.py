# tests/conftest.py

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path
from types import SimpleNamespace

import pytest

from todo_alarms.core.state import AppState
from todo_alarms.notify.sinks import DeliveryDispatcher
from todo_alarms.tasks.alarm_scheduler import AlarmScheduler
from todo_alarms.tasks.task_api import TaskTracker
from todo_alarms.tasks.task_store import TaskStore

from .fakes import FakeClock, FakeNotifier, FakeSink, MemoryKeyValueStore


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and bootstrap.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="todo-alarms-test",
        log_level="DEBUG",
        data_dir=tmp_path / "data",
        store_dir=tmp_path / "data" / "store",
        notifications_enabled=True,
        console_sink_enabled=False,
        webhook_url="",
        webhook_timeout_seconds=1.0,
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def kv() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture()
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture()
def store(kv: MemoryKeyValueStore, clock: FakeClock) -> Iterator[TaskStore]:
    s = TaskStore(kv, clock=clock)
    s.load()
    yield s
    s.close()


@pytest.fixture()
def scheduler(store: TaskStore, notifier: FakeNotifier, clock: FakeClock) -> AlarmScheduler:
    sch = AlarmScheduler(store, notifier, clock=clock)
    sch.attach()
    return sch


@pytest.fixture()
def tracker(store: TaskStore, scheduler: AlarmScheduler) -> TaskTracker:
    return TaskTracker(store, scheduler)


@pytest.fixture()
def sink() -> FakeSink:
    return FakeSink()


@pytest.fixture()
def state(settings: SimpleNamespace, tracker: TaskTracker, notifier: FakeNotifier, sink: FakeSink) -> AppState:
    """
    AppState wired with deterministic fakes.

    NOTE: the store and scheduler are real; only the substrate, the notification
    primitive and the clock are faked.
    """
    dispatcher = DeliveryDispatcher([sink])
    tracker.scheduler.add_delivery_listener(dispatcher)
    return AppState(settings=settings, tracker=tracker, notifier=notifier, dispatcher=dispatcher)
