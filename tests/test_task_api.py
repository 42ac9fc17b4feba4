# tests/test_task_api.py

from __future__ import annotations

from datetime import timedelta

import pytest

from todo_alarms.core.errors import InvalidAlarmError, NotificationSchedulingError
from todo_alarms.tasks.alarm_scheduler import AlarmScheduler
from todo_alarms.tasks.task_api import TaskTracker
from todo_alarms.tasks.task_models import AlarmKey
from todo_alarms.tasks.task_store import TaskStore

from .fakes import FakeClock, FakeNotifier, MemoryKeyValueStore


def _fresh_tracker(kv: MemoryKeyValueStore, clock: FakeClock) -> tuple[TaskTracker, FakeNotifier]:
    notifier = FakeNotifier()
    store = TaskStore(kv, clock=clock)
    scheduler = AlarmScheduler(store, notifier, clock=clock)
    scheduler.attach()
    return TaskTracker(store, scheduler), notifier


def test_buy_milk_survives_restart_and_delete_cancels(kv: MemoryKeyValueStore, clock: FakeClock) -> None:
    first, _ = _fresh_tracker(kv, clock)
    first.start()
    task = first.add_task("Buy milk")
    assert task is not None
    sub = first.add_sub_task(task.id, "2% milk")
    assert sub is not None
    fire_at = clock() + timedelta(hours=1)
    first.set_alarm(task.id, sub.id, fire_at)

    # new process, same persisted snapshot
    second, notifier = _fresh_tracker(kv, clock)
    report = second.start()

    key = AlarmKey(task.id, sub.id)
    assert report.scheduled == [key]
    out = second.scheduler.outstanding()
    assert list(out) == [key]
    assert abs((out[key].fire_at - fire_at).total_seconds()) < 1
    assert len(notifier.schedule_calls) == 1

    second.delete_task(task.id)
    assert key.request_id in notifier.cancelled
    assert second.scheduler.outstanding() == {}
    assert second.snapshot() == ()


def test_delete_task_cancels_every_alarm_under_it(tracker: TaskTracker, clock: FakeClock) -> None:
    task = tracker.add_task("t")
    assert task is not None
    subs = [tracker.add_sub_task(task.id, f"s{i}") for i in range(3)]
    when = clock() + timedelta(minutes=30)
    tracker.set_alarm(task.id, None, when)
    for s in subs:
        assert s is not None
        tracker.set_alarm(task.id, s.id, when)
    assert len(tracker.scheduler.outstanding()) == 4

    keys = tracker.delete_task(task.id)

    assert len(keys) == 4
    assert all(k not in tracker.scheduler.outstanding() for k in keys)
    assert tracker.scheduler.outstanding() == {}


def test_set_alarm_invalid_instant_changes_nothing(
    tracker: TaskTracker, notifier: FakeNotifier, clock: FakeClock
) -> None:
    task = tracker.add_task("t")
    assert task is not None

    with pytest.raises(InvalidAlarmError):
        tracker.set_alarm(task.id, None, clock())

    assert notifier.schedule_calls == []
    found = tracker.find(task.id)
    assert found is not None and found.alarm_at is None


def test_set_alarm_outstanding_matches_node(tracker: TaskTracker, clock: FakeClock) -> None:
    task = tracker.add_task("t")
    assert task is not None
    when = clock() + timedelta(minutes=5)

    assert tracker.set_alarm(task.id, None, when) is None

    found = tracker.find(task.id)
    assert found is not None and found.alarm_at == when
    out = tracker.scheduler.outstanding()
    assert len(out) == 1
    assert out[AlarmKey(task.id)].fire_at == when


def test_set_alarm_scheduling_failure_keeps_alarm_for_retry(
    kv: MemoryKeyValueStore, clock: FakeClock
) -> None:
    tracker, notifier = _fresh_tracker(kv, clock)
    tracker.start()
    task = tracker.add_task("t")
    assert task is not None
    when = clock() + timedelta(minutes=5)
    notifier.fail = True

    with pytest.raises(NotificationSchedulingError):
        tracker.set_alarm(task.id, None, when)

    found = tracker.find(task.id)
    assert found is not None and found.alarm_at == when
    assert tracker.scheduler.outstanding() == {}

    # next start retries from the persisted alarm
    retry, retry_notifier = _fresh_tracker(kv, clock)
    assert retry.start().scheduled == [AlarmKey(task.id)]
    assert len(retry_notifier.schedule_calls) == 1


def test_clear_alarm_cancels_request(tracker: TaskTracker, notifier: FakeNotifier, clock: FakeClock) -> None:
    task = tracker.add_task("t")
    assert task is not None
    when = clock() + timedelta(minutes=5)
    tracker.set_alarm(task.id, None, when)

    assert tracker.clear_alarm(task.id) == when
    assert notifier.cancelled == [task.id]
    assert tracker.scheduler.outstanding() == {}


def test_subscribers_see_every_change(tracker: TaskTracker) -> None:
    sizes: list[int] = []
    tracker.subscribe(lambda snap: sizes.append(len(snap)))

    task = tracker.add_task("a")
    assert task is not None
    tracker.toggle_task_completed(task.id)
    tracker.delete_task(task.id)

    assert sizes == [1, 1, 0]
