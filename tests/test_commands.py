# tests/test_commands.py

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from todo_alarms.cli.commands import CommandRegistry, parse_when, registry
from todo_alarms.core.errors import ValidationError
from todo_alarms.core.state import AppState
from todo_alarms.tasks.task_models import AlarmKey

from .fakes import T0, FakeNotifier


def test_command_registry_routes_2_and_3_params(state: AppState) -> None:
    reg = CommandRegistry()
    called = {"h2": 0, "h3": 0}

    def h2(state, args):
        called["h2"] += 1
        return "h2"

    def h3(state, args, emit):
        called["h3"] += 1
        if emit is not None:
            emit("note")
        return "h3"

    reg.register("a", h2, "a")
    reg.register("b", h3, "b")

    notes: list[str] = []
    assert reg.handle(state, "/a x") == "h2"
    assert reg.handle(state, "/b y", emit=notes.append) == "h3"
    assert called == {"h2": 1, "h3": 1}
    assert notes == ["note"]


def test_command_registry_unknown_and_non_command(state: AppState) -> None:
    reg = CommandRegistry()
    assert reg.handle(state, "hello") is None
    assert "Unknown command" in (reg.handle(state, "/nope") or "")
    assert "Empty command" in (reg.handle(state, "/") or "")


def test_parse_when_offsets_and_iso() -> None:
    assert parse_when("+10m", T0) == T0 + timedelta(minutes=10)
    assert parse_when("+1h30m", T0) == T0 + timedelta(hours=1, minutes=30)
    assert parse_when("+2d", T0) == T0 + timedelta(days=2)
    assert parse_when("2026-03-02T08:00:00+00:00", T0) == datetime(2026, 3, 2, 8, tzinfo=timezone.utc)

    for bad in ("+", "+10x", "+10m junk", "tomorrow"):
        with pytest.raises(ValidationError):
            parse_when(bad, T0)


def test_add_sub_list_done_flow(state: AppState) -> None:
    assert registry.handle(state, "/add Buy milk") == "Added #1: Buy milk"
    assert "Added sub-task" in (registry.handle(state, "/sub 1 2% milk") or "")
    assert "Usage" in (registry.handle(state, "/add   ") or "")

    listing = registry.handle(state, "/list") or ""
    assert "1. [ ] Buy milk" in listing
    assert "[+1]" in listing

    expanded = registry.handle(state, "/expand 1") or ""
    assert "1.1 [ ] 2% milk" in expanded

    assert "marked done" in (registry.handle(state, "/done 1.1") or "")
    task = state.tracker.snapshot()[0]
    assert task.completed is False
    assert task.sub_tasks[0].completed is True


def test_alarm_and_delete_commands(state: AppState, notifier: FakeNotifier) -> None:
    registry.handle(state, "/add Buy milk")
    registry.handle(state, "/sub 1 2% milk")

    assert "Alarm set" in (registry.handle(state, "/alarm 1.1 +1h") or "")
    task = state.tracker.snapshot()[0]
    key = AlarmKey(task.id, task.sub_tasks[0].id)
    assert list(state.scheduler.outstanding()) == [key]

    reply = registry.handle(state, "/del 1") or ""
    assert "cancelled 1 alarm(s)" in reply
    assert key.request_id in notifier.cancelled
    assert state.scheduler.outstanding() == {}


def test_validation_errors_become_replies(state: AppState) -> None:
    registry.handle(state, "/add t")
    assert (registry.handle(state, "/done 9") or "").startswith("Rejected:")
    assert (registry.handle(state, "/alarm 1 -5m") or "").startswith("Rejected:")
    assert (registry.handle(state, "/alarm 1 2000-01-01T00:00") or "").startswith("Rejected:")


def test_alarm_scheduling_failure_is_reported(state: AppState, notifier: FakeNotifier) -> None:
    registry.handle(state, "/add t")
    notifier.fail = True

    reply = registry.handle(state, "/alarm 1 +10m") or ""
    assert "could not be scheduled" in reply
    assert state.tracker.snapshot()[0].alarm_at is not None


def test_status_and_unalarm(state: AppState) -> None:
    registry.handle(state, "/add t")
    registry.handle(state, "/alarm 1 +10m")
    assert "Scheduled alarms: 1" in (registry.handle(state, "/status") or "")
    assert registry.handle(state, "/unalarm 1") == "Alarm cleared."
    assert registry.handle(state, "/unalarm 1") == "No alarm was set."
    assert "Scheduled alarms: 0" in (registry.handle(state, "/status") or "")
