# src/todo_alarms/tasks/task_models.py

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import StrEnum
from typing import Any, NamedTuple

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Normalize an instant to aware UTC. Naive values are read as local time."""
    if value.tzinfo is None:
        value = value.astimezone()
    return value.astimezone(timezone.utc)


class AlarmKey(NamedTuple):
    task_id: str
    sub_task_id: str | None = None

    @property
    def is_sub_task(self) -> bool:
        return self.sub_task_id is not None

    @property
    def request_id(self) -> str:
        # Stable per key: a restarted process replaces its own old requests.
        if self.sub_task_id is None:
            return self.task_id
        return f"{self.task_id}/{self.sub_task_id}"

    @classmethod
    def from_request_id(cls, request_id: str) -> AlarmKey:
        task_id, sep, sub_task_id = request_id.partition("/")
        return cls(task_id, sub_task_id if sep else None)


class AlarmState(StrEnum):
    """Per-key alarm lifecycle as seen by the scheduler."""

    UNSCHEDULED = "unscheduled"
    SCHEDULED = "scheduled"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class SubTask:
    id: str
    text: str
    completed: bool = False
    alarm_at: datetime | None = None
    alarm_fired: bool = False


@dataclass(frozen=True, slots=True)
class Task:
    id: str
    text: str
    created_on: date
    completed: bool = False
    expanded: bool = False
    alarm_at: datetime | None = None
    alarm_fired: bool = False
    sub_tasks: tuple[SubTask, ...] = ()

    def find_sub_task(self, sub_task_id: str) -> SubTask | None:
        for sub in self.sub_tasks:
            if sub.id == sub_task_id:
                return sub
        return None


class IdGenerator:
    """
    Millisecond-timestamp ids that never go backwards.

    If two ids are requested within the same millisecond (or the clock steps back),
    the previous value + 1 is issued instead, so an id is never handed out twice.
    """

    def __init__(self) -> None:
        self._last = 0

    def observe(self, existing_id: str) -> None:
        """Make sure future ids sort after an id found in a loaded tree."""
        try:
            n = int(existing_id)
        except (TypeError, ValueError):
            return
        if n > self._last:
            self._last = n

    def next_id(self) -> str:
        n = time.time_ns() // 1_000_000
        if n <= self._last:
            n = self._last + 1
        self._last = n
        return str(n)


# ---- serialization ----


def _instant_to_str(value: datetime | None) -> str | None:
    return None if value is None else as_utc(value).isoformat()


def _parse_instant(raw: Any, *, field: str, node_id: str) -> datetime | None:
    if raw is None or raw == "":
        return None
    if not isinstance(raw, str):
        logger.warning("Dropping non-string %s=%r on node id=%s", field, raw, node_id)
        return None
    try:
        return as_utc(datetime.fromisoformat(raw))
    except ValueError:
        # Older snapshots stored a locale-formatted string here.
        logger.warning("Dropping unparseable %s=%r on node id=%s", field, raw, node_id)
        return None


def _parse_date(raw: Any, *, node_id: str) -> date:
    if isinstance(raw, str) and raw:
        try:
            return date.fromisoformat(raw)
        except ValueError:
            pass
        try:
            return datetime.fromisoformat(raw).date()
        except ValueError:
            logger.warning("Unparseable createdOn=%r on task id=%s; using today", raw, node_id)
    return date.today()


def _require_str(entry: dict[str, Any], name: str) -> str:
    val = entry.get(name)
    if not isinstance(val, str) or not val:
        raise ValueError(f"entry is missing string field {name!r}")
    return val


def sub_task_to_dict(sub: SubTask) -> dict[str, Any]:
    out: dict[str, Any] = {
        "id": sub.id,
        "text": sub.text,
        "completed": sub.completed,
        "alarmFired": sub.alarm_fired,
    }
    if sub.alarm_at is not None:
        out["alarmAt"] = _instant_to_str(sub.alarm_at)
    return out


def task_to_dict(task: Task) -> dict[str, Any]:
    out: dict[str, Any] = {
        "id": task.id,
        "text": task.text,
        "completed": task.completed,
        "createdOn": task.created_on.isoformat(),
        "expanded": task.expanded,
        "alarmFired": task.alarm_fired,
        "subTasks": [sub_task_to_dict(s) for s in task.sub_tasks],
    }
    if task.alarm_at is not None:
        out["alarmAt"] = _instant_to_str(task.alarm_at)
    return out


def sub_task_from_dict(entry: Any) -> SubTask:
    if not isinstance(entry, dict):
        raise ValueError("sub-task entry is not an object")
    sub_id = _require_str(entry, "id")
    raw_alarm = entry.get("alarmAt", entry.get("alarmTime"))
    return SubTask(
        id=sub_id,
        text=_require_str(entry, "text"),
        completed=bool(entry.get("completed", False)),
        alarm_at=_parse_instant(raw_alarm, field="alarmAt", node_id=sub_id),
        alarm_fired=bool(entry.get("alarmFired", False)),
    )


def task_from_dict(entry: Any) -> Task:
    """
    Parse one persisted task object.

    Missing optional fields (subTasks, alarmAt, alarmFired, expanded) default to
    empty / absent. Legacy keys "date" and "alarmTime" are accepted.
    Raises ValueError when the entry is structurally broken.
    """
    if not isinstance(entry, dict):
        raise ValueError("task entry is not an object")
    task_id = _require_str(entry, "id")

    raw_subs = entry.get("subTasks") or []
    if not isinstance(raw_subs, list):
        raise ValueError(f"subTasks of task id={task_id} is not a list")

    subs: list[SubTask] = []
    seen: set[str] = set()
    for raw in raw_subs:
        sub = sub_task_from_dict(raw)
        if sub.id in seen:
            logger.warning("Duplicate sub-task id=%s under task id=%s; keeping first", sub.id, task_id)
            continue
        seen.add(sub.id)
        subs.append(sub)

    raw_alarm = entry.get("alarmAt", entry.get("alarmTime"))
    return Task(
        id=task_id,
        text=_require_str(entry, "text"),
        created_on=_parse_date(entry.get("createdOn", entry.get("date")), node_id=task_id),
        completed=bool(entry.get("completed", False)),
        expanded=bool(entry.get("expanded", False)),
        alarm_at=_parse_instant(raw_alarm, field="alarmAt", node_id=task_id),
        alarm_fired=bool(entry.get("alarmFired", False)),
        sub_tasks=tuple(subs),
    )
