# src/todo_alarms/core/errors.py

from __future__ import annotations

"""
Error taxonomy shared by the task store, the alarm scheduler and the adapters.

- ValidationError: rejected synchronously, the tree is left untouched.
- CorruptStateError: persisted snapshot could not be parsed (load falls back to empty).
- PersistenceError: substrate write failed (in-memory change is kept).
- NotificationSchedulingError: the notification primitive refused a request.
"""


class TodoAlarmsError(Exception):
    """Base class for all engine errors."""


class ValidationError(TodoAlarmsError, ValueError):
    pass


class InvalidAlarmError(ValidationError):
    """Alarm instant is not strictly in the future."""


class UnknownTaskError(ValidationError):
    def __init__(self, task_id: str, sub_task_id: str | None = None) -> None:
        self.task_id = task_id
        self.sub_task_id = sub_task_id
        if sub_task_id is None:
            msg = f"unknown task id={task_id!r}"
        else:
            msg = f"unknown sub-task id={sub_task_id!r} under task id={task_id!r}"
        super().__init__(msg)


class CorruptStateError(TodoAlarmsError):
    pass


class PersistenceError(TodoAlarmsError, OSError):
    pass


class NotificationSchedulingError(TodoAlarmsError):
    pass
