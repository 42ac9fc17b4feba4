# src/todo_alarms/tasks/task_api.py

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from ..core.errors import UnknownTaskError
from .alarm_scheduler import AlarmScheduler, ReconcileReport
from .task_models import AlarmKey, SubTask, Task
from .task_store import TaskStore

logger = logging.getLogger(__name__)


class TaskTracker:
    """
    Consumer-facing API: TaskStore operations with alarm bookkeeping attached.

    The store stays unaware of the scheduler; this class forwards every
    alarm-affecting change (set, clear, delete) to it.
    """

    def __init__(self, store: TaskStore, scheduler: AlarmScheduler) -> None:
        self.store = store
        self.scheduler = scheduler

    def start(self) -> ReconcileReport:
        """Load the persisted tree, then reconcile alarms against it."""
        self.store.load()
        return self.scheduler.reconcile()

    # ---- reads ----

    def snapshot(self) -> tuple[Task, ...]:
        return self.store.snapshot()

    def find(self, task_id: str, sub_task_id: str | None = None) -> Task | SubTask | None:
        return self.store.find(task_id, sub_task_id)

    def subscribe(self, listener: Callable[[tuple[Task, ...]], None]) -> Callable[[], None]:
        return self.store.subscribe(listener)

    # ---- plain mutations ----

    def add_task(self, text: str) -> Task | None:
        return self.store.add_task(text)

    def add_sub_task(self, task_id: str, text: str) -> SubTask | None:
        return self.store.add_sub_task(task_id, text)

    def toggle_task_completed(self, task_id: str) -> bool | None:
        return self.store.toggle_task_completed(task_id)

    def toggle_sub_task_completed(self, task_id: str, sub_task_id: str) -> bool | None:
        return self.store.toggle_sub_task_completed(task_id, sub_task_id)

    def toggle_expanded(self, task_id: str) -> bool | None:
        return self.store.toggle_expanded(task_id)

    # ---- alarm-affecting mutations ----

    def delete_task(self, task_id: str) -> list[AlarmKey]:
        keys = self.store.delete_task(task_id)
        self.scheduler.on_node_deleted(AlarmKey(task_id))
        for key in keys:
            self.scheduler.on_node_deleted(key)
        return keys

    def set_alarm(self, task_id: str, sub_task_id: str | None, instant: datetime) -> datetime | None:
        """
        Set an alarm and schedule it.

        InvalidAlarmError / UnknownTaskError leave everything untouched.
        NotificationSchedulingError propagates with the alarm kept on the node,
        so the next reconcile retries it.
        """
        previous = self.store.set_alarm(task_id, sub_task_id, instant)
        node = self.store.find(task_id, sub_task_id)
        if node is None:
            raise UnknownTaskError(task_id, sub_task_id)
        self.scheduler.on_alarm_set(AlarmKey(task_id, sub_task_id), node.alarm_at)
        return previous

    def clear_alarm(self, task_id: str, sub_task_id: str | None = None) -> datetime | None:
        previous = self.store.clear_alarm(task_id, sub_task_id)
        self.scheduler.on_alarm_set(AlarmKey(task_id, sub_task_id), None)
        return previous
