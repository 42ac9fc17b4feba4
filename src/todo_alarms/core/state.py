# src/todo_alarms/core/state.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..notify.local_notifier import LocalNotifier
from ..notify.sinks import DeliveryDispatcher
from ..tasks.alarm_scheduler import AlarmScheduler
from ..tasks.task_api import TaskTracker
from ..tasks.task_store import TaskStore


@dataclass
class AppState:
    # Settings-like object (real Settings or a SimpleNamespace in tests).
    settings: Any

    tracker: TaskTracker
    notifier: LocalNotifier
    dispatcher: DeliveryDispatcher

    @property
    def store(self) -> TaskStore:
        return self.tracker.store

    @property
    def scheduler(self) -> AlarmScheduler:
        return self.tracker.scheduler
