# src/todo_alarms/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires the store, scheduler, notifier and delivery sinks into AppState.
"""

from __future__ import annotations

import logging

from ..config import get_settings
from ..core.ports import NotificationSink
from ..core.state import AppState
from ..notify.local_notifier import LocalNotifier
from ..notify.sinks import ConsoleSink, DeliveryDispatcher, WebhookSink
from ..storage.kv_store import FileKeyValueStore
from ..tasks.alarm_scheduler import AlarmScheduler
from ..tasks.task_api import TaskTracker
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.store_dir.mkdir(parents=True, exist_ok=True)


def _build_sinks(settings) -> list[NotificationSink]:
    sinks: list[NotificationSink] = []
    if getattr(settings, "console_sink_enabled", True):
        sinks.append(ConsoleSink())
    url = (getattr(settings, "webhook_url", "") or "").strip()
    if url:
        timeout = float(getattr(settings, "webhook_timeout_seconds", 5.0))
        sinks.append(WebhookSink(url, timeout_seconds=timeout))
    return sinks


def create_initial_state(*, settings=None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    Nothing is loaded yet: call start_engine() from inside the event loop.
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    store = TaskStore(FileKeyValueStore(settings.store_dir))
    notifier = LocalNotifier(enabled=bool(getattr(settings, "notifications_enabled", True)))
    scheduler = AlarmScheduler(store, notifier)
    scheduler.attach()

    dispatcher = DeliveryDispatcher(_build_sinks(settings))
    scheduler.add_delivery_listener(dispatcher)

    return AppState(
        settings=settings,
        tracker=TaskTracker(store, scheduler),
        notifier=notifier,
        dispatcher=dispatcher,
    )


def start_engine(state: AppState) -> None:
    """Ask for notification permission, load the tree and reconcile alarms (needs a running loop)."""
    state.notifier.request_permission()
    report = state.tracker.start()
    if state.store.last_load_error is not None:
        logger.warning("Started with an empty task list: %s", state.store.last_load_error)
    if report.failed:
        logger.warning("%d alarm(s) could not be scheduled; they stay set and are retried on next start", len(report.failed))
