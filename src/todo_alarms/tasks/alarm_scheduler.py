# src/todo_alarms/tasks/alarm_scheduler.py

from __future__ import annotations

"""
Alarm scheduler.

Keeps the set of outstanding notification requests consistent with the
alarm_at values in the task tree:
- reconcile() aligns both sides after a load (and fires alarms missed while down),
- on_alarm_set() / on_node_deleted() apply deltas from mutations,
- handle_fired() / handle_user_interaction() resolve deliveries back to tree nodes.

Transport (OS notifications, in-process timers) belongs to the primitive,
not the scheduler.
"""

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..core.errors import NotificationSchedulingError
from ..core.ports import NotificationData, NotificationPrimitive
from .task_models import AlarmKey, AlarmState, SubTask, Task, as_utc, utcnow
from .task_store import TaskStore

logger = logging.getLogger(__name__)

TASK_ALARM_TITLE = "Alarm for Task"
SUB_TASK_ALARM_TITLE = "Alarm for Subtask"

PayloadListener = Callable[["NotificationPayload"], None]


@dataclass(slots=True, frozen=True)
class NotificationPayload:
    title: str
    body: str
    key: AlarmKey

    def to_dict(self) -> NotificationData:
        return {
            "title": self.title,
            "body": self.body,
            "data": {"taskId": self.key.task_id, "subTaskId": self.key.sub_task_id},
        }


@dataclass(slots=True, frozen=True)
class ScheduledRequest:
    request_id: str
    fire_at: datetime


@dataclass(slots=True)
class ReconcileReport:
    scheduled: list[AlarmKey] = field(default_factory=list)
    kept: list[AlarmKey] = field(default_factory=list)
    fired: list[AlarmKey] = field(default_factory=list)
    cancelled: list[AlarmKey] = field(default_factory=list)
    failed: list[AlarmKey] = field(default_factory=list)


def build_payload(key: AlarmKey, node: Task | SubTask, parent: Task | None = None) -> NotificationPayload:
    """Title from the alarm level, body from the node text."""
    if key.is_sub_task:
        body = f"{parent.text}: {node.text}" if parent is not None else node.text
        return NotificationPayload(title=SUB_TASK_ALARM_TITLE, body=body, key=key)
    return NotificationPayload(title=TASK_ALARM_TITLE, body=node.text, key=key)


def key_from_data(data: Any, request_id: str | None = None) -> AlarmKey | None:
    """
    Recover an AlarmKey from a delivered payload.

    Accepts either the full payload ({"data": {...}}) or the inner data dict.
    Falls back to the request id when the payload carries no task id.
    """
    inner = data.get("data", data) if isinstance(data, dict) else None
    if isinstance(inner, dict):
        task_id = inner.get("taskId")
        if isinstance(task_id, str) and task_id:
            sub_task_id = inner.get("subTaskId")
            return AlarmKey(task_id, sub_task_id if isinstance(sub_task_id, str) and sub_task_id else None)
    if request_id:
        return AlarmKey.from_request_id(request_id)
    return None


def _iter_alarm_nodes(tree: Iterable[Task]) -> Iterable[tuple[AlarmKey, Task | SubTask]]:
    for task in tree:
        if task.alarm_at is not None:
            yield AlarmKey(task.id), task
        for sub in task.sub_tasks:
            if sub.alarm_at is not None:
                yield AlarmKey(task.id, sub.id), sub


class AlarmScheduler:
    """
    Maps AlarmKey -> outstanding notification request.

    Per-key lifecycle:
      unscheduled -> scheduled -> (delivered | cancelled)
      scheduled -> scheduled via reschedule (always cancel + create)

    The outstanding mapping is private; use outstanding() / state_of() to inspect it.
    """

    def __init__(
            self,
            store: TaskStore,
            notifier: NotificationPrimitive,
            *,
            clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._clock = clock

        self._outstanding: dict[AlarmKey, ScheduledRequest] = {}
        self._states: dict[AlarmKey, AlarmState] = {}

        self._delivery_listeners: list[PayloadListener] = []
        self._interaction_listeners: list[PayloadListener] = []

    # ---- wiring ----

    def attach(self) -> None:
        """Register this scheduler as the primitive's delivery handler."""
        self._notifier.set_handlers(
            on_fired=self.handle_fired,
            on_user_interaction=self.handle_user_interaction,
        )

    def add_delivery_listener(self, listener: PayloadListener) -> None:
        self._delivery_listeners.append(listener)

    def add_interaction_listener(self, listener: PayloadListener) -> None:
        self._interaction_listeners.append(listener)

    # ---- read-only views ----

    def outstanding(self) -> dict[AlarmKey, ScheduledRequest]:
        return dict(self._outstanding)

    def state_of(self, key: AlarmKey) -> AlarmState:
        return self._states.get(key, AlarmState.UNSCHEDULED)

    # ---- primitive calls ----

    def _cancel(self, key: AlarmKey) -> bool:
        req = self._outstanding.pop(key, None)
        if req is None:
            return False
        try:
            self._notifier.cancel(req.request_id)
        except Exception:
            # The request is forgotten either way; a late fire is discarded as stale.
            logger.exception("cancel failed request_id=%s", req.request_id)
        self._states[key] = AlarmState.CANCELLED
        logger.debug("Alarm cancelled key=%s", key)
        return True

    def _schedule(self, key: AlarmKey, fire_at: datetime) -> None:
        node = self._store.find(key.task_id, key.sub_task_id)
        if node is None:
            raise NotificationSchedulingError(f"cannot schedule alarm for missing node {key}")
        parent = self._store.find(key.task_id) if key.is_sub_task else None
        payload = build_payload(key, node, parent if isinstance(parent, Task) else None)

        request_id = key.request_id
        try:
            self._notifier.schedule(request_id, fire_at, payload.to_dict())
        except NotificationSchedulingError:
            logger.warning("Notification primitive refused request_id=%s", request_id)
            raise
        except Exception as e:
            logger.warning("Notification primitive refused request_id=%s: %s", request_id, e)
            raise NotificationSchedulingError(f"failed to schedule {request_id}: {e}") from e

        self._outstanding[key] = ScheduledRequest(request_id=request_id, fire_at=fire_at)
        self._states[key] = AlarmState.SCHEDULED
        logger.info("Alarm scheduled key=%s fire_at=%s", key, fire_at.isoformat())

    # ---- mutation deltas ----

    def on_alarm_set(self, key: AlarmKey, new_instant: datetime | None) -> None:
        """
        Apply an alarm change for key.

        Any existing request is cancelled first. A strictly-future instant gets a
        fresh request; None (or a past instant) leaves the key cancelled.
        Raises NotificationSchedulingError if the primitive refuses.
        """
        self._cancel(key)
        if new_instant is None:
            return
        when = as_utc(new_instant)
        if when <= self._clock():
            logger.debug("on_alarm_set: instant for key=%s is not in the future; not scheduling", key)
            return
        self._schedule(key, when)

    def on_node_deleted(self, key: AlarmKey) -> None:
        """Cancel the request for key. A task-level key also cancels its sub-task keys."""
        self._cancel(key)
        if key.is_sub_task:
            return
        for other in [k for k in self._outstanding if k.task_id == key.task_id]:
            self._cancel(other)

    # ---- reconciliation ----

    def reconcile(self, tree: Iterable[Task] | None = None) -> ReconcileReport:
        """
        Align outstanding requests with the tree.

        - future alarm_at: ensure a request with that fire time exists
        - past-or-equal alarm_at not yet fired: deliver now (late rather than never)
        - known key that lost its alarm (or its node): cancel
        """
        if tree is None:
            tree = self._store.snapshot()
        now = self._clock()
        report = ReconcileReport()

        present: set[AlarmKey] = set()
        for key, node in _iter_alarm_nodes(tree):
            if node.alarm_at is None:
                continue
            present.add(key)
            when = as_utc(node.alarm_at)

            if when <= now:
                self._cancel(key)
                if node.alarm_fired:
                    continue
                logger.info("Alarm missed while down; firing now key=%s due=%s", key, when.isoformat())
                payload = self.on_delivery(key)
                if payload is not None:
                    report.fired.append(key)
                    self._emit(self._delivery_listeners, payload)
                continue

            existing = self._outstanding.get(key)
            if existing is not None and existing.fire_at == when:
                report.kept.append(key)
                continue

            self._cancel(key)
            try:
                self._schedule(key, when)
            except NotificationSchedulingError:
                # alarm_at stays on the node; the next reconcile retries.
                report.failed.append(key)
                continue
            report.scheduled.append(key)

        for key in [k for k in self._outstanding if k not in present]:
            self._cancel(key)
            report.cancelled.append(key)

        logger.info(
            "Reconciled alarms: scheduled=%d kept=%d fired=%d cancelled=%d failed=%d",
            len(report.scheduled),
            len(report.kept),
            len(report.fired),
            len(report.cancelled),
            len(report.failed),
        )
        return report

    # ---- delivery ----

    def on_delivery(self, key: AlarmKey) -> NotificationPayload | None:
        """
        Resolve a delivered alarm back to its node.

        Node gone (deleted after scheduling) -> None, the delivery is discarded.
        Otherwise the key leaves the outstanding mapping, the node is marked as
        fired (alarm_at itself is kept) and the payload is returned.
        """
        self._outstanding.pop(key, None)
        payload = self._resolve(key)
        if payload is None:
            logger.info("Discarding delivery for deleted node key=%s", key)
            self._states[key] = AlarmState.CANCELLED
            return None

        self._states[key] = AlarmState.DELIVERED
        self._store.mark_alarm_fired(key.task_id, key.sub_task_id)
        return payload

    def _resolve(self, key: AlarmKey) -> NotificationPayload | None:
        node = self._store.find(key.task_id, key.sub_task_id)
        if node is None:
            return None
        parent = self._store.find(key.task_id) if key.is_sub_task else None
        return build_payload(key, node, parent if isinstance(parent, Task) else None)

    def handle_fired(self, request_id: str, data: NotificationData) -> NotificationPayload | None:
        """Inbound 'fired' event from the primitive."""
        key = key_from_data(data, request_id)
        if key is None:
            logger.warning("Fired notification without a resolvable key request_id=%s", request_id)
            return None

        req = self._outstanding.get(key)
        if req is None or req.request_id != request_id:
            logger.info("Discarding stale delivery request_id=%s key=%s", request_id, key)
            return None

        payload = self.on_delivery(key)
        if payload is not None:
            self._emit(self._delivery_listeners, payload)
        return payload

    def handle_user_interaction(self, data: NotificationData) -> NotificationPayload | None:
        """
        Inbound event: the user acted on a delivered notification.

        With a request still outstanding for the key (an older notification,
        alarm since rescheduled) the node is only resolved; the live request
        and the fired flag stay as they are.
        """
        key = key_from_data(data)
        if key is None:
            logger.warning("User interaction without a resolvable key: %r", data)
            return None
        if key in self._outstanding:
            payload = self._resolve(key)
        else:
            payload = self.on_delivery(key)
        if payload is not None:
            self._emit(self._interaction_listeners, payload)
        return payload

    @staticmethod
    def _emit(listeners: list[PayloadListener], payload: NotificationPayload) -> None:
        for listener in list(listeners):
            try:
                listener(payload)
            except Exception:
                logger.exception("alarm listener failed key=%s", payload.key)
