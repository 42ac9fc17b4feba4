# src/todo_alarms/notify/local_notifier.py

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime

from ..core.errors import NotificationSchedulingError
from ..core.ports import FiredHandler, InteractionHandler, NotificationData
from ..tasks.task_models import as_utc, utcnow

logger = logging.getLogger(__name__)


class LocalNotifier:
    """
    In-process notification primitive backed by asyncio timers.

    - schedule() arms loop.call_later on the running loop (never blocks)
    - cancel() disarms; unknown ids are ignored
    - on fire, the registered on_fired(request_id, payload) handler is invoked

    Timers live only as long as the process. Alarms that come due while the
    process is down are picked up by the scheduler's reconcile() on the next start.
    """

    def __init__(self, *, clock: Callable[[], datetime] = utcnow, enabled: bool = True) -> None:
        self._clock = clock
        self._enabled = enabled
        self._permission: bool | None = None
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._on_fired: FiredHandler | None = None
        self._on_user_interaction: InteractionHandler | None = None

    def set_handlers(
            self,
            *,
            on_fired: FiredHandler | None = None,
            on_user_interaction: InteractionHandler | None = None,
    ) -> None:
        self._on_fired = on_fired
        self._on_user_interaction = on_user_interaction

    def request_permission(self) -> bool:
        # Local timers need no OS consent; the settings switch stands in for it.
        self._permission = self._enabled
        if not self._permission:
            logger.warning("Notifications are disabled; alarms will not be scheduled")
        return self._permission

    def pending(self) -> list[str]:
        return list(self._timers)

    def schedule(self, request_id: str, fire_at: datetime, payload: NotificationData) -> None:
        if self._permission is None:
            self.request_permission()
        if not self._permission:
            raise NotificationSchedulingError("notification permission denied")

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as e:
            raise NotificationSchedulingError("no running event loop to arm the timer") from e

        self.cancel(request_id)
        delay = max(0.0, (as_utc(fire_at) - self._clock()).total_seconds())
        self._timers[request_id] = loop.call_later(delay, self._fire, request_id, payload)
        logger.debug("Timer armed request_id=%s delay=%.1fs", request_id, delay)

    def cancel(self, request_id: str) -> None:
        handle = self._timers.pop(request_id, None)
        if handle is not None:
            handle.cancel()
            logger.debug("Timer disarmed request_id=%s", request_id)

    def cancel_all(self) -> None:
        for request_id in list(self._timers):
            self.cancel(request_id)

    def _fire(self, request_id: str, payload: NotificationData) -> None:
        self._timers.pop(request_id, None)
        if self._on_fired is None:
            logger.warning("Notification fired with no handler request_id=%s", request_id)
            return
        try:
            self._on_fired(request_id, payload)
        except Exception:
            logger.exception("on_fired handler failed request_id=%s", request_id)

    def user_interaction(self, payload: NotificationData) -> None:
        """Feed a 'user opened this notification' event back into the engine."""
        if self._on_user_interaction is None:
            return
        self._on_user_interaction(payload)
