# src/todo_alarms/notify/sinks.py

from __future__ import annotations

"""
Delivery sinks: where a fired alarm is shown to the user.

The scheduler emits NotificationPayload objects synchronously; DeliveryDispatcher
fans each one out to async sinks as background tasks on the running loop.
"""

import asyncio
import logging
from collections.abc import Iterable
from datetime import datetime

import httpx

from ..core.ports import NotificationData, NotificationSink
from ..tasks.alarm_scheduler import NotificationPayload

logger = logging.getLogger(__name__)


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


class ConsoleSink:
    async def deliver(self, payload: NotificationData) -> None:
        print(f"[{_ts_local()}] [ALARM] {payload.get('title', '')}: {payload.get('body', '')}", flush=True)


class WebhookSink:
    """
    POST the payload as JSON to a webhook URL.

    Failures (transport errors, non-2xx) are logged, never raised: a missed
    webhook must not break the engine.
    """

    def __init__(
            self,
            url: str,
            *,
            timeout_seconds: float = 5.0,
            transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._timeout = httpx.Timeout(timeout_seconds)
        self._transport = transport

    async def deliver(self, payload: NotificationData) -> None:
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.post(self._url, json=payload)
        except httpx.HTTPError as e:
            logger.warning("Webhook delivery failed url=%s: %r", self._url, e)
            return

        if resp.is_success:
            logger.debug("Webhook delivered status=%s", resp.status_code)
        else:
            logger.warning("Webhook rejected delivery url=%s status=%s", self._url, resp.status_code)


class DeliveryDispatcher:
    """Sync scheduler listener that forwards payloads to every async sink."""

    def __init__(self, sinks: Iterable[NotificationSink]) -> None:
        self._sinks = list(sinks)
        self._tasks: set[asyncio.Task[None]] = set()

    def __call__(self, payload: NotificationPayload) -> None:
        data = payload.to_dict()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running loop; dropping delivery key=%s", payload.key)
            return

        for sink in self._sinks:
            task = loop.create_task(self._run(sink, data))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    @staticmethod
    async def _run(sink: NotificationSink, data: NotificationData) -> None:
        try:
            await sink.deliver(data)
        except Exception:
            logger.exception("Sink %s failed", type(sink).__name__)

    async def drain(self) -> None:
        """Wait for in-flight deliveries (used on shutdown and in tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
