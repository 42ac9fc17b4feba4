# src/todo_alarms/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the engine.

The engine depends on Protocols instead of concrete implementations.
This keeps storage / notification transports swappable and makes testing easier.
"""

from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any, Protocol

NotificationData = dict[str, Any]
# Wire payload handed to the notification primitive:
# {"title": "...", "body": "...", "data": {"taskId": "...", "subTaskId": "..." | None}}

FiredHandler = Callable[[str, NotificationData], None]
InteractionHandler = Callable[[NotificationData], None]


class KeyValueStore(Protocol):
    """
    Raw persistence substrate.

    read() returns None when nothing was stored under the key.
    write() raises PersistenceError (an OSError) on failure.
    """

    def read(self, key: str) -> bytes | None: ...
    def write(self, key: str, value: bytes) -> None: ...


class NotificationPrimitive(Protocol):
    """
    OS-level (or in-process) one-shot notification scheduler.

    schedule()/cancel() must not block. Delivery comes back through the
    handlers registered with set_handlers():
    - on_fired(request_id, payload): the request reached its fire time
    - on_user_interaction(payload): the user acted on a delivered notification
    """

    def request_permission(self) -> bool: ...
    def schedule(self, request_id: str, fire_at: datetime, payload: NotificationData) -> None: ...
    def cancel(self, request_id: str) -> None: ...

    def set_handlers(
            self,
            *,
            on_fired: FiredHandler | None = None,
            on_user_interaction: InteractionHandler | None = None,
    ) -> None: ...


class NotificationSink(Protocol):
    """Where a delivered alarm ends up (console, webhook, ...)."""

    def deliver(self, payload: NotificationData) -> Awaitable[None]: ...
