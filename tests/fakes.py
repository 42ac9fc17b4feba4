# tests/fakes.py

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from todo_alarms.core.errors import PersistenceError
from todo_alarms.core.ports import FiredHandler, InteractionHandler, NotificationData

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Deterministic clock: call it to get 'now', advance() to move it."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class MemoryKeyValueStore:
    """In-memory substrate with a failure switch and a write log."""

    def __init__(self) -> None:
        self.data: dict[str, bytes] = {}
        self.writes: list[tuple[str, bytes]] = []
        self.fail = False
        self.read_error: OSError | None = None

    def read(self, key: str) -> bytes | None:
        if self.read_error is not None:
            raise self.read_error
        return self.data.get(key)

    def write(self, key: str, value: bytes) -> None:
        if self.fail:
            raise PersistenceError("disk full")
        self.data[key] = value
        self.writes.append((key, value))


@dataclass(slots=True)
class ScheduledCall:
    request_id: str
    fire_at: datetime
    payload: NotificationData


class FakeNotifier:
    """
    Recording notification primitive.

    fire(request_id) simulates the OS delivering a scheduled request.
    """

    def __init__(self) -> None:
        self.scheduled: dict[str, ScheduledCall] = {}
        self.schedule_calls: list[ScheduledCall] = []
        self.cancelled: list[str] = []
        self.fail = False
        self.on_fired: FiredHandler | None = None
        self.on_user_interaction: InteractionHandler | None = None

    def request_permission(self) -> bool:
        return not self.fail

    def set_handlers(
        self,
        *,
        on_fired: FiredHandler | None = None,
        on_user_interaction: InteractionHandler | None = None,
    ) -> None:
        self.on_fired = on_fired
        self.on_user_interaction = on_user_interaction

    def schedule(self, request_id: str, fire_at: datetime, payload: NotificationData) -> None:
        if self.fail:
            raise PermissionError("notifications revoked")
        call = ScheduledCall(request_id=request_id, fire_at=fire_at, payload=payload)
        self.scheduled[request_id] = call
        self.schedule_calls.append(call)

    def cancel(self, request_id: str) -> None:
        self.cancelled.append(request_id)
        self.scheduled.pop(request_id, None)

    def fire(self, request_id: str) -> None:
        call = self.scheduled.pop(request_id)
        assert self.on_fired is not None
        self.on_fired(request_id, call.payload)


@dataclass(slots=True)
class FakeSink:
    delivered: list[NotificationData] = field(default_factory=list)

    async def deliver(self, payload: NotificationData) -> None:
        self.delivered.append(payload)
