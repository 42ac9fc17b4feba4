# src/todo_alarms/tasks/task_store.py

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import date, datetime

from ..core.errors import (
    CorruptStateError,
    InvalidAlarmError,
    PersistenceError,
    TodoAlarmsError,
    UnknownTaskError,
)
from ..core.ports import KeyValueStore
from .task_models import AlarmKey, IdGenerator, SubTask, Task, as_utc, task_from_dict, task_to_dict, utcnow

logger = logging.getLogger(__name__)

STORAGE_KEY = "todoItems"

TreeListener = Callable[[tuple[Task, ...]], None]
PersistErrorListener = Callable[[PersistenceError], None]


class TaskStore:
    """
    In-memory task tree with full-snapshot persistence.

    Every mutation:
    - is applied to the in-memory tree first (call order, last writer wins),
    - then the whole tree is serialized and written under STORAGE_KEY,
    - then subscribers receive the new snapshot.

    Writes:
    - no running event loop -> written inline
    - inside a running loop -> handed to a single writer thread; await flush() to confirm
    Write failures are logged and reported but never rolled back: the next
    successful write carries the full current tree anyway.

    Tasks and sub-tasks are frozen dataclasses; the store swaps them on change,
    so snapshots handed out are safe to keep.
    """

    def __init__(
            self,
            kv: KeyValueStore,
            *,
            clock: Callable[[], datetime] = utcnow,
            storage_key: str = STORAGE_KEY,
    ) -> None:
        self._kv = kv
        self._clock = clock
        self._key = storage_key
        self._tasks: list[Task] = []
        self._ids = IdGenerator()

        self._listeners: list[TreeListener] = []
        self._persist_error_listeners: list[PersistErrorListener] = []
        self._pending: set[asyncio.Future[None]] = set()
        self._writer: ThreadPoolExecutor | None = None

        self.last_load_error: TodoAlarmsError | None = None
        self.last_persist_error: PersistenceError | None = None
        # Set by a failed write, cleared by a later successful one or by flush().
        self._unflushed_error: PersistenceError | None = None

    # ---- load / persist ----

    def load(self) -> tuple[Task, ...]:
        """
        Replace the in-memory tree with the persisted snapshot.

        Absent snapshot -> empty tree.
        Corrupt snapshot -> CorruptStateError is logged and kept on last_load_error,
        the tree starts empty. An unreadable one (OSError from the substrate) is
        kept there as PersistenceError. This never raises to the caller.
        """
        self.last_load_error = None
        try:
            raw = self._kv.read(self._key)
        except OSError as e:
            logger.exception("Reading persisted snapshot failed; starting with an empty tree")
            self.last_load_error = e if isinstance(e, PersistenceError) else PersistenceError(
                f"failed to read key={self._key}: {e}"
            )
            raw = None
        if raw is None:
            self._tasks = []
            logger.info("TaskStore loaded: no snapshot under key=%s", self._key)
            self._notify()
            return self.snapshot()

        try:
            tasks = self._parse_snapshot(raw)
        except CorruptStateError as e:
            logger.exception("Persisted snapshot is corrupt; starting with an empty tree")
            self.last_load_error = e
            tasks = []

        self._tasks = tasks
        for task in tasks:
            self._ids.observe(task.id)
            for sub in task.sub_tasks:
                self._ids.observe(sub.id)

        logger.info("TaskStore loaded: tasks=%d", len(tasks))
        self._notify()
        return self.snapshot()

    @staticmethod
    def _parse_snapshot(raw: bytes) -> list[Task]:
        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise CorruptStateError(f"snapshot is not valid JSON: {e}") from e

        if not isinstance(data, list):
            raise CorruptStateError(f"snapshot top level is {type(data).__name__}, expected list")

        tasks: list[Task] = []
        seen: set[str] = set()
        for i, entry in enumerate(data):
            try:
                task = task_from_dict(entry)
            except ValueError as e:
                raise CorruptStateError(f"snapshot entry #{i} is malformed: {e}") from e
            if task.id in seen:
                logger.warning("Duplicate task id=%s in snapshot; keeping first", task.id)
                continue
            seen.add(task.id)
            tasks.append(task)
        return tasks

    def serialize(self) -> bytes:
        return json.dumps([task_to_dict(t) for t in self._tasks], ensure_ascii=False).encode("utf-8")

    def _write(self, payload: bytes) -> None:
        try:
            self._kv.write(self._key, payload)
        except PersistenceError:
            raise
        except OSError as e:
            raise PersistenceError(f"failed to write key={self._key}: {e}") from e

    def _report_persist_error(self, err: PersistenceError) -> None:
        logger.warning("Persisting task tree failed (in-memory state kept): %s", err)
        self.last_persist_error = err
        self._unflushed_error = err
        for listener in list(self._persist_error_listeners):
            try:
                listener(err)
            except Exception:
                logger.exception("persist error listener failed")

    def _on_write_done(self, fut: asyncio.Future[None]) -> None:
        self._pending.discard(fut)
        if fut.cancelled():
            return
        exc = fut.exception()
        if isinstance(exc, PersistenceError):
            self._report_persist_error(exc)
        elif exc is not None:
            logger.error("Unexpected error while persisting task tree", exc_info=exc)
        else:
            self._unflushed_error = None

    def _persist(self) -> None:
        payload = self.serialize()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is None:
            try:
                self._write(payload)
            except PersistenceError as e:
                self._report_persist_error(e)
            else:
                self._unflushed_error = None
            return

        if self._writer is None:
            # One writer thread: snapshots land in dispatch order and never share a temp file.
            self._writer = ThreadPoolExecutor(max_workers=1, thread_name_prefix="task-store-writer")
        fut = loop.run_in_executor(self._writer, self._write, payload)
        self._pending.add(fut)
        fut.add_done_callback(self._on_write_done)

    async def flush(self) -> None:
        """
        Wait for every write dispatched so far.

        Raises PersistenceError (already logged/reported) when the latest write
        failed, whether it finished before this call or during it. The error is
        reported once; a later flush with no new failure returns normally.
        """
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
        err, self._unflushed_error = self._unflushed_error, None
        if err is not None:
            raise err

    def close(self) -> None:
        """Stop the writer thread after pending writes finish."""
        if self._writer is not None:
            self._writer.shutdown(wait=True)
            self._writer = None

    def _commit(self) -> None:
        self._persist()
        self._notify()

    # ---- subscriptions ----

    def subscribe(self, listener: TreeListener) -> Callable[[], None]:
        """Call listener with the current snapshot after every change. Returns an unsubscribe hook."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def on_persist_error(self, listener: PersistErrorListener) -> None:
        self._persist_error_listeners.append(listener)

    def _notify(self) -> None:
        snap = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snap)
            except Exception:
                logger.exception("tree listener failed")

    # ---- read API ----

    def snapshot(self) -> tuple[Task, ...]:
        return tuple(self._tasks)

    def __len__(self) -> int:
        return len(self._tasks)

    def _index_of(self, task_id: str) -> int | None:
        for i, task in enumerate(self._tasks):
            if task.id == task_id:
                return i
        return None

    def find(self, task_id: str, sub_task_id: str | None = None) -> Task | SubTask | None:
        idx = self._index_of(task_id)
        if idx is None:
            return None
        task = self._tasks[idx]
        if sub_task_id is None:
            return task
        return task.find_sub_task(sub_task_id)

    def alarm_keys(self) -> list[AlarmKey]:
        """Keys of every node that currently carries an alarm, in tree order."""
        keys: list[AlarmKey] = []
        for task in self._tasks:
            if task.alarm_at is not None:
                keys.append(AlarmKey(task.id))
            for sub in task.sub_tasks:
                if sub.alarm_at is not None:
                    keys.append(AlarmKey(task.id, sub.id))
        return keys

    # ---- mutations ----

    def add_task(self, text: str) -> Task | None:
        clean = (text or "").strip()
        if not clean:
            logger.debug("add_task ignored: empty text")
            return None

        task = Task(id=self._ids.next_id(), text=clean, created_on=date.today())
        self._tasks.append(task)
        logger.debug("Task added id=%s", task.id)
        self._commit()
        return task

    def add_sub_task(self, task_id: str, text: str) -> SubTask | None:
        clean = (text or "").strip()
        if not clean:
            logger.debug("add_sub_task ignored: empty text task_id=%s", task_id)
            return None

        idx = self._index_of(task_id)
        if idx is None:
            raise UnknownTaskError(task_id)

        sub = SubTask(id=self._ids.next_id(), text=clean)
        task = self._tasks[idx]
        self._tasks[idx] = replace(task, sub_tasks=(*task.sub_tasks, sub))
        logger.debug("Sub-task added id=%s task_id=%s", sub.id, task_id)
        self._commit()
        return sub

    def toggle_task_completed(self, task_id: str) -> bool | None:
        """Flip completed on a task. Sub-tasks are not touched. Unknown id -> None."""
        idx = self._index_of(task_id)
        if idx is None:
            return None
        task = self._tasks[idx]
        self._tasks[idx] = replace(task, completed=not task.completed)
        self._commit()
        return not task.completed

    def toggle_sub_task_completed(self, task_id: str, sub_task_id: str) -> bool | None:
        """Flip completed on a sub-task. The parent is not touched. Unknown id -> None."""
        idx = self._index_of(task_id)
        if idx is None:
            return None
        task = self._tasks[idx]
        sub = task.find_sub_task(sub_task_id)
        if sub is None:
            return None
        self._replace_sub_task(idx, replace(sub, completed=not sub.completed))
        self._commit()
        return not sub.completed

    def toggle_expanded(self, task_id: str) -> bool | None:
        idx = self._index_of(task_id)
        if idx is None:
            return None
        task = self._tasks[idx]
        self._tasks[idx] = replace(task, expanded=not task.expanded)
        self._commit()
        return not task.expanded

    def delete_task(self, task_id: str) -> list[AlarmKey]:
        """
        Remove a task together with its sub-tasks.

        Returns the keys of removed nodes that carried an alarm; the caller is
        expected to cancel them with the scheduler.
        """
        idx = self._index_of(task_id)
        if idx is None:
            return []
        task = self._tasks.pop(idx)

        keys: list[AlarmKey] = []
        if task.alarm_at is not None:
            keys.append(AlarmKey(task.id))
        keys.extend(AlarmKey(task.id, s.id) for s in task.sub_tasks if s.alarm_at is not None)

        logger.debug("Task deleted id=%s sub_tasks=%d alarms=%d", task_id, len(task.sub_tasks), len(keys))
        self._commit()
        return keys

    def set_alarm(self, task_id: str, sub_task_id: str | None, instant: datetime) -> datetime | None:
        """
        Attach an alarm to a task (sub_task_id=None) or a sub-task.

        Returns the previous alarm_at so the caller can reschedule.
        Raises InvalidAlarmError when instant is not strictly after now,
        UnknownTaskError when the node does not exist.
        """
        when = as_utc(instant)
        now = self._clock()
        if when <= now:
            raise InvalidAlarmError(f"alarm must be in the future (got {when.isoformat()}, now {now.isoformat()})")

        previous = self._update_alarm(task_id, sub_task_id, alarm_at=when, alarm_fired=False)
        logger.info("Alarm set task_id=%s sub_task_id=%s at=%s", task_id, sub_task_id, when.isoformat())
        return previous

    def clear_alarm(self, task_id: str, sub_task_id: str | None = None) -> datetime | None:
        """Remove an alarm. Returns the previous value; unknown node -> None."""
        if self.find(task_id, sub_task_id) is None:
            return None
        return self._update_alarm(task_id, sub_task_id, alarm_at=None, alarm_fired=False)

    def mark_alarm_fired(self, task_id: str, sub_task_id: str | None = None) -> bool:
        """Record a delivered alarm. alarm_at stays as the last-set record."""
        node = self.find(task_id, sub_task_id)
        if node is None or node.alarm_at is None or node.alarm_fired:
            return False
        self._update_alarm(task_id, sub_task_id, alarm_at=node.alarm_at, alarm_fired=True)
        return True

    def _update_alarm(
            self,
            task_id: str,
            sub_task_id: str | None,
            *,
            alarm_at: datetime | None,
            alarm_fired: bool,
    ) -> datetime | None:
        idx = self._index_of(task_id)
        if idx is None:
            raise UnknownTaskError(task_id)
        task = self._tasks[idx]

        if sub_task_id is None:
            previous = task.alarm_at
            self._tasks[idx] = replace(task, alarm_at=alarm_at, alarm_fired=alarm_fired)
        else:
            sub = task.find_sub_task(sub_task_id)
            if sub is None:
                raise UnknownTaskError(task_id, sub_task_id)
            previous = sub.alarm_at
            self._replace_sub_task(idx, replace(sub, alarm_at=alarm_at, alarm_fired=alarm_fired))

        self._commit()
        return previous

    def _replace_sub_task(self, idx: int, new_sub: SubTask) -> None:
        task = self._tasks[idx]
        subs = tuple(new_sub if s.id == new_sub.id else s for s in task.sub_tasks)
        self._tasks[idx] = replace(task, sub_tasks=subs)
