# src/todo_alarms/cli/commands.py

from __future__ import annotations

import inspect
import logging
import re
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import cast

from ..core.errors import NotificationSchedulingError, ValidationError
from ..core.state import AppState
from ..tasks.task_models import SubTask, Task, as_utc, utcnow

CommandEmitter = Callable[[str], None]
CommandHandler2 = Callable[[AppState, list[str]], str]
CommandHandler3 = Callable[[AppState, list[str], CommandEmitter | None], str]
CommandHandler = CommandHandler2 | CommandHandler3

logger = logging.getLogger(__name__)

_REF_RE = re.compile(r"^(\d+)(?:\.(\d+))?$")
_OFFSET_RE = re.compile(r"(\d+)([smhd])")
_OFFSET_UNITS = {"s": "seconds", "m": "minutes", "h": "hours", "d": "days"}


class CommandRegistry:
    """Simple slash-command registry used by connectors (/help, /add, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    def handle(
        self,
        state: AppState,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except Exception:
            nparams = 3

        try:
            if nparams >= 3:
                h3 = cast(CommandHandler3, handler)
                return h3(state, args, emit)
            h2 = cast(CommandHandler2, handler)
            return h2(state, args)
        except ValidationError as e:
            return f"Rejected: {e}"

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


# ---- helpers ----


def parse_when(text: str, now: datetime | None = None) -> datetime:
    """
    Parse an alarm time.

    "+90s", "+10m", "+2h", "+1d", "+1h30m" -> relative to now
    anything else -> ISO-8601 datetime (naive values are local time)
    """
    raw = (text or "").strip()
    if now is None:
        now = utcnow()

    if raw.startswith("+"):
        body = raw[1:].lower()
        parts = _OFFSET_RE.findall(body)
        if not parts or "".join(n + u for n, u in parts) != body:
            raise ValidationError(f"bad offset {raw!r}; use e.g. +10m, +2h, +1h30m")
        delta = timedelta()
        for n, unit in parts:
            delta += timedelta(**{_OFFSET_UNITS[unit]: int(n)})
        return as_utc(now) + delta

    try:
        return as_utc(datetime.fromisoformat(raw))
    except ValueError:
        raise ValidationError(f"bad time {raw!r}; use +10m or 2026-01-31T09:00") from None


def _resolve_ref(state: AppState, ref: str) -> tuple[Task, SubTask | None]:
    """Turn a 1-based listing reference ("2" or "2.1") into nodes."""
    m = _REF_RE.match(ref or "")
    if not m:
        raise ValidationError(f"bad reference {ref!r}; use N or N.M")

    tasks = state.tracker.snapshot()
    ti = int(m.group(1)) - 1
    if not 0 <= ti < len(tasks):
        raise ValidationError(f"no task #{m.group(1)}")
    task = tasks[ti]

    if m.group(2) is None:
        return task, None
    si = int(m.group(2)) - 1
    if not 0 <= si < len(task.sub_tasks):
        raise ValidationError(f"task #{m.group(1)} has no sub-task #{m.group(2)}")
    return task, task.sub_tasks[si]


def _fmt_alarm(node: Task | SubTask) -> str:
    if node.alarm_at is None:
        return ""
    local = node.alarm_at.astimezone().strftime("%Y-%m-%d %H:%M")
    return f"  (alarm {local}{', fired' if node.alarm_fired else ''})"


def render_tree(tasks: tuple[Task, ...]) -> str:
    if not tasks:
        return "No tasks yet. Add one with /add <text>."
    lines: list[str] = []
    for i, task in enumerate(tasks, start=1):
        mark = "x" if task.completed else " "
        folded = "" if task.expanded or not task.sub_tasks else f"  [+{len(task.sub_tasks)}]"
        lines.append(f"{i}. [{mark}] {task.text}  {task.created_on.isoformat()}{_fmt_alarm(task)}{folded}")
        if not task.expanded:
            continue
        for j, sub in enumerate(task.sub_tasks, start=1):
            smark = "x" if sub.completed else " "
            lines.append(f"    {i}.{j} [{smark}] {sub.text}{_fmt_alarm(sub)}")
    return "\n".join(lines)


# ---- handlers ----


def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


def cmd_list(state: AppState, args: list[str]) -> str:
    return render_tree(state.tracker.snapshot())


def cmd_status(state: AppState, args: list[str]) -> str:
    tasks = state.tracker.snapshot()
    done = sum(1 for t in tasks if t.completed)
    outstanding = state.scheduler.outstanding()
    lines = [
        "Status:",
        f"  Tasks: {len(tasks)} ({done} done)",
        f"  Scheduled alarms: {len(outstanding)}",
    ]
    err = state.store.last_persist_error
    if err is not None:
        lines.append(f"  Last save error: {err}")
    return "\n".join(lines)


def cmd_add(state: AppState, args: list[str]) -> str:
    task = state.tracker.add_task(" ".join(args))
    if task is None:
        return "Usage: /add <text>"
    return f"Added #{len(state.tracker.snapshot())}: {task.text}"


def cmd_sub(state: AppState, args: list[str]) -> str:
    if len(args) < 2:
        return "Usage: /sub <task#> <text>"
    task, sub = _resolve_ref(state, args[0])
    if sub is not None:
        return "Sub-tasks cannot have sub-tasks."
    new_sub = state.tracker.add_sub_task(task.id, " ".join(args[1:]))
    if new_sub is None:
        return "Usage: /sub <task#> <text>"
    return f"Added sub-task to '{task.text}': {new_sub.text}"


def cmd_done(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /done <task#>[.<sub#>]"
    task, sub = _resolve_ref(state, args[0])
    if sub is None:
        flag = state.tracker.toggle_task_completed(task.id)
        name = task.text
    else:
        flag = state.tracker.toggle_sub_task_completed(task.id, sub.id)
        name = sub.text
    return f"'{name}' marked {'done' if flag else 'not done'}."


def cmd_delete(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /del <task#>"
    task, sub = _resolve_ref(state, args[0])
    if sub is not None:
        return "Only whole tasks can be deleted."
    keys = state.tracker.delete_task(task.id)
    logger.debug("Deleted task id=%s cancelled_alarms=%d", task.id, len(keys))
    return f"Deleted '{task.text}'" + (f" and cancelled {len(keys)} alarm(s)." if keys else ".")


def cmd_alarm(state: AppState, args: list[str]) -> str:
    if len(args) < 2:
        return "Usage: /alarm <task#>[.<sub#>] <+10m | +2h | ISO datetime>"
    task, sub = _resolve_ref(state, args[0])
    when = parse_when(" ".join(args[1:]))
    sub_id = sub.id if sub is not None else None
    local = when.astimezone().strftime("%Y-%m-%d %H:%M:%S")
    try:
        state.tracker.set_alarm(task.id, sub_id, when)
    except NotificationSchedulingError as e:
        return f"Alarm saved for {local} but could not be scheduled ({e}); it will be retried on next start."
    return f"Alarm set for {local}."


def cmd_unalarm(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /unalarm <task#>[.<sub#>]"
    task, sub = _resolve_ref(state, args[0])
    previous = state.tracker.clear_alarm(task.id, sub.id if sub is not None else None)
    return "Alarm cleared." if previous is not None else "No alarm was set."


def cmd_expand(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /expand <task#>"
    task, _ = _resolve_ref(state, args[0])
    state.tracker.toggle_expanded(task.id)
    return render_tree(state.tracker.snapshot())


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("list", cmd_list, help_text="Show tasks (expanded tasks show sub-tasks).", aliases=["ls"])
registry.register("status", cmd_status, help_text="Show task and alarm counts.")
registry.register("add", cmd_add, help_text="Add a task: /add <text>.")
registry.register("sub", cmd_sub, help_text="Add a sub-task: /sub <task#> <text>.")
registry.register("done", cmd_done, help_text="Toggle completion: /done 2 | /done 2.1.")
registry.register("del", cmd_delete, help_text="Delete a task and its sub-tasks: /del <task#>.", aliases=["rm"])
registry.register("alarm", cmd_alarm, help_text="Set an alarm: /alarm 2.1 +1h | /alarm 2 2026-01-31T09:00.")
registry.register("unalarm", cmd_unalarm, help_text="Clear an alarm: /unalarm 2.1.")
registry.register("expand", cmd_expand, help_text="Show/hide sub-tasks of a task: /expand <task#>.")
