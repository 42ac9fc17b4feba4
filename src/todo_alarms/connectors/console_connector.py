# src/todo_alarms/connectors/console_connector.py

from __future__ import annotations

import asyncio
import logging
import threading
from datetime import datetime

from ..cli.commands import registry as command_registry
from ..cli.commands import render_tree
from ..core.state import AppState

logger = logging.getLogger(__name__)


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}", flush=True)


def _start_input_thread(
        loop: asyncio.AbstractEventLoop,
        lines: asyncio.Queue[str | None],
        ready: threading.Event,
) -> threading.Thread:
    """
    Read stdin in a daemon thread and hand lines to the loop.

    The thread waits for `ready` before printing the next prompt so command
    output is not interleaved with it. None on the queue means EOF.
    """

    def _reader() -> None:
        while True:
            ready.wait()
            ready.clear()
            try:
                line = input(">>> ")
            except (EOFError, KeyboardInterrupt):
                loop.call_soon_threadsafe(lines.put_nowait, None)
                return
            loop.call_soon_threadsafe(lines.put_nowait, line)

    t = threading.Thread(target=_reader, name="console-input", daemon=True)
    t.start()
    return t


async def run_console_loop(state: AppState) -> None:
    """
    Interactive REPL.

    Alarm timers keep firing while we wait for input; every command itself runs
    on the event loop, one at a time.
    """
    logger.info("Console connector started.")
    _print_ts("[CONSOLE] Type /help for commands. Plain text adds a task. Use /exit to quit.\n")
    print(render_tree(state.tracker.snapshot()), flush=True)

    def emit(text: str) -> None:
        _print_ts(text)

    lines: asyncio.Queue[str | None] = asyncio.Queue()
    ready = threading.Event()
    _start_input_thread(asyncio.get_running_loop(), lines, ready)

    while True:
        ready.set()
        raw = await lines.get()
        if raw is None:
            logger.info("Console EOF received, exiting.")
            break

        user_input = raw.strip()
        if not user_input:
            continue

        if user_input.lower() in ("/exit", "/quit"):
            logger.info("Console exit command received.")
            break

        if not user_input.startswith("/"):
            user_input = f"/add {user_input}"

        try:
            response = command_registry.handle(state, user_input, emit=emit)
        except Exception:
            logger.exception("Command handler crashed.")
            response = "Internal error while handling a command."

        if response is not None:
            _print_ts(response)

    logger.info("Console connector finished.")
