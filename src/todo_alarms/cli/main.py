# src/todo_alarms/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, loads the task tree, reconciles alarms,
then runs the console REPL on the event loop.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal

from ..cli.bootstrap import create_initial_state, start_engine
from ..config import get_settings
from ..connectors.console_connector import run_console_loop
from ..core.errors import PersistenceError
from ..core.state import AppState
from ..logging_setup import setup_logging

logger = logging.getLogger(__name__)


async def _shutdown(state: AppState) -> None:
    """Best-effort shutdown (no exceptions should escape)."""
    try:
        await state.store.flush()
    except PersistenceError:
        logger.warning("Last save did not complete; changes since the previous save may be lost.")

    state.notifier.cancel_all()
    state.store.close()

    try:
        await state.dispatcher.drain()
    except Exception:
        logger.debug("Dispatcher drain failed.", exc_info=True)


async def _run(state: AppState, *, interactive: bool) -> None:
    start_engine(state)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Some platforms (Windows) do not support loop signal handlers.
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, stop.set)

    try:
        if interactive:
            console = asyncio.create_task(run_console_loop(state))
            stopper = asyncio.create_task(stop.wait())
            await asyncio.wait({console, stopper}, return_when=asyncio.FIRST_COMPLETED)
            for t in (console, stopper):
                t.cancel()
            if console.done() and not console.cancelled() and console.exception() is not None:
                logger.error("Console connector crashed.", exc_info=console.exception())
        else:
            logger.info("Console disabled. Waiting for alarms only. Press Ctrl+C to stop.")
            await stop.wait()
    finally:
        await _shutdown(state)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="todo-alarms", description="Task list with one-shot alarms.")
    parser.add_argument("--no-console", action="store_true", help="run without the REPL (alarms only)")
    args = parser.parse_args(argv)

    settings = get_settings()

    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)
    setup_logging(log_dir=settings.data_dir, console_level=console_level, interactive=not args.no_console)

    logger.info("Starting %s...", settings.app_name)

    state = create_initial_state(settings=settings)
    try:
        asyncio.run(_run(state, interactive=not args.no_console))
    except KeyboardInterrupt:
        pass
    logger.info("Bye.")


if __name__ == "__main__":
    main()
