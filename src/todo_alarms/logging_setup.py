# src/todo_alarms/logging_setup.py

from __future__ import annotations

import logging
import sys
from pathlib import Path

APP_LOGGER = "todo_alarms"

# Loggers whose records describe an alarm's life (scheduled, fired, cancelled, delivered).
ALARM_LOGGERS = (
    "todo_alarms.tasks.alarm_scheduler",
    "todo_alarms.notify",
)

LOG_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def is_alarm_record(record: logging.LogRecord) -> bool:
    return any(record.name == n or record.name.startswith(n + ".") for n in ALARM_LOGGERS)


class AlarmTrailFilter(logging.Filter):
    """Pass only alarm lifecycle records (used by the alarms.log handler)."""

    def filter(self, record: logging.LogRecord) -> bool:
        return is_alarm_record(record)


class ConsoleFilter(logging.Filter):
    """
    Keep the REPL readable.

    Alarm records pass at the handler level. Other todo_alarms records need
    `app_level` (WARNING while the prompt is up, so store chatter stays in the
    file). Everything else, third-party and py.warnings included, needs ERROR.
    """

    def __init__(self, app_level: int = logging.INFO) -> None:
        super().__init__()
        self.app_level = app_level

    def filter(self, record: logging.LogRecord) -> bool:
        if is_alarm_record(record):
            return True
        if record.name == APP_LOGGER or record.name.startswith(APP_LOGGER + "."):
            return record.levelno >= self.app_level
        return record.levelno >= logging.ERROR


def setup_logging(
    *,
    log_dir: str | Path = ".local/todo-alarms",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
    interactive: bool = False,
) -> Path:
    """
    Handlers:
    - stderr, filtered by ConsoleFilter
    - todo-alarms.log with everything at file_level
    - alarms.log with the alarm trail only

    Call once, before the first log line. Returns the main log file path.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "todo-alarms.log"

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(fmt)
    console.addFilter(ConsoleFilter(app_level=max(console_level, logging.WARNING) if interactive else console_level))
    root.addHandler(console)

    full = logging.FileHandler(str(log_file), encoding="utf-8")
    full.setLevel(file_level)
    full.setFormatter(fmt)
    root.addHandler(full)

    trail = logging.FileHandler(str(log_dir / "alarms.log"), encoding="utf-8")
    trail.setLevel(logging.INFO)
    trail.setFormatter(fmt)
    trail.addFilter(AlarmTrailFilter())
    root.addHandler(trail)

    logging.captureWarnings(True)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    return log_file
