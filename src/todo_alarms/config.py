# src/todo_alarms/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app (normal "settings layer").
- No secrets required at import time.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "TODO_ALARMS"

load_dotenv(override=False)


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    store_dir: Path

    # ---- Notifications ----
    notifications_enabled: bool
    console_sink_enabled: bool
    webhook_url: str
    webhook_timeout_seconds: float

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "todo-alarms").strip() or "todo-alarms"
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/todo-alarms"))
        store_dir = _env_path(_k("STORE_DIR"), data_dir / "store")

        notifications_enabled = _env_bool(_k("NOTIFICATIONS_ENABLED"), True)
        console_sink_enabled = _env_bool(_k("CONSOLE_SINK_ENABLED"), True)
        webhook_url = _env(_k("WEBHOOK_URL"), "").strip()
        webhook_timeout_seconds = max(0.5, _env_float(_k("WEBHOOK_TIMEOUT_SECONDS"), 5.0))

        return Settings(
            app_name=app_name,
            log_level=log_level,
            data_dir=data_dir,
            store_dir=store_dir,
            notifications_enabled=notifications_enabled,
            console_sink_enabled=console_sink_enabled,
            webhook_url=webhook_url,
            webhook_timeout_seconds=webhook_timeout_seconds,
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
