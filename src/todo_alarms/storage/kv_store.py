# src/todo_alarms/storage/kv_store.py

from __future__ import annotations

import logging
import os
import re
from pathlib import Path

from ..core.errors import PersistenceError

logger = logging.getLogger(__name__)

_SAFE_KEY = re.compile(r"^[A-Za-z0-9_.-]+$")


def _safe_mkdir(path: Path) -> None:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except Exception as e:
        logger.warning("Failed to create directory %s: %r", path, e)


class FileKeyValueStore:
    """
    One file per key under a (gitignored) local directory.

    Writes are atomic: data goes to <key>.json.tmp first and is then renamed over
    the real file, so a crash mid-write never leaves a half-written snapshot.
    """

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)
        _safe_mkdir(self._root)

    def _path(self, key: str) -> Path:
        if not _SAFE_KEY.match(key):
            raise ValueError(f"invalid storage key: {key!r}")
        return self._root / f"{key}.json"

    def read(self, key: str) -> bytes | None:
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None

    def write(self, key: str, value: bytes) -> None:
        path = self._path(key)
        tmp = path.with_suffix(".json.tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_bytes(value)
            os.replace(tmp, path)
        except OSError as e:
            raise PersistenceError(f"failed to write {path}: {e}") from e

        try:
            os.chmod(path, 0o600)
        except Exception:
            # Best-effort: not critical on Windows or restricted FS.
            pass
        logger.debug("Wrote key=%s bytes=%d", key, len(value))
