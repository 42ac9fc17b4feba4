# tests/test_kv_store.py

from __future__ import annotations

from pathlib import Path

import pytest

from todo_alarms.core.errors import PersistenceError
from todo_alarms.storage.kv_store import FileKeyValueStore
from todo_alarms.tasks.task_store import TaskStore


def test_read_missing_key_returns_none(tmp_path: Path) -> None:
    assert FileKeyValueStore(tmp_path / "store").read("todoItems") is None


def test_write_then_read(tmp_path: Path) -> None:
    kv = FileKeyValueStore(tmp_path / "store")
    kv.write("todoItems", b"[1]")
    kv.write("todoItems", b"[1, 2]")

    assert kv.read("todoItems") == b"[1, 2]"
    assert sorted(p.name for p in (tmp_path / "store").iterdir()) == ["todoItems.json"]


def test_rejects_path_like_keys(tmp_path: Path) -> None:
    kv = FileKeyValueStore(tmp_path)
    with pytest.raises(ValueError):
        kv.read("../escape")


def test_write_failure_raises_persistence_error(tmp_path: Path) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x")
    kv = FileKeyValueStore(blocker)

    with pytest.raises(PersistenceError):
        kv.write("todoItems", b"[]")


def test_unreadable_snapshot_does_not_break_task_store_load(tmp_path: Path) -> None:
    root = tmp_path / "store"
    (root / "todoItems.json").mkdir(parents=True)
    kv = FileKeyValueStore(root)

    with pytest.raises(OSError):
        kv.read("todoItems")

    store = TaskStore(kv)
    assert store.load() == ()
    assert isinstance(store.last_load_error, PersistenceError)
