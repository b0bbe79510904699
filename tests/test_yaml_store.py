"""Tests for the YAML file-backed remote store."""

import asyncio
from pathlib import Path

import pytest
import yaml
from watchdog.events import (
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)

from site_tasks.remote.contract import ChangeEvent, ChangeType, Eq, Ordering, Row
from site_tasks.remote.yaml_store import YamlRemoteStore, _RowEventHandler
from site_tasks.session import Role, SessionContext
from site_tasks.stages import Stage
from site_tasks.store.mutations import MutationEngine
from site_tasks.store.task_store import TaskStore


def _write(path: Path, row: Row) -> None:
    path.write_text(yaml.safe_dump(row, sort_keys=False), encoding="utf-8")


@pytest.fixture
def yaml_store(tmp_data_dir: Path) -> YamlRemoteStore:
    """Empty YAML store."""
    return YamlRemoteStore(tmp_data_dir)


@pytest.mark.asyncio
async def test_insert_query_update_delete(yaml_store: YamlRemoteStore, tmp_data_dir: Path) -> None:
    """Test rows round-trip through files."""
    first = await yaml_store.insert("tasks", {"title": "Pour slab", "stage": "not-started"})
    await yaml_store.insert(
        "tasks", {"id": "t2", "title": "Frame", "stage": "in-progress", "due_date": "2026-04-01"}
    )

    assert (tmp_data_dir / "tasks" / f"{first['id']}.yaml").exists()
    assert first["created_at"]

    rows = await yaml_store.query("tasks", [Eq("stage", "in-progress")])
    assert [r["id"] for r in rows] == ["t2"]

    ordered = await yaml_store.query("tasks", [], Ordering("due_date"))
    assert [r["id"] for r in ordered] == ["t2", first["id"]]

    updated = await yaml_store.update("tasks", "t2", {"stage": "completed"})
    assert updated["stage"] == "completed"
    assert updated["title"] == "Frame"

    await yaml_store.delete("tasks", "t2")
    assert [r["id"] for r in await yaml_store.query("tasks", [])] == [first["id"]]


@pytest.mark.asyncio
async def test_missing_rows_raise(yaml_store: YamlRemoteStore) -> None:
    """Test update and delete of unknown rows fail."""
    with pytest.raises(KeyError):
        await yaml_store.update("tasks", "nope", {"stage": "completed"})
    with pytest.raises(KeyError):
        await yaml_store.delete("tasks", "nope")
    with pytest.raises(ValueError):
        await yaml_store.update("tasks", "../escape", {})


@pytest.mark.asyncio
async def test_duplicate_insert_rejected(yaml_store: YamlRemoteStore) -> None:
    """Test inserting an existing id fails."""
    await yaml_store.insert("tasks", {"id": "t1", "title": "A"})

    with pytest.raises(ValueError):
        await yaml_store.insert("tasks", {"id": "t1", "title": "B"})


def test_read_all_skips_bad_files(yaml_store: YamlRemoteStore) -> None:
    """Test malformed and non-mapping files are skipped; the file name is the id."""
    table = yaml_store.table_dir("tasks")
    _write(table / "good.yaml", {"id": "ignored", "title": "Good"})
    (table / "broken.yaml").write_text("title: [unclosed", encoding="utf-8")
    (table / "list.yaml").write_text("- a\n- b\n", encoding="utf-8")
    (table / "notes.txt").write_text("not a row", encoding="utf-8")

    rows = yaml_store.read_all("tasks")

    assert rows == [{"id": "good", "title": "Good"}]


def test_handler_emits_insert_update_delete(tmp_data_dir: Path) -> None:
    """Test file events become change events with old rows filled in."""
    events: list[ChangeEvent] = []
    handler = _RowEventHandler({}, events.append)
    path = tmp_data_dir / "t1.yaml"

    _write(path, {"title": "Pour slab", "stage": "not-started"})
    handler.on_created(FileCreatedEvent(str(path)))
    # Unchanged content is not re-announced
    handler.on_modified(FileModifiedEvent(str(path)))
    _write(path, {"title": "Pour slab", "stage": "in-progress"})
    handler.on_modified(FileModifiedEvent(str(path)))
    path.unlink()
    handler.on_deleted(FileDeletedEvent(str(path)))

    assert [e.type for e in events] == [ChangeType.INSERT, ChangeType.UPDATE, ChangeType.DELETE]
    assert events[1].old["stage"] == "not-started"
    assert events[1].new["stage"] == "in-progress"
    assert events[2].row_id == "t1"


def test_handler_ignores_other_files(tmp_data_dir: Path) -> None:
    """Test non-row files produce no events."""
    events: list[ChangeEvent] = []
    handler = _RowEventHandler({}, events.append)
    path = tmp_data_dir / "notes.txt"
    path.write_text("hello", encoding="utf-8")

    handler.on_created(FileCreatedEvent(str(path)))

    assert events == []


def test_handler_rename_is_delete_plus_insert(tmp_data_dir: Path) -> None:
    """Test a rename removes the old id and announces the new one."""
    events: list[ChangeEvent] = []
    handler = _RowEventHandler({"old": {"id": "old", "title": "T"}}, events.append)
    target = tmp_data_dir / "new.yaml"
    _write(target, {"title": "T"})

    handler.on_moved(FileMovedEvent(str(tmp_data_dir / "old.yaml"), str(target)))

    assert [(e.type, e.row_id) for e in events] == [
        (ChangeType.DELETE, "old"),
        (ChangeType.INSERT, "new"),
    ]


@pytest.mark.asyncio
async def test_task_store_over_yaml(yaml_store: YamlRemoteStore, tmp_data_dir: Path) -> None:
    """Test the task store and engine write through to row files."""
    await yaml_store.insert("tasks", {"id": "t1", "title": "Pour slab", "stage": "not-started"})
    store = TaskStore(yaml_store, SessionContext("m", Role.MANAGER))
    await store.fetch()

    await MutationEngine(store).mutate("t1", {"stage": "completed"})

    saved = yaml.safe_load((tmp_data_dir / "tasks" / "t1.yaml").read_text(encoding="utf-8"))
    assert saved["stage"] == "completed"
    assert saved["status"] == "completed"
    assert store.get("t1").stage == Stage.COMPLETED


@pytest.mark.integration
@pytest.mark.asyncio
async def test_subscription_delivers_external_edits(
    yaml_store: YamlRemoteStore, tmp_data_dir: Path
) -> None:
    """Test a file written by another process reaches subscribers."""
    received: list[ChangeEvent] = []
    arrived = asyncio.Event()

    def on_change(event: ChangeEvent) -> None:
        received.append(event)
        arrived.set()

    subscription = await yaml_store.subscribe("tasks", [], on_change)
    try:
        _write(tmp_data_dir / "tasks" / "ext.yaml", {"title": "External", "stage": "blocked"})
        await asyncio.wait_for(arrived.wait(), timeout=5)
    finally:
        subscription.close()

    assert received[0].type == ChangeType.INSERT
    assert received[0].new["id"] == "ext"
