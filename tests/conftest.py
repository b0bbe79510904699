"""Test fixtures for SiteTasks."""

import asyncio
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

import pytest

from site_tasks.remote.contract import ChangeEvent, Filter, Ordering, Row
from site_tasks.remote.memory_store import MemoryRemoteStore, MemorySubscription
from site_tasks.session import Role, SessionContext
from site_tasks.store.task_store import TaskStore


class RecordingNotifier:
    """Notifier that keeps every alert."""

    def __init__(self) -> None:
        self.alerts: list[tuple[str, str]] = []

    def alert(self, title: str, message: str) -> None:
        self.alerts.append((title, message))


class FlakyRemote:
    """MemoryRemoteStore wrapper with switchable failures and a write gate."""

    def __init__(self, inner: MemoryRemoteStore) -> None:
        self.inner = inner
        self.fail_query: Exception | None = None
        self.fail_update: Exception | None = None
        self.fail_insert: Exception | None = None
        self.fail_delete: Exception | None = None
        self.gate: asyncio.Event | None = None
        self.update_calls: list[tuple[str, Row]] = []
        self.query_calls = 0

    async def query(
        self, table: str, filters: Sequence[Filter], ordering: Ordering | None = None
    ) -> list[Row]:
        self.query_calls += 1
        if self.fail_query:
            raise self.fail_query
        return await self.inner.query(table, filters, ordering)

    async def insert(self, table: str, fields: Row) -> Row:
        if self.fail_insert and table == "tasks":
            raise self.fail_insert
        return await self.inner.insert(table, fields)

    async def update(self, table: str, row_id: str, fields: Row) -> Row:
        self.update_calls.append((row_id, dict(fields)))
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_update:
            raise self.fail_update
        return await self.inner.update(table, row_id, fields)

    async def delete(self, table: str, row_id: str) -> None:
        if self.fail_delete:
            raise self.fail_delete
        await self.inner.delete(table, row_id)

    async def subscribe(
        self, table: str, filters: Sequence[Filter], on_change: Callable[[ChangeEvent], None]
    ) -> MemorySubscription:
        return await self.inner.subscribe(table, filters, on_change)


def make_row(row_id: str, title: str, stage: str | None, **extra: Any) -> Row:
    """Build a task row with sensible defaults."""
    row: Row = {
        "id": row_id,
        "title": title,
        "stage": stage,
        "status": "todo",
        "project_id": "proj-1",
        "assigned_to": "worker-1",
        "created_by": "foreman-1",
        "priority": "medium",
        "due_date": None,
        "created_at": "2026-03-01T08:00:00+00:00",
        "updated_at": "2026-03-01T08:00:00+00:00",
    }
    row.update(extra)
    return row


@pytest.fixture
def sample_rows() -> list[Row]:
    """Seven tasks spread over every stage."""
    return [
        make_row("t1", "Pour foundation", "not-started", due_date="2026-04-10", priority="high"),
        make_row("t2", "Order rebar", "not-started", due_date="2026-04-02"),
        make_row("t3", "Survey lot", "not-started"),
        make_row(
            "t4",
            "Frame walls",
            "in-progress",
            due_date="2026-04-05",
            assigned_to="worker-2",
            trade_required="carpentry",
        ),
        make_row("t5", "Site fencing", "completed", due_date="2026-03-20", status="completed"),
        make_row(
            "t6",
            "Roof inspection",
            "blocked",
            due_date="2026-04-20",
            assigned_to="worker-2",
            created_by="worker-2",
            inspection_required=True,
            priority="critical",
        ),
        make_row(
            "t7",
            "Excavation",
            "in-progress",
            dueDate="2026-04-01",
            weather_dependent=True,
            priority="low",
        ),
    ]


@pytest.fixture
def memory_remote(sample_rows: list[Row]) -> MemoryRemoteStore:
    """In-memory remote seeded with the sample rows."""
    return MemoryRemoteStore({"tasks": sample_rows})


@pytest.fixture
def flaky_remote(memory_remote: MemoryRemoteStore) -> FlakyRemote:
    """Remote whose calls can be made to fail or block."""
    return FlakyRemote(memory_remote)


@pytest.fixture
def manager_session() -> SessionContext:
    """Manager: sees every task."""
    return SessionContext(user_id="manager-1", role=Role.MANAGER)


@pytest.fixture
def worker_session() -> SessionContext:
    """Worker: sees tasks assigned to them."""
    return SessionContext(user_id="worker-2", role=Role.WORKER, trade_specialty="carpentry")


@pytest.fixture
def foreman_session() -> SessionContext:
    """Foreman: sees tasks assigned to or created by them."""
    return SessionContext(user_id="foreman-1", role=Role.FOREMAN)


@pytest.fixture
def notifier() -> RecordingNotifier:
    """Notifier that records alerts."""
    return RecordingNotifier()


@pytest.fixture
def store(flaky_remote: FlakyRemote, manager_session: SessionContext) -> TaskStore:
    """Unopened store over the flaky remote."""
    return TaskStore(flaky_remote, manager_session)


@pytest.fixture
def tmp_data_dir(tmp_path: Path) -> Path:
    """Data directory for the YAML store."""
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    return data_dir
