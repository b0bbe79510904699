"""Remote store backed by one YAML file per row.

Layout: ``<data_dir>/<table>/<row id>.yaml``. Change notifications come from a
watchdog observer on the table directory, so edits made by other processes
(or by hand) reach subscribers the same way as our own writes.
"""

import asyncio
import copy
import logging
import uuid
from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import yaml
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver

from site_tasks.remote.contract import ChangeEvent, ChangeType, Filter, Ordering, Row
from site_tasks.remote.filters import apply_ordering, matches

logger = logging.getLogger(__name__)

ROW_SUFFIX = ".yaml"


def _read_row(file_path: Path) -> Row | None:
    """Read one row file. Returns None for unreadable or malformed files."""
    # Try UTF-8 first, fallback to latin-1 for non-UTF-8 files
    try:
        content = file_path.read_text(encoding="utf-8")
    except UnicodeDecodeError:
        content = file_path.read_text(encoding="latin-1")
    except FileNotFoundError:
        return None

    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        logger.debug(f"[YamlRemoteStore] Invalid YAML in {file_path.name}: {e}")
        return None
    if not isinstance(data, dict):
        return None
    # The file name is the row identity
    data["id"] = file_path.stem
    return data


def _write_row(file_path: Path, row: Row) -> None:
    file_path.write_text(
        yaml.safe_dump(row, default_flow_style=False, sort_keys=False), encoding="utf-8"
    )


class YamlSubscription:
    """Subscription handle owning a watchdog observer."""

    def __init__(self, watcher: "RowWatcher") -> None:
        """Initialize with a started watcher."""
        self._watcher = watcher
        self.closed = False

    def close(self) -> None:
        """Stop the observer."""
        if not self.closed:
            self.closed = True
            self._watcher.stop()


class YamlRemoteStore:
    """Row store over a directory tree of YAML files."""

    def __init__(self, data_dir: Path) -> None:
        """Initialize store rooted at data_dir."""
        self.data_dir = Path(data_dir)

    def table_dir(self, table: str) -> Path:
        """Directory holding a table's rows, created on demand."""
        path = self.data_dir / table
        path.mkdir(parents=True, exist_ok=True)
        return path

    def _row_path(self, table: str, row_id: str) -> Path:
        if "/" in row_id or "\\" in row_id or row_id in {"", ".", ".."}:
            raise ValueError(f"Invalid row id: {row_id!r}")
        return self.table_dir(table) / f"{row_id}{ROW_SUFFIX}"

    def read_all(self, table: str) -> list[Row]:
        """Read every row of a table."""
        rows: list[Row] = []
        for file_path in sorted(self.table_dir(table).glob(f"*{ROW_SUFFIX}")):
            row = _read_row(file_path)
            if row is None:
                logger.warning(f"[YamlRemoteStore] Skipping unreadable row {file_path.name}")
                continue
            rows.append(row)
        return rows

    async def query(
        self, table: str, filters: Sequence[Filter], ordering: Ordering | None = None
    ) -> list[Row]:
        """Return rows matching all filters."""
        rows = await asyncio.to_thread(self.read_all, table)
        return apply_ordering([r for r in rows if matches(r, filters)], ordering)

    async def insert(self, table: str, fields: Row) -> Row:
        """Write a new row file."""
        now = datetime.now(timezone.utc).isoformat()
        row = copy.deepcopy(fields)
        row.setdefault("id", str(uuid.uuid4()))
        row.setdefault("created_at", now)
        row.setdefault("updated_at", now)
        path = self._row_path(table, str(row["id"]))
        if path.exists():
            raise ValueError(f"Duplicate id in {table}: {row['id']}")
        await asyncio.to_thread(_write_row, path, row)
        return row

    async def update(self, table: str, row_id: str, fields: Row) -> Row:
        """Merge fields into an existing row file."""
        path = self._row_path(table, row_id)
        existing = await asyncio.to_thread(_read_row, path)
        if existing is None:
            raise KeyError(f"Row not found in {table}: {row_id}")
        existing.update(copy.deepcopy(fields))
        await asyncio.to_thread(_write_row, path, existing)
        return existing

    async def delete(self, table: str, row_id: str) -> None:
        """Remove a row file."""
        path = self._row_path(table, row_id)
        if not path.exists():
            raise KeyError(f"Row not found in {table}: {row_id}")
        await asyncio.to_thread(path.unlink)

    async def subscribe(
        self, table: str, filters: Sequence[Filter], on_change: Callable[[ChangeEvent], None]
    ) -> YamlSubscription:
        """Watch the table directory and deliver changes on the running loop."""
        loop = asyncio.get_running_loop()
        known = {str(r["id"]): r for r in await asyncio.to_thread(self.read_all, table)}

        def deliver(event: ChangeEvent) -> None:
            rows = [r for r in (event.new, event.old) if r]
            if any(matches(r, filters) for r in rows):
                loop.call_soon_threadsafe(on_change, event)

        watcher = RowWatcher(self.table_dir(table), known, deliver)
        await asyncio.to_thread(watcher.start)
        return YamlSubscription(watcher)


class RowWatcher:
    """Watches a table directory and turns file events into change events."""

    def __init__(
        self,
        table_dir: Path,
        known: dict[str, Row],
        callback: Callable[[ChangeEvent], None],
    ) -> None:
        """Initialize watcher.

        Args:
            table_dir: Directory with row files
            known: Last known row per id, used to classify events and fill "old"
            callback: Called from the observer thread for every change
        """
        self.table_dir = table_dir
        self.handler = _RowEventHandler(known, callback)
        self._observer: BaseObserver | None = None

    def start(self) -> None:
        """Start the observer thread."""
        self._observer = Observer()
        self._observer.schedule(self.handler, str(self.table_dir), recursive=False)
        self._observer.start()
        logger.info(f"[RowWatcher] Watching {self.table_dir}")

    def stop(self) -> None:
        """Stop the observer thread."""
        if self._observer:
            logger.info(f"[RowWatcher] Stopping watcher for {self.table_dir}")
            self._observer.stop()
            self._observer.join(timeout=2)
            self._observer = None


class _RowEventHandler(FileSystemEventHandler):
    """Internal handler for row file events."""

    def __init__(self, known: dict[str, Row], callback: Callable[[ChangeEvent], None]) -> None:
        self.known = known
        self.callback = callback

    @staticmethod
    def _path(raw: Any) -> Path | None:
        # Convert bytes to str if needed
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        path = Path(raw)
        return path if path.suffix == ROW_SUFFIX else None

    def _emit(self, event: ChangeEvent) -> None:
        try:
            self.callback(event)
        except Exception as e:
            logger.error(f"[RowEventHandler] Callback error: {e}", exc_info=True)

    def _row_written(self, path: Path) -> None:
        row = _read_row(path)
        if row is None:
            # Partially written or removed again; the next event catches up
            return
        row_id = str(row["id"])
        previous = self.known.get(row_id)
        if previous == row:
            return
        self.known[row_id] = row
        if previous is None:
            self._emit(ChangeEvent(ChangeType.INSERT, new=copy.deepcopy(row)))
        else:
            self._emit(
                ChangeEvent(ChangeType.UPDATE, new=copy.deepcopy(row), old=copy.deepcopy(previous))
            )

    def _row_removed(self, path: Path) -> None:
        previous = self.known.pop(path.stem, None)
        if previous is None:
            return
        self._emit(ChangeEvent(ChangeType.DELETE, old=previous))

    def on_created(self, event: FileSystemEvent) -> None:
        """Handle file creation events."""
        path = self._path(event.src_path)
        if path and not event.is_directory:
            self._row_written(path)

    def on_modified(self, event: FileSystemEvent) -> None:
        """Handle file modification events."""
        path = self._path(event.src_path)
        if path and not event.is_directory:
            self._row_written(path)

    def on_deleted(self, event: FileSystemEvent) -> None:
        """Handle file deletion events."""
        path = self._path(event.src_path)
        if path and not event.is_directory:
            self._row_removed(path)

    def on_moved(self, event: FileSystemEvent) -> None:
        """Handle file move/rename events."""
        if event.is_directory:
            return
        source = self._path(event.src_path)
        if source:
            self._row_removed(source)
        dest = self._path(event.dest_path)
        if dest:
            self._row_written(dest)
