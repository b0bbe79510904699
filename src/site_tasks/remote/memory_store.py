"""In-process remote store."""

import copy
import logging
import uuid
from collections.abc import Callable, Sequence
from datetime import datetime, timezone

from site_tasks.remote.contract import ChangeEvent, ChangeType, Filter, Ordering, Row
from site_tasks.remote.filters import apply_ordering, matches

logger = logging.getLogger(__name__)


class MemorySubscription:
    """Subscription handle for MemoryRemoteStore."""

    def __init__(
        self,
        owner: "MemoryRemoteStore",
        table: str,
        filters: Sequence[Filter],
        on_change: Callable[[ChangeEvent], None],
    ) -> None:
        """Initialize subscription for one table."""
        self._owner = owner
        self.table = table
        self.filters = list(filters)
        self.on_change = on_change
        self.closed = False

    def close(self) -> None:
        """Stop delivering change events."""
        if not self.closed:
            self.closed = True
            self._owner._remove_subscription(self)


class MemoryRemoteStore:
    """Remote store kept in a dict of tables.

    Writes notify matching subscribers synchronously. Rows handed out are
    deep copies, so callers never share state with the store.
    """

    def __init__(self, tables: dict[str, list[Row]] | None = None) -> None:
        """Initialize store, optionally seeded with rows per table."""
        self._tables: dict[str, dict[str, Row]] = {}
        self._subscriptions: list[MemorySubscription] = []
        for table, rows in (tables or {}).items():
            for row in rows:
                self._table(table)[str(row["id"])] = copy.deepcopy(row)

    def _table(self, table: str) -> dict[str, Row]:
        return self._tables.setdefault(table, {})

    def rows(self, table: str) -> list[Row]:
        """Snapshot of all rows in a table."""
        return [copy.deepcopy(r) for r in self._table(table).values()]

    @property
    def subscription_count(self) -> int:
        """Number of open subscriptions."""
        return len(self._subscriptions)

    async def query(
        self, table: str, filters: Sequence[Filter], ordering: Ordering | None = None
    ) -> list[Row]:
        """Return rows matching all filters."""
        rows = [copy.deepcopy(r) for r in self._table(table).values() if matches(r, filters)]
        return apply_ordering(rows, ordering)

    async def insert(self, table: str, fields: Row) -> Row:
        """Insert a row, assigning id and timestamps when missing."""
        now = datetime.now(timezone.utc).isoformat()
        row = copy.deepcopy(fields)
        row.setdefault("id", str(uuid.uuid4()))
        row.setdefault("created_at", now)
        row.setdefault("updated_at", now)
        row_id = str(row["id"])
        if row_id in self._table(table):
            raise ValueError(f"Duplicate id in {table}: {row_id}")
        self._table(table)[row_id] = row
        self._notify(table, ChangeEvent(ChangeType.INSERT, new=copy.deepcopy(row)))
        return copy.deepcopy(row)

    async def update(self, table: str, row_id: str, fields: Row) -> Row:
        """Merge fields into an existing row."""
        existing = self._table(table).get(row_id)
        if existing is None:
            raise KeyError(f"Row not found in {table}: {row_id}")
        old = copy.deepcopy(existing)
        existing.update(copy.deepcopy(fields))
        self._notify(
            table, ChangeEvent(ChangeType.UPDATE, new=copy.deepcopy(existing), old=old)
        )
        return copy.deepcopy(existing)

    async def delete(self, table: str, row_id: str) -> None:
        """Delete a row."""
        old = self._table(table).pop(row_id, None)
        if old is None:
            raise KeyError(f"Row not found in {table}: {row_id}")
        self._notify(table, ChangeEvent(ChangeType.DELETE, old=old))

    async def subscribe(
        self, table: str, filters: Sequence[Filter], on_change: Callable[[ChangeEvent], None]
    ) -> MemorySubscription:
        """Register a change listener."""
        subscription = MemorySubscription(self, table, filters, on_change)
        self._subscriptions.append(subscription)
        logger.debug(f"[MemoryRemoteStore] Subscribed to {table} ({len(filters)} filters)")
        return subscription

    def _remove_subscription(self, subscription: MemorySubscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def _notify(self, table: str, event: ChangeEvent) -> None:
        for subscription in list(self._subscriptions):
            if subscription.table != table:
                continue
            rows = [r for r in (event.new, event.old) if r]
            if not any(matches(r, subscription.filters) for r in rows):
                continue
            try:
                subscription.on_change(event)
            except Exception as e:
                logger.error(f"[MemoryRemoteStore] Subscriber error: {e}", exc_info=True)
