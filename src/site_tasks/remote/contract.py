"""Contract between the task store and the remote row store."""

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

Row = dict[str, Any]


@dataclass(frozen=True)
class Eq:
    """Column equals value."""

    column: str
    value: Any


@dataclass(frozen=True)
class Neq:
    """Column differs from value."""

    column: str
    value: Any


@dataclass(frozen=True)
class AnyOf:
    """At least one of the nested predicates holds ("or" composition)."""

    predicates: tuple["Eq | Neq", ...]


Filter = Eq | Neq | AnyOf


@dataclass(frozen=True)
class Ordering:
    """Sort order for a query."""

    field: str
    ascending: bool = True


class ChangeType(str, Enum):
    """Kind of row change pushed by the remote store."""

    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class ChangeEvent:
    """Single-row change notification."""

    type: ChangeType
    new: Row = field(default_factory=dict)
    old: Row = field(default_factory=dict)

    @property
    def row_id(self) -> str | None:
        """ID of the affected row."""
        row = self.old if self.type == ChangeType.DELETE else self.new
        value = row.get("id") or self.new.get("id") or self.old.get("id")
        return str(value) if value is not None else None


class Subscription(Protocol):
    """Handle returned by subscribe(); close() stops delivery."""

    def close(self) -> None:
        """Stop delivering change events."""
        ...


class RemoteStore(Protocol):
    """Remote relational store used by the task engine."""

    async def query(
        self, table: str, filters: Sequence[Filter], ordering: Ordering | None = None
    ) -> list[Row]:
        """Return rows matching all filters."""
        ...

    async def insert(self, table: str, fields: Row) -> Row:
        """Insert a row and return it as stored."""
        ...

    async def update(self, table: str, row_id: str, fields: Row) -> Row:
        """Update a row and return it as stored."""
        ...

    async def delete(self, table: str, row_id: str) -> None:
        """Delete a row."""
        ...

    async def subscribe(
        self, table: str, filters: Sequence[Filter], on_change: Callable[[ChangeEvent], None]
    ) -> Subscription:
        """Deliver changes to rows matching filters until the handle is closed."""
        ...
