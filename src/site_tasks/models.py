"""Canonical in-memory task model."""

from dataclasses import dataclass, field, fields
from datetime import date, datetime
from enum import Enum
from typing import Any

from site_tasks.stages import Stage


class Priority(str, Enum):
    """Task priority."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        """Numeric rank, higher is more urgent."""
        return _PRIORITY_RANK[self]

    @classmethod
    def parse(cls, value: Any) -> "Priority | None":
        """Parse a priority, returning None for empty or unknown values."""
        if value is None or isinstance(value, Priority):
            return value
        if isinstance(value, str) and value.strip():
            try:
                return cls(value.strip().lower())
            except ValueError:
                return None
        return None


_PRIORITY_RANK: dict[Priority, int] = {
    Priority.LOW: 1,
    Priority.MEDIUM: 2,
    Priority.HIGH: 3,
    Priority.CRITICAL: 4,
}


def priority_rank(priority: Priority | None) -> int:
    """Rank of an optional priority (0 when unset)."""
    return priority.rank if priority else 0


@dataclass(frozen=True)
class Task:
    """Task as held by the task store."""

    id: str  # Server-assigned, stable
    title: str
    stage: Stage = Stage.NOT_STARTED
    description: str | None = None
    due_date: date | None = None
    priority: Priority | None = None
    project_id: str | None = None
    assigned_to: str | None = None
    created_by: str | None = None
    status: str | None = None  # Legacy column derived from stage

    # Site metadata, carried through untouched by the store
    trade_required: str | None = None
    weather_dependent: bool = False
    inspection_required: bool = False
    safety_notes: str | None = None
    estimated_hours: float | None = None
    actual_hours: float | None = None
    materials_needed: list[str] = field(default_factory=list)
    location_details: str | None = None
    completion_notes: str | None = None

    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_completed(self) -> bool:
        """Whether the task sits in the completed stage."""
        return self.stage == Stage.COMPLETED


# Fields a caller may change through a mutation. The legacy status only
# follows the stage.
MUTABLE_FIELDS: frozenset[str] = frozenset(
    f.name
    for f in fields(Task)
    if f.name not in {"id", "status", "created_by", "created_at", "updated_at"}
)
