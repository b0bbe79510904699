"""Conversion between remote rows and the canonical Task model.

These functions are the only place where column names and wire value
formats are known. Everything above the store works on Task objects.
"""

from contextlib import suppress
from dataclasses import fields
from datetime import date, datetime
from enum import Enum
from typing import Any

from site_tasks.models import Priority, Task
from site_tasks.remote.contract import Row
from site_tasks.stages import Stage


# Alternate spellings seen in mixed frontend/backend payloads
_ALIASES: dict[str, tuple[str, ...]] = {
    "due_date": ("dueDate",),
    "project_id": ("projectId",),
    "assigned_to": ("assignedTo",),
    "created_by": ("createdBy",),
    "created_at": ("createdAt",),
    "updated_at": ("updatedAt",),
}

_TASK_FIELDS = tuple(f.name for f in fields(Task))


def _get(row: Row, column: str) -> Any:
    """Read a column, falling back to its camelCase alias."""
    if column in row:
        return row[column]
    for alias in _ALIASES.get(column, ()):
        if alias in row:
            return row[alias]
    return None


def parse_date(value: Any) -> date | None:
    """Parse a due date from a date, datetime or ISO string."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        with suppress(ValueError):
            return date.fromisoformat(value.strip()[:10])
    return None


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO timestamp, accepting a trailing Z."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value.strip():
        with suppress(ValueError):
            return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    return None


def _to_float(value: Any) -> float | None:
    # bool is a subclass of int, reject it explicitly
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        with suppress(ValueError):
            return float(value)
    return None


def _to_list(value: Any) -> list[str]:
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    return []


def _to_optional_str(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


def task_from_row(row: Row) -> Task:
    """Convert a remote row into a Task.

    Raises:
        ValueError: If the row has no id
    """
    row_id = row.get("id")
    if row_id is None:
        raise ValueError("Row has no id")

    return Task(
        id=str(row_id),
        title=str(row.get("title") or ""),
        stage=Stage.normalize(row.get("stage")),
        description=row.get("description"),
        due_date=parse_date(_get(row, "due_date")),
        priority=Priority.parse(row.get("priority")),
        project_id=_to_optional_str(_get(row, "project_id")),
        assigned_to=_to_optional_str(_get(row, "assigned_to")),
        created_by=_to_optional_str(_get(row, "created_by")),
        status=row.get("status"),
        trade_required=row.get("trade_required"),
        weather_dependent=bool(row.get("weather_dependent") or False),
        inspection_required=bool(row.get("inspection_required") or False),
        safety_notes=row.get("safety_notes"),
        estimated_hours=_to_float(row.get("estimated_hours")),
        actual_hours=_to_float(row.get("actual_hours")),
        materials_needed=_to_list(row.get("materials_needed")),
        location_details=row.get("location_details"),
        completion_notes=row.get("completion_notes"),
        created_at=parse_timestamp(_get(row, "created_at")),
        updated_at=parse_timestamp(_get(row, "updated_at")),
    )


def _value_to_wire(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, list):
        return list(value)
    return value


def task_to_row(task: Task) -> Row:
    """Convert a Task into a full remote row."""
    return {name: _value_to_wire(getattr(task, name)) for name in _TASK_FIELDS}


def updates_to_row(updates: dict[str, Any]) -> Row:
    """Convert canonical field updates into column values."""
    return {name: _value_to_wire(value) for name, value in updates.items()}
