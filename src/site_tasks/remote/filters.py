"""Evaluate query filters and ordering against plain rows."""

from collections.abc import Sequence

from site_tasks.remote.contract import AnyOf, Eq, Filter, Neq, Ordering, Row


def _matches_one(row: Row, predicate: Filter) -> bool:
    if isinstance(predicate, Eq):
        return row.get(predicate.column) == predicate.value
    if isinstance(predicate, Neq):
        return row.get(predicate.column) != predicate.value
    if isinstance(predicate, AnyOf):
        return any(_matches_one(row, p) for p in predicate.predicates)
    raise TypeError(f"Unsupported filter: {predicate!r}")


def matches(row: Row, filters: Sequence[Filter]) -> bool:
    """Return True if the row satisfies every filter."""
    return all(_matches_one(row, f) for f in filters)


def apply_ordering(rows: list[Row], ordering: Ordering | None) -> list[Row]:
    """Sort rows by ordering. Nulls go last in both directions.

    Values compare by their string form, which orders ISO dates and
    timestamps correctly.
    """
    if ordering is None:
        return list(rows)
    present = [r for r in rows if r.get(ordering.field) is not None]
    missing = [r for r in rows if r.get(ordering.field) is None]
    present.sort(key=lambda r: str(r[ordering.field]), reverse=not ordering.ascending)
    return present + missing
