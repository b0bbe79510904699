"""Partition tasks into stage lanes."""

from collections.abc import Iterable
from datetime import date

from site_tasks.models import Task
from site_tasks.stages import Stage


def due_date_key(task: Task) -> tuple[bool, date]:
    """Sort key: earliest due date first, undated tasks last."""
    if task.due_date is None:
        return (True, date.max)
    return (False, task.due_date)


def classify(tasks: Iterable[Task]) -> dict[Stage, list[Task]]:
    """Group tasks by stage, each lane sorted by due date.

    Every stage is present in the result, empty lanes included. The input is
    not modified. Sorting is stable, so tasks with equal due dates keep their
    input order.
    """
    buckets: dict[Stage, list[Task]] = {stage: [] for stage in Stage}
    for task in tasks:
        stage = task.stage if isinstance(task.stage, Stage) else Stage.normalize(task.stage)
        buckets[stage].append(task)
    for bucket in buckets.values():
        bucket.sort(key=due_date_key)
    return buckets
