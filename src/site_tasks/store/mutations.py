"""Optimistic mutation engine.

Every mutation walks a small state machine:

    PENDING -> COMMITTED     remote write accepted, server row replaces local copy
    PENDING -> ROLLED_BACK   remote write failed, pre-mutation snapshot restored

Only one mutation per task may be pending. A second request for the same
task is rejected with ConcurrentMutationError before anything changes.
"""

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from site_tasks.errors import ConcurrentMutationError, NotFoundError, WriteError
from site_tasks.models import MUTABLE_FIELDS, Priority, Task
from site_tasks.notifier import LogNotifier, Notifier
from site_tasks.remote.contract import ChangeEvent, ChangeType, Row
from site_tasks.remote.wire import parse_date, task_from_row, updates_to_row
from site_tasks.stages import Stage, legacy_status
from site_tasks.store.task_store import TaskStore

logger = logging.getLogger(__name__)

ACTIVITY_TABLE = "activity_log"


class MutationState(str, Enum):
    """Lifecycle of one mutation."""

    PENDING = "pending"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


@dataclass
class PendingMutation:
    """In-flight mutation with the snapshot needed to undo it."""

    task_id: str
    snapshot: Task
    updates: dict[str, Any]
    optimistic: bool
    state: MutationState = MutationState.PENDING
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def commit(self, store: TaskStore, saved: Task) -> None:
        """Adopt the server's row as the local copy."""
        if self.state != MutationState.PENDING:
            raise RuntimeError(f"Mutation for {self.task_id} already {self.state.value}")
        self.state = MutationState.COMMITTED
        # A delete may have landed while the write was in flight
        if self.task_id in store:
            store.put(saved)

    def roll_back(self, store: TaskStore) -> None:
        """Restore the exact pre-mutation task."""
        if self.state != MutationState.PENDING:
            raise RuntimeError(f"Mutation for {self.task_id} already {self.state.value}")
        self.state = MutationState.ROLLED_BACK
        if self.optimistic and self.task_id in store:
            store.put(self.snapshot)


def normalize_updates(updates: Mapping[str, Any]) -> dict[str, Any]:
    """Validate field updates and convert values to canonical types.

    A stage change always carries the matching legacy status.

    Raises:
        ValueError: Unknown field or invalid value
    """
    unknown = set(updates) - MUTABLE_FIELDS
    if unknown:
        raise ValueError(f"Unknown or read-only task fields: {', '.join(sorted(unknown))}")

    result: dict[str, Any] = {}
    for name, value in updates.items():
        if name == "stage":
            value = Stage.parse(value)
        elif name == "priority":
            parsed = Priority.parse(value)
            if value is not None and parsed is None:
                raise ValueError(f"Invalid priority: {value!r}")
            value = parsed
        elif name == "due_date" and value is not None:
            parsed_date = parse_date(value)
            if parsed_date is None:
                raise ValueError(f"Invalid due date: {value!r}")
            value = parsed_date
        elif name == "title":
            if value is None or not str(value).strip():
                raise ValueError("Title cannot be empty")
            value = str(value).strip()
        elif name == "materials_needed":
            value = [str(m) for m in value or []]
        elif name in {"weather_dependent", "inspection_required"}:
            value = bool(value)
        result[name] = value

    if "stage" in result:
        result["status"] = legacy_status(result["stage"])
    return result


class MutationEngine:
    """Applies task mutations locally first, then remotely."""

    def __init__(self, store: TaskStore, notifier: Notifier | None = None) -> None:
        """Initialize engine for one task store."""
        self.store = store
        self.notifier: Notifier = notifier or LogNotifier()
        self._pending: dict[str, PendingMutation] = {}
        # Strong references so settling tasks survive a cancelled caller
        self._settling: set[asyncio.Task[Task]] = set()

    def in_flight(self, task_id: str) -> bool:
        """Whether a mutation for this task is pending."""
        return task_id in self._pending

    def pending(self, task_id: str) -> PendingMutation | None:
        """Pending mutation record for a task."""
        return self._pending.get(task_id)

    async def mutate(
        self, task_id: str, updates: Mapping[str, Any], optimistic: bool = True
    ) -> Task:
        """Apply field updates to a task.

        With optimistic=True the local copy changes before this coroutine
        first suspends. The remote write always settles, even if the caller
        is cancelled.

        Returns:
            The task as stored by the server

        Raises:
            NotFoundError: Task is not in the local store
            ConcurrentMutationError: Another mutation for the task is pending
            ValueError: Invalid field updates
            WriteError: Remote write failed; local state was rolled back
        """
        original = self.store.get(task_id)
        if original is None:
            logger.warning(f"[MutationEngine] Mutation for unknown task {task_id}")
            raise NotFoundError(task_id)
        if task_id in self._pending:
            raise ConcurrentMutationError(task_id)

        fields = normalize_updates(updates)
        mutation = PendingMutation(task_id, original, fields, optimistic)
        self._pending[task_id] = mutation

        if optimistic:
            logger.debug(f"[MutationEngine] Optimistic update for {task_id}: {sorted(fields)}")
            self.store.put(replace(original, **fields))

        settle = asyncio.ensure_future(self._settle(mutation))
        self._settling.add(settle)
        settle.add_done_callback(self._forget)
        return await asyncio.shield(settle)

    def _forget(self, settle: "asyncio.Task[Task]") -> None:
        self._settling.discard(settle)
        # Mark the outcome as retrieved when the original caller went away
        if not settle.cancelled():
            settle.exception()

    async def _settle(self, mutation: PendingMutation) -> Task:
        row: Row = updates_to_row(mutation.updates)
        row["updated_at"] = datetime.now(timezone.utc).isoformat()

        try:
            saved_row = await self.store.remote.update(self.store.table, mutation.task_id, row)
        except Exception as e:
            reason = str(e) or e.__class__.__name__
            logger.error(f"[MutationEngine] Update failed for {mutation.task_id}: {reason}")
            mutation.roll_back(self.store)
            self._pending.pop(mutation.task_id, None)
            self.notifier.alert("Update Failed", reason)
            raise WriteError(mutation.task_id, reason) from e

        try:
            saved = task_from_row(saved_row)
        except ValueError:
            logger.warning(f"[MutationEngine] Server returned no row for {mutation.task_id}")
            saved = replace(mutation.snapshot, **mutation.updates)

        mutation.commit(self.store, saved)
        self._pending.pop(mutation.task_id, None)
        logger.info(f"[MutationEngine] Committed update for {mutation.task_id}")

        if "stage" in mutation.updates:
            await self._log_activity(
                "task_status_updated",
                f"Task status changed to {mutation.updates['stage'].value}",
                saved,
            )
        elif "assigned_to" in mutation.updates:
            await self._log_activity("task_assigned", "Task assignment updated", saved)
        return saved

    async def create(self, fields: Mapping[str, Any]) -> Task:
        """Insert a new task in the not-started stage.

        Raises:
            PermissionError: No authenticated user
            ValueError: Invalid fields
            WriteError: Remote insert failed
        """
        session = self.store.session
        if not session.is_authenticated:
            raise PermissionError("User must be authenticated to create tasks")
        if not fields.get("title"):
            raise ValueError("Title cannot be empty")

        data = normalize_updates({**fields, "stage": Stage.NOT_STARTED})
        row = updates_to_row(data)
        row["created_by"] = session.user_id

        try:
            saved_row = await self.store.remote.insert(self.store.table, row)
        except Exception as e:
            reason = str(e) or e.__class__.__name__
            logger.error(f"[MutationEngine] Create failed: {reason}")
            self.notifier.alert("Create Failed", reason)
            raise WriteError(None, reason) from e

        task = task_from_row(saved_row)
        # Same path as the realtime echo, so visibility rules apply
        self.store.apply_remote_change(ChangeEvent(ChangeType.INSERT, new=saved_row))
        logger.info(f"[MutationEngine] Created task {task.id}")
        await self._log_activity("task_created", f"Created task: {task.title}", task)
        return task

    async def delete(self, task_id: str) -> None:
        """Delete a task remotely, then drop it locally.

        Raises:
            ConcurrentMutationError: A mutation for the task is pending
            WriteError: Remote delete failed; the task stays in the store
        """
        if task_id in self._pending:
            raise ConcurrentMutationError(task_id)
        try:
            await self.store.remote.delete(self.store.table, task_id)
        except Exception as e:
            reason = str(e) or e.__class__.__name__
            logger.error(f"[MutationEngine] Delete failed for {task_id}: {reason}")
            self.notifier.alert("Delete Failed", reason)
            raise WriteError(task_id, reason) from e
        self.store.remove(task_id)
        logger.info(f"[MutationEngine] Deleted task {task_id}")

    async def _log_activity(self, activity_type: str, description: str, task: Task) -> None:
        """Best-effort activity log entry. Failures are only logged."""
        try:
            await self.store.remote.insert(
                ACTIVITY_TABLE,
                {
                    "user_id": self.store.session.user_id,
                    "activity_type": activity_type,
                    "description": description,
                    "related_task_id": task.id,
                    "related_project_id": task.project_id,
                },
            )
        except Exception as e:
            logger.warning(f"[MutationEngine] Failed to log activity {activity_type}: {e}")
