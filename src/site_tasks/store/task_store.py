"""Local task list kept in sync with the remote store."""

import asyncio
import contextlib
import logging
from collections.abc import Callable
from dataclasses import dataclass
from types import TracebackType

from site_tasks.errors import FetchError
from site_tasks.models import Task
from site_tasks.remote.contract import (
    AnyOf,
    ChangeEvent,
    ChangeType,
    Eq,
    Filter,
    Neq,
    Ordering,
    RemoteStore,
    Subscription,
)
from site_tasks.remote.filters import matches
from site_tasks.remote.wire import task_from_row, task_to_row
from site_tasks.session import Role, SessionContext
from site_tasks.stages import Stage
from site_tasks.store.classifier import classify

logger = logging.getLogger(__name__)

ORDER_FIELDS = ("title", "due_date", "created_at", "priority")

StoreListener = Callable[["TaskStore"], None]


@dataclass(frozen=True)
class FilterCriteria:
    """Explicit filters and ordering for a task query."""

    project_id: str | None = None
    assigned_to: str | None = None
    stage: Stage | None = None
    include_completed: bool = True
    order_by: str = "due_date"
    ascending: bool = True

    def __post_init__(self) -> None:
        if self.order_by not in ORDER_FIELDS:
            raise ValueError(f"Cannot order by {self.order_by!r}, expected one of {ORDER_FIELDS}")

    @property
    def ordering(self) -> Ordering:
        """Remote ordering for this criteria."""
        return Ordering(self.order_by, self.ascending)


def build_filters(session: SessionContext, criteria: FilterCriteria) -> list[Filter]:
    """Translate role visibility and explicit criteria into remote filters."""
    filters: list[Filter] = []

    if session.role == Role.WORKER:
        # Workers only see tasks assigned to them
        filters.append(Eq("assigned_to", session.user_id))
    elif session.role == Role.FOREMAN:
        # Foremen see tasks assigned to them or created by them
        filters.append(
            AnyOf((Eq("assigned_to", session.user_id), Eq("created_by", session.user_id)))
        )
    # Supervisors and managers see everything

    if criteria.project_id:
        filters.append(Eq("project_id", criteria.project_id))
    if criteria.assigned_to:
        filters.append(Eq("assigned_to", criteria.assigned_to))
    if criteria.stage:
        filters.append(Eq("stage", criteria.stage.value))
    if not criteria.include_completed:
        filters.append(Neq("stage", Stage.COMPLETED.value))
    return filters


class TaskStore:
    """Authoritative local copy of the caller's tasks.

    All list updates are synchronous. Remote change notifications are queued
    and applied by a pump task started in open(), or on demand through
    apply_pending_changes().
    """

    def __init__(
        self,
        remote: RemoteStore,
        session: SessionContext,
        criteria: FilterCriteria | None = None,
        table: str = "tasks",
    ) -> None:
        """Initialize an empty store."""
        self.remote = remote
        self.session = session
        self.criteria = criteria or FilterCriteria()
        self.table = table
        self.loading = False
        self.error: str | None = None
        self._tasks: list[Task] = []
        self._listeners: list[StoreListener] = []
        self._changes: asyncio.Queue[ChangeEvent] = asyncio.Queue()
        self._subscription: Subscription | None = None
        self._pump_task: asyncio.Task[None] | None = None
        self._generation = 0

    # Read side

    @property
    def tasks(self) -> list[Task]:
        """Current tasks in store order."""
        return list(self._tasks)

    @property
    def tasks_by_stage(self) -> dict[Stage, list[Task]]:
        """Current tasks grouped into stage lanes."""
        return classify(self._tasks)

    def get(self, task_id: str) -> Task | None:
        """Return the task with this id, if present."""
        for task in self._tasks:
            if task.id == task_id:
                return task
        return None

    def __contains__(self, task_id: object) -> bool:
        return any(task.id == task_id for task in self._tasks)

    def __len__(self) -> int:
        return len(self._tasks)

    def query_filters(self) -> list[Filter]:
        """Remote filters for the active session and criteria."""
        return build_filters(self.session, self.criteria)

    # Listeners

    def add_listener(self, listener: StoreListener) -> None:
        """Register a callback invoked after every change."""
        self._listeners.append(listener)

    def remove_listener(self, listener: StoreListener) -> None:
        """Unregister a change callback."""
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _changed(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception as e:
                logger.error(f"[TaskStore] Listener error: {e}", exc_info=True)

    # Local primitives

    def put(self, task: Task) -> bool:
        """Replace an existing task in place. Returns False if absent."""
        for index, existing in enumerate(self._tasks):
            if existing.id == task.id:
                self._tasks[index] = task
                self._changed()
                return True
        return False

    def add(self, task: Task) -> None:
        """Insert a task at the front, replacing any copy with the same id."""
        if not self.put(task):
            self._tasks.insert(0, task)
            self._changed()

    def remove(self, task_id: str) -> bool:
        """Remove a task. Returns False if absent."""
        for index, existing in enumerate(self._tasks):
            if existing.id == task_id:
                del self._tasks[index]
                self._changed()
                return True
        return False

    # Remote sync

    async def fetch(
        self, criteria: FilterCriteria | None = None, background: bool = False
    ) -> list[Task]:
        """Replace contents with the result of a remote query.

        Args:
            criteria: New criteria to adopt before querying
            background: Do not flip the loading flag

        Raises:
            FetchError: If the query fails. Previous contents are kept.
        """
        if criteria is not None:
            self.criteria = criteria

        if not self.session.is_authenticated:
            self._tasks = []
            self.loading = False
            self.error = None
            self._changed()
            return []

        self._generation += 1
        generation = self._generation
        self.error = None
        if not background:
            self.loading = True
            self._changed()

        try:
            try:
                rows = await self.remote.query(
                    self.table, self.query_filters(), self.criteria.ordering
                )
            except Exception as e:
                logger.error(f"[TaskStore] Error fetching tasks: {e}")
                if generation == self._generation:
                    self.error = str(e) or "Failed to fetch tasks"
                raise FetchError(str(e) or "Failed to fetch tasks") from e

            tasks: list[Task] = []
            for row in rows:
                try:
                    tasks.append(task_from_row(row))
                except ValueError as e:
                    logger.warning(f"[TaskStore] Skipping malformed row: {e}")

            if generation != self._generation:
                # A newer fetch was issued while this one was in flight
                logger.debug("[TaskStore] Discarding stale fetch result")
                return tasks

            self._tasks = tasks
            logger.info(f"[TaskStore] Loaded {len(tasks)} tasks")
            return list(tasks)
        finally:
            if not background:
                self.loading = False
            self._changed()

    async def refresh_soft(self) -> list[Task]:
        """Re-fetch without showing a loading state."""
        return await self.fetch(background=True)

    def apply_remote_change(self, event: ChangeEvent) -> None:
        """Apply one insert/update/delete notification to the local list.

        Idempotent: replaying an event leaves the store unchanged. Rows that
        no longer match the active filters are dropped.
        """
        if event.type == ChangeType.DELETE:
            row_id = event.row_id
            if row_id is not None:
                self.remove(row_id)
            return

        try:
            task = task_from_row(event.new)
        except ValueError as e:
            logger.warning(f"[TaskStore] Ignoring {event.type.value} without id: {e}")
            return

        # Match on the canonical row so aliased or legacy spellings are in scope
        if not matches(task_to_row(task), self.query_filters()):
            self.remove(task.id)
            return

        if self.get(task.id) == task:
            return
        self.add(task)

    def _enqueue_change(self, event: ChangeEvent) -> None:
        self._changes.put_nowait(event)

    def apply_pending_changes(self) -> int:
        """Apply every queued change notification now. Returns the count."""
        count = 0
        while True:
            try:
                event = self._changes.get_nowait()
            except asyncio.QueueEmpty:
                return count
            self.apply_remote_change(event)
            count += 1

    async def _pump(self) -> None:
        while True:
            event = await self._changes.get()
            try:
                self.apply_remote_change(event)
            except Exception as e:
                logger.error(f"[TaskStore] Failed to apply change: {e}", exc_info=True)

    async def _subscribe(self) -> None:
        self._unsubscribe()
        if not self.session.is_authenticated:
            return
        self._subscription = await self.remote.subscribe(
            self.table, self.query_filters(), self._enqueue_change
        )
        logger.debug(f"[TaskStore] Subscribed to {self.table} changes")

    def _unsubscribe(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
            logger.debug(f"[TaskStore] Unsubscribed from {self.table} changes")

    @property
    def subscribed(self) -> bool:
        """Whether a change subscription is active."""
        return self._subscription is not None

    async def open(self) -> None:
        """Subscribe to changes, start the pump and load tasks.

        A failed initial fetch leaves the store open with ``error`` set.
        """
        await self._subscribe()
        if self._pump_task is None:
            self._pump_task = asyncio.create_task(self._pump(), name=f"task-store-{self.table}")
        with contextlib.suppress(FetchError):
            await self.fetch()

    async def set_criteria(self, criteria: FilterCriteria) -> list[Task]:
        """Adopt new criteria: re-subscribe with the new scope and re-fetch."""
        self.criteria = criteria
        await self._subscribe()
        return await self.fetch()

    async def close(self) -> None:
        """Release the subscription and stop the pump."""
        self._unsubscribe()
        if self._pump_task is not None:
            self._pump_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._pump_task
            self._pump_task = None

    async def __aenter__(self) -> "TaskStore":
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()
