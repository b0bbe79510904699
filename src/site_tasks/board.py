"""Task board: the surface the presentation layer talks to.

Wires a TaskStore, a MutationEngine and a DragController together for one
screen/session and exposes the state (tasks, loading, error, lanes) and the
imperative operations the UI calls.
"""

import asyncio
import logging
from collections.abc import Mapping
from types import TracebackType
from typing import Any

from site_tasks.errors import FetchError, NotFoundError, TaskError
from site_tasks.models import Task
from site_tasks.notifier import Notifier
from site_tasks.prioritization import (
    DEFAULT_TIMEOUT,
    MaterialStatus,
    Prioritizer,
    TaskPrediction,
    Weather,
    WorkerContext,
    filter_for_conditions,
    next_task,
    predict_lifecycle,
    prioritize_tasks,
    upcoming_tasks,
    worker_context,
)
from site_tasks.stages import Stage, is_valid_transition, next_toggle_stage
from site_tasks.store.drag import DragController, DragObserver, DragSession, Point, Region
from site_tasks.store.mutations import MutationEngine
from site_tasks.store.task_store import FilterCriteria, StoreListener, TaskStore

logger = logging.getLogger(__name__)


class TaskBoard:
    """One board (store + engine + drag controller) per active session."""

    def __init__(
        self,
        store: TaskStore,
        notifier: Notifier | None = None,
        prioritizer: Prioritizer | None = None,
        prioritizer_timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        """Initialize board around an existing store."""
        self.store = store
        self.engine = MutationEngine(store, notifier)
        self.drag = DragController(on_drop=self._handle_drop)
        self.prioritizer = prioritizer
        self.prioritizer_timeout = prioritizer_timeout
        self._background: set[asyncio.Task[Any]] = set()

    # State

    @property
    def tasks(self) -> list[Task]:
        """Current tasks."""
        return self.store.tasks

    @property
    def loading(self) -> bool:
        """Whether a foreground fetch is running."""
        return self.store.loading

    @property
    def error(self) -> str | None:
        """Last fetch error, for display with a retry affordance."""
        return self.store.error

    @property
    def tasks_by_stage(self) -> dict[Stage, list[Task]]:
        """Tasks grouped into lanes."""
        return self.store.tasks_by_stage

    @property
    def upcoming_tasks(self) -> list[Task]:
        """Top open tasks by priority and due date."""
        return upcoming_tasks(self.store.tasks)

    def add_listener(self, listener: StoreListener) -> None:
        """Register a callback for every store change."""
        self.store.add_listener(listener)

    def remove_listener(self, listener: StoreListener) -> None:
        """Unregister a store change callback."""
        self.store.remove_listener(listener)

    # Lifecycle

    async def open(self) -> None:
        """Subscribe and load."""
        await self.store.open()

    async def close(self) -> None:
        """Wait for scheduled drops to settle, then release the subscription."""
        await self.wait_idle()
        await self.store.close()

    async def __aenter__(self) -> "TaskBoard":
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def wait_idle(self) -> None:
        """Wait until every background stage change has settled."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # Fetching

    async def refresh_tasks(self) -> list[Task] | None:
        """Re-fetch with a loading state. Returns None on failure (see error)."""
        try:
            return await self.store.fetch()
        except FetchError:
            return None

    async def refresh_tasks_soft(self) -> list[Task] | None:
        """Re-fetch without a loading flicker. Returns None on failure."""
        try:
            return await self.store.refresh_soft()
        except FetchError:
            return None

    async def set_filters(self, criteria: FilterCriteria) -> list[Task] | None:
        """Change filters, re-subscribing and re-fetching."""
        try:
            return await self.store.set_criteria(criteria)
        except FetchError:
            return None

    # Mutations

    async def create_task(self, fields: Mapping[str, Any]) -> Task:
        """Create a task in the not-started lane."""
        return await self.engine.create(fields)

    async def update_task(
        self, task_id: str, updates: Mapping[str, Any], optimistic: bool = True
    ) -> Task:
        """Update task fields."""
        return await self.engine.mutate(task_id, updates, optimistic=optimistic)

    async def update_task_stage(self, task_id: str, stage: Stage | str) -> Task | None:
        """Move a task to another stage with optimistic feedback.

        A stale task id is logged and ignored (returns None). Moving a task to
        the stage it is already in writes nothing and returns the task.
        """
        target = Stage.parse(stage)
        current = self.store.get(task_id)
        if current is not None and not is_valid_transition(current.stage, target):
            logger.debug(f"[TaskBoard] Task {task_id} already {target.value}")
            return current
        try:
            return await self.engine.mutate(task_id, {"stage": target}, optimistic=True)
        except NotFoundError:
            logger.warning(f"[TaskBoard] Ignoring stage change for unknown task {task_id}")
            return None

    async def toggle_complete(self, task_id: str) -> Task | None:
        """Checkmark tap: complete an open task, or reopen a completed one."""
        task = self.store.get(task_id)
        if task is None:
            logger.warning(f"[TaskBoard] Ignoring toggle for unknown task {task_id}")
            return None
        return await self.update_task_stage(task_id, next_toggle_stage(task.stage))

    async def assign_task(self, task_id: str, user_id: str | None) -> Task:
        """Assign a task to a user."""
        return await self.engine.mutate(task_id, {"assigned_to": user_id})

    async def delete_task(self, task_id: str) -> None:
        """Delete a task."""
        await self.engine.delete(task_id)

    # Drag and drop

    def register_lane(self, stage: Stage, region: Region) -> None:
        """Publish the on-screen region of a lane."""
        self.drag.register_lane(stage, region)

    def remove_lane(self, stage: Stage) -> None:
        """Drop the region of a lane that is no longer on screen."""
        self.drag.unregister_lane(stage)

    def set_lanes(self, lanes: Mapping[Stage, Region]) -> None:
        """Replace every lane region at once.

        Raises:
            ValueError: Two regions overlap; the previous lanes are kept
        """
        previous = self.drag.lanes
        self.drag.clear_lanes()
        try:
            for stage, region in lanes.items():
                self.drag.register_lane(stage, region)
        except ValueError:
            self.drag.clear_lanes()
            for stage, region in previous.items():
                self.drag.register_lane(stage, region)
            raise

    def add_drag_observer(self, observer: DragObserver) -> None:
        """Register for drag_start/drag_end feedback."""
        self.drag.add_observer(observer)

    def start_drag(self, task_id: str, position: Point | None = None) -> DragSession:
        """Begin dragging a task from its current lane.

        Raises:
            NotFoundError: Task is not on the board
        """
        task = self.store.get(task_id)
        if task is None:
            raise NotFoundError(task_id)
        return self.drag.start(task.id, task.title, task.stage, position)

    def move_drag(self, position: Point) -> Stage | None:
        """Track the pointer."""
        return self.drag.move(position)

    def end_drag(self, position: Point | None = None) -> Stage | None:
        """Release the dragged task. Returns the requested target stage."""
        return self.drag.end(position)

    def cancel_drag(self) -> None:
        """Abandon the current drag."""
        self.drag.cancel()

    def _handle_drop(self, session: DragSession, target: Stage) -> None:
        change = asyncio.ensure_future(self._apply_drop(session.task_id, target))
        self._background.add(change)
        change.add_done_callback(self._background.discard)

    async def _apply_drop(self, task_id: str, target: Stage) -> None:
        try:
            await self.update_task_stage(task_id, target)
        except TaskError as e:
            # Write failures were already rolled back and alerted
            logger.info(f"[TaskBoard] Drop of {task_id} onto {target.value} not applied: {e}")

    # Prioritization

    def worker_context(
        self,
        weather: Weather = "good",
        crew_available: bool = True,
        material_status: MaterialStatus = "available",
    ) -> WorkerContext:
        """Context for the signed-in worker."""
        return worker_context(self.store.session, weather, crew_available, material_status)

    async def prioritized_tasks(self, context: WorkerContext | None = None) -> list[Task]:
        """Tasks ranked by the prioritizer, or the fallback order."""
        return await prioritize_tasks(
            self.prioritizer,
            self.store.tasks,
            context or self.worker_context(),
            self.prioritizer_timeout,
        )

    async def next_task_for_worker(self, context: WorkerContext | None = None) -> Task | None:
        """Recommended next task."""
        return await next_task(
            self.prioritizer,
            self.store.tasks,
            context or self.worker_context(),
            self.prioritizer_timeout,
        )

    async def predict_task_lifecycle(
        self, task_id: str, context: WorkerContext | None = None
    ) -> TaskPrediction | None:
        """Lifecycle prediction for a task on the board."""
        task = self.store.get(task_id)
        if task is None:
            return None
        return await predict_lifecycle(
            self.prioritizer, task, context or self.worker_context(), self.prioritizer_timeout
        )

    def site_filtered_tasks(
        self,
        weather: Weather | None = None,
        crew_available: bool | None = None,
        material_status: MaterialStatus | None = None,
    ) -> list[Task]:
        """Tasks workable under the given site conditions."""
        return filter_for_conditions(self.store.tasks, weather, crew_available, material_status)
