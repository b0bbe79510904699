"""Drag-and-drop reassignment between stage lanes.

The controller is a two-state machine (IDLE, DRAGGING). A gesture begins
with start(), follows the pointer with move() and finishes with end(),
which resolves the release point to a lane and requests at most one stage
change.

Lanes are half-open rectangles [x, x + width) x [y, y + height) and may not
overlap, so any point falls in exactly one lane or in none.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from site_tasks.stages import Stage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Point:
    """Pointer position in layout coordinates."""

    x: float
    y: float


@dataclass(frozen=True)
class Region:
    """Axis-aligned hit region of a lane."""

    x: float
    y: float
    width: float
    height: float

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Region must have a positive size, got {self.width}x{self.height}")

    @property
    def right(self) -> float:
        """Exclusive right edge."""
        return self.x + self.width

    @property
    def bottom(self) -> float:
        """Exclusive bottom edge."""
        return self.y + self.height

    def contains(self, point: Point) -> bool:
        """Whether the point lies inside (left/top edges inclusive)."""
        return self.x <= point.x < self.right and self.y <= point.y < self.bottom

    def overlaps(self, other: "Region") -> bool:
        """Whether the two regions share any point."""
        return (
            self.x < other.right
            and other.x < self.right
            and self.y < other.bottom
            and other.y < self.bottom
        )


class DragState(str, Enum):
    """Controller state."""

    IDLE = "idle"
    DRAGGING = "dragging"


@dataclass
class DragSession:
    """An in-progress drag of one task."""

    task_id: str
    title: str
    origin: Stage
    position: Point | None = None
    target: Stage | None = None  # Lane under the pointer


DropHandler = Callable[[DragSession, Stage], None]
DragObserver = Callable[[str, DragSession], None]  # ("drag_start" | "drag_end", session)


class DragController:
    """Turns drag gestures over stage lanes into stage-change requests."""

    def __init__(self, on_drop: DropHandler | None = None) -> None:
        """Initialize an idle controller.

        Args:
            on_drop: Called with (session, target stage) when a task is released
                over a lane other than its own
        """
        self.on_drop = on_drop
        self.session: DragSession | None = None
        self._lanes: dict[Stage, Region] = {}
        self._observers: list[DragObserver] = []

    @property
    def state(self) -> DragState:
        """Current state."""
        return DragState.DRAGGING if self.session else DragState.IDLE

    @property
    def lanes(self) -> dict[Stage, Region]:
        """Registered lane regions."""
        return dict(self._lanes)

    def add_observer(self, observer: DragObserver) -> None:
        """Register a drag_start/drag_end callback."""
        self._observers.append(observer)

    def _notify(self, event: str, session: DragSession) -> None:
        for observer in list(self._observers):
            try:
                observer(event, session)
            except Exception as e:
                logger.error(f"[DragController] Observer error on {event}: {e}", exc_info=True)

    def register_lane(self, stage: Stage, region: Region) -> None:
        """Set the hit region of a lane.

        Raises:
            ValueError: The region overlaps another lane
        """
        for other_stage, other in self._lanes.items():
            if other_stage != stage and region.overlaps(other):
                raise ValueError(f"Lane {stage.value} overlaps lane {other_stage.value}")
        self._lanes[stage] = region

    def unregister_lane(self, stage: Stage) -> None:
        """Remove a lane (e.g. when it is collapsed)."""
        self._lanes.pop(stage, None)

    def clear_lanes(self) -> None:
        """Remove all lanes."""
        self._lanes.clear()

    def lane_at(self, point: Point) -> Stage | None:
        """Lane containing the point, or None."""
        for stage, region in self._lanes.items():
            if region.contains(point):
                return stage
        return None

    def start(
        self, task_id: str, title: str, origin: Stage, position: Point | None = None
    ) -> DragSession:
        """Begin dragging a task.

        Raises:
            RuntimeError: A drag is already in progress
        """
        if self.session is not None:
            raise RuntimeError(f"Already dragging task {self.session.task_id}")
        session = DragSession(task_id=task_id, title=title, origin=origin)
        if position is not None:
            session.position = position
            session.target = self.lane_at(position)
        self.session = session
        logger.debug(f"[DragController] Started dragging {title!r} from {origin.value}")
        self._notify("drag_start", session)
        return session

    def move(self, position: Point) -> Stage | None:
        """Track the pointer. Returns the lane currently under it.

        Raises:
            RuntimeError: No drag in progress
        """
        if self.session is None:
            raise RuntimeError("No drag in progress")
        self.session.position = position
        self.session.target = self.lane_at(position)
        return self.session.target

    def end(self, position: Point | None = None) -> Stage | None:
        """Release the task.

        Resolves the release point (or the last tracked position) to a lane.
        A drop on a different lane calls on_drop once; a drop on the origin
        lane or outside every lane requests nothing.

        Returns:
            The target stage if a stage change was requested, else None

        Raises:
            RuntimeError: No drag in progress
        """
        session = self.session
        if session is None:
            raise RuntimeError("No drag in progress")
        self.session = None

        if position is not None:
            session.position = position
        target = self.lane_at(session.position) if session.position else None
        session.target = target

        requested: Stage | None = None
        try:
            if target is None:
                logger.debug(f"[DragController] Dropped {session.title!r} outside every lane")
            elif target == session.origin:
                logger.debug(f"[DragController] Dropped {session.title!r} on its own lane")
            else:
                logger.info(
                    f"[DragController] Moving {session.title!r} "
                    f"from {session.origin.value} to {target.value}"
                )
                if self.on_drop is not None:
                    self.on_drop(session, target)
                requested = target
        except Exception as e:
            logger.error(f"[DragController] Drop handler error: {e}", exc_info=True)
        finally:
            self._notify("drag_end", session)
        return requested

    def cancel(self) -> None:
        """Abandon the current drag without requesting anything."""
        session = self.session
        if session is None:
            return
        self.session = None
        session.target = None
        self._notify("drag_end", session)
