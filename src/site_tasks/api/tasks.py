"""Task API endpoints."""

import logging

from fastapi import APIRouter, HTTPException, status

from site_tasks.api.models import (
    CreateTaskRequest,
    DragEndRequest,
    DragResponse,
    DragStartRequest,
    DropResponse,
    LaneRequest,
    PointRequest,
    PredictionResponse,
    StageResponse,
    TaskResponse,
    UpdateStageRequest,
    UpdateTaskRequest,
    prediction_to_response,
    stage_to_response,
    task_to_response,
)
from site_tasks.board import TaskBoard
from site_tasks.errors import FetchError, NotFoundError
from site_tasks.factory import get_board
from site_tasks.prioritization import MaterialStatus, Weather
from site_tasks.stages import Stage, all_stages
from site_tasks.store.drag import Point, Region
from site_tasks.store.task_store import FilterCriteria

logger = logging.getLogger(__name__)

router = APIRouter()


def _board() -> TaskBoard:
    try:
        return get_board()
    except RuntimeError as e:
        logger.error("Task board not initialized!")
        raise HTTPException(status_code=503, detail=str(e)) from e


def _point(x: float | None, y: float | None) -> Point | None:
    if x is None or y is None:
        return None
    return Point(x, y)


def _drag_response(board: TaskBoard) -> DragResponse:
    session = board.drag.session
    if session is None:
        return DragResponse(state=board.drag.state.value)
    return DragResponse(
        state=board.drag.state.value,
        task_id=session.task_id,
        origin=session.origin.value,
        target=session.target.value if session.target else None,
    )


@router.get("/stages", response_model=list[StageResponse])
async def list_stages() -> list[StageResponse]:
    """List the board lanes in display order with their labels."""
    return [stage_to_response(stage) for stage in all_stages()]


@router.get("/tasks", response_model=list[TaskResponse])
async def list_tasks(stage: str | None = None) -> list[TaskResponse]:
    """List tasks on the board.

    Args:
        stage: Only tasks in this stage

    Returns:
        Tasks in store order
    """
    board = _board()
    tasks = board.tasks
    if stage:
        wanted = Stage.parse(stage)
        tasks = [t for t in tasks if t.stage == wanted]
    return [task_to_response(t) for t in tasks]


@router.get("/tasks/by-stage", response_model=dict[str, list[TaskResponse]])
async def list_tasks_by_stage() -> dict[str, list[TaskResponse]]:
    """List tasks grouped into stage lanes.

    Returns:
        One entry per stage, each sorted by due date (undated last)
    """
    buckets = _board().tasks_by_stage
    return {stage.value: [task_to_response(t) for t in buckets[stage]] for stage in all_stages()}


@router.post("/tasks", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
async def create_task(request: CreateTaskRequest) -> TaskResponse:
    """Create a task in the not-started lane.

    Raises:
        HTTPException: 400 on invalid fields, 401 without a user, 502 if the write fails
    """
    task = await _board().create_task(request.model_dump(exclude_unset=True))
    return task_to_response(task)


@router.patch("/tasks/{task_id}", response_model=TaskResponse)
async def update_task(task_id: str, request: UpdateTaskRequest) -> TaskResponse:
    """Update task fields.

    Args:
        task_id: Task ID
        request: Fields to change; optimistic=false waits for the server first

    Raises:
        HTTPException: 404 unknown task, 409 busy task, 502 if the write fails
    """
    updates = request.model_dump(exclude_unset=True, exclude={"optimistic"})
    if not updates:
        raise HTTPException(status_code=400, detail="No fields to update")
    task = await _board().update_task(task_id, updates, optimistic=request.optimistic)
    return task_to_response(task)


@router.patch("/tasks/{task_id}/stage", response_model=TaskResponse)
async def update_task_stage(task_id: str, request: UpdateStageRequest) -> TaskResponse:
    """Move a task to another stage.

    Raises:
        HTTPException: 400 invalid stage, 404 unknown task, 502 if the write fails
    """
    task = await _board().update_task_stage(task_id, Stage.parse(request.stage))
    if task is None:
        raise NotFoundError(task_id)
    return task_to_response(task)


@router.post("/tasks/{task_id}/toggle", response_model=TaskResponse)
async def toggle_task(task_id: str) -> TaskResponse:
    """Complete an open task or reopen a completed one."""
    task = await _board().toggle_complete(task_id)
    if task is None:
        raise NotFoundError(task_id)
    return task_to_response(task)


@router.delete("/tasks/{task_id}")
async def delete_task(task_id: str) -> dict[str, str]:
    """Delete a task.

    Returns:
        Success message
    """
    board = _board()
    if task_id not in board.store:
        raise NotFoundError(task_id)
    await board.delete_task(task_id)
    return {"status": "success", "task_id": task_id}


@router.post("/tasks/refresh", response_model=list[TaskResponse])
async def refresh_tasks(soft: bool = False) -> list[TaskResponse]:
    """Re-fetch tasks from the remote store.

    Args:
        soft: Refresh without toggling the loading state

    Raises:
        HTTPException: 503 if the fetch fails (previous tasks are kept)
    """
    board = _board()
    tasks = await (board.refresh_tasks_soft() if soft else board.refresh_tasks())
    if tasks is None:
        raise FetchError(board.error or "Fetch failed")
    return [task_to_response(t) for t in tasks]


@router.put("/filters", response_model=list[TaskResponse])
async def set_filters(
    project_id: str | None = None,
    assigned_to: str | None = None,
    stage: str | None = None,
    include_completed: bool = True,
    order_by: str = "due_date",
    ascending: bool = True,
) -> list[TaskResponse]:
    """Replace the board's filters and reload."""
    board = _board()
    criteria = FilterCriteria(
        project_id=project_id,
        assigned_to=assigned_to,
        stage=Stage.parse(stage) if stage else None,
        include_completed=include_completed,
        order_by=order_by,
        ascending=ascending,
    )
    tasks = await board.set_filters(criteria)
    if tasks is None:
        raise FetchError(board.error or "Fetch failed")
    return [task_to_response(t) for t in tasks]


@router.get("/tasks/prioritized", response_model=list[TaskResponse])
async def prioritized_tasks(
    weather: Weather = "good",
    crew_available: bool = True,
    material_status: MaterialStatus = "available",
) -> list[TaskResponse]:
    """Tasks ranked for the signed-in worker."""
    board = _board()
    context = board.worker_context(weather, crew_available, material_status)
    return [task_to_response(t) for t in await board.prioritized_tasks(context)]


@router.get("/tasks/next", response_model=TaskResponse | None)
async def next_task(
    weather: Weather = "good",
    crew_available: bool = True,
    material_status: MaterialStatus = "available",
) -> TaskResponse | None:
    """Recommended next task, or null when nothing can be started."""
    board = _board()
    context = board.worker_context(weather, crew_available, material_status)
    task = await board.next_task_for_worker(context)
    return task_to_response(task) if task else None


@router.get("/tasks/upcoming", response_model=list[TaskResponse])
async def upcoming_tasks() -> list[TaskResponse]:
    """Top open tasks by priority and due date."""
    return [task_to_response(t) for t in _board().upcoming_tasks]


@router.get("/tasks/workable", response_model=list[TaskResponse])
async def workable_tasks(
    weather: Weather | None = None,
    crew_available: bool | None = None,
    material_status: MaterialStatus | None = None,
) -> list[TaskResponse]:
    """Tasks that can be worked under the given site conditions."""
    tasks = _board().site_filtered_tasks(weather, crew_available, material_status)
    return [task_to_response(t) for t in tasks]


@router.get("/tasks/{task_id}/prediction", response_model=PredictionResponse)
async def task_prediction(task_id: str) -> PredictionResponse:
    """Lifecycle prediction for a task."""
    prediction = await _board().predict_task_lifecycle(task_id)
    if prediction is None:
        raise NotFoundError(task_id)
    return prediction_to_response(task_id, prediction)


@router.put("/lanes", response_model=dict[str, list[float]])
async def set_lanes(lanes: list[LaneRequest]) -> dict[str, list[float]]:
    """Publish the on-screen region of every lane.

    Returns:
        stage -> [x, y, width, height]

    Raises:
        HTTPException: 400 if regions overlap or a stage is unknown
    """
    board = _board()
    regions = {
        Stage.parse(lane.stage): Region(lane.x, lane.y, lane.width, lane.height) for lane in lanes
    }
    board.set_lanes(regions)
    return {
        stage.value: [region.x, region.y, region.width, region.height]
        for stage, region in board.drag.lanes.items()
    }


@router.delete("/lanes/{stage}", response_model=dict[str, list[float]])
async def remove_lane(stage: str) -> dict[str, list[float]]:
    """Forget the region of one lane, e.g. when it is collapsed.

    Raises:
        HTTPException: 400 if the stage is unknown
    """
    board = _board()
    board.remove_lane(Stage.parse(stage))
    return {
        s.value: [region.x, region.y, region.width, region.height]
        for s, region in board.drag.lanes.items()
    }


@router.post("/drag/start", response_model=DragResponse)
async def start_drag(request: DragStartRequest) -> DragResponse:
    """Begin dragging a task.

    Raises:
        HTTPException: 404 unknown task, 409 if a drag is already in progress
    """
    board = _board()
    try:
        board.start_drag(request.task_id, _point(request.x, request.y))
    except RuntimeError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return _drag_response(board)


@router.post("/drag/move", response_model=DragResponse)
async def move_drag(request: PointRequest) -> DragResponse:
    """Track the pointer.

    Raises:
        HTTPException: 409 if no drag is in progress
    """
    board = _board()
    try:
        board.move_drag(Point(request.x, request.y))
    except RuntimeError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return _drag_response(board)


@router.post("/drag/end", response_model=DropResponse)
async def end_drag(request: DragEndRequest) -> DropResponse:
    """Release the dragged task and wait for the stage change to settle.

    Raises:
        HTTPException: 409 if no drag is in progress
    """
    board = _board()
    session = board.drag.session
    if session is None:
        raise HTTPException(status_code=409, detail="No drag in progress")
    requested = board.end_drag(_point(request.x, request.y))
    await board.wait_idle()
    task = board.store.get(session.task_id)
    return DropResponse(
        requested=requested.value if requested else None,
        task=task_to_response(task) if task else None,
    )


@router.post("/drag/cancel", response_model=DragResponse)
async def cancel_drag() -> DragResponse:
    """Abandon the current drag."""
    board = _board()
    board.cancel_drag()
    return _drag_response(board)
