"""API models for SiteTasks."""

from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, Field

from site_tasks.models import Task
from site_tasks.prioritization import TaskPrediction
from site_tasks.stages import STAGE_CONFIG, Stage, stage_priority


class TaskResponse(BaseModel):
    """API response model for tasks."""

    id: str
    title: str
    stage: str
    status: str | None
    description: str | None
    due_date: date | None
    priority: str | None
    project_id: str | None
    assigned_to: str | None
    created_by: str | None
    trade_required: str | None
    weather_dependent: bool
    inspection_required: bool
    safety_notes: str | None
    estimated_hours: float | None
    actual_hours: float | None
    materials_needed: list[str]
    location_details: str | None
    completion_notes: str | None
    created_at: datetime | None
    updated_at: datetime | None


class TaskFields(BaseModel):
    """Writable task fields. Only the fields sent are applied."""

    title: str | None = None
    description: str | None = None
    due_date: date | None = None
    priority: str | None = None
    project_id: str | None = None
    assigned_to: str | None = None
    trade_required: str | None = None
    weather_dependent: bool | None = None
    inspection_required: bool | None = None
    safety_notes: str | None = None
    estimated_hours: float | None = None
    actual_hours: float | None = None
    materials_needed: list[str] | None = None
    location_details: str | None = None
    completion_notes: str | None = None


class CreateTaskRequest(TaskFields):
    """Request model for creating a task."""

    title: str = Field(min_length=1)


class UpdateTaskRequest(TaskFields):
    """Request model for updating task fields."""

    stage: str | None = None
    optimistic: bool = True


class UpdateStageRequest(BaseModel):
    """Request model for moving a task to another stage."""

    stage: str


class PointRequest(BaseModel):
    """Pointer position."""

    x: float
    y: float


class DragStartRequest(BaseModel):
    """Request model for starting a drag."""

    task_id: str
    x: float | None = None
    y: float | None = None


class DragEndRequest(BaseModel):
    """Request model for releasing a drag."""

    x: float | None = None
    y: float | None = None


class DragResponse(BaseModel):
    """Current drag state."""

    state: str
    task_id: str | None = None
    origin: str | None = None
    target: str | None = None


class DropResponse(BaseModel):
    """Outcome of a drop."""

    requested: str | None
    task: TaskResponse | None = None


class LaneRequest(BaseModel):
    """On-screen region of one lane."""

    stage: str
    x: float
    y: float
    width: float = Field(gt=0)
    height: float = Field(gt=0)


class StageResponse(BaseModel):
    """Lane metadata for rendering the board."""

    stage: str
    label: str
    description: str
    is_actionable: bool
    is_completed: bool
    display_priority: int


class PredictionResponse(BaseModel):
    """Lifecycle prediction for a task."""

    task_id: str
    predicted_completion: datetime
    risk_factors: list[str]
    recommended_actions: list[str]
    confidence: float
    bottleneck_likelihood: float


def task_to_response(task: Task) -> TaskResponse:
    """Convert Task to TaskResponse."""
    return TaskResponse(
        id=task.id,
        title=task.title,
        stage=task.stage.value,
        status=task.status,
        description=task.description,
        due_date=task.due_date,
        priority=task.priority.value if task.priority else None,
        project_id=task.project_id,
        assigned_to=task.assigned_to,
        created_by=task.created_by,
        trade_required=task.trade_required,
        weather_dependent=task.weather_dependent,
        inspection_required=task.inspection_required,
        safety_notes=task.safety_notes,
        estimated_hours=task.estimated_hours,
        actual_hours=task.actual_hours,
        materials_needed=list(task.materials_needed),
        location_details=task.location_details,
        completion_notes=task.completion_notes,
        created_at=task.created_at,
        updated_at=task.updated_at,
    )


def tasks_changed_message(tasks: list[Task]) -> dict[str, Any]:
    """WebSocket message carrying the full task list."""
    return {
        "type": "tasks_changed",
        "tasks": [task_to_response(t).model_dump(mode="json") for t in tasks],
    }


def stage_to_response(stage: Stage) -> StageResponse:
    """Convert a stage and its config to StageResponse."""
    config = STAGE_CONFIG[stage]
    return StageResponse(
        stage=stage.value,
        label=config.label,
        description=config.description,
        is_actionable=config.is_actionable,
        is_completed=config.is_completed,
        display_priority=stage_priority(stage),
    )


def prediction_to_response(task_id: str, prediction: TaskPrediction) -> PredictionResponse:
    """Convert TaskPrediction to PredictionResponse."""
    return PredictionResponse(
        task_id=task_id,
        predicted_completion=prediction.predicted_completion,
        risk_factors=list(prediction.risk_factors),
        recommended_actions=list(prediction.recommended_actions),
        confidence=prediction.confidence,
        bottleneck_likelihood=prediction.bottleneck_likelihood,
    )
