"""Best-effort task prioritization with deterministic fallbacks.

A Prioritizer may be slow or fail. The helpers in this module bound every
call with a timeout and fall back to fixed rules, so callers always get an
answer and never see the prioritizer's errors.
"""

import asyncio
import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Literal, Protocol

from site_tasks.models import Priority, Task, priority_rank
from site_tasks.session import SessionContext
from site_tasks.stages import Stage

logger = logging.getLogger(__name__)

Weather = Literal["good", "poor", "extreme"]
MaterialStatus = Literal["available", "pending", "unavailable"]

DEFAULT_TIMEOUT = 3.0
UPCOMING_LIMIT = 5

_STAGE_READINESS: dict[Stage, int] = {
    Stage.IN_PROGRESS: 5,
    Stage.NOT_STARTED: 4,
    Stage.BLOCKED: 2,
    Stage.COMPLETED: 1,
}


@dataclass(frozen=True)
class WorkerContext:
    """Site conditions for the worker asking for a plan."""

    weather: Weather = "good"
    crew_available: bool = True
    skills: tuple[str, ...] = ("general",)
    materials_available: tuple[str, ...] = ()
    materials_pending: tuple[str, ...] = ()
    safety_level: Literal["normal", "elevated", "critical"] = "normal"
    hour: int = 12


def worker_context(
    session: SessionContext,
    weather: Weather = "good",
    crew_available: bool = True,
    material_status: MaterialStatus = "available",
) -> WorkerContext:
    """Build a context from the caller's profile and reported site conditions."""
    stock = ("concrete", "steel", "lumber")
    return WorkerContext(
        weather=weather,
        crew_available=crew_available,
        skills=(session.trade_specialty,) if session.trade_specialty else ("general",),
        materials_available=stock if material_status == "available" else (),
        materials_pending=stock[:2] if material_status == "pending" else (),
        hour=datetime.now().hour,
    )


@dataclass(frozen=True)
class TaskPrediction:
    """Expected completion and risks of a task."""

    predicted_completion: datetime
    risk_factors: list[str] = field(default_factory=list)
    recommended_actions: list[str] = field(default_factory=list)
    confidence: float = 0.5
    bottleneck_likelihood: float = 0.2


class Prioritizer(Protocol):
    """Ranking service for tasks."""

    async def prioritize(self, tasks: Sequence[Task], context: WorkerContext) -> list[Task]:
        """Return tasks most urgent first."""
        ...

    async def predict_lifecycle(self, task: Task, context: WorkerContext) -> TaskPrediction:
        """Predict completion for a task."""
        ...


def _due_key(task: Task) -> tuple[bool, date]:
    return (task.due_date is None, task.due_date or date.max)


def fallback_order(tasks: Sequence[Task]) -> list[Task]:
    """Priority rank (highest first), then due date (undated last)."""
    return sorted(tasks, key=lambda t: (-priority_rank(t.priority), _due_key(t)))


class RuleBasedPrioritizer:
    """Site rules: safety-critical first, then weather, inspections, priority, dates."""

    async def prioritize(self, tasks: Sequence[Task], context: WorkerContext) -> list[Task]:
        """Return tasks most urgent first."""
        good_weather = context.weather == "good"

        def key(task: Task) -> tuple[bool, bool, bool, int, tuple[bool, date], int]:
            return (
                task.priority != Priority.CRITICAL,
                good_weather and not task.weather_dependent,
                not task.inspection_required,
                -priority_rank(task.priority),
                _due_key(task),
                -_STAGE_READINESS[task.stage],
            )

        return sorted(tasks, key=key)

    async def predict_lifecycle(self, task: Task, context: WorkerContext) -> TaskPrediction:
        """Estimate days to completion from hours and complexity."""
        days = math.ceil((task.estimated_hours or 8) / 8)
        if task.weather_dependent:
            days += 1
        if task.inspection_required:
            days += 2
        if task.priority == Priority.CRITICAL:
            days = max(1, days - 1)

        risks: list[str] = []
        if task.weather_dependent:
            risks.append("Weather dependent")
        if task.materials_needed:
            risks.append("Material dependencies")
        if not task.assigned_to:
            risks.append("No assigned worker")

        return TaskPrediction(
            predicted_completion=datetime.now(timezone.utc) + timedelta(days=days),
            risk_factors=risks,
            recommended_actions=["Review dependencies", "Assign resources"] if risks else [],
            confidence=max(0.3, 1 - len(risks) * 0.2),
            bottleneck_likelihood=len(risks) * 0.25,
        )


def _complete_result(result: Sequence[Task], tasks: Sequence[Task]) -> list[Task]:
    """Keep the prioritizer's order but make sure no task went missing."""
    known = {t.id for t in tasks}
    ordered = [t for t in result if t is not None and t.id in known]
    seen = {t.id for t in ordered}
    return ordered + [t for t in tasks if t.id not in seen]


async def prioritize_tasks(
    prioritizer: Prioritizer | None,
    tasks: Sequence[Task],
    context: WorkerContext,
    timeout: float = DEFAULT_TIMEOUT,
) -> list[Task]:
    """Prioritized tasks, falling back to fallback_order on any failure."""
    if not tasks:
        return []
    if prioritizer is None:
        return fallback_order(tasks)
    try:
        result = await asyncio.wait_for(prioritizer.prioritize(tasks, context), timeout)
        return _complete_result(result, tasks)
    except Exception as e:
        logger.warning(f"[Prioritization] Prioritizer failed, using fallback order: {e!r}")
        return fallback_order(tasks)


def _can_start(task: Task, context: WorkerContext) -> bool:
    if task.stage in (Stage.COMPLETED, Stage.BLOCKED):
        return False
    if task.weather_dependent and context.weather == "poor":
        return False
    if task.trade_required and task.trade_required not in context.skills:
        return False
    return all(m in context.materials_available for m in task.materials_needed)


async def next_task(
    prioritizer: Prioritizer | None,
    tasks: Sequence[Task],
    context: WorkerContext,
    timeout: float = DEFAULT_TIMEOUT,
) -> Task | None:
    """The task the worker should pick up next."""
    if not tasks:
        return None
    if prioritizer is not None:
        try:
            ranked = await asyncio.wait_for(prioritizer.prioritize(tasks, context), timeout)
            for task in _complete_result(ranked, tasks):
                if _can_start(task, context):
                    return task
            return None
        except Exception as e:
            logger.warning(f"[Prioritization] Next-task selection failed, using fallback: {e!r}")
    return next((t for t in tasks if t.stage not in (Stage.COMPLETED, Stage.BLOCKED)), None)


async def predict_lifecycle(
    prioritizer: Prioritizer | None,
    task: Task,
    context: WorkerContext,
    timeout: float = DEFAULT_TIMEOUT,
) -> TaskPrediction:
    """Lifecycle prediction, or a basic estimate when the prioritizer fails."""
    if prioritizer is not None:
        try:
            return await asyncio.wait_for(prioritizer.predict_lifecycle(task, context), timeout)
        except Exception as e:
            logger.warning(f"[Prioritization] Lifecycle prediction failed: {e!r}")
    days = math.ceil((task.estimated_hours or 8) / 8)
    return TaskPrediction(
        predicted_completion=datetime.now(timezone.utc) + timedelta(days=days),
        risk_factors=["Weather dependent"] if task.weather_dependent else [],
    )


def filter_for_conditions(
    tasks: Sequence[Task],
    weather: Weather | None = None,
    crew_available: bool | None = None,
    material_status: MaterialStatus | None = None,
) -> list[Task]:
    """Drop tasks that cannot be worked under the given site conditions."""
    result: list[Task] = []
    for task in tasks:
        if weather == "poor" and task.weather_dependent:
            continue
        if crew_available is False and task.trade_required and task.trade_required != "general":
            continue
        if material_status == "unavailable" and task.materials_needed:
            continue
        result.append(task)
    return result


def upcoming_tasks(tasks: Sequence[Task], limit: int = UPCOMING_LIMIT) -> list[Task]:
    """Open tasks, most urgent first."""
    open_tasks = [t for t in tasks if t.stage not in (Stage.COMPLETED, Stage.BLOCKED)]
    return fallback_order(open_tasks)[:limit]
