"""Tests for prioritization helpers."""

import asyncio
from collections.abc import Sequence
from datetime import date

import pytest

from site_tasks.models import Priority, Task
from site_tasks.prioritization import (
    RuleBasedPrioritizer,
    TaskPrediction,
    WorkerContext,
    fallback_order,
    filter_for_conditions,
    next_task,
    predict_lifecycle,
    prioritize_tasks,
    upcoming_tasks,
    worker_context,
)
from site_tasks.session import Role, SessionContext
from site_tasks.stages import Stage

TASKS = [
    Task(id="low", title="Sweep", priority=Priority.LOW, due_date=date(2026, 4, 1)),
    Task(id="high-late", title="Wire", priority=Priority.HIGH, due_date=date(2026, 5, 1)),
    Task(id="high-early", title="Pipe", priority=Priority.HIGH, due_date=date(2026, 4, 2)),
    Task(id="high-undated", title="Paint", priority=Priority.HIGH),
    Task(id="none", title="Tidy"),
    Task(id="crit-done", title="Shore", priority=Priority.CRITICAL, stage=Stage.COMPLETED),
]


class FailingPrioritizer:
    """Prioritizer that always raises."""

    async def prioritize(self, tasks: Sequence[Task], context: WorkerContext) -> list[Task]:
        raise RuntimeError("model unavailable")

    async def predict_lifecycle(self, task: Task, context: WorkerContext) -> TaskPrediction:
        raise RuntimeError("model unavailable")


class SlowPrioritizer:
    """Prioritizer that never answers in time."""

    async def prioritize(self, tasks: Sequence[Task], context: WorkerContext) -> list[Task]:
        await asyncio.sleep(10)
        return list(tasks)

    async def predict_lifecycle(self, task: Task, context: WorkerContext) -> TaskPrediction:
        await asyncio.sleep(10)
        raise AssertionError("unreachable")


class DroppingPrioritizer:
    """Prioritizer that returns only part of its input."""

    async def prioritize(self, tasks: Sequence[Task], context: WorkerContext) -> list[Task]:
        return [tasks[-1]]

    async def predict_lifecycle(self, task: Task, context: WorkerContext) -> TaskPrediction:
        raise NotImplementedError


def _ids(tasks: Sequence[Task]) -> list[str]:
    return [t.id for t in tasks]


def test_fallback_order() -> None:
    """Test priority rank descending, then due date with undated last."""
    assert _ids(fallback_order(TASKS)) == [
        "crit-done",
        "high-early",
        "high-late",
        "high-undated",
        "low",
        "none",
    ]


@pytest.mark.asyncio
async def test_failing_prioritizer_falls_back() -> None:
    """Test prioritizer errors are never surfaced."""
    result = await prioritize_tasks(FailingPrioritizer(), TASKS, WorkerContext())

    assert _ids(result) == _ids(fallback_order(TASKS))


@pytest.mark.asyncio
async def test_slow_prioritizer_times_out() -> None:
    """Test a slow prioritizer is abandoned after the timeout."""
    result = await prioritize_tasks(SlowPrioritizer(), TASKS, WorkerContext(), timeout=0.01)

    assert _ids(result) == _ids(fallback_order(TASKS))


@pytest.mark.asyncio
async def test_partial_result_is_completed() -> None:
    """Test tasks missing from the prioritizer result are appended."""
    result = await prioritize_tasks(DroppingPrioritizer(), TASKS, WorkerContext())

    assert result[0].id == "crit-done"
    assert sorted(_ids(result)) == sorted(_ids(TASKS))


@pytest.mark.asyncio
async def test_no_prioritizer_uses_fallback() -> None:
    """Test a missing prioritizer uses the fallback order."""
    assert _ids(await prioritize_tasks(None, TASKS, WorkerContext())) == _ids(
        fallback_order(TASKS)
    )
    assert await prioritize_tasks(None, [], WorkerContext()) == []


@pytest.mark.asyncio
async def test_rule_based_puts_critical_and_inspections_first() -> None:
    """Test site rules rank critical, then inspection-required tasks first."""
    tasks = [
        Task(id="plain", title="Plain", priority=Priority.HIGH),
        Task(id="inspect", title="Inspect", priority=Priority.LOW, inspection_required=True),
        Task(id="critical", title="Critical", priority=Priority.CRITICAL),
    ]

    result = await RuleBasedPrioritizer().prioritize(tasks, WorkerContext())

    assert _ids(result) == ["critical", "inspect", "plain"]


@pytest.mark.asyncio
async def test_rule_based_weather_dependent_first_in_good_weather() -> None:
    """Test outdoor work is pulled forward while the weather holds."""
    tasks = [
        Task(id="indoor", title="Indoor", priority=Priority.HIGH),
        Task(id="outdoor", title="Outdoor", priority=Priority.HIGH, weather_dependent=True),
    ]

    good = await RuleBasedPrioritizer().prioritize(tasks, WorkerContext(weather="good"))
    poor = await RuleBasedPrioritizer().prioritize(tasks, WorkerContext(weather="poor"))

    assert _ids(good) == ["outdoor", "indoor"]
    assert _ids(poor) == ["indoor", "outdoor"]


@pytest.mark.asyncio
async def test_next_task_skips_unstartable() -> None:
    """Test the recommendation skips tasks the worker cannot start."""
    tasks = [
        Task(id="done", title="Done", stage=Stage.COMPLETED, priority=Priority.CRITICAL),
        Task(id="outdoor", title="Outdoor", priority=Priority.HIGH, weather_dependent=True),
        Task(id="electric", title="Electric", priority=Priority.HIGH, trade_required="electrical"),
        Task(id="general", title="General", priority=Priority.LOW),
    ]
    context = WorkerContext(weather="poor", skills=("carpentry",))

    task = await next_task(RuleBasedPrioritizer(), tasks, context)

    assert task is not None
    assert task.id == "general"


@pytest.mark.asyncio
async def test_next_task_fallback_first_open_task() -> None:
    """Test the fallback recommends the first open task."""
    tasks = [
        Task(id="blocked", title="Blocked", stage=Stage.BLOCKED),
        Task(id="open", title="Open"),
    ]

    task = await next_task(FailingPrioritizer(), tasks, WorkerContext())

    assert task is not None
    assert task.id == "open"
    assert await next_task(None, [], WorkerContext()) is None


@pytest.mark.asyncio
async def test_predict_lifecycle_fallback() -> None:
    """Test a failing prediction returns a basic estimate."""
    task = Task(id="t", title="T", estimated_hours=20, weather_dependent=True)

    prediction = await predict_lifecycle(FailingPrioritizer(), task, WorkerContext())

    assert prediction.risk_factors == ["Weather dependent"]
    assert prediction.confidence == 0.5


@pytest.mark.asyncio
async def test_rule_based_prediction_risks() -> None:
    """Test the rule-based prediction lists risks."""
    task = Task(id="t", title="T", weather_dependent=True, materials_needed=["steel"])

    prediction = await RuleBasedPrioritizer().predict_lifecycle(task, WorkerContext())

    assert prediction.risk_factors == [
        "Weather dependent",
        "Material dependencies",
        "No assigned worker",
    ]
    assert prediction.recommended_actions


def test_filter_for_conditions() -> None:
    """Test site conditions drop tasks that cannot be worked."""
    tasks = [
        Task(id="outdoor", title="Outdoor", weather_dependent=True),
        Task(id="trade", title="Trade", trade_required="welding"),
        Task(id="materials", title="Materials", materials_needed=["steel"]),
        Task(id="plain", title="Plain"),
    ]

    assert _ids(filter_for_conditions(tasks)) == _ids(tasks)
    assert _ids(filter_for_conditions(tasks, weather="poor")) == ["trade", "materials", "plain"]
    assert _ids(filter_for_conditions(tasks, crew_available=False)) == [
        "outdoor",
        "materials",
        "plain",
    ]
    assert _ids(filter_for_conditions(tasks, material_status="unavailable")) == [
        "outdoor",
        "trade",
        "plain",
    ]


def test_upcoming_tasks_limits_open_tasks() -> None:
    """Test upcoming skips completed/blocked tasks and keeps five."""
    tasks = [Task(id=f"t{i}", title=f"T{i}", due_date=date(2026, 4, 10 - i)) for i in range(7)]
    tasks.append(Task(id="blocked", title="B", stage=Stage.BLOCKED, priority=Priority.CRITICAL))

    result = upcoming_tasks(tasks)

    assert _ids(result) == ["t6", "t5", "t4", "t3", "t2"]


def test_worker_context_from_session() -> None:
    """Test the context picks up the worker's trade."""
    session = SessionContext("w", Role.WORKER, trade_specialty="plumbing")

    context = worker_context(session, weather="poor", material_status="pending")

    assert context.skills == ("plumbing",)
    assert context.weather == "poor"
    assert context.materials_available == ()
    assert context.materials_pending
