"""Task stages and the rules attached to them."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    """Lifecycle stage of a task. Closed set."""

    NOT_STARTED = "not-started"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    BLOCKED = "blocked"

    @classmethod
    def parse(cls, value: Any) -> "Stage":
        """Parse a user-supplied stage strictly.

        Accepts enum members, canonical values and underscore spellings
        ("in_progress"). Anything else raises ValueError.
        """
        if isinstance(value, Stage):
            return value
        if isinstance(value, str):
            normalized = value.strip().lower().replace("_", "-")
            for stage in cls:
                if stage.value == normalized:
                    return stage
        raise ValueError(f"Invalid stage: {value!r}")

    @classmethod
    def normalize(cls, value: Any) -> "Stage":
        """Parse a stage read from the remote store.

        Missing or unknown values become NOT_STARTED.
        """
        if value is None:
            return cls.NOT_STARTED
        try:
            return cls.parse(value)
        except ValueError:
            logger.warning(f"[Stage] Unknown stage {value!r}, treating as not-started")
            return cls.NOT_STARTED


# Backward-compatible "status" column written alongside every stage change
LEGACY_STATUS: dict[Stage, str] = {
    Stage.NOT_STARTED: "todo",
    Stage.IN_PROGRESS: "in_progress",
    Stage.COMPLETED: "completed",
    Stage.BLOCKED: "todo",
}


def legacy_status(stage: Stage) -> str:
    """Return the legacy status value for a stage."""
    return LEGACY_STATUS[stage]


@dataclass(frozen=True)
class StageConfig:
    """Presentation and workflow attributes of a stage."""

    label: str
    is_actionable: bool
    is_completed: bool
    description: str


STAGE_CONFIG: dict[Stage, StageConfig] = {
    Stage.NOT_STARTED: StageConfig(
        label="Not Started",
        is_actionable=True,
        is_completed=False,
        description="Task has not been started yet",
    ),
    Stage.IN_PROGRESS: StageConfig(
        label="In Progress",
        is_actionable=True,
        is_completed=False,
        description="Task is currently being worked on",
    ),
    Stage.COMPLETED: StageConfig(
        label="Completed",
        is_actionable=False,
        is_completed=True,
        description="Task has been successfully completed",
    ),
    Stage.BLOCKED: StageConfig(
        label="Blocked",
        is_actionable=False,
        is_completed=False,
        description="Task is blocked and cannot proceed",
    ),
}

# Lower number is shown first
_STAGE_PRIORITY: dict[Stage, int] = {
    Stage.BLOCKED: 1,
    Stage.IN_PROGRESS: 2,
    Stage.NOT_STARTED: 3,
    Stage.COMPLETED: 4,
}


def all_stages() -> list[Stage]:
    """Return all stages in lane order."""
    return list(Stage)


def is_valid_transition(from_stage: Stage, to_stage: Stage) -> bool:
    """Any move between two distinct stages is allowed."""
    return from_stage != to_stage


def next_toggle_stage(current: Stage) -> Stage:
    """Stage reached by a single tap on the completion checkmark."""
    if current == Stage.COMPLETED:
        return Stage.NOT_STARTED
    return Stage.COMPLETED


def stage_priority(stage: Stage) -> int:
    """Display priority of a stage (lower first)."""
    return _STAGE_PRIORITY[stage]
