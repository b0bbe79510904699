"""Error taxonomy for the task engine."""


class TaskError(Exception):
    """Base class for task engine errors."""


class FetchError(TaskError):
    """Remote query failed. The store keeps its previous contents."""


class WriteError(TaskError):
    """Remote mutation failed. Local state has already been rolled back."""

    def __init__(self, task_id: str | None, reason: str) -> None:
        """Initialize with the affected task and the failure reason."""
        super().__init__(reason)
        self.task_id = task_id
        self.reason = reason


class NotFoundError(TaskError):
    """Mutation requested for a task that is not in the local store."""

    def __init__(self, task_id: str) -> None:
        """Initialize with the missing task ID."""
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


class ConcurrentMutationError(TaskError):
    """A mutation is already in flight for this task."""

    def __init__(self, task_id: str) -> None:
        """Initialize with the busy task ID."""
        super().__init__(f"Mutation already in flight for task: {task_id}")
        self.task_id = task_id
