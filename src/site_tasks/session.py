"""Caller session passed into the task store."""

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    """Profile role, used only to shape query visibility."""

    WORKER = "worker"
    FOREMAN = "foreman"
    SUPERVISOR = "supervisor"
    MANAGER = "manager"


@dataclass(frozen=True)
class SessionContext:
    """Authenticated caller as provided by the session/profile layer."""

    user_id: str | None
    role: Role = Role.WORKER
    trade_specialty: str | None = None

    @property
    def is_authenticated(self) -> bool:
        """Whether a user is signed in."""
        return bool(self.user_id)
