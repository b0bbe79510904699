"""Configuration for SiteTasks."""

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from site_tasks.session import Role, SessionContext
from site_tasks.store.task_store import ORDER_FIELDS, FilterCriteria


class Config(BaseSettings):
    """Application configuration.

    Every field can be set from the environment with the SITE_TASKS_ prefix,
    e.g. SITE_TASKS_DATA_DIR=/srv/site-tasks.
    """

    model_config = SettingsConfigDict(env_prefix="SITE_TASKS_")

    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8000)
    data_dir: Path = Field(default=Path("data"))
    tasks_table: str = Field(default="tasks")
    order_by: str = Field(default="due_date")
    ascending: bool = Field(default=True)
    prioritizer_timeout: float = Field(default=3.0, gt=0)

    # Session for the single board served by this process
    user_id: str | None = Field(default="local-user")
    role: Role = Field(default=Role.MANAGER)
    trade_specialty: str | None = Field(default=None)

    @field_validator("order_by")
    @classmethod
    def _check_order_by(cls, value: str) -> str:
        if value not in ORDER_FIELDS:
            raise ValueError(f"order_by must be one of {ORDER_FIELDS}")
        return value

    def session(self) -> SessionContext:
        """Session context for the served board."""
        return SessionContext(
            user_id=self.user_id, role=self.role, trade_specialty=self.trade_specialty
        )

    def criteria(self) -> FilterCriteria:
        """Default filter criteria."""
        return FilterCriteria(order_by=self.order_by, ascending=self.ascending)
