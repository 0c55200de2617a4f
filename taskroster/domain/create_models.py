"""Pydantic models for validating task and user input before it is stored."""

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _require_text(v: Any, field_name: str) -> str:
    """Trim a required text field and reject blank values."""
    if v is None:
        v = ""
    if not isinstance(v, str):
        raise ValueError(f"{field_name} must be a string")
    v = v.strip()
    if not v:
        raise ValueError(f"{field_name} cannot be empty")
    return v


class TaskCreate(BaseModel):
    """Pydantic model for creating a task record."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = Field(..., description="Task name")
    description: str = Field(default="", description="Free-text description")
    deadline: datetime = Field(..., description="Deadline instant")
    completed: bool = Field(default=False, description="Whether the task is done")
    assigned_user: str = Field(default="", alias="assignedUser", description="Owner user ID, empty when unassigned")

    @field_validator("name", mode="before")
    @classmethod
    def validate_name(cls, v: Any) -> str:
        """Trim the name and require it to be non-empty."""
        return _require_text(v, "Name")

    @field_validator("description", mode="before")
    @classmethod
    def coerce_description(cls, v: Any) -> str:
        """Treat missing or falsy descriptions as empty text."""
        return str(v) if v else ""

    @field_validator("deadline")
    @classmethod
    def normalize_deadline(cls, v: datetime) -> datetime:
        """Interpret naive deadlines as UTC and store every deadline in UTC."""
        if v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v.astimezone(UTC)

    @field_validator("completed", mode="before")
    @classmethod
    def default_completed(cls, v: Any) -> Any:
        """Treat a missing completion flag as not completed."""
        return False if v is None else v

    @field_validator("assigned_user", mode="before")
    @classmethod
    def coerce_assigned_user(cls, v: Any) -> str:
        """Treat missing or falsy owners as unassigned."""
        return str(v).strip() if v else ""


class UserCreate(BaseModel):
    """Pydantic model for creating a user record."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = Field(..., description="Display name of the user")
    email: str = Field(..., description="Email address, stored lower-cased")
    pending_tasks: list[str] = Field(
        default_factory=list,
        alias="pendingTasks",
        description="Task IDs to assign to this user",
    )

    @field_validator("name", mode="before")
    @classmethod
    def validate_name(cls, v: Any) -> str:
        """Trim the name and require it to be non-empty."""
        return _require_text(v, "Name")

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, v: Any) -> str:
        """Trim and lower-case the email and require it to be non-empty."""
        return _require_text(v, "Email").lower()

    @field_validator("pending_tasks", mode="before")
    @classmethod
    def coerce_pending_tasks(cls, v: Any) -> list[str]:
        """Accept a list or a single ID, drop duplicates, keep first-seen order."""
        if v is None:
            return []
        if isinstance(v, str):
            v = [v]
        if not isinstance(v, list | tuple):
            raise ValueError("pendingTasks must be a list of task IDs")
        return list(dict.fromkeys(str(task_id) for task_id in v))
