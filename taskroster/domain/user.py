"""User domain model."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class User(BaseModel):
    """User data transfer object."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., description="Unique user ID")
    name: str = Field(..., description="Display name of the user")
    email: str = Field(..., description="Lower-cased, unique email address")
    pending_tasks: list[str] = Field(
        default_factory=list,
        alias="pendingTasks",
        description="IDs of tasks assigned to this user and not completed",
    )
    date_created: datetime | None = Field(default=None, alias="dateCreated", description="Creation timestamp")
