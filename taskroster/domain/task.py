"""Task domain model."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from taskroster.core.config import constants


class Task(BaseModel):
    """Task data transfer object.

    Field aliases match the stored document keys.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., description="Unique task ID")
    name: str = Field(..., description="Task name")
    description: str = Field(default="", description="Free-text description")
    deadline: datetime = Field(..., description="Deadline instant")
    completed: bool = Field(default=False, description="Whether the task is done")
    assigned_user: str = Field(default="", alias="assignedUser", description="Owner user ID, empty when unassigned")
    assigned_user_name: str = Field(
        default=constants.UNASSIGNED_USER_NAME,
        alias="assignedUserName",
        description="Owner name cached at the last write that set the owner",
    )
    date_created: datetime = Field(..., alias="dateCreated", description="Creation timestamp")

    @property
    def is_pending(self) -> bool:
        """Whether this task belongs in its owner's pending set."""
        return bool(self.assigned_user) and not self.completed
