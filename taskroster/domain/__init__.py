"""Domain models and DTOs."""

from taskroster.domain.create_models import TaskCreate, UserCreate
from taskroster.domain.task import Task
from taskroster.domain.update_models import TaskUpdate, UserUpdate
from taskroster.domain.user import User


__all__ = [
    "Task",
    "TaskCreate",
    "TaskUpdate",
    "User",
    "UserCreate",
    "UserUpdate",
]
