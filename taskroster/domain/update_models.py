"""Update models for database operations.

Updates replace the whole record, so they validate exactly like creation.
"""

from taskroster.domain.create_models import TaskCreate, UserCreate


class TaskUpdate(TaskCreate):
    """Replacement payload for a task."""


class UserUpdate(UserCreate):
    """Replacement payload for a user; pendingTasks is the requested pending set."""
