from taskroster.services import (
    relationship_sync,
    task_service,
    user_service,
)


__all__ = [
    "relationship_sync",
    "task_service",
    "user_service",
]
