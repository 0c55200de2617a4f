"""Task service for CRUD operations that keep owners' pending sets in sync."""

import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from taskroster.core import db_client
from taskroster.core.config import constants
from taskroster.core.errors import ErrorCode, InvalidArgumentError, NotFoundError
from taskroster.core.logging import span
from taskroster.core.query import parse_list_query, parse_select, run_list_query
from taskroster.domain.create_models import TaskCreate
from taskroster.domain.task import Task
from taskroster.domain.update_models import TaskUpdate
from taskroster.domain.user import User
from taskroster.services import relationship_sync


logger = logging.getLogger(__name__)

_REQUIRED_FIELDS = {"name", "deadline"}


def _validate_input(data: Mapping[str, Any], model: type[TaskCreate]) -> TaskCreate:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        failed = {str(error["loc"][0]) for error in e.errors() if error["loc"]}
        logger.warning("Rejected task input", extra={"fields": sorted(failed)})
        if failed <= _REQUIRED_FIELDS:
            msg = "Task must have a valid name and deadline"
        else:
            msg = f"Invalid task data: {', '.join(sorted(failed))}"
        raise InvalidArgumentError(msg) from e


def _require_valid_id(task_id: str) -> None:
    if not db_client.is_valid_record_id(task_id):
        raise InvalidArgumentError(f"Invalid task id: {task_id}", code=ErrorCode.ERR_INVALID_ID)


async def _get_task_record(task_id: str, fields: Mapping[str, Any] | None = None) -> dict[str, Any]:
    try:
        return await db_client.get_record(collection=constants.TASKS_COLLECTION, record_id=task_id, fields=fields)
    except db_client.RecordNotFoundError as e:
        raise NotFoundError("Task not found", code=ErrorCode.ERR_TASK_NOT_FOUND) from e


async def _resolve_owner(user_id: str) -> User | None:
    """Load the user a task is being assigned to; an empty ID means unassigned."""
    if not user_id:
        return None

    if not db_client.is_valid_record_id(user_id):
        raise InvalidArgumentError("Assigned user does not exist", code=ErrorCode.ERR_USER_NOT_FOUND)

    try:
        record = await db_client.get_record(collection=constants.USERS_COLLECTION, record_id=user_id)
    except db_client.RecordNotFoundError as e:
        raise InvalidArgumentError("Assigned user does not exist", code=ErrorCode.ERR_USER_NOT_FOUND) from e
    return User.model_validate(record)


def _owner_fields(owner: User | None) -> dict[str, str]:
    if owner is None:
        return {"assignedUser": "", "assignedUserName": constants.UNASSIGNED_USER_NAME}
    return {"assignedUser": owner.id, "assignedUserName": owner.name}


async def list_tasks(
    *,
    where: Any = None,
    sort: Any = None,
    select: Any = None,
    skip: Any = None,
    limit: Any = None,
    count: Any = None,
) -> list[dict[str, Any]] | int:
    """List tasks, or count them when ``count`` is true.

    At most 100 tasks are returned when no limit is given.

    Raises:
        InvalidArgumentError: If any query parameter is malformed
    """
    with span("task_service.list_tasks"):
        query = parse_list_query(
            where=where,
            sort=sort,
            select=select,
            skip=skip,
            limit=limit,
            count=count,
            default_limit=constants.DEFAULT_TASK_LIST_LIMIT,
        )
        return await run_list_query(collection=constants.TASKS_COLLECTION, query=query)


async def get_task(*, task_id: str, select: Any = None) -> dict[str, Any]:
    """Get a task by ID with an optional projection.

    Raises:
        InvalidArgumentError: If the ID or projection is malformed
        NotFoundError: If the task does not exist
    """
    with span("task_service.get_task"):
        fields = parse_select(select)
        _require_valid_id(task_id)
        return await _get_task_record(task_id, fields)


async def create_task(*, data: Mapping[str, Any]) -> dict[str, Any]:
    """Create a task and add it to its owner's pending set when it is not completed.

    Args:
        data: Task fields (name, deadline, and optionally description,
            completed, assignedUser)

    Returns:
        Created task record

    Raises:
        InvalidArgumentError: If name or deadline is invalid, or the assigned user does not exist
    """
    with span("task_service.create_task"):
        payload = _validate_input(data, TaskCreate)

        async with db_client.transaction():
            owner = await _resolve_owner(payload.assigned_user)
            record = await db_client.create_record(
                collection=constants.TASKS_COLLECTION,
                data={
                    "name": payload.name,
                    "description": payload.description,
                    "deadline": payload.deadline,
                    "completed": payload.completed,
                    **_owner_fields(owner),
                    "dateCreated": datetime.now(UTC),
                },
            )
            task = Task.model_validate(record)

            # Already-completed tasks must not land in the pending set
            await relationship_sync.reconcile(
                task_id=task.id,
                previous_owner_id="",
                previous_completed=False,
                new_owner_id=task.assigned_user,
                new_completed=task.completed,
            )

        logger.info("Created task: %s (assigned to: %s)", task.name, task.assigned_user or "unassigned")
        return await _get_task_record(task.id)


async def update_task(*, task_id: str, data: Mapping[str, Any]) -> dict[str, Any]:
    """Replace a task's fields and move it between pending sets as needed.

    Fields missing from ``data`` fall back to their defaults, so omitting
    ``assignedUser`` unassigns the task. The creation timestamp is kept.

    Returns:
        Updated task record

    Raises:
        InvalidArgumentError: If the input or ID is invalid, or the assigned user does not exist
        NotFoundError: If the task does not exist
    """
    with span("task_service.update_task"):
        payload = _validate_input(data, TaskUpdate)
        _require_valid_id(task_id)

        async with db_client.transaction():
            previous = Task.model_validate(await _get_task_record(task_id))
            owner = await _resolve_owner(payload.assigned_user)

            record = await db_client.update_record(
                collection=constants.TASKS_COLLECTION,
                record_id=task_id,
                data={
                    "name": payload.name,
                    "description": payload.description,
                    "deadline": payload.deadline,
                    "completed": payload.completed,
                    **_owner_fields(owner),
                },
            )
            task = Task.model_validate(record)

            await relationship_sync.reconcile(
                task_id=task.id,
                previous_owner_id=previous.assigned_user,
                previous_completed=previous.completed,
                new_owner_id=task.assigned_user,
                new_completed=task.completed,
            )

        logger.info("Updated task %s", task_id)
        return await _get_task_record(task_id)


async def delete_task(*, task_id: str) -> dict[str, Any]:
    """Delete a task and drop it from its owner's pending set.

    Returns:
        The deleted task record

    Raises:
        InvalidArgumentError: If the ID is malformed
        NotFoundError: If the task does not exist
    """
    with span("task_service.delete_task"):
        _require_valid_id(task_id)

        async with db_client.transaction():
            record = await _get_task_record(task_id)
            task = Task.model_validate(record)

            await db_client.delete_record(collection=constants.TASKS_COLLECTION, record_id=task_id)
            await relationship_sync.release(task=task, previous_owner_id=task.assigned_user)

        logger.info("Deleted task %s", task_id)
        return record
