"""User service for CRUD operations that carry task ownership along."""

import logging
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from taskroster.core import db_client
from taskroster.core.config import constants, settings
from taskroster.core.errors import ConflictError, ErrorCode, InvalidArgumentError, NotFoundError
from taskroster.core.logging import span
from taskroster.core.query import parse_list_query, parse_select, run_list_query
from taskroster.domain.create_models import UserCreate
from taskroster.domain.task import Task
from taskroster.domain.update_models import UserUpdate
from taskroster.domain.user import User
from taskroster.services import relationship_sync


logger = logging.getLogger(__name__)

_REQUIRED_FIELDS = {"name", "email"}
_DUPLICATE_EMAIL_MESSAGE = "A user with this email already exists"


def _validate_input(data: Mapping[str, Any], model: type[UserCreate]) -> UserCreate:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        failed = {str(error["loc"][0]) for error in e.errors() if error["loc"]}
        logger.warning("Rejected user input", extra={"fields": sorted(failed)})
        if failed <= _REQUIRED_FIELDS:
            msg = "User must have name and email"
        else:
            msg = f"Invalid user data: {', '.join(sorted(failed))}"
        raise InvalidArgumentError(msg) from e


def _require_valid_id(user_id: str) -> None:
    if not db_client.is_valid_record_id(user_id):
        raise InvalidArgumentError(f"Invalid user id: {user_id}", code=ErrorCode.ERR_INVALID_ID)


def _require_valid_task_ids(task_ids: Iterable[str]) -> None:
    invalid = [task_id for task_id in task_ids if not db_client.is_valid_record_id(task_id)]
    if invalid:
        raise InvalidArgumentError(f"Invalid task id in pendingTasks: {', '.join(invalid)}", code=ErrorCode.ERR_INVALID_ID)


async def _get_user_record(user_id: str, fields: Mapping[str, Any] | None = None) -> dict[str, Any]:
    try:
        return await db_client.get_record(collection=constants.USERS_COLLECTION, record_id=user_id, fields=fields)
    except db_client.RecordNotFoundError as e:
        raise NotFoundError("User not found", code=ErrorCode.ERR_USER_NOT_FOUND) from e


async def _ensure_email_available(email: str, *, exclude_user_id: str | None = None) -> None:
    existing = await db_client.get_first_record(collection=constants.USERS_COLLECTION, filter_query={"email": email})
    if existing and existing["id"] != exclude_user_id:
        logger.warning("Duplicate email rejected", extra={"email": email})
        raise ConflictError(_DUPLICATE_EMAIL_MESSAGE)


async def _load_tasks(task_ids: list[str]) -> list[Task]:
    """Load the tasks that still exist, in the order their IDs were given."""
    if not task_ids:
        return []

    records = await db_client.list_records(
        collection=constants.TASKS_COLLECTION,
        filter_query={"id": {"$in": task_ids}},
    )
    by_id = {record["id"]: Task.model_validate(record) for record in records}
    return [by_id[task_id] for task_id in task_ids if task_id in by_id]


async def _derive_pending_tasks(*, user_id: str, requested: list[str]) -> list[str]:
    """Pending set rebuilt from task records: owned by the user and not completed."""
    records = await db_client.list_records(
        collection=constants.TASKS_COLLECTION,
        filter_query={"assignedUser": user_id, "completed": False},
        fields={"id": 1},
    )
    owned = [record["id"] for record in records]
    owned_set = set(owned)
    return [task_id for task_id in requested if task_id in owned_set] + [
        task_id for task_id in owned if task_id not in requested
    ]


async def list_users(
    *,
    where: Any = None,
    sort: Any = None,
    select: Any = None,
    skip: Any = None,
    limit: Any = None,
    count: Any = None,
) -> list[dict[str, Any]] | int:
    """List users, or count them when ``count`` is true.

    Unlike tasks, no limit is applied when none is given.

    Raises:
        InvalidArgumentError: If any query parameter is malformed
    """
    with span("user_service.list_users"):
        query = parse_list_query(where=where, sort=sort, select=select, skip=skip, limit=limit, count=count)
        return await run_list_query(collection=constants.USERS_COLLECTION, query=query)


async def get_user(*, user_id: str, select: Any = None) -> dict[str, Any]:
    """Get a user by ID with an optional projection.

    Raises:
        InvalidArgumentError: If the ID or projection is malformed
        NotFoundError: If the user does not exist
    """
    with span("user_service.get_user"):
        fields = parse_select(select)
        _require_valid_id(user_id)
        return await _get_user_record(user_id, fields)


async def create_user(*, data: Mapping[str, Any]) -> dict[str, Any]:
    """Create a user and claim the tasks listed in its pendingTasks.

    The user is stored with an empty pending set first. Each listed task that
    exists is then taken from its current owner and claimed; completed tasks
    change owner but stay out of the pending set. Unknown task IDs are skipped.

    Args:
        data: User fields (name, email, and optionally pendingTasks)

    Returns:
        Created user record

    Raises:
        InvalidArgumentError: If name, email or a task ID is invalid
        ConflictError: If another user already has the email
    """
    with span("user_service.create_user"):
        payload = _validate_input(data, UserCreate)
        _require_valid_task_ids(payload.pending_tasks)

        async with db_client.transaction():
            await _ensure_email_available(payload.email)
            try:
                record = await db_client.create_record(
                    collection=constants.USERS_COLLECTION,
                    data={
                        "name": payload.name,
                        "email": payload.email,
                        "pendingTasks": [],
                        "dateCreated": datetime.now(UTC),
                    },
                )
            except db_client.DuplicateRecordError as e:
                raise ConflictError(_DUPLICATE_EMAIL_MESSAGE) from e
            user = User.model_validate(record)

            for task in await _load_tasks(payload.pending_tasks):
                await relationship_sync.transfer(task=task, user=user)

        logger.info("Created user: %s (%s)", user.name, user.email)
        return await _get_user_record(user.id)


async def update_user(*, user_id: str, data: Mapping[str, Any]) -> dict[str, Any]:
    """Replace a user's fields and apply the difference in its pending set to tasks.

    Tasks dropped from the pending set are unassigned. Tasks added to it are
    taken from their current owner and claimed under the new name. Tasks in
    both the old and the new set are not touched, so their cached owner name
    keeps the old value after a rename.

    The stored pending set is rebuilt from task records when
    ``settings.recompute_pending_tasks`` is on, and is the requested list
    otherwise.

    Returns:
        Updated user record

    Raises:
        InvalidArgumentError: If the input, user ID or a task ID is invalid
        ConflictError: If another user already has the email
        NotFoundError: If the user does not exist
    """
    with span("user_service.update_user"):
        payload = _validate_input(data, UserUpdate)
        _require_valid_id(user_id)
        _require_valid_task_ids(payload.pending_tasks)

        async with db_client.transaction():
            stored = await _get_user_record(user_id)
            await _ensure_email_available(payload.email, exclude_user_id=user_id)

            previous_pending = [str(task_id) for task_id in stored.get("pendingTasks") or []]
            requested = payload.pending_tasks
            removed = [task_id for task_id in previous_pending if task_id not in requested]
            added = [task_id for task_id in requested if task_id not in previous_pending]

            renamed = User.model_validate({**stored, "name": payload.name, "email": payload.email})

            for task in await _load_tasks(removed):
                await relationship_sync.unassign(task=task, holder_id=user_id)
                await relationship_sync.release(task=task, previous_owner_id=user_id)

            for task in await _load_tasks(added):
                await relationship_sync.transfer(task=task, user=renamed)

            if settings.recompute_pending_tasks:
                pending = await _derive_pending_tasks(user_id=user_id, requested=requested)
            else:
                pending = requested

            try:
                await db_client.update_record(
                    collection=constants.USERS_COLLECTION,
                    record_id=user_id,
                    data={"name": payload.name, "email": payload.email, "pendingTasks": pending},
                )
            except db_client.DuplicateRecordError as e:
                raise ConflictError(_DUPLICATE_EMAIL_MESSAGE) from e

        logger.info(
            "Updated user %s (removed %d, added %d pending tasks)",
            user_id,
            len(removed),
            len(added),
        )
        return await _get_user_record(user_id)


async def delete_user(*, user_id: str) -> dict[str, Any]:
    """Delete a user after unassigning every task that references it.

    That covers the tasks in its pending set and the completed tasks it still
    owns, so no task is left pointing at a deleted user.

    Returns:
        The deleted user record

    Raises:
        InvalidArgumentError: If the ID is malformed
        NotFoundError: If the user does not exist
    """
    with span("user_service.delete_user"):
        _require_valid_id(user_id)

        async with db_client.transaction():
            record = await _get_user_record(user_id)
            user = User.model_validate(record)

            tasks = {task.id: task for task in await _load_tasks(user.pending_tasks)}
            owned = await db_client.list_records(
                collection=constants.TASKS_COLLECTION,
                filter_query={"assignedUser": user_id},
            )
            for owned_record in owned:
                tasks.setdefault(owned_record["id"], Task.model_validate(owned_record))

            for task in tasks.values():
                await relationship_sync.unassign(task=task, holder_id=user_id)

            await db_client.delete_record(collection=constants.USERS_COLLECTION, record_id=user_id)

        logger.info("Deleted user %s (unassigned %d tasks)", user_id, len(tasks))
        return record
