"""Relationship synchronizer between task owners and users' pending task sets.

A task names its owner in ``assignedUser`` and caches the owner's name in
``assignedUserName``. The owner lists the task in ``pendingTasks`` for as long
as the task is not completed. The two sides live in separate documents, so
every ownership or completion change goes through the operations below. Each
store call touches one field-set of one record; callers wrap a whole request in
``db_client.transaction()`` to make the sequence atomic.

All operations are idempotent.
"""

import logging

from taskroster.core import db_client
from taskroster.core.config import constants
from taskroster.core.logging import log_with_context
from taskroster.domain.task import Task
from taskroster.domain.user import User


logger = logging.getLogger(__name__)

PENDING_TASKS_FIELD = "pendingTasks"


async def set_pending(*, user_id: str, task_id: str, pending: bool) -> None:
    """Make the task a member of the user's pending set iff ``pending``.

    An empty user ID is a no-op.
    """
    if not user_id:
        return

    if pending:
        await db_client.add_to_set(
            collection=constants.USERS_COLLECTION,
            record_id=user_id,
            field=PENDING_TASKS_FIELD,
            value=task_id,
        )
    else:
        await db_client.remove_from_set(
            collection=constants.USERS_COLLECTION,
            record_id=user_id,
            field=PENDING_TASKS_FIELD,
            value=task_id,
        )

    log_with_context(logger, "debug", "Set pending membership", user_id=user_id, task_id=task_id, pending=pending)


async def release(*, task: Task, previous_owner_id: str) -> None:
    """Drop the task from its former owner's pending set.

    The task record is left alone; the caller decides whether it ends up
    unassigned or owned by someone else.
    """
    if not previous_owner_id:
        return
    await set_pending(user_id=previous_owner_id, task_id=task.id, pending=False)


async def claim(*, task: Task, user: User) -> Task:
    """Point the task at ``user`` and fix the user's pending set.

    The cached owner name is taken from ``user.name``. The task is added to the
    pending set when it is not completed and removed from it otherwise.

    Returns:
        The task as stored after the claim
    """
    record = await db_client.update_record(
        collection=constants.TASKS_COLLECTION,
        record_id=task.id,
        data={"assignedUser": user.id, "assignedUserName": user.name},
    )
    claimed = Task.model_validate(record)
    await set_pending(user_id=user.id, task_id=claimed.id, pending=claimed.is_pending)

    log_with_context(logger, "info", "Task claimed", task_id=claimed.id, user_id=user.id)
    return claimed


async def transfer(*, task: Task, user: User) -> Task:
    """Take the task away from its current owner, if that is someone else, and claim it for ``user``."""
    if task.assigned_user and task.assigned_user != user.id:
        await release(task=task, previous_owner_id=task.assigned_user)
    return await claim(task=task, user=user)


async def unassign(*, task: Task, holder_id: str = "") -> Task:
    """Clear the task's owner.

    ``holder_id`` is the user on whose behalf the task is being dropped; that
    user's pending set is the caller's business. If the task's recorded owner
    is a different user, the task is released from that owner too.

    Returns:
        The task as stored after unassignment
    """
    record = await db_client.update_record(
        collection=constants.TASKS_COLLECTION,
        record_id=task.id,
        data={"assignedUser": "", "assignedUserName": constants.UNASSIGNED_USER_NAME},
    )
    if task.assigned_user and task.assigned_user != holder_id:
        await release(task=task, previous_owner_id=task.assigned_user)

    log_with_context(logger, "info", "Task unassigned", task_id=task.id, previous_owner_id=task.assigned_user)
    return Task.model_validate(record)


async def reconcile(
    *,
    task_id: str,
    previous_owner_id: str,
    previous_completed: bool,
    new_owner_id: str,
    new_completed: bool,
) -> None:
    """Restore pending-set consistency after a task's owner or completion changed.

    If ownership moved away from a previous owner, the task leaves that owner's
    set. The new owner, if any, then holds the task in its set exactly when the
    task is not completed. With an unchanged owner only the second step runs,
    which adds or removes the task according to the completion change.
    """
    should_be_pending = bool(new_owner_id) and not new_completed

    if previous_owner_id and previous_owner_id != new_owner_id:
        await set_pending(user_id=previous_owner_id, task_id=task_id, pending=False)

    if new_owner_id:
        await set_pending(user_id=new_owner_id, task_id=task_id, pending=should_be_pending)

    log_with_context(
        logger,
        "info",
        "Reconciled task ownership",
        task_id=task_id,
        previous_owner_id=previous_owner_id,
        previous_completed=previous_completed,
        new_owner_id=new_owner_id,
        new_completed=new_completed,
    )
