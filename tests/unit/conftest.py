"""Pytest configuration and fixtures for unit tests."""

from collections.abc import Awaitable, Callable
from typing import Any

import pytest

from taskroster.core import db_client
from taskroster.core.config import constants, settings
from taskroster.services import task_service, user_service


FUTURE_DEADLINE = "2027-01-15T12:00:00Z"


@pytest.fixture
async def store(monkeypatch, tmp_path):
    """Points the store at a fresh SQLite file with the schema in place."""
    monkeypatch.setattr(settings, "sqlite_db_path", str(tmp_path / "taskroster.db"))
    await db_client.init_db()
    yield tmp_path / "taskroster.db"
    await db_client.close_connection()


@pytest.fixture
def make_user(store) -> Callable[..., Awaitable[dict[str, Any]]]:
    """Factory creating users through the user service."""
    counter = 0

    async def _make_user(name: str | None = None, *, pending_tasks: list[str] | None = None) -> dict[str, Any]:
        nonlocal counter
        counter += 1
        data: dict[str, Any] = {
            "name": name or f"User {counter}",
            "email": f"user{counter}@example.com",
        }
        if pending_tasks is not None:
            data["pendingTasks"] = pending_tasks
        return await user_service.create_user(data=data)

    return _make_user


@pytest.fixture
def make_task(store) -> Callable[..., Awaitable[dict[str, Any]]]:
    """Factory creating tasks through the task service."""
    counter = 0

    async def _make_task(
        name: str | None = None,
        *,
        assigned_user: str = "",
        completed: bool = False,
    ) -> dict[str, Any]:
        nonlocal counter
        counter += 1
        return await task_service.create_task(
            data={
                "name": name or f"Task {counter}",
                "deadline": FUTURE_DEADLINE,
                "completed": completed,
                "assignedUser": assigned_user,
            }
        )

    return _make_task


async def _load_all(collection: str) -> list[dict[str, Any]]:
    return await db_client.list_records(collection=collection)


@pytest.fixture
def assert_consistent(store) -> Callable[[], Awaitable[None]]:
    """Checks that task owners and pending sets agree across the whole store."""

    async def _assert_consistent() -> None:
        tasks = await _load_all(constants.TASKS_COLLECTION)
        users = {user["id"]: user for user in await _load_all(constants.USERS_COLLECTION)}

        holders: dict[str, list[str]] = {}
        for user in users.values():
            for task_id in user["pendingTasks"]:
                holders.setdefault(task_id, []).append(user["id"])

        for task in tasks:
            owner = task["assignedUser"]
            task_holders = holders.get(task["id"], [])
            assert len(task_holders) <= 1, f"task {task['id']} pending under {task_holders}"
            if owner and not task["completed"]:
                assert task_holders == [owner], f"task {task['id']} missing from owner {owner}"
            else:
                assert task_holders == [], f"task {task['id']} should not be pending anywhere"
            if not owner:
                assert task["assignedUserName"] == constants.UNASSIGNED_USER_NAME

    return _assert_consistent


async def get_user(user_id: str) -> dict[str, Any]:
    return await db_client.get_record(collection=constants.USERS_COLLECTION, record_id=user_id)


async def get_task(task_id: str) -> dict[str, Any]:
    return await db_client.get_record(collection=constants.TASKS_COLLECTION, record_id=task_id)


@pytest.fixture
def fetch_user() -> Callable[[str], Awaitable[dict[str, Any]]]:
    """Reads a user record straight from the store."""
    return get_user


@pytest.fixture
def fetch_task() -> Callable[[str], Awaitable[dict[str, Any]]]:
    """Reads a task record straight from the store."""
    return get_task
