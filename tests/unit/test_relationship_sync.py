"""Unit tests for the relationship synchronizer."""

import pytest

from taskroster.domain.task import Task
from taskroster.domain.user import User
from taskroster.services import relationship_sync


@pytest.mark.unit
class TestSetPending:
    """Tests for set_pending."""

    async def test_add_and_remove(self, make_user, fetch_user):
        """Test that membership follows the pending flag."""
        user = await make_user()

        await relationship_sync.set_pending(user_id=user["id"], task_id="a" * 24, pending=True)
        assert (await fetch_user(user["id"]))["pendingTasks"] == ["a" * 24]

        await relationship_sync.set_pending(user_id=user["id"], task_id="a" * 24, pending=False)
        assert (await fetch_user(user["id"]))["pendingTasks"] == []

    async def test_empty_user_id_is_noop(self, store):
        """Test that an empty user id does nothing."""
        await relationship_sync.set_pending(user_id="", task_id="a" * 24, pending=True)


@pytest.mark.unit
class TestClaim:
    """Tests for claim."""

    async def test_claim_open_task(self, make_user, make_task, fetch_user, assert_consistent):
        """Test that claiming an open task sets the owner and adds it to the pending set."""
        user = User.model_validate(await make_user("Alice"))
        task = Task.model_validate(await make_task())

        claimed = await relationship_sync.claim(task=task, user=user)

        assert claimed.assigned_user == user.id
        assert claimed.assigned_user_name == "Alice"
        assert (await fetch_user(user.id))["pendingTasks"] == [task.id]
        await assert_consistent()

    async def test_claim_completed_task(self, make_user, make_task, fetch_user, assert_consistent):
        """Test that claiming a completed task changes the owner but not the pending set."""
        user = User.model_validate(await make_user())
        task = Task.model_validate(await make_task(completed=True))

        claimed = await relationship_sync.claim(task=task, user=user)

        assert claimed.assigned_user == user.id
        assert (await fetch_user(user.id))["pendingTasks"] == []
        await assert_consistent()

    async def test_claim_is_idempotent(self, make_user, make_task, fetch_user):
        """Test that claiming twice leaves one pending entry."""
        user = User.model_validate(await make_user())
        task = Task.model_validate(await make_task())

        await relationship_sync.claim(task=task, user=user)
        await relationship_sync.claim(task=task, user=user)

        assert (await fetch_user(user.id))["pendingTasks"] == [task.id]


@pytest.mark.unit
class TestRelease:
    """Tests for release."""

    async def test_release_leaves_task_alone(self, make_user, make_task, fetch_user, fetch_task):
        """Test that release only touches the previous owner's pending set."""
        user = await make_user()
        task = Task.model_validate(await make_task(assigned_user=user["id"]))

        await relationship_sync.release(task=task, previous_owner_id=user["id"])

        assert (await fetch_user(user["id"]))["pendingTasks"] == []
        assert (await fetch_task(task.id))["assignedUser"] == user["id"]

    async def test_release_without_owner_is_noop(self, make_task, fetch_task):
        """Test that an empty previous owner does nothing."""
        task = Task.model_validate(await make_task())

        await relationship_sync.release(task=task, previous_owner_id="")

        assert (await fetch_task(task.id))["assignedUser"] == ""


@pytest.mark.unit
class TestTransferAndUnassign:
    """Tests for transfer and unassign."""

    async def test_transfer_steals_from_current_owner(self, make_user, make_task, fetch_user, assert_consistent):
        """Test that transfer moves a pending task between users."""
        first = await make_user("First")
        second = User.model_validate(await make_user("Second"))
        task = Task.model_validate(await make_task(assigned_user=first["id"]))

        moved = await relationship_sync.transfer(task=task, user=second)

        assert moved.assigned_user == second.id
        assert moved.assigned_user_name == "Second"
        assert (await fetch_user(first["id"]))["pendingTasks"] == []
        assert (await fetch_user(second.id))["pendingTasks"] == [task.id]
        await assert_consistent()

    async def test_transfer_to_current_owner_refreshes_name(self, make_user, make_task, fetch_user):
        """Test that transferring to the same owner keeps it pending and updates the name."""
        owner = await make_user("Old Name")
        task = Task.model_validate(await make_task(assigned_user=owner["id"]))
        renamed = User.model_validate({**owner, "name": "New Name"})

        moved = await relationship_sync.transfer(task=task, user=renamed)

        assert moved.assigned_user_name == "New Name"
        assert (await fetch_user(owner["id"]))["pendingTasks"] == [task.id]

    async def test_unassign_releases_recorded_owner(self, make_user, make_task, fetch_user, assert_consistent):
        """Test that unassign clears the owner and drops the task from the owner's set."""
        owner = await make_user()
        task = Task.model_validate(await make_task(assigned_user=owner["id"]))

        cleared = await relationship_sync.unassign(task=task)

        assert cleared.assigned_user == ""
        assert cleared.assigned_user_name == "unassigned"
        assert (await fetch_user(owner["id"]))["pendingTasks"] == []
        await assert_consistent()

    async def test_unassign_leaves_holder_set_to_caller(self, make_user, make_task, fetch_user):
        """Test that the holder's own pending set is not touched."""
        owner = await make_user()
        task = Task.model_validate(await make_task(assigned_user=owner["id"]))

        await relationship_sync.unassign(task=task, holder_id=owner["id"])

        assert (await fetch_user(owner["id"]))["pendingTasks"] == [task.id]


@pytest.mark.unit
class TestReconcile:
    """Tests for reconcile."""

    async def test_completion_toggle_with_same_owner(self, make_user, make_task, fetch_user):
        """Test that completion changes add and remove the task for an unchanged owner."""
        owner = await make_user()
        task = await make_task(assigned_user=owner["id"])

        await relationship_sync.reconcile(
            task_id=task["id"],
            previous_owner_id=owner["id"],
            previous_completed=False,
            new_owner_id=owner["id"],
            new_completed=True,
        )
        assert (await fetch_user(owner["id"]))["pendingTasks"] == []

        await relationship_sync.reconcile(
            task_id=task["id"],
            previous_owner_id=owner["id"],
            previous_completed=True,
            new_owner_id=owner["id"],
            new_completed=False,
        )
        assert (await fetch_user(owner["id"]))["pendingTasks"] == [task["id"]]

    async def test_owner_change(self, make_user, make_task, fetch_user):
        """Test that an owner change moves the task between pending sets."""
        first = await make_user()
        second = await make_user()
        task = await make_task(assigned_user=first["id"])

        await relationship_sync.reconcile(
            task_id=task["id"],
            previous_owner_id=first["id"],
            previous_completed=False,
            new_owner_id=second["id"],
            new_completed=False,
        )

        assert (await fetch_user(first["id"]))["pendingTasks"] == []
        assert (await fetch_user(second["id"]))["pendingTasks"] == [task["id"]]

    async def test_owner_change_to_completed(self, make_user, make_task, fetch_user):
        """Test that a completed task moving owners lands in no pending set."""
        first = await make_user()
        second = await make_user()
        task = await make_task(assigned_user=first["id"])

        await relationship_sync.reconcile(
            task_id=task["id"],
            previous_owner_id=first["id"],
            previous_completed=False,
            new_owner_id=second["id"],
            new_completed=True,
        )

        assert (await fetch_user(first["id"]))["pendingTasks"] == []
        assert (await fetch_user(second["id"]))["pendingTasks"] == []

    async def test_to_unassigned(self, make_user, make_task, fetch_user):
        """Test that dropping the owner removes the task from the previous owner's set."""
        owner = await make_user()
        task = await make_task(assigned_user=owner["id"])

        await relationship_sync.reconcile(
            task_id=task["id"],
            previous_owner_id=owner["id"],
            previous_completed=False,
            new_owner_id="",
            new_completed=False,
        )

        assert (await fetch_user(owner["id"]))["pendingTasks"] == []
