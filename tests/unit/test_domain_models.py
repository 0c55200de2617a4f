"""Unit tests for domain and input models."""

from datetime import UTC, datetime

import pytest
from pydantic import ValidationError

from taskroster.domain import Task, TaskCreate, TaskUpdate, User, UserCreate, UserUpdate


@pytest.mark.unit
class TestTaskCreate:
    """Tests for TaskCreate validation."""

    def test_defaults(self):
        """Test that optional fields default to an open, unassigned task."""
        payload = TaskCreate.model_validate({"name": "Ship release", "deadline": "2027-01-15T12:00:00Z"})

        assert payload.description == ""
        assert payload.completed is False
        assert payload.assigned_user == ""
        assert payload.deadline == datetime(2027, 1, 15, 12, tzinfo=UTC)

    def test_naive_deadline_is_utc(self):
        """Test that a deadline without an offset is read as UTC."""
        payload = TaskCreate.model_validate({"name": "x", "deadline": "2027-01-15T12:00:00"})

        assert payload.deadline.utcoffset().total_seconds() == 0
        assert payload.deadline.hour == 12

    def test_null_fields_fall_back_to_defaults(self):
        """Test that explicit nulls behave like omitted fields."""
        payload = TaskCreate.model_validate(
            {
                "name": "x",
                "deadline": "2027-01-15T00:00:00Z",
                "description": None,
                "completed": None,
                "assignedUser": None,
            },
        )

        assert payload.description == ""
        assert payload.completed is False
        assert payload.assigned_user == ""

    def test_snake_case_names_accepted(self):
        """Test that field names work as well as aliases."""
        payload = TaskCreate(name="x", deadline="2027-01-15T00:00:00Z", assigned_user=" abc ")

        assert payload.assigned_user == "abc"

    @pytest.mark.parametrize("name", [None, "", "   ", 7])
    def test_invalid_name(self, name):
        """Test that blank or non-text names are rejected."""
        with pytest.raises(ValidationError):
            TaskCreate.model_validate({"name": name, "deadline": "2027-01-15T12:00:00Z"})

    def test_update_validates_like_create(self):
        """Test that the replacement payload has the same rules."""
        with pytest.raises(ValidationError):
            TaskUpdate.model_validate({"name": "x"})


@pytest.mark.unit
class TestUserCreate:
    """Tests for UserCreate validation."""

    def test_normalizes_email(self):
        """Test that emails are trimmed and lower-cased."""
        payload = UserCreate.model_validate({"name": "Alice", "email": "  Alice@Example.COM "})

        assert payload.email == "alice@example.com"
        assert payload.pending_tasks == []

    def test_single_pending_task_becomes_list(self):
        """Test that a single task id is accepted."""
        payload = UserUpdate.model_validate({"name": "A", "email": "a@x.io", "pendingTasks": "abc"})

        assert payload.pending_tasks == ["abc"]

    def test_pending_tasks_deduplicated_in_order(self):
        """Test that repeated ids collapse to their first occurrence."""
        payload = UserCreate.model_validate({"name": "A", "email": "a@x.io", "pendingTasks": ["b", "a", "b"]})

        assert payload.pending_tasks == ["b", "a"]

    def test_pending_tasks_must_be_a_list(self):
        """Test that other shapes are rejected."""
        with pytest.raises(ValidationError):
            UserCreate.model_validate({"name": "A", "email": "a@x.io", "pendingTasks": {"a": 1}})


@pytest.mark.unit
class TestRecords:
    """Tests for the stored record models."""

    def test_task_from_record(self):
        """Test that a stored task document validates with its aliases."""
        task = Task.model_validate(
            {
                "id": "a" * 24,
                "name": "x",
                "description": "",
                "deadline": "2027-01-15T12:00:00+00:00",
                "completed": False,
                "assignedUser": "b" * 24,
                "assignedUserName": "Bob",
                "dateCreated": "2026-10-01T08:00:00+00:00",
            },
        )

        assert task.assigned_user == "b" * 24
        assert task.assigned_user_name == "Bob"
        assert task.is_pending

    def test_completed_or_unassigned_task_is_not_pending(self):
        """Test is_pending for completed and unassigned tasks."""
        base = {"id": "a" * 24, "name": "x", "deadline": "2027-01-15T12:00:00Z", "dateCreated": "2026-10-01T08:00:00Z"}

        assert not Task.model_validate(base).is_pending
        assert not Task.model_validate({**base, "assignedUser": "b" * 24, "completed": True}).is_pending
        assert Task.model_validate(base).assigned_user_name == "unassigned"

    def test_user_from_record(self):
        """Test that a stored user document validates with its aliases."""
        user = User.model_validate({"id": "a" * 24, "name": "A", "email": "a@x.io", "pendingTasks": ["t"]})

        assert user.pending_tasks == ["t"]
        assert user.date_created is None
