"""
Unit tests for business logic (services layer).
Tests service methods with mocked repositories.
"""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from todo_api.errors import ConflictError, NotFoundError
from todo_api.repositories import TodoRepository, UserRepository
from todo_api.schemas import TodoCreate, TodoListQuery, TodoUpdate, UserCreate, UserUpdate
from todo_api.services import TodoService, UserService, _validate_pagination

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def fixed_clock():
    return NOW


def make_user(id: int = 1, name: str = "Test User", email: str = "test@example.com", todos=None):
    """Create a user record shaped like the ORM model."""
    return SimpleNamespace(
        id=id, name=name, email=email, config=None, created_at=NOW, updated_at=NOW, todos=todos or []
    )


def make_todo(id: int = 1, started_time=None, duration=None, is_expired=False, user=None, **fields):
    """Create a todo record shaped like the ORM model."""
    values = dict(
        id=id,
        title="Todo",
        completed=False,
        user_id=user.id if user else None,
        started_time=started_time,
        duration=duration,
        tags=[],
        is_expired=is_expired,
        created_at=NOW,
        updated_at=NOW,
        user=user,
    )
    values.update(fields)
    return SimpleNamespace(**values)


@pytest.fixture
def user_repository():
    return AsyncMock(spec=UserRepository)


@pytest.fixture
def todo_repository():
    return AsyncMock(spec=TodoRepository)


@pytest.fixture
def user_service(user_repository):
    return UserService(user_repository, clock=fixed_clock)


@pytest.fixture
def todo_service(todo_repository, user_repository):
    return TodoService(todo_repository, user_repository, clock=fixed_clock)


class TestValidatePagination:

    def test_defaults_pass_through(self):
        assert _validate_pagination(1, 10) == (1, 10, 0)

    def test_skip_is_offset_of_page(self):
        assert _validate_pagination(3, 20) == (3, 20, 40)

    def test_clamps_out_of_range_values(self):
        assert _validate_pagination(0, 0) == (1, 10, 0)
        assert _validate_pagination(2, 1000) == (2, 100, 100)


# ============================================================================
# UserService
# ============================================================================

@pytest.mark.asyncio
class TestCreateUser:

    async def test_create_user_with_default_config(self, user_service, user_repository):
        user_repository.get_by_email.return_value = None
        user_repository.create.return_value = make_user()

        result = await user_service.create_user(UserCreate(name="Test User", email="Test@Example.com"))

        assert result.email == "test@example.com"
        new_user = user_repository.create.await_args.args[0]
        assert new_user.email == "test@example.com"
        assert new_user.config["active"] == "active"
        assert new_user.config["theme"]["themeMode"] == "light"

    async def test_duplicate_email_is_conflict_and_nothing_written(self, user_service, user_repository):
        user_repository.get_by_email.return_value = make_user()

        with pytest.raises(ConflictError) as exc_info:
            await user_service.create_user(UserCreate(name="Again", email="test@example.com"))

        assert exc_info.value.status_code == 409
        user_repository.create.assert_not_awaited()


@pytest.mark.asyncio
class TestUpdateUser:

    async def test_email_taken_by_other_user(self, user_service, user_repository):
        user_repository.get.return_value = make_user(id=1, email="me@example.com")
        user_repository.get_by_email.return_value = make_user(id=2, email="other@example.com")

        with pytest.raises(ConflictError):
            await user_service.update_user(1, UserUpdate(email="other@example.com"))

        user_repository.update.assert_not_awaited()

    async def test_own_email_is_allowed(self, user_service, user_repository):
        me = make_user(id=1, email="me@example.com")
        user_repository.get.return_value = me
        user_repository.update.return_value = me

        await user_service.update_user(1, UserUpdate(email="me@example.com", name="Me"))

        user_repository.get_by_email.assert_not_awaited()
        changes = user_repository.update.await_args.args[1]
        assert changes.values() == {"email": "me@example.com", "name": "Me"}

    async def test_only_sent_fields_are_written(self, user_service, user_repository):
        user_repository.get.return_value = make_user()
        user_repository.update.return_value = make_user(name="Renamed")

        await user_service.update_user(1, UserUpdate(name="Renamed"))

        changes = user_repository.update.await_args.args[1]
        assert changes.values() == {"name": "Renamed"}

    async def test_missing_user(self, user_service, user_repository):
        user_repository.get.return_value = None

        with pytest.raises(NotFoundError) as exc_info:
            await user_service.update_user(7, UserUpdate(name="x"))

        assert exc_info.value.message == "User with id 7 not found"


@pytest.mark.asyncio
class TestGetAndDeleteUser:

    async def test_nested_todos_show_recomputed_expiration(self, user_service, user_repository):
        stale = make_todo(started_time=NOW - timedelta(hours=1), duration=10, is_expired=False)
        user_repository.get.return_value = make_user(todos=[stale])

        result = await user_service.get_user(1)

        assert result.todos[0].is_expired is True

    async def test_get_missing_user(self, user_service, user_repository):
        user_repository.get.return_value = None

        with pytest.raises(NotFoundError):
            await user_service.get_user(999)

    async def test_delete_missing_user(self, user_service, user_repository):
        user_repository.delete.return_value = False

        with pytest.raises(NotFoundError):
            await user_service.delete_user(999)


# ============================================================================
# TodoService
# ============================================================================

@pytest.mark.asyncio
class TestCreateTodo:

    async def test_unknown_user_is_not_found_and_nothing_written(self, todo_service, user_repository, todo_repository):
        user_repository.get.return_value = None

        with pytest.raises(NotFoundError) as exc_info:
            await todo_service.create_todo(TodoCreate(title="Orphan", user_id=99))

        assert exc_info.value.message == "User with id 99 not found"
        todo_repository.create.assert_not_awaited()

    async def test_expiration_computed_once_from_inputs(self, todo_service, user_repository, todo_repository):
        owner = make_user()
        user_repository.get.return_value = owner
        started = NOW - timedelta(minutes=45)
        todo_repository.create.return_value = make_todo(started_time=started, duration=30, is_expired=True, user=owner)

        result = await todo_service.create_todo(
            TodoCreate(title="Late", user_id=1, started_time=started, duration=30)
        )

        assert result.is_expired is True
        assert todo_repository.create.await_args.args[0].is_expired is True
        assert result.user.email == "test@example.com"


@pytest.mark.asyncio
class TestLazyExpiration:

    async def test_stale_flag_is_corrected_in_background(self, todo_service, todo_repository):
        todo_repository.get.return_value = make_todo(
            id=5, started_time=NOW - timedelta(minutes=31), duration=30, is_expired=False
        )

        result = await todo_service.get_todo(5)
        await todo_service.wait_for_background_tasks()

        assert result.is_expired is True
        todo_repository.set_expiration.assert_awaited_once_with(5, True)

    async def test_no_write_when_flag_is_current(self, todo_service, todo_repository):
        todo_repository.get.return_value = make_todo(
            started_time=NOW - timedelta(minutes=5), duration=30, is_expired=False
        )

        await todo_service.get_todo(1)
        await todo_service.wait_for_background_tasks()

        todo_repository.set_expiration.assert_not_awaited()

    async def test_no_write_without_expiration_window(self, todo_service, todo_repository):
        # Stored flag is stale but the todo has no window, so it reads as not expired
        todo_repository.get.return_value = make_todo(is_expired=True)

        result = await todo_service.get_todo(1)
        await todo_service.wait_for_background_tasks()

        assert result.is_expired is False
        todo_repository.set_expiration.assert_not_awaited()

    async def test_failed_correction_is_swallowed(self, todo_service, todo_repository):
        todo_repository.get.return_value = make_todo(
            started_time=NOW - timedelta(hours=2), duration=1, is_expired=False
        )
        todo_repository.set_expiration.side_effect = RuntimeError("store down")

        result = await todo_service.get_todo(1)
        await todo_service.wait_for_background_tasks()

        assert result.is_expired is True
        assert todo_service.pending_writes == 0

    async def test_is_expired_filter_applies_to_page(self, todo_service, todo_repository):
        expired = make_todo(id=1, started_time=NOW - timedelta(hours=1), duration=5, is_expired=True)
        active = make_todo(id=2, started_time=NOW, duration=60)
        todo_repository.list_page.return_value = ([expired, active], 12)

        page = await todo_service.list_todos(TodoListQuery(is_expired=True))

        assert [t.id for t in page.data] == [1]
        assert page.pagination.total == 1
        assert page.pagination.total_pages == 1

    async def test_pagination_metadata(self, todo_service, todo_repository):
        todo_repository.list_page.return_value = ([make_todo(id=3), make_todo(id=4)], 5)

        page = await todo_service.list_todos(TodoListQuery(page=2, limit=2))

        filters, skip, limit = todo_repository.list_page.await_args.args
        assert (skip, limit) == (2, 2)
        assert page.pagination.model_dump() == {"page": 2, "limit": 2, "total": 5, "total_pages": 3}


@pytest.mark.asyncio
class TestUpdateTodo:

    async def test_expiration_recomputed_from_merged_values(self, todo_service, todo_repository):
        existing = make_todo(started_time=NOW - timedelta(minutes=20), duration=60)
        todo_repository.get.return_value = existing
        todo_repository.update.return_value = make_todo(
            started_time=existing.started_time, duration=10, is_expired=True
        )

        result = await todo_service.update_todo(1, TodoUpdate(duration=10))

        changes = todo_repository.update.await_args.args[1]
        assert changes.values() == {"duration": 10, "is_expired": True}
        assert result.is_expired is True

    async def test_clearing_duration_makes_todo_non_expired(self, todo_service, todo_repository):
        todo_repository.get.return_value = make_todo(
            started_time=NOW - timedelta(hours=1), duration=5, is_expired=True
        )
        todo_repository.update.return_value = make_todo(started_time=NOW - timedelta(hours=1))

        await todo_service.update_todo(1, TodoUpdate(duration=None))

        changes = todo_repository.update.await_args.args[1]
        assert changes.values() == {"duration": None, "is_expired": False}

    async def test_other_fields_leave_expiration_alone(self, todo_service, todo_repository):
        todo_repository.get.return_value = make_todo()
        todo_repository.update.return_value = make_todo(completed=True)

        await todo_service.update_todo(1, TodoUpdate(completed=True))

        changes = todo_repository.update.await_args.args[1]
        assert changes.values() == {"completed": True}

    async def test_missing_todo(self, todo_service, todo_repository):
        todo_repository.get.return_value = None

        with pytest.raises(NotFoundError):
            await todo_service.update_todo(1, TodoUpdate(title="x"))

        todo_repository.update.assert_not_awaited()

    async def test_delete_missing_todo(self, todo_service, todo_repository):
        todo_repository.delete.return_value = False

        with pytest.raises(NotFoundError) as exc_info:
            await todo_service.delete_todo(3)

        assert exc_info.value.message == "Todo with id 3 not found"
