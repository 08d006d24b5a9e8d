"""Business logic layer for users and todos.

Services sit on top of the repository interfaces and enforce the rules the
store cannot: email uniqueness checks, owner existence for todos, and the
derived `is_expired` flag.
"""

import asyncio
from collections.abc import Callable
from datetime import datetime

from .config import settings
from .errors import ConflictError, NotFoundError
from .logger import logger
from .models import Todo, User
from .repositories import (
    NewTodo,
    NewUser,
    TodoChanges,
    TodoFilters,
    TodoRepository,
    UserChanges,
    UserRepository,
)
from .schemas import (
    Pagination,
    TodoCreate,
    TodoListQuery,
    TodoOut,
    TodoPage,
    TodoUpdate,
    TodoWithUserOut,
    UserConfig,
    UserCreate,
    UserOut,
    UserUpdate,
)
from .utils import calculate_expiration, utcnow

Clock = Callable[[], datetime]

# ==================== Helper Functions ====================


def _validate_pagination(page: int, limit: int) -> tuple[int, int, int]:
    """Validate and normalize pagination parameters.

    Returns:
        tuple: (page, limit, skip) normalized values
    """
    if page < 1:
        page = settings.DEFAULT_PAGE
    if limit < 1:
        limit = settings.DEFAULT_LIMIT
    if limit > settings.MAX_LIMIT:
        limit = settings.MAX_LIMIT
    skip = (page - 1) * limit
    return page, limit, skip


def _total_pages(total: int, limit: int) -> int:
    return (total + limit - 1) // limit


def _convert_to_todo_out(todo: Todo, is_expired: bool) -> TodoWithUserOut:
    """Convert ORM Todo (with its user loaded) to the response schema."""
    return TodoWithUserOut.model_validate(todo).model_copy(update={"is_expired": is_expired})


# ==================== User Service ====================


class UserService:
    """User CRUD with the email uniqueness rule."""

    def __init__(self, user_repository: UserRepository, clock: Clock = utcnow):
        self.user_repository = user_repository
        self.clock = clock

    def _convert_to_user_out(self, user: User) -> UserOut:
        """Convert ORM User to UserOut, showing each todo's current expiration."""
        user_out = UserOut.model_validate(user)
        now = self.clock()
        user_out.todos = [
            todo.model_copy(update={"is_expired": calculate_expiration(todo.started_time, todo.duration, now)})
            for todo in user_out.todos
        ]
        return user_out

    async def _ensure_email_available(self, email: str, user_id: int | None = None) -> None:
        existing = await self.user_repository.get_by_email(email)
        if existing is not None and existing.id != user_id:
            logger.warning(f"Email already in use: {email}")
            raise ConflictError("User with this email already exists")

    async def list_users(self) -> list[UserOut]:
        users = await self.user_repository.list_all()
        logger.debug(f"Found {len(users)} users")
        return [self._convert_to_user_out(u) for u in users]

    async def get_user(self, user_id: int) -> UserOut:
        """Retrieve a user with its todos. Raises NotFoundError if absent."""
        logger.debug(f"Fetching user: id={user_id}")
        user = await self.user_repository.get(user_id)
        if user is None:
            logger.warning(f"User not found: id={user_id}")
            raise NotFoundError("User", user_id)
        return self._convert_to_user_out(user)

    async def create_user(self, data: UserCreate) -> UserOut:
        """Create a user; the default configuration is stored when none is sent."""
        logger.info(f"Creating user: {data.email}")
        await self._ensure_email_available(data.email)

        config = data.config or UserConfig()
        user = await self.user_repository.create(
            NewUser(name=data.name, email=data.email, config=config.to_storage())
        )
        logger.info(f"User created: id={user.id} email={user.email}")
        return self._convert_to_user_out(user)

    async def update_user(self, user_id: int, data: UserUpdate) -> UserOut:
        """Apply the fields present in `data`. Raises NotFoundError or ConflictError."""
        logger.info(f"Updating user: id={user_id} fields={sorted(data.model_fields_set)}")
        existing = await self.user_repository.get(user_id)
        if existing is None:
            raise NotFoundError("User", user_id)

        if "email" in data.model_fields_set and data.email != existing.email:
            await self._ensure_email_available(data.email, user_id=user_id)

        changes = UserChanges()
        for field in data.model_fields_set:
            value = getattr(data, field)
            if field == "config" and value is not None:
                value = value.to_storage()
            setattr(changes, field, value)

        user = await self.user_repository.update(user_id, changes)
        if user is None:
            raise NotFoundError("User", user_id)
        return self._convert_to_user_out(user)

    async def delete_user(self, user_id: int) -> None:
        """Delete a user and, through the cascade, all of its todos."""
        logger.info(f"Deleting user: id={user_id}")
        if not await self.user_repository.delete(user_id):
            logger.warning(f"Cannot delete - user not found: id={user_id}")
            raise NotFoundError("User", user_id)
        logger.info(f"User deleted: id={user_id}")


# ==================== Todo Service ====================


class TodoService:
    """Todo CRUD plus lazy maintenance of the cached expiration flag.

    Reads always return the expiration recomputed against `clock`. When the
    stored flag disagrees, a correction write is started as a background task
    that the request does not wait for; its failures are only logged.
    """

    def __init__(self, todo_repository: TodoRepository, user_repository: UserRepository, clock: Clock = utcnow):
        self.todo_repository = todo_repository
        self.user_repository = user_repository
        self.clock = clock
        self._background_tasks: set[asyncio.Task] = set()

    # ---------- expiration cache ----------

    def _refresh_expiration(self, todo: Todo, now: datetime) -> bool:
        """Recompute expiration and schedule a correction if the stored flag is stale."""
        is_expired = calculate_expiration(todo.started_time, todo.duration, now)
        has_window = todo.started_time is not None and todo.duration is not None
        if has_window and is_expired != bool(todo.is_expired):
            self._schedule_expiration_write(todo.id, is_expired)
        return is_expired

    def _schedule_expiration_write(self, todo_id: int, is_expired: bool) -> None:
        task = asyncio.create_task(self._write_expiration(todo_id, is_expired))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _write_expiration(self, todo_id: int, is_expired: bool) -> None:
        try:
            await self.todo_repository.set_expiration(todo_id, is_expired)
            logger.debug(f"Expiration refreshed: todo id={todo_id} is_expired={is_expired}")
        except Exception as e:
            logger.error(f"Failed to refresh expiration for todo id={todo_id}: {e}", exc_info=True)

    @property
    def pending_writes(self) -> int:
        return len(self._background_tasks)

    async def wait_for_background_tasks(self, timeout: float | None = None) -> None:
        """Wait for outstanding expiration writes (used on shutdown and in tests)."""
        if not self._background_tasks:
            return
        pending = set(self._background_tasks)
        logger.info(f"Waiting for {len(pending)} expiration write(s) to finish")
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        if still_running:
            logger.warning(f"{len(still_running)} expiration write(s) still running after {timeout}s")

    # ---------- operations ----------

    async def list_todos(self, query: TodoListQuery) -> TodoPage:
        """List todos newest first with filters and pagination.

        The `is_expired` filter is applied to the fetched page after
        recomputation, so `total` then counts matches on this page only.
        """
        page, limit, skip = _validate_pagination(query.page, query.limit)
        filters = TodoFilters(user_id=query.user_id, completed=query.completed, tag=query.tag)

        logger.debug(f"Listing todos: page={page} limit={limit} filters={filters.model_dump(exclude_none=True)}")
        todos, total = await self.todo_repository.list_page(filters, skip, limit)

        now = self.clock()
        items = [_convert_to_todo_out(todo, self._refresh_expiration(todo, now)) for todo in todos]

        if query.is_expired is not None:
            items = [item for item in items if item.is_expired == query.is_expired]
            total = len(items)

        return TodoPage(
            data=items,
            pagination=Pagination(page=page, limit=limit, total=total, total_pages=_total_pages(total, limit)),
        )

    async def get_todo(self, todo_id: int) -> TodoWithUserOut:
        todo = await self.todo_repository.get(todo_id)
        if todo is None:
            logger.warning(f"Todo not found: id={todo_id}")
            raise NotFoundError("Todo", todo_id)
        return _convert_to_todo_out(todo, self._refresh_expiration(todo, self.clock()))

    async def create_todo(self, data: TodoCreate) -> TodoWithUserOut:
        """Create a todo, verifying its owner first. Raises NotFoundError for an unknown user."""
        if data.user_id is not None:
            user = await self.user_repository.get(data.user_id)
            if user is None:
                logger.warning(f"Cannot create todo - user not found: id={data.user_id}")
                raise NotFoundError("User", data.user_id)

        is_expired = calculate_expiration(data.started_time, data.duration, self.clock())
        todo = await self.todo_repository.create(
            NewTodo(**data.model_dump(), is_expired=is_expired)
        )
        logger.info(f"Todo created: id={todo.id} user_id={todo.user_id}")
        return _convert_to_todo_out(todo, is_expired)

    async def update_todo(self, todo_id: int, data: TodoUpdate) -> TodoWithUserOut:
        """Apply the fields present in `data`, recomputing expiration when its inputs change."""
        existing = await self.todo_repository.get(todo_id)
        if existing is None:
            raise NotFoundError("Todo", todo_id)

        values = data.model_dump(exclude_unset=True)
        if "started_time" in values or "duration" in values:
            started_time = values.get("started_time", existing.started_time)
            duration = values.get("duration", existing.duration)
            values["is_expired"] = calculate_expiration(started_time, duration, self.clock())

        todo = await self.todo_repository.update(todo_id, TodoChanges(**values))
        if todo is None:
            raise NotFoundError("Todo", todo_id)
        logger.info(f"Todo updated: id={todo_id} fields={sorted(values)}")
        return _convert_to_todo_out(todo, self._refresh_expiration(todo, self.clock()))

    async def delete_todo(self, todo_id: int) -> None:
        if not await self.todo_repository.delete(todo_id):
            logger.warning(f"Cannot delete - todo not found: id={todo_id}")
            raise NotFoundError("Todo", todo_id)
        logger.info(f"Todo deleted: id={todo_id}")
