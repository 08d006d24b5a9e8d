"""Data access layer for users and todos.

Each entity has an abstract repository (what the services depend on) and a
SQLAlchemy adapter. Partial updates are passed as change models whose set
fields mark which columns are written.
"""

from abc import ABC, abstractmethod
from datetime import datetime

from pydantic import BaseModel
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from .logger import logger
from .models import Todo, User


# ==================== Change Sets ====================

class NewUser(BaseModel):
    name: str
    email: str
    config: dict | None = None


class UserChanges(BaseModel):
    """Fields to write on a user; only explicitly set fields are applied."""
    name: str | None = None
    email: str | None = None
    config: dict | None = None

    def values(self) -> dict:
        return self.model_dump(exclude_unset=True)


class NewTodo(BaseModel):
    title: str
    completed: bool = False
    user_id: int | None = None
    started_time: datetime | None = None
    duration: int | None = None
    tags: list[str] = []
    is_expired: bool = False


class TodoChanges(BaseModel):
    """Fields to write on a todo; only explicitly set fields are applied."""
    title: str | None = None
    completed: bool | None = None
    started_time: datetime | None = None
    duration: int | None = None
    tags: list[str] | None = None
    is_expired: bool | None = None

    def values(self) -> dict:
        return self.model_dump(exclude_unset=True)


class TodoFilters(BaseModel):
    """Filters pushed down into the todo query."""
    user_id: int | None = None
    completed: bool | None = None
    tag: str | None = None


# ==================== Interfaces ====================

class UserRepository(ABC):

    @abstractmethod
    async def list_all(self) -> list[User]:
        """All users, newest first, with their todos loaded."""

    @abstractmethod
    async def get(self, user_id: int) -> User | None:
        """One user with todos loaded, or None."""

    @abstractmethod
    async def get_by_email(self, email: str) -> User | None: ...

    @abstractmethod
    async def create(self, data: NewUser) -> User: ...

    @abstractmethod
    async def update(self, user_id: int, changes: UserChanges) -> User | None:
        """Apply changes; None when the user does not exist."""

    @abstractmethod
    async def delete(self, user_id: int) -> bool:
        """Delete the user and its todos; False when it did not exist."""


class TodoRepository(ABC):

    @abstractmethod
    async def list_page(self, filters: TodoFilters, skip: int, limit: int) -> tuple[list[Todo], int]:
        """One page of todos, newest first, and the total matching the filters."""

    @abstractmethod
    async def get(self, todo_id: int) -> Todo | None: ...

    @abstractmethod
    async def create(self, data: NewTodo) -> Todo: ...

    @abstractmethod
    async def update(self, todo_id: int, changes: TodoChanges) -> Todo | None: ...

    @abstractmethod
    async def set_expiration(self, todo_id: int, is_expired: bool) -> None:
        """Overwrite only the cached expiration flag."""

    @abstractmethod
    async def delete(self, todo_id: int) -> bool: ...


# ==================== SQLAlchemy Adapters ====================

class SqlAlchemyUserRepository(UserRepository):
    """User repository backed by an async SQLAlchemy session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @staticmethod
    def _select_with_todos():
        return select(User).options(selectinload(User.todos))

    async def _reload(self, session: AsyncSession, user_id: int) -> User | None:
        stmt = (
            self._select_with_todos()
            .where(User.id == user_id)
            .execution_options(populate_existing=True)
        )
        result = await session.execute(stmt)
        return result.scalars().first()

    async def list_all(self) -> list[User]:
        async with self._session_factory() as session:
            try:
                result = await session.execute(self._select_with_todos().order_by(User.id.desc()))
                users = list(result.scalars().all())
                logger.debug(f"Query executed: returned {len(users)} users")
                return users
            except Exception:
                logger.error("Failed to list users", exc_info=True)
                raise

    async def get(self, user_id: int) -> User | None:
        async with self._session_factory() as session:
            return await self._reload(session, user_id)

    async def get_by_email(self, email: str) -> User | None:
        async with self._session_factory() as session:
            result = await session.execute(select(User).where(User.email == email))
            return result.scalars().first()

    async def create(self, data: NewUser) -> User:
        async with self._session_factory() as session:
            try:
                async with session.begin():
                    user = User(name=data.name, email=data.email, config=data.config)
                    session.add(user)
                return await self._reload(session, user.id)
            except IntegrityError:
                logger.debug(f"Duplicate email rejected by the store: {data.email}")
                raise
            except Exception:
                logger.error(f"Failed to insert user email={data.email}", exc_info=True)
                raise

    async def update(self, user_id: int, changes: UserChanges) -> User | None:
        async with self._session_factory() as session:
            try:
                async with session.begin():
                    user = await session.get(User, user_id)
                    if user is None:
                        return None
                    for field, value in changes.values().items():
                        setattr(user, field, value)
                return await self._reload(session, user_id)
            except Exception:
                logger.error(f"Failed to update user id={user_id}", exc_info=True)
                raise

    async def delete(self, user_id: int) -> bool:
        async with self._session_factory() as session:
            try:
                async with session.begin():
                    # Todos are loaded so the ORM cascade removes them on any backend
                    user = await self._reload(session, user_id)
                    if user is None:
                        return False
                    await session.delete(user)
                return True
            except Exception:
                logger.error(f"Failed to delete user id={user_id}", exc_info=True)
                raise


class SqlAlchemyTodoRepository(TodoRepository):
    """Todo repository backed by an async SQLAlchemy session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @staticmethod
    def _select_with_user():
        return select(Todo).options(selectinload(Todo.user))

    async def _reload(self, session: AsyncSession, todo_id: int) -> Todo | None:
        stmt = (
            self._select_with_user()
            .where(Todo.id == todo_id)
            .execution_options(populate_existing=True)
        )
        result = await session.execute(stmt)
        return result.scalars().first()

    @staticmethod
    def _tag_condition(session: AsyncSession, tag: str):
        """Membership test for `tag` in the tags column."""
        if session.bind.dialect.name == "postgresql":
            return Todo.tags.contains([tag])
        # SQLite stores the tags as a JSON array
        elements = func.json_each(Todo.tags).table_valued("value")
        return select(elements.c.value).where(elements.c.value == tag).exists()

    def _conditions(self, session: AsyncSession, filters: TodoFilters) -> list:
        conditions: list = []
        if filters.user_id is not None:
            conditions.append(Todo.user_id == filters.user_id)
        if filters.completed is not None:
            conditions.append(Todo.completed == filters.completed)
        if filters.tag is not None:
            conditions.append(self._tag_condition(session, filters.tag))
        return conditions

    async def list_page(self, filters: TodoFilters, skip: int, limit: int) -> tuple[list[Todo], int]:
        async with self._session_factory() as session:
            try:
                conditions = self._conditions(session, filters)

                count_stmt = select(func.count()).select_from(Todo)
                if conditions:
                    count_stmt = count_stmt.where(*conditions)
                total = (await session.execute(count_stmt)).scalar() or 0

                stmt = self._select_with_user()
                if conditions:
                    stmt = stmt.where(*conditions)
                stmt = stmt.order_by(Todo.created_at.desc(), Todo.id.desc()).offset(skip).limit(limit)
                todos = list((await session.execute(stmt)).scalars().all())

                logger.debug(f"Query executed: returned {len(todos)} todos out of {total} total")
                return todos, total
            except Exception:
                logger.error("Failed to list todos", exc_info=True)
                raise

    async def get(self, todo_id: int) -> Todo | None:
        async with self._session_factory() as session:
            return await self._reload(session, todo_id)

    async def create(self, data: NewTodo) -> Todo:
        async with self._session_factory() as session:
            try:
                async with session.begin():
                    todo = Todo(**data.model_dump())
                    session.add(todo)
                return await self._reload(session, todo.id)
            except Exception:
                logger.error("Failed to insert todo", exc_info=True)
                raise

    async def update(self, todo_id: int, changes: TodoChanges) -> Todo | None:
        async with self._session_factory() as session:
            try:
                async with session.begin():
                    todo = await session.get(Todo, todo_id)
                    if todo is None:
                        return None
                    for field, value in changes.values().items():
                        setattr(todo, field, value)
                return await self._reload(session, todo_id)
            except Exception:
                logger.error(f"Failed to update todo id={todo_id}", exc_info=True)
                raise

    async def set_expiration(self, todo_id: int, is_expired: bool) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                # updated_at is left alone: this refreshes a cache, not the todo
                await session.execute(
                    update(Todo)
                    .where(Todo.id == todo_id)
                    .values(is_expired=is_expired, updated_at=Todo.updated_at)
                )

    async def delete(self, todo_id: int) -> bool:
        async with self._session_factory() as session:
            try:
                async with session.begin():
                    todo = await session.get(Todo, todo_id)
                    if todo is None:
                        return False
                    await session.delete(todo)
                return True
            except Exception:
                logger.error(f"Failed to delete todo id={todo_id}", exc_info=True)
                raise
