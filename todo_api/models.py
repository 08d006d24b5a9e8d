"""SQLAlchemy ORM models for database tables."""

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, false
from sqlalchemy.dialects.postgresql import ARRAY, JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .config import settings
from .db import Base
from .utils import utcnow

# PostgreSQL gets native types; SQLite (local runs, tests) stores both as JSON text
ConfigType = JSON().with_variant(JSONB(), "postgresql")
TagsType = ARRAY(String(settings.TAG_MAX_LENGTH)).with_variant(JSON(), "sqlite")


class User(Base):
    """User model mapped to 'users' table."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(settings.USER_NAME_MAX_LENGTH), nullable=False)
    email = Column(String(settings.USER_EMAIL_MAX_LENGTH), nullable=False, unique=True, index=True)
    config = Column(ConfigType, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False
    )

    todos = relationship(
        "Todo",
        back_populates="user",
        cascade="all, delete-orphan",
        order_by=lambda: [Todo.created_at.desc(), Todo.id.desc()],
    )


class Todo(Base):
    """Todo model mapped to 'todos' table.

    `is_expired` caches the result of `calculate_expiration` and may lag behind
    the clock; it is corrected lazily when todos are read.
    """

    __tablename__ = "todos"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(settings.TODO_TITLE_MAX_LENGTH), nullable=False)
    completed = Column(Boolean, default=False, server_default=false(), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True)
    started_time = Column(DateTime(timezone=True), nullable=True)
    duration = Column(Integer, nullable=True)  # minutes
    tags = Column(TagsType, default=list, nullable=False)
    is_expired = Column(Boolean, default=False, server_default=false(), nullable=False)
    created_at = Column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False, index=True
    )
    updated_at = Column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False
    )

    user = relationship("User", back_populates="todos")
