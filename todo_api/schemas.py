"""Pydantic schemas for request/response validation and serialization.

Wire format is camelCase (`userId`, `startedTime`, `isExpired`); Python code
uses the snake_case field names.
"""

import re
from datetime import datetime, timezone
from typing import Annotated, Generic, TypeVar

from pydantic import (
    AwareDatetime,
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    PositiveInt,
    StringConstraints,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from .config import settings
from .enums import ContainerStyle, Radius, ThemeMode, UserStatus
from .utils import ensure_utc, normalize_email

T = TypeVar("T")

DIGITS = re.compile(r"^\d+$")

UserName = Annotated[
    str, StringConstraints(strip_whitespace=True, min_length=1, max_length=settings.USER_NAME_MAX_LENGTH)
]
TodoTitle = Annotated[
    str, StringConstraints(strip_whitespace=True, min_length=1, max_length=settings.TODO_TITLE_MAX_LENGTH)
]
Tag = Annotated[str, StringConstraints(min_length=1, max_length=settings.TAG_MAX_LENGTH)]


class CamelModel(BaseModel):
    """Base model that speaks camelCase on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# ==================== User Config Schemas ====================

class UserTheme(CamelModel):
    primary_color: str = "#3b82f6"
    secondary: str = "#8b5cf6"
    theme_mode: ThemeMode = ThemeMode.LIGHT
    container_style: ContainerStyle = ContainerStyle.BORDERED
    radius: Radius = Radius.MD
    font: str = "Inter"


class UserConfig(CamelModel):
    """Per-user preferences stored as a JSON blob."""
    tags: list[Tag] = Field(default_factory=list)
    active: UserStatus = UserStatus.ACTIVE
    theme: UserTheme = Field(default_factory=UserTheme)

    def to_storage(self) -> dict:
        """JSON-ready dict with camelCase keys, as persisted in the config column."""
        return self.model_dump(mode="json", by_alias=True)


# ==================== User Request Schemas ====================

class _EmailNormalizing(CamelModel):
    @field_validator("email", mode="before", check_fields=False)
    @classmethod
    def normalize(cls, v):
        """Trim and lowercase before format validation."""
        if isinstance(v, str):
            v = normalize_email(v)
            if len(v) > settings.USER_EMAIL_MAX_LENGTH:
                raise ValueError(f"Email must be at most {settings.USER_EMAIL_MAX_LENGTH} characters")
        return v


class UserCreate(_EmailNormalizing):
    """Body of POST /users."""
    name: UserName
    email: EmailStr
    config: UserConfig | None = None


class UserUpdate(_EmailNormalizing):
    """Body of PATCH /users/{id}; only the fields sent are applied."""
    name: UserName | None = None
    email: EmailStr | None = None
    config: UserConfig | None = None

    @model_validator(mode="after")
    def check_fields(self) -> "UserUpdate":
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided for update")
        for field in ("name", "email"):
            if field in self.model_fields_set and getattr(self, field) is None:
                raise ValueError(f"'{field}' cannot be null")
        return self


# ==================== Todo Request Schemas ====================

class _UtcStartedTime(CamelModel):
    @field_validator("started_time", check_fields=False)
    @classmethod
    def to_utc(cls, v: datetime | None) -> datetime | None:
        return v.astimezone(timezone.utc) if v is not None else v


class TodoCreate(_UtcStartedTime):
    """Body of POST /todos."""
    title: TodoTitle
    completed: bool = False
    user_id: PositiveInt | None = None
    started_time: AwareDatetime | None = None
    duration: PositiveInt | None = Field(None, description="Length of the todo's window in minutes")
    tags: list[Tag] = Field(default_factory=list)


class TodoUpdate(_UtcStartedTime):
    """Body of PATCH /todos/{id}.

    `startedTime` and `duration` accept null to clear them; the other fields
    may be omitted but not nulled.
    """
    title: TodoTitle | None = None
    completed: bool | None = None
    started_time: AwareDatetime | None = None
    duration: PositiveInt | None = None
    tags: list[Tag] | None = None

    @model_validator(mode="after")
    def check_fields(self) -> "TodoUpdate":
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided for update")
        for field in ("title", "completed", "tags"):
            if field in self.model_fields_set and getattr(self, field) is None:
                raise ValueError(f"'{field}' cannot be null")
        return self


class TodoListQuery(CamelModel):
    """Query string of GET /todos, coerced from its string encoding."""
    user_id: int | None = None
    completed: bool | None = None
    tag: Tag | None = None
    is_expired: bool | None = None
    page: int = settings.DEFAULT_PAGE
    limit: int = settings.DEFAULT_LIMIT

    @model_validator(mode="before")
    @classmethod
    def drop_blank_values(cls, data):
        """Empty query values count as absent."""
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value is not None and value != ""}
        return data

    @field_validator("user_id", "page", "limit", mode="before")
    @classmethod
    def parse_digits(cls, v):
        if isinstance(v, str):
            if not DIGITS.match(v):
                raise ValueError("Must be a non-negative integer")
            return int(v)
        return v

    @field_validator("completed", "is_expired", mode="before")
    @classmethod
    def parse_flag(cls, v):
        if isinstance(v, str):
            return v == "true"
        return v


# ==================== Response Schemas ====================

class _UtcTimestamps(CamelModel):
    @field_validator("started_time", "created_at", "updated_at", check_fields=False)
    @classmethod
    def restore_utc(cls, v: datetime | None) -> datetime | None:
        return ensure_utc(v) if v is not None else v


class UserSummary(CamelModel):
    id: int
    name: str
    email: str


class TodoOut(_UtcTimestamps):
    """Todo as embedded in a user."""
    id: int
    title: str
    completed: bool
    user_id: int | None = None
    started_time: datetime | None = None
    duration: int | None = None
    tags: list[str] = Field(default_factory=list)
    is_expired: bool
    created_at: datetime
    updated_at: datetime


class TodoWithUserOut(TodoOut):
    """Todo with a summary of its owner."""
    user: UserSummary | None = None


class UserOut(_UtcTimestamps):
    id: int
    name: str
    email: str
    config: UserConfig | None = None
    created_at: datetime
    updated_at: datetime
    todos: list[TodoOut] = Field(default_factory=list)


class Pagination(CamelModel):
    page: int
    limit: int
    total: int
    total_pages: int


class SuccessResponse(CamelModel, Generic[T]):
    """Envelope for every successful response with a body."""
    success: bool = True
    data: T


class TodoPage(CamelModel):
    """GET /todos response: envelope plus pagination metadata."""
    success: bool = True
    data: list[TodoWithUserOut]
    pagination: Pagination
