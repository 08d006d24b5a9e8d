"""FastAPI dependencies: injected services and parsed request parameters."""

from fastapi import Path, Query, Request
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError as PydanticValidationError
from slowapi import Limiter

from .db import Database
from .schemas import TodoListQuery
from .services import TodoService, UserService


# ==================== Injected Collaborators ====================

def get_database(request: Request) -> Database:
    return request.app.state.database


def get_user_service(request: Request) -> UserService:
    return request.app.state.user_service


def get_todo_service(request: Request) -> TodoService:
    return request.app.state.todo_service


async def enforce_rate_limit(request: Request) -> None:
    """Count the request against the client's default limits.

    Raises:
        RateLimitExceeded: once the client has used up its window
    """
    limiter: Limiter = request.app.state.limiter
    # No endpoint function: only the application-wide default limits apply, bucketed per path
    limiter._check_request_limit(request, None, in_middleware=True)


# ==================== Request Parameters ====================

def get_path_id(id: str = Path(..., pattern=r"^\d+$", description="Numeric record id")) -> int:
    """Numeric id from the path; anything but digits fails validation with 400."""
    return int(id)


def get_todo_list_query(
    user_id: str | None = Query(None, alias="userId"),
    completed: str | None = Query(None),
    tag: str | None = Query(None),
    is_expired: str | None = Query(None, alias="isExpired"),
    page: str | None = Query(None),
    limit: str | None = Query(None),
) -> TodoListQuery:
    """Coerce the GET /todos query string into a TodoListQuery."""
    raw = {
        "userId": user_id,
        "completed": completed,
        "tag": tag,
        "isExpired": is_expired,
        "page": page,
        "limit": limit,
    }
    try:
        return TodoListQuery.model_validate(raw)
    except PydanticValidationError as e:
        errors = [{**error, "loc": ("query", *error["loc"])} for error in e.errors()]
        raise RequestValidationError(errors) from e
