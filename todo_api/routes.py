"""API route definitions: root info, health, users and todos."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, Response

from .db import Database
from .dependencies import (
    get_database,
    get_path_id,
    get_todo_list_query,
    get_todo_service,
    get_user_service,
)
from .logger import logger
from .schemas import (
    SuccessResponse,
    TodoCreate,
    TodoListQuery,
    TodoPage,
    TodoUpdate,
    TodoWithUserOut,
    UserCreate,
    UserOut,
    UserUpdate,
)
from .services import TodoService, UserService

router = APIRouter()


@router.get("/")
def root(request: Request):
    config = request.app.state.config
    return {"app": config.APP_NAME, "env": config.APP_ENV.value}


@router.get("/health")
async def health_check(database: Database = Depends(get_database)):
    """Health check endpoint for load balancers and monitoring.

    Returns:
        - 200 OK if the database answers
        - 503 Service Unavailable if it does not
    """
    timestamp = datetime.now(timezone.utc).isoformat()

    if await database.check_connection():
        return {
            "success": True,
            "status": "healthy",
            "timestamp": timestamp,
            "services": {"database": "connected"},
        }

    logger.error("Health check failed: database unreachable")
    return JSONResponse(
        status_code=503,
        content={
            "success": False,
            "status": "unhealthy",
            "timestamp": timestamp,
            "services": {"database": "disconnected"},
        },
    )


# ============================================================================
# User Endpoints
# ============================================================================

@router.get("/users", response_model=SuccessResponse[list[UserOut]])
async def list_users(service: UserService = Depends(get_user_service)):
    return SuccessResponse(data=await service.list_users())


@router.get("/users/{id}", response_model=SuccessResponse[UserOut])
async def get_user(user_id: int = Depends(get_path_id), service: UserService = Depends(get_user_service)):
    return SuccessResponse(data=await service.get_user(user_id))


@router.post("/users", response_model=SuccessResponse[UserOut], status_code=201)
async def create_user(data: UserCreate, service: UserService = Depends(get_user_service)):
    """Create a user.

    Raises:
        400: Invalid body
        409: Email already exists
    """
    return SuccessResponse(data=await service.create_user(data))


@router.patch("/users/{id}", response_model=SuccessResponse[UserOut])
async def update_user(
    data: UserUpdate,
    user_id: int = Depends(get_path_id),
    service: UserService = Depends(get_user_service),
):
    return SuccessResponse(data=await service.update_user(user_id, data))


@router.delete("/users/{id}", status_code=204, response_class=Response)
async def delete_user(user_id: int = Depends(get_path_id), service: UserService = Depends(get_user_service)):
    """Delete a user together with all of its todos."""
    await service.delete_user(user_id)
    return Response(status_code=204)


# ============================================================================
# Todo Endpoints
# ============================================================================

@router.get("/todos", response_model=TodoPage)
async def list_todos(
    query: TodoListQuery = Depends(get_todo_list_query),
    service: TodoService = Depends(get_todo_service),
):
    """List todos, newest first.

    Query: userId, completed, tag, isExpired, page (default 1), limit (default 10).
    """
    return await service.list_todos(query)


@router.get("/todos/{id}", response_model=SuccessResponse[TodoWithUserOut])
async def get_todo(todo_id: int = Depends(get_path_id), service: TodoService = Depends(get_todo_service)):
    return SuccessResponse(data=await service.get_todo(todo_id))


@router.post("/todos", response_model=SuccessResponse[TodoWithUserOut], status_code=201)
async def create_todo(data: TodoCreate, service: TodoService = Depends(get_todo_service)):
    """Create a todo.

    Raises:
        400: Invalid body
        404: userId does not reference an existing user
    """
    return SuccessResponse(data=await service.create_todo(data))


@router.patch("/todos/{id}", response_model=SuccessResponse[TodoWithUserOut])
async def update_todo(
    data: TodoUpdate,
    todo_id: int = Depends(get_path_id),
    service: TodoService = Depends(get_todo_service),
):
    return SuccessResponse(data=await service.update_todo(todo_id, data))


@router.delete("/todos/{id}", status_code=204, response_class=Response)
async def delete_todo(todo_id: int = Depends(get_path_id), service: TodoService = Depends(get_todo_service)):
    await service.delete_todo(todo_id)
    return Response(status_code=204)
