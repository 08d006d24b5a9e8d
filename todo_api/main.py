"""FastAPI application entry point with lifecycle management."""

import asyncio
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import Limiter
from slowapi.util import get_remote_address

from .config import Settings, settings
from .db import Database
from .dependencies import enforce_rate_limit
from .logger import logger
from .middleware import (
    add_request_id_middleware,
    graceful_shutdown_middleware,
    register_exception_handlers,
    request_logging_middleware,
    security_headers_middleware,
)
from .monitoring import setup_monitoring
from .repositories import SqlAlchemyTodoRepository, SqlAlchemyUserRepository
from .routes import router
from .services import Clock, TodoService, UserService
from .utils import utcnow

# ==================== Graceful Shutdown ====================


class GracefulShutdownManager:
    """Manages graceful shutdown of the application.

    Tracks active requests and ensures all in-flight requests complete
    before background work is drained and the database is disconnected.
    """

    def __init__(self, shutdown_timeout: float = settings.GRACEFUL_SHUTDOWN_TIMEOUT):
        self.is_shutting_down = False
        self.active_requests = 0
        self.shutdown_timeout = shutdown_timeout

    def request_started(self):
        """Track a new incoming request."""
        if not self.is_shutting_down:
            self.active_requests += 1

    def request_finished(self):
        """Mark a request as completed."""
        self.active_requests -= 1

    async def initiate_shutdown(self):
        """Stop admitting requests and wait for in-flight ones, up to the timeout."""
        if self.is_shutting_down:
            return

        logger.info("Graceful shutdown initiated")
        self.is_shutting_down = True

        if self.active_requests <= 0:
            logger.info("No active requests - proceeding with immediate shutdown")
            return

        logger.info(f"Waiting for {self.active_requests} active request(s) to complete...")
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.shutdown_timeout
        while self.active_requests > 0:
            if loop.time() >= deadline:
                logger.warning(
                    f"Shutdown timeout ({self.shutdown_timeout}s) reached with "
                    f"{self.active_requests} request(s) still active - forcing shutdown"
                )
                return
            await asyncio.sleep(0.1)

        logger.info("All active requests completed successfully")


# ==================== Application Lifecycle ====================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - handles startup checks and graceful shutdown."""
    config: Settings = app.state.config
    database: Database = app.state.database

    logger.info(f"Starting {config.APP_NAME} in {config.APP_ENV.value} mode")
    logger.info("Database schema managed by Alembic migrations")

    if not await database.check_connection(
        max_retries=config.DB_RETRY_MAX_ATTEMPTS, base_delay=config.DB_RETRY_BASE_DELAY
    ):
        await database.dispose()
        raise RuntimeError("Database is unreachable - refusing to start")

    logger.info(f"{config.APP_NAME} started successfully - ready to accept requests")

    yield

    logger.info(f"Shutting down {config.APP_NAME}...")

    await app.state.shutdown_manager.initiate_shutdown()
    await app.state.todo_service.wait_for_background_tasks(timeout=config.GRACEFUL_SHUTDOWN_TIMEOUT)
    await database.dispose()

    logger.info(f"{config.APP_NAME} shutdown complete")


# ==================== Application Setup ====================


def create_app(
    database: Database | None = None,
    config: Settings = settings,
    clock: Clock = utcnow,
) -> FastAPI:
    """Build the application and wire its collaborators.

    Args:
        database: Database context; built from `config` when omitted
        config: Settings to run with
        clock: Source of "now" for expiration checks
    """
    database = database or Database.from_settings(config)

    user_repository = SqlAlchemyUserRepository(database.session_factory)
    todo_repository = SqlAlchemyTodoRepository(database.session_factory)

    app = FastAPI(title=config.APP_NAME, lifespan=lifespan)
    app.state.config = config
    app.state.database = database
    app.state.shutdown_manager = GracefulShutdownManager(config.GRACEFUL_SHUTDOWN_TIMEOUT)
    app.state.user_service = UserService(user_repository, clock=clock)
    app.state.todo_service = TodoService(todo_repository, user_repository, clock=clock)

    # Rate limiting: sliding window per client address, enforced by a router dependency
    app.state.limiter = Limiter(
        key_func=get_remote_address,
        default_limits=[config.get_rate_limit()],
        strategy="moving-window",
        enabled=config.RATE_LIMIT_ENABLED,
    )

    # Middleware registration (last registered = outermost layer)
    app.middleware("http")(security_headers_middleware)
    app.middleware("http")(request_logging_middleware)
    app.middleware("http")(add_request_id_middleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.get_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.middleware("http")(graceful_shutdown_middleware)

    register_exception_handlers(app)
    app.include_router(router, dependencies=[Depends(enforce_rate_limit)])

    if config.ENABLE_METRICS:
        setup_monitoring(app)

    return app


app = create_app()
