"""Database engine, session factory, and resilience utilities."""

import asyncio

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from .config import Settings
from .logger import logger

# Base class for ORM models
Base = declarative_base()

_RETRYABLE_MARKERS = (
    "connection",
    "timeout",
    "database is locked",
    "server closed the connection",
    "connection reset",
)


# ==================== Database Context ====================


class Database:
    """Owns the async engine and the session factory handed to repositories.

    Built once per application by `create_app` and shared by every request.
    """

    def __init__(self, url: str, **engine_options):
        self.url = url
        self.engine: AsyncEngine = create_async_engine(url, echo=False, future=True, **engine_options)
        self.session_factory = async_sessionmaker(self.engine, expire_on_commit=False, class_=AsyncSession)

    @classmethod
    def from_settings(cls, config: Settings) -> "Database":
        """Create the database context with pool limits from configuration."""
        if config.DATABASE_URL.startswith("sqlite"):
            return cls(config.DATABASE_URL)

        database = cls(
            config.DATABASE_URL,
            pool_size=config.DB_POOL_SIZE,
            max_overflow=config.DB_MAX_OVERFLOW,
            pool_timeout=config.DB_POOL_TIMEOUT,
            pool_recycle=config.DB_POOL_RECYCLE,
            pool_pre_ping=True,  # Verify connections before use
            connect_args={
                "timeout": config.DB_CONNECT_TIMEOUT,
                "command_timeout": config.DB_QUERY_TIMEOUT,
            },
        )
        logger.info(
            f"Database engine configured: pool_size={config.DB_POOL_SIZE}, "
            f"max_overflow={config.DB_MAX_OVERFLOW}, timeout={config.DB_POOL_TIMEOUT}s"
        )
        return database

    async def create_all(self) -> None:
        """Create every table directly from the ORM metadata (tests, local seeding)."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop_all(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    async def check_connection(self, max_retries: int = 2, base_delay: float = 0.1) -> bool:
        """Check if database connection is healthy.

        Returns:
            True if a trivial query succeeds, False otherwise
        """
        async def _ping():
            async with self.session_factory() as session:
                await session.execute(text("SELECT 1"))

        try:
            await retry_on_db_error(_ping, max_retries=max_retries, base_delay=base_delay)
            return True
        except Exception as e:
            logger.error(f"Database health check failed: {str(e)}")
            return False

    async def dispose(self) -> None:
        """Close every pooled connection; called during application shutdown."""
        logger.info("Disposing database engine and closing connections")
        try:
            await self.engine.dispose()
            logger.info("Database connections closed successfully")
        except Exception as e:
            logger.error(f"Error disposing database engine: {str(e)}", exc_info=True)


# ==================== Database Resilience ====================


def is_retryable_error(error: Exception) -> bool:
    """Connection-class failures are worth retrying, constraint violations are not."""
    message = str(error).lower()
    return any(marker in message for marker in _RETRYABLE_MARKERS)


async def retry_on_db_error(func, max_retries: int = 3, base_delay: float = 0.5):
    """Run an async database operation, retrying transient failures with exponential backoff.

    Args:
        func: Zero-argument coroutine function to run
        max_retries: Total attempts before giving up
        base_delay: Delay before the first retry (doubles each retry)

    Returns:
        Result of the function call

    Raises:
        The last error once attempts are exhausted, or immediately when not retryable
    """
    for attempt in range(1, max_retries + 1):
        try:
            return await func()
        except (OperationalError, DBAPIError) as e:
            if not is_retryable_error(e) or attempt == max_retries:
                logger.error(f"Database operation failed (attempt {attempt}/{max_retries}): {str(e)}")
                raise

            delay = base_delay * (2 ** (attempt - 1))
            logger.warning(
                f"Database error on attempt {attempt}/{max_retries}, retrying in {delay}s: {str(e)}"
            )
            await asyncio.sleep(delay)
