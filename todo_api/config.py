"""Configuration management and validation using Pydantic."""

import os
from enum import Enum

from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import make_url


class Environment(str, Enum):
    """Deployment environments understood by the service."""
    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TEST = "test"


def get_env_file() -> str | None:
    """Pick the .env file to load, if any.

    Returns:
        None if SKIP_ENV_FILE is set (Docker/direct env vars)
        .env.{APP_ENV} when it exists, then .env, otherwise None
    """
    if os.getenv("SKIP_ENV_FILE"):
        return None
    env = os.getenv("APP_ENV") or os.getenv("NODE_ENV") or Environment.DEVELOPMENT.value
    for candidate in (f".env.{env}", ".env"):
        if os.path.exists(candidate):
            return candidate
    return None


class Settings(BaseSettings):
    """Application configuration settings loaded from environment variables or .env files."""

    model_config = SettingsConfigDict(
        env_file=get_env_file(),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # ==================== Application Settings ====================
    APP_NAME: str = "Todo API"
    APP_ENV: Environment = Field(
        default=Environment.DEVELOPMENT,
        validation_alias=AliasChoices("APP_ENV", "NODE_ENV"),
    )
    HOST: str = "0.0.0.0"
    PORT: int = Field(default=3000, gt=0)

    # ==================== Database ====================
    DATABASE_URL: str | None = None  # Takes precedence over the DB_* parts
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    FORWARD_DB_PORT: int | None = None  # Host port when the database runs in Docker
    DB_USERNAME: str = "postgres"
    DB_PASSWORD: str = "secret"
    DB_DATABASE: str = "postgres"

    # ==================== Database Connection Pooling ====================
    DB_POOL_SIZE: int = 20  # Maximum persistent connections
    DB_MAX_OVERFLOW: int = 0  # Fixed-size pool
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for a free connection
    DB_POOL_RECYCLE: int = 30  # Idle connections are recycled after this many seconds

    # ==================== Database Resilience ====================
    DB_RETRY_MAX_ATTEMPTS: int = 3
    DB_RETRY_BASE_DELAY: float = 0.5  # Doubles on every retry (seconds)
    DB_QUERY_TIMEOUT: int = 60
    DB_CONNECT_TIMEOUT: int = 2

    # ==================== CORS Settings ====================
    CORS_ORIGIN: str = "*"  # "*" or comma-separated allowed origins

    # ==================== Rate Limiting ====================
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_WINDOW_MS: int = Field(default=900_000, gt=0)  # 15 minutes
    RATE_LIMIT_MAX_REQUESTS: int = Field(default=100, gt=0)

    # ==================== Pagination ====================
    DEFAULT_PAGE: int = 1
    DEFAULT_LIMIT: int = 10
    MAX_LIMIT: int = 100

    # ==================== Field Validation ====================
    USER_NAME_MAX_LENGTH: int = 255
    USER_EMAIL_MAX_LENGTH: int = 255
    TODO_TITLE_MAX_LENGTH: int = 500
    TAG_MAX_LENGTH: int = 50

    # ==================== Graceful Shutdown ====================
    GRACEFUL_SHUTDOWN_TIMEOUT: int = 10  # Max wait for in-flight work (seconds)

    # ==================== Logging ====================
    LOG_LEVEL: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL
    LOG_FILE: str | None = None  # Path of an additional log file
    LOG_FORMAT: str = "console"  # "console" for dev, "json" for production

    # ==================== Metrics ====================
    ENABLE_METRICS: bool = True

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Reject log levels the logging module does not know."""
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unsupported LOG_LEVEL '{v}'")
        return level

    @model_validator(mode="after")
    def build_database_url(self) -> "Settings":
        """Resolve DATABASE_URL from the discrete DB_* settings and pin the async driver."""
        raw_url = self.DATABASE_URL
        if not raw_url:
            port = self.FORWARD_DB_PORT or self.DB_PORT
            raw_url = (
                f"postgresql://{self.DB_USERNAME}:{self.DB_PASSWORD}"
                f"@{self.DB_HOST}:{port}/{self.DB_DATABASE}"
            )
        self.DATABASE_URL = normalize_database_url(raw_url)
        return self

    @property
    def is_development(self) -> bool:
        return self.APP_ENV == Environment.DEVELOPMENT

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == Environment.PRODUCTION

    def get_cors_origins(self) -> list[str]:
        """Parse CORS_ORIGIN into a list of allowed origins."""
        if self.CORS_ORIGIN.strip() == "*":
            return ["*"]
        return [origin.strip() for origin in self.CORS_ORIGIN.split(",") if origin.strip()]

    def get_rate_limit(self) -> str:
        """Render the rate limit window as a limits-library expression, e.g. '100/900 seconds'."""
        window_seconds = max(1, self.RATE_LIMIT_WINDOW_MS // 1000)
        return f"{self.RATE_LIMIT_MAX_REQUESTS}/{window_seconds} seconds"


def normalize_database_url(value: str) -> str:
    """Map plain PostgreSQL URLs onto asyncpg and drop query args asyncpg rejects.

    Raises:
        ValueError: if the URL is not a PostgreSQL or SQLite URL
    """
    url = make_url(value)
    backend = url.get_backend_name()
    if backend in ("postgres", "postgresql"):
        url = url.set(drivername="postgresql+asyncpg").difference_update_query(["schema"])
    elif backend == "sqlite":
        url = url.set(drivername="sqlite+aiosqlite")
    else:
        raise ValueError("DATABASE_URL must be a PostgreSQL or SQLite connection string")
    return url.render_as_string(hide_password=False)


settings = Settings()
