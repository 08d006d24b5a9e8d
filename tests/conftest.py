"""
Pytest configuration and shared fixtures for testing.
Sets up a throwaway database per test, the app wired to it, and a test client.
"""

import os

# Configure the app before any todo_api imports read the environment
os.environ["SKIP_ENV_FILE"] = "1"
os.environ["APP_ENV"] = "test"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["ENABLE_METRICS"] = "true"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ.setdefault("DATABASE_URL", "sqlite:///./todo_api_default.db")

# Set TEST_DB_URL to run the suite against PostgreSQL instead of SQLite
TEST_DB_URL = os.getenv("TEST_DB_URL")

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.pool import NullPool

from todo_api.config import normalize_database_url, settings
from todo_api.db import Database
from todo_api.main import create_app


class FakeClock:
    """Controllable "now" injected into the services."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now += timedelta(**delta)


@pytest.fixture
def clock():
    return FakeClock(datetime.now(timezone.utc).replace(microsecond=0))


@pytest_asyncio.fixture(scope="function")
async def test_database(tmp_path):
    """Fresh schema for every test; NullPool avoids sharing connections across loops."""
    url = normalize_database_url(TEST_DB_URL) if TEST_DB_URL else f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"
    database = Database(url, poolclass=NullPool)

    # Tests create tables directly; deployments use Alembic migrations
    await database.drop_all()
    await database.create_all()

    yield database

    await database.drop_all()
    await database.dispose()


@pytest_asyncio.fixture(scope="function")
async def app(test_database, clock):
    application = create_app(database=test_database, config=settings, clock=clock)
    yield application
    # Correction writes must land before the schema is dropped
    await application.state.todo_service.wait_for_background_tasks(timeout=5)


@pytest_asyncio.fixture(scope="function")
async def client(app):
    """Create a test HTTP client bound to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        timeout=30.0,
    ) as ac:
        yield ac


@pytest.fixture
def sample_user():
    """Sample user data for testing."""
    return {"name": "Test User", "email": "test@example.com"}


@pytest.fixture
def sample_users():
    """Multiple sample users for batch testing."""
    return [
        {"name": "Alice", "email": "alice@example.com"},
        {"name": "Bob", "email": "bob@example.com"},
        {"name": "Charlie", "email": "charlie@example.com"},
    ]


@pytest_asyncio.fixture
async def created_user(client, sample_user):
    """A user persisted through the API."""
    response = await client.post("/users", json=sample_user)
    assert response.status_code == 201
    return response.json()["data"]
