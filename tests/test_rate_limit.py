"""
Tests for per-client rate limiting.
"""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from todo_api.config import Settings
from todo_api.main import create_app


@pytest_asyncio.fixture
async def limited_client(test_database):
    """App with rate limiting on and a budget of two requests per window."""
    config = Settings(RATE_LIMIT_ENABLED=True, RATE_LIMIT_MAX_REQUESTS=2, RATE_LIMIT_WINDOW_MS=60_000)
    app = create_app(database=test_database, config=config)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.mark.asyncio
async def test_requests_within_budget_pass(limited_client):
    assert (await limited_client.get("/users")).status_code == 200
    assert (await limited_client.get("/users")).status_code == 200


@pytest.mark.asyncio
async def test_excess_requests_are_rejected(limited_client):
    for _ in range(2):
        await limited_client.get("/todos")

    response = await limited_client.get("/todos")

    assert response.status_code == 429
    assert response.json() == {
        "success": False,
        "error": {
            "message": "Too many requests from this IP, please try again later.",
            "code": "RATE_LIMITED",
        },
    }


@pytest.mark.asyncio
async def test_rate_limit_disabled_in_shared_app(client):
    for _ in range(5):
        assert (await client.get("/")).status_code == 200


@pytest.mark.asyncio
async def test_rejection_carries_security_headers(limited_client):
    for _ in range(2):
        await limited_client.get("/users")

    response = await limited_client.get("/users", headers={"X-Request-ID": "trace-429"})

    assert response.status_code == 429
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["X-Request-ID"] == "trace-429"


@pytest.mark.asyncio
async def test_limits_are_counted_per_path(limited_client):
    for _ in range(2):
        assert (await limited_client.get("/users")).status_code == 200

    assert (await limited_client.get("/users")).status_code == 429
    assert (await limited_client.get("/todos")).status_code == 200
