"""Middleware tests: request ids, CORS and error shaping."""

import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_request_id_generated(client: AsyncClient) -> None:
    response = await client.get("/health")
    assert len(response.headers["X-Request-Id"]) == 32


@pytest.mark.asyncio
async def test_request_id_propagated(client: AsyncClient) -> None:
    response = await client.get("/health", headers={"X-Request-Id": "round-42"})
    assert response.headers["X-Request-Id"] == "round-42"


@pytest.mark.asyncio
async def test_rate_limiter_passes_without_redis(client: AsyncClient) -> None:
    """Without a Redis pool the limiter lets requests through untouched."""
    for _ in range(3):
        response = await client.get("/api/v1/pulp/advantages/catalog")
        assert response.status_code == 200
        assert "X-RateLimit-Remaining" not in response.headers


@pytest.mark.asyncio
async def test_cors_preflight(client: AsyncClient) -> None:
    response = await client.options(
        "/api/v1/pulp/windows/active",
        headers={
            "Origin": "http://localhost:5173",
            "Access-Control-Request-Method": "GET",
        },
    )
    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "http://localhost:5173"


@pytest.mark.asyncio
async def test_not_found_route(client: AsyncClient) -> None:
    response = await client.get("/api/v1/pulp/nope")
    assert response.status_code == 404
    assert response.json() == {"detail": "Not Found"}
