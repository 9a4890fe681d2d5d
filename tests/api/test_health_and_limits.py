"""Health endpoints, request ids and rate limiting."""

from __future__ import annotations

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from wikirace.middleware.rate_limit import RateLimitMiddleware
from wikirace.middleware.request_id import RequestIdMiddleware

pytestmark = pytest.mark.asyncio


class TestHealth:
    async def test_health(self, client: AsyncClient):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    async def test_ready(self, client: AsyncClient):
        body = (await client.get("/ready")).json()
        assert body["status"] == "ready"
        assert body["checks"]["redis"] == "ok"

    async def test_version(self, client: AsyncClient):
        body = (await client.get("/version")).json()
        assert "version" in body
        assert "environment" in body

    async def test_request_id_echoed(self, client: AsyncClient):
        response = await client.get("/health", headers={"X-Request-Id": "abc-123"})
        assert response.headers["X-Request-Id"] == "abc-123"


def _limited_app(limit: int) -> FastAPI:
    app = FastAPI()

    @app.get("/ping")
    async def ping() -> dict[str, str]:
        return {"pong": "ok"}

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "healthy"}

    app.add_middleware(RateLimitMiddleware, requests_per_window=limit, window_seconds=60)
    app.add_middleware(RequestIdMiddleware)
    return app


class TestRateLimit:
    async def test_limit_enforced(self, redis_client):
        transport = ASGITransport(app=_limited_app(2))
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            first = await ac.get("/ping")
            assert first.headers["X-RateLimit-Remaining"] == "1"
            assert first.headers["X-RateLimit-Limit"] == "2"
            assert (await ac.get("/ping")).status_code == 200

            blocked = await ac.get("/ping")
            assert blocked.status_code == 429
            assert blocked.headers["Retry-After"] == "60"

    async def test_health_is_exempt(self, redis_client):
        transport = ASGITransport(app=_limited_app(1))
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            for _ in range(3):
                response = await ac.get("/health")
                assert response.status_code == 200
                assert "X-RateLimit-Limit" not in response.headers

    def test_websocket_paths_exempt(self):
        assert RateLimitMiddleware.is_exempt("/ws/rooms/12345")
        assert not RateLimitMiddleware.is_exempt("/api/v1/rooms")
