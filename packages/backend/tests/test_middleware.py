"""Tests for HTTP middleware — security headers, request IDs, rate limiting."""

import pytest
from httpx import ASGITransport, AsyncClient

from conftest import make_settings
from muta.main import create_app


@pytest.mark.asyncio
async def test_security_headers_on_health(client):
    """Health endpoint returns security headers."""
    r = await client.get("/health")
    assert r.status_code == 200
    assert r.headers["X-Content-Type-Options"] == "nosniff"
    assert r.headers["X-Frame-Options"] == "DENY"
    assert r.headers["Referrer-Policy"] == "same-origin"
    assert "Cache-Control" not in r.headers


@pytest.mark.asyncio
async def test_api_responses_are_not_cached(client):
    r = await client.get("/api/orders")
    assert r.headers["Cache-Control"] == "no-cache, no-store, must-revalidate"
    assert r.headers["Pragma"] == "no-cache"


@pytest.mark.asyncio
async def test_request_id_generated(client):
    """Each request gets a unique X-Request-ID header."""
    r1 = await client.get("/health")
    r2 = await client.get("/health")
    assert "X-Request-ID" in r1.headers
    assert r1.headers["X-Request-ID"] != r2.headers["X-Request-ID"]


@pytest.mark.asyncio
async def test_request_id_propagated(client):
    """Incoming X-Request-ID is propagated through the response."""
    custom_id = "test-trace-12345"
    r = await client.get("/health", headers={"X-Request-ID": custom_id})
    assert r.headers["X-Request-ID"] == custom_id


@pytest.mark.asyncio
async def test_no_hsts_on_http(client):
    """HSTS header is NOT set on HTTP connections (only HTTPS)."""
    r = await client.get("/health")
    assert "Strict-Transport-Security" not in r.headers


@pytest.mark.asyncio
async def test_rate_limit_returns_429():
    app = create_app(make_settings(rate_limit_rpm=3))
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        for _ in range(3):
            r = await c.get("/api/orders")
            assert r.status_code == 200
        r = await c.get("/api/orders")

        assert r.status_code == 429
        assert r.headers["Retry-After"] == "60"
        assert r.json()["code"] == "RATE_LIMIT_EXCEEDED"

        # Liveness checks are never limited
        r = await c.get("/health")
        assert r.status_code == 200


@pytest.mark.asyncio
async def test_cors_preflight(client):
    r = await client.options(
        "/api/orders",
        headers={
            "Origin": "http://localhost:3000",
            "Access-Control-Request-Method": "POST",
        },
    )
    assert r.headers["access-control-allow-origin"] == "http://localhost:3000"
