"""Test fixtures — a fresh app (fresh in-memory world) per test.

Learn: create_app() builds the store, session registry, notifier and
service on app.state, so every test gets isolated state just by building
a new app. No database, no rollback tricks.

Unit tests use FakeClock (time only moves when the test says so) and
FakeTransport (records frames instead of writing to a socket).
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from muta.config import Settings
from muta.main import create_app

TEST_ORIGIN = "http://localhost:3000"
TEST_API_KEY = "s3cret-key-for-tests"


def make_settings(**overrides: Any) -> Settings:
    """Test settings: no sample data, generous HTTP limits, quiet logs."""
    values: dict[str, Any] = {
        "environment": "test",
        "cors_origins": [TEST_ORIGIN],
        "seed_sample_orders": 0,
        "rate_limit_rpm": 10_000,
        "log_level": "warning",
    }
    values.update(overrides)
    return Settings(**values)


class FakeClock:
    """Callable clock for code that takes `clock=`."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, **kwargs: float) -> None:
        self.now += timedelta(seconds=seconds, **kwargs)


class FakeTransport:
    """Stands in for a WebSocket: records sent frames and the close call."""

    def __init__(self, fail: bool = False):
        self.sent: list[dict] = []
        self.closed_with: Optional[tuple[int, Optional[str]]] = None
        self.fail = fail

    async def send_json(self, data: Any) -> None:
        if self.fail:
            raise ConnectionError("socket gone")
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None:
        self.closed_with = (code, reason)

    def types(self) -> list[str]:
        return [frame["type"] for frame in self.sent]


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def transport_factory():
    """Build FakeTransports: transport_factory() or transport_factory(fail=True)."""
    return FakeTransport


@pytest.fixture()
def app():
    return create_app(make_settings())


@pytest_asyncio.fixture()
async def client(app):
    """HTTP client bound to a fresh app instance."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
