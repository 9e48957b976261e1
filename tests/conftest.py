"""
pytest configuration and shared fixtures for the SafeMessage API tests.

Key concern: tests must not require a live Redis or real wall-clock time.
We achieve this by:
  1. Leaving REDIS_URL empty so nothing ever dials out.
  2. Installing a fresh MemoryStore into store_client for every test.
  3. Driving every component (and the app, via the get_clock dependency
     override) from a FakeClock that tests advance explicitly.
"""

import os

import pytest
from httpx import ASGITransport, AsyncClient

# Set env vars BEFORE importing the app so Settings picks them up correctly
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("REDIS_URL", "")
os.environ.setdefault("JWT_SECRET", "test-secret-not-for-production")

from safemessage.core.errors import StoreUnavailable  # noqa: E402
from safemessage.core.kv import MemoryStore  # noqa: E402
from safemessage.core.tokens import TokenCodec  # noqa: E402
from safemessage.services.sessions import ProviderProfile, SessionService  # noqa: E402

# 2023-11-14T22:13:00Z, aligned to a 60-second window boundary.
BASE_TIME = 1_699_999_980.0


class FakeClock:
    def __init__(self, now: float = BASE_TIME):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FailingStore(MemoryStore):
    """MemoryStore that raises StoreUnavailable for keys in the given namespaces."""

    def __init__(self, clock, failing_namespaces=()):
        super().__init__(clock)
        self.failing = tuple(f"{ns}:" for ns in failing_namespaces)

    def _check(self, operation, key):
        if self.failing and str(key).startswith(self.failing):
            raise StoreUnavailable(operation, str(key), ConnectionError("connection refused"))

    async def get(self, key):
        self._check("get", key)
        return await super().get(key)

    async def set(self, key, value, ttl=None):
        self._check("set", key)
        await super().set(key, value, ttl)

    async def delete(self, key):
        self._check("delete", key)
        await super().delete(key)


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def store(clock):
    return MemoryStore(clock=clock)


@pytest.fixture(autouse=True)
def app_store(store):
    """Point the process-wide store holder at this test's MemoryStore."""
    import safemessage.core.kv as kv_module

    original = kv_module.store_client.store
    kv_module.store_client.store = store
    yield store
    kv_module.store_client.store = original


@pytest.fixture()
def codec(clock):
    return TokenCodec(clock=clock)


@pytest.fixture()
def sessions(store, codec, clock):
    return SessionService(store, codec, clock=clock)


@pytest.fixture()
def sign_in(sessions):
    """Open a session the way the OAuth callback would; returns IssuedSession."""

    async def _sign_in(account_id="acct-1", email="user@example.com"):
        return await sessions.open_session(
            ProviderProfile(account_id=account_id, email=email, display_name="Test User")
        )

    return _sign_in


@pytest.fixture()
async def client(clock):
    """
    HTTPX async test client wired to the FastAPI app.

    The slowapi limiter is reset so per-IP counters don't bleed between tests.
    """
    from safemessage.core.rate_limit import limiter
    from safemessage.main import app
    from safemessage.routes.deps import get_clock

    limiter.reset()
    app.dependency_overrides[get_clock] = lambda: clock
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}
