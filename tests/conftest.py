"""
tests/conftest.py -- Shared test fixtures for NovaSanctum unit and integration tests.

This module provides:
  - FakeClock / clock: a controllable UTC clock injected into every component
  - make_settings(): Settings with a fixed key and cheap bcrypt rounds
  - stores / service: file-backed stores and an AuthService per test (tmp_path)
  - make_user: creates an account through the service
  - api_client: TestClient over the real app with a patched lifespan

Design: the integration fixture uses named shared-memory SQLite URIs (not
plain :memory:) because TestClient runs sync route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread. The named URI format
(file:name?mode=memory&cache=shared&uri=true) shares one in-memory instance
across all connections in the same process.

DEBUG and RATE_LIMIT_ENABLED must be set before any api/ import: api.limiter
reads settings at import time.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

# CRITICAL: set before any api/auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.models import User
from auth.service import AuthService
from auth.store import AuthStores, open_stores
from core.config import Settings

TEST_SECRET_KEY = "test-secret-key-0123456789abcdef-0123456789abcdef"
START = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock that only moves when a test advances it."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# Settings / stores / service
# ---------------------------------------------------------------------------


def make_settings(**overrides) -> Settings:
    """Settings for tests. bcrypt_rounds=4 keeps hashing fast."""
    values = {"debug": True, "secret_key": TEST_SECRET_KEY, "bcrypt_rounds": 4}
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def stores(tmp_path: Path, clock: FakeClock) -> Generator[AuthStores, None, None]:
    """Fresh file-backed stores per test. Default roles are seeded on open."""
    s = open_stores(f"sqlite:///{tmp_path / 'auth.db'}", timeout=1.0, clock=clock)
    yield s
    s.close()


@pytest.fixture
def service(settings: Settings, stores: AuthStores, clock: FakeClock) -> AuthService:
    return AuthService.from_settings(settings, stores, clock=clock)


@pytest.fixture
def make_user(service: AuthService) -> Callable[..., User]:
    """Factory: make_user("alice@example.com", "password123", roles=("user",))."""

    def _make(
        email: str = "alice@example.com",
        password: str = "correct-horse-1",
        roles: tuple[str, ...] = ("user",),
        username: str | None = None,
    ) -> User:
        return service.register_user(email, username or email.split("@")[0], password, roles)

    return _make


# ---------------------------------------------------------------------------
# Integration client
# ---------------------------------------------------------------------------


@dataclass
class ApiContext:
    client: TestClient
    service: AuthService
    stores: AuthStores
    admin_id: int
    admin_token: str
    user_id: int
    user_token: str

    def auth(self, token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"}


ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "adminpass123"
USER_EMAIL = "user@example.com"
USER_PASSWORD = "userpass123"


def _patch_lifespan(settings: Settings, stores: AuthStores, service: AuthService):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so TestClient routes see an
    isolated DB. The maintenance task is a long-sleeping coroutine so shutdown
    has a real asyncio.Task to cancel.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.settings = settings
        app.state.stores = stores
        app.state.auth_service = service
        app.state.maintenance_tasks = [asyncio.create_task(asyncio.sleep(99999))]
        yield
        for task in app.state.maintenance_tasks:
            task.cancel()
        await asyncio.gather(*app.state.maintenance_tasks, return_exceptions=True)

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request: pytest.FixtureRequest) -> Generator[ApiContext, None, None]:
    """Yield an ApiContext for API integration tests.

    One admin and one plain user exist before the client starts; their access
    tokens are minted directly from the service's issuer. The DB name is
    derived from the test module so modules never share state.
    """
    suffix = request.module.__name__.rsplit(".", 1)[-1]
    settings = make_settings(database_url=f"sqlite:///file:test_auth_{suffix}?mode=memory&cache=shared&uri=true")
    stores = open_stores(settings.database_url, settings.store_timeout_seconds)
    service = AuthService.from_settings(settings, stores)

    admin = service.register_user(ADMIN_EMAIL, "admin", ADMIN_PASSWORD, roles=("admin",))
    user = service.register_user(USER_EMAIL, "user", USER_PASSWORD, roles=("user",))

    app.router.lifespan_context = _patch_lifespan(settings, stores, service)

    with TestClient(app, raise_server_exceptions=False) as client:
        yield ApiContext(
            client=client,
            service=service,
            stores=stores,
            admin_id=admin.id,
            admin_token=service.issuer.create_access_token(admin.id),
            user_id=user.id,
            user_token=service.issuer.create_access_token(user.id),
        )

    stores.close()
