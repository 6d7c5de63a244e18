"""
tests/test_sessions.py -- Unit tests for auth/sessions.py (SessionRegistry).

Covers:
  - Only the refresh token hash is stored
  - Lookup boundary: active while now < expires_at, gone at expires_at
  - rotate: old token stops resolving, new one resolves, expiry renewed
  - rotate with an expected hash only succeeds once per token
  - revoke / revoke_all / purge_expired / count_active
"""

from __future__ import annotations

import pytest

from auth.errors import NotFoundError
from auth.models import User
from auth.sessions import SessionRegistry
from auth.store import AuthStores
from auth.tokens import TokenIssuer
from conftest import TEST_SECRET_KEY, FakeClock


@pytest.fixture
def registry(stores: AuthStores, clock: FakeClock) -> SessionRegistry:
    issuer = TokenIssuer(TEST_SECRET_KEY, 900, 3600, clock=clock)
    return SessionRegistry(stores.sessions, issuer, ttl_seconds=3600, clock=clock)


@pytest.fixture
def user_id(stores: AuthStores) -> int:
    return stores.users.create_user(User(email="s@example.com", username="s", password_hash="x"), ["user"])


def test_create_stores_hash_only(registry: SessionRegistry, user_id: int, clock: FakeClock) -> None:
    session = registry.create(user_id, "raw-token", "10.0.0.1", "ua")
    assert session.refresh_token_hash != "raw-token"
    assert len(session.refresh_token_hash) == 64
    assert session.expires_at == clock.now + registry.ttl


def test_missing_ip_and_agent_become_unknown(registry: SessionRegistry, user_id: int) -> None:
    session = registry.create(user_id, "raw-token")
    assert (session.ip_address, session.user_agent) == ("unknown", "unknown")


def test_expiry_boundary_is_exclusive(registry: SessionRegistry, user_id: int, clock: FakeClock) -> None:
    registry.create(user_id, "raw-token")
    clock.advance(3599)
    assert registry.find_active_by_raw_token("raw-token") is not None
    clock.advance(1)
    assert registry.find_active_by_raw_token("raw-token") is None


def test_rotate_invalidates_old_token(registry: SessionRegistry, user_id: int, clock: FakeClock) -> None:
    session = registry.create(user_id, "old-token")
    clock.advance(1000)
    rotated = registry.rotate(session.id, "new-token")
    assert rotated.id == session.id
    assert rotated.expires_at == clock.now + registry.ttl
    assert registry.find_active_by_raw_token("old-token") is None
    assert registry.find_active_by_raw_token("new-token").id == session.id


def test_rotate_revoked_session_raises(registry: SessionRegistry, user_id: int) -> None:
    session = registry.create(user_id, "raw-token")
    registry.revoke(session.id)
    with pytest.raises(NotFoundError):
        registry.rotate(session.id, "new-token")


def test_rotate_with_stale_hash_raises(registry: SessionRegistry, user_id: int) -> None:
    session = registry.create(user_id, "raw-token")
    registry.rotate(session.id, "first", expected_hash=session.refresh_token_hash)
    with pytest.raises(NotFoundError):
        registry.rotate(session.id, "second", expected_hash=session.refresh_token_hash)
    assert registry.find_active_by_raw_token("first").id == session.id
    assert registry.find_active_by_raw_token("second") is None


def test_get_returns_inactive_sessions(registry: SessionRegistry, user_id: int) -> None:
    session = registry.create(user_id, "raw-token")
    registry.revoke(session.id)
    assert registry.get(session.id).is_active is False
    assert registry.get(999999) is None


def test_empty_token_never_matches(registry: SessionRegistry) -> None:
    assert registry.find_active_by_raw_token("") is None


def test_revoke_all(registry: SessionRegistry, user_id: int) -> None:
    registry.create(user_id, "a")
    registry.create(user_id, "b")
    assert registry.revoke_all(user_id) == 2
    assert registry.find_active_by_raw_token("a") is None
    assert registry.count_active() == 0


def test_purge_expired(registry: SessionRegistry, stores: AuthStores, user_id: int, clock: FakeClock) -> None:
    old = registry.create(user_id, "old")
    clock.advance(1800)
    fresh = registry.create(user_id, "fresh")
    clock.advance(1801)
    assert registry.count_active() == 1
    assert registry.purge_expired() == 1
    assert stores.sessions.get_session(old.id) is None
    assert stores.sessions.get_session(fresh.id) is not None
