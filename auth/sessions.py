"""
auth/sessions.py -- Session Registry: refresh-token leases.

Only HMAC(raw refresh token) ever reaches the store, mirroring
password-hash-at-rest: a database dump yields no usable refresh tokens.

Rotation makes refresh tokens single-use. After rotate() the previous raw
token no longer hashes to any stored row, so a stolen token is dead once the
legitimate client has refreshed past it. It does not close the window where
an attacker uses the token before the legitimate client does.

Expiry is exclusive: a session whose expires_at equals now is expired.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from auth.errors import NotFoundError
from auth.models import Session
from auth.protocols import SessionStore
from auth.tokens import TokenIssuer

logger = logging.getLogger("novasanctum.auth")

DEFAULT_SESSION_SECONDS = 24 * 60 * 60


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionRegistry:
    def __init__(
        self,
        store: SessionStore,
        issuer: TokenIssuer,
        ttl_seconds: int = DEFAULT_SESSION_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._issuer = issuer
        self.ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock

    def create(
        self,
        user_id: int,
        raw_refresh_token: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> Session:
        session = Session(
            user_id=user_id,
            refresh_token_hash=self._issuer.hash_refresh_token(raw_refresh_token),
            expires_at=self._clock() + self.ttl,
            ip_address=ip_address or "unknown",
            user_agent=user_agent or "unknown",
        )
        return self._store.create_session(session)

    def rotate(self, session_id: int, new_raw_refresh_token: str, expected_hash: str | None = None) -> Session:
        """Replace the stored hash and renew expiry.

        Raises NotFoundError if the session is inactive, missing, or (when
        expected_hash is given) already rotated past that hash.
        """
        rotated = self._store.rotate_session(
            session_id,
            self._issuer.hash_refresh_token(new_raw_refresh_token),
            self._clock() + self.ttl,
            expected_hash=expected_hash,
        )
        if not rotated:
            raise NotFoundError("Session not found")
        session = self._store.get_session(session_id)
        if session is None:
            raise NotFoundError("Session not found")
        return session

    def get(self, session_id: int) -> Session | None:
        return self._store.get_session(session_id)

    def find_active_by_raw_token(self, raw_token: str) -> Session | None:
        if not raw_token:
            return None
        return self._store.get_active_session_by_hash(self._issuer.hash_refresh_token(raw_token), self._clock())

    def revoke(self, session_id: int) -> None:
        self._store.deactivate_session(session_id)

    def revoke_all(self, user_id: int) -> int:
        return self._store.deactivate_user_sessions(user_id)

    def purge_expired(self) -> int:
        count = self._store.delete_expired_sessions(self._clock())
        logger.info("Purged %d expired sessions", count)
        return count

    def count_active(self) -> int:
        return self._store.count_active_sessions(self._clock())
