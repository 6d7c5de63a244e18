"""
auth/tokens.py -- Access token signing and refresh token generation (the Token Issuer).

Security design decisions:
  Access tokens: python-jose with HS256. Claims are deliberately thin --
       sub/user_id, type="access", iat, exp, jti. Roles and permissions are
       NOT embedded; the orchestrator re-reads them from the credential store
       on every verification so role changes apply to already-issued tokens.
       Access tokens are stateless and are not revocable before expiry.

  Expiry: checked here against the injected clock rather than by jose, so
       that every time decision in the auth layer (lock cooldown, session
       expiry, token expiry) is made against one clock. exp <= now is expired.

  Refresh tokens: secrets.token_urlsafe(48) gives 384 bits of entropy and no
       embedded claims -- possession is the capability. Stored and looked up
       only as HMAC-SHA256(SECRET_KEY, raw): deterministic for O(1) lookup,
       useless to an attacker holding a database dump without SECRET_KEY.

Layer rule: no imports from api/ or core/. The secret and TTLs are passed in.
"""

from __future__ import annotations

import hashlib
import hmac
import math
import secrets
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from auth.errors import InvalidTokenError, TokenExpiredError
from auth.models import TokenPair

ALGORITHM = "HS256"
ACCESS_TOKEN_TYPE = "access"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenIssuer:
    """Issues and verifies access tokens; mints and hashes refresh tokens.

    Usage:
        issuer = TokenIssuer(secret_key, access_ttl_seconds=900, refresh_ttl_seconds=86400)
        pair = issuer.issue(user_id=42)
        claims = issuer.verify(pair.access_token)   # {"user_id": 42, ...}
    """

    def __init__(
        self,
        secret_key: str,
        access_ttl_seconds: int,
        refresh_ttl_seconds: int,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._secret_key = secret_key
        self.access_ttl_seconds = access_ttl_seconds
        self.refresh_ttl_seconds = refresh_ttl_seconds
        self._clock = clock

    # ------------------------------------------------------------------
    # Access tokens
    # ------------------------------------------------------------------

    def create_access_token(self, user_id: int) -> str:
        now = self._clock()
        payload = {
            "sub": str(user_id),
            "user_id": user_id,
            "type": ACCESS_TOKEN_TYPE,
            "iat": int(now.timestamp()),
            # Rounded up so the token never dies before the advertised expires_in.
            "exp": math.ceil((now + timedelta(seconds=self.access_ttl_seconds)).timestamp()),
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(payload, self._secret_key, algorithm=ALGORITHM)

    def verify(self, token: str) -> dict:
        """Decode an access token and return its claims.

        Raises InvalidTokenError on a bad signature, malformed token, missing
        claims or a non-access token type; TokenExpiredError once exp <= now.
        """
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[ALGORITHM],
                options={"verify_exp": False},
            )
        except JWTError as exc:
            raise InvalidTokenError() from exc
        if payload.get("type") != ACCESS_TOKEN_TYPE:
            raise InvalidTokenError()
        user_id = payload.get("user_id")
        exp = payload.get("exp")
        if not isinstance(user_id, int) or not isinstance(exp, (int, float)):
            raise InvalidTokenError()
        if exp <= self._clock().timestamp():
            raise TokenExpiredError()
        return payload

    # ------------------------------------------------------------------
    # Refresh tokens
    # ------------------------------------------------------------------

    @staticmethod
    def new_refresh_token() -> str:
        return secrets.token_urlsafe(48)

    def hash_refresh_token(self, raw_token: str) -> str:
        """Return HMAC-SHA256(SECRET_KEY, raw_token) as a 64-char hex string."""
        return hmac.new(self._secret_key.encode(), raw_token.encode(), hashlib.sha256).hexdigest()

    # ------------------------------------------------------------------
    # Pairs
    # ------------------------------------------------------------------

    def issue(self, user_id: int) -> TokenPair:
        return TokenPair(
            access_token=self.create_access_token(user_id),
            refresh_token=self.new_refresh_token(),
            expires_in=self.access_ttl_seconds,
            refresh_expires_in=self.refresh_ttl_seconds,
        )
