"""
tests/test_tokens.py -- Unit tests for auth/tokens.py (TokenIssuer).

Covers:
  - Access token claims: sub, user_id, type, iat, exp, unique jti
  - Expiry is judged against the injected clock; exp == now is expired
  - Tampered, foreign-key and non-access tokens are InvalidTokenError
  - Refresh tokens are random, and their HMAC is deterministic per key
"""

from __future__ import annotations

import pytest
from jose import jwt

from auth.errors import AuthenticationError, InvalidTokenError, TokenExpiredError
from auth.tokens import ALGORITHM, TokenIssuer
from conftest import TEST_SECRET_KEY, FakeClock


@pytest.fixture
def issuer(clock: FakeClock) -> TokenIssuer:
    return TokenIssuer(TEST_SECRET_KEY, access_ttl_seconds=900, refresh_ttl_seconds=86400, clock=clock)


class TestAccessTokens:
    def test_claims(self, issuer: TokenIssuer, clock: FakeClock) -> None:
        claims = issuer.verify(issuer.create_access_token(42))
        assert claims["user_id"] == 42
        assert claims["sub"] == "42"
        assert claims["type"] == "access"
        assert claims["iat"] == int(clock.now.timestamp())
        assert claims["exp"] - claims["iat"] == 900

    def test_jti_is_unique(self, issuer: TokenIssuer) -> None:
        a = issuer.verify(issuer.create_access_token(1))
        b = issuer.verify(issuer.create_access_token(1))
        assert a["jti"] != b["jti"]

    def test_valid_until_just_before_expiry(self, issuer: TokenIssuer, clock: FakeClock) -> None:
        token = issuer.create_access_token(1)
        clock.advance(899)
        assert issuer.verify(token)["user_id"] == 1

    def test_expired_at_exact_exp(self, issuer: TokenIssuer, clock: FakeClock) -> None:
        token = issuer.create_access_token(1)
        clock.advance(900)
        with pytest.raises(TokenExpiredError):
            issuer.verify(token)

    def test_expired_is_an_authentication_error(self, issuer: TokenIssuer, clock: FakeClock) -> None:
        token = issuer.create_access_token(1)
        clock.advance(3600)
        with pytest.raises(AuthenticationError) as exc_info:
            issuer.verify(token)
        assert exc_info.value.status_code == 401

    def test_tampered_token_rejected(self, issuer: TokenIssuer) -> None:
        token = issuer.create_access_token(1)
        head, payload, sig = token.split(".")
        tampered = ".".join([head, payload, sig[:-2] + ("AA" if not sig.endswith("AA") else "BB")])
        with pytest.raises(InvalidTokenError):
            issuer.verify(tampered)

    def test_other_key_rejected(self, issuer: TokenIssuer, clock: FakeClock) -> None:
        other = TokenIssuer("another-secret-key-that-is-long-enough!!", 900, 86400, clock=clock)
        with pytest.raises(InvalidTokenError):
            issuer.verify(other.create_access_token(1))

    def test_wrong_type_rejected(self, issuer: TokenIssuer, clock: FakeClock) -> None:
        ts = int(clock.now.timestamp())
        token = jwt.encode(
            {"sub": "1", "user_id": 1, "type": "refresh", "iat": ts, "exp": ts + 900},
            TEST_SECRET_KEY,
            algorithm=ALGORITHM,
        )
        with pytest.raises(InvalidTokenError):
            issuer.verify(token)

    def test_missing_user_id_rejected(self, issuer: TokenIssuer, clock: FakeClock) -> None:
        ts = int(clock.now.timestamp())
        token = jwt.encode({"sub": "1", "type": "access", "iat": ts, "exp": ts + 900}, TEST_SECRET_KEY, ALGORITHM)
        with pytest.raises(InvalidTokenError):
            issuer.verify(token)

    def test_garbage_rejected(self, issuer: TokenIssuer) -> None:
        with pytest.raises(InvalidTokenError):
            issuer.verify("not-a-token")


class TestRefreshTokens:
    def test_refresh_tokens_are_random(self) -> None:
        assert TokenIssuer.new_refresh_token() != TokenIssuer.new_refresh_token()
        assert len(TokenIssuer.new_refresh_token()) >= 64

    def test_hash_is_deterministic_hex(self, issuer: TokenIssuer) -> None:
        digest = issuer.hash_refresh_token("abc")
        assert digest == issuer.hash_refresh_token("abc")
        assert len(digest) == 64
        assert digest != "abc"

    def test_hash_depends_on_key(self, issuer: TokenIssuer, clock: FakeClock) -> None:
        other = TokenIssuer("another-secret-key-that-is-long-enough!!", 900, 86400, clock=clock)
        assert other.hash_refresh_token("abc") != issuer.hash_refresh_token("abc")

    def test_issue_pair(self, issuer: TokenIssuer) -> None:
        pair = issuer.issue(7)
        assert pair.expires_in == 900
        assert pair.refresh_expires_in == 86400
        assert pair.token_type == "Bearer"
        assert issuer.verify(pair.access_token)["user_id"] == 7


class TestSubSecondClock:
    def test_exp_is_rounded_up(self, clock: FakeClock) -> None:
        clock.advance(0.5)
        issuer = TokenIssuer(TEST_SECRET_KEY, access_ttl_seconds=900, refresh_ttl_seconds=86400, clock=clock)
        claims = issuer.verify(issuer.create_access_token(1))
        assert claims["exp"] == int(clock.now.timestamp()) + 901

    def test_token_lives_for_the_full_advertised_ttl(self, clock: FakeClock) -> None:
        clock.advance(0.5)
        issuer = TokenIssuer(TEST_SECRET_KEY, access_ttl_seconds=900, refresh_ttl_seconds=86400, clock=clock)
        token = issuer.create_access_token(1)
        clock.advance(899.9)
        assert issuer.verify(token)["user_id"] == 1
        clock.advance(0.6)
        with pytest.raises(TokenExpiredError):
            issuer.verify(token)
