"""
tests/test_passwords.py -- Unit tests for auth/passwords.py.

Covers:
  - bcrypt hash/verify round trip with the configured cost factor
  - Malformed stored hashes are a mismatch, not an exception
  - equalize() runs without touching real hashes
  - Input past bcrypt's 72-byte limit is a ValidationError when hashing and a
    mismatch when verifying; spaces are significant
"""

from __future__ import annotations

import pytest

from auth.errors import ValidationError
from auth.passwords import MAX_PASSWORD_BYTES, PasswordHasher, hash_password, verify_password


def test_hash_and_verify() -> None:
    hashed = hash_password("s3cret-pass", rounds=4)
    assert hashed.startswith("$2")
    assert verify_password("s3cret-pass", hashed)
    assert not verify_password("wrong", hashed)


def test_cost_factor_is_applied() -> None:
    assert PasswordHasher(rounds=5).hash("x")[4:6] == "05"


def test_malformed_hash_is_mismatch() -> None:
    assert verify_password("anything", "not-a-bcrypt-hash") is False


def test_equalize_returns_nothing() -> None:
    assert PasswordHasher(rounds=4).equalize("whatever") is None


def test_exactly_72_bytes_is_accepted() -> None:
    plain = "a" * MAX_PASSWORD_BYTES
    assert verify_password(plain, hash_password(plain, rounds=4))


@pytest.mark.parametrize("plain", ["a" * 73, "é" * 40])
def test_over_72_bytes_is_rejected(plain: str) -> None:
    with pytest.raises(ValidationError) as exc_info:
        hash_password(plain, rounds=4)
    assert exc_info.value.status_code == 400
    assert exc_info.value.details == {"maxBytes": 72}


def test_verifying_oversized_input_is_a_mismatch() -> None:
    hashed = hash_password("a" * 72, rounds=4)
    assert verify_password("a" * 100, hashed) is False


def test_surrounding_whitespace_is_significant() -> None:
    hashed = hash_password("  spaced-pass  ", rounds=4)
    assert verify_password("  spaced-pass  ", hashed)
    assert not verify_password("spaced-pass", hashed)
