"""
auth/passwords.py -- bcrypt password hashing (the Password Verifier).

bcrypt is used directly rather than through passlib: passlib's wrap-bug
detection builds a password longer than 72 bytes, which bcrypt 4.x rejects.
bcrypt 5 raises ValueError for any such input, so hash_password refuses it
up front as a ValidationError; verify_password treats it as a mismatch.

The cost factor comes from Settings.bcrypt_rounds and is passed in by the
caller; no module-level configuration is read here.
"""

from __future__ import annotations

import bcrypt

from auth.errors import ValidationError

DEFAULT_ROUNDS = 12
MAX_PASSWORD_BYTES = 72


def hash_password(plain: str, rounds: int = DEFAULT_ROUNDS) -> str:
    """Return a bcrypt hash of the given plaintext password."""
    encoded = plain.encode("utf-8")
    if len(encoded) > MAX_PASSWORD_BYTES:
        raise ValidationError(
            f"Password must be at most {MAX_PASSWORD_BYTES} bytes",
            details={"maxBytes": MAX_PASSWORD_BYTES},
        )
    return bcrypt.hashpw(encoded, bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A malformed stored hash is a mismatch, not an error. So is input past
    72 bytes: hash_password never accepts it.
    """
    encoded = plain.encode("utf-8")
    if len(encoded) > MAX_PASSWORD_BYTES:
        return False
    try:
        return bcrypt.checkpw(encoded, hashed.encode("utf-8"))
    except ValueError:
        return False


class PasswordHasher:
    """Binds a cost factor and holds the timing-equalization dummy hash.

    The dummy hash is computed once at construction so the first failed
    login is not measurably slower than later ones. Callers run
    equalize() whenever a login attempt ends without a real bcrypt compare
    (unknown email, locked account), so response time does not reveal why.
    """

    def __init__(self, rounds: int = DEFAULT_ROUNDS) -> None:
        self.rounds = rounds
        self._dummy_hash = hash_password("novasanctum_timing_dummy", rounds)

    def hash(self, plain: str) -> str:
        return hash_password(plain, self.rounds)

    def verify(self, plain: str, hashed: str) -> bool:
        return verify_password(plain, hashed)

    def equalize(self, plain: str) -> None:
        verify_password(plain, self._dummy_hash)
