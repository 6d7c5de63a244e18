"""
auth/lockout.py -- Lockout Policy: consecutive-failure counting and timed locks.

  record_failure(user)  -- atomic counter increment; locks at the threshold
  record_success(id)    -- clears lock state and resets the counter to 0
  is_locked(user)       -- True only while locked_until is in the future
  unlock(id)            -- administrative reset

Lock expiry is lazy: nothing clears is_locked when the cooldown elapses.
is_locked() ignores a stale flag, and record_failure() clears a stale lock
before counting, so the account gets a fresh run of attempts after cooldown.

Counting is best-effort under concurrency. Two simultaneous failures each
increment atomically in SQL; the lock may be applied twice, which is
harmless. This is not a hard security boundary and takes no lock.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from auth.audit import AuditLog
from auth.models import AuditAction, LockState, User
from auth.protocols import CredentialStore

logger = logging.getLogger("novasanctum.auth")
security_logger = logging.getLogger("novasanctum.security")

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_LOCKOUT_SECONDS = 15 * 60


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LockoutPolicy:
    def __init__(
        self,
        store: CredentialStore,
        audit: AuditLog,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        lockout_seconds: int = DEFAULT_LOCKOUT_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._audit = audit
        self.max_attempts = max_attempts
        self.lockout_duration = timedelta(seconds=lockout_seconds)
        self._clock = clock

    def is_locked(self, user: User) -> bool:
        return bool(user.is_locked and user.locked_until is not None and user.locked_until > self._clock())

    def _has_stale_lock(self, user: User) -> bool:
        return user.is_locked and not self.is_locked(user)

    def record_failure(self, user: User) -> LockState:
        if self._has_stale_lock(user):
            self._store.update_user(user.id, is_locked=False, locked_until=None, failed_login_attempts=0)

        attempts = self._store.increment_failed_logins(user.id)
        if attempts < self.max_attempts:
            return LockState(failed_attempts=attempts, is_locked=False)

        locked_until = self._clock() + self.lockout_duration
        self._store.update_user(user.id, is_locked=True, locked_until=locked_until)
        security_logger.warning(
            "Account locked after %d failed login attempts (user_id=%s, until=%s)",
            attempts,
            user.id,
            locked_until.isoformat(),
        )
        self._audit.record(
            AuditAction.ACCOUNT_LOCKED,
            user_id=user.id,
            details={"failedAttempts": attempts, "lockedUntil": locked_until.isoformat()},
        )
        return LockState(failed_attempts=attempts, is_locked=True, locked_until=locked_until)

    def record_success(self, user_id: int) -> None:
        self._store.update_user(user_id, failed_login_attempts=0, is_locked=False, locked_until=None)

    def unlock(self, user_id: int, actor_id: int | None = None) -> None:
        self.record_success(user_id)
        logger.info("Account unlocked (user_id=%s, by=%s)", user_id, actor_id)
        self._audit.record(AuditAction.ACCOUNT_UNLOCKED, user_id=user_id, details={"unlockedBy": actor_id})
