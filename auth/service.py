"""
auth/service.py -- Authentication Orchestrator.

AuthService wires the credential store, password verifier, token issuer,
session registry, lockout policy and audit log together. It is an explicitly
constructed component -- api/main.py builds one in the lifespan and tears it
down on shutdown. There is no module-level instance.

Login state machine (each step gated on the previous one):

    START -> LOOKUP -> LOCK_CHECK -> VERIFY_PASSWORD -> ISSUE
                 \            \              \
                  +------------+--------------+--> FAIL

Every FAIL writes LOGIN_FAILED with the true FailureReason and raises the
same AuthenticationError("Invalid credentials"). Locked accounts get the
same generic message as a wrong password, so callers cannot enumerate
accounts or discover lock state. Side effects (counter increments, locking)
still happen behind the uniform message.

StoreError anywhere in a flow is an internal failure, never a credential
failure: it is logged, audited as INTERNAL_ERROR, and re-raised as
InternalError (500).
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, NoReturn

from auth.audit import AuditLog
from auth.authorization import DEFAULT_ADMIN_ROLES
from auth.errors import (
    AuthenticationError,
    InternalError,
    InvalidTokenError,
    NotFoundError,
    StoreError,
    ValidationError,
)
from auth.lockout import LockoutPolicy
from auth.models import AuditAction, FailureReason, Identity, LoginResult, Session, TokenPair, User
from auth.passwords import PasswordHasher
from auth.protocols import AuditSink, CredentialStore, SessionStore
from auth.sessions import SessionRegistry
from auth.tokens import TokenIssuer

if TYPE_CHECKING:
    from auth.store import AuthStores
    from core.config import Settings

logger = logging.getLogger("novasanctum.auth")
security_logger = logging.getLogger("novasanctum.security")

INVALID_CREDENTIALS = "Invalid credentials"
INVALID_REFRESH_TOKEN = "Invalid or expired refresh token"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuthService:
    def __init__(
        self,
        users: CredentialStore,
        session_store: SessionStore,
        audit_sink: AuditSink,
        issuer: TokenIssuer,
        hasher: PasswordHasher,
        *,
        max_login_attempts: int = 5,
        lockout_seconds: int = 15 * 60,
        session_ttl_seconds: int = 24 * 60 * 60,
        refresh_ip_policy: str = "log",
        admin_roles: Iterable[str] = DEFAULT_ADMIN_ROLES,
        policy: dict[str, Any] | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.users = users
        self.issuer = issuer
        self.hasher = hasher
        self.audit = AuditLog(audit_sink, clock)
        self.lockout = LockoutPolicy(users, self.audit, max_login_attempts, lockout_seconds, clock)
        self.sessions = SessionRegistry(session_store, issuer, session_ttl_seconds, clock)
        self.refresh_ip_policy = refresh_ip_policy
        self.admin_roles = tuple(admin_roles)
        self.policy = dict(policy or {})
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        stores: AuthStores,
        clock: Callable[[], datetime] = _utcnow,
    ) -> AuthService:
        issuer = TokenIssuer(
            settings.secret_key,
            access_ttl_seconds=settings.access_token_expire_seconds,
            refresh_ttl_seconds=settings.session_expire_seconds,
            clock=clock,
        )
        return cls(
            stores.users,
            stores.sessions,
            stores.audit,
            issuer,
            PasswordHasher(settings.bcrypt_rounds),
            max_login_attempts=settings.max_login_attempts,
            lockout_seconds=settings.lockout_duration_seconds,
            session_ttl_seconds=settings.session_expire_seconds,
            refresh_ip_policy=settings.refresh_ip_policy,
            admin_roles=settings.admin_roles,
            policy=settings.policy_summary(),
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _internal_errors(
        self,
        operation: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> Iterator[None]:
        try:
            yield
        except StoreError as exc:
            logger.error("Internal error during %s: %s", operation, exc)
            self.audit.record(
                AuditAction.INTERNAL_ERROR,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"operation": operation},
            )
            raise InternalError() from exc

    def _fail_login(
        self,
        reason: FailureReason,
        email: str,
        ip_address: str | None,
        user_agent: str | None,
        user_id: int | None = None,
        **extra: Any,
    ) -> NoReturn:
        self.audit.record(
            AuditAction.LOGIN_FAILED,
            user_id=user_id,
            ip_address=ip_address,
            user_agent=user_agent,
            details={"email": email, "reason": reason.value, "success": False, **extra},
        )
        security_logger.warning("Login failed (reason=%s, ip=%s)", reason.value, ip_address)
        raise AuthenticationError(INVALID_CREDENTIALS)

    def to_identity(self, user: User) -> Identity:
        return Identity(
            id=user.id,
            email=user.email,
            username=user.username,
            roles=list(user.roles),
            permissions=self.users.get_permissions(user.roles),
            is_active=user.is_active,
            last_login_at=user.last_login_at,
            created_at=user.created_at,
        )

    # ------------------------------------------------------------------
    # Login / refresh / logout
    # ------------------------------------------------------------------

    def authenticate(
        self,
        email: str,
        password: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> LoginResult:
        """Run the login state machine. Raises AuthenticationError on any FAIL."""
        email = email.strip().lower()
        with self._internal_errors("login", ip_address, user_agent):
            # LOOKUP
            user = self.users.get_by_email(email)
            if user is None:
                self.hasher.equalize(password)
                self._fail_login(FailureReason.USER_NOT_FOUND, email, ip_address, user_agent)

            # LOCK_CHECK
            if self.lockout.is_locked(user):
                self.hasher.equalize(password)
                self._fail_login(
                    FailureReason.ACCOUNT_LOCKED,
                    email,
                    ip_address,
                    user_agent,
                    user_id=user.id,
                    lockedUntil=user.locked_until.isoformat(),
                )

            # VERIFY_PASSWORD
            if not self.hasher.verify(password, user.password_hash):
                state = self.lockout.record_failure(user)
                self._fail_login(
                    FailureReason.INVALID_PASSWORD,
                    email,
                    ip_address,
                    user_agent,
                    user_id=user.id,
                    failedAttempts=state.failed_attempts,
                    locked=state.is_locked,
                )
            if not user.is_active:
                self._fail_login(FailureReason.ACCOUNT_INACTIVE, email, ip_address, user_agent, user_id=user.id)

            # ISSUE
            self.lockout.record_success(user.id)
            tokens = self.issuer.issue(user.id)
            session = self.sessions.create(user.id, tokens.refresh_token, ip_address, user_agent)
            now = self._clock()
            self.users.update_user(user.id, last_login_at=now)
            user.last_login_at = now
            self.audit.record(
                AuditAction.LOGIN,
                user_id=user.id,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"email": email, "success": True, "sessionId": session.id},
            )
            identity = self.to_identity(user)

        logger.info("User authenticated (user_id=%s, session_id=%s)", user.id, session.id)
        return LoginResult(tokens=tokens, identity=identity, session_id=session.id)

    def refresh(
        self,
        raw_refresh_token: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> TokenPair:
        """Exchange a refresh token for a new pair and rotate the session.

        The presented refresh token is dead once this returns.
        """
        with self._internal_errors("refresh", ip_address, user_agent):
            session = self.sessions.find_active_by_raw_token(raw_refresh_token)
            if session is None:
                security_logger.warning("Refresh rejected: unknown or expired token (ip=%s)", ip_address)
                raise AuthenticationError(INVALID_REFRESH_TOKEN)

            if ip_address and session.ip_address not in ("unknown", ip_address):
                self.audit.record(
                    AuditAction.REFRESH_TOKEN_IP_MISMATCH,
                    user_id=session.user_id,
                    ip_address=ip_address,
                    user_agent=user_agent,
                    details={
                        "sessionId": session.id,
                        "sessionIp": session.ip_address,
                        "requestIp": ip_address,
                        "policy": self.refresh_ip_policy,
                    },
                )
                security_logger.warning(
                    "Refresh IP mismatch (session_id=%s, session_ip=%s, request_ip=%s)",
                    session.id,
                    session.ip_address,
                    ip_address,
                )
                if self.refresh_ip_policy == "reject":
                    self.sessions.revoke(session.id)
                    raise AuthenticationError(INVALID_REFRESH_TOKEN)

            user = self.users.get_by_id(session.user_id)
            if user is None or not user.is_active:
                self.sessions.revoke(session.id)
                raise AuthenticationError(INVALID_REFRESH_TOKEN)

            tokens = self.issuer.issue(user.id)
            try:
                self.sessions.rotate(session.id, tokens.refresh_token, expected_hash=session.refresh_token_hash)
            except NotFoundError as exc:
                # Revoked or rotated by a concurrent request since the lookup.
                raise AuthenticationError(INVALID_REFRESH_TOKEN) from exc
            self.audit.record(
                AuditAction.TOKEN_REFRESH,
                user_id=user.id,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"sessionId": session.id, "success": True},
            )

        logger.info("Token refreshed (user_id=%s, session_id=%s)", user.id, session.id)
        return tokens

    def logout(
        self,
        identity: Identity,
        raw_refresh_token: str | None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> int | None:
        """Revoke the caller's session for this refresh token. Returns its id, if any.

        A refresh token belonging to another user is ignored, not revoked.
        """
        with self._internal_errors("logout", ip_address, user_agent):
            session = self.sessions.find_active_by_raw_token(raw_refresh_token) if raw_refresh_token else None
            session_id = None
            if session is not None and session.user_id == identity.id:
                self.sessions.revoke(session.id)
                session_id = session.id
            self.audit.record(
                AuditAction.LOGOUT,
                user_id=identity.id,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"sessionId": session_id},
            )
        logger.info("User logged out (user_id=%s, session_id=%s)", identity.id, session_id)
        return session_id

    def find_session(self, session_id: int) -> Session | None:
        with self._internal_errors("find_session"):
            return self.sessions.get(session_id)

    def revoke_session(
        self,
        session_id: int,
        actor: Identity,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> Session:
        """Deactivate one session by id. Ownership is checked by the route guard."""
        with self._internal_errors("revoke_session", ip_address, user_agent):
            session = self.sessions.get(session_id)
            if session is None:
                raise NotFoundError("Session not found")
            self.sessions.revoke(session.id)
            self.audit.record(
                AuditAction.LOGOUT,
                user_id=session.user_id,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"sessionId": session.id, "revokedBy": actor.id},
            )
            revoked = self.sessions.get(session.id)
        logger.info("Session revoked (session_id=%s, by user_id=%s)", session_id, actor.id)
        return revoked

    # ------------------------------------------------------------------
    # Token verification
    # ------------------------------------------------------------------

    def verify_access_token(self, token: str) -> Identity:
        """Verify signature and expiry, then rebuild roles/permissions from the store."""
        claims = self.issuer.verify(token)
        with self._internal_errors("verify_token"):
            user = self.users.get_by_id(claims["user_id"])
            if user is None or not user.is_active:
                raise InvalidTokenError("User not found or inactive")
            return self.to_identity(user)

    # ------------------------------------------------------------------
    # Account management
    # ------------------------------------------------------------------

    def register_user(
        self,
        email: str,
        username: str,
        password: str,
        roles: Iterable[str] = ("user",),
    ) -> User:
        """Create an account. Raises ValidationError for unknown roles, ConflictError on duplicate email."""
        roles = list(dict.fromkeys(roles))
        with self._internal_errors("register_user"):
            unknown = [r for r in roles if self.users.get_role(r) is None]
            if unknown:
                raise ValidationError("Unknown roles", details={"roles": unknown})
            user = User(email=email.strip().lower(), username=username, password_hash=self.hasher.hash(password))
            user_id = self.users.create_user(user, roles=roles)
            created = self.users.get_by_id(user_id)
        logger.info("User created (user_id=%s, roles=%s)", user_id, ",".join(roles))
        return created

    def get_user(self, user_id: int) -> User:
        with self._internal_errors("get_user"):
            user = self.users.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    def list_users(self) -> list[User]:
        with self._internal_errors("list_users"):
            return self.users.list_users()

    def update_profile(self, user_id: int, username: str) -> User:
        with self._internal_errors("update_profile"):
            if not self.users.update_user(user_id, username=username):
                raise NotFoundError("User not found")
            return self.users.get_by_id(user_id)

    def change_password(
        self,
        identity: Identity,
        current_password: str,
        new_password: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> int:
        """Replace the password and revoke every session. Returns the number revoked."""
        if current_password == new_password:
            raise ValidationError("New password must differ from the current password")
        with self._internal_errors("change_password", ip_address, user_agent):
            user = self.users.get_by_id(identity.id)
            if user is None:
                raise NotFoundError("User not found")
            if not self.hasher.verify(current_password, user.password_hash):
                security_logger.warning("Password change rejected: wrong current password (user_id=%s)", user.id)
                raise AuthenticationError("Current password is incorrect")
            self.users.update_user(user.id, password_hash=self.hasher.hash(new_password))
            revoked = self.sessions.revoke_all(user.id)
            self.audit.record(
                AuditAction.PASSWORD_CHANGE,
                user_id=user.id,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"revokedSessions": revoked},
            )
        logger.info("Password changed (user_id=%s, revoked_sessions=%d)", identity.id, revoked)
        return revoked

    def unlock_account(self, user_id: int, actor: Identity | None = None) -> User:
        with self._internal_errors("unlock_account"):
            if self.users.get_by_id(user_id) is None:
                raise NotFoundError("User not found")
            self.lockout.unlock(user_id, actor.id if actor else None)
            return self.users.get_by_id(user_id)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def purge_expired_sessions(self) -> int:
        """Delete expired sessions. StoreError propagates to the scheduler, which logs it."""
        return self.sessions.purge_expired()

    def security_stats(self) -> dict[str, Any]:
        now = self._clock()
        with self._internal_errors("security_stats"):
            return {
                "totalUsers": self.users.count_users(),
                "activeSessions": self.sessions.count_active(),
                "failedLogins24h": self.audit.count_since(AuditAction.LOGIN_FAILED, now - timedelta(hours=24)),
                "lockedAccounts": self.users.count_locked_users(now),
                "config": dict(self.policy),
            }
