"""
auth/protocols.py -- Boundary contracts the auth core consumes.

The service layer is written against these Protocols, not against the
SQLAlchemy repositories in auth/store.py, so a different backing store can
be dropped in. Contract shared by all three:
  - absence is reported as None, never as an exception;
  - any persistence failure raises auth.errors.StoreError.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from auth.models import AuditLogEntry, Role, Session, User


class CredentialStore(Protocol):
    def create_user(self, user: User, roles: list[str] | None = None) -> int: ...

    def get_by_email(self, email: str) -> User | None: ...

    def get_by_id(self, user_id: int) -> User | None: ...

    def list_users(self) -> list[User]: ...

    def update_user(self, user_id: int, **fields) -> bool: ...

    def increment_failed_logins(self, user_id: int) -> int: ...

    def get_role(self, name: str) -> Role | None: ...

    def get_permissions(self, role_names: list[str]) -> list[str]: ...

    def count_users(self) -> int: ...

    def count_locked_users(self, now: datetime) -> int: ...


class SessionStore(Protocol):
    def create_session(self, session: Session) -> Session: ...

    def get_session(self, session_id: int) -> Session | None: ...

    def get_active_session_by_hash(self, token_hash: str, now: datetime) -> Session | None: ...

    def rotate_session(
        self, session_id: int, new_hash: str, expires_at: datetime, expected_hash: str | None = None
    ) -> bool: ...

    def deactivate_session(self, session_id: int) -> bool: ...

    def deactivate_user_sessions(self, user_id: int) -> int: ...

    def delete_expired_sessions(self, now: datetime) -> int: ...

    def count_active_sessions(self, now: datetime) -> int: ...


class AuditSink(Protocol):
    def append(self, entry: AuditLogEntry) -> int: ...

    def count_since(self, action: str, since: datetime) -> int: ...
