"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and services do
the work; these only own the domain shape.

All datetimes are timezone-aware UTC. Row mappers in auth/store.py convert
to and from the fixed-width ISO text stored in SQL.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class AuditAction(str, Enum):
    LOGIN = "LOGIN"
    LOGIN_FAILED = "LOGIN_FAILED"
    LOGOUT = "LOGOUT"
    TOKEN_REFRESH = "TOKEN_REFRESH"
    REFRESH_TOKEN_IP_MISMATCH = "REFRESH_TOKEN_IP_MISMATCH"
    ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
    ACCOUNT_UNLOCKED = "ACCOUNT_UNLOCKED"
    PASSWORD_CHANGE = "PASSWORD_CHANGE"
    SECURITY_ERROR = "SECURITY_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class FailureReason(str, Enum):
    """True cause of a failed login. Recorded in the audit log, never returned."""

    USER_NOT_FOUND = "USER_NOT_FOUND"
    ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
    INVALID_PASSWORD = "INVALID_PASSWORD"
    ACCOUNT_INACTIVE = "ACCOUNT_INACTIVE"


@dataclass
class User:
    """Identity record owned by the credential store.

    email is stored lower-cased and is the login identifier. roles holds role
    names materialized from the user_roles join at read time.

    is_locked may remain True after locked_until has passed; the lockout
    policy treats such a lock as expired (lazy expiry).
    """

    email: str
    username: str
    password_hash: str
    id: int | None = None
    roles: list[str] = field(default_factory=list)
    is_active: bool = True
    is_locked: bool = False
    locked_until: datetime | None = None
    failed_login_attempts: int = 0
    last_login_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class Role:
    """Named bundle of permission strings (resource:action[:scope])."""

    name: str
    permissions: list[str] = field(default_factory=list)
    description: str = ""


@dataclass
class Session:
    """One refresh-token lease. Only the HMAC of the raw token is ever stored."""

    user_id: int
    refresh_token_hash: str
    expires_at: datetime
    id: int | None = None
    ip_address: str = "unknown"
    user_agent: str = "unknown"
    is_active: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class AuditLogEntry:
    """Immutable security event. user_id is None for anonymous events."""

    action: str
    timestamp: datetime
    resource: str = "AUTH"
    user_id: int | None = None
    ip_address: str = "unknown"
    user_agent: str = "unknown"
    details: dict[str, Any] = field(default_factory=dict)
    id: int | None = None


@dataclass
class Identity:
    """A verified caller, rebuilt from the store on every token verification."""

    id: int
    email: str
    username: str
    roles: list[str] = field(default_factory=list)
    permissions: list[str] = field(default_factory=list)
    is_active: bool = True
    last_login_at: datetime | None = None
    created_at: datetime | None = None


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int  # seconds
    refresh_expires_in: int  # seconds
    token_type: str = "Bearer"


@dataclass
class LockState:
    failed_attempts: int
    is_locked: bool
    locked_until: datetime | None = None


@dataclass
class LoginResult:
    """Outcome of a successful authenticate(): tokens plus the fresh identity."""

    tokens: TokenPair
    identity: Identity
    session_id: int
