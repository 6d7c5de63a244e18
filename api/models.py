"""
API request and response models for NovaSanctum REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

Wire format is camelCase (accessToken, refreshToken, expiresIn). Models use
an alias generator, so Python code keeps snake_case attribute names and
request bodies also accept snake_case (populate_by_name).

Password hashes never appear in any response model. Password fields are
never whitespace-stripped, and new passwords are capped at bcrypt's 72-byte
input limit.
"""

from datetime import datetime
from typing import Annotated, Any, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, StringConstraints, field_validator
from pydantic.alias_generators import to_camel

from auth.models import Identity, Session, TokenPair, User
from auth.passwords import MAX_PASSWORD_BYTES

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Deliberately loose: one @, no whitespace, a dot in the domain part.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

_REQUEST_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True)
_RESPONSE_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


def _fits_bcrypt(value: str) -> str:
    if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")
    return value


# Identifiers are trimmed; passwords are taken byte-for-byte.
Email = Annotated[str, StringConstraints(strip_whitespace=True, min_length=3, max_length=255, pattern=EMAIL_PATTERN)]
Username = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)]
Password = Annotated[str, Field(min_length=1, max_length=128)]
NewPassword = Annotated[str, Field(min_length=8, max_length=128), AfterValidator(_fits_bcrypt)]
RefreshToken = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=512)]


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    model_config = _REQUEST_CONFIG

    email: Email
    password: Password


class RefreshRequest(BaseModel):
    """Request body for POST /api/v1/auth/refresh."""

    model_config = _REQUEST_CONFIG

    refresh_token: RefreshToken


class LogoutRequest(BaseModel):
    """Request body for POST /api/v1/auth/logout (bearer token in the header)."""

    model_config = _REQUEST_CONFIG

    refresh_token: Optional[RefreshToken] = None


class ChangePasswordRequest(BaseModel):
    model_config = _REQUEST_CONFIG

    current_password: Password
    new_password: NewPassword


class UserCreate(BaseModel):
    """Request body for POST /api/v1/users (admin only)."""

    model_config = _REQUEST_CONFIG

    email: Email
    username: Username
    password: NewPassword
    roles: list[str] = Field(default_factory=lambda: ["user"], min_length=1, max_length=10)

    @field_validator("roles", mode="before")
    @classmethod
    def normalize_roles(cls, values: list) -> list[str]:
        """Lowercase and deduplicate role names while preserving order."""
        if not isinstance(values, list):
            return values
        seen: set[str] = set()
        result: list[str] = []
        for v in values:
            normalized = str(v).strip().lower()
            if normalized not in seen:
                seen.add(normalized)
                result.append(normalized)
        return result


class UserPatch(BaseModel):
    """Request body for PATCH /api/v1/users/{user_id} (owner or admin)."""

    model_config = _REQUEST_CONFIG

    username: Username


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Sanitized user fields. Built from a domain User or Identity."""

    model_config = _RESPONSE_CONFIG

    id: int
    email: str
    username: str
    roles: list[str]
    is_active: bool
    last_login_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            username=user.username,
            roles=user.roles,
            is_active=user.is_active,
            last_login_at=user.last_login_at,
            created_at=user.created_at,
        )


class AdminUserResponse(UserResponse):
    """User row as seen by admins: includes lockout state."""

    is_locked: bool = False
    locked_until: Optional[datetime] = None
    failed_login_attempts: int = 0

    @classmethod
    def from_user(cls, user: User) -> "AdminUserResponse":
        return cls(
            id=user.id,
            email=user.email,
            username=user.username,
            roles=user.roles,
            is_active=user.is_active,
            last_login_at=user.last_login_at,
            created_at=user.created_at,
            is_locked=user.is_locked,
            locked_until=user.locked_until,
            failed_login_attempts=user.failed_login_attempts,
        )


class MeResponse(BaseModel):
    """Response for GET /api/v1/auth/me -- the verified identity."""

    model_config = _RESPONSE_CONFIG

    id: int
    email: str
    username: str
    roles: list[str]
    permissions: list[str]
    is_active: bool
    last_login_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_identity(cls, identity: Identity) -> "MeResponse":
        return cls(
            id=identity.id,
            email=identity.email,
            username=identity.username,
            roles=identity.roles,
            permissions=identity.permissions,
            is_active=identity.is_active,
            last_login_at=identity.last_login_at,
            created_at=identity.created_at,
        )


class TokenResponse(BaseModel):
    """Response for POST /api/v1/auth/refresh. Both tokens are new."""

    model_config = _RESPONSE_CONFIG

    access_token: str
    refresh_token: str
    expires_in: int
    refresh_expires_in: int
    token_type: str = "Bearer"

    @classmethod
    def from_pair(cls, pair: TokenPair) -> "TokenResponse":
        return cls(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            expires_in=pair.expires_in,
            refresh_expires_in=pair.refresh_expires_in,
            token_type=pair.token_type,
        )


class LoginResponse(TokenResponse):
    """Response for POST /api/v1/auth/login: token pair plus sanitized user."""

    user: UserResponse


class SessionResponse(BaseModel):
    """One refresh-token lease. The token hash is never exposed."""

    model_config = _RESPONSE_CONFIG

    id: int
    user_id: int
    ip_address: str
    user_agent: str
    is_active: bool
    expires_at: datetime
    created_at: Optional[datetime] = None

    @classmethod
    def from_session(cls, session: Session) -> "SessionResponse":
        return cls(
            id=session.id,
            user_id=session.user_id,
            ip_address=session.ip_address,
            user_agent=session.user_agent,
            is_active=session.is_active,
            expires_at=session.expires_at,
            created_at=session.created_at,
        )


class MessageResponse(BaseModel):
    model_config = _RESPONSE_CONFIG

    message: str


class SecurityStatsResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    totalUsers: int
    activeSessions: int
    failedLogins24h: int
    lockedAccounts: int
    config: dict[str, Any]


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = _RESPONSE_CONFIG

    code: str
    message: str
    status_code: int
    timestamp: datetime
    path: str
    method: str
    details: Optional[dict[str, Any]] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = _RESPONSE_CONFIG

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
