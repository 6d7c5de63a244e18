"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/login            -- password login; returns token pair + user
  POST /api/v1/auth/refresh          -- exchange refresh token for a new pair (rotation)
  POST /api/v1/auth/logout           -- revoke the caller's session (requires auth)
  GET  /api/v1/auth/me               -- verified identity with permissions (requires auth)
  POST /api/v1/auth/change-password  -- new password; revokes every session (requires auth)

Security:
  POST /login and POST /refresh are rate-limited per client IP (api/limiter.py).
  Every login failure returns the same "Invalid credentials" 401.
  Cache-Control: no-store on every response that carries tokens.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request, Response

from api.limiter import LOGIN_LIMIT, REFRESH_LIMIT, limiter
from api.models import (
    ChangePasswordRequest,
    LoginRequest,
    LoginResponse,
    LogoutRequest,
    MeResponse,
    MessageResponse,
    RefreshRequest,
    TokenResponse,
    UserResponse,
)
from auth.dependencies import client_ip, get_auth_service, get_current_identity, user_agent
from auth.models import Identity

# Auth policy:
# - POST /api/v1/auth/login:           public -- login endpoint must be unauthenticated
# - POST /api/v1/auth/refresh:         public -- the refresh token is the credential
# - POST /api/v1/auth/logout:          requires auth (get_current_identity)
# - GET  /api/v1/auth/me:              requires auth (get_current_identity)
# - POST /api/v1/auth/change-password: requires auth (get_current_identity)
router = APIRouter()


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/login", response_model=LoginResponse)
@limiter.limit(LOGIN_LIMIT)
def login(request: Request, response: Response, body: LoginRequest) -> LoginResponse:
    """Authenticate with email and password.

    Unknown email, wrong password, locked and inactive accounts all produce
    the same 401 body. The true reason is only in the audit log.
    """
    service = get_auth_service(request)
    result = service.authenticate(body.email, body.password, client_ip(request), user_agent(request))
    response.headers["Cache-Control"] = "no-store"
    pair = result.tokens
    return LoginResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        expires_in=pair.expires_in,
        refresh_expires_in=pair.refresh_expires_in,
        token_type=pair.token_type,
        user=UserResponse(
            id=result.identity.id,
            email=result.identity.email,
            username=result.identity.username,
            roles=result.identity.roles,
            is_active=result.identity.is_active,
            last_login_at=result.identity.last_login_at,
            created_at=result.identity.created_at,
        ),
    )


@router.post("/auth/refresh", response_model=TokenResponse)
@limiter.limit(REFRESH_LIMIT)
def refresh(request: Request, response: Response, body: RefreshRequest) -> TokenResponse:
    """Rotate the session: the presented refresh token stops working immediately."""
    service = get_auth_service(request)
    pair = service.refresh(body.refresh_token, client_ip(request), user_agent(request))
    response.headers["Cache-Control"] = "no-store"
    return TokenResponse.from_pair(pair)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", response_model=MessageResponse)
def logout(
    request: Request,
    body: Optional[LogoutRequest] = None,
    identity: Identity = Depends(get_current_identity),
) -> MessageResponse:
    """Revoke the session bound to the given refresh token.

    Without a refresh token the call is still audited; the access token simply
    runs out its short TTL.
    """
    raw = body.refresh_token if body else None
    get_auth_service(request).logout(identity, raw, client_ip(request), user_agent(request))
    return MessageResponse(message="Logged out")


@router.get("/auth/me", response_model=MeResponse)
def me(identity: Identity = Depends(get_current_identity)) -> MeResponse:
    return MeResponse.from_identity(identity)


@router.post("/auth/change-password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    identity: Identity = Depends(get_current_identity),
) -> MessageResponse:
    """Change the caller's password. All sessions are revoked, so every device must log in again."""
    get_auth_service(request).change_password(
        identity,
        body.current_password,
        body.new_password,
        client_ip(request),
        user_agent(request),
    )
    return MessageResponse(message="Password changed")
