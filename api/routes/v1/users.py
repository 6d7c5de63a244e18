"""
api/routes/v1/users.py -- User account REST endpoints.

Routes:
  GET   /api/v1/users            -- list all accounts (admin only)
  POST  /api/v1/users            -- create an account (admin only)
  GET   /api/v1/users/{user_id}  -- read one account (owner or admin)
  PATCH /api/v1/users/{user_id}  -- update username (owner or admin)

Ownership is decided by require_owner_or_admin("user_id"): the path
parameter must equal the caller's id unless the caller holds an admin role.
Admins additionally see lockout state in list responses.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import AdminUserResponse, UserCreate, UserPatch, UserResponse
from auth.dependencies import get_auth_service, require_admin, require_owner_or_admin
from auth.models import Identity

# Auth policy:
# - GET   /api/v1/users:            requires admin (require_admin)
# - POST  /api/v1/users:            requires admin (require_admin)
# - GET   /api/v1/users/{user_id}:  owner or admin (require_owner_or_admin)
# - PATCH /api/v1/users/{user_id}:  owner or admin (require_owner_or_admin)
router = APIRouter()


@router.get("/users", response_model=list[AdminUserResponse])
def list_users(request: Request, identity: Identity = Depends(require_admin)) -> list[AdminUserResponse]:
    return [AdminUserResponse.from_user(u) for u in get_auth_service(request).list_users()]


@router.post("/users", response_model=UserResponse, status_code=201)
def create_user(
    request: Request,
    body: UserCreate,
    identity: Identity = Depends(require_admin),
) -> UserResponse:
    """Create a new account. 409 if the email is taken, 400 for unknown roles."""
    user = get_auth_service(request).register_user(body.email, body.username, body.password, body.roles)
    return UserResponse.from_user(user)


@router.get("/users/{user_id}", response_model=UserResponse)
def get_user(
    request: Request,
    user_id: int,
    identity: Identity = Depends(require_owner_or_admin("user_id")),
) -> UserResponse:
    return UserResponse.from_user(get_auth_service(request).get_user(user_id))


@router.patch("/users/{user_id}", response_model=UserResponse)
def update_user(
    request: Request,
    user_id: int,
    body: UserPatch,
    identity: Identity = Depends(require_owner_or_admin("user_id")),
) -> UserResponse:
    return UserResponse.from_user(get_auth_service(request).update_profile(user_id, body.username))
