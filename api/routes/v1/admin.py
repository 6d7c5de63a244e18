"""
api/routes/v1/admin.py -- Administrative REST endpoints.

Routes:
  GET  /api/v1/admin/stats                  -- security statistics (admin:stats:read)
  POST /api/v1/admin/users/{user_id}/unlock -- clear a lockout (admin:users:unlock)

Both routes are guarded by permission, not role name, so a deployment can
grant them to a non-admin operator role.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import AdminUserResponse, SecurityStatsResponse
from auth.dependencies import get_auth_service, require_permissions
from auth.models import Identity

router = APIRouter()


@router.get("/admin/stats", response_model=SecurityStatsResponse)
def security_stats(
    request: Request,
    identity: Identity = Depends(require_permissions("admin:stats:read")),
) -> SecurityStatsResponse:
    """User, session, failed-login and lockout counts plus the active policy."""
    return SecurityStatsResponse(**get_auth_service(request).security_stats())


@router.post("/admin/users/{user_id}/unlock", response_model=AdminUserResponse)
def unlock_user(
    request: Request,
    user_id: int,
    identity: Identity = Depends(require_permissions("admin:users:unlock")),
) -> AdminUserResponse:
    user = get_auth_service(request).unlock_account(user_id, actor=identity)
    return AdminUserResponse.from_user(user)
