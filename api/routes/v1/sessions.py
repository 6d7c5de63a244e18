"""
api/routes/v1/sessions.py -- Session (refresh-token lease) REST endpoints.

Routes:
  GET    /api/v1/sessions/{session_id}  -- read one session (owner or admin)
  DELETE /api/v1/sessions/{session_id}  -- revoke one session (owner or admin)

Ownership is the session's recorded user_id, not a path parameter, so both
routes use require_resource_owner with load_session as the loader.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import SessionResponse
from auth.dependencies import client_ip, get_auth_service, require_resource_owner, user_agent
from auth.errors import NotFoundError
from auth.models import Identity, Session
from auth.service import AuthService


def load_session(service: AuthService, raw_id: str) -> Session | None:
    try:
        session_id = int(raw_id)
    except (TypeError, ValueError):
        return None
    return service.find_session(session_id)


# Auth policy:
# - GET    /api/v1/sessions/{session_id}: session owner or admin (require_resource_owner)
# - DELETE /api/v1/sessions/{session_id}: session owner or admin (require_resource_owner)
router = APIRouter()
session_owner = require_resource_owner(load_session, "session_id")


@router.get("/sessions/{session_id}", response_model=SessionResponse)
def get_session(
    request: Request,
    session_id: int,
    identity: Identity = Depends(session_owner),
) -> SessionResponse:
    session = get_auth_service(request).find_session(session_id)
    if session is None:
        raise NotFoundError("Session not found")
    return SessionResponse.from_session(session)


@router.delete("/sessions/{session_id}", response_model=SessionResponse)
def revoke_session(
    request: Request,
    session_id: int,
    identity: Identity = Depends(session_owner),
) -> SessionResponse:
    """Deactivate the session. Its refresh token stops working immediately."""
    session = get_auth_service(request).revoke_session(
        session_id, identity, client_ip(request), user_agent(request)
    )
    return SessionResponse.from_session(session)
