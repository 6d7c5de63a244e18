"""
auth/dependencies.py -- FastAPI Depends() helpers: route guards.

Authentication reads "Authorization: Bearer <access token>" only. Refresh
tokens are never accepted here; they are only valid at POST /auth/refresh.

get_current_identity() raises AuthenticationError (401) when there is no
valid token. The require_* factories build guards that raise
AuthorizationError (403) when the verified identity lacks a role, a
permission, or ownership of the addressed resource. require_resource_owner
loads the resource first and raises NotFoundError (404) when it is absent.

The verified identity is stashed on request.state.identity so the error
handlers can attribute SECURITY_ERROR audit entries to the caller.

Layer rule: this module may import fastapi because it is part of the
FastAPI dependency injection system. No imports from api/.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from fastapi import Depends, Request

from auth import authorization
from auth.errors import AuthenticationError, NotFoundError
from auth.models import Identity
from auth.service import AuthService


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


def user_agent(request: Request) -> str | None:
    return request.headers.get("User-Agent")


def bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_current_identity(request: Request) -> Identity:
    """Require a valid access token.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(identity: Identity = Depends(get_current_identity)): ...
    """
    token = bearer_token(request)
    if token is None:
        raise AuthenticationError("Access token required")
    identity = get_auth_service(request).verify_access_token(token)
    request.state.identity = identity
    return identity


def require_roles(*roles: str) -> Callable[..., Identity]:
    """Guard factory: caller must hold at least one of the roles (OR)."""

    def guard(identity: Identity = Depends(get_current_identity)) -> Identity:
        authorization.require_any_role(identity, roles)
        return identity

    return guard


def require_permissions(*permissions: str) -> Callable[..., Identity]:
    """Guard factory: caller must hold every listed permission (AND)."""

    def guard(identity: Identity = Depends(get_current_identity)) -> Identity:
        authorization.require_all_permissions(identity, permissions)
        return identity

    return guard


def require_admin(request: Request, identity: Identity = Depends(get_current_identity)) -> Identity:
    authorization.require_any_role(identity, get_auth_service(request).admin_roles)
    return identity


def require_owner_or_admin(owner_param: str = "user_id") -> Callable[..., Identity]:
    """Guard factory: caller is an admin, or the path parameter equals their id.

    Usage:
        @router.patch("/users/{user_id}")
        def route(identity: Identity = Depends(require_owner_or_admin("user_id"))): ...
    """

    def guard(request: Request, identity: Identity = Depends(get_current_identity)) -> Identity:
        owner_id = request.path_params.get(owner_param)
        authorization.require_owner_or_admin(identity, owner_id, get_auth_service(request).admin_roles)
        return identity

    return guard


def require_resource_owner(
    loader: Callable[[AuthService, str], Any],
    id_param: str,
    owner_field: str = "user_id",
) -> Callable[..., Identity]:
    """Guard factory: caller is an admin, or owns the resource the path addresses.

    loader(service, raw_id) returns the resource or None. Admins pass without
    a lookup; anyone else gets 404 for a missing resource and 403 when the
    resource's owner_field differs from their id.

    Usage:
        @router.delete("/sessions/{session_id}")
        def route(identity: Identity = Depends(require_resource_owner(load_session, "session_id"))): ...
    """

    def guard(request: Request, identity: Identity = Depends(get_current_identity)) -> Identity:
        service = get_auth_service(request)
        if authorization.has_any_role(identity, service.admin_roles):
            return identity
        resource = loader(service, request.path_params.get(id_param, ""))
        if resource is None:
            raise NotFoundError("Resource not found")
        authorization.require_owner_or_admin(identity, getattr(resource, owner_field, None), service.admin_roles)
        return identity

    return guard
