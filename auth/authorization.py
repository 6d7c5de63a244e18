"""
auth/authorization.py -- Authorization Evaluator.

Pure functions over an Identity whose roles and permissions were rebuilt
from the credential store when its token was verified. Nothing is cached
beyond the request that built the Identity.

Matching is exact string equality. "post:delete:own" never satisfies a
check for "post:delete:all" and there are no wildcards.

The require_* variants raise AuthorizationError (403). They never raise
AuthenticationError: being logged in is established before these run.
The details they attach (required roles / permissions) are only ever shown
to an authenticated caller.
"""

from __future__ import annotations

from collections.abc import Iterable

from auth.errors import AuthorizationError
from auth.models import Identity

DEFAULT_ADMIN_ROLES: tuple[str, ...] = ("admin",)


def has_role(identity: Identity, role: str) -> bool:
    return role in identity.roles


def has_any_role(identity: Identity, roles: Iterable[str]) -> bool:
    return any(role in identity.roles for role in roles)


def has_permission(identity: Identity, permission: str) -> bool:
    return permission in identity.permissions


def has_all_permissions(identity: Identity, permissions: Iterable[str]) -> bool:
    granted = set(identity.permissions)
    return all(p in granted for p in permissions)


def is_owner_or_admin(
    identity: Identity,
    owner_id: int | str | None,
    admin_roles: Iterable[str] = DEFAULT_ADMIN_ROLES,
) -> bool:
    """Admin check first (short-circuits), then exact owner id equality.

    owner_id may arrive as a path-parameter string; it is compared by its
    string form so "7" matches identity id 7 and "07" does not.
    """
    if has_any_role(identity, admin_roles):
        return True
    if owner_id is None:
        return False
    return str(owner_id) == str(identity.id)


# ---------------------------------------------------------------------------
# Raising variants used by route guards
# ---------------------------------------------------------------------------


def require_any_role(identity: Identity, roles: Iterable[str]) -> None:
    roles = list(roles)
    if not has_any_role(identity, roles):
        raise AuthorizationError("Insufficient role permissions", details={"requiredRoles": roles})


def require_all_permissions(identity: Identity, permissions: Iterable[str]) -> None:
    permissions = list(permissions)
    if not has_all_permissions(identity, permissions):
        raise AuthorizationError("Insufficient permissions", details={"requiredPermissions": permissions})


def require_owner_or_admin(
    identity: Identity,
    owner_id: int | str | None,
    admin_roles: Iterable[str] = DEFAULT_ADMIN_ROLES,
) -> None:
    if not is_owner_or_admin(identity, owner_id, admin_roles):
        raise AuthorizationError("Access denied")
