"""
tests/test_authorization.py -- Unit tests for auth/authorization.py.

Covers:
  - Role checks (OR) and permission checks (AND)
  - Ownership: admin short-circuit, exact id match, string path parameters
  - Raising variants use AuthorizationError (403) with the requirement in details
"""

from __future__ import annotations

import pytest

from auth import authorization
from auth.errors import AuthorizationError
from auth.models import Identity


def _identity(user_id: int = 7, roles=("user",), permissions=("user:read:own", "post:delete:own")) -> Identity:
    return Identity(
        id=user_id,
        email="i@example.com",
        username="i",
        roles=list(roles),
        permissions=list(permissions),
    )


class TestRolesAndPermissions:
    def test_has_any_role_is_or(self) -> None:
        identity = _identity(roles=("user",))
        assert authorization.has_any_role(identity, ["admin", "user"])
        assert not authorization.has_any_role(identity, ["admin"])
        assert not authorization.has_any_role(identity, [])

    def test_has_all_permissions_is_and(self) -> None:
        identity = _identity()
        assert authorization.has_all_permissions(identity, ["post:delete:own"])
        assert not authorization.has_all_permissions(identity, ["post:delete:own", "post:delete:all"])

    def test_has_permission_is_exact(self) -> None:
        identity = _identity()
        assert authorization.has_permission(identity, "user:read:own")
        assert not authorization.has_permission(identity, "user:read")

    def test_require_all_permissions_details(self) -> None:
        with pytest.raises(AuthorizationError) as exc_info:
            authorization.require_all_permissions(_identity(), ["post:delete:all"])
        assert exc_info.value.status_code == 403
        assert exc_info.value.details == {"requiredPermissions": ["post:delete:all"]}

    def test_require_any_role_details(self) -> None:
        with pytest.raises(AuthorizationError) as exc_info:
            authorization.require_any_role(_identity(), ("admin",))
        assert exc_info.value.details == {"requiredRoles": ["admin"]}


class TestOwnership:
    def test_owner_matches(self) -> None:
        assert authorization.is_owner_or_admin(_identity(7), 7)
        assert authorization.is_owner_or_admin(_identity(7), "7")

    def test_other_owner_denied(self) -> None:
        assert not authorization.is_owner_or_admin(_identity(7), 8)
        assert not authorization.is_owner_or_admin(_identity(7), "07")
        assert not authorization.is_owner_or_admin(_identity(7), None)

    def test_admin_bypasses_ownership(self) -> None:
        admin = _identity(1, roles=("admin",))
        assert authorization.is_owner_or_admin(admin, 8)

    def test_custom_admin_roles(self) -> None:
        operator = _identity(1, roles=("operator",))
        assert not authorization.is_owner_or_admin(operator, 8)
        assert authorization.is_owner_or_admin(operator, 8, admin_roles=("operator",))

    def test_require_owner_or_admin_raises(self) -> None:
        with pytest.raises(AuthorizationError):
            authorization.require_owner_or_admin(_identity(7), 8)
        authorization.require_owner_or_admin(_identity(7), 7)
