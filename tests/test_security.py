"""Tests for the security module: RBAC."""

from __future__ import annotations

import pytest

from claimflow.errors import AuthorizationError
from claimflow.security.rbac import Permission, Role, ROLE_PERMISSIONS, UserIdentity


class TestRBAC:
    """Tests for role-based access control."""

    def test_admin_has_all_permissions(self) -> None:
        admin = UserIdentity(user_id=1, role=Role.ADMIN)
        for perm in Permission:
            assert admin.has_permission(perm)
        assert admin.is_admin

    def test_staff_permissions(self) -> None:
        staff = UserIdentity(user_id=2, role=Role.STAFF)
        assert staff.has_permission(Permission.SUBMIT_CLAIMS)
        assert staff.has_permission(Permission.EXTRACT_RECEIPTS)
        assert not staff.has_permission(Permission.DECIDE_CLAIMS)
        assert not staff.has_permission(Permission.REVIEW_CLAIMS)
        assert not staff.has_permission(Permission.ADMIN_CHANNEL)

    def test_require_permission_raises(self) -> None:
        staff = UserIdentity(user_id=2)
        with pytest.raises(AuthorizationError):
            staff.require_permission(Permission.DECIDE_CLAIMS)

    def test_authorization_error_is_permission_error(self) -> None:
        with pytest.raises(PermissionError):
            UserIdentity(user_id=2).require_permission(Permission.REVIEW_CLAIMS)

    def test_require_permission_passes(self) -> None:
        UserIdentity(user_id=1, role=Role.ADMIN).require_permission(Permission.DECIDE_CLAIMS)

    def test_every_role_is_mapped(self) -> None:
        assert set(ROLE_PERMISSIONS) == set(Role)
