"""Role-based access control (RBAC) for claimflow."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel

from claimflow.errors import AuthorizationError
from claimflow.logging_config import get_logger

logger = get_logger(__name__)


class Role(StrEnum):
    """System roles ordered by privilege level."""

    ADMIN = "admin"
    STAFF = "staff"


class Permission(StrEnum):
    """Granular permissions for system actions."""

    SUBMIT_CLAIMS = "submit_claims"
    EXTRACT_RECEIPTS = "extract_receipts"
    VIEW_OWN_CLAIMS = "view_own_claims"
    REVIEW_CLAIMS = "review_claims"
    DECIDE_CLAIMS = "decide_claims"
    ADMIN_CHANNEL = "admin_channel"


ROLE_PERMISSIONS: dict[Role, set[Permission]] = {
    Role.ADMIN: set(Permission),
    Role.STAFF: {
        Permission.SUBMIT_CLAIMS,
        Permission.EXTRACT_RECEIPTS,
        Permission.VIEW_OWN_CLAIMS,
    },
}


class UserIdentity(BaseModel):
    """Represents an authenticated user with their role."""

    user_id: int
    role: Role = Role.STAFF

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    def has_permission(self, permission: Permission) -> bool:
        """Check if the user's role grants the given permission."""
        return permission in ROLE_PERMISSIONS.get(self.role, set())

    def require_permission(self, permission: Permission) -> None:
        """Raise if the user lacks the required permission."""
        if not self.has_permission(permission):
            logger.warning(
                "permission_denied",
                user_id=self.user_id,
                role=self.role,
                permission=permission,
            )
            raise AuthorizationError(
                f"User '{self.user_id}' with role '{self.role}' lacks permission '{permission}'"
            )
