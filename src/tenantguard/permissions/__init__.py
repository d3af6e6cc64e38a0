"""Permission catalog for TenantGuard."""

from .registry import (
    EXTERNAL_CUSTOMER_ROUTES,
    PERMISSIONS,
    PermissionInfo,
    build_permission,
    is_route_allowed,
    permission_matches,
    validate_permissions,
)

__all__ = [
    "EXTERNAL_CUSTOMER_ROUTES",
    "PERMISSIONS",
    "PermissionInfo",
    "build_permission",
    "is_route_allowed",
    "permission_matches",
    "validate_permissions",
]
