"""
Static permission catalog and matching rules.

Permissions are dot-segmented strings (``resource.action``). Any segment
of a held permission may be ``*``; a bare ``*`` matches everything.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..errors import InvalidPermissionError

WILDCARD = "*"


@dataclass(frozen=True)
class PermissionInfo:
    description: str
    resource: str
    action: str
    category: str
    risk_level: str  # low, medium, high, critical

    def to_dict(self) -> dict[str, str]:
        return {
            "description": self.description,
            "resource": self.resource,
            "action": self.action,
            "category": self.category,
            "risk_level": self.risk_level,
        }


def _p(description: str, resource: str, action: str, category: str, risk_level: str) -> PermissionInfo:
    return PermissionInfo(description, resource, action, category, risk_level)


PERMISSIONS: dict[str, PermissionInfo] = {
    # Users
    "user.read": _p("View user information", "user", "read", "user_management", "low"),
    "user.read_own": _p("View own user information", "user", "read_own", "user_management", "low"),
    "user.write": _p("Create and modify users", "user", "write", "user_management", "high"),
    "user.delete": _p("Delete users", "user", "delete", "user_management", "critical"),
    # Roles
    "role.read": _p("View roles and permissions", "role", "read", "role_management", "medium"),
    "role.write": _p("Create and modify roles", "role", "write", "role_management", "high"),
    "role.delete": _p("Delete roles", "role", "delete", "role_management", "critical"),
    # Dashboard and reports
    "dashboard.read": _p("Access dashboard and reports", "dashboard", "read", "analytics", "low"),
    "dashboard.write": _p("Modify dashboard configuration", "dashboard", "write", "analytics", "medium"),
    "reports.read": _p("View reports", "reports", "read", "analytics", "low"),
    "reports.generate": _p("Generate new reports", "reports", "generate", "analytics", "medium"),
    "reports.export": _p("Export report data", "reports", "export", "analytics", "medium"),
    # Settings
    "settings.read": _p("View system settings", "settings", "read", "administration", "medium"),
    "settings.write": _p("Modify system settings", "settings", "write", "administration", "high"),
    # Document search
    "rag.read": _p("Search and access RAG documents", "rag", "read", "ai_features", "low"),
    "rag.write": _p("Upload and manage RAG documents", "rag", "write", "ai_features", "medium"),
    "rag.delete": _p("Delete RAG documents", "rag", "delete", "ai_features", "high"),
    # Audit
    "audit.read": _p("View audit logs", "audit", "read", "security", "medium"),
    # Platform administration: tenants
    "admin.tenants.view": _p("View tenant information", "tenants", "read", "administration", "medium"),
    "admin.tenants.create": _p("Create new tenants", "tenants", "create", "administration", "high"),
    "admin.tenants.update": _p("Update tenant information", "tenants", "update", "administration", "high"),
    "admin.tenants.delete": _p("Delete tenants", "tenants", "delete", "administration", "critical"),
    "admin.tenants.manage": _p("Full tenant management access", "tenants", "*", "administration", "critical"),
    "admin.tenants.suspend": _p("Suspend tenant accounts", "tenants", "suspend", "administration", "high"),
    # Platform administration: users
    "admin.users.view": _p("View user information across tenants", "users", "read", "administration", "medium"),
    "admin.users.create": _p("Create new users", "users", "create", "administration", "high"),
    "admin.users.update": _p("Update user information", "users", "update", "administration", "high"),
    "admin.users.delete": _p("Delete users", "users", "delete", "administration", "critical"),
    "admin.users.manage": _p("Full user management access", "users", "*", "administration", "critical"),
    "admin.users.suspend": _p("Suspend user accounts", "users", "suspend", "administration", "high"),
    "admin.users.impersonate": _p("Impersonate users", "users", "impersonate", "administration", "critical"),
    # Platform administration: roles
    "admin.roles.view": _p("View roles and permissions", "roles", "read", "administration", "medium"),
    "admin.roles.create": _p("Create new roles", "roles", "create", "administration", "high"),
    "admin.roles.update": _p("Update roles and permissions", "roles", "update", "administration", "high"),
    "admin.roles.delete": _p("Delete roles", "roles", "delete", "administration", "critical"),
    "admin.roles.manage": _p("Full role management access", "roles", "*", "administration", "critical"),
    "admin.roles.assign": _p("Assign roles to users", "roles", "assign", "administration", "high"),
    # Platform administration: system
    "admin.view": _p("View admin dashboard", "admin", "read", "administration", "medium"),
    "admin.config.global": _p("Manage global system configuration", "config", "*", "administration", "critical"),
    "admin.licenses.manage": _p("Manage system licenses", "licenses", "*", "administration", "critical"),
    "admin.monitoring.view": _p("View system monitoring data", "monitoring", "read", "administration", "medium"),
    "admin.audit.view": _p("View audit logs", "audit", "read", "administration", "medium"),
    "admin": _p("Full administrative access", "*", "*", "administration", "critical"),
    WILDCARD: _p("All permissions", "*", "*", "administration", "critical"),
}

EXTERNAL_CUSTOMER_ROUTES: tuple[str, ...] = (
    "/dashboard",
    "/dashboard/*",
    "/profile",
    "/profile/*",
    "/api/auth/me",
    "/api/auth/logout",
    "/api/auth/change-password",
    "/api/dashboard/*",
)


def permission_matches(pattern: str, required: str) -> bool:
    """Return True if a held permission pattern satisfies a required permission."""
    if pattern == WILDCARD or pattern == required:
        return True

    pattern_parts = pattern.split(".")
    required_parts = required.split(".")
    if len(pattern_parts) != len(required_parts):
        return False

    return all(p == WILDCARD or p == r for p, r in zip(pattern_parts, required_parts))


def build_permission(action: str, resource_type: str | None = None) -> str:
    """Construct the required permission string for an action."""
    if not resource_type:
        return action
    return f"{resource_type}.{action}"


def route_matches(pattern: str, route: str) -> bool:
    if pattern.endswith("*"):
        return route.startswith(pattern[:-1])
    return route == pattern


def is_route_allowed(
    route: str | None,
    allowed: tuple[str, ...] | list[str] = EXTERNAL_CUSTOMER_ROUTES,
) -> bool:
    """Check a route against an allow-list. A missing route is allowed."""
    if not route:
        return True
    return any(route_matches(pattern, route) for pattern in allowed)


def is_valid_permission(permission: str) -> bool:
    return permission in PERMISSIONS or permission == WILDCARD or "." in permission


def validate_permissions(permissions: list[str]) -> list[str]:
    """Return the permissions unchanged, or raise listing the invalid ones."""
    invalid = [p for p in permissions if not is_valid_permission(p)]
    if invalid:
        raise InvalidPermissionError(invalid)
    return list(permissions)


def describe(permission: str) -> PermissionInfo | None:
    return PERMISSIONS.get(permission)


def permissions_by_category() -> dict[str, list[str]]:
    grouped: dict[str, list[str]] = {}
    for name, info in PERMISSIONS.items():
        grouped.setdefault(info.category, []).append(name)
    return grouped
