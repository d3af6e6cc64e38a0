"""Tenant-isolated access control for TenantGuard."""

from .cache import DecisionCache
from .context import AccessContext, AccessDecision, ResourceRef, UserContext
from .engine import PermissionEvaluator, RoleHierarchy, UnavailablePolicy

__all__ = [
    "AccessContext",
    "AccessDecision",
    "DecisionCache",
    "PermissionEvaluator",
    "ResourceRef",
    "RoleHierarchy",
    "UnavailablePolicy",
    "UserContext",
]
