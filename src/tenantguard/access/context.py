"""
Access context for permission evaluation.

Captures who is asking (user and tenant), what they want to touch
(resource, action, route) and where the request came from.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class UserContext:
    """The authenticated principal making a request."""
    id: str
    tenant_id: str
    tenant_slug: str = ""
    roles: tuple[str, ...] = ()  # role ids, resolved through the role store
    is_external_customer: bool = False
    email: str = ""
    user_id: str = ""  # external login identifier, falls back to id

    @property
    def login_id(self) -> str:
        return self.user_id or self.id


@dataclass(frozen=True)
class ResourceRef:
    """The resource an action targets."""
    type: str
    id: str | None = None
    tenant_id: str | None = None


@dataclass(frozen=True)
class AccessContext:
    """Complete, immutable input to a single access decision."""
    user: UserContext
    action: str
    resource: ResourceRef | None = None
    route: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None

    def cache_key(self) -> str:
        """Fingerprint used by the decision cache. The user id is always first."""
        parts = [
            self.user.id,
            self.user.tenant_id,
            self.action,
            self.resource.type if self.resource else None,
            self.resource.id if self.resource else None,
            self.route,
        ]
        return "|".join(p if p else "null" for p in parts)

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user.id,
            "tenant_id": self.user.tenant_id,
            "tenant_slug": self.user.tenant_slug,
            "roles": list(self.user.roles),
            "is_external_customer": self.user.is_external_customer,
            "action": self.action,
            "resource_type": self.resource.type if self.resource else None,
            "resource_id": self.resource.id if self.resource else None,
            "resource_tenant_id": self.resource.tenant_id if self.resource else None,
            "route": self.route,
            "ip_address": self.ip_address,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AccessContext:
        """Build a context from a flat or nested JSON document."""
        user_data = data.get("user") or {}
        user = UserContext(
            id=str(user_data.get("id", data.get("user_id", ""))),
            tenant_id=str(user_data.get("tenant_id", data.get("tenant_id", ""))),
            tenant_slug=user_data.get("tenant_slug", data.get("tenant_slug", "")),
            roles=tuple(user_data.get("roles", data.get("roles", []))),
            is_external_customer=bool(
                user_data.get("is_external_customer", data.get("is_external_customer", False))
            ),
            email=user_data.get("email", data.get("email", "")),
            user_id=user_data.get("user_id", ""),
        )

        resource = None
        resource_data = data.get("resource")
        if isinstance(resource_data, dict) and resource_data.get("type"):
            resource = ResourceRef(
                type=resource_data["type"],
                id=resource_data.get("id"),
                tenant_id=resource_data.get("tenant_id"),
            )
        elif data.get("resource_type"):
            resource = ResourceRef(
                type=data["resource_type"],
                id=data.get("resource_id"),
                tenant_id=data.get("resource_tenant_id"),
            )

        return cls(
            user=user,
            action=data.get("action", ""),
            resource=resource,
            route=data.get("route"),
            ip_address=data.get("ip_address"),
            user_agent=data.get("user_agent"),
        )


@dataclass(frozen=True)
class AccessDecision:
    """Result of a permission check. Never mutated after creation."""
    granted: bool
    reason: str
    permissions: tuple[str, ...] = ()
    conditions: tuple[dict[str, Any], ...] | None = None
    restrictions: tuple[str, ...] | None = None
    unavailable: bool = False

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "granted": self.granted,
            "reason": self.reason,
            "permissions": list(self.permissions),
        }
        if self.conditions is not None:
            data["conditions"] = list(self.conditions)
        if self.restrictions is not None:
            data["restrictions"] = list(self.restrictions)
        if self.unavailable:
            data["unavailable"] = True
        return data


@dataclass
class ConditionResult:
    granted: bool
    reason: str = "Conditions satisfied"
    conditions: list[dict[str, Any]] = field(default_factory=list)
