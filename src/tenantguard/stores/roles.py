"""
Role store.

Roles are owned by an external administration flow; the evaluator only
reads them. The in-memory store also tracks user/role assignments and
notifies listeners on every change so cached decisions can be dropped.
"""

from __future__ import annotations

import itertools
import threading
from dataclasses import dataclass
from typing import Any, Callable, Protocol

from ..permissions.registry import EXTERNAL_CUSTOMER_ROUTES, validate_permissions


@dataclass(frozen=True)
class Role:
    id: str
    name: str
    permissions: tuple[str, ...] = ()
    is_external_customer: bool = False
    allowed_routes: tuple[str, ...] = ()
    tenant_id: str | None = None
    description: str = ""

    def __post_init__(self):
        # Permissions are a set; keep first-seen order for stable output.
        object.__setattr__(self, "permissions", tuple(dict.fromkeys(self.permissions)))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "permissions": list(self.permissions),
            "is_external_customer": self.is_external_customer,
            "allowed_routes": list(self.allowed_routes),
            "tenant_id": self.tenant_id,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Role:
        return cls(
            id=str(data["id"]),
            name=data.get("name", str(data["id"])),
            permissions=tuple(data.get("permissions", [])),
            is_external_customer=data.get("is_external_customer", False),
            allowed_routes=tuple(data.get("allowed_routes", [])),
            tenant_id=data.get("tenant_id"),
            description=data.get("description", ""),
        )


class RoleStore(Protocol):
    def get_roles(self, role_ids: list[str]) -> list[Role]: ...


RoleChangeListener = Callable[[str], Any]


class InMemoryRoleStore:
    """Reference role store with assignment tracking."""

    def __init__(self, roles: list[Role] | None = None):
        self._roles: dict[str, Role] = {}
        self._assignments: dict[str, list[str]] = {}
        self._listeners: list[RoleChangeListener] = []
        self._role_listeners: list[RoleChangeListener] = []
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        for role in roles or []:
            self._roles[role.id] = role

    def add_listener(self, listener: RoleChangeListener) -> None:
        """Register a callback invoked with a user id whenever their roles change."""
        self._listeners.append(listener)

    def add_role_listener(self, listener: RoleChangeListener) -> None:
        """Register a callback invoked with a role id whenever its permissions change.

        Callers may hold role ids without any recorded assignment, so a role
        change cannot be narrowed to the users listed here.
        """
        self._role_listeners.append(listener)

    def _notify(self, user_ids: list[str]) -> None:
        for uid in user_ids:
            for listener in self._listeners:
                listener(uid)

    def get_roles(self, role_ids: list[str]) -> list[Role]:
        with self._lock:
            return [self._roles[rid] for rid in role_ids if rid in self._roles]

    def get_role(self, role_id: str) -> Role | None:
        with self._lock:
            return self._roles.get(role_id)

    def create_role(
        self,
        tenant_id: str,
        name: str,
        permissions: list[str],
        description: str = "",
        is_external_customer: bool = False,
        allowed_routes: list[str] | None = None,
        role_id: str | None = None,
    ) -> Role:
        """Create a role after validating its permissions."""
        validated = validate_permissions(permissions)
        if allowed_routes is None:
            allowed_routes = list(EXTERNAL_CUSTOMER_ROUTES) if is_external_customer else []

        with self._lock:
            rid = role_id or f"role-{next(self._ids)}"
            role = Role(
                id=rid,
                name=name,
                permissions=tuple(validated),
                is_external_customer=is_external_customer,
                allowed_routes=tuple(allowed_routes),
                tenant_id=tenant_id,
                description=description,
            )
            self._roles[rid] = role
        return role

    def update_permissions(self, role_id: str, permissions: list[str]) -> Role | None:
        validated = validate_permissions(permissions)
        with self._lock:
            role = self._roles.get(role_id)
            if role is None:
                return None
            role = Role(
                id=role.id,
                name=role.name,
                permissions=tuple(validated),
                is_external_customer=role.is_external_customer,
                allowed_routes=role.allowed_routes,
                tenant_id=role.tenant_id,
                description=role.description,
            )
            self._roles[role_id] = role
            affected = [u for u, rids in self._assignments.items() if role_id in rids]
        self._notify(affected)
        for listener in self._role_listeners:
            listener(role_id)
        return role

    def assign_role(self, user_id: str, role_id: str) -> bool:
        """Assign a role to a user. Returns False if it was already assigned."""
        with self._lock:
            if role_id not in self._roles:
                raise KeyError(role_id)
            assigned = self._assignments.setdefault(user_id, [])
            if role_id in assigned:
                return False
            assigned.append(role_id)
        self._notify([user_id])
        return True

    def remove_role(self, user_id: str, role_id: str) -> bool:
        with self._lock:
            assigned = self._assignments.get(user_id, [])
            if role_id not in assigned:
                return False
            assigned.remove(role_id)
        self._notify([user_id])
        return True

    def user_role_ids(self, user_id: str) -> list[str]:
        with self._lock:
            return list(self._assignments.get(user_id, []))

    def user_is_external_customer(self, user_id: str) -> bool:
        return any(r.is_external_customer for r in self.get_roles(self.user_role_ids(user_id)))
