"""
Permission evaluation engine.

Decides whether a user may perform an action on a resource. Tenant
isolation is enforced before any permission logic, external customers are
confined to an allow-list of routes, and held permissions are matched
against the required one with dot-segment wildcards.
"""

from __future__ import annotations

import enum
import logging
from typing import Protocol

from ..dispatch import BackgroundDispatcher, call_with_timeout
from ..errors import EvaluationUnavailable
from ..permissions.registry import (
    EXTERNAL_CUSTOMER_ROUTES,
    WILDCARD,
    build_permission,
    is_route_allowed,
    permission_matches,
)
from ..stores.audit import AuditEntry, AuditStore
from ..stores.roles import Role, RoleStore
from .cache import DecisionCache
from .context import AccessContext, AccessDecision, ConditionResult, ResourceRef, UserContext

logger = logging.getLogger(__name__)

REASON_FAILED = "Permission evaluation failed"
REASON_UNAVAILABLE = "Permission evaluation unavailable"


class UnavailablePolicy(str, enum.Enum):
    DENY = "deny"  # fail closed
    STALE_CACHE = "stale_cache"  # reuse an expired decision if one exists


class ConditionEvaluator(Protocol):
    def __call__(self, context: AccessContext, permissions: list[str]) -> ConditionResult: ...


def allow_all_conditions(context: AccessContext, permissions: list[str]) -> ConditionResult:
    return ConditionResult(granted=True)


def _tenant_violation(context: AccessContext) -> AccessDecision | None:
    resource = context.resource
    if resource is not None and resource.tenant_id and resource.tenant_id != context.user.tenant_id:
        return AccessDecision(
            granted=False,
            reason="Access denied: Resource belongs to different tenant",
        )
    return None


class RoleHierarchy:
    """Role inheritance hook. The default hierarchy inherits nothing."""

    def __init__(self, inherits: dict[str, list[str]] | None = None):
        # role id -> ids of roles whose permissions it inherits
        self.inherits = inherits or {}

    def inherited_permissions(self, role: Role, store: RoleStore) -> list[str]:
        pending = list(self.inherits.get(role.id, []))
        if not pending:
            return []
        seen = {role.id}
        result: list[str] = []
        while pending:
            rid = pending.pop()
            if rid in seen:
                continue
            seen.add(rid)
            for parent in store.get_roles([rid]):
                result.extend(parent.permissions)
            pending.extend(self.inherits.get(rid, []))
        return result


class PermissionEvaluator:
    """
    Tenant-aware permission evaluator with a decision cache.

    ``evaluate`` runs the decision algorithm and may raise;
    ``check_permission`` is the public entry point that caches, audits and
    never raises.
    """

    def __init__(
        self,
        role_store: RoleStore,
        audit_store: AuditStore | None = None,
        cache: DecisionCache | None = None,
        dispatcher: BackgroundDispatcher | None = None,
        condition_evaluator: ConditionEvaluator = allow_all_conditions,
        hierarchy: RoleHierarchy | None = None,
        role_store_timeout: float | None = 2.0,
        external_routes: tuple[str, ...] = EXTERNAL_CUSTOMER_ROUTES,
    ):
        self.role_store = role_store
        self.audit_store = audit_store
        self.cache = cache if cache is not None else DecisionCache()
        self.dispatcher = dispatcher
        self.condition_evaluator = condition_evaluator
        self.hierarchy = hierarchy or RoleHierarchy()
        self.role_store_timeout = role_store_timeout
        self.external_routes = tuple(external_routes)

    def check_permission(
        self,
        context: AccessContext,
        on_unavailable: UnavailablePolicy = UnavailablePolicy.DENY,
    ) -> AccessDecision:
        """Return an access decision. Fails closed on any internal error."""
        key = context.cache_key()
        cached = False
        try:
            # The cache key carries no resource tenant, so isolation runs before any lookup.
            decision = _tenant_violation(context)
            if decision is None:
                decision = self.cache.get(key)
                if decision is not None:
                    cached = True
                else:
                    decision = self.evaluate(context)
                    self.cache.put(key, decision)
        except EvaluationUnavailable as exc:
            logger.warning("Permission evaluation unavailable for %s: %s", key, exc)
            decision = self._unavailable_decision(key, on_unavailable)
        except Exception:
            logger.exception("Permission check failed for %s", key)
            decision = AccessDecision(granted=False, reason=REASON_FAILED)

        self._record_decision(context, decision, cached)
        return decision

    def _unavailable_decision(self, key: str, policy: UnavailablePolicy) -> AccessDecision:
        if policy == UnavailablePolicy.STALE_CACHE:
            stale = self.cache.peek_stale(key)
            if stale is not None:
                return stale
        return AccessDecision(granted=False, reason=REASON_UNAVAILABLE, unavailable=True)

    def evaluate(self, context: AccessContext) -> AccessDecision:
        """Run the decision algorithm without the cache."""
        user = context.user
        resource = context.resource

        denied = _tenant_violation(context)
        if denied is not None:
            return denied

        if user.is_external_customer and not is_route_allowed(context.route, self.external_routes):
            return AccessDecision(
                granted=False,
                reason="Access denied: Route restricted for external customers",
                restrictions=self.external_routes,
            )

        held = self.user_permissions(user)

        if WILDCARD in held:
            return AccessDecision(
                granted=True,
                reason="Access granted: Wildcard permission",
                permissions=(WILDCARD,),
            )

        required = build_permission(context.action, resource.type if resource else None)
        matching = [p for p in held if permission_matches(p, required)]

        if not matching:
            return AccessDecision(
                granted=False,
                reason=f"Access denied: Missing permission '{required}'",
                permissions=tuple(held),
            )

        result = self.condition_evaluator(context, held)
        if not result.granted:
            return AccessDecision(
                granted=False,
                reason=result.reason,
                permissions=tuple(matching),
                conditions=tuple(result.conditions) or None,
            )
        return AccessDecision(
            granted=True,
            reason="Access granted: Permission and conditions satisfied",
            permissions=tuple(matching),
            conditions=tuple(result.conditions) or None,
        )

    def user_permissions(self, user: UserContext) -> list[str]:
        """Union of permissions across the user's roles, first-seen order."""
        roles = self._load_roles(list(user.roles))
        permissions: dict[str, None] = {}
        for role in roles:
            for p in role.permissions:
                permissions[p] = None
            for p in self.hierarchy.inherited_permissions(role, self.role_store):
                permissions[p] = None
        return list(permissions)

    def _load_roles(self, role_ids: list[str]) -> list[Role]:
        if not role_ids:
            return []
        try:
            return call_with_timeout(
                "role_store", self.role_store_timeout, self.role_store.get_roles, role_ids
            )
        except EvaluationUnavailable:
            raise
        except Exception as exc:
            raise EvaluationUnavailable("role_store", str(exc)) from exc

    def has_permission(
        self,
        user: UserContext,
        action: str,
        resource_type: str | None = None,
        resource_id: str | None = None,
    ) -> bool:
        resource = None
        if resource_type:
            resource = ResourceRef(type=resource_type, id=resource_id, tenant_id=user.tenant_id)
        return self.check_permission(AccessContext(user=user, action=action, resource=resource)).granted

    def invalidate_user(self, user_id: str) -> int:
        """Drop cached decisions for a user; call on any role or permission change."""
        removed = self.cache.invalidate_for_user(user_id)
        logger.debug("Invalidated %d cached decisions for user %s", removed, user_id)
        return removed

    def invalidate_role(self, role_id: str) -> None:
        """Drop every cached decision; cache keys do not record which roles produced them."""
        self.cache.clear_all()
        logger.debug("Cleared decision cache after permission change on role %s", role_id)

    def clear_cache(self) -> None:
        self.cache.clear_all()

    def _record_decision(self, context: AccessContext, decision: AccessDecision, cached: bool) -> None:
        if self.audit_store is None:
            return
        try:
            entry = self._audit_entry(context, decision, cached)
            if self.dispatcher is not None:
                self.dispatcher.submit("audit_access_decision", self.audit_store.append, entry)
            else:
                self.audit_store.append(entry)
        except Exception:
            logger.exception("Failed to record access decision")

    @staticmethod
    def _audit_entry(context: AccessContext, decision: AccessDecision, cached: bool) -> AuditEntry:
        user = context.user
        return AuditEntry(
            tenant_slug=user.tenant_slug,
            user_id=user.login_id,
            email=user.email or None,
            action="access_granted" if decision.granted else "access_denied",
            ip_address=context.ip_address or "unknown",
            user_agent=context.user_agent,
            metadata={
                "resource": context.resource.type if context.resource else None,
                "resource_id": context.resource.id if context.resource else None,
                "required_action": context.action,
                "route": context.route,
                "reason": decision.reason,
                "permissions": list(decision.permissions),
                "is_external_customer": user.is_external_customer,
                "cached": cached,
            },
        )
