"""
Alert rule data models.

YAML-compatible alert definitions: a rule fires when every one of its
conditions holds for an event and its security context.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from ..errors import RuleConfigError

OPERATORS = ("eq", "ne", "gt", "gte", "lt", "lte", "contains", "regex", "in", "frequency")
ACTION_TYPES = ("log", "block_ip", "email", "webhook", "notify_admin")
SEVERITIES = ("low", "medium", "high", "critical")

MISSING = object()


def resolve_path(document: Any, path: str) -> Any:
    """Follow a dot path through nested mappings. Returns MISSING when unreachable."""
    if not path:
        return MISSING
    value = document
    for part in path.split("."):
        if isinstance(value, dict) and part in value:
            value = value[part]
        else:
            return MISSING
    return value


def _number(value: Any) -> float:
    if isinstance(value, bool):
        raise TypeError("booleans are not numbers here")
    return float(value)


def _contains(actual: Any, expected: Any) -> bool:
    if isinstance(actual, (list, tuple, set)):
        return expected in actual
    if isinstance(actual, str):
        return str(expected) in actual
    return False


def _regex(actual: Any, pattern: Any) -> bool:
    if actual is None:
        return False
    return re.search(str(pattern), str(actual)) is not None


def _in(actual: Any, options: Any) -> bool:
    return isinstance(options, (list, tuple, set)) and actual in options


_COMPARATORS = {
    "eq": lambda a, v: a == v,
    "ne": lambda a, v: a != v,
    "gt": lambda a, v: _number(a) > _number(v),
    "gte": lambda a, v: _number(a) >= _number(v),
    "lt": lambda a, v: _number(a) < _number(v),
    "lte": lambda a, v: _number(a) <= _number(v),
    "contains": _contains,
    "regex": _regex,
    "in": _in,
}


@dataclass
class AlertCondition:
    """A single field test over the merged event document."""
    field: str  # dot path, e.g. "action", "security_context.threats"
    operator: str
    value: Any = None
    time_window: float | None = None  # minutes, frequency only

    def evaluate(self, document: dict[str, Any]) -> bool:
        """Evaluate a non-frequency condition. Anything malformed is False."""
        actual = resolve_path(document, self.field)
        if actual is MISSING:
            return False
        op_fn = _COMPARATORS.get(self.operator)
        if op_fn is None:
            return False
        try:
            return bool(op_fn(actual, self.value))
        except (TypeError, ValueError, re.error):
            return False

    def to_dict(self) -> dict[str, Any]:
        data = {"field": self.field, "operator": self.operator, "value": self.value}
        if self.time_window is not None:
            data["time_window"] = self.time_window
        return data


@dataclass
class AlertAction:
    type: str
    target: str = ""
    parameters: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type, "target": self.target}
        if self.parameters:
            data["parameters"] = self.parameters
        return data


@dataclass
class AlertRule:
    """A named AND-list of conditions paired with actions."""
    id: str
    name: str = ""
    description: str = ""
    severity: str = "medium"
    conditions: list[AlertCondition] = field(default_factory=list)
    actions: list[AlertAction] = field(default_factory=list)
    enabled: bool = True
    tenant_specific: bool = False
    tenant_slug: str | None = None

    def applies_to(self, tenant_slug: str) -> bool:
        if not self.enabled:
            return False
        if not self.tenant_specific:
            return True
        return (self.tenant_slug or self.id) == tenant_slug

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "severity": self.severity,
            "enabled": self.enabled,
            "tenant_specific": self.tenant_specific,
            "conditions": [c.to_dict() for c in self.conditions],
            "actions": [a.to_dict() for a in self.actions],
        }
        if self.tenant_slug is not None:
            data["tenant_slug"] = self.tenant_slug
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AlertRule:
        try:
            conditions = [
                AlertCondition(
                    field=cd["field"],
                    operator=cd["operator"],
                    value=cd.get("value"),
                    time_window=cd.get("time_window"),
                )
                for cd in data.get("conditions", [])
            ]
            actions = [
                AlertAction(
                    type=ad["type"],
                    target=ad.get("target", ""),
                    parameters=ad.get("parameters") or {},
                )
                for ad in data.get("actions", [])
            ]
            return cls(
                id=data["id"],
                name=data.get("name", data["id"]),
                description=data.get("description", ""),
                severity=data.get("severity", "medium"),
                conditions=conditions,
                actions=actions,
                enabled=data.get("enabled", True),
                tenant_specific=data.get("tenant_specific", False),
                tenant_slug=data.get("tenant_slug"),
            )
        except (KeyError, TypeError) as exc:
            raise RuleConfigError(f"Malformed alert rule {data!r}: {exc}") from exc


def validate_rule(rule: AlertRule) -> list[str]:
    """List the problems that would make a rule silently never fire or misbehave."""
    problems = []
    if rule.severity not in SEVERITIES:
        problems.append(f"unknown severity '{rule.severity}'")
    if not rule.conditions:
        problems.append("rule has no conditions and fires on every event")
    for cond in rule.conditions:
        if cond.operator not in OPERATORS:
            problems.append(f"unknown operator '{cond.operator}' on '{cond.field}'")
        if cond.operator == "frequency" and not cond.time_window:
            problems.append(f"frequency condition on '{cond.field}' has no time_window")
        if cond.operator == "regex":
            try:
                re.compile(str(cond.value))
            except re.error as exc:
                problems.append(f"invalid regex on '{cond.field}': {exc}")
        if cond.operator == "in" and not isinstance(cond.value, (list, tuple)):
            problems.append(f"'in' condition on '{cond.field}' needs a list value")
    for action in rule.actions:
        if action.type not in ACTION_TYPES:
            problems.append(f"unknown action type '{action.type}'")
    return problems
