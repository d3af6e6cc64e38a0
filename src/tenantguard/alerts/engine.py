"""
Alert rule engine.

Evaluates YAML-defined alert rules against scored security events and runs
the actions of every rule that fires. Evaluation never raises into the
caller: broken conditions are false and failing actions are logged.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from importlib import resources
from typing import Any

import yaml

from ..stores.audit import AuditQuery, AuditStore, utcnow
from ..stores.notify import LoggingNotifier, Notifier
from ..telemetry.events import EnhancedAuthLog, SecurityContext
from ..telemetry.scorer import SuspiciousIPSet
from .models import MISSING, AlertAction, AlertCondition, AlertRule, resolve_path, validate_rule

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TriggeredAlert:
    rule_id: str
    tenant_slug: str
    severity: str
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "tenant_slug": self.tenant_slug,
            "severity": self.severity,
            "timestamp": self.timestamp.isoformat(),
        }


def load_default_rules() -> list[AlertRule]:
    """Rules shipped with the package in ``default_rules.yaml``."""
    text = resources.files("tenantguard.alerts").joinpath("default_rules.yaml").read_text()
    data = yaml.safe_load(text) or {}
    return [AlertRule.from_dict(rd) for rd in data.get("rules", [])]


class AlertRuleEngine:
    """Holds the rule set, evaluates events and records fired alerts."""

    def __init__(
        self,
        audit_store: AuditStore | None = None,
        suspicious_ips: SuspiciousIPSet | None = None,
        notifier: Notifier | None = None,
        rules: list[AlertRule] | None = None,
        max_history: int = 10_000,
    ):
        self.audit_store = audit_store
        self.suspicious_ips = suspicious_ips if suspicious_ips is not None else SuspiciousIPSet()
        self.notifier = notifier if notifier is not None else LoggingNotifier()
        self.rules: dict[str, AlertRule] = {}
        self.triggered: deque[TriggeredAlert] = deque(maxlen=max_history)
        self._lock = threading.Lock()
        for rule in rules if rules is not None else load_default_rules():
            self.add_rule(rule)

    def add_rule(self, rule: AlertRule) -> None:
        for problem in validate_rule(rule):
            logger.warning("Alert rule %s: %s", rule.id, problem)
        self.rules[rule.id] = rule

    def remove_rule(self, rule_id: str) -> bool:
        return self.rules.pop(rule_id, None) is not None

    def evaluate(
        self,
        event: EnhancedAuthLog,
        security_context: SecurityContext,
        rules: list[AlertRule] | None = None,
    ) -> list[str]:
        """Run every applicable rule. Returns the ids of rules that fired."""
        candidates = rules if rules is not None else list(self.rules.values())
        document = {**event.to_dict(), "security_context": security_context.to_dict()}
        fired = []

        for rule in candidates:
            try:
                if not rule.applies_to(event.tenant_slug):
                    continue
                if not all(self._condition_holds(c, document, event) for c in rule.conditions):
                    continue
            except Exception:
                logger.exception("Alert rule %s could not be evaluated", rule.id)
                continue

            fired.append(rule.id)
            self._record(rule, event)
            for action in rule.actions:
                self._run_action(action, rule, event, security_context)

        return fired

    def _condition_holds(
        self, condition: AlertCondition, document: dict[str, Any], event: EnhancedAuthLog
    ) -> bool:
        if condition.operator == "frequency":
            return self._frequency(condition, document, event)
        return condition.evaluate(document)

    def _frequency(
        self, condition: AlertCondition, document: dict[str, Any], event: EnhancedAuthLog
    ) -> bool:
        if not condition.time_window or self.audit_store is None:
            return False
        action = resolve_path(document, condition.field)
        if action is MISSING:
            return False
        try:
            threshold = float(condition.value)
            window = timedelta(minutes=float(condition.time_window))
        except (TypeError, ValueError):
            return False
        try:
            count = self.audit_store.count(AuditQuery(
                tenant_slug=event.tenant_slug,
                user_id=event.user_id,
                action=str(action),
                since=event.timestamp - window,
                until=event.timestamp,
            ))
        except Exception:
            logger.exception("Frequency lookup failed for %s", condition.field)
            return False
        return count >= threshold

    def _record(self, rule: AlertRule, event: EnhancedAuthLog) -> None:
        logger.info(
            "Alert %s fired for tenant %s user %s",
            rule.id, event.tenant_slug, event.user_id,
        )
        with self._lock:
            self.triggered.append(
                TriggeredAlert(rule.id, event.tenant_slug, rule.severity, event.timestamp)
            )

    def _run_action(
        self,
        action: AlertAction,
        rule: AlertRule,
        event: EnhancedAuthLog,
        security_context: SecurityContext,
    ) -> None:
        try:
            if action.type == "log":
                logger.warning(
                    "Security alert [%s] %s: tenant=%s user=%s ip=%s risk=%s threats=%s",
                    rule.severity, rule.name, event.tenant_slug, event.user_id,
                    event.ip_address, security_context.risk_level.value,
                    security_context.threats,
                )
            elif action.type == "block_ip":
                self.suspicious_ips.add(event.ip_address)
                logger.warning("Blocked IP %s after alert %s", event.ip_address, rule.id)
            elif action.type == "email":
                self.notifier.send_email(
                    action.target,
                    f"Security alert: {rule.name}",
                    _alert_body(rule, event, security_context),
                )
            elif action.type == "webhook":
                self.notifier.send_webhook(action.target, {
                    "rule": rule.id,
                    "severity": rule.severity,
                    "event": event.to_dict(),
                    "security_context": security_context.to_dict(),
                    **action.parameters,
                })
            elif action.type == "notify_admin":
                self.notifier.notify_admin(action.target, _alert_body(rule, event, security_context))
            else:
                logger.warning("Unknown alert action '%s' in rule %s", action.type, rule.id)
        except Exception:
            logger.exception("Alert action %s failed for rule %s", action.type, rule.id)

    def purge_before(self, cutoff: datetime) -> int:
        """Drop fired alerts older than the cutoff. Returns the number removed."""
        with self._lock:
            kept = [a for a in self.triggered if a.timestamp >= cutoff]
            removed = len(self.triggered) - len(kept)
            self.triggered = deque(kept, maxlen=self.triggered.maxlen)
        return removed

    def alerts_triggered(
        self,
        tenant_slug: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[TriggeredAlert]:
        with self._lock:
            history = list(self.triggered)
        return [
            a for a in history
            if (tenant_slug is None or a.tenant_slug == tenant_slug)
            and (start is None or a.timestamp >= start)
            and (end is None or a.timestamp <= end)
        ]

    def load_yaml(self, yaml_str: str) -> list[AlertRule]:
        """Load rules from a YAML string (a ``rules:`` list or a single rule)."""
        data = yaml.safe_load(yaml_str) or {}
        rules = []
        for rdata in data.get("rules", [data] if "id" in data else []):
            rule = AlertRule.from_dict(rdata)
            self.add_rule(rule)
            rules.append(rule)
        return rules

    def load_file(self, path: str) -> list[AlertRule]:
        with open(path) as f:
            return self.load_yaml(f.read())

    def export_yaml(self) -> str:
        data = {"rules": [r.to_dict() for r in self.rules.values()]}
        return yaml.dump(data, default_flow_style=False, sort_keys=False)

    def rule_summary(self) -> dict[str, Any]:
        return {
            "total_rules": len(self.rules),
            "enabled_rules": sum(1 for r in self.rules.values() if r.enabled),
            "rules": [
                {**r.to_dict(), "problems": validate_rule(r)}
                for r in self.rules.values()
            ],
        }


def _alert_body(rule: AlertRule, event: EnhancedAuthLog, ctx: SecurityContext) -> str:
    return (
        f"{rule.description or rule.name}\n"
        f"tenant: {event.tenant_slug}\n"
        f"user: {event.user_id}\n"
        f"ip: {event.ip_address}\n"
        f"risk: {ctx.risk_level.value} ({ctx.anomaly_score})\n"
        f"threats: {', '.join(ctx.threats) or 'none'}"
    )
