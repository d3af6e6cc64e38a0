"""Rule-based security alerting."""

from .engine import AlertRuleEngine, TriggeredAlert, load_default_rules
from .models import AlertAction, AlertCondition, AlertRule, resolve_path, validate_rule

__all__ = [
    "AlertAction",
    "AlertCondition",
    "AlertRule",
    "AlertRuleEngine",
    "TriggeredAlert",
    "load_default_rules",
    "resolve_path",
    "validate_rule",
]
