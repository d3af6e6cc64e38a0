"""Security telemetry: event models, enrichment and anomaly scoring."""

from .enricher import EventEnricher, parse_user_agent
from .events import AuthEventType, EnhancedAuthLog, LogAggregation, RiskLevel, SecurityContext
from .scorer import AnomalyScorer, RateLimitTracker, SuspiciousIPSet

__all__ = [
    "AnomalyScorer",
    "AuthEventType",
    "EnhancedAuthLog",
    "EventEnricher",
    "LogAggregation",
    "RateLimitTracker",
    "RiskLevel",
    "SecurityContext",
    "SuspiciousIPSet",
    "parse_user_agent",
]
