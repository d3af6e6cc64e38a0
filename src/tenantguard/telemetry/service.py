"""
Authentication event logging service.

Runs each security event through enrichment, anomaly scoring,
persistence and alert evaluation, and summarises the stored events
for dashboards.
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Any

import numpy as np

from ..alerts.engine import AlertRuleEngine
from ..dispatch import BackgroundDispatcher
from ..stores.audit import AuditEntry, AuditQuery, InMemoryAuditStore, utcnow
from .enricher import EventEnricher
from .events import AuthEventType, EnhancedAuthLog, LogAggregation, RiskLevel, SecurityContext
from .scorer import AnomalyScorer

logger = logging.getLogger(__name__)

TOP_N = 10


def _ranked(counts: Counter, key: str, total: int) -> list[dict[str, Any]]:
    return [
        {key: value, "count": count, "percentage": count / total * 100}
        for value, count in counts.most_common(TOP_N)
    ]


class AuthLoggingService:
    """
    Security event pipeline.

    ``log_auth_event`` hands the event to the background dispatcher and
    returns immediately; ``process_event`` runs the same pipeline inline.
    """

    def __init__(
        self,
        audit_store: InMemoryAuditStore,
        enricher: EventEnricher | None = None,
        scorer: AnomalyScorer | None = None,
        alert_engine: AlertRuleEngine | None = None,
        dispatcher: BackgroundDispatcher | None = None,
        retention_days: int = 90,
    ):
        self.audit_store = audit_store
        self.enricher = enricher or EventEnricher()
        self.scorer = scorer or AnomalyScorer(history=audit_store)
        self.alert_engine = alert_engine or AlertRuleEngine(
            audit_store=audit_store, suspicious_ips=self.scorer.suspicious_ips
        )
        self.dispatcher = dispatcher or BackgroundDispatcher()
        self.retention_days = retention_days

    def log_auth_event(self, partial: dict[str, Any]) -> None:
        """Queue an event for processing. Never raises."""
        try:
            self.dispatcher.submit(
                f"auth-event:{partial.get('action')}", self.process_event, dict(partial), max_attempts=1
            )
        except Exception:
            logger.exception("Could not queue auth event")

    def process_event(self, partial: dict[str, Any] | EnhancedAuthLog) -> tuple[EnhancedAuthLog, SecurityContext]:
        event = self.enricher.enrich(partial)

        if event.action == AuthEventType.RATE_LIMIT_EXCEEDED.value:
            violations = self.scorer.rate_limits.record(event.ip_address, event.tenant_slug)
            logger.debug("Rate limit violation %d for %s/%s", violations, event.ip_address, event.tenant_slug)

        ctx = self.scorer.score(event)
        # Rate-limit counters are already updated, so only the write is retried.
        self.dispatcher.call_with_retry("audit-append", self.audit_store.append, self._to_entry(event, ctx))

        if ctx.risk_level in (RiskLevel.HIGH, RiskLevel.CRITICAL):
            logger.warning(
                "High-risk %s event for %s/%s from %s: %s",
                event.action, event.tenant_slug, event.user_id, event.ip_address, ctx.threats,
            )

        fired = self.alert_engine.evaluate(event, ctx)
        if fired:
            logger.info("Event %s triggered alerts %s", event.correlation_id, fired)
        return event, ctx

    @staticmethod
    def _to_entry(event: EnhancedAuthLog, ctx: SecurityContext) -> AuditEntry:
        metadata = dict(event.metadata)
        metadata.update({
            "device_info": event.device_info.to_dict() if event.device_info else None,
            "geo_location": event.geo_location.to_dict() if event.geo_location else None,
            "security_context": ctx.to_dict(),
            "correlation_id": event.correlation_id,
            "session_id": event.session_id,
        })
        return AuditEntry(
            tenant_slug=event.tenant_slug,
            user_id=event.user_id,
            action=event.action,
            ip_address=event.ip_address,
            email=event.email,
            user_agent=event.user_agent,
            metadata=metadata,
            timestamp=event.timestamp,
        )

    def log_permission_check(
        self,
        tenant_slug: str,
        user_id: str,
        action: str,
        granted: bool,
        reason: str,
        ip_address: str = "unknown",
        resource: str | None = None,
        email: str | None = None,
        user_agent: str | None = None,
    ) -> None:
        self.log_auth_event({
            "tenant_slug": tenant_slug,
            "user_id": user_id,
            "email": email,
            "action": (AuthEventType.ACCESS_GRANTED if granted else AuthEventType.ACCESS_DENIED).value,
            "ip_address": ip_address,
            "user_agent": user_agent,
            "metadata": {"resource": resource, "required_action": action, "reason": reason},
        })

    def get_log_aggregation(
        self,
        tenant_slug: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> LogAggregation:
        """Summarise a tenant's events between ``start`` and ``end`` (default: last 24h)."""
        end = end or utcnow()
        start = start or end - timedelta(hours=24)
        entries = self.audit_store.find(
            AuditQuery(tenant_slug=tenant_slug, since=start, until=end), newest_first=False
        )

        agg = LogAggregation(tenant_slug=tenant_slug, start=start, end=end, total_events=len(entries))
        actions: Counter = Counter()
        countries: Counter = Counter()
        user_agents: Counter = Counter()
        users, ips, scores = set(), set(), []

        for entry in entries:
            actions[entry.action] += 1
            users.add(entry.user_id)
            ips.add(entry.ip_address)

            security = entry.metadata.get("security_context") or {}
            level = security.get("risk_level")
            if level in agg.risk_level_breakdown:
                agg.risk_level_breakdown[level] += 1
            if security.get("threats"):
                agg.suspicious_activities += 1
            if "anomaly_score" in security:
                scores.append(security["anomaly_score"])

            country = (entry.metadata.get("geo_location") or {}).get("country")
            if country:
                countries[country] += 1
            if entry.user_agent:
                user_agents[entry.user_agent] += 1

        agg.event_breakdown = dict(actions)
        agg.unique_users = len(users)
        agg.unique_ips = len(ips)
        if entries:
            agg.top_countries = _ranked(countries, "country", len(entries))
            agg.top_user_agents = _ranked(user_agents, "user_agent", len(entries))
        if scores:
            arr = np.array(scores, dtype=float)
            agg.anomaly_score_stats = {
                "mean": round(float(np.mean(arr)), 2),
                "max": float(np.max(arr)),
                "p95": round(float(np.percentile(arr, 95)), 2),
            }
        agg.alerts_triggered = len(self.alert_engine.alerts_triggered(tenant_slug, start, end))
        return agg

    def cleanup_old_logs(self, retention_days: int | None = None) -> int:
        days = self.retention_days if retention_days is None else retention_days
        cutoff = utcnow() - timedelta(days=days)
        removed = self.audit_store.purge_before(cutoff)
        alerts = self.alert_engine.purge_before(cutoff)
        logger.info("Purged %d audit entries and %d alerts older than %d days", removed, alerts, days)
        return removed

    def flush(self, timeout: float | None = 5.0) -> bool:
        return self.dispatcher.flush(timeout)

    def close(self) -> None:
        self.dispatcher.close()
