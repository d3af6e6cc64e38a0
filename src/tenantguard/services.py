"""
Service wiring.

``build_services`` constructs every engine once from a ``Settings`` object
and the external collaborators; the CLI, the HTTP API and embedding
applications all receive the resulting ``Services`` bundle.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .access.cache import DecisionCache
from .access.engine import PermissionEvaluator
from .alerts.engine import AlertRuleEngine, load_default_rules
from .config import Settings
from .dispatch import BackgroundDispatcher
from .stores.audit import InMemoryAuditStore
from .stores.geo import GeoLocator, StaticGeoLocator
from .stores.notify import LoggingNotifier, Notifier
from .stores.roles import InMemoryRoleStore
from .telemetry.enricher import EventEnricher
from .telemetry.scorer import AnomalyScorer, RateLimitTracker, SuspiciousIPSet
from .telemetry.service import AuthLoggingService

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    role_store: InMemoryRoleStore
    audit_store: InMemoryAuditStore
    dispatcher: BackgroundDispatcher
    evaluator: PermissionEvaluator
    suspicious_ips: SuspiciousIPSet
    rate_limits: RateLimitTracker
    alert_engine: AlertRuleEngine
    logging_service: AuthLoggingService

    def close(self) -> None:
        self.dispatcher.close()


def build_services(
    settings: Settings | None = None,
    role_store: InMemoryRoleStore | None = None,
    audit_store: InMemoryAuditStore | None = None,
    geo_locator: GeoLocator | None = None,
    notifier: Notifier | None = None,
) -> Services:
    settings = settings or Settings()
    role_store = role_store if role_store is not None else InMemoryRoleStore()
    audit_store = audit_store if audit_store is not None else InMemoryAuditStore()
    dispatcher = BackgroundDispatcher(
        max_attempts=settings.dispatcher_max_attempts,
        retry_delay=settings.dispatcher_retry_delay,
    )

    evaluator = PermissionEvaluator(
        role_store,
        audit_store=audit_store,
        cache=DecisionCache(settings.cache_ttl_seconds, settings.cache_max_entries),
        dispatcher=dispatcher,
        role_store_timeout=settings.role_store_timeout,
    )
    if hasattr(role_store, "add_listener"):
        role_store.add_listener(evaluator.invalidate_user)
    if hasattr(role_store, "add_role_listener"):
        role_store.add_role_listener(evaluator.invalidate_role)

    suspicious_ips = SuspiciousIPSet()
    rate_limits = RateLimitTracker()
    scorer = AnomalyScorer(
        history=audit_store,
        suspicious_ips=suspicious_ips,
        rate_limits=rate_limits,
        failed_login_window_minutes=settings.failed_login_window_minutes,
        failed_login_threshold=settings.failed_login_threshold,
        rate_limit_violation_threshold=settings.rate_limit_violation_threshold,
        location_history_days=settings.location_history_days,
        location_history_limit=settings.location_history_limit,
    )

    alert_engine = AlertRuleEngine(
        audit_store=audit_store,
        suspicious_ips=suspicious_ips,
        notifier=notifier or LoggingNotifier(),
        rules=[] if settings.alert_rules_file else load_default_rules(),
    )
    if settings.alert_rules_file:
        loaded = alert_engine.load_file(settings.alert_rules_file)
        logger.info("Loaded %d alert rules from %s", len(loaded), settings.alert_rules_file)

    logging_service = AuthLoggingService(
        audit_store,
        enricher=EventEnricher(geo_locator or StaticGeoLocator(), geo_timeout=settings.geo_lookup_timeout),
        scorer=scorer,
        alert_engine=alert_engine,
        dispatcher=dispatcher,
        retention_days=settings.retention_days,
    )

    return Services(
        settings=settings,
        role_store=role_store,
        audit_store=audit_store,
        dispatcher=dispatcher,
        evaluator=evaluator,
        suspicious_ips=suspicious_ips,
        rate_limits=rate_limits,
        alert_engine=alert_engine,
        logging_service=logging_service,
    )
