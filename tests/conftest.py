"""Shared test fixtures for TenantGuard."""

from datetime import datetime, timezone

import pytest

from tenantguard.access import AccessContext, PermissionEvaluator, ResourceRef, UserContext
from tenantguard.alerts import AlertRuleEngine
from tenantguard.config import Settings
from tenantguard.services import build_services
from tenantguard.stores import (
    GeoLocation,
    InMemoryAuditStore,
    InMemoryRoleStore,
    LoggingNotifier,
    Role,
    StaticGeoLocator,
)
from tenantguard.telemetry import AnomalyScorer, EventEnricher, RateLimitTracker, SuspiciousIPSet

# A Tuesday at noon UTC, outside the unusual-hours window.
NOON = datetime(2024, 3, 12, 12, 0, tzinfo=timezone.utc)

CHROME_MAC = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.6099.109 Safari/537.36"
)


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class CountingRoleStore(InMemoryRoleStore):
    """Role store that counts reads, to observe cache hits."""

    def __init__(self, roles=None):
        super().__init__(roles)
        self.reads = 0

    def get_roles(self, role_ids):
        self.reads += 1
        return super().get_roles(role_ids)


class BrokenRoleStore:
    def get_roles(self, role_ids):
        raise ConnectionError("role store down")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def role_store():
    return CountingRoleStore([
        Role("admin", "Admin", ("*",), tenant_id="tenant-a"),
        Role("inspector", "Inspector", ("inspection.read",), tenant_id="tenant-a"),
        Role("analyst", "Analyst", ("user.read", "reports.*"), tenant_id="tenant-a"),
        Role("customer", "Customer", ("dashboard.read", "user.read_own"), is_external_customer=True,
             tenant_id="tenant-a"),
    ])


@pytest.fixture
def audit_store():
    return InMemoryAuditStore()


@pytest.fixture
def evaluator(role_store, audit_store):
    return PermissionEvaluator(role_store, audit_store=audit_store)


@pytest.fixture
def make_context():
    def _make(roles=("analyst",), action="read", resource_type="reports", resource_tenant="tenant-a",
              route=None, external=False, user_id="alice", tenant_id="tenant-a"):
        resource = ResourceRef(resource_type, "res-1", resource_tenant) if resource_type else None
        user = UserContext(
            id=user_id, tenant_id=tenant_id, tenant_slug="acme", roles=tuple(roles),
            is_external_customer=external,
        )
        return AccessContext(user=user, action=action, resource=resource, route=route)
    return _make


@pytest.fixture
def geo_locator():
    return StaticGeoLocator({
        "203.0.113.10": GeoLocation(country="US", region="NY", city="New York", timezone="America/New_York"),
        "198.51.100.7": GeoLocation(country="RU", region="MOW", city="Moscow", timezone="Europe/Moscow"),
    })


@pytest.fixture
def suspicious_ips():
    return SuspiciousIPSet()


@pytest.fixture
def rate_limits():
    return RateLimitTracker()


@pytest.fixture
def scorer(audit_store, suspicious_ips, rate_limits):
    return AnomalyScorer(history=audit_store, suspicious_ips=suspicious_ips, rate_limits=rate_limits)


@pytest.fixture
def enricher(geo_locator):
    return EventEnricher(geo_locator)


@pytest.fixture
def notifier():
    return LoggingNotifier()


@pytest.fixture
def alert_engine(audit_store, suspicious_ips, notifier):
    return AlertRuleEngine(audit_store=audit_store, suspicious_ips=suspicious_ips, notifier=notifier)


@pytest.fixture
def make_event():
    def _make(action="login_success", user_id="alice", tenant_slug="acme", ip_address="203.0.113.10",
              user_agent=CHROME_MAC, timestamp=NOON, **extra):
        event = {
            "tenant_slug": tenant_slug,
            "user_id": user_id,
            "action": action,
            "ip_address": ip_address,
            "user_agent": user_agent,
            "timestamp": timestamp,
        }
        event.update(extra)
        return event
    return _make


@pytest.fixture
def services(role_store, geo_locator, notifier):
    svc = build_services(Settings(), role_store=role_store, geo_locator=geo_locator, notifier=notifier)
    yield svc
    svc.close()
