"""Tests for the auth logging pipeline and service wiring."""

from datetime import timedelta

import pytest

from tenantguard.config import Settings
from tenantguard.services import build_services
from tenantguard.stores import AuditEntry, AuditQuery
from tenantguard.telemetry import RiskLevel

from conftest import NOON


@pytest.fixture
def logging_service(services):
    return services.logging_service


class TestProcessEvent:
    def test_event_persisted_with_context(self, logging_service, services, make_event):
        event, ctx = logging_service.process_event(make_event(metadata={"method": "password"}))
        entries = services.audit_store.find(AuditQuery(user_id="alice"))
        assert len(entries) == 1
        meta = entries[0].metadata
        assert meta["method"] == "password"
        assert meta["geo_location"]["country"] == "US"
        assert meta["device_info"]["browser"]["name"] == "Chrome"
        assert meta["security_context"] == ctx.to_dict()
        assert meta["correlation_id"] == event.correlation_id
        assert entries[0].timestamp == NOON

    def test_failed_login_threshold(self, logging_service, make_event):
        for i in range(2):
            _, ctx = logging_service.process_event(make_event(action="login_failure",
                                                              timestamp=NOON + timedelta(minutes=i)))
            assert "Multiple failed login attempts" not in ctx.threats
        _, ctx = logging_service.process_event(make_event(action="login_failure",
                                                          timestamp=NOON + timedelta(minutes=2)))
        assert "Multiple failed login attempts" in ctx.threats
        assert ctx.risk_level.rank >= RiskLevel.HIGH.rank

    def test_rate_limit_events_accumulate(self, logging_service, services, make_event):
        contexts = [
            logging_service.process_event(make_event(action="rate_limit_exceeded"))[1]
            for _ in range(6)
        ]
        assert services.rate_limits.count("203.0.113.10", "acme") == 6
        assert all("Excessive rate limit violations" not in c.threats for c in contexts[:5])
        assert "Excessive rate limit violations" in contexts[5].threats
        assert contexts[5].anomaly_score >= 40
        assert contexts[5].risk_level == RiskLevel.CRITICAL

    def test_rate_limit_counts_then_applies_to_any_event(self, logging_service, make_event):
        for _ in range(6):
            logging_service.process_event(make_event(action="rate_limit_exceeded"))
        _, ctx = logging_service.process_event(make_event(action="login_success"))
        assert ctx.risk_level == RiskLevel.CRITICAL

    def test_five_violations_do_not_flag_other_events(self, logging_service, make_event):
        for _ in range(5):
            logging_service.process_event(make_event(action="rate_limit_exceeded"))
        _, ctx = logging_service.process_event(make_event(action="login_success"))
        assert "Excessive rate limit violations" not in ctx.threats
        _, ctx = logging_service.process_event(make_event(action="rate_limit_exceeded"))
        assert ctx.risk_level == RiskLevel.CRITICAL

    def test_failed_login_alert_blocks_ip(self, logging_service, services, make_event):
        for i in range(5):
            logging_service.process_event(make_event(action="login_failure", ip_address="198.51.100.7",
                                                     timestamp=NOON + timedelta(minutes=i)))
        assert "198.51.100.7" in services.suspicious_ips
        fired = services.alert_engine.alerts_triggered("acme")
        assert [a.rule_id for a in fired] == ["multiple_failed_logins"]

        _, ctx = logging_service.process_event(make_event(ip_address="198.51.100.7",
                                                          timestamp=NOON + timedelta(minutes=6)))
        assert "Known suspicious IP" in ctx.threats

    def test_unusual_location_notifies_admin(self, logging_service, notifier, make_event):
        logging_service.process_event(make_event(timestamp=NOON - timedelta(days=1)))
        _, ctx = logging_service.process_event(make_event(ip_address="198.51.100.7"))
        assert "Unusual geographic location" in ctx.threats
        assert [n.channel for n in notifier.outbox] == ["admin"]

    def test_suspicious_agent_alert(self, logging_service, services, make_event):
        logging_service.process_event(make_event(user_agent="Mozilla/5.0 (compatible; Googlebot/2.1)"))
        assert [a.rule_id for a in services.alert_engine.alerts_triggered()] == ["suspicious_user_agent"]


class TestBackgroundLogging:
    def test_log_auth_event_is_queued(self, logging_service, services, make_event):
        logging_service.log_auth_event(make_event())
        assert logging_service.flush()
        assert services.audit_store.count(AuditQuery(action="login_success")) == 1

    def test_failing_pipeline_does_not_raise(self, logging_service, services, make_event):
        services.dispatcher.retry_delay = 0

        def broken(entry):
            raise IOError("disk full")

        services.audit_store.append = broken
        logging_service.log_auth_event(make_event())
        assert logging_service.flush()
        assert services.dispatcher.stats.failed == 1
        assert services.dispatcher.stats.retried == services.dispatcher.max_attempts - 1

    def test_transient_write_failure_counts_rate_limit_once(self, logging_service, services, make_event):
        services.dispatcher.retry_delay = 0
        store = services.audit_store
        real_append = store.append
        failures = []

        def flaky(entry):
            if not failures:
                failures.append(entry)
                raise IOError("temporarily unavailable")
            real_append(entry)

        store.append = flaky
        logging_service.log_auth_event(make_event(action="rate_limit_exceeded"))
        assert logging_service.flush()

        assert services.rate_limits.count("203.0.113.10", "acme") == 1
        assert store.count(AuditQuery(action="rate_limit_exceeded")) == 1
        assert services.dispatcher.stats.retried == 1
        assert services.dispatcher.stats.failed == 0

    def test_log_permission_check(self, logging_service, services):
        logging_service.log_permission_check("acme", "alice", "reports.read", False, "Access denied",
                                             resource="reports")
        logging_service.flush()
        entry = services.audit_store.find(AuditQuery(action="access_denied"))[0]
        assert entry.metadata["required_action"] == "reports.read"
        assert entry.metadata["reason"] == "Access denied"


class TestAggregation:
    def test_aggregation(self, logging_service, make_event):
        logging_service.process_event(make_event(timestamp=NOON - timedelta(hours=2)))
        logging_service.process_event(make_event(user_id="bob", ip_address="198.51.100.7",
                                                 user_agent="curl/8.4.0", timestamp=NOON - timedelta(hours=1)))
        logging_service.process_event(make_event(action="logout", timestamp=NOON))
        logging_service.process_event(make_event(tenant_slug="globex", timestamp=NOON))

        agg = logging_service.get_log_aggregation("acme", NOON - timedelta(hours=3), NOON)
        assert agg.total_events == 3
        assert agg.event_breakdown == {"login_success": 2, "logout": 1}
        assert agg.unique_users == 2
        assert agg.unique_ips == 2
        assert agg.risk_level_breakdown == {"low": 2, "medium": 1, "high": 0, "critical": 0}
        assert agg.suspicious_activities == 1
        assert agg.alerts_triggered == 1
        assert agg.top_countries[0] == {"country": "US", "count": 2, "percentage": pytest.approx(200 / 3)}
        assert agg.top_user_agents[0]["count"] == 2
        assert agg.anomaly_score_stats["max"] == 15.0
        assert agg.anomaly_score_stats["mean"] == 5.0

    def test_window_bounds(self, logging_service, make_event):
        logging_service.process_event(make_event(timestamp=NOON - timedelta(days=2)))
        agg = logging_service.get_log_aggregation("acme", NOON - timedelta(hours=1), NOON)
        assert agg.total_events == 0
        assert agg.top_countries == []
        assert agg.anomaly_score_stats == {}

    def test_to_dict(self, logging_service, make_event):
        logging_service.process_event(make_event())
        data = logging_service.get_log_aggregation("acme", NOON - timedelta(hours=1), NOON).to_dict()
        assert data["timeframe"]["end"] == NOON.isoformat()
        assert data["total_events"] == 1


class TestRetention:
    def test_cleanup_old_logs(self, logging_service, services):
        services.audit_store.append(AuditEntry("acme", "alice", "logout", timestamp=NOON))
        services.audit_store.append(AuditEntry("acme", "alice", "logout"))
        assert logging_service.cleanup_old_logs(retention_days=30) == 1
        assert len(services.audit_store) == 1

    def test_cleanup_drops_old_alerts(self, logging_service, services, make_event):
        logging_service.process_event(make_event(user_agent="Mozilla/5.0 (compatible; Googlebot/2.1)"))
        assert len(services.alert_engine.alerts_triggered()) == 1
        logging_service.cleanup_old_logs(retention_days=30)
        assert services.alert_engine.alerts_triggered() == []


class TestBuildServices:
    def test_custom_rules_file(self, tmp_path):
        path = tmp_path / "rules.yaml"
        path.write_text("rules:\n  - id: only\n    conditions:\n"
                        "      - {field: action, operator: eq, value: logout}\n")
        svc = build_services(Settings(alert_rules_file=str(path)))
        try:
            assert list(svc.alert_engine.rules) == ["only"]
        finally:
            svc.close()

    def test_settings_flow_through(self):
        svc = build_services(Settings(cache_ttl_seconds=5, failed_login_threshold=10))
        try:
            assert svc.evaluator.cache.ttl_seconds == 5
            assert svc.logging_service.scorer.failed_login_threshold == 10
            assert svc.alert_engine.suspicious_ips is svc.suspicious_ips
        finally:
            svc.close()
