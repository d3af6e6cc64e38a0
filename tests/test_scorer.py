"""Tests for anomaly scoring."""

from datetime import timedelta

import pytest

from tenantguard.stores import AuditEntry
from tenantguard.telemetry import RiskLevel
from tenantguard.telemetry.scorer import RateLimitTracker, SuspiciousIPSet, level_for_score

from conftest import NOON


def failure_entry(minutes_ago, user_id="alice", tenant_slug="acme"):
    return AuditEntry(tenant_slug=tenant_slug, user_id=user_id, action="login_failure",
                      ip_address="203.0.113.10", timestamp=NOON - timedelta(minutes=minutes_ago))


def login_entry(country, days_ago=1):
    return AuditEntry(tenant_slug="acme", user_id="alice", action="login_success",
                      ip_address="203.0.113.10", metadata={"geo_location": {"country": country}},
                      timestamp=NOON - timedelta(days=days_ago))


class TestLevels:
    @pytest.mark.parametrize("score,level", [
        (0, RiskLevel.LOW), (14, RiskLevel.LOW), (15, RiskLevel.MEDIUM),
        (30, RiskLevel.HIGH), (49, RiskLevel.HIGH), (50, RiskLevel.CRITICAL),
    ])
    def test_thresholds(self, score, level):
        assert level_for_score(score) == level

    def test_highest(self):
        assert RiskLevel.highest(RiskLevel.MEDIUM, RiskLevel.CRITICAL, RiskLevel.LOW) == RiskLevel.CRITICAL
        assert RiskLevel.highest() == RiskLevel.LOW


class TestAnomalyScorer:
    def test_clean_event(self, scorer, enricher, make_event):
        ctx = scorer.score(enricher.enrich(make_event()))
        assert ctx.anomaly_score == 0
        assert ctx.risk_level == RiskLevel.LOW
        assert ctx.threats == []

    def test_three_failures_in_window(self, scorer, enricher, audit_store, make_event):
        audit_store.append(failure_entry(10))
        audit_store.append(failure_entry(5))
        ctx = scorer.score(enricher.enrich(make_event(action="login_failure")))
        assert "Multiple failed login attempts" in ctx.threats
        assert ctx.anomaly_score == 25
        assert ctx.risk_level.rank >= RiskLevel.HIGH.rank

    def test_failures_outside_window_ignored(self, scorer, enricher, audit_store, make_event):
        audit_store.append(failure_entry(30))
        audit_store.append(failure_entry(5))
        ctx = scorer.score(enricher.enrich(make_event(action="login_failure")))
        assert "Multiple failed login attempts" not in ctx.threats

    def test_failures_are_per_user_and_tenant(self, scorer, enricher, audit_store, make_event):
        audit_store.append(failure_entry(5, user_id="bob"))
        audit_store.append(failure_entry(5, tenant_slug="other"))
        ctx = scorer.score(enricher.enrich(make_event(action="login_failure")))
        assert ctx.threats == []

    def test_failures_only_scored_for_failure_events(self, scorer, enricher, audit_store, make_event):
        for m in (1, 2, 3):
            audit_store.append(failure_entry(m))
        ctx = scorer.score(enricher.enrich(make_event(action="login_success")))
        assert "Multiple failed login attempts" not in ctx.threats

    def test_rate_limit_violations(self, scorer, rate_limits, enricher, make_event):
        for _ in range(6):
            rate_limits.record("203.0.113.10", "acme")
        ctx = scorer.score(enricher.enrich(make_event()))
        assert "Excessive rate limit violations" in ctx.threats
        assert ctx.anomaly_score == 40
        assert ctx.risk_level == RiskLevel.CRITICAL

    def test_rate_limit_threshold_is_exclusive(self, scorer, rate_limits, enricher, make_event):
        for _ in range(5):
            rate_limits.record("203.0.113.10", "acme")
        ctx = scorer.score(enricher.enrich(make_event()))
        assert ctx.threats == []

    def test_suspicious_ip(self, scorer, suspicious_ips, enricher, make_event):
        suspicious_ips.add("203.0.113.10")
        ctx = scorer.score(enricher.enrich(make_event()))
        assert ctx.threats == ["Known suspicious IP"]
        assert ctx.anomaly_score == 30
        assert ctx.risk_level == RiskLevel.HIGH

    def test_suspicious_user_agent(self, scorer, enricher, make_event):
        ctx = scorer.score(enricher.enrich(make_event(user_agent="python-requests/2.31")))
        assert ctx.threats == ["Suspicious user agent pattern"]
        assert ctx.anomaly_score == 15
        assert ctx.risk_level == RiskLevel.MEDIUM

    @pytest.mark.parametrize("hour,unusual", [(1, False), (2, True), (6, True), (7, False)])
    def test_unusual_time(self, scorer, enricher, make_event, hour, unusual):
        ctx = scorer.score(enricher.enrich(make_event(timestamp=NOON.replace(hour=hour))))
        assert ("Unusual login time" in ctx.threats) is unusual

    def test_unusual_location(self, scorer, enricher, audit_store, make_event):
        audit_store.append(login_entry("US"))
        ctx = scorer.score(enricher.enrich(make_event(ip_address="198.51.100.7")))
        assert ctx.threats == ["Unusual geographic location"]
        assert ctx.risk_level == RiskLevel.MEDIUM

    def test_known_location(self, scorer, enricher, audit_store, make_event):
        audit_store.append(login_entry("US"))
        ctx = scorer.score(enricher.enrich(make_event()))
        assert ctx.threats == []

    def test_no_history_is_not_unusual(self, scorer, enricher, make_event):
        ctx = scorer.score(enricher.enrich(make_event(ip_address="198.51.100.7")))
        assert ctx.threats == []

    def test_old_history_ignored(self, scorer, enricher, audit_store, make_event):
        audit_store.append(login_entry("US", days_ago=45))
        ctx = scorer.score(enricher.enrich(make_event(ip_address="198.51.100.7")))
        assert ctx.threats == []

    def test_combined_heuristics(self, scorer, suspicious_ips, enricher, make_event):
        suspicious_ips.add("203.0.113.10")
        ctx = scorer.score(enricher.enrich(make_event(user_agent="curl/8.4.0",
                                                      timestamp=NOON.replace(hour=3))))
        assert ctx.anomaly_score == 30 + 15 + 10
        assert ctx.risk_level == RiskLevel.CRITICAL
        assert len(ctx.mitigations) == len(ctx.threats) == 3

    def test_history_failure_is_no_signal(self, suspicious_ips, enricher, make_event):
        from tenantguard.telemetry import AnomalyScorer

        class BrokenHistory:
            def count(self, query):
                raise ConnectionError("down")

            def find(self, query, limit=None, newest_first=True):
                raise ConnectionError("down")

        scorer = AnomalyScorer(history=BrokenHistory(), suspicious_ips=suspicious_ips)
        ctx = scorer.score(enricher.enrich(make_event(action="login_failure", ip_address="198.51.100.7")))
        assert ctx.threats == []


class TestSharedState:
    def test_suspicious_ip_set(self):
        ips = SuspiciousIPSet(["1.2.3.4"])
        ips.add("5.6.7.8")
        assert "5.6.7.8" in ips
        ips.discard("1.2.3.4")
        assert ips.snapshot() == ["5.6.7.8"]
        assert len(ips) == 1

    def test_rate_limit_tracker(self):
        tracker = RateLimitTracker()
        assert tracker.record("1.2.3.4", "acme") == 1
        assert tracker.record("1.2.3.4", "acme") == 2
        assert tracker.count("1.2.3.4", "other") == 0
        tracker.reset("1.2.3.4", "acme")
        assert tracker.count("1.2.3.4", "acme") == 0
