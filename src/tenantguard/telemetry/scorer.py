"""
Anomaly scoring for security events.

Sums points from independent heuristics into an anomaly score, maps the
score to a risk level and lets individual heuristics force a minimum
level regardless of the total.
"""

from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable

from ..stores.audit import AuditQuery, AuditStore
from .events import AuthEventType, EnhancedAuthLog, RiskLevel, SecurityContext

logger = logging.getLogger(__name__)

SUSPICIOUS_USER_AGENT_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (r"bot", r"crawler", r"spider", r"scraper", r"curl", r"wget", r"python", r"scripts")
]

UNUSUAL_HOURS = range(2, 7)  # 02:00 through 06:59


class SuspiciousIPSet:
    """Process-wide set of flagged IP addresses."""

    def __init__(self, initial: list[str] | None = None):
        self._ips: set[str] = set(initial or [])
        self._lock = threading.Lock()

    def add(self, ip_address: str) -> None:
        with self._lock:
            self._ips.add(ip_address)

    def discard(self, ip_address: str) -> None:
        with self._lock:
            self._ips.discard(ip_address)

    def __contains__(self, ip_address: object) -> bool:
        with self._lock:
            return ip_address in self._ips

    def __len__(self) -> int:
        with self._lock:
            return len(self._ips)

    def snapshot(self) -> list[str]:
        with self._lock:
            return sorted(self._ips)


class RateLimitTracker:
    """
    Cumulative rate-limit violation counters per ``ip-tenant``.

    Counters live in this process only; a multi-instance deployment would
    need a shared backing store for them to agree.
    """

    def __init__(self):
        self._counts: dict[str, int] = {}
        self._lock = threading.Lock()

    @staticmethod
    def key(ip_address: str, tenant_slug: str) -> str:
        return f"{ip_address}-{tenant_slug}"

    def record(self, ip_address: str, tenant_slug: str) -> int:
        k = self.key(ip_address, tenant_slug)
        with self._lock:
            self._counts[k] = self._counts.get(k, 0) + 1
            return self._counts[k]

    def count(self, ip_address: str, tenant_slug: str) -> int:
        with self._lock:
            return self._counts.get(self.key(ip_address, tenant_slug), 0)

    def reset(self, ip_address: str | None = None, tenant_slug: str | None = None) -> None:
        with self._lock:
            if ip_address is None or tenant_slug is None:
                self._counts.clear()
            else:
                self._counts.pop(self.key(ip_address, tenant_slug), None)


@dataclass(frozen=True)
class Heuristic:
    threat: str
    points: int
    mitigation: str
    forced_level: RiskLevel | None = None


SUSPICIOUS_IP = Heuristic("Known suspicious IP", 30, "Require step-up authentication", RiskLevel.HIGH)
UNUSUAL_LOCATION = Heuristic("Unusual geographic location", 20, "Confirm login with the account owner")
FAILED_LOGINS = Heuristic(
    "Multiple failed login attempts", 25, "Temporarily lock the account", RiskLevel.HIGH
)
RATE_LIMIT = Heuristic(
    "Excessive rate limit violations", 40, "Block the source IP", RiskLevel.CRITICAL
)
SUSPICIOUS_USER_AGENT = Heuristic("Suspicious user agent pattern", 15, "Challenge with CAPTCHA")
UNUSUAL_TIME = Heuristic("Unusual login time", 10, "Review session activity")


def level_for_score(score: int) -> RiskLevel:
    if score >= 50:
        return RiskLevel.CRITICAL
    if score >= 30:
        return RiskLevel.HIGH
    if score >= 15:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def is_suspicious_user_agent(user_agent: str) -> bool:
    return any(p.search(user_agent) for p in SUSPICIOUS_USER_AGENT_PATTERNS)


class AnomalyScorer:
    """
    Computes a SecurityContext for an enriched event.

    Historical signals (failed logins, known login countries) come from the
    audit store; a failed history lookup counts as "no signal".
    """

    def __init__(
        self,
        history: AuditStore | None = None,
        suspicious_ips: SuspiciousIPSet | None = None,
        rate_limits: RateLimitTracker | None = None,
        failed_login_window_minutes: int = 15,
        failed_login_threshold: int = 3,
        rate_limit_violation_threshold: int = 5,
        location_history_days: int = 30,
        location_history_limit: int = 50,
    ):
        self.history = history
        self.suspicious_ips = suspicious_ips if suspicious_ips is not None else SuspiciousIPSet()
        self.rate_limits = rate_limits if rate_limits is not None else RateLimitTracker()
        self.failed_login_window = timedelta(minutes=failed_login_window_minutes)
        self.failed_login_threshold = failed_login_threshold
        self.rate_limit_violation_threshold = rate_limit_violation_threshold
        self.location_history = timedelta(days=location_history_days)
        self.location_history_limit = location_history_limit

    def score(self, event: EnhancedAuthLog, history: AuditStore | None = None) -> SecurityContext:
        store = history if history is not None else self.history
        checks: list[tuple[Heuristic, Callable[[], bool]]] = [
            (SUSPICIOUS_IP, lambda: event.ip_address in self.suspicious_ips),
            (UNUSUAL_LOCATION, lambda: self._unusual_location(event, store)),
            (FAILED_LOGINS, lambda: self._repeated_failures(event, store)),
            (RATE_LIMIT, lambda: self._rate_limited(event)),
            (SUSPICIOUS_USER_AGENT, lambda: bool(event.user_agent) and is_suspicious_user_agent(event.user_agent)),
            (UNUSUAL_TIME, lambda: self._unusual_time(event)),
        ]

        ctx = SecurityContext()
        forced = RiskLevel.LOW
        for heuristic, check in checks:
            if not check():
                continue
            ctx.anomaly_score += heuristic.points
            ctx.threats.append(heuristic.threat)
            ctx.mitigations.append(heuristic.mitigation)
            if heuristic.forced_level is not None:
                forced = RiskLevel.highest(forced, heuristic.forced_level)

        ctx.risk_level = RiskLevel.highest(forced, level_for_score(ctx.anomaly_score))
        return ctx

    def _unusual_location(self, event: EnhancedAuthLog, store: AuditStore | None) -> bool:
        location = event.geo_location
        if store is None or location is None or not location.country:
            return False
        try:
            recent = store.find(
                AuditQuery(
                    tenant_slug=event.tenant_slug,
                    user_id=event.user_id,
                    action=AuthEventType.LOGIN_SUCCESS.value,
                    since=event.timestamp - self.location_history,
                    until=event.timestamp,
                ),
                limit=self.location_history_limit,
                newest_first=True,
            )
        except Exception:
            logger.exception("Location history lookup failed")
            return False

        if not recent:
            return False
        known = {
            (entry.metadata.get("geo_location") or {}).get("country") for entry in recent
        }
        known.discard(None)
        return location.country not in known

    def _repeated_failures(self, event: EnhancedAuthLog, store: AuditStore | None) -> bool:
        if event.action != AuthEventType.LOGIN_FAILURE.value or store is None:
            return False
        try:
            previous = store.count(AuditQuery(
                tenant_slug=event.tenant_slug,
                user_id=event.user_id,
                action=AuthEventType.LOGIN_FAILURE.value,
                since=event.timestamp - self.failed_login_window,
                until=event.timestamp,
            ))
        except Exception:
            logger.exception("Failed login history lookup failed")
            return False
        # The event being scored is itself a failure.
        return previous + 1 >= self.failed_login_threshold

    def _rate_limited(self, event: EnhancedAuthLog) -> bool:
        # rate_limit_exceeded events are counted before scoring, so after five
        # violations only a sixth rate_limit_exceeded event crosses the threshold;
        # any other event from the pair scores normally until that happens.
        violations = self.rate_limits.count(event.ip_address, event.tenant_slug)
        return violations > self.rate_limit_violation_threshold

    def _unusual_time(self, event: EnhancedAuthLog) -> bool:
        # TODO: confirm with product whether the tenant's local timezone
        # (event.geo_location.timezone) should govern this; it uses the raw hour.
        return event.timestamp.hour in UNUSUAL_HOURS
