"""
Security event data models.

An ``EnhancedAuthLog`` is a raw authentication/security event enriched
with device and geolocation details. ``SecurityContext`` is the risk
assessment attached to it before it is persisted.
"""

from __future__ import annotations

import enum
import secrets
import string
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from ..stores.audit import utcnow
from ..stores.geo import GeoLocation

UNKNOWN = "unknown"


class AuthEventType(str, enum.Enum):
    LOGIN_SUCCESS = "login_success"
    LOGIN_FAILURE = "login_failure"
    LOGOUT = "logout"
    PASSWORD_RESET = "password_reset"
    PASSWORD_CHANGE = "password_change"
    ACCOUNT_LOCKED = "account_locked"
    ACCOUNT_UNLOCKED = "account_unlocked"
    TOKEN_REFRESH = "token_refresh"
    TOKEN_EXPIRED = "token_expired"
    TOKEN_REVOKED = "token_revoked"
    EMAIL_VERIFICATION = "email_verification"
    MFA_SUCCESS = "mfa_success"
    MFA_FAILURE = "mfa_failure"
    PERMISSION_DENIED = "permission_denied"
    ACCESS_GRANTED = "access_granted"
    ACCESS_DENIED = "access_denied"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"
    DATA_BREACH_ATTEMPT = "data_breach_attempt"
    PRIVILEGE_ESCALATION = "privilege_escalation"
    ADMIN_ACTION = "admin_action"
    USER_CREATED = "user_created"
    USER_DELETED = "user_deleted"
    ROLE_ASSIGNED = "role_assigned"
    ROLE_REMOVED = "role_removed"
    TENANT_ACCESSED = "tenant_accessed"
    API_KEY_USED = "api_key_used"
    EXPORT_DATA = "export_data"
    IMPORT_DATA = "import_data"


class RiskLevel(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _RISK_ORDER.index(self)

    @classmethod
    def highest(cls, *levels: RiskLevel) -> RiskLevel:
        return max(levels, key=lambda lvl: lvl.rank, default=cls.LOW)


_RISK_ORDER = [RiskLevel.LOW, RiskLevel.MEDIUM, RiskLevel.HIGH, RiskLevel.CRITICAL]


@dataclass(frozen=True)
class BrowserInfo:
    name: str
    version: str = UNKNOWN


@dataclass(frozen=True)
class OSInfo:
    name: str
    version: str = UNKNOWN


@dataclass(frozen=True)
class DeviceInfo:
    user_agent: str
    browser: BrowserInfo | None = None
    os: OSInfo | None = None
    device_type: str = "desktop"  # desktop, mobile, tablet
    fingerprint: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_agent": self.user_agent,
            "browser": {"name": self.browser.name, "version": self.browser.version} if self.browser else None,
            "os": {"name": self.os.name, "version": self.os.version} if self.os else None,
            "device": {"type": self.device_type},
            "fingerprint": self.fingerprint,
        }


@dataclass
class SecurityContext:
    risk_level: RiskLevel = RiskLevel.LOW
    anomaly_score: int = 0
    threats: list[str] = field(default_factory=list)
    mitigations: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "risk_level": self.risk_level.value,
            "anomaly_score": self.anomaly_score,
            "threats": list(self.threats),
            "mitigations": list(self.mitigations),
        }


def generate_correlation_id() -> str:
    """``<epoch-ms>-<9 random base36 chars>``."""
    alphabet = string.digits + string.ascii_lowercase
    suffix = "".join(secrets.choice(alphabet) for _ in range(9))
    return f"{int(time.time() * 1000)}-{suffix}"


def coerce_timestamp(value: Any) -> datetime:
    if value is None:
        return utcnow()
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


@dataclass
class EnhancedAuthLog:
    tenant_slug: str
    user_id: str
    action: str
    ip_address: str = UNKNOWN
    email: str | None = None
    user_agent: str | None = None
    device_info: DeviceInfo | None = None
    geo_location: GeoLocation | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    correlation_id: str = ""
    session_id: str | None = None
    timestamp: datetime = field(default_factory=utcnow)

    @classmethod
    def from_partial(cls, data: dict[str, Any]) -> EnhancedAuthLog:
        """Fill defaults for a partial raw event."""
        action = data.get("action") or UNKNOWN
        if isinstance(action, AuthEventType):
            action = action.value
        return cls(
            tenant_slug=data.get("tenant_slug") or UNKNOWN,
            user_id=data.get("user_id") or UNKNOWN,
            action=action,
            ip_address=data.get("ip_address") or UNKNOWN,
            email=data.get("email"),
            user_agent=data.get("user_agent"),
            metadata=dict(data.get("metadata") or {}),
            correlation_id=data.get("correlation_id") or "",
            session_id=data.get("session_id"),
            timestamp=coerce_timestamp(data.get("timestamp")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant_slug": self.tenant_slug,
            "user_id": self.user_id,
            "email": self.email,
            "action": self.action,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "device_info": self.device_info.to_dict() if self.device_info else None,
            "geo_location": self.geo_location.to_dict() if self.geo_location else None,
            "metadata": dict(self.metadata),
            "correlation_id": self.correlation_id,
            "session_id": self.session_id,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class LogAggregation:
    tenant_slug: str
    start: datetime
    end: datetime
    total_events: int = 0
    event_breakdown: dict[str, int] = field(default_factory=dict)
    unique_users: int = 0
    unique_ips: int = 0
    risk_level_breakdown: dict[str, int] = field(
        default_factory=lambda: {lvl.value: 0 for lvl in RiskLevel}
    )
    top_countries: list[dict[str, Any]] = field(default_factory=list)
    top_user_agents: list[dict[str, Any]] = field(default_factory=list)
    suspicious_activities: int = 0
    alerts_triggered: int = 0
    anomaly_score_stats: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant_slug": self.tenant_slug,
            "timeframe": {"start": self.start.isoformat(), "end": self.end.isoformat()},
            "total_events": self.total_events,
            "event_breakdown": self.event_breakdown,
            "unique_users": self.unique_users,
            "unique_ips": self.unique_ips,
            "risk_level_breakdown": self.risk_level_breakdown,
            "top_countries": self.top_countries,
            "top_user_agents": self.top_user_agents,
            "suspicious_activities": self.suspicious_activities,
            "alerts_triggered": self.alerts_triggered,
            "anomaly_score_stats": self.anomaly_score_stats,
        }
