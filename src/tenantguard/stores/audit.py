"""
Audit store.

Append-only log of access decisions and security events. Entries are
immutable once written; queries filter by tenant, user, action, IP and
time range.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class AuditEntry:
    tenant_slug: str
    user_id: str
    action: str
    ip_address: str = "unknown"
    email: str | None = None
    user_agent: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant_slug": self.tenant_slug,
            "user_id": self.user_id,
            "action": self.action,
            "ip_address": self.ip_address,
            "email": self.email,
            "user_agent": self.user_agent,
            "metadata": self.metadata,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class AuditQuery:
    """Filter over audit entries. ``None`` fields match anything."""
    tenant_slug: str | None = None
    user_id: str | None = None
    action: str | None = None
    ip_address: str | None = None
    since: datetime | None = None  # inclusive
    until: datetime | None = None  # inclusive

    def matches(self, entry: AuditEntry) -> bool:
        if self.tenant_slug is not None and entry.tenant_slug != self.tenant_slug:
            return False
        if self.user_id is not None and entry.user_id != self.user_id:
            return False
        if self.action is not None and entry.action != self.action:
            return False
        if self.ip_address is not None and entry.ip_address != self.ip_address:
            return False
        if self.since is not None and entry.timestamp < self.since:
            return False
        if self.until is not None and entry.timestamp > self.until:
            return False
        return True


class AuditStore(Protocol):
    def append(self, entry: AuditEntry) -> None: ...

    def count(self, query: AuditQuery) -> int: ...

    def find(
        self, query: AuditQuery, limit: int | None = None, newest_first: bool = True
    ) -> list[AuditEntry]: ...


class InMemoryAuditStore:
    """Reference audit store backed by a list."""

    def __init__(self):
        self._entries: list[AuditEntry] = []
        self._lock = threading.Lock()

    def append(self, entry: AuditEntry) -> None:
        with self._lock:
            self._entries.append(entry)

    def count(self, query: AuditQuery) -> int:
        with self._lock:
            return sum(1 for e in self._entries if query.matches(e))

    def find(
        self, query: AuditQuery, limit: int | None = None, newest_first: bool = True
    ) -> list[AuditEntry]:
        with self._lock:
            found = [e for e in self._entries if query.matches(e)]
        found.sort(key=lambda e: e.timestamp, reverse=newest_first)
        if limit is not None:
            found = found[:limit]
        return found

    def purge_before(self, cutoff: datetime) -> int:
        """Retention purge: drop entries older than the cutoff."""
        with self._lock:
            kept = [e for e in self._entries if e.timestamp >= cutoff]
            removed = len(self._entries) - len(kept)
            self._entries = kept
        return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
