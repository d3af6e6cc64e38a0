"""
Decision cache.

TTL memo of access decisions keyed by context fingerprint. Entries expire
a fixed interval after insertion (reads do not extend them) and the cache
is bounded with least-recently-used eviction.
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable

from .context import AccessDecision

DEFAULT_TTL_SECONDS = 300.0


@dataclass(frozen=True)
class CacheEntry:
    decision: AccessDecision
    created_at: float


class DecisionCache:
    """Thread-safe TTL + LRU cache of access decisions."""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def _expired(self, entry: CacheEntry) -> bool:
        return self._clock() - entry.created_at >= self.ttl_seconds

    def get(self, key: str) -> AccessDecision | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            if self._expired(entry):
                # Kept around for peek_stale until overwritten or evicted.
                self.misses += 1
                return None
            self._entries.move_to_end(key)
            self.hits += 1
            return entry.decision

    def peek_stale(self, key: str) -> AccessDecision | None:
        """Return an entry regardless of expiry, without touching statistics."""
        with self._lock:
            entry = self._entries.get(key)
            return entry.decision if entry else None

    def put(self, key: str, decision: AccessDecision) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(decision=decision, created_at=self._clock())
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def invalidate_for_user(self, user_id: str) -> int:
        """Drop every entry belonging to a user. Returns the number removed."""
        prefix = f"{user_id}|"
        with self._lock:
            doomed = [k for k in self._entries if k.startswith(prefix)]
            for k in doomed:
                del self._entries[k]
        return len(doomed)

    def clear_all(self) -> None:
        with self._lock:
            self._entries.clear()

    def purge_expired(self) -> int:
        with self._lock:
            doomed = [k for k, e in self._entries.items() if self._expired(e)]
            for k in doomed:
                del self._entries[k]
        return len(doomed)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> dict[str, float]:
        with self._lock:
            total = self.hits + self.misses
            return {
                "entries": len(self._entries),
                "hits": self.hits,
                "misses": self.misses,
                "hit_rate": round(self.hits / total, 4) if total else 0.0,
            }
