"""
Event enrichment.

Adds parsed device information and geolocation to raw security events.
Neither enrichment is allowed to fail the event: missing inputs or a
broken geolocation provider leave the corresponding field empty.
"""

from __future__ import annotations

import logging
import re
import threading
from collections import OrderedDict
from typing import Any

from ..dispatch import call_with_timeout
from ..stores.geo import GeoLocation, GeoLocator
from .events import UNKNOWN, BrowserInfo, DeviceInfo, EnhancedAuthLog, OSInfo, generate_correlation_id

logger = logging.getLogger(__name__)

PRIVATE_IP_PATTERNS = [
    re.compile(r"^127\."),
    re.compile(r"^10\."),
    re.compile(r"^172\.(1[6-9]|2[0-9]|3[0-1])\."),
    re.compile(r"^192\.168\."),
    re.compile(r"^::1$"),
    re.compile(r"^fc00:", re.IGNORECASE),
    re.compile(r"^fe80:", re.IGNORECASE),
]

_CHROME = re.compile(r"Chrome/([0-9.]+)")
_FIREFOX = re.compile(r"Firefox/([0-9.]+)")
_SAFARI = re.compile(r"Version/([0-9.]+)")
_MACOS = re.compile(r"Mac OS X ([0-9_]+)")


def is_private_ip(ip_address: str) -> bool:
    return any(p.search(ip_address) for p in PRIVATE_IP_PATTERNS)


def device_fingerprint(user_agent: str) -> str:
    """Deterministic 32-bit string hash rendered as hex. Not cryptographic."""
    h = 0
    for ch in user_agent:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return format(abs(h), "x")


def _version(pattern: re.Pattern[str], user_agent: str) -> str:
    match = pattern.search(user_agent)
    return match.group(1) if match else UNKNOWN


def parse_user_agent(user_agent: str) -> DeviceInfo:
    browser = None
    if "Chrome" in user_agent:
        browser = BrowserInfo("Chrome", _version(_CHROME, user_agent))
    elif "Firefox" in user_agent:
        browser = BrowserInfo("Firefox", _version(_FIREFOX, user_agent))
    elif "Safari" in user_agent:
        browser = BrowserInfo("Safari", _version(_SAFARI, user_agent))

    os_info = None
    if "Windows" in user_agent:
        os_info = OSInfo("Windows")
    elif "Mac OS X" in user_agent:
        os_info = OSInfo("macOS", _version(_MACOS, user_agent).replace("_", "."))
    elif "Linux" in user_agent:
        os_info = OSInfo("Linux")

    if "Mobile" in user_agent:
        device_type = "mobile"
    elif "Tablet" in user_agent:
        device_type = "tablet"
    else:
        device_type = "desktop"

    return DeviceInfo(
        user_agent=user_agent,
        browser=browser,
        os=os_info,
        device_type=device_type,
        fingerprint=device_fingerprint(user_agent),
    )


class EventEnricher:
    """Parses device details and resolves geolocation, caching per IP."""

    def __init__(
        self,
        geo_locator: GeoLocator | None = None,
        geo_timeout: float | None = 1.0,
        geo_cache_size: int = 10_000,
    ):
        self.geo_locator = geo_locator
        self.geo_timeout = geo_timeout
        self.geo_cache_size = geo_cache_size
        self._geo_cache: OrderedDict[str, GeoLocation] = OrderedDict()
        self._lock = threading.Lock()

    def enrich(self, raw: dict[str, Any] | EnhancedAuthLog) -> EnhancedAuthLog:
        event = raw if isinstance(raw, EnhancedAuthLog) else EnhancedAuthLog.from_partial(raw)

        if not event.correlation_id:
            event.correlation_id = generate_correlation_id()
        if event.user_agent:
            event.device_info = parse_user_agent(event.user_agent)
        if event.ip_address and event.ip_address != UNKNOWN:
            event.geo_location = self.geolocate(event.ip_address)
        return event

    def geolocate(self, ip_address: str) -> GeoLocation | None:
        if is_private_ip(ip_address):
            return None

        with self._lock:
            cached = self._geo_cache.get(ip_address)
            if cached is not None:
                self._geo_cache.move_to_end(ip_address)
        if cached is not None:
            return cached
        if self.geo_locator is None:
            return None

        try:
            location = call_with_timeout("geolocation", self.geo_timeout, self.geo_locator.lookup, ip_address)
        except Exception as exc:
            logger.warning("Geolocation lookup failed for %s: %s", ip_address, exc)
            return None

        if location is not None:
            with self._lock:
                self._geo_cache[ip_address] = location
                while len(self._geo_cache) > self.geo_cache_size:
                    self._geo_cache.popitem(last=False)
        return location

    def clear_geo_cache(self) -> None:
        with self._lock:
            self._geo_cache.clear()
