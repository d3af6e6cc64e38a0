"""Tests for event enrichment."""

from tenantguard.stores import GeoLocation, StaticGeoLocator
from tenantguard.telemetry import EventEnricher, parse_user_agent
from tenantguard.telemetry.enricher import device_fingerprint, is_private_ip
from tenantguard.telemetry.events import EnhancedAuthLog, generate_correlation_id

from conftest import CHROME_MAC, NOON

FIREFOX_LINUX = "Mozilla/5.0 (X11; Linux x86_64; rv:121.0) Gecko/20100101 Firefox/121.0"
SAFARI_IPHONE = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_2 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.2 Mobile/15E148 Safari/604.1"
)


class TestUserAgentParsing:
    def test_chrome_on_mac(self):
        info = parse_user_agent(CHROME_MAC)
        assert info.browser.name == "Chrome"
        assert info.browser.version == "120.0.6099.109"
        assert info.os.name == "macOS"
        assert info.os.version == "10.15.7"
        assert info.device_type == "desktop"

    def test_firefox_on_linux(self):
        info = parse_user_agent(FIREFOX_LINUX)
        assert info.browser.name == "Firefox"
        assert info.browser.version == "121.0"
        assert info.os.name == "Linux"

    def test_safari_mobile(self):
        info = parse_user_agent(SAFARI_IPHONE)
        assert info.browser.name == "Safari"
        assert info.browser.version == "17.2"
        assert info.device_type == "mobile"

    def test_unknown_agent(self):
        info = parse_user_agent("curl/8.4.0")
        assert info.browser is None
        assert info.os is None
        assert info.to_dict()["device"] == {"type": "desktop"}

    def test_fingerprint_is_deterministic(self):
        assert device_fingerprint(CHROME_MAC) == device_fingerprint(CHROME_MAC)
        assert device_fingerprint(CHROME_MAC) != device_fingerprint(FIREFOX_LINUX)
        assert parse_user_agent(CHROME_MAC).fingerprint == device_fingerprint(CHROME_MAC)

    def test_fingerprint_known_values(self):
        assert device_fingerprint("") == "0"
        assert device_fingerprint("a") == "61"
        assert device_fingerprint("ab") == format(97 * 31 + 98, "x")


class TestPrivateIPs:
    def test_private_ranges(self):
        for ip in ("127.0.0.1", "10.1.2.3", "172.16.0.1", "172.31.255.1", "192.168.1.1", "::1",
                   "fc00::1", "fe80::1"):
            assert is_private_ip(ip), ip

    def test_public_addresses(self):
        for ip in ("8.8.8.8", "172.32.0.1", "203.0.113.10"):
            assert not is_private_ip(ip), ip


class TestEventEnricher:
    def test_enrich_full_event(self, enricher, make_event):
        event = enricher.enrich(make_event())
        assert event.device_info.browser.name == "Chrome"
        assert event.geo_location.country == "US"
        assert event.correlation_id
        assert event.timestamp == NOON

    def test_missing_user_agent_and_ip(self, enricher):
        event = enricher.enrich({"tenant_slug": "acme", "user_id": "u", "action": "logout"})
        assert event.device_info is None
        assert event.geo_location is None
        assert event.ip_address == "unknown"

    def test_private_ip_skips_lookup(self, geo_locator):
        enricher = EventEnricher(geo_locator)
        event = enricher.enrich({"tenant_slug": "acme", "user_id": "u", "action": "logout",
                                 "ip_address": "10.0.0.5"})
        assert event.geo_location is None
        assert geo_locator.lookups == 0

    def test_lookup_cached_per_ip(self, geo_locator, make_event):
        enricher = EventEnricher(geo_locator)
        enricher.enrich(make_event())
        enricher.enrich(make_event())
        assert geo_locator.lookups == 1
        enricher.clear_geo_cache()
        enricher.enrich(make_event())
        assert geo_locator.lookups == 2

    def test_geo_cache_is_bounded(self, geo_locator, make_event):
        enricher = EventEnricher(geo_locator, geo_cache_size=1)
        enricher.enrich(make_event(ip_address="203.0.113.10"))
        enricher.enrich(make_event(ip_address="198.51.100.7"))
        assert len(enricher._geo_cache) == 1
        enricher.enrich(make_event(ip_address="203.0.113.10"))
        assert geo_locator.lookups == 3

    def test_lookup_failure_yields_none(self, make_event):
        class BrokenLocator:
            calls = 0

            def lookup(self, ip_address):
                self.calls += 1
                raise TimeoutError("provider down")

        locator = BrokenLocator()
        enricher = EventEnricher(locator)
        assert enricher.enrich(make_event()).geo_location is None
        assert enricher.enrich(make_event()).geo_location is None
        assert locator.calls == 2

    def test_default_location(self, make_event):
        enricher = EventEnricher(StaticGeoLocator())
        event = enricher.enrich(make_event(ip_address="8.8.8.8"))
        assert event.geo_location.country == "Unknown"

    def test_existing_correlation_id_kept(self, enricher, make_event):
        event = enricher.enrich(make_event(correlation_id="abc-123"))
        assert event.correlation_id == "abc-123"

    def test_accepts_enhanced_log(self, enricher):
        log = EnhancedAuthLog(tenant_slug="acme", user_id="u", action="logout", ip_address="203.0.113.10",
                              timestamp=NOON)
        assert enricher.enrich(log) is log
        assert log.geo_location == GeoLocation(country="US", region="NY", city="New York",
                                               timezone="America/New_York")


class TestEventModel:
    def test_correlation_id_format(self):
        cid = generate_correlation_id()
        millis, suffix = cid.split("-")
        assert millis.isdigit()
        assert len(suffix) == 9

    def test_iso_timestamp_parsed(self):
        log = EnhancedAuthLog.from_partial({"action": "logout", "timestamp": "2024-03-12T12:00:00Z"})
        assert log.timestamp == NOON
        assert log.tenant_slug == "unknown"

    def test_to_dict(self, enricher, make_event):
        data = enricher.enrich(make_event()).to_dict()
        assert data["geo_location"]["country"] == "US"
        assert data["device_info"]["browser"]["name"] == "Chrome"
        assert data["timestamp"] == NOON.isoformat()
