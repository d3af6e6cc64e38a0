"""Tests for settings and logging configuration."""

import json
import logging

import pytest

from tenantguard.config import Settings
from tenantguard.logging_config import configure_logging


class TestSettings:
    def test_defaults(self):
        s = Settings()
        assert s.cache_ttl_seconds == 300.0
        assert s.failed_login_threshold == 3
        assert s.rate_limit_violation_threshold == 5
        assert s.retention_days == 90
        assert s.alert_rules_file is None

    def test_from_dict_rejects_unknown(self):
        with pytest.raises(ValueError, match="cache_size"):
            Settings.from_dict({"cache_size": 5})

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("cache_ttl_seconds: 60\nlog_format: json\n")
        s = Settings.from_yaml(str(path))
        assert s.cache_ttl_seconds == 60
        assert s.log_format == "json"

    def test_from_yaml_nested(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("tenantguard:\n  retention_days: 30\n")
        assert Settings.from_yaml(str(path)).retention_days == 30

    def test_from_yaml_empty(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("")
        assert Settings.from_yaml(str(path)) == Settings()

    def test_from_env(self):
        s = Settings.from_env(environ={
            "TENANTGUARD_CACHE_TTL_SECONDS": "12.5",
            "TENANTGUARD_CACHE_MAX_ENTRIES": "100",
            "TENANTGUARD_LOG_LEVEL": "DEBUG",
            "OTHER_VAR": "ignored",
        })
        assert s.cache_ttl_seconds == 12.5
        assert s.cache_max_entries == 100
        assert s.log_level == "DEBUG"

    def test_to_dict_round_trip(self):
        s = Settings(geo_lookup_timeout=0.5)
        assert Settings.from_dict(s.to_dict()) == s


class TestLoggingConfig:
    def test_configure_sets_root_level(self):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            configure_logging(level="WARNING", json_output=True, force=True)
            assert root.level == logging.WARNING
            assert len(root.handlers) == 1
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)

    def test_stdlib_records_render_as_json(self, capsys):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            configure_logging(level="INFO", json_output=True, force=True)
            logging.getLogger("tenantguard.audit").warning("purged %d entries", 3)
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)

        line = capsys.readouterr().err.strip().splitlines()[-1]
        record = json.loads(line)
        assert record["event"] == "purged 3 entries"
        assert record["level"] == "warning"
        assert record["logger"] == "tenantguard.audit"
        assert "timestamp" in record
