"""
Runtime settings for TenantGuard.

Defaults match the production behaviour; every field can be overridden
from a YAML document or from ``TENANTGUARD_*`` environment variables.
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, fields
from typing import Any

import yaml


@dataclass
class Settings:
    # Decision cache
    cache_ttl_seconds: float = 300.0
    cache_max_entries: int = 10_000

    # Collaborator timeouts (seconds)
    role_store_timeout: float = 2.0
    geo_lookup_timeout: float = 1.0

    # Anomaly scorer
    failed_login_window_minutes: int = 15
    failed_login_threshold: int = 3
    rate_limit_violation_threshold: int = 5
    location_history_days: int = 30
    location_history_limit: int = 50

    # Background dispatcher
    dispatcher_max_attempts: int = 3
    dispatcher_retry_delay: float = 0.05

    # Audit retention
    retention_days: int = 90

    # Logging
    log_level: str = "INFO"
    log_format: str = "console"  # console or json

    # Alert rules; None means the packaged defaults
    alert_rules_file: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Settings:
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown settings: {', '.join(unknown)}")
        return cls(**data)

    @classmethod
    def from_yaml(cls, path: str) -> Settings:
        """Load settings from a YAML file (a mapping, optionally under ``tenantguard:``)."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        if "tenantguard" in data:
            data = data["tenantguard"] or {}
        return cls.from_dict(data)

    @classmethod
    def from_env(cls, prefix: str = "TENANTGUARD_", environ: dict[str, str] | None = None) -> Settings:
        """Build settings from environment variables, coercing to field types."""
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for f in fields(cls):
            raw = env.get(prefix + f.name.upper())
            if raw is None:
                continue
            default = getattr(cls, f.name, None)
            if isinstance(default, bool):
                values[f.name] = raw.lower() in ("1", "true", "yes", "on")
            elif isinstance(default, int):
                values[f.name] = int(raw)
            elif isinstance(default, float):
                values[f.name] = float(raw)
            else:
                values[f.name] = raw
        return cls(**values)
