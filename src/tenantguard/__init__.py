"""
TenantGuard: Tenant-Isolated Access Control and Security Telemetry

Permission evaluation with tenant isolation and external-customer route
gating, plus security event enrichment, anomaly scoring and rule-based
alerting.
"""

__version__ = "0.1.0"
