"""
TenantGuard Command Line Interface.

Commands: permissions, check, score, rules, serve, demo
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import click

from .access import AccessContext, ResourceRef, UserContext
from .alerts.engine import AlertRuleEngine
from .alerts.models import validate_rule
from .config import Settings
from .logging_config import configure_logging
from .permissions.registry import EXTERNAL_CUSTOMER_ROUTES, PERMISSIONS, permissions_by_category
from .services import build_services
from .stores.geo import GeoLocation, StaticGeoLocator
from .stores.roles import InMemoryRoleStore


def _load_settings(config_file: str | None) -> Settings:
    if config_file:
        return Settings.from_yaml(config_file)
    return Settings.from_env()


@click.group()
@click.version_option(version="0.1.0")
@click.option("--config", "config_file", default=None, help="YAML settings file")
@click.pass_context
def cli(ctx: click.Context, config_file: str | None):
    """TenantGuard: tenant-isolated access control and security telemetry"""
    ctx.obj = _load_settings(config_file)


@cli.command()
@click.option("--category", default=None, help="Only show one category")
@click.option("--external-routes", is_flag=True, help="Show the external-customer route allow-list")
def permissions(category: str | None, external_routes: bool):
    """List the permission catalog."""
    if external_routes:
        click.echo("--- External Customer Routes ---")
        for route in EXTERNAL_CUSTOMER_ROUTES:
            click.echo(f"  {route}")
        return

    grouped = permissions_by_category()
    if category:
        grouped = {category: grouped.get(category, [])}
    for cat, names in grouped.items():
        click.echo(f"\n[{cat}]")
        for name in names:
            info = PERMISSIONS[name]
            click.echo(f"  {name:28s} {info.risk_level:9s} {info.description}")


@cli.command()
@click.option("--permissions", "held", default="", help="Comma-separated permissions held by the user")
@click.option("--action", required=True, help="Action being attempted")
@click.option("--resource", "resource_type", default=None, help="Resource type")
@click.option("--tenant", default="tenant-a", help="User tenant id")
@click.option("--resource-tenant", default=None, help="Tenant owning the resource")
@click.option("--route", default=None, help="Request route")
@click.option("--external", is_flag=True, help="User is an external customer")
@click.pass_obj
def check(
    settings: Settings,
    held: str,
    action: str,
    resource_type: str | None,
    tenant: str,
    resource_tenant: str | None,
    route: str | None,
    external: bool,
):
    """Evaluate a single access request."""
    roles = InMemoryRoleStore()
    perms = [p.strip() for p in held.split(",") if p.strip()]
    role = roles.create_role(tenant, "cli", perms, is_external_customer=external, role_id="cli")
    svc = build_services(settings, role_store=roles)

    resource = None
    if resource_type:
        resource = ResourceRef(type=resource_type, tenant_id=resource_tenant or tenant)
    ctx = AccessContext(
        user=UserContext(id="cli-user", tenant_id=tenant, roles=(role.id,), is_external_customer=external),
        action=action,
        resource=resource,
        route=route,
    )
    decision = svc.evaluator.check_permission(ctx)
    svc.close()

    marker = "[+]" if decision.granted else "[-]"
    click.echo(f"{marker} {decision.reason}")
    click.echo(json.dumps(decision.to_dict(), indent=2))


@cli.command()
@click.option("--action", default="login_success", help="Event type")
@click.option("--ip", "ip_address", default="203.0.113.10", help="Source IP")
@click.option("--user-agent", default="Mozilla/5.0 (Windows NT 10.0) Chrome/120.0", help="User agent")
@click.option("--hour", default=12, help="Hour of the event (UTC)")
@click.option("--suspicious-ip", is_flag=True, help="Flag the source IP as suspicious first")
@click.pass_obj
def score(settings: Settings, action: str, ip_address: str, user_agent: str, hour: int, suspicious_ip: bool):
    """Enrich and score a single security event."""
    svc = build_services(settings)
    if suspicious_ip:
        svc.suspicious_ips.add(ip_address)

    ts = datetime.now(timezone.utc).replace(hour=hour % 24, minute=0, second=0, microsecond=0)
    event, ctx = svc.logging_service.process_event({
        "tenant_slug": "cli",
        "user_id": "cli-user",
        "action": action,
        "ip_address": ip_address,
        "user_agent": user_agent,
        "timestamp": ts,
    })
    svc.close()

    click.echo("\n--- Security Context ---")
    click.echo(f"Risk Level:     {ctx.risk_level.value}")
    click.echo(f"Anomaly Score:  {ctx.anomaly_score}")
    for threat, mitigation in zip(ctx.threats, ctx.mitigations):
        click.echo(f"  - {threat} ({mitigation})")
    click.echo("\n--- Enriched Event ---")
    click.echo(json.dumps(event.to_dict(), indent=2))


@cli.command()
@click.option("--file", "rules_file", default=None, help="YAML alert rules file")
def rules(rules_file: str | None):
    """Validate and export alert rules."""
    if rules_file:
        engine = AlertRuleEngine(rules=[])
        loaded = engine.load_file(rules_file)
        click.echo(f"[+] Loaded {len(loaded)} rules from {rules_file}")
    else:
        engine = AlertRuleEngine()
        click.echo(f"[+] Using {len(engine.rules)} default rules")

    problems = 0
    for rule in engine.rules.values():
        issues = validate_rule(rule)
        problems += len(issues)
        status = "ok" if not issues else "; ".join(issues)
        click.echo(f"  {rule.id:28s} {rule.severity:9s} {status}")

    click.echo("\n--- Exported YAML ---")
    click.echo(engine.export_yaml())
    if problems:
        raise click.ClickException(f"{problems} rule problem(s) found")


@cli.command()
@click.option("--host", default="127.0.0.1", help="API host")
@click.option("--port", default=5000, help="API port")
@click.pass_obj
def serve(settings: Settings, host: str, port: int):
    """Run the HTTP API."""
    from .api import create_app

    configure_logging(level=settings.log_level, json_output=settings.log_format == "json", force=True)
    click.echo(f"[*] Starting TenantGuard API on {host}:{port}")
    app = create_app(settings=settings)
    app.run(host=host, port=port)


@cli.command()
@click.pass_obj
def demo(settings: Settings):
    """Run a complete access control and telemetry demo scenario."""
    click.echo("=" * 60)
    click.echo("  TenantGuard  -  Complete Demo Scenario")
    click.echo("=" * 60)

    # 1. Roles
    click.echo("\n[1/5] Setting up roles...")
    roles = InMemoryRoleStore()
    roles.create_role("tenant-a", "Admin", ["*"], role_id="admin")
    roles.create_role("tenant-a", "Analyst", ["user.read", "reports.*"], role_id="analyst")
    roles.create_role("tenant-a", "Customer", ["dashboard.read"], is_external_customer=True, role_id="customer")
    click.echo("    Created admin, analyst and customer roles")

    geo = StaticGeoLocator({
        "203.0.113.10": GeoLocation(country="US", city="New York", timezone="America/New_York"),
        "198.51.100.7": GeoLocation(country="RU", city="Moscow", timezone="Europe/Moscow"),
    })
    svc = build_services(settings, role_store=roles, geo_locator=geo)

    # 2. Access decisions
    click.echo("\n[2/5] Making access decisions...")
    alice = UserContext(id="alice", tenant_id="tenant-a", tenant_slug="acme", roles=("analyst",))
    carol = UserContext(
        id="carol", tenant_id="tenant-a", tenant_slug="acme", roles=("customer",), is_external_customer=True
    )
    requests = [
        ("alice reads a report", AccessContext(alice, "read", ResourceRef("reports", "r1", "tenant-a"))),
        ("alice deletes a user", AccessContext(alice, "delete", ResourceRef("user", "u9", "tenant-a"))),
        ("alice reads tenant-b", AccessContext(alice, "read", ResourceRef("reports", "r2", "tenant-b"))),
        ("carol opens settings", AccessContext(carol, "read", ResourceRef("settings"), route="/settings")),
        ("carol opens dashboard", AccessContext(carol, "read", ResourceRef("dashboard"), route="/api/dashboard/kpi")),
    ]
    for label, ctx in requests:
        decision = svc.evaluator.check_permission(ctx)
        click.echo(f"    {label:24s} {'GRANT' if decision.granted else 'DENY':5s} {decision.reason}")

    # 3. Normal logins
    click.echo("\n[3/5] Logging normal activity...")
    base = datetime.now(timezone.utc).replace(hour=12, minute=0, second=0, microsecond=0)
    for i in range(3):
        svc.logging_service.process_event({
            "tenant_slug": "acme", "user_id": "alice", "action": "login_success",
            "ip_address": "203.0.113.10", "user_agent": "Mozilla/5.0 (Macintosh; Mac OS X 10_15_7) Chrome/120.0",
            "timestamp": base - timedelta(days=i + 1),
        })
    click.echo("    3 logins from New York")

    # 4. Attack
    click.echo("\n[4/5] Simulating a credential stuffing attack...")
    for i in range(5):
        _, ctx = svc.logging_service.process_event({
            "tenant_slug": "acme", "user_id": "alice", "action": "login_failure",
            "ip_address": "198.51.100.7", "user_agent": "python-requests/2.31",
            "timestamp": base + timedelta(minutes=i),
        })
        click.echo(f"    attempt {i + 1}: score={ctx.anomaly_score:3d} risk={ctx.risk_level.value:8s} "
                   f"threats={len(ctx.threats)}")
    blocked = "198.51.100.7" in svc.suspicious_ips
    click.echo(f"    Source IP blocked: {'YES' if blocked else 'no'}")

    # 5. Aggregation
    click.echo("\n[5/5] Aggregating telemetry...")
    svc.dispatcher.flush()
    agg = svc.logging_service.get_log_aggregation("acme", base - timedelta(days=7), base + timedelta(hours=1))
    click.echo(f"    Events: {agg.total_events}, users: {agg.unique_users}, IPs: {agg.unique_ips}")
    click.echo(f"    Risk levels: {agg.risk_level_breakdown}")
    click.echo(f"    Suspicious: {agg.suspicious_activities}, alerts: {agg.alerts_triggered}")
    click.echo(f"    Anomaly scores: {agg.anomaly_score_stats}")
    svc.close()

    click.echo("\n" + "=" * 60)
    click.echo("  Demo complete.")
    click.echo("=" * 60)


def main():
    settings = Settings.from_env()
    configure_logging(level=settings.log_level, json_output=settings.log_format == "json")
    cli()


if __name__ == "__main__":
    main()
