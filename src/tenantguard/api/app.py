"""
Flask REST API for TenantGuard.

Provides endpoints for access decisions, decision cache management,
security event ingestion, log aggregation and the permission catalog.
"""

from __future__ import annotations

import dataclasses
import time
from datetime import datetime

from flask import Flask, jsonify, request

from ..access import AccessContext, UnavailablePolicy
from ..config import Settings
from ..permissions.registry import EXTERNAL_CUSTOMER_ROUTES, PERMISSIONS
from ..services import Services, build_services
from ..telemetry.events import coerce_timestamp


def create_app(services: Services | None = None, settings: Settings | None = None) -> Flask:
    """Create and configure the Flask application."""

    app = Flask(__name__)

    svc = services or build_services(settings)
    app.extensions["tenantguard"] = svc

    @app.route("/health", methods=["GET"])
    def health():
        return jsonify({
            "status": "healthy",
            "timestamp": time.time(),
            "pending_tasks": svc.dispatcher.pending,
        })

    # --- Access Decisions ---

    @app.route("/api/v1/access/check", methods=["POST"])
    def access_check():
        data = request.get_json(silent=True) or {}
        ctx = AccessContext.from_dict(data)
        if not ctx.user.id or not ctx.action:
            return jsonify({"error": "user id and action required"}), 400
        if not ctx.user.roles and svc.role_store.user_role_ids(ctx.user.id):
            user = dataclasses.replace(ctx.user, roles=tuple(svc.role_store.user_role_ids(ctx.user.id)))
            ctx = dataclasses.replace(ctx, user=user)
        if ctx.ip_address is None:
            ctx = dataclasses.replace(ctx, ip_address=request.remote_addr)

        try:
            policy = UnavailablePolicy(data.get("on_unavailable", UnavailablePolicy.DENY.value))
        except ValueError:
            return jsonify({"error": "on_unavailable must be 'deny' or 'stale_cache'"}), 400

        decision = svc.evaluator.check_permission(ctx, on_unavailable=policy)
        status = 503 if decision.unavailable else 200
        return jsonify(decision.to_dict()), status

    @app.route("/api/v1/access/cache/invalidate/<user_id>", methods=["POST"])
    def access_cache_invalidate(user_id: str):
        removed = svc.evaluator.invalidate_user(user_id)
        return jsonify({"user_id": user_id, "removed": removed})

    @app.route("/api/v1/access/cache/clear", methods=["POST"])
    def access_cache_clear():
        svc.evaluator.clear_cache()
        return jsonify({"status": "cleared"})

    @app.route("/api/v1/access/cache/stats", methods=["GET"])
    def access_cache_stats():
        return jsonify(svc.evaluator.cache.stats())

    # --- Security Events ---

    @app.route("/api/v1/events", methods=["POST"])
    def events_log():
        data = request.get_json(silent=True) or {}
        if not data.get("tenant_slug") or not data.get("action"):
            return jsonify({"error": "tenant_slug and action required"}), 400
        data.setdefault("ip_address", request.remote_addr)
        data.setdefault("user_agent", request.headers.get("User-Agent"))
        svc.logging_service.log_auth_event(data)
        return jsonify({"status": "accepted"}), 202

    @app.route("/api/v1/events/aggregation", methods=["GET"])
    def events_aggregation():
        tenant = request.args.get("tenant_slug", "")
        if not tenant:
            return jsonify({"error": "tenant_slug required"}), 400
        try:
            start = _parse_time(request.args.get("start"))
            end = _parse_time(request.args.get("end"))
        except ValueError as exc:
            return jsonify({"error": f"invalid timestamp: {exc}"}), 400
        agg = svc.logging_service.get_log_aggregation(tenant, start, end)
        return jsonify(agg.to_dict())

    # --- Alerts ---

    @app.route("/api/v1/alerts/rules", methods=["GET"])
    def alert_rules():
        return jsonify(svc.alert_engine.rule_summary())

    @app.route("/api/v1/alerts/triggered", methods=["GET"])
    def alerts_triggered():
        tenant = request.args.get("tenant_slug")
        return jsonify({
            "alerts": [a.to_dict() for a in svc.alert_engine.alerts_triggered(tenant)],
        })

    # --- Permission Catalog ---

    @app.route("/api/v1/permissions", methods=["GET"])
    def permissions_list():
        return jsonify({name: info.to_dict() for name, info in PERMISSIONS.items()})

    @app.route("/api/v1/permissions/external-routes", methods=["GET"])
    def permissions_external_routes():
        return jsonify({"routes": list(EXTERNAL_CUSTOMER_ROUTES)})

    return app


def _parse_time(value: str | None) -> datetime | None:
    if not value:
        return None
    return coerce_timestamp(value)
