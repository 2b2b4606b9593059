# backend/osso/routes/system.py
"""
System health, clock, currency and audit endpoints.
"""

import time
from flask import Blueprint, current_app, g, jsonify, request
from sqlalchemy import text

from ..decorators import require_auth, require_role
from ..extensions import db
from ..permissions import AUDIT_VIEW_ROLES, SETTINGS_ROLES
from ..services import audit_service, currency_service, system_time_service
from ..validation import coerce_int, coerce_optional_datetime
from osso.time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity.

    Returns dict with status and latency.
    """
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        elapsed_ms = (time.time() - start_time) * 1000
        return {"status": "healthy", "latency_ms": round(elapsed_ms, 2)}
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {"status": "unhealthy", "latency_ms": round(elapsed_ms, 2), "error": "Database error"}


@system_bp.get("/health")
def health():
    """
    Liveness/readiness check.

    Returns:
        200: database reachable
        503: database unreachable
    """
    database = check_database_health()
    status = 200 if database["status"] == "healthy" else 503
    return jsonify({
        "status": "ok" if status == 200 else "degraded",
        "timestamp": to_utc_z(utcnow()),
        "database": database,
    }), status


@system_bp.get("/api/system/time")
@require_auth
def get_server_time():
    control = system_time_service.get_system_control()
    return jsonify({
        "now": to_utc_z(system_time_service.get_system_now()),
        "time_zone": system_time_service.get_server_time_zone(),
        "control": control.to_dict() if control else None,
        "allowed_time_zones": list(system_time_service.ALLOWED_TIME_ZONES),
    })


@system_bp.put("/api/system/time")
@require_auth
@require_role(SETTINGS_ROLES)
def set_server_time():
    """
    Switch between host time and a pinned manual time.

    Request body:
    {
        "auto": bool,
        "manual_time": str (ISO-8601, optional),
        "time_zone": str (optional, default "UTC")
    }
    """
    data = request.get_json(silent=True) or {}
    control = system_time_service.set_server_time(
        g.actor,
        auto=bool(data.get("auto", True)),
        manual_time=coerce_optional_datetime(data.get("manual_time"), "manual_time"),
        time_zone=data.get("time_zone") or "UTC",
    )
    return jsonify(control.to_dict())


@system_bp.get("/api/system/currency")
@require_auth
def get_currency():
    return jsonify({"cny_to_usd_rate": currency_service.get_current_rate()})


@system_bp.put("/api/system/currency")
@require_auth
@require_role(SETTINGS_ROLES)
def set_currency():
    """
    Request body:
    {
        "cny_to_usd_rate": number
    }
    """
    data = request.get_json(silent=True) or {}
    setting = currency_service.set_rate(g.actor, data.get("cny_to_usd_rate"))
    return jsonify(setting.to_dict()), 201


@system_bp.get("/api/audit-logs")
@require_auth
@require_role(AUDIT_VIEW_ROLES)
def list_audit_logs():
    limit = coerce_int(request.args.get("limit", "100"), "limit")
    logs = audit_service.list_audit_logs(
        entity_type=request.args.get("entity_type"),
        entity_id=request.args.get("entity_id"),
        action=request.args.get("action"),
        limit=limit,
    )
    return jsonify([log.to_dict() for log in logs])
