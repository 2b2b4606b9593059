# backend/osso/routes/periods.py
"""
Financial period API routes: current period, month-close checklist, lock/unlock.
"""
from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_role
from ..permissions import PERIODS_MANAGE_ROLES, PERIODS_UNLOCK_ROLES, PERIODS_VIEW_ROLES
from ..services.period_service import PeriodService


periods_bp = Blueprint("periods", __name__, url_prefix="/api/periods")


@periods_bp.get("")
@require_auth
@require_role(PERIODS_VIEW_ROLES)
def list_periods():
    return jsonify([period.to_dict() for period in PeriodService().list_periods()])


@periods_bp.get("/current")
@require_auth
def current_period():
    """
    The period writes dated "now" belong to (created on first use).
    """
    period = PeriodService().current_period()
    return jsonify(period.to_dict())


@periods_bp.get("/<int:period_id>/checklist")
@require_auth
@require_role(PERIODS_VIEW_ROLES)
def checklist(period_id: int):
    items = PeriodService().month_close_checklist(period_id)
    return jsonify({"period_id": period_id, "ready": all(item["ok"] for item in items), "items": items})


@periods_bp.post("/<int:period_id>/lock")
@require_auth
@require_role(PERIODS_MANAGE_ROLES)
def lock_period(period_id: int):
    """
    Close a month.

    Request body:
    {
        "reason": str (optional)
    }

    Returns:
        200: Period locked
        403: Forbidden
        404: Period not found
        409: Already locked / checklist blocked
    """
    data = request.get_json(silent=True) or {}
    period = PeriodService().lock_period(g.actor, period_id, reason=data.get("reason"))
    return jsonify(period.to_dict())


@periods_bp.post("/<int:period_id>/unlock")
@require_auth
@require_role(PERIODS_UNLOCK_ROLES)
def unlock_period(period_id: int):
    """
    Reopen a locked month (super-admin only).

    Request body:
    {
        "reason": str (required)
    }
    """
    data = request.get_json(silent=True) or {}
    period = PeriodService().unlock_period(g.actor, period_id, reason=data.get("reason"))
    return jsonify(period.to_dict())
