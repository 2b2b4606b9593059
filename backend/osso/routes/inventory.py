# backend/osso/routes/inventory.py
"""
Warehouse inventory count API routes.
"""
from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_role
from ..permissions import (
    INVENTORY_CONFIRM_ROLES,
    INVENTORY_SESSIONS_MANAGE_ROLES,
    INVENTORY_SESSIONS_VIEW_ROLES,
    WAREHOUSE_ROLES,
)
from ..services import inventory_session_service
from ..validation import coerce_int, require_fields


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.post("/sessions")
@require_auth
@require_role(WAREHOUSE_ROLES)
def create_session():
    """
    Submit a physical count.

    Request body:
    {
        "title": str (optional),
        "items": [{"container_item_id": int, "counted_quantity": int}]
    }

    Returns:
        201: Session created (PENDING with code, or DISCREPANCY)
        404: Unknown container item
        409: Current period locked
    """
    data = require_fields(request.get_json(silent=True), ["items"])
    session = inventory_session_service.create_session(g.actor, items=data["items"], title=data.get("title"))
    return jsonify(inventory_session_service.session_report(session)), 201


@inventory_bp.get("/sessions")
@require_auth
@require_role(INVENTORY_SESSIONS_VIEW_ROLES, WAREHOUSE_ROLES)
def list_sessions():
    period_id = request.args.get("period_id")
    sessions = inventory_session_service.list_sessions(
        status=request.args.get("status"),
        period_id=coerce_int(period_id, "period_id") if period_id else None,
        limit=coerce_int(request.args.get("limit", "100"), "limit"),
    )
    return jsonify([session.to_dict() for session in sessions])


@inventory_bp.get("/sessions/<int:session_id>")
@require_auth
@require_role(INVENTORY_SESSIONS_VIEW_ROLES, WAREHOUSE_ROLES)
def get_session(session_id: int):
    session = inventory_session_service.get_session(session_id)
    return jsonify(inventory_session_service.session_report(session))


@inventory_bp.post("/confirm")
@require_auth
@require_role(INVENTORY_CONFIRM_ROLES)
def confirm_by_code():
    """
    Request body:
    {
        "code": "123"
    }

    Returns:
        200: Confirmed (or already confirmed)
        400: Malformed code
        404: No session holds the code
        409: Session has unresolved discrepancies
        410: Code expired
    """
    data = require_fields(request.get_json(silent=True), ["code"])
    result = inventory_session_service.confirm_by_code(g.actor, str(data["code"]))
    return jsonify({
        "session": result["session"].to_dict(),
        "already_confirmed": result["already_confirmed"],
    })


@inventory_bp.post("/sessions/<int:session_id>/resolve")
@require_auth
@require_role(INVENTORY_SESSIONS_MANAGE_ROLES)
def resolve_discrepancy(session_id: int):
    session = inventory_session_service.resolve_discrepancy(g.actor, session_id)
    return jsonify(session.to_dict())


@inventory_bp.post("/sessions/<int:session_id>/send-to-admin")
@require_auth
@require_role(WAREHOUSE_ROLES)
def send_to_admin(session_id: int):
    session = inventory_session_service.send_to_admin(g.actor, session_id)
    return jsonify(session.to_dict())


@inventory_bp.delete("/sessions/<int:session_id>")
@require_auth
@require_role(INVENTORY_SESSIONS_MANAGE_ROLES)
def delete_session(session_id: int):
    return jsonify(inventory_session_service.delete_session(g.actor, session_id))
