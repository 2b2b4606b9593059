# backend/osso/routes/investors.py
"""
Investor, stake and payout API routes.
"""
from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_role
from ..permissions import INVESTOR_PORTAL_ROLES, INVESTORS_MANAGE_ROLES, INVESTORS_VIEW_ROLES
from ..services import investor_service
from ..validation import coerce_int, coerce_optional_datetime, require_fields


investors_bp = Blueprint("investors", __name__, url_prefix="/api/investors")


@investors_bp.get("")
@require_auth
@require_role(INVESTORS_VIEW_ROLES)
def list_investors():
    return jsonify([investor.to_dict() for investor in investor_service.list_investors()])


@investors_bp.get("/me")
@require_auth
@require_role(INVESTOR_PORTAL_ROLES)
def my_summary():
    """
    Stakes, owed profit, payouts and remaining balance of the investor linked
    to the calling user.

    Returns:
        200: Summary with containers, totals and payouts
        404: No investor linked to this user
    """
    return jsonify(investor_service.summary_for_user(g.actor))


@investors_bp.post("")
@require_auth
@require_role(INVESTORS_MANAGE_ROLES)
def create_investor():
    data = require_fields(request.get_json(silent=True), ["name"])
    user_id = data.get("user_id")
    investor = investor_service.create_investor(
        g.actor,
        name=data["name"],
        phone=data.get("phone"),
        user_id=coerce_int(user_id, "user_id") if user_id is not None else None,
    )
    return jsonify(investor.to_dict()), 201


@investors_bp.post("/<int:investor_id>/investments")
@require_auth
@require_role(INVESTORS_MANAGE_ROLES)
def add_investment(investor_id: int):
    """
    Add capital to the investor's stake in a container (merged per container).

    Request body:
    {
        "container_id": int,
        "invested_amount_cents": int
    }

    Returns:
        201: Stake updated; shares recalculated
    """
    data = require_fields(request.get_json(silent=True), ["container_id", "invested_amount_cents"])
    result = investor_service.add_investment(
        g.actor,
        container_id=coerce_int(data["container_id"], "container_id"),
        investor_id=investor_id,
        invested_amount_cents=data["invested_amount_cents"],
    )
    return jsonify({"investment": result["investment"].to_dict(), "shares": result["shares"]}), 201


@investors_bp.get("/<int:investor_id>/summary")
@require_auth
@require_role(INVESTORS_VIEW_ROLES)
def investor_summary(investor_id: int):
    return jsonify(investor_service.investor_summary(investor_id))


@investors_bp.get("/<int:investor_id>/containers/<int:container_id>/balance")
@require_auth
@require_role(INVESTORS_VIEW_ROLES)
def investor_balance(investor_id: int, container_id: int):
    return jsonify(investor_service.investor_balance(investor_id, container_id))


@investors_bp.get("/<int:investor_id>/payouts")
@require_auth
@require_role(INVESTORS_VIEW_ROLES)
def list_payouts(investor_id: int):
    return jsonify([payout.to_dict() for payout in investor_service.list_payouts(investor_id=investor_id)])


@investors_bp.post("/<int:investor_id>/payouts")
@require_auth
@require_role(INVESTORS_MANAGE_ROLES)
def create_payout(investor_id: int):
    """
    Request body:
    {
        "container_id": int,
        "amount_cents": int,
        "payout_date": str (optional)
    }
    """
    data = require_fields(request.get_json(silent=True), ["container_id", "amount_cents"])
    payout = investor_service.create_payout(
        g.actor,
        investor_id=investor_id,
        container_id=coerce_int(data["container_id"], "container_id"),
        amount_cents=data["amount_cents"],
        payout_date=coerce_optional_datetime(data.get("payout_date"), "payout_date"),
    )
    balance = investor_service.investor_balance(investor_id, payout.container_id)
    return jsonify({"payout": payout.to_dict(), "balance": balance}), 201
