# backend/osso/routes/containers.py
"""
Container, product and expense API routes.
"""
from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_role
from ..permissions import (
    CONTAINERS_DELETE_ROLES,
    CONTAINERS_MANAGE_ROLES,
    CONTAINERS_VIEW_ROLES,
    EXPENSES_ADD_ROLES,
    EXPENSES_CORRECTION_ROLES,
    STOCK_ITEMS_MANAGE_ROLES,
)
from ..services import container_service, expense_service
from ..validation import coerce_int, coerce_optional_datetime, require_fields


containers_bp = Blueprint("containers", __name__, url_prefix="/api")


# =============================================================================
# PRODUCTS
# =============================================================================

@containers_bp.post("/products")
@require_auth
@require_role(CONTAINERS_MANAGE_ROLES)
def create_product():
    data = require_fields(request.get_json(silent=True), ["sku", "name"])
    product = container_service.create_product(
        g.actor,
        sku=data["sku"],
        name=data["name"],
        description=data.get("description"),
    )
    return jsonify(product.to_dict()), 201


# =============================================================================
# CONTAINERS
# =============================================================================

@containers_bp.get("/containers")
@require_auth
@require_role(CONTAINERS_VIEW_ROLES)
def list_containers():
    containers = container_service.list_containers(status=request.args.get("status"))
    return jsonify([container.to_dict() for container in containers])


@containers_bp.post("/containers")
@require_auth
@require_role(CONTAINERS_MANAGE_ROLES)
def create_container():
    """
    Create a container (status IN_TRANSIT).

    Request body:
    {
        "name": str,
        "purchase_date": str (ISO-8601),
        "total_purchase_source_cents": int,   // CNY cents
        "exchange_rate": number (optional, defaults to current setting),
        "items": [{"product_id", "quantity", "unit_price_cents"?, "line_total_cents"?,
                   "sale_price_cents"?, "size_label"?, "color"?}] (optional),
        "initial_expense": {"title", "amount_cents", "category"?} (optional),
        "investments": [{"investor_id", "invested_amount_cents"}] (optional)
    }

    Returns:
        201: Container created
        400: Invalid request
        409: Current period locked
    """
    data = require_fields(request.get_json(silent=True), ["name", "purchase_date", "total_purchase_source_cents"])
    container = container_service.create_container(
        g.actor,
        name=data["name"],
        purchase_date=data["purchase_date"],
        total_purchase_source_cents=data["total_purchase_source_cents"],
        exchange_rate=data.get("exchange_rate"),
        items=data.get("items"),
        initial_expense=data.get("initial_expense"),
        investments=data.get("investments"),
    )
    return jsonify(container_service.container_detail(container.id)), 201


@containers_bp.get("/containers/<int:container_id>")
@require_auth
@require_role(CONTAINERS_VIEW_ROLES)
def get_container(container_id: int):
    return jsonify(container_service.container_detail(container_id))


@containers_bp.post("/containers/<int:container_id>/items")
@require_auth
@require_role(CONTAINERS_MANAGE_ROLES)
def add_item(container_id: int):
    data = require_fields(request.get_json(silent=True), ["product_id", "quantity"])
    item = container_service.add_item(g.actor, container_id, data)
    return jsonify(item.to_dict()), 201


@containers_bp.patch("/container-items/<int:item_id>")
@require_auth
@require_role(STOCK_ITEMS_MANAGE_ROLES)
def update_item(item_id: int):
    """
    Request body:
    {
        "quantity": int (optional),
        "sale_price_cents": int (optional)
    }

    Returns:
        200: Updated item; unit cost and financials rebuilt
    """
    data = request.get_json(silent=True) or {}
    item = container_service.update_item(
        g.actor,
        item_id,
        quantity=data.get("quantity"),
        sale_price_cents=data.get("sale_price_cents"),
    )
    return jsonify(item.to_dict())


@containers_bp.delete("/container-items/<int:item_id>")
@require_auth
@require_role(STOCK_ITEMS_MANAGE_ROLES)
def delete_item(item_id: int):
    return jsonify(container_service.delete_item(g.actor, item_id))


@containers_bp.patch("/containers/<int:container_id>/status")
@require_auth
@require_role(CONTAINERS_MANAGE_ROLES)
def update_status(container_id: int):
    """
    Request body:
    {
        "status": "IN_TRANSIT" | "ARRIVED" | "CLOSED",
        "arrival_date": str (optional)
    }
    """
    data = require_fields(request.get_json(silent=True), ["status"])
    container = container_service.update_status(
        g.actor,
        container_id,
        data["status"],
        arrival_date=coerce_optional_datetime(data.get("arrival_date"), "arrival_date"),
    )
    return jsonify(container.to_dict())


@containers_bp.post("/containers/<int:container_id>/recalculate")
@require_auth
@require_role(CONTAINERS_MANAGE_ROLES)
def recalculate(container_id: int):
    return jsonify(container_service.recalculate_container(g.actor, container_id))


@containers_bp.delete("/containers/<int:container_id>")
@require_auth
@require_role(CONTAINERS_DELETE_ROLES)
def delete_container(container_id: int):
    return jsonify(container_service.delete_container(g.actor, container_id))


# =============================================================================
# EXPENSES
# =============================================================================

@containers_bp.post("/containers/<int:container_id>/expenses")
@require_auth
@require_role(EXPENSES_ADD_ROLES)
def create_expense(container_id: int):
    """
    Request body:
    {
        "title": str,
        "amount_cents": int,
        "category": "LOGISTICS" | "CUSTOMS" | "STORAGE" | "TRANSPORT" | "OTHER" (optional),
        "description": str (optional)
    }
    """
    data = require_fields(request.get_json(silent=True), ["title", "amount_cents"])
    expense = expense_service.create_container_expense(
        g.actor,
        container_id,
        title=data["title"],
        amount_cents=data["amount_cents"],
        category=data.get("category") or "OTHER",
        description=data.get("description"),
    )
    return jsonify(expense.to_dict()), 201


@containers_bp.post("/expenses/<int:expense_id>/corrections")
@require_auth
@require_role(EXPENSES_CORRECTION_ROLES)
def create_correction(expense_id: int):
    data = require_fields(request.get_json(silent=True), ["correction_amount_cents", "reason"])
    correction = expense_service.create_expense_correction(
        g.actor,
        expense_id,
        correction_amount_cents=data["correction_amount_cents"],
        reason=data["reason"],
    )
    return jsonify(correction.to_dict()), 201


@containers_bp.post("/expense-corrections/<int:correction_id>/confirm")
@require_auth
@require_role(EXPENSES_CORRECTION_ROLES)
def confirm_correction(correction_id: int):
    correction = expense_service.confirm_expense_correction(g.actor, correction_id)
    return jsonify(correction.to_dict())


@containers_bp.get("/operating-expenses")
@require_auth
@require_role(EXPENSES_ADD_ROLES)
def list_operating_expenses():
    period_id = request.args.get("period_id")
    investor_id = request.args.get("investor_id")
    expenses = expense_service.list_operating_expenses(
        period_id=coerce_int(period_id, "period_id") if period_id else None,
        investor_id=coerce_int(investor_id, "investor_id") if investor_id else None,
    )
    return jsonify([expense.to_dict() for expense in expenses])


@containers_bp.post("/operating-expenses")
@require_auth
@require_role(EXPENSES_ADD_ROLES)
def create_operating_expense():
    data = require_fields(request.get_json(silent=True), ["title", "amount_cents", "investor_id"])
    expense = expense_service.create_operating_expense(
        g.actor,
        title=data["title"],
        amount_cents=data["amount_cents"],
        investor_id=coerce_int(data["investor_id"], "investor_id"),
        spent_at=coerce_optional_datetime(data.get("spent_at"), "spent_at"),
    )
    return jsonify(expense.to_dict()), 201
