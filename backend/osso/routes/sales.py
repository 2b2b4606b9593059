# backend/osso/routes/sales.py
"""
Client, sale, payment and return API routes.
"""
from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_role
from ..permissions import CLIENTS_MANAGE_ROLES, SALES_DELETE_ROLES, SALES_MANAGE_ROLES, SALES_VIEW_ROLES
from ..services import return_service, sales_service
from ..validation import coerce_int, coerce_optional_datetime, require_fields


sales_bp = Blueprint("sales", __name__, url_prefix="/api")


@sales_bp.post("/clients")
@require_auth
@require_role(CLIENTS_MANAGE_ROLES)
def create_client():
    data = require_fields(request.get_json(silent=True), ["name"])
    client = sales_service.create_client(
        g.actor,
        name=data["name"],
        phone=data.get("phone"),
        credit_limit_cents=data.get("credit_limit_cents") or 0,
    )
    return jsonify(client.to_dict()), 201


@sales_bp.get("/sales")
@require_auth
@require_role(SALES_VIEW_ROLES)
def list_sales():
    client_id = request.args.get("client_id")
    period_id = request.args.get("period_id")
    sales = sales_service.list_sales(
        client_id=coerce_int(client_id, "client_id") if client_id else None,
        status=request.args.get("status"),
        period_id=coerce_int(period_id, "period_id") if period_id else None,
    )
    return jsonify([sale.to_dict() for sale in sales])


@sales_bp.post("/sales")
@require_auth
@require_role(SALES_MANAGE_ROLES)
def create_sale():
    """
    Create a sale from ARRIVED container stock.

    Request body:
    {
        "client_id": int,
        "sale_mode": "IMMEDIATE" | "DEBT" | "CONSIGNMENT" (optional),
        "paid_amount_cents": int (optional),
        "due_date": str (required for DEBT/CONSIGNMENT),
        "items": [{"container_item_id": int, "quantity": int, "sale_price_per_unit_cents": int (optional)}]
    }

    Returns:
        201: Sale created
        400: Invalid request
        409: Insufficient stock / period locked / credit limit
    """
    data = require_fields(request.get_json(silent=True), ["client_id", "items"])
    sale = sales_service.create_sale(
        g.actor,
        client_id=coerce_int(data["client_id"], "client_id"),
        items=data["items"],
        sale_mode=data.get("sale_mode") or "IMMEDIATE",
        paid_amount_cents=data.get("paid_amount_cents") or 0,
        due_date=data.get("due_date"),
    )
    return jsonify(sale.to_dict()), 201


@sales_bp.get("/sales/<int:sale_id>")
@require_auth
@require_role(SALES_VIEW_ROLES)
def get_sale(sale_id: int):
    sale = sales_service.get_sale(sale_id)
    data = sale.to_dict()
    data["payments"] = [payment.to_dict() for payment in sale.payments]
    data["returns"] = [doc.to_dict() for doc in sale.returns]
    return jsonify(data)


@sales_bp.post("/sales/<int:sale_id>/payments")
@require_auth
@require_role(SALES_MANAGE_ROLES)
def add_payment(sale_id: int):
    data = require_fields(request.get_json(silent=True), ["amount_cents"])
    payment = sales_service.add_payment(
        g.actor,
        sale_id,
        amount_cents=data["amount_cents"],
        payment_date=coerce_optional_datetime(data.get("payment_date"), "payment_date"),
    )
    return jsonify(payment.to_dict()), 201


@sales_bp.post("/sales/<int:sale_id>/returns")
@require_auth
@require_role(SALES_MANAGE_ROLES)
def create_return(sale_id: int):
    """
    Request body:
    {
        "items": [{"sale_item_id": int, "quantity": int}]
    }

    Returns:
        201: Return created
        409: Quantity exceeds what is still outstanding / period locked
    """
    data = require_fields(request.get_json(silent=True), ["items"])
    doc = return_service.create_return(g.actor, sale_id, items=data["items"])
    return jsonify(doc.to_dict()), 201


@sales_bp.delete("/sales/<int:sale_id>")
@require_auth
@require_role(SALES_DELETE_ROLES)
def delete_sale(sale_id: int):
    return jsonify(sales_service.delete_sale(g.actor, sale_id))
