# Overview: Service-layer operations for clients, sales, payments and sale deletion.

"""
Sale Ledger Effects

SALE CREATION (one transaction):
1. Resolve the open current period (PeriodLockedError aborts everything)
2. For each line: lock the ContainerItem, refuse if it would go negative,
   decrement stock, snapshot cost and price onto the SaleItem
3. Allocate INV-YYYY-NNNNNN, record the initial payment if any
4. Recalculate financials (and shares where investments exist) for every
   container touched

SALE DELETION (super-admin only):
- Gated by the sale's own period, not the current date
- Restores only the outstanding quantity (sold - returned); returned units
  were already restored by their Return
- Tears down dependents in a fixed order, then recalculates every container
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func

from ..extensions import db
from ..models import Client, Container, ContainerInvestment, ContainerItem, Payment, Return, ReturnItem, Sale, SaleItem
from ..models.containers import CONTAINER_STATUS_ARRIVED
from ..models.sales import (
    SALE_MODE_CONSIGNMENT,
    SALE_MODE_DEBT,
    SALE_MODE_IMMEDIATE,
    SALE_MODES,
    SALE_STATUS_COMPLETED,
    SALE_STATUS_DEBT,
    SALE_STATUS_PARTIALLY_PAID,
    SALE_STATUS_RETURNED,
)
from ..permissions import CLIENTS_MANAGE_ROLES, SALES_DELETE_ROLES, SALES_MANAGE_ROLES
from ..validation import (
    ConflictError,
    NotFoundError,
    ValidationError,
    clean_text,
    coerce_cents,
    coerce_int,
    coerce_optional_datetime,
    coerce_quantity,
)
from .audit_service import append_audit_log
from .concurrency import lock_for_update, run_in_transaction
from .document_service import INVOICE_PREFIX, next_document_number
from .finance_service import recalc_financials, returned_quantities
from .investor_service import recalc_shares
from .period_service import PeriodService
from .permission_service import Actor, require_role
from .system_time_service import Clock


class InsufficientStockError(ConflictError):
    """Raised when a sale line asks for more units than the container item holds."""


class CreditLimitExceededError(ConflictError):
    """Raised when a debt/consignment sale would push a client past its credit limit."""


def compute_sale_status(*, debt_amount_cents: int, paid_amount_cents: int, fully_returned: bool = False) -> str:
    if fully_returned:
        return SALE_STATUS_RETURNED
    if debt_amount_cents <= 0:
        return SALE_STATUS_COMPLETED
    if paid_amount_cents > 0:
        return SALE_STATUS_PARTIALLY_PAID
    return SALE_STATUS_DEBT


def refresh_containers(container_ids) -> dict[int, dict]:
    """Re-run financials (and shares where stakes exist) for each container."""
    results = {}
    for container_id in sorted(set(container_ids)):
        results[container_id] = recalc_financials(container_id)
        has_investments = (
            db.session.query(ContainerInvestment.id).filter_by(container_id=container_id).first() is not None
        )
        if has_investments:
            recalc_shares(container_id)
    return results


# =============================================================================
# CLIENTS
# =============================================================================

def create_client(actor: Actor, *, name: str, phone: str | None = None, credit_limit_cents=0) -> Client:
    require_role(actor, CLIENTS_MANAGE_ROLES, "create clients")
    name = clean_text(name)
    if not name:
        raise ValidationError("name is required")
    limit = coerce_cents(credit_limit_cents or 0, "credit_limit_cents", allow_zero=True)

    def _op():
        client = Client(name=name, phone=clean_text(phone), credit_limit_cents=limit)
        db.session.add(client)
        db.session.flush()
        return client

    return run_in_transaction(_op)


def client_outstanding_debt(client_id: int) -> int:
    total = (
        db.session.query(func.coalesce(func.sum(Sale.debt_amount_cents), 0))
        .filter(Sale.client_id == client_id, Sale.debt_amount_cents > 0)
        .scalar()
    )
    return int(total or 0)


# =============================================================================
# SALES
# =============================================================================

def _parse_lines(items) -> list[dict]:
    if not isinstance(items, list) or not items:
        raise ValidationError("A sale needs at least one item")
    lines = []
    for raw in items:
        if not isinstance(raw, dict) or raw.get("container_item_id") is None:
            raise ValidationError("Each sale item needs a container_item_id")
        price = raw.get("sale_price_per_unit_cents")
        lines.append({
            "container_item_id": coerce_int(raw["container_item_id"], "container_item_id"),
            "quantity": coerce_quantity(raw.get("quantity")),
            "sale_price_per_unit_cents": coerce_cents(price, "sale_price_per_unit_cents") if price is not None else None,
        })
    return lines


def create_sale(
    actor: Actor,
    *,
    client_id: int,
    items: list[dict],
    sale_mode: str = SALE_MODE_IMMEDIATE,
    paid_amount_cents=0,
    due_date=None,
    clock: Clock | None = None,
) -> Sale:
    require_role(actor, SALES_MANAGE_ROLES, "create sales")
    lines = _parse_lines(items)
    sale_mode = (sale_mode or SALE_MODE_IMMEDIATE).strip().upper()
    if sale_mode not in SALE_MODES:
        raise ValidationError(f"Unknown sale mode: {sale_mode}")
    paid_requested = coerce_cents(paid_amount_cents or 0, "paid_amount_cents", allow_zero=True)
    due = coerce_optional_datetime(due_date, "due_date")
    if sale_mode == SALE_MODE_IMMEDIATE and paid_requested <= 0:
        raise ValidationError("An immediate sale requires a payment")
    if sale_mode in (SALE_MODE_DEBT, SALE_MODE_CONSIGNMENT) and due is None:
        raise ValidationError(f"A {sale_mode.lower()} sale requires a due_date")
    periods = PeriodService(clock=clock)

    def _op():
        period = periods.assert_open()
        now = periods.now()

        client = db.session.get(Client, client_id)
        if not client:
            raise NotFoundError(f"Client {client_id} not found")

        sale = Sale(
            invoice_number=next_document_number(prefix=INVOICE_PREFIX, now=now),
            client_id=client.id,
            sale_mode=sale_mode,
            status=SALE_STATUS_DEBT,
            due_date=due,
            financial_period_id=period.id,
            created_by_user_id=actor.user_id,
            created_at=now,
        )
        db.session.add(sale)
        db.session.flush()

        total = 0
        touched = set()
        for line in lines:
            item = lock_for_update(db.session.query(ContainerItem).filter_by(id=line["container_item_id"])).first()
            if not item:
                raise NotFoundError(f"Container item {line['container_item_id']} not found")
            container = db.session.get(Container, item.container_id)
            if container.status != CONTAINER_STATUS_ARRIVED:
                raise ConflictError(f"Container {container.id} is {container.status}; only ARRIVED stock can be sold")

            price = line["sale_price_per_unit_cents"] or item.sale_price_cents
            if not price or price <= 0:
                raise ValidationError(f"No sale price for container item {item.id}")
            if line["quantity"] > item.quantity:
                raise InsufficientStockError(
                    f"Insufficient stock for container item {item.id}",
                    details={"container_item_id": item.id, "requested": line["quantity"], "available": item.quantity},
                )

            item.quantity -= line["quantity"]
            line_total = line["quantity"] * price
            db.session.add(SaleItem(
                sale_id=sale.id,
                container_item_id=item.id,
                product_id=item.product_id,
                quantity=line["quantity"],
                sale_price_per_unit_cents=price,
                cost_per_unit_cents=item.cost_per_unit_cents,
                total_cents=line_total,
            ))
            total += line_total
            touched.add(item.container_id)

        paid = min(paid_requested, total)
        debt = total - paid
        if debt > 0 and client.credit_limit_cents > 0:
            outstanding = client_outstanding_debt(client.id)
            if outstanding + debt > client.credit_limit_cents:
                raise CreditLimitExceededError(
                    f"Client {client.id} would exceed the credit limit",
                    details={
                        "credit_limit_cents": client.credit_limit_cents,
                        "outstanding_cents": outstanding,
                        "new_debt_cents": debt,
                    },
                )

        sale.total_amount_cents = total
        sale.paid_amount_cents = paid
        sale.debt_amount_cents = debt
        sale.status = compute_sale_status(debt_amount_cents=debt, paid_amount_cents=paid)
        if paid > 0:
            db.session.add(Payment(
                sale_id=sale.id,
                amount_cents=paid,
                payment_date=now,
                created_by_user_id=actor.user_id,
            ))
        db.session.flush()

        refresh_containers(touched)

        append_audit_log(
            action="CREATE_SALE",
            entity_type="Sale",
            entity_id=sale.id,
            actor_user_id=actor.user_id,
            metadata={
                "invoice_number": sale.invoice_number,
                "total_amount_cents": total,
                "paid_amount_cents": paid,
                "financial_period_id": period.id,
            },
            occurred_at=now,
        )
        return sale

    return run_in_transaction(_op)


def add_payment(
    actor: Actor,
    sale_id: int,
    *,
    amount_cents,
    payment_date: datetime | None = None,
    clock: Clock | None = None,
) -> Payment:
    """Apply a payment capped at the outstanding debt; gated by the sale's period."""
    require_role(actor, SALES_MANAGE_ROLES, "record payments")
    amount = coerce_cents(amount_cents, "amount_cents")
    periods = PeriodService(clock=clock)

    def _op():
        sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
        if not sale:
            raise NotFoundError(f"Sale {sale_id} not found")
        periods.assert_open_by_id(sale.financial_period_id)
        if sale.debt_amount_cents <= 0:
            raise ConflictError(f"Sale {sale.invoice_number} has no outstanding debt")

        applied = min(amount, sale.debt_amount_cents)
        payment = Payment(
            sale_id=sale.id,
            amount_cents=applied,
            payment_date=payment_date or periods.now(),
            created_by_user_id=actor.user_id,
        )
        db.session.add(payment)
        sale.paid_amount_cents += applied
        sale.debt_amount_cents -= applied
        if sale.status != SALE_STATUS_RETURNED:
            sale.status = compute_sale_status(
                debt_amount_cents=sale.debt_amount_cents,
                paid_amount_cents=sale.paid_amount_cents,
            )
        db.session.flush()

        append_audit_log(
            action="CREATE_PAYMENT",
            entity_type="Payment",
            entity_id=payment.id,
            actor_user_id=actor.user_id,
            metadata={"sale_id": sale.id, "amount_cents": applied, "requested_cents": amount},
        )
        return payment

    return run_in_transaction(_op)


# Dependents of a sale in deletion order
SALE_TEARDOWN_PLAN = (
    ("return_items", lambda sale_id, return_ids: db.session.query(ReturnItem).filter(
        ReturnItem.return_id.in_(return_ids))),
    ("returns", lambda sale_id, return_ids: db.session.query(Return).filter(Return.sale_id == sale_id)),
    ("payments", lambda sale_id, return_ids: db.session.query(Payment).filter(Payment.sale_id == sale_id)),
    ("sale_items", lambda sale_id, return_ids: db.session.query(SaleItem).filter(SaleItem.sale_id == sale_id)),
    ("sales", lambda sale_id, return_ids: db.session.query(Sale).filter(Sale.id == sale_id)),
)


def delete_sale(actor: Actor, sale_id: int) -> dict:
    require_role(actor, SALES_DELETE_ROLES, "delete sales")
    periods = PeriodService()

    def _op():
        sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
        if not sale:
            raise NotFoundError(f"Sale {sale_id} not found")
        periods.assert_open_by_id(sale.financial_period_id)

        sale_items = db.session.query(SaleItem).filter_by(sale_id=sale.id).all()
        returned = returned_quantities([item.id for item in sale_items])
        touched = set()
        restored = {}
        for sale_item in sale_items:
            outstanding = sale_item.quantity - returned.get(sale_item.id, 0)
            item = lock_for_update(db.session.query(ContainerItem).filter_by(id=sale_item.container_item_id)).first()
            if item is None:
                continue
            if outstanding > 0:
                item.quantity += outstanding
                restored[item.id] = restored.get(item.id, 0) + outstanding
            touched.add(item.container_id)
        db.session.flush()

        snapshot = {
            "invoice_number": sale.invoice_number,
            "total_amount_cents": sale.total_amount_cents,
            "paid_amount_cents": sale.paid_amount_cents,
            "financial_period_id": sale.financial_period_id,
            "restored": {str(k): v for k, v in restored.items()},
        }
        return_ids = [row.id for row in db.session.query(Return.id).filter_by(sale_id=sale.id)]
        for _table, build_query in SALE_TEARDOWN_PLAN:
            build_query(sale_id, return_ids).delete(synchronize_session="fetch")
        db.session.flush()

        refresh_containers(touched)

        append_audit_log(
            action="DELETE_SALE",
            entity_type="Sale",
            entity_id=sale_id,
            actor_user_id=actor.user_id,
            metadata=snapshot,
        )
        return {"id": sale_id, "restored": restored, "containers": sorted(touched)}

    return run_in_transaction(_op)


def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if not sale:
        raise NotFoundError(f"Sale {sale_id} not found")
    return sale


def list_sales(*, client_id: int | None = None, status: str | None = None, period_id: int | None = None) -> list[Sale]:
    query = db.session.query(Sale)
    if client_id is not None:
        query = query.filter(Sale.client_id == client_id)
    if status:
        query = query.filter(Sale.status == status.strip().upper())
    if period_id is not None:
        query = query.filter(Sale.financial_period_id == period_id)
    return query.order_by(Sale.created_at.desc(), Sale.id.desc()).all()
