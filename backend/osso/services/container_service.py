# Overview: Service-layer operations for containers; owns the unit-cost allocator.

"""
Container Cost Allocator and container lifecycle.

Unit cost is a simple average over the whole container:

    unit_cost = (total_purchase + total_expenses) / sum(item.quantity)

applied to every ContainerItem (0 when there is no stock). It is NOT weighted
by per-line purchase price; sale COGS snapshots depend on that convention.

Recompute after purchase totals, expenses/corrections or structural item
quantities change. Sales only reduce quantity and never trigger it.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import func, or_

from ..extensions import db
from ..models import (
    Container,
    ContainerItem,
    ContainerExpense,
    ContainerInvestment,
    ExpenseCorrection,
    InventorySessionItem,
    InvestorPayout,
    Investor,
    Product,
    SaleItem,
)
from ..models.containers import (
    CONTAINER_STATUS_ARRIVED,
    CONTAINER_STATUS_IN_TRANSIT,
    CONTAINER_STATUSES,
    EXPENSE_CATEGORIES,
)
from ..permissions import CONTAINERS_DELETE_ROLES, CONTAINERS_MANAGE_ROLES, STOCK_ITEMS_MANAGE_ROLES
from ..validation import (
    ConflictError,
    NotFoundError,
    ValidationError,
    clean_text,
    coerce_cents,
    coerce_datetime,
    coerce_int,
    coerce_quantity,
    coerce_rate,
)
from .audit_service import append_audit_log
from .concurrency import lock_for_update, run_in_transaction
from .currency_service import get_current_rate, to_accounting_cents, to_source_cents
from .finance_service import container_expenses_cents, recalc_financials
from .investor_service import recalc_shares, upsert_investment
from .period_service import PeriodService
from .permission_service import Actor, require_role
from .system_time_service import Clock


def recalc_unit_cost(container_id: int) -> dict:
    container = db.session.get(Container, container_id)
    if not container:
        raise NotFoundError(f"Container {container_id} not found")

    items = db.session.query(ContainerItem).filter_by(container_id=container_id).all()
    total_quantity = sum(item.quantity for item in items)
    cost_basis = container.total_purchase_cents + container_expenses_cents(container_id)

    if total_quantity > 0:
        unit_cost = int(
            (Decimal(cost_basis) / Decimal(total_quantity)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        )
    else:
        unit_cost = 0

    for item in items:
        item.cost_per_unit_cents = unit_cost
    db.session.flush()

    return {"total_quantity": total_quantity, "unit_cost_cents": unit_cost}


def _line_cost_cents(quantity: int, unit_price_cents: int | None, line_total_cents: int | None) -> int:
    if line_total_cents is not None:
        return line_total_cents
    if unit_price_cents is not None:
        return quantity * unit_price_cents
    return 0


def _parse_item(raw: dict) -> dict:
    if not isinstance(raw, dict):
        raise ValidationError("Each item must be an object")
    if raw.get("product_id") is None:
        raise ValidationError("product_id is required for each item")

    unit_price = raw.get("unit_price_cents")
    line_total = raw.get("line_total_cents")
    sale_price = raw.get("sale_price_cents")
    return {
        "product_id": coerce_int(raw["product_id"], "product_id"),
        "quantity": coerce_quantity(raw.get("quantity")),
        "unit_price_cents": coerce_cents(unit_price, "unit_price_cents", allow_zero=True) if unit_price is not None else None,
        "line_total_cents": coerce_cents(line_total, "line_total_cents", allow_zero=True) if line_total is not None else None,
        "sale_price_cents": coerce_cents(sale_price, "sale_price_cents") if sale_price is not None else None,
        "size_label": clean_text(raw.get("size_label")),
        "color": clean_text(raw.get("color")),
    }


def _merge_item(container: Container, data: dict) -> tuple[ContainerItem, int]:
    """
    Add a parsed item line to the container, merging with the line for the
    same product and variant. Returns (item, purchase cost added in cents).
    """
    product = db.session.get(Product, data["product_id"])
    if not product:
        raise NotFoundError(f"Product {data['product_id']} not found")

    line_cost = _line_cost_cents(data["quantity"], data["unit_price_cents"], data["line_total_cents"])

    item = lock_for_update(
        db.session.query(ContainerItem).filter_by(
            container_id=container.id,
            product_id=product.id,
            size_label=data["size_label"],
            color=data["color"],
        )
    ).first()
    if item:
        item.quantity += data["quantity"]
        item.line_total_cents = (item.line_total_cents or 0) + line_cost
        if data["unit_price_cents"] is not None:
            item.unit_price_cents = data["unit_price_cents"]
        if data["sale_price_cents"] is not None:
            item.sale_price_cents = data["sale_price_cents"]
    else:
        item = ContainerItem(
            container_id=container.id,
            product_id=product.id,
            size_label=data["size_label"],
            color=data["color"],
            quantity=data["quantity"],
            unit_price_cents=data["unit_price_cents"],
            line_total_cents=line_cost,
            sale_price_cents=data["sale_price_cents"],
            cost_per_unit_cents=0,
        )
        db.session.add(item)
    db.session.flush()
    return item, line_cost


# =============================================================================
# CREATE / UPDATE
# =============================================================================

def create_container(
    actor: Actor,
    *,
    name: str,
    purchase_date,
    total_purchase_source_cents,
    exchange_rate=None,
    items: list[dict] | None = None,
    initial_expense: dict | None = None,
    investments: list[dict] | None = None,
    clock: Clock | None = None,
) -> Container:
    """
    Create an IN_TRANSIT container with optional items, initial expense and
    investor stakes, then run shares, unit cost and financials.

    Purchase total (USD cents) = max(source total converted at the rate
    snapshot, sum of item line totals).
    """
    require_role(actor, CONTAINERS_MANAGE_ROLES, "create containers")
    name = clean_text(name)
    if not name:
        raise ValidationError("name is required")
    purchased_at = coerce_datetime(purchase_date, "purchase_date")
    source_cents = coerce_cents(total_purchase_source_cents, "total_purchase_source_cents", allow_zero=True)
    parsed_items = [_parse_item(raw) for raw in (items or [])]
    parsed_investments = []
    for raw in investments or []:
        if not isinstance(raw, dict) or raw.get("investor_id") is None:
            raise ValidationError("Each investment needs an investor_id")
        parsed_investments.append((
            coerce_int(raw["investor_id"], "investor_id"),
            coerce_cents(raw.get("invested_amount_cents"), "invested_amount_cents"),
        ))
    expense = None
    if initial_expense:
        expense = {
            "title": clean_text(initial_expense.get("title")) or "Initial expense",
            "amount_cents": coerce_cents(initial_expense.get("amount_cents"), "amount_cents"),
            "category": (clean_text(initial_expense.get("category")) or "OTHER").upper(),
            "description": clean_text(initial_expense.get("description")),
        }
        if expense["category"] not in EXPENSE_CATEGORIES:
            raise ValidationError(f"Unknown expense category: {expense['category']}")

    periods = PeriodService(clock=clock)

    def _op():
        rate = coerce_rate(exchange_rate) if exchange_rate is not None else get_current_rate()
        if not rate or rate <= 0:
            raise ValidationError("No exchange rate configured")

        container = Container(
            name=name,
            status=CONTAINER_STATUS_IN_TRANSIT,
            purchase_date=purchased_at,
            exchange_rate=rate,
            total_purchase_source_cents=source_cents,
            total_purchase_cents=0,
            created_by_user_id=actor.user_id,
        )
        db.session.add(container)
        db.session.flush()

        lines_total = 0
        for data in parsed_items:
            _, line_cost = _merge_item(container, data)
            lines_total += line_cost

        converted = to_accounting_cents(source_cents, rate)
        if lines_total > converted:
            container.total_purchase_cents = lines_total
            container.total_purchase_source_cents = to_source_cents(lines_total, rate)
        else:
            container.total_purchase_cents = converted

        if expense:
            period = periods.assert_open()
            db.session.add(ContainerExpense(
                container_id=container.id,
                title=expense["title"],
                category=expense["category"],
                amount_cents=expense["amount_cents"],
                description=expense["description"],
                financial_period_id=period.id,
                created_by_user_id=actor.user_id,
            ))
            db.session.flush()

        for investor_id, amount in parsed_investments:
            investor = db.session.get(Investor, investor_id)
            if not investor:
                raise NotFoundError(f"Investor {investor_id} not found")
            upsert_investment(container, investor, amount)

        recalc_shares(container.id)
        recalc_unit_cost(container.id)
        recalc_financials(container.id)

        append_audit_log(
            action="CREATE_CONTAINER",
            entity_type="Container",
            entity_id=container.id,
            actor_user_id=actor.user_id,
            metadata={
                "name": container.name,
                "exchange_rate": rate,
                "total_purchase_source_cents": container.total_purchase_source_cents,
                "total_purchase_cents": container.total_purchase_cents,
                "items": len(parsed_items),
                "initial_expense_cents": expense["amount_cents"] if expense else 0,
            },
        )
        return container

    return run_in_transaction(_op)


def add_item(actor: Actor, container_id: int, item: dict, *, clock: Clock | None = None) -> ContainerItem:
    """Add stock to an ARRIVED container; the line cost raises the purchase totals."""
    require_role(actor, CONTAINERS_MANAGE_ROLES, "add container items")
    data = _parse_item(item)
    periods = PeriodService(clock=clock)

    def _op():
        container = lock_for_update(db.session.query(Container).filter_by(id=container_id)).first()
        if not container:
            raise NotFoundError(f"Container {container_id} not found")
        if container.status != CONTAINER_STATUS_ARRIVED:
            raise ConflictError(f"Items can only be added to ARRIVED containers (status {container.status})")
        periods.assert_open()

        row, line_cost = _merge_item(container, data)
        container.total_purchase_cents += line_cost
        container.total_purchase_source_cents += to_source_cents(line_cost, container.exchange_rate)
        db.session.flush()

        recalc_unit_cost(container.id)
        recalc_financials(container.id)

        append_audit_log(
            action="ADD_CONTAINER_ITEM",
            entity_type="ContainerItem",
            entity_id=row.id,
            actor_user_id=actor.user_id,
            metadata={
                "container_id": container.id,
                "product_id": row.product_id,
                "quantity": data["quantity"],
                "line_cost_cents": line_cost,
            },
        )
        return row

    return run_in_transaction(_op)


def update_status(
    actor: Actor,
    container_id: int,
    status: str,
    *,
    arrival_date: datetime | None = None,
    clock: Clock | None = None,
) -> Container:
    require_role(actor, CONTAINERS_MANAGE_ROLES, "change container status")
    status = (status or "").strip().upper()
    if status not in CONTAINER_STATUSES:
        raise ValidationError(f"Unknown container status: {status}")
    periods = PeriodService(clock=clock)

    def _op():
        container = lock_for_update(db.session.query(Container).filter_by(id=container_id)).first()
        if not container:
            raise NotFoundError(f"Container {container_id} not found")
        previous = container.status
        container.status = status
        if status == CONTAINER_STATUS_ARRIVED and (arrival_date or not container.arrival_date):
            container.arrival_date = arrival_date or periods.now()
        db.session.flush()

        append_audit_log(
            action="UPDATE_CONTAINER_STATUS",
            entity_type="Container",
            entity_id=container.id,
            actor_user_id=actor.user_id,
            metadata={"from": previous, "to": status},
        )
        return container

    return run_in_transaction(_op)


# =============================================================================
# STOCK ITEMS
# =============================================================================

def _lock_item(item_id: int) -> tuple[ContainerItem, Container]:
    item = lock_for_update(db.session.query(ContainerItem).filter_by(id=item_id)).first()
    if not item:
        raise NotFoundError(f"Container item {item_id} not found")
    container = lock_for_update(db.session.query(Container).filter_by(id=item.container_id)).first()
    return item, container


def update_item(
    actor: Actor,
    item_id: int,
    *,
    quantity=None,
    sale_price_cents=None,
    clock: Clock | None = None,
) -> ContainerItem:
    """
    Correct a stock line's quantity and/or sale price (super-admin only).

    A quantity change is structural, so unit cost and financials are rebuilt
    for the whole container. Purchase totals are left as they are.
    """
    require_role(actor, STOCK_ITEMS_MANAGE_ROLES, "edit stock items")
    if quantity is None and sale_price_cents is None:
        raise ValidationError("Nothing to update: provide quantity and/or sale_price_cents")
    new_quantity = coerce_quantity(quantity, allow_zero=True) if quantity is not None else None
    new_price = coerce_cents(sale_price_cents, "sale_price_cents", allow_zero=True) if sale_price_cents is not None else None
    periods = PeriodService(clock=clock)

    def _op():
        item, container = _lock_item(item_id)
        periods.assert_open()

        before = {"quantity": item.quantity, "sale_price_cents": item.sale_price_cents}
        if new_quantity is not None:
            item.quantity = new_quantity
        if new_price is not None:
            item.sale_price_cents = new_price
        db.session.flush()

        recalc_unit_cost(container.id)
        recalc_financials(container.id)

        append_audit_log(
            action="UPDATE_CONTAINER_ITEM",
            entity_type="ContainerItem",
            entity_id=item.id,
            actor_user_id=actor.user_id,
            metadata={
                "container_id": container.id,
                "before": before,
                "after": {"quantity": item.quantity, "sale_price_cents": item.sale_price_cents},
            },
        )
        return item

    return run_in_transaction(_op)


def delete_item(actor: Actor, item_id: int, *, clock: Clock | None = None) -> dict:
    """
    Remove a stock line that nothing references yet.

    Refused while sale lines or inventory count lines point at it.
    """
    require_role(actor, STOCK_ITEMS_MANAGE_ROLES, "delete stock items")
    periods = PeriodService(clock=clock)

    def _op():
        item, container = _lock_item(item_id)
        periods.assert_open()

        sale_lines = db.session.query(func.count(SaleItem.id)).filter(SaleItem.container_item_id == item.id).scalar()
        count_lines = (
            db.session.query(func.count(InventorySessionItem.id))
            .filter(InventorySessionItem.container_item_id == item.id)
            .scalar()
        )
        if sale_lines or count_lines:
            raise ConflictError(
                f"Container item {item.id} is referenced by sales or inventory counts",
                details={"sale_items": sale_lines, "inventory_session_items": count_lines},
            )

        snapshot = item.to_dict()
        db.session.delete(item)
        db.session.flush()

        recalc_unit_cost(container.id)
        recalc_financials(container.id)

        append_audit_log(
            action="DELETE_CONTAINER_ITEM",
            entity_type="ContainerItem",
            entity_id=item_id,
            actor_user_id=actor.user_id,
            metadata={"container_id": container.id, "item": snapshot},
        )
        return {"id": item_id, "container_id": container.id}

    return run_in_transaction(_op)


# =============================================================================
# DELETE
# =============================================================================

# Child tables in dependency order; each step returns the query to bulk-delete
TEARDOWN_PLAN = (
    ("investor_payouts", lambda c, item_ids, expense_ids: db.session.query(InvestorPayout).filter(
        InvestorPayout.container_id == c)),
    ("container_investments", lambda c, item_ids, expense_ids: db.session.query(ContainerInvestment).filter(
        ContainerInvestment.container_id == c)),
    ("expense_corrections", lambda c, item_ids, expense_ids: db.session.query(ExpenseCorrection).filter(
        ExpenseCorrection.expense_id.in_(expense_ids))),
    ("container_expenses", lambda c, item_ids, expense_ids: db.session.query(ContainerExpense).filter(
        ContainerExpense.container_id == c)),
    ("inventory_session_items", lambda c, item_ids, expense_ids: db.session.query(InventorySessionItem).filter(
        or_(InventorySessionItem.container_id == c, InventorySessionItem.container_item_id.in_(item_ids)))),
    ("container_items", lambda c, item_ids, expense_ids: db.session.query(ContainerItem).filter(
        ContainerItem.container_id == c)),
    ("containers", lambda c, item_ids, expense_ids: db.session.query(Container).filter(
        Container.id == c)),
)


def delete_container(actor: Actor, container_id: int) -> dict:
    """
    Remove a container and everything hanging off it.

    Refused while any sale references its items (delete those sales first) or
    while any of its expenses or payouts sits in a locked period.
    """
    require_role(actor, CONTAINERS_DELETE_ROLES, "delete containers")
    periods = PeriodService()

    def _op():
        container = lock_for_update(db.session.query(Container).filter_by(id=container_id)).first()
        if not container:
            raise NotFoundError(f"Container {container_id} not found")

        item_ids = [row.id for row in db.session.query(ContainerItem.id).filter_by(container_id=container.id)]
        expense_ids = [row.id for row in db.session.query(ContainerExpense.id).filter_by(container_id=container.id)]

        sold = 0
        if item_ids:
            sold = db.session.query(func.count(SaleItem.id)).filter(SaleItem.container_item_id.in_(item_ids)).scalar()
        if sold:
            raise ConflictError(
                f"Container {container.id} has {sold} sold line(s); delete the sales first",
                details={"sale_items": sold},
            )

        period_ids = {
            row[0] for row in db.session.query(ContainerExpense.financial_period_id).filter_by(container_id=container.id)
        }
        period_ids |= {
            row[0] for row in db.session.query(InvestorPayout.financial_period_id).filter_by(container_id=container.id)
        }
        for period_id in sorted(period_ids):
            periods.assert_open_by_id(period_id)

        snapshot = container.to_dict()
        deleted = {}
        for table, build_query in TEARDOWN_PLAN:
            deleted[table] = build_query(container.id, item_ids, expense_ids).delete(synchronize_session="fetch")
        db.session.flush()

        append_audit_log(
            action="DELETE_CONTAINER",
            entity_type="Container",
            entity_id=container_id,
            actor_user_id=actor.user_id,
            metadata={"container": snapshot, "deleted": deleted},
        )
        return {"id": container_id, "deleted": deleted}

    return run_in_transaction(_op)


# =============================================================================
# READS
# =============================================================================

def get_container(container_id: int) -> Container:
    container = db.session.get(Container, container_id)
    if not container:
        raise NotFoundError(f"Container {container_id} not found")
    return container


def container_detail(container_id: int) -> dict:
    container = get_container(container_id)
    invested_total = sum(inv.invested_amount_cents for inv in container.investments)
    expected_total = container.total_purchase_cents + container.total_expenses_cents
    data = container.to_dict()
    data["items"] = [item.to_dict() for item in container.items]
    data["expenses"] = [expense.to_dict() for expense in container.expenses]
    data["investments"] = [inv.to_dict() for inv in container.investments]
    data["investment_check"] = {
        "invested_total_cents": invested_total,
        "expected_total_cents": expected_total,
        "matches_expected": abs(invested_total - expected_total) < 1,
    }
    return data


def list_containers(*, status: str | None = None) -> list[Container]:
    query = db.session.query(Container)
    if status:
        query = query.filter(Container.status == status.strip().upper())
    return query.order_by(Container.created_at.desc(), Container.id.desc()).all()


def create_product(actor: Actor, *, sku: str, name: str, description: str | None = None) -> Product:
    require_role(actor, CONTAINERS_MANAGE_ROLES, "create products")
    sku = clean_text(sku)
    name = clean_text(name)
    if not sku or not name:
        raise ValidationError("sku and name are required")

    def _op():
        if db.session.query(Product).filter_by(sku=sku).first():
            raise ConflictError(f"Product with SKU {sku} already exists")
        product = Product(sku=sku, name=name, description=clean_text(description))
        db.session.add(product)
        db.session.flush()
        return product

    return run_in_transaction(_op)


def recalculate_container(actor: Actor, container_id: int) -> dict:
    """Operator-triggered rebuild of unit cost, financials and shares."""
    require_role(actor, CONTAINERS_MANAGE_ROLES, "recalculate containers")

    def _op():
        container = lock_for_update(db.session.query(Container).filter_by(id=container_id)).first()
        if not container:
            raise NotFoundError(f"Container {container_id} not found")
        return {
            "unit_cost": recalc_unit_cost(container.id),
            "financials": recalc_financials(container.id),
            "shares": recalc_shares(container.id),
        }

    return run_in_transaction(_op)
