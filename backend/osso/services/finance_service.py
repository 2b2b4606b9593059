# Overview: Service-layer operations for container financial aggregates.

"""
Container Financial Recalculator

netProfit = revenue - cogs - expenses, always rebuilt from current line data:

- revenue/cogs come from every SaleItem whose ContainerItem belongs to the
  container, using the sale-time price and cost snapshots and only the
  quantity that has not been returned.
- expenses are every ContainerExpense of the container plus the sum of its
  corrections.

Callers invoke recalc_financials after their own writes, inside the same
transaction. The function writes total_expenses_cents and net_profit_cents
back onto the Container and is idempotent.
"""

from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..models import Container, ContainerItem, ContainerExpense, ExpenseCorrection, SaleItem, ReturnItem
from ..validation import NotFoundError


def container_expenses_cents(container_id: int) -> int:
    """Sum of effective expenses (base + corrections) for a container."""
    base = (
        db.session.query(func.coalesce(func.sum(ContainerExpense.amount_cents), 0))
        .filter(ContainerExpense.container_id == container_id)
        .scalar()
    )
    corrections = (
        db.session.query(func.coalesce(func.sum(ExpenseCorrection.correction_amount_cents), 0))
        .join(ContainerExpense, ExpenseCorrection.expense_id == ContainerExpense.id)
        .filter(ContainerExpense.container_id == container_id)
        .scalar()
    )
    return int(base or 0) + int(corrections or 0)


def returned_quantities(sale_item_ids: list[int]) -> dict[int, int]:
    """Map sale_item_id -> total quantity returned across all returns."""
    if not sale_item_ids:
        return {}
    rows = (
        db.session.query(ReturnItem.sale_item_id, func.coalesce(func.sum(ReturnItem.quantity), 0))
        .filter(ReturnItem.sale_item_id.in_(sale_item_ids))
        .group_by(ReturnItem.sale_item_id)
        .all()
    )
    return {sale_item_id: int(total) for sale_item_id, total in rows}


def recalc_financials(container_id: int) -> dict:
    container = db.session.get(Container, container_id)
    if not container:
        raise NotFoundError(f"Container {container_id} not found")

    sale_items = (
        db.session.query(SaleItem)
        .join(ContainerItem, SaleItem.container_item_id == ContainerItem.id)
        .filter(ContainerItem.container_id == container_id)
        .all()
    )
    returned = returned_quantities([item.id for item in sale_items])

    revenue = 0
    cogs = 0
    for item in sale_items:
        effective_qty = item.quantity - returned.get(item.id, 0)
        revenue += effective_qty * item.sale_price_per_unit_cents
        cogs += effective_qty * item.cost_per_unit_cents

    expenses = container_expenses_cents(container_id)
    net_profit = revenue - cogs - expenses

    container.total_expenses_cents = expenses
    container.net_profit_cents = net_profit
    db.session.flush()

    return {
        "revenue_cents": revenue,
        "cogs_cents": cogs,
        "expenses_cents": expenses,
        "net_profit_cents": net_profit,
    }
