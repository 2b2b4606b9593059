# Overview: Service-layer operations for sale returns.

from __future__ import annotations

from ..extensions import db
from ..models import ContainerItem, Return, ReturnItem, Sale, SaleItem
from ..permissions import SALES_MANAGE_ROLES
from ..validation import ConflictError, NotFoundError, ValidationError, coerce_int, coerce_quantity
from .audit_service import append_audit_log
from .concurrency import lock_for_update, run_in_transaction
from .document_service import RETURN_PREFIX, next_document_number
from .finance_service import recalc_financials, returned_quantities
from .period_service import PeriodService
from .permission_service import Actor, require_role
from .sales_service import compute_sale_status
from .system_time_service import Clock


class ReturnExceedsRemainingError(ConflictError):
    """Raised when a return asks for more units than are still outstanding on a sale line."""


def _parse_lines(items) -> list[dict]:
    if not isinstance(items, list) or not items:
        raise ValidationError("A return needs at least one item")
    lines = []
    for raw in items:
        if not isinstance(raw, dict) or raw.get("sale_item_id") is None:
            raise ValidationError("Each return item needs a sale_item_id")
        lines.append({
            "sale_item_id": coerce_int(raw["sale_item_id"], "sale_item_id"),
            "quantity": coerce_quantity(raw.get("quantity")),
        })
    return lines


def create_return(actor: Actor, sale_id: int, *, items: list[dict], clock: Clock | None = None) -> Return:
    """
    Return sold units to stock.

    Each line may not exceed sold - already returned for its SaleItem.
    Refund = quantity x sale-time price; it reduces the sale total, takes the
    debt down first, and caps paid at the new total.
    """
    require_role(actor, SALES_MANAGE_ROLES, "create returns")
    lines = _parse_lines(items)
    periods = PeriodService(clock=clock)

    def _op():
        sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
        if not sale:
            raise NotFoundError(f"Sale {sale_id} not found")
        periods.assert_open_by_id(sale.financial_period_id)
        now = periods.now()

        sale_items = {item.id: item for item in db.session.query(SaleItem).filter_by(sale_id=sale.id).all()}
        already_returned = returned_quantities(list(sale_items))
        requested: dict[int, int] = {}

        doc = Return(
            sale_id=sale.id,
            return_number=next_document_number(prefix=RETURN_PREFIX, now=now),
            created_by_user_id=actor.user_id,
            created_at=now,
        )
        db.session.add(doc)
        db.session.flush()

        refund = 0
        touched = set()
        for line in lines:
            sale_item = sale_items.get(line["sale_item_id"])
            if sale_item is None:
                raise NotFoundError(f"Sale item {line['sale_item_id']} not found on sale {sale.id}")

            requested[sale_item.id] = requested.get(sale_item.id, 0) + line["quantity"]
            remaining = sale_item.quantity - already_returned.get(sale_item.id, 0)
            if requested[sale_item.id] > remaining:
                raise ReturnExceedsRemainingError(
                    f"Return quantity exceeds the remaining quantity for sale item {sale_item.id}",
                    details={
                        "sale_item_id": sale_item.id,
                        "requested": requested[sale_item.id],
                        "remaining": remaining,
                    },
                )

            amount = line["quantity"] * sale_item.sale_price_per_unit_cents
            db.session.add(ReturnItem(
                return_id=doc.id,
                sale_item_id=sale_item.id,
                quantity=line["quantity"],
                amount_cents=amount,
            ))
            refund += amount

            item = lock_for_update(db.session.query(ContainerItem).filter_by(id=sale_item.container_item_id)).first()
            if item is not None:
                item.quantity += line["quantity"]
                touched.add(item.container_id)

        doc.total_return_cents = refund
        sale.total_amount_cents -= refund
        sale.debt_amount_cents = max(sale.debt_amount_cents - refund, 0)
        sale.paid_amount_cents = min(sale.paid_amount_cents, sale.total_amount_cents)

        fully_returned = all(
            already_returned.get(item_id, 0) + requested.get(item_id, 0) >= line_item.quantity
            for item_id, line_item in sale_items.items()
        )
        sale.status = compute_sale_status(
            debt_amount_cents=sale.debt_amount_cents,
            paid_amount_cents=sale.paid_amount_cents,
            fully_returned=fully_returned,
        )
        db.session.flush()

        for container_id in sorted(touched):
            recalc_financials(container_id)

        append_audit_log(
            action="CREATE_RETURN",
            entity_type="Return",
            entity_id=doc.id,
            actor_user_id=actor.user_id,
            metadata={
                "sale_id": sale.id,
                "return_number": doc.return_number,
                "total_return_cents": refund,
                "financial_period_id": sale.financial_period_id,
            },
            occurred_at=now,
        )
        return doc

    return run_in_transaction(_op)


def list_returns(sale_id: int) -> list[Return]:
    return db.session.query(Return).filter_by(sale_id=sale_id).order_by(Return.id.asc()).all()
