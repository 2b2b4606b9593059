# Overview: Service-layer operations for investors, their stakes and payouts.

"""
Investor Share Allocator

percentage_share_i = invested_i / sum(invested) * 100 for every stake in a
container (0 for all when nothing is invested). The comparison between what
investors put in and what the container cost is a diagnostic only: partial
funding is legal, so a mismatch never blocks a write.

Profit owed to an investor = net_profit * share / 100; remaining balance is
owed minus payouts for the (investor, container) pair. Payouts are not capped
at the remaining balance; overpayment is reported, not prevented.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import func

from ..extensions import db
from ..models import Container, ContainerInvestment, Investor, InvestorPayout
from ..models.containers import CONTAINER_STATUS_CLOSED, CONTAINER_STATUS_IN_TRANSIT
from ..permissions import INVESTOR_PORTAL_ROLES, INVESTORS_MANAGE_ROLES
from ..validation import (
    ConflictError,
    NotFoundError,
    ValidationError,
    clean_text,
    coerce_cents,
)
from .audit_service import append_audit_log
from .concurrency import lock_for_update, run_in_transaction
from .finance_service import container_expenses_cents
from .period_service import PeriodService
from .permission_service import Actor, require_role
from .system_time_service import Clock


# Tolerance for the invested-vs-cost diagnostic, in cents
MATCH_TOLERANCE_CENTS = 1


def _get_investor(investor_id: int) -> Investor:
    investor = db.session.get(Investor, investor_id)
    if not investor:
        raise NotFoundError(f"Investor {investor_id} not found")
    return investor


def _get_container(container_id: int) -> Container:
    container = db.session.get(Container, container_id)
    if not container:
        raise NotFoundError(f"Container {container_id} not found")
    return container


def create_investor(actor: Actor, *, name: str, phone: str | None = None, user_id: int | None = None) -> Investor:
    require_role(actor, INVESTORS_MANAGE_ROLES, "create investors")
    name = clean_text(name)
    if not name:
        raise ValidationError("name is required")

    def _op():
        if user_id is not None and db.session.query(Investor).filter_by(user_id=user_id).first():
            raise ConflictError(f"User {user_id} is already linked to an investor")
        investor = Investor(name=name, phone=clean_text(phone), user_id=user_id)
        db.session.add(investor)
        db.session.flush()
        append_audit_log(
            action="CREATE_INVESTOR",
            entity_type="Investor",
            entity_id=investor.id,
            actor_user_id=actor.user_id,
            metadata={"name": name},
        )
        return investor

    return run_in_transaction(_op)


def list_investors() -> list[Investor]:
    return db.session.query(Investor).order_by(Investor.name.asc(), Investor.id.asc()).all()


# =============================================================================
# SHARES
# =============================================================================

def recalc_shares(container_id: int) -> dict:
    container = _get_container(container_id)
    investments = (
        db.session.query(ContainerInvestment)
        .filter_by(container_id=container_id)
        .order_by(ContainerInvestment.id.asc())
        .all()
    )
    invested_total = sum(inv.invested_amount_cents for inv in investments)

    for inv in investments:
        if invested_total > 0:
            inv.percentage_share = inv.invested_amount_cents / invested_total * 100
        else:
            inv.percentage_share = 0.0
    db.session.flush()

    expected_total = container.total_purchase_cents + container_expenses_cents(container_id)
    return {
        "invested_total_cents": invested_total,
        "expected_total_cents": expected_total,
        "matches_expected": abs(invested_total - expected_total) < MATCH_TOLERANCE_CENTS,
    }


def upsert_investment(container: Container, investor: Investor, amount_cents: int) -> ContainerInvestment:
    """Add `amount_cents` to the investor's stake, creating the row if needed (flush only)."""
    stake = lock_for_update(
        db.session.query(ContainerInvestment).filter_by(container_id=container.id, investor_id=investor.id)
    ).first()
    if stake:
        stake.invested_amount_cents += amount_cents
    else:
        stake = ContainerInvestment(
            container_id=container.id,
            investor_id=investor.id,
            invested_amount_cents=amount_cents,
            percentage_share=0.0,
        )
        db.session.add(stake)
    db.session.flush()
    return stake


def add_investment(actor: Actor, *, container_id: int, investor_id: int, invested_amount_cents) -> dict:
    require_role(actor, INVESTORS_MANAGE_ROLES, "add investments")
    amount = coerce_cents(invested_amount_cents, "invested_amount_cents")

    def _op():
        container = lock_for_update(db.session.query(Container).filter_by(id=container_id)).first()
        if not container:
            raise NotFoundError(f"Container {container_id} not found")
        if container.status == CONTAINER_STATUS_CLOSED:
            raise ConflictError("Cannot add investments to a closed container")
        investor = _get_investor(investor_id)

        stake = upsert_investment(container, investor, amount)
        diagnostics = recalc_shares(container.id)

        append_audit_log(
            action="ADD_INVESTMENT",
            entity_type="ContainerInvestment",
            entity_id=stake.id,
            actor_user_id=actor.user_id,
            metadata={
                "container_id": container.id,
                "investor_id": investor.id,
                "amount_cents": amount,
                "invested_amount_cents": stake.invested_amount_cents,
            },
        )
        return {"investment": stake, "shares": diagnostics}

    return run_in_transaction(_op)


# =============================================================================
# PROFIT AND BALANCES
# =============================================================================

def compute_investor_profit(net_profit_cents: int, percentage_share: float) -> int:
    """net_profit * share / 100, rounded half-up to cents."""
    value = Decimal(int(net_profit_cents)) * Decimal(str(percentage_share)) / Decimal(100)
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def paid_to_investor(investor_id: int, container_id: int) -> int:
    total = (
        db.session.query(func.coalesce(func.sum(InvestorPayout.amount_cents), 0))
        .filter(InvestorPayout.investor_id == investor_id, InvestorPayout.container_id == container_id)
        .scalar()
    )
    return int(total or 0)


def investor_balance(investor_id: int, container_id: int) -> dict:
    _get_investor(investor_id)
    container = _get_container(container_id)
    stake = db.session.query(ContainerInvestment).filter_by(container_id=container_id, investor_id=investor_id).first()
    share = stake.percentage_share if stake else 0.0

    owed = compute_investor_profit(container.net_profit_cents, share)
    paid = paid_to_investor(investor_id, container_id)
    remaining = owed - paid
    return {
        "investor_id": investor_id,
        "container_id": container_id,
        "invested_amount_cents": stake.invested_amount_cents if stake else 0,
        "percentage_share": share,
        "owed_cents": owed,
        "paid_cents": paid,
        "remaining_cents": remaining,
        "overpaid": remaining < 0,
    }


def investor_summary(investor_id: int) -> dict:
    investor = _get_investor(investor_id)
    stakes = (
        db.session.query(ContainerInvestment)
        .filter_by(investor_id=investor_id)
        .order_by(ContainerInvestment.container_id.asc())
        .all()
    )
    balances = [investor_balance(investor_id, stake.container_id) for stake in stakes]
    return {
        "investor": investor.to_dict(),
        "containers": balances,
        "totals": {
            "invested_amount_cents": sum(b["invested_amount_cents"] for b in balances),
            "owed_cents": sum(b["owed_cents"] for b in balances),
            "paid_cents": sum(b["paid_cents"] for b in balances),
            "remaining_cents": sum(b["remaining_cents"] for b in balances),
        },
    }


# =============================================================================
# PAYOUTS
# =============================================================================

def create_payout(
    actor: Actor,
    *,
    investor_id: int,
    container_id: int,
    amount_cents,
    payout_date: datetime | None = None,
    clock: Clock | None = None,
) -> InvestorPayout:
    """
    Record cash paid to an investor for one container.

    Not capped at the remaining balance; investor_balance reports overpaid.
    """
    require_role(actor, INVESTORS_MANAGE_ROLES, "record investor payouts")
    amount = coerce_cents(amount_cents, "amount_cents")
    periods = PeriodService(clock=clock)

    def _op():
        investor = _get_investor(investor_id)
        container = _get_container(container_id)
        if container.status == CONTAINER_STATUS_IN_TRANSIT:
            raise ConflictError("Cannot pay out profit for a container still in transit")
        stake = (
            db.session.query(ContainerInvestment)
            .filter_by(container_id=container.id, investor_id=investor.id)
            .first()
        )
        if not stake:
            raise ConflictError(f"Investor {investor.id} has no stake in container {container.id}")

        period = periods.assert_open()
        payout = InvestorPayout(
            investor_id=investor.id,
            container_id=container.id,
            amount_cents=amount,
            payout_date=payout_date or periods.now(),
            financial_period_id=period.id,
            created_by_user_id=actor.user_id,
        )
        db.session.add(payout)
        db.session.flush()

        append_audit_log(
            action="CREATE_INVESTOR_PAYOUT",
            entity_type="InvestorPayout",
            entity_id=payout.id,
            actor_user_id=actor.user_id,
            metadata={
                "investor_id": investor.id,
                "container_id": container.id,
                "amount_cents": amount,
                "financial_period_id": period.id,
            },
        )
        return payout

    return run_in_transaction(_op)


def list_payouts(*, investor_id: int | None = None, container_id: int | None = None) -> list[InvestorPayout]:
    query = db.session.query(InvestorPayout)
    if investor_id is not None:
        query = query.filter(InvestorPayout.investor_id == investor_id)
    if container_id is not None:
        query = query.filter(InvestorPayout.container_id == container_id)
    return query.order_by(InvestorPayout.payout_date.desc(), InvestorPayout.id.desc()).all()


def summary_for_user(actor: Actor) -> dict:
    """The calling INVESTOR user's own summary, resolved through Investor.user_id."""
    require_role(actor, INVESTOR_PORTAL_ROLES, "view the investor portal")
    investor = db.session.query(Investor).filter_by(user_id=actor.user_id).first()
    if not investor:
        raise NotFoundError(f"No investor is linked to user {actor.user_id}")
    summary = investor_summary(investor.id)
    summary["payouts"] = [payout.to_dict() for payout in list_payouts(investor_id=investor.id)]
    return summary
