# Overview: Service-layer operations for container expenses, corrections and operating expenses.

from __future__ import annotations

from datetime import datetime

from ..extensions import db
from ..models import Container, ContainerExpense, ExpenseCorrection, Investor, OperatingExpense
from ..models.containers import CONTAINER_STATUS_CLOSED, EXPENSE_CATEGORIES
from ..permissions import EXPENSES_ADD_ROLES, EXPENSES_CORRECTION_ROLES
from ..validation import ConflictError, NotFoundError, ValidationError, clean_text, coerce_cents
from .audit_service import append_audit_log
from .concurrency import lock_for_update, run_in_transaction
from .container_service import recalc_unit_cost
from .finance_service import recalc_financials
from .period_service import PeriodService
from .permission_service import Actor, require_role
from .system_time_service import Clock


def _lock_open_container(container_id: int) -> Container:
    container = lock_for_update(db.session.query(Container).filter_by(id=container_id)).first()
    if not container:
        raise NotFoundError(f"Container {container_id} not found")
    if container.status == CONTAINER_STATUS_CLOSED:
        raise ConflictError("Container is closed; expenses can no longer change")
    return container


def create_container_expense(
    actor: Actor,
    container_id: int,
    *,
    title: str,
    amount_cents,
    category: str = "OTHER",
    description: str | None = None,
    clock: Clock | None = None,
) -> ContainerExpense:
    """Record an expense in the current open period and re-cost the container."""
    require_role(actor, EXPENSES_ADD_ROLES, "add expenses")
    title = clean_text(title)
    if not title:
        raise ValidationError("title is required")
    amount = coerce_cents(amount_cents, "amount_cents")
    category = (clean_text(category) or "OTHER").upper()
    if category not in EXPENSE_CATEGORIES:
        raise ValidationError(f"Unknown expense category: {category}")
    periods = PeriodService(clock=clock)

    def _op():
        container = _lock_open_container(container_id)
        period = periods.assert_open()

        expense = ContainerExpense(
            container_id=container.id,
            title=title,
            category=category,
            amount_cents=amount,
            description=clean_text(description),
            financial_period_id=period.id,
            created_by_user_id=actor.user_id,
        )
        db.session.add(expense)
        db.session.flush()

        recalc_unit_cost(container.id)
        recalc_financials(container.id)

        append_audit_log(
            action="CREATE_EXPENSE",
            entity_type="ContainerExpense",
            entity_id=expense.id,
            actor_user_id=actor.user_id,
            metadata={
                "container_id": container.id,
                "amount_cents": amount,
                "category": category,
                "financial_period_id": period.id,
            },
        )
        return expense

    return run_in_transaction(_op)


def create_expense_correction(
    actor: Actor,
    expense_id: int,
    *,
    correction_amount_cents,
    reason: str,
) -> ExpenseCorrection:
    """
    Apply a signed delta to an expense.

    The correction belongs to the expense's own period and is refused once
    that period is locked.
    """
    require_role(actor, EXPENSES_CORRECTION_ROLES, "correct expenses")
    delta = coerce_cents(correction_amount_cents, "correction_amount_cents", allow_negative=True)
    reason = clean_text(reason)
    if not reason:
        raise ValidationError("A correction reason is required")
    periods = PeriodService()

    def _op():
        expense = db.session.get(ContainerExpense, expense_id)
        if not expense:
            raise NotFoundError(f"Expense {expense_id} not found")
        container = _lock_open_container(expense.container_id)
        period = periods.assert_open_by_id(expense.financial_period_id)

        if expense.effective_amount_cents + delta < 0:
            raise ValidationError("Correction would make the expense negative")

        correction = ExpenseCorrection(
            expense_id=expense.id,
            correction_amount_cents=delta,
            reason=reason,
            is_confirmed=False,
            financial_period_id=period.id,
            created_by_user_id=actor.user_id,
        )
        db.session.add(correction)
        db.session.flush()

        recalc_unit_cost(container.id)
        recalc_financials(container.id)

        append_audit_log(
            action="CREATE_EXPENSE_CORRECTION",
            entity_type="ExpenseCorrection",
            entity_id=correction.id,
            actor_user_id=actor.user_id,
            metadata={
                "expense_id": expense.id,
                "container_id": container.id,
                "correction_amount_cents": delta,
                "reason": reason,
                "financial_period_id": period.id,
            },
        )
        return correction

    return run_in_transaction(_op)


def confirm_expense_correction(actor: Actor, correction_id: int) -> ExpenseCorrection:
    require_role(actor, EXPENSES_CORRECTION_ROLES, "confirm expense corrections")
    periods = PeriodService()

    def _op():
        correction = lock_for_update(db.session.query(ExpenseCorrection).filter_by(id=correction_id)).first()
        if not correction:
            raise NotFoundError(f"Expense correction {correction_id} not found")
        periods.assert_open_by_id(correction.financial_period_id)
        if correction.is_confirmed:
            return correction

        correction.is_confirmed = True
        db.session.flush()
        append_audit_log(
            action="CONFIRM_EXPENSE_CORRECTION",
            entity_type="ExpenseCorrection",
            entity_id=correction.id,
            actor_user_id=actor.user_id,
            metadata={"expense_id": correction.expense_id},
        )
        return correction

    return run_in_transaction(_op)


def create_operating_expense(
    actor: Actor,
    *,
    title: str,
    amount_cents,
    investor_id: int,
    spent_at: datetime | None = None,
    clock: Clock | None = None,
) -> OperatingExpense:
    """Company running cost charged to an investor; dated in its own (open) period."""
    require_role(actor, EXPENSES_ADD_ROLES, "add operating expenses")
    title = clean_text(title)
    if not title:
        raise ValidationError("title is required")
    amount = coerce_cents(amount_cents, "amount_cents")
    periods = PeriodService(clock=clock)

    def _op():
        investor = db.session.get(Investor, investor_id)
        if not investor:
            raise NotFoundError(f"Investor {investor_id} not found")
        period = periods.assert_open(spent_at)

        expense = OperatingExpense(
            title=title,
            amount_cents=amount,
            spent_at=spent_at or periods.now(),
            investor_id=investor.id,
            financial_period_id=period.id,
            created_by_user_id=actor.user_id,
        )
        db.session.add(expense)
        db.session.flush()

        append_audit_log(
            action="CREATE_OPERATING_EXPENSE",
            entity_type="OperatingExpense",
            entity_id=expense.id,
            actor_user_id=actor.user_id,
            metadata={
                "amount_cents": amount,
                "investor_id": investor.id,
                "financial_period_id": period.id,
            },
        )
        return expense

    return run_in_transaction(_op)


def list_operating_expenses(*, period_id: int | None = None, investor_id: int | None = None) -> list[OperatingExpense]:
    query = db.session.query(OperatingExpense)
    if period_id is not None:
        query = query.filter(OperatingExpense.financial_period_id == period_id)
    if investor_id is not None:
        query = query.filter(OperatingExpense.investor_id == investor_id)
    return query.order_by(OperatingExpense.spent_at.desc(), OperatingExpense.id.desc()).all()
