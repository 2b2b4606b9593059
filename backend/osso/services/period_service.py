# Overview: Service-layer operations for financial periods; the write-barrier for financial records.

"""
Financial Period Gatekeeper

WHY: Closed months must stay closed. Every mutating financial action asks
this service for an open period before writing, and a LOCKED period aborts
the whole transaction.

CURRENT PERIOD RULES:
1. If a period row exists for the calendar month of "now", it is authoritative
   (even when LOCKED - callers then fail their writes).
2. Otherwise the most recent period at or before that month is inspected:
   while it is still OPEN the system stays in it (no forward rollover while an
   older month is unclosed).
3. Only when that period is LOCKED (or none exists) is a new OPEN period
   lazily created for the current calendar month.

LIFECYCLE:
OPEN -> LOCKED (month close, admins) -> OPEN (explicit unlock, super-admin,
mandatory reason). Both transitions are audit-logged.

The service takes an injected clock and resolves periods per call; nothing
is cached between calls.
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import and_, or_

from ..extensions import db
from ..models import FinancialPeriod, Sale, InventorySession, ExpenseCorrection
from ..models.inventory import SESSION_STATUS_CONFIRMED, SESSION_STATUS_DISCREPANCY, SESSION_STATUS_PENDING
from ..models.periods import PERIOD_STATUS_LOCKED, PERIOD_STATUS_OPEN
from ..models.sales import SALE_STATUS_DEBT, SALE_STATUS_PARTIALLY_PAID
from ..permissions import PERIODS_MANAGE_ROLES, PERIODS_UNLOCK_ROLES
from ..validation import ConflictError, NotFoundError, ValidationError, clean_text
from osso.time_utils import month_year, period_key
from .audit_service import append_audit_log
from .concurrency import lock_for_update, run_in_transaction
from .permission_service import Actor, require_role
from .system_time_service import Clock, get_server_time_zone, get_system_control, resolve_clock


DEFAULT_LOCK_REASON = "Month close"


class PeriodLockedError(ConflictError):
    """Raised when a write targets a LOCKED financial period."""

    def __init__(self, period: FinancialPeriod):
        super().__init__(
            f"Financial period {period.label} is locked",
            details={"period_id": period.id, "month": period.month, "year": period.year},
        )
        self.period_id = period.id


class MonthCloseBlockedError(ConflictError):
    """Raised when a period cannot be locked because checklist items fail."""


class PeriodService:
    """
    Resolves and guards financial periods against an injected clock.

    Args:
        clock: callable returning the current UTC-naive time; defaults to the
            system clock collaborator (host time or operator-pinned time).
        time_zone: zone used to decide which calendar month a timestamp
            belongs to; defaults to SystemControl.server_time_zone.
    """

    def __init__(self, clock: Clock | None = None, time_zone: str | None = None):
        self._clock = resolve_clock(clock)
        self._time_zone = time_zone

    def now(self) -> datetime:
        return self._clock()

    def _zone(self) -> str:
        return self._time_zone or get_server_time_zone()

    # -------------------------------------------------------------------------
    # Resolution
    # -------------------------------------------------------------------------

    def get_or_create(self, month: int, year: int) -> FinancialPeriod:
        existing = db.session.query(FinancialPeriod).filter_by(month=month, year=year).first()
        if existing:
            return existing
        period = FinancialPeriod(month=month, year=year, status=PERIOD_STATUS_OPEN)
        db.session.add(period)
        db.session.flush()
        return period

    def resolve_current_period(self, now: datetime | None = None) -> FinancialPeriod:
        """The period writes dated "now" belong to (may be LOCKED)."""
        now = now or self.now()
        month, year = month_year(now, self._zone())

        current = db.session.query(FinancialPeriod).filter_by(month=month, year=year).first()
        if current:
            return current

        latest = (
            db.session.query(FinancialPeriod)
            .filter(
                or_(
                    FinancialPeriod.year < year,
                    and_(FinancialPeriod.year == year, FinancialPeriod.month <= month),
                )
            )
            .order_by(FinancialPeriod.year.desc(), FinancialPeriod.month.desc())
            .first()
        )

        if latest is None:
            return self.get_or_create(month, year)

        if period_key(latest.month, latest.year) < period_key(month, year) and latest.status == PERIOD_STATUS_OPEN:
            # Previous month not closed yet: stay in it
            return latest

        return self.get_or_create(month, year)

    def period_for_date(self, date: datetime | None = None) -> FinancialPeriod:
        """
        Period a record dated `date` belongs to.

        Dates in the current calendar month follow resolve_current_period.
        Earlier months resolve only to an existing period row; months after
        the current period, or without a row, are refused so a dated write
        never opens a period of its own.
        """
        now = self.now()
        if date is None:
            return self.resolve_current_period(now)
        zone = self._zone()
        if month_year(date, zone) == month_year(now, zone):
            return self.resolve_current_period(now)

        month, year = month_year(date, zone)
        current = self.resolve_current_period(now)
        if period_key(month, year) > period_key(current.month, current.year):
            raise ValidationError(
                f"Cannot date a record in {month:02d}/{year}: current period is {current.label}",
                details={"month": month, "year": year, "current_period_id": current.id},
            )
        existing = db.session.query(FinancialPeriod).filter_by(month=month, year=year).first()
        if existing is None:
            raise ValidationError(
                f"No financial period exists for {month:02d}/{year}",
                details={"month": month, "year": year},
            )
        return existing

    # -------------------------------------------------------------------------
    # Write barrier
    # -------------------------------------------------------------------------

    def assert_open(self, date: datetime | None = None) -> FinancialPeriod:
        """Return the open period for `date` (default: now) or raise PeriodLockedError."""
        period = self.period_for_date(date)
        if period.status == PERIOD_STATUS_LOCKED:
            raise PeriodLockedError(period)
        return period

    def assert_open_by_id(self, period_id: int) -> FinancialPeriod:
        period = db.session.get(FinancialPeriod, period_id)
        if not period:
            raise NotFoundError(f"Financial period {period_id} not found")
        if period.status == PERIOD_STATUS_LOCKED:
            raise PeriodLockedError(period)
        return period

    # -------------------------------------------------------------------------
    # Month close
    # -------------------------------------------------------------------------

    def month_close_checklist(self, period_id: int) -> list[dict]:
        """
        Items that must all be ok before a period may be locked.
        """
        period = db.session.get(FinancialPeriod, period_id)
        if not period:
            raise NotFoundError(f"Financial period {period_id} not found")

        debts_count = (
            db.session.query(Sale)
            .filter(Sale.financial_period_id == period_id, Sale.debt_amount_cents > 0)
            .count()
        )
        open_deals_count = (
            db.session.query(Sale)
            .filter(
                Sale.financial_period_id == period_id,
                Sale.status.in_([SALE_STATUS_DEBT, SALE_STATUS_PARTIALLY_PAID]),
            )
            .count()
        )
        unfinished_inventory_count = (
            db.session.query(InventorySession)
            .filter(
                InventorySession.financial_period_id == period_id,
                InventorySession.status.in_([SESSION_STATUS_PENDING, SESSION_STATUS_DISCREPANCY]),
            )
            .count()
        )
        confirmed_inventory_count = (
            db.session.query(InventorySession)
            .filter_by(financial_period_id=period_id, status=SESSION_STATUS_CONFIRMED)
            .count()
        )
        unconfirmed_corrections = (
            db.session.query(ExpenseCorrection)
            .filter_by(financial_period_id=period_id, is_confirmed=False)
            .count()
        )
        control = get_system_control()

        issues = []
        if control and control.warehouse_discrepancy_count > 0:
            issues.append("Unresolved warehouse discrepancies.")
        if unconfirmed_corrections > 0:
            issues.append("Unconfirmed expense corrections.")

        if confirmed_inventory_count == 0:
            inventory_reason = "No confirmed inventory count for this period."
        elif unfinished_inventory_count > 0:
            inventory_reason = "Pending or discrepant inventory sessions remain."
        else:
            inventory_reason = None

        return [
            {
                "key": "no_debts",
                "ok": debts_count == 0,
                "reason": f"Sales with outstanding debt: {debts_count}." if debts_count else None,
            },
            {
                "key": "no_issues",
                "ok": not issues,
                "reason": " ".join(issues) if issues else None,
            },
            {
                "key": "no_open_deals",
                "ok": open_deals_count == 0,
                "reason": f"Open deals: {open_deals_count}." if open_deals_count else None,
            },
            {
                "key": "inventory_confirmed",
                "ok": inventory_reason is None,
                "reason": inventory_reason,
            },
        ]

    def lock_period(
        self,
        actor: Actor,
        period_id: int,
        *,
        reason: str | None = None,
        enforce_checklist: bool | None = None,
    ) -> FinancialPeriod:
        require_role(actor, PERIODS_MANAGE_ROLES, "lock a financial period")
        if enforce_checklist is None:
            enforce_checklist = current_app.config.get("MONTH_CLOSE_CHECKLIST_ENFORCED", True)

        def _op():
            period = lock_for_update(db.session.query(FinancialPeriod).filter_by(id=period_id)).first()
            if not period:
                raise NotFoundError(f"Financial period {period_id} not found")
            if period.status == PERIOD_STATUS_LOCKED:
                raise ConflictError(f"Financial period {period.label} is already locked")

            if enforce_checklist:
                blockers = [item["reason"] for item in self.month_close_checklist(period.id) if not item["ok"]]
                if blockers:
                    raise MonthCloseBlockedError(
                        f"Cannot lock period {period.label}: {' '.join(blockers)}",
                        details={"blockers": blockers},
                    )

            period.status = PERIOD_STATUS_LOCKED
            period.locked_by_user_id = actor.user_id
            period.locked_at = self.now()
            period.lock_reason = clean_text(reason) or DEFAULT_LOCK_REASON
            db.session.flush()

            append_audit_log(
                action="LOCK_FINANCIAL_PERIOD",
                entity_type="FinancialPeriod",
                entity_id=period.id,
                actor_user_id=actor.user_id,
                metadata={"month": period.month, "year": period.year},
                occurred_at=period.locked_at,
            )
            return period

        return run_in_transaction(_op)

    def unlock_period(self, actor: Actor, period_id: int, *, reason: str) -> FinancialPeriod:
        require_role(actor, PERIODS_UNLOCK_ROLES, "unlock a financial period")
        reason = clean_text(reason)
        if not reason:
            raise ValidationError("An unlock reason is required")

        def _op():
            period = lock_for_update(db.session.query(FinancialPeriod).filter_by(id=period_id)).first()
            if not period:
                raise NotFoundError(f"Financial period {period_id} not found")
            if period.status != PERIOD_STATUS_LOCKED:
                raise ConflictError(f"Financial period {period.label} is not locked")

            period.status = PERIOD_STATUS_OPEN
            period.locked_by_user_id = None
            period.locked_at = None
            period.unlock_reason = reason
            period.unlocked_by_user_id = actor.user_id
            period.unlocked_at = self.now()
            db.session.flush()

            append_audit_log(
                action="UNLOCK_FINANCIAL_PERIOD",
                entity_type="FinancialPeriod",
                entity_id=period.id,
                actor_user_id=actor.user_id,
                metadata={"reason": reason, "month": period.month, "year": period.year},
                occurred_at=period.unlocked_at,
            )
            return period

        return run_in_transaction(_op)

    def current_period(self) -> FinancialPeriod:
        """resolve_current_period committed on its own (may create the row)."""
        return run_in_transaction(lambda: self.resolve_current_period())

    def list_periods(self) -> list[FinancialPeriod]:
        return (
            db.session.query(FinancialPeriod)
            .order_by(FinancialPeriod.year.desc(), FinancialPeriod.month.desc())
            .all()
        )
