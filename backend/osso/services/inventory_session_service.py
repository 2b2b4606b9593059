# Overview: Service-layer operations for warehouse inventory counts and code confirmation.

"""
Inventory reconciliation state machine.

WHY: Warehouse staff count stock without scanners. A count that matches the
recorded quantities gets a short numeric code; entering that code within the
validity window is the staff's assertion that the count is clean.

LIFECYCLE:
1. create: counted vs. expected per line.
   - all lines match -> PENDING with a fresh 3-digit code
   - any mismatch    -> DISCREPANCY, discrepancy_count = mismatched lines, no code
2. confirm-by-code: PENDING -> CONFIRMED (terminal) within CODE_TTL of the
   code being issued. Re-confirming a CONFIRMED session is a no-op success.
3. resolve-discrepancy (admins): DISCREPANCY -> PENDING with a fresh code.
   Resolution re-arms the confirmation step; it never confirms directly.
4. delete: PENDING/DISCREPANCY by admins, CONFIRMED by super-admin only.

Codes are unique among non-confirmed sessions. The storage layer enforces it
through the unique `active_code` column; a conflicting insert is retried.
Every transition refreshes SystemControl.warehouse_discrepancy_count.
"""

from __future__ import annotations

import re
import secrets
from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Container, ContainerItem, InventorySession, InventorySessionItem
from ..models.containers import CONTAINER_STATUS_ARRIVED
from ..models.inventory import SESSION_STATUS_CONFIRMED, SESSION_STATUS_DISCREPANCY, SESSION_STATUS_PENDING
from ..permissions import (
    INVENTORY_CONFIRM_ROLES,
    INVENTORY_CONFIRMED_DELETE_ROLES,
    INVENTORY_SESSIONS_MANAGE_ROLES,
    WAREHOUSE_ROLES,
)
from ..validation import (
    ConflictError,
    DomainError,
    NotFoundError,
    ValidationError,
    clean_text,
    coerce_int,
    coerce_quantity,
)
from .audit_service import append_audit_log
from .concurrency import lock_for_update, run_in_transaction
from .period_service import PeriodService
from .permission_service import Actor, has_role, require_role, PermissionDeniedError
from .system_time_service import Clock, ensure_system_control


CODE_TTL = timedelta(minutes=10)
CODE_PATTERN = re.compile(r"^\d{3}$")
MAX_CODE_ATTEMPTS = 50


class DiscrepancyBlocksConfirmationError(ConflictError):
    """Raised when a session in DISCREPANCY is confirmed before being resolved."""


class CodeExpiredError(DomainError):
    """Raised when a confirmation code is used after its validity window."""
    status_code = 410


class CodeGenerationExhaustedError(DomainError):
    """Raised when no free 3-digit code was found within MAX_CODE_ATTEMPTS."""
    status_code = 503


# =============================================================================
# HELPERS
# =============================================================================

def generate_code(attempts: int = MAX_CODE_ATTEMPTS) -> str:
    """
    Rejection-sample a 3-digit code not held by any non-confirmed session.

    Raises:
        CodeGenerationExhaustedError: if every sampled code was taken
    """
    for _ in range(attempts):
        candidate = str(secrets.randbelow(900) + 100)
        taken = db.session.query(InventorySession.id).filter_by(active_code=candidate).first()
        if taken is None:
            return candidate
    raise CodeGenerationExhaustedError(
        f"Could not generate a free confirmation code after {attempts} attempts"
    )


def refresh_discrepancy_counter(*, now: datetime | None = None, mark_checked: bool = False) -> int:
    """
    Recompute the cached count of sessions in DISCREPANCY.

    With mark_checked, a zero count also stamps inventory_checked_at.
    """
    control = ensure_system_control()
    count = db.session.query(InventorySession).filter_by(status=SESSION_STATUS_DISCREPANCY).count()
    control.warehouse_discrepancy_count = count
    if mark_checked and count == 0 and now is not None:
        control.inventory_checked_at = now
    db.session.flush()
    return count


def _parse_counts(items) -> list[dict]:
    if not isinstance(items, list) or not items:
        raise ValidationError("At least one counted item is required")
    rows = []
    seen = set()
    for raw in items:
        if not isinstance(raw, dict) or raw.get("container_item_id") is None:
            raise ValidationError("Each counted item needs a container_item_id")
        item_id = coerce_int(raw["container_item_id"], "container_item_id")
        if item_id in seen:
            raise ValidationError(f"Container item {item_id} is counted twice")
        seen.add(item_id)
        rows.append({
            "container_item_id": item_id,
            "counted_quantity": coerce_quantity(raw.get("counted_quantity"), "counted_quantity", allow_zero=True),
        })
    return rows


def session_report(session: InventorySession) -> dict:
    """Session payload with its lines split into shortages and excesses."""
    data = session.to_dict(include_items=True)
    data["shortages"] = [item.to_dict() for item in session.items if item.difference < 0]
    data["excesses"] = [item.to_dict() for item in session.items if item.difference > 0]
    return data


def _lock_session(session_id: int) -> InventorySession:
    session = lock_for_update(db.session.query(InventorySession).filter_by(id=session_id)).first()
    if not session:
        raise NotFoundError(f"Inventory session {session_id} not found")
    return session


# =============================================================================
# TRANSITIONS
# =============================================================================

def create_session(
    actor: Actor,
    *,
    items: list[dict],
    title: str | None = None,
    clock: Clock | None = None,
) -> InventorySession:
    """
    Submit a physical count.

    Args:
        actor: warehouse operator (or admin)
        items: rows of {container_item_id, counted_quantity}
        title: optional label
        clock: injected "now"

    Returns:
        InventorySession: PENDING with a code, or DISCREPANCY without one

    Raises:
        NotFoundError: unknown container item
        ValidationError: item not in an ARRIVED container / malformed rows
        PeriodLockedError: current period is locked
        CodeGenerationExhaustedError: no free code
    """
    require_role(actor, WAREHOUSE_ROLES, "submit inventory counts")
    rows = _parse_counts(items)
    periods = PeriodService(clock=clock)

    def _op():
        period = periods.assert_open()
        now = periods.now()

        session = InventorySession(
            title=clean_text(title) or f"Inventory {now:%Y-%m-%d %H:%M}",
            status=SESSION_STATUS_PENDING,
            discrepancy_count=0,
            financial_period_id=period.id,
            created_by_user_id=actor.user_id,
            created_at=now,
        )
        db.session.add(session)
        db.session.flush()

        mismatched = 0
        for row in rows:
            item = db.session.get(ContainerItem, row["container_item_id"])
            if not item:
                raise NotFoundError(f"Container item {row['container_item_id']} not found")
            container = db.session.get(Container, item.container_id)
            if container.status != CONTAINER_STATUS_ARRIVED:
                raise ValidationError(
                    f"Container item {item.id} belongs to a {container.status} container; only ARRIVED stock is counted"
                )
            difference = row["counted_quantity"] - item.quantity
            if difference != 0:
                mismatched += 1
            db.session.add(InventorySessionItem(
                session_id=session.id,
                container_item_id=item.id,
                container_id=item.container_id,
                product_id=item.product_id,
                expected_quantity=item.quantity,
                counted_quantity=row["counted_quantity"],
                difference=difference,
            ))

        if mismatched:
            session.status = SESSION_STATUS_DISCREPANCY
            session.discrepancy_count = mismatched
        else:
            code = generate_code()
            session.code = code
            session.active_code = code
            session.code_issued_at = now
        db.session.flush()

        refresh_discrepancy_counter(now=now)

        append_audit_log(
            action="CREATE_INVENTORY_SESSION",
            entity_type="InventorySession",
            entity_id=session.id,
            actor_user_id=actor.user_id,
            metadata={
                "status": session.status,
                "discrepancy_count": session.discrepancy_count,
                "lines": len(rows),
                "financial_period_id": period.id,
            },
            occurred_at=now,
        )
        return session

    return run_in_transaction(_op, retry_on=(IntegrityError,))


def confirm_by_code(actor: Actor, code: str, *, clock: Clock | None = None) -> dict:
    """
    Confirm the non-confirmed session holding `code`.

    Returns {"session": ..., "already_confirmed": bool}. A code that belongs
    to an already CONFIRMED session is acknowledged without any change.
    """
    require_role(actor, INVENTORY_CONFIRM_ROLES, "confirm inventory counts")
    code = (code or "").strip() if isinstance(code, str) else ""
    if not CODE_PATTERN.match(code):
        raise ValidationError("Code must be exactly 3 digits")
    periods = PeriodService(clock=clock)

    def _op():
        session = lock_for_update(db.session.query(InventorySession).filter_by(active_code=code)).first()
        if session is None:
            confirmed = (
                db.session.query(InventorySession)
                .filter_by(code=code, status=SESSION_STATUS_CONFIRMED)
                .order_by(InventorySession.confirmed_at.desc(), InventorySession.id.desc())
                .first()
            )
            if confirmed is not None:
                return {"session": confirmed, "already_confirmed": True}
            raise NotFoundError(f"No inventory session holds code {code}")

        if session.status == SESSION_STATUS_DISCREPANCY:
            raise DiscrepancyBlocksConfirmationError(
                "Resolve the discrepancies of this session before confirming it",
                details={"session_id": session.id, "discrepancy_count": session.discrepancy_count},
            )
        if session.status == SESSION_STATUS_CONFIRMED:
            return {"session": session, "already_confirmed": True}

        now = periods.now()
        issued_at = session.code_issued_at or session.created_at
        if now - issued_at > CODE_TTL:
            raise CodeExpiredError(
                "Confirmation code has expired; start a new count",
                details={"session_id": session.id, "issued_at": issued_at.isoformat()},
            )

        session.status = SESSION_STATUS_CONFIRMED
        session.confirmed_by_user_id = actor.user_id
        session.confirmed_at = now
        if session.sent_to_admin_at is None:
            session.sent_to_admin_at = now
        session.active_code = None
        db.session.flush()

        refresh_discrepancy_counter(now=now, mark_checked=True)

        append_audit_log(
            action="CONFIRM_INVENTORY_SESSION",
            entity_type="InventorySession",
            entity_id=session.id,
            actor_user_id=actor.user_id,
            metadata={"code": code},
            occurred_at=now,
        )
        return {"session": session, "already_confirmed": False}

    return run_in_transaction(_op)


def resolve_discrepancy(actor: Actor, session_id: int, *, clock: Clock | None = None) -> InventorySession:
    require_role(actor, INVENTORY_SESSIONS_MANAGE_ROLES, "resolve inventory discrepancies")
    periods = PeriodService(clock=clock)

    def _op():
        session = _lock_session(session_id)
        if session.status != SESSION_STATUS_DISCREPANCY:
            raise ConflictError(f"Inventory session {session.id} is {session.status}, not DISCREPANCY")

        now = periods.now()
        code = generate_code()
        session.discrepancy_count = 0
        session.code = code
        session.active_code = code
        session.code_issued_at = now
        session.status = SESSION_STATUS_PENDING
        db.session.flush()

        refresh_discrepancy_counter(now=now)

        append_audit_log(
            action="RESOLVE_INVENTORY_DISCREPANCY",
            entity_type="InventorySession",
            entity_id=session.id,
            actor_user_id=actor.user_id,
            occurred_at=now,
        )
        return session

    return run_in_transaction(_op, retry_on=(IntegrityError,))


def delete_session(actor: Actor, session_id: int) -> dict:
    require_role(actor, INVENTORY_SESSIONS_MANAGE_ROLES, "delete inventory sessions")

    def _op():
        session = _lock_session(session_id)
        if session.status == SESSION_STATUS_CONFIRMED:
            require_role(actor, INVENTORY_CONFIRMED_DELETE_ROLES, "delete a confirmed inventory session")

        snapshot = session.to_dict()
        db.session.delete(session)
        db.session.flush()

        refresh_discrepancy_counter()

        append_audit_log(
            action="DELETE_INVENTORY_SESSION",
            entity_type="InventorySession",
            entity_id=session_id,
            actor_user_id=actor.user_id,
            metadata={"status": snapshot["status"], "title": snapshot["title"]},
        )
        return {"id": session_id, "status": snapshot["status"]}

    return run_in_transaction(_op)


def send_to_admin(actor: Actor, session_id: int, *, clock: Clock | None = None) -> InventorySession:
    """Stamp sent_to_admin_at; allowed to admins and to the session's creator."""
    require_role(actor, WAREHOUSE_ROLES, "send inventory sessions to admin")
    periods = PeriodService(clock=clock)

    def _op():
        session = _lock_session(session_id)
        if not has_role(actor, INVENTORY_SESSIONS_MANAGE_ROLES) and actor.user_id != session.created_by_user_id:
            raise PermissionDeniedError("Only admins or the session creator may send it to admin")
        if session.sent_to_admin_at is None:
            session.sent_to_admin_at = periods.now()
            db.session.flush()
        return session

    return run_in_transaction(_op)


# =============================================================================
# READS
# =============================================================================

def get_session(session_id: int) -> InventorySession:
    session = db.session.get(InventorySession, session_id)
    if not session:
        raise NotFoundError(f"Inventory session {session_id} not found")
    return session


def list_sessions(*, status: str | None = None, period_id: int | None = None, limit: int = 100) -> list[InventorySession]:
    query = db.session.query(InventorySession)
    if status:
        query = query.filter(InventorySession.status == status.strip().upper())
    if period_id is not None:
        query = query.filter(InventorySession.financial_period_id == period_id)
    limit = max(1, min(limit, 500))
    return query.order_by(InventorySession.created_at.desc(), InventorySession.id.desc()).limit(limit).all()
