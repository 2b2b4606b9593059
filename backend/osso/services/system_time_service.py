# Overview: Service-layer operations for the SystemControl singleton and the system clock.

"""
System clock collaborator.

"Now" for period resolution and the inventory code window is either the host
clock or a timestamp pinned by an operator in SystemControl. Services take an
optional `clock` callable; when omitted they use get_system_now.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable

from ..extensions import db
from ..models import SystemControl
from ..models.system import SYSTEM_CONTROL_ID
from ..permissions import SETTINGS_ROLES
from ..validation import ValidationError
from osso.time_utils import utcnow
from .audit_service import append_audit_log
from .concurrency import run_in_transaction
from .permission_service import Actor, require_role


Clock = Callable[[], datetime]

ALLOWED_TIME_ZONES = (
    "UTC",
    "Europe/Moscow",
    "Asia/Almaty",
    "Asia/Tashkent",
    "Asia/Bishkek",
    "Asia/Dushanbe",
    "Asia/Shanghai",
)


def get_system_control() -> SystemControl | None:
    return db.session.get(SystemControl, SYSTEM_CONTROL_ID)


def ensure_system_control() -> SystemControl:
    """Return the singleton row, creating it (flushed, not committed) if missing."""
    control = get_system_control()
    if control:
        return control
    control = SystemControl(
        id=SYSTEM_CONTROL_ID,
        warehouse_discrepancy_count=0,
        server_time_auto=True,
        server_time_zone="UTC",
    )
    db.session.add(control)
    db.session.flush()
    return control


def get_system_now() -> datetime:
    """Host UTC time unless an operator pinned a manual system time."""
    control = get_system_control()
    if not control or control.server_time_auto:
        return utcnow()
    return control.manual_system_time or utcnow()


def get_server_time_zone() -> str:
    control = get_system_control()
    return control.server_time_zone if control and control.server_time_zone else "UTC"


def resolve_clock(clock: Clock | None) -> Clock:
    return clock or get_system_now


def set_server_time(
    actor: Actor,
    *,
    auto: bool,
    manual_time: datetime | None = None,
    time_zone: str = "UTC",
) -> SystemControl:
    """
    Switch between host time and a pinned manual time.

    Switching to manual without a timestamp keeps the previous pinned value,
    falling back to the current host time.
    """
    require_role(actor, SETTINGS_ROLES, "change server time")
    zone = (time_zone or "UTC").strip() or "UTC"
    if zone not in ALLOWED_TIME_ZONES:
        raise ValidationError(f"Unsupported time zone: {zone}")

    def _op():
        control = ensure_system_control()
        previous = control.to_dict()
        control.server_time_auto = bool(auto)
        control.server_time_zone = zone
        if auto:
            control.manual_system_time = None
        else:
            control.manual_system_time = manual_time or control.manual_system_time or utcnow()
        db.session.flush()

        append_audit_log(
            action="UPDATE_SERVER_TIME",
            entity_type="SystemControl",
            entity_id=control.id,
            actor_user_id=actor.user_id,
            metadata={"before": previous, "after": control.to_dict()},
        )
        return control

    return run_in_transaction(_op)
