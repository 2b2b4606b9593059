# Overview: Service-layer operations for monetary normalization and currency settings.

"""
Monetary Normalization

Container purchase costs arrive in the supplier currency (CNY) and are stored
in the accounting currency (USD cents) using a rate snapshot kept on the
container. The conversion itself is pure.
"""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

from flask import current_app

from ..extensions import db
from ..models import CurrencySetting
from ..permissions import SETTINGS_ROLES
from ..validation import ValidationError, coerce_rate
from .audit_service import append_audit_log
from .concurrency import run_in_transaction
from .permission_service import Actor, require_role


def to_accounting_cents(source_cents: int, rate: float) -> int:
    """Convert source-currency cents to accounting-currency cents (half-up)."""
    if rate is None or rate <= 0:
        raise ValidationError("Exchange rate must be greater than zero")
    value = Decimal(int(source_cents)) * Decimal(str(rate))
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_source_cents(accounting_cents: int, rate: float) -> int:
    """Inverse of to_accounting_cents, used to keep both purchase totals in step."""
    if rate is None or rate <= 0:
        raise ValidationError("Exchange rate must be greater than zero")
    value = Decimal(int(accounting_cents)) / Decimal(str(rate))
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def get_current_rate() -> float:
    """Latest configured CNY -> USD rate, or the configured fallback."""
    latest = (
        db.session.query(CurrencySetting)
        .order_by(CurrencySetting.updated_at.desc(), CurrencySetting.id.desc())
        .first()
    )
    if latest:
        return latest.cny_to_usd_rate
    return float(current_app.config.get("DEFAULT_CNY_TO_USD_RATE", 0))


def set_rate(actor: Actor, rate) -> CurrencySetting:
    require_role(actor, SETTINGS_ROLES, "change the exchange rate")
    parsed = coerce_rate(rate, "cny_to_usd_rate")

    def _op():
        setting = CurrencySetting(cny_to_usd_rate=parsed, updated_by_user_id=actor.user_id)
        db.session.add(setting)
        db.session.flush()
        append_audit_log(
            action="UPDATE_CURRENCY_RATE",
            entity_type="CurrencySetting",
            entity_id=setting.id,
            actor_user_id=actor.user_id,
            metadata={"cny_to_usd_rate": parsed},
        )
        return setting

    return run_in_transaction(_op)
