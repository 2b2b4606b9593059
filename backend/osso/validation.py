from __future__ import annotations
from datetime import datetime
from osso.time_utils import parse_iso_datetime

from typing import Any, Iterable


# Maximum amount: $9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical amounts
MAX_AMOUNT_CENTS = 999_999_999


class DomainError(Exception):
    """
    Base for every business-rule failure raised by the service layer.

    Carries a user-facing message, optional structured details and the
    HTTP status the API layer answers with.
    """
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {"error": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(DomainError):
    """400-level input problem."""


class NotFoundError(DomainError):
    """404-level missing entity."""
    status_code = 404


class ConflictError(DomainError):
    """409-level business rule conflict (e.g., closed container)."""
    status_code = 409


def require_fields(payload: dict | None, fields: Iterable[str]) -> dict:
    """Reject payloads missing any of `fields` (None or blank string)."""
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    missing = [
        name for name in fields
        if payload.get(name) is None or (isinstance(payload.get(name), str) and not payload[name].strip())
    ]
    if missing:
        raise ValidationError(
            f"Missing required field(s): {', '.join(missing)}",
            details={"missing": missing},
        )
    return payload


def coerce_int(value: Any, field: str) -> int:
    """
    Strict integer coercion - rejects floats, decimals and scientific notation.
    """
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    # Reject floats explicitly
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def coerce_cents(value: Any, field: str, *, allow_zero: bool = False, allow_negative: bool = False) -> int:
    """Integer cents within MAX_AMOUNT_CENTS, positive unless told otherwise."""
    cents = coerce_int(value, field)
    if abs(cents) > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} exceeds the maximum allowed amount")
    if cents == 0 and not allow_zero:
        raise ValidationError(f"{field} must not be zero")
    if cents < 0 and not allow_negative:
        raise ValidationError(f"{field} must be positive")
    return cents


def coerce_quantity(value: Any, field: str = "quantity", *, allow_zero: bool = False) -> int:
    quantity = coerce_int(value, field)
    if quantity < 0 or (quantity == 0 and not allow_zero):
        raise ValidationError(f"{field} must be {'zero or more' if allow_zero else 'positive'}")
    return quantity


def coerce_rate(value: Any, field: str = "exchange_rate") -> float:
    """Positive finite float (accepts "0,14" as well as "0.14")."""
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    try:
        rate = float(str(value).strip().replace(",", "."))
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number")
    if rate != rate or rate in (float("inf"), float("-inf")) or rate <= 0:
        raise ValidationError(f"{field} must be greater than zero")
    return rate


def coerce_datetime(value: Any, field: str) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            dt = parse_iso_datetime(value)
        except ValueError:
            raise ValidationError(f"{field} must be an ISO-8601 datetime")
        if dt is None:
            raise ValidationError(f"{field} must be an ISO-8601 datetime")
        return dt
    raise ValidationError(f"{field} must be a datetime")


def coerce_optional_datetime(value: Any, field: str) -> datetime | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return coerce_datetime(value, field)


def clean_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
