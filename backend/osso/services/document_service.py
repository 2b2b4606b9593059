# Overview: Service-layer operations for document numbering (invoices, returns).

from __future__ import annotations

from datetime import datetime

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentCounter
from .concurrency import lock_for_update


INVOICE_PREFIX = "INV"
RETURN_PREFIX = "RET"


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def next_document_number(*, prefix: str, now: datetime, pad: int = 6) -> str:
    """
    Allocate the next number for `prefix` in the calendar year of `now`.

    Format: PREFIX-YYYY-000001. The counter restarts at 1 on the first
    document of a new year. Must run inside the caller's transaction so the
    number is only consumed when the document is committed.
    """
    if not prefix:
        raise DocumentSequenceError("prefix is required")
    year = now.year

    counter = lock_for_update(db.session.query(DocumentCounter).filter_by(key=prefix)).first()
    if counter is None:
        counter = DocumentCounter(key=prefix, year=year, last_value=0)
        try:
            with db.session.begin_nested():
                db.session.add(counter)
                db.session.flush()
        except IntegrityError:
            # Created concurrently; reload the winner's row
            counter = lock_for_update(db.session.query(DocumentCounter).filter_by(key=prefix)).first()
            if counter is None:
                raise

    if counter.year != year:
        counter.year = year
        counter.last_value = 0

    counter.last_value += 1
    db.session.flush()
    return f"{prefix}-{year}-{counter.last_value:0{pad}d}"
