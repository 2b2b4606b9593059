from __future__ import annotations

from ..extensions import db
from osso.time_utils import to_utc_z, utcnow


PERIOD_STATUS_OPEN = "OPEN"
PERIOD_STATUS_LOCKED = "LOCKED"


class FinancialPeriod(db.Model):
    """
    Calendar-month accounting bucket.

    At most one row per (month, year). Rows are created lazily the first time
    a timestamp falls into them. A LOCKED period rejects every mutating
    financial record associated with it until it is explicitly unlocked.
    """
    __tablename__ = "financial_periods"
    __table_args__ = (
        db.UniqueConstraint("month", "year", name="uq_financial_periods_month_year"),
        db.CheckConstraint("month >= 1 AND month <= 12", name="ck_financial_periods_month"),
        db.Index("ix_financial_periods_year_month", "year", "month"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    month = db.Column(db.Integer, nullable=False)
    year = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(16), nullable=False, default=PERIOD_STATUS_OPEN, index=True)

    locked_by_user_id = db.Column(db.Integer, nullable=True)
    locked_at = db.Column(db.DateTime, nullable=True)
    lock_reason = db.Column(db.String(255), nullable=True)

    unlocked_by_user_id = db.Column(db.Integer, nullable=True)
    unlocked_at = db.Column(db.DateTime, nullable=True)
    unlock_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    @property
    def is_locked(self) -> bool:
        return self.status == PERIOD_STATUS_LOCKED

    @property
    def label(self) -> str:
        return f"{self.month:02d}.{self.year}"

    def __repr__(self) -> str:
        return f"<FinancialPeriod id={self.id} {self.label} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "month": self.month,
            "year": self.year,
            "status": self.status,
            "locked_by_user_id": self.locked_by_user_id,
            "locked_at": to_utc_z(self.locked_at),
            "lock_reason": self.lock_reason,
            "unlocked_by_user_id": self.unlocked_by_user_id,
            "unlocked_at": to_utc_z(self.unlocked_at),
            "unlock_reason": self.unlock_reason,
            "created_at": to_utc_z(self.created_at),
        }
