from __future__ import annotations

from ..extensions import db
from osso.time_utils import to_utc_z, utcnow


class Investor(db.Model):
    __tablename__ = "investors"
    __table_args__ = (
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(64), nullable=True)
    # Portal login owned by the auth collaborator, if any
    user_id = db.Column(db.Integer, nullable=True, unique=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    investments = db.relationship("ContainerInvestment", back_populates="investor", lazy=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }


class ContainerInvestment(db.Model):
    """
    An investor's capital stake in a container.

    percentage_share is derived: invested / sum(invested in container) * 100,
    recomputed by investor_service whenever the container's stake set changes.
    """
    __tablename__ = "container_investments"
    __table_args__ = (
        db.UniqueConstraint("container_id", "investor_id", name="uq_container_investments_container_investor"),
        db.CheckConstraint("invested_amount_cents >= 0", name="ck_container_investments_amount"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    container_id = db.Column(db.Integer, db.ForeignKey("containers.id"), nullable=False, index=True)
    investor_id = db.Column(db.Integer, db.ForeignKey("investors.id"), nullable=False, index=True)
    invested_amount_cents = db.Column(db.Integer, nullable=False)
    percentage_share = db.Column(db.Float, nullable=False, default=0.0)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    container = db.relationship("Container", back_populates="investments")
    investor = db.relationship("Investor", back_populates="investments")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "container_id": self.container_id,
            "investor_id": self.investor_id,
            "invested_amount_cents": self.invested_amount_cents,
            "percentage_share": self.percentage_share,
            "created_at": to_utc_z(self.created_at),
        }


class InvestorPayout(db.Model):
    """Cash paid to an investor against one container's profit."""
    __tablename__ = "investor_payouts"
    __table_args__ = (
        db.Index("ix_investor_payouts_investor_container", "investor_id", "container_id"),
        db.CheckConstraint("amount_cents > 0", name="ck_investor_payouts_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    investor_id = db.Column(db.Integer, db.ForeignKey("investors.id"), nullable=False, index=True)
    container_id = db.Column(db.Integer, db.ForeignKey("containers.id"), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    payout_date = db.Column(db.DateTime, nullable=False)

    financial_period_id = db.Column(db.Integer, db.ForeignKey("financial_periods.id"), nullable=False, index=True)
    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "investor_id": self.investor_id,
            "container_id": self.container_id,
            "amount_cents": self.amount_cents,
            "payout_date": to_utc_z(self.payout_date),
            "financial_period_id": self.financial_period_id,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
