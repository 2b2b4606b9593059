from __future__ import annotations

from ..extensions import db
from osso.time_utils import to_utc_z, utcnow


SESSION_STATUS_PENDING = "PENDING"
SESSION_STATUS_DISCREPANCY = "DISCREPANCY"
SESSION_STATUS_CONFIRMED = "CONFIRMED"


class InventorySession(db.Model):
    """
    Physical stock count.

    `code` is the 3-digit confirmation code issued to the session (kept after
    confirmation for history). `active_code` mirrors it only while the session
    is not CONFIRMED; its unique constraint is what makes a code unique among
    active sessions, so generation may retry on conflict.
    """
    __tablename__ = "inventory_sessions"
    __table_args__ = (
        db.UniqueConstraint("active_code", name="uq_inventory_sessions_active_code"),
        db.Index("ix_inventory_sessions_status", "status"),
        db.Index("ix_inventory_sessions_code", "code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(3), nullable=True)
    active_code = db.Column(db.String(3), nullable=True)
    status = db.Column(db.String(16), nullable=False, default=SESSION_STATUS_PENDING)
    discrepancy_count = db.Column(db.Integer, nullable=False, default=0)

    financial_period_id = db.Column(db.Integer, db.ForeignKey("financial_periods.id"), nullable=True, index=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    # Start of the confirmation window; reset whenever a fresh code is issued
    code_issued_at = db.Column(db.DateTime, nullable=True)

    confirmed_by_user_id = db.Column(db.Integer, nullable=True)
    confirmed_at = db.Column(db.DateTime, nullable=True)
    sent_to_admin_at = db.Column(db.DateTime, nullable=True)

    items = db.relationship(
        "InventorySessionItem",
        back_populates="session",
        lazy=True,
        order_by="InventorySessionItem.id",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<InventorySession id={self.id} status={self.status} code={self.code}>"

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "title": self.title,
            "code": self.code if self.status != SESSION_STATUS_DISCREPANCY else None,
            "status": self.status,
            "discrepancy_count": self.discrepancy_count,
            "financial_period_id": self.financial_period_id,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "code_issued_at": to_utc_z(self.code_issued_at),
            "confirmed_by_user_id": self.confirmed_by_user_id,
            "confirmed_at": to_utc_z(self.confirmed_at),
            "sent_to_admin_at": to_utc_z(self.sent_to_admin_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class InventorySessionItem(db.Model):
    __tablename__ = "inventory_session_items"
    __table_args__ = (
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey("inventory_sessions.id"), nullable=False, index=True)
    container_item_id = db.Column(db.Integer, db.ForeignKey("container_items.id"), nullable=True, index=True)
    container_id = db.Column(db.Integer, db.ForeignKey("containers.id"), nullable=True, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    expected_quantity = db.Column(db.Integer, nullable=False)
    counted_quantity = db.Column(db.Integer, nullable=False)
    # counted - expected
    difference = db.Column(db.Integer, nullable=False)

    session = db.relationship("InventorySession", back_populates="items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "container_item_id": self.container_item_id,
            "container_id": self.container_id,
            "product_id": self.product_id,
            "expected_quantity": self.expected_quantity,
            "counted_quantity": self.counted_quantity,
            "difference": self.difference,
        }
