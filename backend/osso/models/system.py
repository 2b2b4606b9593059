from __future__ import annotations

import json

from ..extensions import db
from osso.time_utils import to_utc_z, utcnow


SYSTEM_CONTROL_ID = 1


class AuditLog(db.Model):
    """
    Append-only audit trail.

    - Written in the same transaction as the business change it records.
    - Never updated or deleted by normal flows.
    - metadata holds a small JSON snapshot of the change (amounts, periods, reasons).
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("ix_audit_logs_entity", "entity_type", "entity_id"),
        db.Index("ix_audit_logs_created_at", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    action = db.Column(db.String(64), nullable=False, index=True)
    entity_type = db.Column(db.String(64), nullable=False)
    entity_id = db.Column(db.String(64), nullable=False)
    # "metadata" is reserved on declarative models
    metadata_json = db.Column("metadata", db.Text, nullable=True)
    created_by_user_id = db.Column(db.Integer, nullable=True, index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "metadata": json.loads(self.metadata_json) if self.metadata_json else None,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class SystemControl(db.Model):
    """
    Process-wide operational state (singleton row, id=1).

    warehouse_discrepancy_count caches the number of inventory sessions in
    DISCREPANCY. The server_time_* fields let operators pin "now" for period
    computations independently of the host clock.
    """
    __tablename__ = "system_control"

    id = db.Column(db.Integer, primary_key=True, default=SYSTEM_CONTROL_ID)
    warehouse_discrepancy_count = db.Column(db.Integer, nullable=False, default=0)
    inventory_checked_at = db.Column(db.DateTime, nullable=True)

    server_time_auto = db.Column(db.Boolean, nullable=False, default=True)
    manual_system_time = db.Column(db.DateTime, nullable=True)
    server_time_zone = db.Column(db.String(64), nullable=False, default="UTC")

    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "warehouse_discrepancy_count": self.warehouse_discrepancy_count,
            "inventory_checked_at": to_utc_z(self.inventory_checked_at),
            "server_time_auto": self.server_time_auto,
            "manual_system_time": to_utc_z(self.manual_system_time),
            "server_time_zone": self.server_time_zone,
            "updated_at": to_utc_z(self.updated_at),
        }


class CurrencySetting(db.Model):
    """History of CNY -> USD rates; the newest row is the default snapshot."""
    __tablename__ = "currency_settings"
    __table_args__ = (
        db.CheckConstraint("cny_to_usd_rate > 0", name="ck_currency_settings_rate_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cny_to_usd_rate = db.Column(db.Float, nullable=False)
    updated_by_user_id = db.Column(db.Integer, nullable=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cny_to_usd_rate": self.cny_to_usd_rate,
            "updated_by_user_id": self.updated_by_user_id,
            "updated_at": to_utc_z(self.updated_at),
        }
