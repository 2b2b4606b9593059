from __future__ import annotations

from ..extensions import db
from osso.time_utils import to_utc_z, utcnow


SALE_STATUS_DEBT = "DEBT"
SALE_STATUS_PARTIALLY_PAID = "PARTIALLY_PAID"
SALE_STATUS_COMPLETED = "COMPLETED"
SALE_STATUS_RETURNED = "RETURNED"

SALE_MODE_IMMEDIATE = "IMMEDIATE"
SALE_MODE_DEBT = "DEBT"
SALE_MODE_CONSIGNMENT = "CONSIGNMENT"
SALE_MODES = (SALE_MODE_IMMEDIATE, SALE_MODE_DEBT, SALE_MODE_CONSIGNMENT)


class Client(db.Model):
    __tablename__ = "clients"
    __table_args__ = (
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(64), nullable=True)
    # 0 means no limit
    credit_limit_cents = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "credit_limit_cents": self.credit_limit_cents,
            "created_at": to_utc_z(self.created_at),
        }


class Sale(db.Model):
    """
    Client invoice.

    financial_period_id is fixed at creation; later payments, returns and
    deletion are gated by that period, not by the current one.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("invoice_number", name="uq_sales_invoice_number"),
        db.Index("ix_sales_period_status", "financial_period_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_number = db.Column(db.String(32), nullable=False)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)

    sale_mode = db.Column(db.String(16), nullable=False, default=SALE_MODE_IMMEDIATE)
    status = db.Column(db.String(16), nullable=False, default=SALE_STATUS_DEBT)

    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    paid_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    debt_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    due_date = db.Column(db.DateTime, nullable=True)

    financial_period_id = db.Column(db.Integer, db.ForeignKey("financial_periods.id"), nullable=False, index=True)
    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    client = db.relationship("Client")
    items = db.relationship("SaleItem", back_populates="sale", lazy=True, order_by="SaleItem.id")
    payments = db.relationship("Payment", back_populates="sale", lazy=True, order_by="Payment.id")
    returns = db.relationship("Return", back_populates="sale", lazy=True, order_by="Return.id")

    def __repr__(self) -> str:
        return f"<Sale id={self.id} invoice={self.invoice_number} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "client_id": self.client_id,
            "sale_mode": self.sale_mode,
            "status": self.status,
            "total_amount_cents": self.total_amount_cents,
            "paid_amount_cents": self.paid_amount_cents,
            "debt_amount_cents": self.debt_amount_cents,
            "due_date": to_utc_z(self.due_date),
            "financial_period_id": self.financial_period_id,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "items": [item.to_dict() for item in self.items],
        }


class SaleItem(db.Model):
    """
    Sold line. Price and cost are snapshots taken at sale time so later
    container cost recalculations never rewrite historic COGS.
    """
    __tablename__ = "sale_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_sale_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    container_item_id = db.Column(db.Integer, db.ForeignKey("container_items.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    sale_price_per_unit_cents = db.Column(db.Integer, nullable=False)
    cost_per_unit_cents = db.Column(db.Integer, nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)

    sale = db.relationship("Sale", back_populates="items")
    container_item = db.relationship("ContainerItem")
    return_items = db.relationship("ReturnItem", back_populates="sale_item", lazy=True)

    @property
    def returned_quantity(self) -> int:
        return sum(row.quantity for row in self.return_items)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "container_item_id": self.container_item_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "returned_quantity": self.returned_quantity,
            "sale_price_per_unit_cents": self.sale_price_per_unit_cents,
            "cost_per_unit_cents": self.cost_per_unit_cents,
            "total_cents": self.total_cents,
        }


class Payment(db.Model):
    __tablename__ = "payments"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_payments_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    payment_date = db.Column(db.DateTime, nullable=False)
    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    sale = db.relationship("Sale", back_populates="payments")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "amount_cents": self.amount_cents,
            "payment_date": to_utc_z(self.payment_date),
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class Return(db.Model):
    __tablename__ = "returns"
    __table_args__ = (
        db.UniqueConstraint("return_number", name="uq_returns_return_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    return_number = db.Column(db.String(32), nullable=False)
    total_return_cents = db.Column(db.Integer, nullable=False, default=0)
    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    sale = db.relationship("Sale", back_populates="returns")
    items = db.relationship("ReturnItem", back_populates="return_doc", lazy=True, order_by="ReturnItem.id")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "return_number": self.return_number,
            "total_return_cents": self.total_return_cents,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "items": [item.to_dict() for item in self.items],
        }


class ReturnItem(db.Model):
    __tablename__ = "return_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_return_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    return_id = db.Column(db.Integer, db.ForeignKey("returns.id"), nullable=False, index=True)
    sale_item_id = db.Column(db.Integer, db.ForeignKey("sale_items.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)

    return_doc = db.relationship("Return", back_populates="items")
    sale_item = db.relationship("SaleItem", back_populates="return_items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_id": self.return_id,
            "sale_item_id": self.sale_item_id,
            "quantity": self.quantity,
            "amount_cents": self.amount_cents,
        }


class DocumentCounter(db.Model):
    """
    Year-scoped document sequences keyed by document prefix (INV, RET).

    The counter restarts at 1 when the first document of a new year is issued.
    """
    __tablename__ = "document_counters"

    key = db.Column(db.String(16), primary_key=True)
    year = db.Column(db.Integer, nullable=False)
    last_value = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "year": self.year,
            "last_value": self.last_value,
            "updated_at": to_utc_z(self.updated_at),
        }
