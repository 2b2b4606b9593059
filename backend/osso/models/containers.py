from __future__ import annotations

from ..extensions import db
from osso.time_utils import to_utc_z, utcnow


CONTAINER_STATUS_IN_TRANSIT = "IN_TRANSIT"
CONTAINER_STATUS_ARRIVED = "ARRIVED"
CONTAINER_STATUS_CLOSED = "CLOSED"
CONTAINER_STATUSES = (CONTAINER_STATUS_IN_TRANSIT, CONTAINER_STATUS_ARRIVED, CONTAINER_STATUS_CLOSED)

EXPENSE_CATEGORIES = ("LOGISTICS", "CUSTOMS", "STORAGE", "TRANSPORT", "OTHER")


# =============================================================================
# PRODUCT CATALOG
# =============================================================================

class Product(db.Model):
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        db.Index("ix_products_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


# =============================================================================
# CONTAINER ENTITIES
# =============================================================================

class Container(db.Model):
    """
    A shipment batch treated as one cost-accounting unit.

    Purchase totals are kept both in the source currency (CNY) and in the
    accounting currency (USD cents) using the exchange_rate snapshot taken
    when the container was created. total_expenses_cents and net_profit_cents
    are aggregates owned by finance_service and are never edited by hand.
    """
    __tablename__ = "containers"
    __table_args__ = (
        db.Index("ix_containers_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=CONTAINER_STATUS_IN_TRANSIT)

    purchase_date = db.Column(db.DateTime, nullable=False)
    arrival_date = db.Column(db.DateTime, nullable=True)

    # Source currency (CNY) -> accounting currency (USD) snapshot
    exchange_rate = db.Column(db.Float, nullable=False)
    total_purchase_source_cents = db.Column(db.Integer, nullable=False, default=0)
    total_purchase_cents = db.Column(db.Integer, nullable=False, default=0)

    # Derived aggregates
    total_expenses_cents = db.Column(db.Integer, nullable=False, default=0)
    net_profit_cents = db.Column(db.Integer, nullable=False, default=0)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    items = db.relationship("ContainerItem", back_populates="container", lazy=True, order_by="ContainerItem.id")
    expenses = db.relationship("ContainerExpense", back_populates="container", lazy=True, order_by="ContainerExpense.id")
    investments = db.relationship("ContainerInvestment", back_populates="container", lazy=True, order_by="ContainerInvestment.id")

    def __repr__(self) -> str:
        return f"<Container id={self.id} name={self.name!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status,
            "purchase_date": to_utc_z(self.purchase_date),
            "arrival_date": to_utc_z(self.arrival_date),
            "exchange_rate": self.exchange_rate,
            "total_purchase_source_cents": self.total_purchase_source_cents,
            "total_purchase_cents": self.total_purchase_cents,
            "total_expenses_cents": self.total_expenses_cents,
            "net_profit_cents": self.net_profit_cents,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ContainerItem(db.Model):
    """
    One product line inside a container.

    quantity is live stock: decremented by sales, restored by returns and
    sale deletion. cost_per_unit_cents is always recomputed by the cost
    allocator and never accepted from clients.
    """
    __tablename__ = "container_items"
    __table_args__ = (
        db.Index("ix_container_items_container_product", "container_id", "product_id"),
        db.CheckConstraint("quantity >= 0", name="ck_container_items_quantity_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    container_id = db.Column(db.Integer, db.ForeignKey("containers.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    size_label = db.Column(db.String(64), nullable=True)
    color = db.Column(db.String(64), nullable=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    unit_price_cents = db.Column(db.Integer, nullable=True)
    line_total_cents = db.Column(db.Integer, nullable=True)
    sale_price_cents = db.Column(db.Integer, nullable=True)
    cost_per_unit_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    container = db.relationship("Container", back_populates="items")
    product = db.relationship("Product")

    def __repr__(self) -> str:
        return f"<ContainerItem id={self.id} container_id={self.container_id} product_id={self.product_id} qty={self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "container_id": self.container_id,
            "product_id": self.product_id,
            "size_label": self.size_label,
            "color": self.color,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "sale_price_cents": self.sale_price_cents,
            "cost_per_unit_cents": self.cost_per_unit_cents,
            "created_at": to_utc_z(self.created_at),
        }


# =============================================================================
# EXPENSES
# =============================================================================

class ContainerExpense(db.Model):
    """
    Expense attributed to a container.
    Effective amount = amount_cents + sum(correction_amount_cents).
    """
    __tablename__ = "container_expenses"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_container_expenses_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    container_id = db.Column(db.Integer, db.ForeignKey("containers.id"), nullable=False, index=True)
    title = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(32), nullable=False, default="OTHER")
    amount_cents = db.Column(db.Integer, nullable=False)
    description = db.Column(db.Text, nullable=True)

    financial_period_id = db.Column(db.Integer, db.ForeignKey("financial_periods.id"), nullable=False, index=True)
    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    container = db.relationship("Container", back_populates="expenses")
    corrections = db.relationship("ExpenseCorrection", back_populates="expense", lazy=True, order_by="ExpenseCorrection.id")

    @property
    def effective_amount_cents(self) -> int:
        return self.amount_cents + sum(c.correction_amount_cents for c in self.corrections)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "container_id": self.container_id,
            "title": self.title,
            "category": self.category,
            "amount_cents": self.amount_cents,
            "effective_amount_cents": self.effective_amount_cents,
            "description": self.description,
            "financial_period_id": self.financial_period_id,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "corrections": [c.to_dict() for c in self.corrections],
        }


class ExpenseCorrection(db.Model):
    """Signed delta applied to a ContainerExpense; inherits its period."""
    __tablename__ = "expense_corrections"
    __table_args__ = (
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    expense_id = db.Column(db.Integer, db.ForeignKey("container_expenses.id"), nullable=False, index=True)
    correction_amount_cents = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=False)
    is_confirmed = db.Column(db.Boolean, nullable=False, default=False)

    financial_period_id = db.Column(db.Integer, db.ForeignKey("financial_periods.id"), nullable=False, index=True)
    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    expense = db.relationship("ContainerExpense", back_populates="corrections")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "expense_id": self.expense_id,
            "correction_amount_cents": self.correction_amount_cents,
            "reason": self.reason,
            "is_confirmed": self.is_confirmed,
            "financial_period_id": self.financial_period_id,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class OperatingExpense(db.Model):
    """Company running cost not tied to a container, charged to an investor."""
    __tablename__ = "operating_expenses"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_operating_expenses_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    spent_at = db.Column(db.DateTime, nullable=False)
    investor_id = db.Column(db.Integer, db.ForeignKey("investors.id"), nullable=False, index=True)

    financial_period_id = db.Column(db.Integer, db.ForeignKey("financial_periods.id"), nullable=False, index=True)
    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "amount_cents": self.amount_cents,
            "spent_at": to_utc_z(self.spent_at),
            "investor_id": self.investor_id,
            "financial_period_id": self.financial_period_id,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
