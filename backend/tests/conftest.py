"""
Pytest fixtures for OSSO backend tests.

Provides test database setup, actors for every role, a pinned clock and
factories for the containers/sales most tests start from.
"""

from datetime import datetime, timedelta

import pytest

from osso import create_app
from osso.extensions import db
from osso.models import Product
from osso.permissions import Role
from osso.services import container_service, investor_service, sales_service
from osso.services.permission_service import Actor


class FrozenClock:
    """Callable clock pinned to `now`; tests move it with advance()."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, now: datetime) -> datetime:
        self.now = now
        return self.now


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'MONTH_CLOSE_CHECKLIST_ENFORCED': True,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture
def clock():
    return FrozenClock(datetime(2026, 3, 15, 9, 0, 0))


# =============================================================================
# ACTORS
# =============================================================================

@pytest.fixture
def super_admin():
    return Actor(user_id=1, role=Role.SUPER_ADMIN)


@pytest.fixture
def admin():
    return Actor(user_id=2, role=Role.ADMIN)


@pytest.fixture
def manager():
    return Actor(user_id=3, role=Role.MANAGER)


@pytest.fixture
def accountant():
    return Actor(user_id=4, role=Role.ACCOUNTANT)


@pytest.fixture
def warehouse():
    return Actor(user_id=5, role=Role.WAREHOUSE)


@pytest.fixture
def investor_user():
    return Actor(user_id=6, role=Role.INVESTOR)


def auth_headers(actor: Actor) -> dict:
    return {"X-User-Id": str(actor.user_id), "X-User-Role": actor.role}


@pytest.fixture
def headers():
    """Build trusted identity headers for an actor."""
    return auth_headers


# =============================================================================
# FACTORIES
# =============================================================================

@pytest.fixture
def make_product(db_session):
    counter = {"n": 0}

    def _make(name: str = "Jacket") -> Product:
        counter["n"] += 1
        product = Product(sku=f"SKU-{counter['n']:04d}", name=name)
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture
def make_container(db_session, super_admin, clock, make_product):
    """
    Container with one line of stock, ARRIVED by default.

    Defaults give $1000 purchase over 100 units ($10.00 unit cost).
    """
    def _make(
        *,
        quantity: int = 100,
        purchase_cents: int = 100_000,
        sale_price_cents: int = 1_500,
        arrived: bool = True,
        extra_items: list[dict] | None = None,
    ):
        product = make_product()
        items = [{"product_id": product.id, "quantity": quantity, "sale_price_cents": sale_price_cents}]
        container = container_service.create_container(
            super_admin,
            name="Container A",
            purchase_date=clock(),
            total_purchase_source_cents=purchase_cents,
            exchange_rate=1.0,
            items=items + (extra_items or []),
            clock=clock,
        )
        if arrived:
            container = container_service.update_status(super_admin, container.id, "ARRIVED", clock=clock)
        return container

    return _make


@pytest.fixture
def make_client(db_session, super_admin):
    def _make(name: str = "Client A", credit_limit_cents: int = 0):
        return sales_service.create_client(super_admin, name=name, credit_limit_cents=credit_limit_cents)

    return _make


@pytest.fixture
def make_sale(super_admin, clock, make_client):
    """Immediate, fully paid sale of `quantity` units of one container item."""
    def _make(container_item_id: int, quantity: int, price_cents: int = 1_500, client=None):
        client = client or make_client()
        return sales_service.create_sale(
            super_admin,
            client_id=client.id,
            items=[{
                "container_item_id": container_item_id,
                "quantity": quantity,
                "sale_price_per_unit_cents": price_cents,
            }],
            sale_mode="IMMEDIATE",
            paid_amount_cents=quantity * price_cents,
            clock=clock,
        )

    return _make


@pytest.fixture
def make_investor(db_session, super_admin):
    def _make(name: str = "Investor"):
        return investor_service.create_investor(super_admin, name=name)

    return _make
