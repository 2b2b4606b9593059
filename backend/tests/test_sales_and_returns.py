"""
Sale ledger effect tests.

Verifies:
- Stock decrement is atomic: one short line aborts the whole sale
- Invoice/return numbering per prefix and calendar year
- Payment status transitions and payment capping
- Returns capped at sold - already returned; refund math
- Sale deletion restores only outstanding quantity, gated by the sale's period
"""

from datetime import datetime, timedelta

import pytest

from osso.models import AuditLog, Container, ContainerItem, Payment, Return, Sale, SaleItem
from osso.services import return_service, sales_service
from osso.services.document_service import next_document_number
from osso.services.period_service import PeriodLockedError, PeriodService
from osso.services.permission_service import PermissionDeniedError
from osso.services.return_service import ReturnExceedsRemainingError
from osso.services.sales_service import CreditLimitExceededError, InsufficientStockError
from osso.validation import ConflictError, ValidationError


def _debt_sale(actor, client, item_id, quantity, clock, paid=0, price=1_500):
    return sales_service.create_sale(
        actor,
        client_id=client.id,
        items=[{"container_item_id": item_id, "quantity": quantity, "sale_price_per_unit_cents": price}],
        sale_mode="DEBT",
        paid_amount_cents=paid,
        due_date=clock() + timedelta(days=30),
        clock=clock,
    )


# =============================================================================
# CREATE SALE
# =============================================================================


class TestCreateSale:

    def test_decrements_stock_and_snapshots_cost(self, db_session, make_container, make_sale):
        container = make_container()
        item_id = container.items[0].id

        sale = make_sale(item_id, 10, price_cents=1_500)

        assert db_session.get(ContainerItem, item_id).quantity == 90
        line = sale.items[0]
        assert line.cost_per_unit_cents == 1_000
        assert line.sale_price_per_unit_cents == 1_500
        assert line.total_cents == 15_000
        assert sale.status == "COMPLETED"
        assert db_session.query(Payment).filter_by(sale_id=sale.id).one().amount_cents == 15_000

    def test_insufficient_stock_aborts_whole_sale(
        self, db_session, super_admin, clock, make_container, make_client, make_product
    ):
        other = make_product("Scarf")
        container = make_container(
            quantity=100, extra_items=[{"product_id": other.id, "quantity": 5, "sale_price_cents": 700}],
        )
        first, second = container.items
        client = make_client()

        with pytest.raises(InsufficientStockError) as exc:
            sales_service.create_sale(
                super_admin,
                client_id=client.id,
                items=[
                    {"container_item_id": first.id, "quantity": 10},
                    {"container_item_id": second.id, "quantity": 6},
                ],
                paid_amount_cents=100,
                clock=clock,
            )

        assert exc.value.details["available"] == 5
        assert db_session.get(ContainerItem, first.id).quantity == 100
        assert db_session.get(ContainerItem, second.id).quantity == 5
        assert db_session.query(Sale).count() == 0
        assert db_session.query(SaleItem).count() == 0

    def test_selling_exactly_remaining_stock(self, db_session, make_container, make_sale):
        container = make_container(quantity=3)

        make_sale(container.items[0].id, 3)

        assert db_session.get(ContainerItem, container.items[0].id).quantity == 0

    def test_in_transit_stock_cannot_be_sold(self, db_session, make_container, make_sale):
        container = make_container(arrived=False)

        with pytest.raises(ConflictError):
            make_sale(container.items[0].id, 1)

    def test_price_defaults_to_item_sale_price(self, db_session, super_admin, clock, make_container, make_client):
        container = make_container(sale_price_cents=2_000)

        sale = sales_service.create_sale(
            super_admin,
            client_id=make_client().id,
            items=[{"container_item_id": container.items[0].id, "quantity": 2}],
            paid_amount_cents=4_000,
            clock=clock,
        )

        assert sale.total_amount_cents == 4_000

    def test_immediate_sale_requires_payment(self, db_session, super_admin, clock, make_container, make_client):
        container = make_container()

        with pytest.raises(ValidationError):
            sales_service.create_sale(
                super_admin,
                client_id=make_client().id,
                items=[{"container_item_id": container.items[0].id, "quantity": 1}],
                sale_mode="IMMEDIATE",
                clock=clock,
            )

    def test_debt_sale_requires_due_date(self, db_session, super_admin, clock, make_container, make_client):
        container = make_container()

        with pytest.raises(ValidationError):
            sales_service.create_sale(
                super_admin,
                client_id=make_client().id,
                items=[{"container_item_id": container.items[0].id, "quantity": 1}],
                sale_mode="DEBT",
                clock=clock,
            )

    def test_locked_period_blocks_sale(self, db_session, super_admin, clock, make_container, make_sale):
        container = make_container()
        periods = PeriodService(clock=clock)
        periods.lock_period(super_admin, periods.current_period().id, enforce_checklist=False)

        with pytest.raises(PeriodLockedError):
            make_sale(container.items[0].id, 1)
        assert db_session.get(ContainerItem, container.items[0].id).quantity == 100

    def test_credit_limit(self, db_session, super_admin, clock, make_container, make_client):
        container = make_container()
        client = make_client(credit_limit_cents=20_000)
        item_id = container.items[0].id

        _debt_sale(super_admin, client, item_id, 10, clock)

        with pytest.raises(CreditLimitExceededError):
            _debt_sale(super_admin, client, item_id, 4, clock)
        assert sales_service.client_outstanding_debt(client.id) == 15_000
        assert db_session.get(ContainerItem, item_id).quantity == 90


class TestDocumentNumbers:

    def test_invoices_are_sequential(self, db_session, make_container, make_sale):
        container = make_container()

        first = make_sale(container.items[0].id, 1)
        second = make_sale(container.items[0].id, 1)

        assert first.invoice_number == "INV-2026-000001"
        assert second.invoice_number == "INV-2026-000002"

    def test_counter_restarts_each_year(self, db_session, clock, make_container, make_sale):
        container = make_container()
        make_sale(container.items[0].id, 1)
        make_sale(container.items[0].id, 1)

        clock.set(datetime(2027, 1, 5, 10, 0))
        sale = make_sale(container.items[0].id, 1)

        assert sale.invoice_number == "INV-2027-000001"

    def test_prefixes_count_independently(self, db_session, clock):
        assert next_document_number(prefix="INV", now=clock()) == "INV-2026-000001"
        assert next_document_number(prefix="RET", now=clock()) == "RET-2026-000001"
        assert next_document_number(prefix="INV", now=clock()) == "INV-2026-000002"


# =============================================================================
# PAYMENTS
# =============================================================================


class TestPayments:

    def test_debt_payment_lifecycle(self, db_session, super_admin, clock, make_container, make_client):
        container = make_container()
        sale = _debt_sale(super_admin, make_client(), container.items[0].id, 10, clock)
        assert sale.status == "DEBT"
        assert sale.debt_amount_cents == 15_000

        sales_service.add_payment(super_admin, sale.id, amount_cents=5_000, clock=clock)
        sale = db_session.get(Sale, sale.id)
        assert sale.status == "PARTIALLY_PAID"
        assert (sale.paid_amount_cents, sale.debt_amount_cents) == (5_000, 10_000)

        payment = sales_service.add_payment(super_admin, sale.id, amount_cents=50_000, clock=clock)
        sale = db_session.get(Sale, sale.id)
        assert payment.amount_cents == 10_000
        assert sale.status == "COMPLETED"
        assert (sale.paid_amount_cents, sale.debt_amount_cents) == (15_000, 0)

        with pytest.raises(ConflictError):
            sales_service.add_payment(super_admin, sale.id, amount_cents=1, clock=clock)

    def test_overpaid_immediate_sale_is_capped(self, db_session, super_admin, clock, make_container, make_client):
        container = make_container()

        sale = sales_service.create_sale(
            super_admin,
            client_id=make_client().id,
            items=[{"container_item_id": container.items[0].id, "quantity": 1}],
            paid_amount_cents=99_999,
            clock=clock,
        )

        assert sale.paid_amount_cents == 1_500
        assert sale.debt_amount_cents == 0


# =============================================================================
# RETURNS
# =============================================================================


class TestReturns:

    def test_paid_sale_partial_return(self, db_session, super_admin, clock, make_container, make_sale):
        container = make_container()
        sale = make_sale(container.items[0].id, 10)

        doc = return_service.create_return(
            super_admin, sale.id, items=[{"sale_item_id": sale.items[0].id, "quantity": 4}], clock=clock,
        )

        sale = db_session.get(Sale, sale.id)
        assert doc.return_number == "RET-2026-000001"
        assert doc.total_return_cents == 6_000
        assert sale.total_amount_cents == 9_000
        assert sale.paid_amount_cents == 9_000
        assert sale.debt_amount_cents == 0
        assert sale.status == "COMPLETED"

    def test_refund_reduces_debt_first(self, db_session, super_admin, clock, make_container, make_client):
        container = make_container()
        sale = _debt_sale(super_admin, make_client(), container.items[0].id, 10, clock, paid=5_000)

        return_service.create_return(
            super_admin, sale.id, items=[{"sale_item_id": sale.items[0].id, "quantity": 4}], clock=clock,
        )

        sale = db_session.get(Sale, sale.id)
        assert sale.total_amount_cents == 9_000
        assert sale.debt_amount_cents == 4_000
        assert sale.paid_amount_cents == 5_000
        assert sale.status == "PARTIALLY_PAID"

    def test_full_return_marks_sale_returned(self, db_session, super_admin, clock, make_container, make_sale):
        container = make_container()
        sale = make_sale(container.items[0].id, 5)

        return_service.create_return(
            super_admin, sale.id, items=[{"sale_item_id": sale.items[0].id, "quantity": 5}], clock=clock,
        )

        sale = db_session.get(Sale, sale.id)
        assert sale.status == "RETURNED"
        assert sale.total_amount_cents == 0
        assert db_session.get(ContainerItem, container.items[0].id).quantity == 100

    def test_cannot_return_more_than_remaining(self, db_session, super_admin, clock, make_container, make_sale):
        container = make_container()
        sale = make_sale(container.items[0].id, 5)
        sale_item_id = sale.items[0].id

        return_service.create_return(
            super_admin, sale.id, items=[{"sale_item_id": sale_item_id, "quantity": 3}], clock=clock,
        )

        with pytest.raises(ReturnExceedsRemainingError) as exc:
            return_service.create_return(
                super_admin, sale.id, items=[{"sale_item_id": sale_item_id, "quantity": 3}], clock=clock,
            )
        assert exc.value.details["remaining"] == 2

        return_service.create_return(
            super_admin, sale.id, items=[{"sale_item_id": sale_item_id, "quantity": 2}], clock=clock,
        )
        assert db_session.query(Return).filter_by(sale_id=sale.id).count() == 2

    def test_repeated_lines_in_one_request_are_summed(
        self, db_session, super_admin, clock, make_container, make_sale
    ):
        container = make_container()
        sale = make_sale(container.items[0].id, 5)
        sale_item_id = sale.items[0].id

        with pytest.raises(ReturnExceedsRemainingError):
            return_service.create_return(
                super_admin,
                sale.id,
                items=[
                    {"sale_item_id": sale_item_id, "quantity": 3},
                    {"sale_item_id": sale_item_id, "quantity": 3},
                ],
                clock=clock,
            )
        assert db_session.get(ContainerItem, container.items[0].id).quantity == 95

    def test_return_gated_by_sale_period(self, db_session, super_admin, clock, make_container, make_sale):
        container = make_container()
        sale = make_sale(container.items[0].id, 5)
        PeriodService(clock=clock).lock_period(super_admin, sale.financial_period_id, enforce_checklist=False)

        with pytest.raises(PeriodLockedError):
            return_service.create_return(
                super_admin, sale.id, items=[{"sale_item_id": sale.items[0].id, "quantity": 1}], clock=clock,
            )


# =============================================================================
# DELETE SALE
# =============================================================================


class TestDeleteSale:

    def test_restores_only_outstanding_quantity(self, db_session, super_admin, clock, make_container, make_sale):
        container = make_container()
        item_id = container.items[0].id
        sale = make_sale(item_id, 10)
        return_service.create_return(
            super_admin, sale.id, items=[{"sale_item_id": sale.items[0].id, "quantity": 4}], clock=clock,
        )
        assert db_session.get(ContainerItem, item_id).quantity == 94

        result = sales_service.delete_sale(super_admin, sale.id)

        assert result["restored"] == {item_id: 6}
        assert db_session.get(ContainerItem, item_id).quantity == 100
        assert db_session.query(Sale).count() == 0
        assert db_session.query(Return).count() == 0
        assert db_session.query(Payment).count() == 0
        assert db_session.get(Container, container.id).net_profit_cents == 0
        assert db_session.query(AuditLog).filter_by(action="DELETE_SALE").count() == 1

    def test_gated_by_sale_period_not_current_date(
        self, db_session, super_admin, clock, make_container, make_sale
    ):
        container = make_container()
        sale = make_sale(container.items[0].id, 2)
        PeriodService(clock=clock).lock_period(super_admin, sale.financial_period_id, enforce_checklist=False)

        clock.set(datetime(2026, 4, 2, 9, 0))
        april_sale = make_sale(container.items[0].id, 1)
        assert april_sale.financial_period_id != sale.financial_period_id

        with pytest.raises(PeriodLockedError):
            sales_service.delete_sale(super_admin, sale.id)
        assert db_session.get(Sale, sale.id) is not None

    def test_super_admin_only(self, db_session, admin, make_container, make_sale):
        container = make_container()
        sale = make_sale(container.items[0].id, 1)

        with pytest.raises(PermissionDeniedError):
            sales_service.delete_sale(admin, sale.id)
