"""
Investor share allocation, profit and payout tests.

Verifies:
- Shares are invested / total * 100 and sum to 100
- Owed profit = net profit * share / 100; remaining = owed - payouts
- Payouts are not capped; overpayment is reported
- Payout guards (in-transit containers, missing stake, locked period)
"""

import pytest

from osso.models import ContainerInvestment, InvestorPayout
from osso.services import investor_service
from osso.services.period_service import PeriodLockedError, PeriodService
from osso.services.permission_service import PermissionDeniedError
from osso.validation import ConflictError, NotFoundError


@pytest.fixture
def funded_container(db_session, super_admin, make_container, make_investor):
    """$1000 container funded 30/70 by investors A and B."""
    container = make_container(quantity=100, purchase_cents=100_000)
    investor_a = make_investor("Investor A")
    investor_b = make_investor("Investor B")
    investor_service.add_investment(
        super_admin, container_id=container.id, investor_id=investor_a.id, invested_amount_cents=30_000,
    )
    investor_service.add_investment(
        super_admin, container_id=container.id, investor_id=investor_b.id, invested_amount_cents=70_000,
    )
    return container, investor_a, investor_b


def _sell_for_profit(container, make_sale, net_profit_cents):
    # 1500 price over 1000 unit cost leaves 500 profit per unit
    make_sale(container.items[0].id, net_profit_cents // 500, price_cents=1_500)


# =============================================================================
# SHARES
# =============================================================================


class TestShares:

    def test_shares_follow_invested_amounts(self, db_session, funded_container):
        container, investor_a, investor_b = funded_container

        stakes = {
            stake.investor_id: stake.percentage_share
            for stake in db_session.query(ContainerInvestment).filter_by(container_id=container.id)
        }

        assert stakes[investor_a.id] == pytest.approx(30.0)
        assert stakes[investor_b.id] == pytest.approx(70.0)
        assert sum(stakes.values()) == pytest.approx(100.0)

    def test_matches_expected_diagnostic(self, db_session, funded_container):
        container, _, _ = funded_container

        result = investor_service.recalc_shares(container.id)

        assert result == {
            "invested_total_cents": 100_000,
            "expected_total_cents": 100_000,
            "matches_expected": True,
        }

    def test_partial_funding_is_allowed(self, db_session, super_admin, make_container, make_investor):
        container = make_container(purchase_cents=100_000)
        investor = make_investor()

        result = investor_service.add_investment(
            super_admin, container_id=container.id, investor_id=investor.id, invested_amount_cents=40_000,
        )

        assert result["shares"]["matches_expected"] is False
        assert result["investment"].percentage_share == pytest.approx(100.0)

    def test_repeat_investment_merges_into_one_stake(self, db_session, super_admin, funded_container):
        container, investor_a, _ = funded_container

        investor_service.add_investment(
            super_admin, container_id=container.id, investor_id=investor_a.id, invested_amount_cents=30_000,
        )

        stakes = db_session.query(ContainerInvestment).filter_by(container_id=container.id).all()
        assert len(stakes) == 2
        by_investor = {stake.investor_id: stake for stake in stakes}
        assert by_investor[investor_a.id].invested_amount_cents == 60_000
        assert by_investor[investor_a.id].percentage_share == pytest.approx(60_000 / 130_000 * 100)

    def test_no_stakes_gives_zero_totals(self, db_session, make_container):
        container = make_container()

        result = investor_service.recalc_shares(container.id)

        assert result["invested_total_cents"] == 0
        assert result["matches_expected"] is False


# =============================================================================
# PROFIT AND PAYOUTS
# =============================================================================


class TestBalances:

    def test_owed_split_by_share(self, db_session, funded_container, make_sale):
        container, investor_a, investor_b = funded_container
        _sell_for_profit(container, make_sale, 20_000)

        balance_a = investor_service.investor_balance(investor_a.id, container.id)
        balance_b = investor_service.investor_balance(investor_b.id, container.id)

        assert balance_a["owed_cents"] == 6_000
        assert balance_b["owed_cents"] == 14_000
        assert balance_a["remaining_cents"] == 6_000

    def test_payout_reduces_remaining(self, db_session, clock, super_admin, funded_container, make_sale):
        container, investor_a, investor_b = funded_container
        _sell_for_profit(container, make_sale, 20_000)

        investor_service.create_payout(
            super_admin, investor_id=investor_a.id, container_id=container.id, amount_cents=6_000, clock=clock,
        )

        balance_a = investor_service.investor_balance(investor_a.id, container.id)
        balance_b = investor_service.investor_balance(investor_b.id, container.id)
        assert balance_a["paid_cents"] == 6_000
        assert balance_a["remaining_cents"] == 0
        assert balance_a["overpaid"] is False
        assert balance_b["remaining_cents"] == 14_000

    def test_overpayment_is_recorded_and_reported(
        self, db_session, clock, super_admin, funded_container, make_sale
    ):
        container, investor_a, _ = funded_container
        _sell_for_profit(container, make_sale, 20_000)

        investor_service.create_payout(
            super_admin, investor_id=investor_a.id, container_id=container.id, amount_cents=7_500, clock=clock,
        )

        balance = investor_service.investor_balance(investor_a.id, container.id)
        assert balance["remaining_cents"] == -1_500
        assert balance["overpaid"] is True

    def test_profit_rounds_half_up(self):
        assert investor_service.compute_investor_profit(1, 50.0) == 1
        assert investor_service.compute_investor_profit(-1, 50.0) == -1
        assert investor_service.compute_investor_profit(20_000, 30.000000000000004) == 6_000

    def test_summary_totals(self, db_session, clock, super_admin, funded_container, make_sale):
        container, investor_a, _ = funded_container
        _sell_for_profit(container, make_sale, 20_000)
        investor_service.create_payout(
            super_admin, investor_id=investor_a.id, container_id=container.id, amount_cents=1_000, clock=clock,
        )

        summary = investor_service.investor_summary(investor_a.id)

        assert summary["investor"]["name"] == "Investor A"
        assert len(summary["containers"]) == 1
        assert summary["totals"] == {
            "invested_amount_cents": 30_000,
            "owed_cents": 6_000,
            "paid_cents": 1_000,
            "remaining_cents": 5_000,
        }


class TestPayoutGuards:

    def test_in_transit_container_refused(self, db_session, clock, super_admin, make_container, make_investor):
        container = make_container(arrived=False)
        investor = make_investor()
        investor_service.add_investment(
            super_admin, container_id=container.id, investor_id=investor.id, invested_amount_cents=10_000,
        )

        with pytest.raises(ConflictError):
            investor_service.create_payout(
                super_admin, investor_id=investor.id, container_id=container.id, amount_cents=100, clock=clock,
            )

    def test_investor_without_stake_refused(self, db_session, clock, super_admin, make_container, make_investor):
        container = make_container()
        outsider = make_investor("Outsider")

        with pytest.raises(ConflictError):
            investor_service.create_payout(
                super_admin, investor_id=outsider.id, container_id=container.id, amount_cents=100, clock=clock,
            )

    def test_locked_period_refuses_payout(self, db_session, clock, super_admin, funded_container):
        container, investor_a, _ = funded_container
        periods = PeriodService(clock=clock)
        period = periods.current_period()
        periods.lock_period(super_admin, period.id, enforce_checklist=False)

        with pytest.raises(PeriodLockedError):
            investor_service.create_payout(
                super_admin, investor_id=investor_a.id, container_id=container.id, amount_cents=100, clock=clock,
            )
        assert db_session.query(InvestorPayout).count() == 0



# =============================================================================
# INVESTOR PORTAL
# =============================================================================


class TestSummaryForUser:

    def test_linked_investor_sees_own_summary(
        self, db_session, clock, super_admin, investor_user, make_container, make_sale
    ):
        container = make_container(quantity=100, purchase_cents=100_000)
        linked = investor_service.create_investor(super_admin, name="Portal Investor", user_id=investor_user.user_id)
        investor_service.add_investment(
            super_admin, container_id=container.id, investor_id=linked.id, invested_amount_cents=100_000,
        )
        _sell_for_profit(container, make_sale, 5_000)
        investor_service.create_payout(
            super_admin, investor_id=linked.id, container_id=container.id, amount_cents=2_000, clock=clock,
        )

        summary = investor_service.summary_for_user(investor_user)

        assert summary["investor"]["id"] == linked.id
        assert summary["totals"]["owed_cents"] == 5_000
        assert summary["totals"]["remaining_cents"] == 3_000
        assert [payout["amount_cents"] for payout in summary["payouts"]] == [2_000]

    def test_unlinked_user_gets_not_found(self, db_session, investor_user, make_investor):
        make_investor("Someone Else")

        with pytest.raises(NotFoundError):
            investor_service.summary_for_user(investor_user)

    def test_staff_roles_are_denied(self, db_session, admin):
        with pytest.raises(PermissionDeniedError):
            investor_service.summary_for_user(admin)
