"""
System collaborators: currency normalization, server time, month mapping.
"""

from datetime import datetime

import pytest

from osso.services import currency_service, system_time_service
from osso.services.permission_service import PermissionDeniedError
from osso.time_utils import month_year, parse_iso_datetime, to_utc_z
from osso.validation import ValidationError, coerce_cents


class TestCurrency:

    @pytest.mark.parametrize("source, rate, expected", [
        (1_000_000, 0.14, 140_000),
        (5, 0.1, 1),        # 0.5 rounds up
        (4, 0.1, 0),
        (12_345, 1.0, 12_345),
    ])
    def test_to_accounting_cents(self, source, rate, expected):
        assert currency_service.to_accounting_cents(source, rate) == expected

    def test_rate_must_be_positive(self):
        with pytest.raises(ValidationError):
            currency_service.to_accounting_cents(100, 0)

    def test_configured_fallback_then_latest_setting(self, db_session, admin):
        assert currency_service.get_current_rate() == pytest.approx(0.14)

        currency_service.set_rate(admin, 0.137)

        assert currency_service.get_current_rate() == pytest.approx(0.137)

    def test_only_admins_set_rate(self, db_session, accountant):
        with pytest.raises(PermissionDeniedError):
            currency_service.set_rate(accountant, 0.2)


class TestServerTime:

    def test_manual_time_pins_now(self, db_session, super_admin):
        pinned = datetime(2026, 5, 1, 12, 0)

        system_time_service.set_server_time(super_admin, auto=False, manual_time=pinned, time_zone="Asia/Tashkent")

        assert system_time_service.get_system_now() == pinned
        assert system_time_service.get_server_time_zone() == "Asia/Tashkent"

    def test_auto_clears_pinned_time(self, db_session, super_admin):
        system_time_service.set_server_time(super_admin, auto=False, manual_time=datetime(2020, 1, 1))
        control = system_time_service.set_server_time(super_admin, auto=True)

        assert control.manual_system_time is None
        assert system_time_service.get_system_now().year >= 2026

    def test_unknown_zone_rejected(self, db_session, super_admin):
        with pytest.raises(ValidationError):
            system_time_service.set_server_time(super_admin, auto=True, time_zone="Mars/Olympus")


class TestTimeHelpers:

    def test_month_year_uses_zone(self):
        late = datetime(2026, 3, 31, 20, 0)

        assert month_year(late) == (3, 2026)
        assert month_year(late, "Asia/Tashkent") == (4, 2026)

    def test_iso_round_trip_is_naive_utc(self):
        parsed = parse_iso_datetime("2026-03-15T14:00:00+05:00")

        assert parsed == datetime(2026, 3, 15, 9, 0)
        assert to_utc_z(parsed) == "2026-03-15T09:00:00Z"


class TestMoneyCoercion:

    @pytest.mark.parametrize("value", [1.5, "12.5", "1e3", True, -5, 0])
    def test_rejects_non_cents(self, value):
        with pytest.raises(ValidationError):
            coerce_cents(value, "amount_cents")

    def test_accepts_integer_strings(self):
        assert coerce_cents("1500", "amount_cents") == 1_500
