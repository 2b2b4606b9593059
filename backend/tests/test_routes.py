"""
API route tests.

Verifies:
- Trusted identity headers (401 without them, 403 for the wrong role)
- Domain errors map to JSON bodies with the right status codes
- End-to-end container -> sale -> return flow over HTTP
- Inventory confirm-by-code over HTTP, including expiry
- Period checklist / lock / unlock endpoints
"""

import pytest

from osso.models import FinancialPeriod

from conftest import auth_headers


PINNED_NOW = "2026-03-15T09:00:00Z"


@pytest.fixture
def pinned_time(client, db_session, super_admin):
    """Pin server time so routes resolve the March 2026 period."""
    response = client.put(
        "/api/system/time",
        json={"auto": False, "manual_time": PINNED_NOW, "time_zone": "UTC"},
        headers=auth_headers(super_admin),
    )
    assert response.status_code == 200
    return PINNED_NOW


def _arrived_container(client, actor, quantity=100, purchase_cents=100_000, sale_price_cents=1_500):
    headers = auth_headers(actor)
    product = client.post("/api/products", json={"sku": "JKT-001", "name": "Jacket"}, headers=headers)
    assert product.status_code == 201

    created = client.post(
        "/api/containers",
        json={
            "name": "Container A",
            "purchase_date": PINNED_NOW,
            "total_purchase_source_cents": purchase_cents,
            "exchange_rate": 1.0,
            "items": [{
                "product_id": product.get_json()["id"],
                "quantity": quantity,
                "sale_price_cents": sale_price_cents,
            }],
        },
        headers=headers,
    )
    assert created.status_code == 201
    container = created.get_json()

    arrived = client.patch(
        f"/api/containers/{container['id']}/status", json={"status": "ARRIVED"}, headers=headers,
    )
    assert arrived.status_code == 200
    return container


# =============================================================================
# AUTH
# =============================================================================


class TestIdentity:

    def test_health_is_public(self, client, db_session):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.get_json()["database"]["status"] == "healthy"

    def test_missing_headers_is_401(self, client, db_session):
        response = client.get("/api/containers")

        assert response.status_code == 401

    def test_unknown_role_is_401(self, client, db_session):
        response = client.get("/api/containers", headers={"X-User-Id": "1", "X-User-Role": "JANITOR"})

        assert response.status_code == 401

    def test_wrong_role_is_403(self, client, db_session, warehouse):
        response = client.post(
            "/api/containers",
            json={"name": "X", "purchase_date": PINNED_NOW, "total_purchase_source_cents": 1},
            headers=auth_headers(warehouse),
        )

        assert response.status_code == 403
        assert "SUPER_ADMIN" in response.get_json()["required_roles"]

    def test_investor_cannot_read_sales(self, client, db_session, investor_user):
        response = client.get("/api/sales", headers=auth_headers(investor_user))

        assert response.status_code == 403

    def test_investor_reads_own_portal(self, client, db_session, super_admin, admin, investor_user):
        created = client.post(
            "/api/investors",
            json={"name": "Portal Investor", "user_id": investor_user.user_id},
            headers=auth_headers(super_admin),
        )
        assert created.status_code == 201

        mine = client.get("/api/investors/me", headers=auth_headers(investor_user))
        staff = client.get("/api/investors/me", headers=auth_headers(admin))

        assert mine.status_code == 200
        assert mine.get_json()["investor"]["name"] == "Portal Investor"
        assert mine.get_json()["payouts"] == []
        assert staff.status_code == 403


# =============================================================================
# ERROR MAPPING
# =============================================================================


class TestErrorMapping:

    def test_missing_fields_is_400(self, client, db_session, super_admin):
        response = client.post("/api/containers", json={"name": "X"}, headers=auth_headers(super_admin))

        assert response.status_code == 400
        body = response.get_json()
        assert set(body["details"]["missing"]) == {"purchase_date", "total_purchase_source_cents"}

    def test_unknown_container_is_404(self, client, db_session, admin):
        response = client.get("/api/containers/999", headers=auth_headers(admin))

        assert response.status_code == 404
        assert "error" in response.get_json()

    def test_insufficient_stock_is_409(self, client, db_session, pinned_time, super_admin):
        container = _arrived_container(client, super_admin, quantity=5)
        headers = auth_headers(super_admin)
        buyer = client.post("/api/clients", json={"name": "Buyer"}, headers=headers).get_json()

        response = client.post(
            "/api/sales",
            json={
                "client_id": buyer["id"],
                "paid_amount_cents": 100,
                "items": [{"container_item_id": container["items"][0]["id"], "quantity": 6}],
            },
            headers=headers,
        )

        assert response.status_code == 409
        assert response.get_json()["details"]["available"] == 5


# =============================================================================
# SALES FLOW
# =============================================================================


class TestSaleFlow:

    def test_container_sale_return_round(self, client, db_session, pinned_time, super_admin, manager, accountant):
        container = _arrived_container(client, super_admin)
        assert container["items"][0]["cost_per_unit_cents"] == 1_000
        assert container["investment_check"]["invested_total_cents"] == 0

        buyer = client.post("/api/clients", json={"name": "Buyer"}, headers=auth_headers(manager)).get_json()
        sale = client.post(
            "/api/sales",
            json={
                "client_id": buyer["id"],
                "paid_amount_cents": 15_000,
                "items": [{"container_item_id": container["items"][0]["id"], "quantity": 10}],
            },
            headers=auth_headers(manager),
        )
        assert sale.status_code == 201
        sale = sale.get_json()
        assert sale["invoice_number"] == "INV-2026-000001"
        assert sale["status"] == "COMPLETED"

        detail = client.get(f"/api/containers/{container['id']}", headers=auth_headers(accountant)).get_json()
        assert detail["net_profit_cents"] == 5_000
        assert detail["items"][0]["quantity"] == 90

        returned = client.post(
            f"/api/sales/{sale['id']}/returns",
            json={"items": [{"sale_item_id": sale["items"][0]["id"], "quantity": 4}]},
            headers=auth_headers(manager),
        )
        assert returned.status_code == 201
        assert returned.get_json()["total_return_cents"] == 6_000

        sale_detail = client.get(f"/api/sales/{sale['id']}", headers=auth_headers(accountant)).get_json()
        assert sale_detail["total_amount_cents"] == 9_000
        assert sale_detail["items"][0]["returned_quantity"] == 4
        assert len(sale_detail["returns"]) == 1

        detail = client.get(f"/api/containers/{container['id']}", headers=auth_headers(accountant)).get_json()
        assert detail["net_profit_cents"] == 3_000

        excess = client.post(
            f"/api/sales/{sale['id']}/returns",
            json={"items": [{"sale_item_id": sale["items"][0]["id"], "quantity": 7}]},
            headers=auth_headers(manager),
        )
        assert excess.status_code == 409

    def test_manager_cannot_delete_sale(self, client, db_session, pinned_time, super_admin, manager):
        container = _arrived_container(client, super_admin)
        buyer = client.post("/api/clients", json={"name": "Buyer"}, headers=auth_headers(manager)).get_json()
        sale = client.post(
            "/api/sales",
            json={
                "client_id": buyer["id"],
                "paid_amount_cents": 1_500,
                "items": [{"container_item_id": container["items"][0]["id"], "quantity": 1}],
            },
            headers=auth_headers(manager),
        ).get_json()

        assert client.delete(f"/api/sales/{sale['id']}", headers=auth_headers(manager)).status_code == 403
        deleted = client.delete(f"/api/sales/{sale['id']}", headers=auth_headers(super_admin))
        assert deleted.status_code == 200
        assert deleted.get_json()["restored"]

    def test_audit_log_records_sale(self, client, db_session, pinned_time, super_admin, accountant):
        container = _arrived_container(client, super_admin)
        headers = auth_headers(super_admin)
        buyer = client.post("/api/clients", json={"name": "Buyer"}, headers=headers).get_json()
        client.post(
            "/api/sales",
            json={
                "client_id": buyer["id"],
                "paid_amount_cents": 1_500,
                "items": [{"container_item_id": container["items"][0]["id"], "quantity": 1}],
            },
            headers=headers,
        )

        logs = client.get("/api/audit-logs?action=CREATE_SALE", headers=auth_headers(accountant)).get_json()

        assert len(logs) == 1
        assert logs[0]["metadata"]["invoice_number"] == "INV-2026-000001"


# =============================================================================
# INVENTORY
# =============================================================================


class TestInventoryRoutes:

    def _count(self, client, actor, item_id, counted):
        return client.post(
            "/api/inventory/sessions",
            json={"items": [{"container_item_id": item_id, "counted_quantity": counted}]},
            headers=auth_headers(actor),
        )

    def test_count_and_confirm(self, client, db_session, pinned_time, super_admin, warehouse, accountant):
        container = _arrived_container(client, super_admin)
        created = self._count(client, warehouse, container["items"][0]["id"], 100)
        assert created.status_code == 201
        code = created.get_json()["code"]
        assert created.get_json()["status"] == "PENDING"

        confirmed = client.post("/api/inventory/confirm", json={"code": code}, headers=auth_headers(accountant))
        assert confirmed.status_code == 200
        assert confirmed.get_json()["already_confirmed"] is False
        assert confirmed.get_json()["session"]["status"] == "CONFIRMED"

        again = client.post("/api/inventory/confirm", json={"code": code}, headers=auth_headers(accountant))
        assert again.status_code == 200
        assert again.get_json()["already_confirmed"] is True

    def test_discrepancy_report(self, client, db_session, pinned_time, super_admin, warehouse):
        container = _arrived_container(client, super_admin)

        created = self._count(client, warehouse, container["items"][0]["id"], 96)

        body = created.get_json()
        assert body["status"] == "DISCREPANCY"
        assert body["code"] is None
        assert body["shortages"][0]["difference"] == -4

    def test_expired_code_is_410(self, client, db_session, pinned_time, super_admin, warehouse, admin):
        container = _arrived_container(client, super_admin)
        code = self._count(client, warehouse, container["items"][0]["id"], 100).get_json()["code"]

        client.put(
            "/api/system/time",
            json={"auto": False, "manual_time": "2026-03-15T09:10:01Z", "time_zone": "UTC"},
            headers=auth_headers(super_admin),
        )
        response = client.post("/api/inventory/confirm", json={"code": code}, headers=auth_headers(admin))

        assert response.status_code == 410

    def test_bad_codes(self, client, db_session, admin):
        malformed = client.post("/api/inventory/confirm", json={"code": "12a"}, headers=auth_headers(admin))
        unknown = client.post("/api/inventory/confirm", json={"code": "987"}, headers=auth_headers(admin))

        assert malformed.status_code == 400
        assert unknown.status_code == 404

    def test_warehouse_cannot_confirm(self, client, db_session, warehouse):
        response = client.post("/api/inventory/confirm", json={"code": "123"}, headers=auth_headers(warehouse))

        assert response.status_code == 403

    def test_send_to_admin_requires_warehouse_role(self, client, db_session, pinned_time, super_admin, warehouse):
        container = _arrived_container(client, super_admin)
        session = self._count(client, warehouse, container["items"][0]["id"], 100).get_json()

        as_accountant = client.post(
            f"/api/inventory/sessions/{session['id']}/send-to-admin",
            headers={"X-User-Id": str(warehouse.user_id), "X-User-Role": "ACCOUNTANT"},
        )
        as_creator = client.post(
            f"/api/inventory/sessions/{session['id']}/send-to-admin", headers=auth_headers(warehouse),
        )

        assert as_accountant.status_code == 403
        assert as_creator.status_code == 200
        assert as_creator.get_json()["sent_to_admin_at"] is not None


# =============================================================================
# PERIODS
# =============================================================================


class TestPeriodRoutes:

    def test_current_period_is_created_on_demand(self, client, db_session, pinned_time, accountant):
        response = client.get("/api/periods/current", headers=auth_headers(accountant))

        assert response.status_code == 200
        assert (response.get_json()["month"], response.get_json()["year"]) == (3, 2026)
        assert db_session.query(FinancialPeriod).count() == 1

    def test_lock_blocked_by_checklist(self, client, db_session, pinned_time, admin):
        period = client.get("/api/periods/current", headers=auth_headers(admin)).get_json()

        checklist = client.get(f"/api/periods/{period['id']}/checklist", headers=auth_headers(admin)).get_json()
        assert checklist["ready"] is False

        response = client.post(f"/api/periods/{period['id']}/lock", json={}, headers=auth_headers(admin))
        assert response.status_code == 409
        assert response.get_json()["details"]["blockers"]

    def test_unlock_is_super_admin_only(self, client, db_session, pinned_time, admin, super_admin):
        period = client.get("/api/periods/current", headers=auth_headers(admin)).get_json()
        db_session.get(FinancialPeriod, period["id"]).status = "LOCKED"
        db_session.commit()

        forbidden = client.post(
            f"/api/periods/{period['id']}/unlock", json={"reason": "Fix"}, headers=auth_headers(admin),
        )
        missing_reason = client.post(
            f"/api/periods/{period['id']}/unlock", json={}, headers=auth_headers(super_admin),
        )
        unlocked = client.post(
            f"/api/periods/{period['id']}/unlock", json={"reason": "Fix"}, headers=auth_headers(super_admin),
        )

        assert forbidden.status_code == 403
        assert missing_reason.status_code == 400
        assert unlocked.status_code == 200
        assert unlocked.get_json()["status"] == "OPEN"
