"""
HTTP surface tests through the Flask test client.
"""

from tabkeeper.extensions import db
from tabkeeper.models import Movement


def _post_sale(client, headers, lines, account_id="c1", **extra):
    body = {"account_id": account_id, "kind": "OUTFLOW", "lines": lines}
    body.update(extra)
    return client.post("/api/movements", json=body, headers=headers)


class TestMovementRoutes:
    def test_actor_header_required(self, client, db_session, customer):
        response = client.post("/api/movements", json={"account_id": "c1", "kind": "INFLOW", "amount_cents": 100})

        assert response.status_code == 401
        assert db.session.query(Movement).count() == 0

    def test_create_sale(self, client, db_session, items, customer, actor_headers):
        response = _post_sale(client, actor_headers, [{"item_id": "A", "quantity": 2}])

        assert response.status_code == 201
        body = response.get_json()
        assert body["outcome"] == "CREATED"
        assert body["movement"]["shape"] == "LINE_ITEMS"
        assert body["movement"]["actor_id"] == "clerk-1"
        assert body["movement"]["actor_name"] == "Front counter"
        assert body["movement"]["balance_after_cents"] == -10000
        assert body["recalculation"]["balance_cents"] == -10000
        assert body["recalc_pending"] is False

    def test_missing_fields(self, client, db_session, actor_headers):
        response = client.post("/api/movements", json={"kind": "INFLOW"}, headers=actor_headers)

        assert response.status_code == 400

    def test_insufficient_stock_is_conflict(self, client, db_session, items, customer, actor_headers):
        response = _post_sale(client, actor_headers, [{"item_id": "B", "quantity": 10}])

        assert response.status_code == 409
        body = response.get_json()
        assert body["details"]["items"][0]["shortfall"] == 7

    def test_idempotency_header(self, client, db_session, customer, actor_headers):
        headers = dict(actor_headers, **{"Idempotency-Key": "till-1:42"})
        body = {"account_id": "c1", "kind": "INFLOW", "amount_cents": 500}

        first = client.post("/api/movements", json=body, headers=headers)
        second = client.post("/api/movements", json=body, headers=headers)

        assert first.status_code == 201
        assert second.status_code == 200
        assert second.get_json()["outcome"] == "DUPLICATE"
        assert second.get_json()["movement"]["id"] == first.get_json()["movement"]["id"]

    def test_get_movement(self, client, db_session, customer, actor_headers):
        created = client.post(
            "/api/movements",
            json={"account_id": "c1", "kind": "INFLOW", "amount_cents": 500},
            headers=actor_headers,
        ).get_json()

        response = client.get(f"/api/movements/{created['movement']['id']}")

        assert response.status_code == 200
        assert response.get_json()["movement"]["amount_cents"] == 500

    def test_get_unknown_movement(self, client, db_session):
        response = client.get("/api/movements/999")

        assert response.status_code == 404
        assert response.get_json()["details"] == {"movement_id": 999}

    def test_cancel_restore_edit(self, client, db_session, items, customer, actor_headers):
        sale_id = _post_sale(client, actor_headers, [{"item_id": "A", "quantity": 2}]).get_json()["movement"]["id"]

        cancelled = client.post(f"/api/movements/{sale_id}/cancel", json={"reason": "void"}, headers=actor_headers)
        assert cancelled.status_code == 200
        assert cancelled.get_json()["outcome"] == "CANCELLED"

        again = client.post(f"/api/movements/{sale_id}/cancel", headers=actor_headers)
        assert again.status_code == 200
        assert again.get_json()["outcome"] == "ALREADY_CANCELLED"

        restored = client.post(f"/api/movements/{sale_id}/restore", headers=actor_headers)
        assert restored.get_json()["outcome"] == "RESTORED"

        edited = client.post(
            f"/api/movements/{sale_id}/edit",
            json={"lines": [{"item_id": "A", "quantity": 1}], "reason": "one returned"},
            headers=actor_headers,
        )
        assert edited.status_code == 200
        body = edited.get_json()
        assert body["outcome"] == "REPLACED"
        assert body["movement"]["state"] == "CANCELLED"
        assert body["replacement"]["state"] == "ACTIVE"
        assert body["replacement"]["balance_after_cents"] == -5000

    def test_restore_replaced_is_conflict(self, client, db_session, items, customer, actor_headers):
        sale_id = _post_sale(client, actor_headers, [{"item_id": "A", "quantity": 2}]).get_json()["movement"]["id"]
        client.post(f"/api/movements/{sale_id}/edit", json={"lines": [{"item_id": "A", "quantity": 1}]}, headers=actor_headers)

        response = client.post(f"/api/movements/{sale_id}/restore", headers=actor_headers)

        assert response.status_code == 409

    def test_non_string_description_is_bad_request(self, client, db_session, customer, actor_headers):
        response = client.post(
            "/api/movements",
            json={"account_id": "c1", "kind": "INFLOW", "amount_cents": 100, "description": 5},
            headers=actor_headers,
        )

        assert response.status_code == 400
        assert db.session.query(Movement).count() == 0

    def test_bad_edit_text_is_bad_request(self, client, db_session, customer, actor_headers):
        created = client.post(
            "/api/movements",
            json={"account_id": "c1", "kind": "INFLOW", "amount_cents": 100},
            headers=actor_headers,
        ).get_json()
        movement_id = created["movement"]["id"]

        listed = client.post(f"/api/movements/{movement_id}/edit", json={"description": ["x"]}, headers=actor_headers)
        too_long = client.post(
            f"/api/movements/{movement_id}/edit",
            json={"amount_cents": 50, "reason": "r" * 151},
            headers=actor_headers,
        )

        assert listed.status_code == 400
        assert too_long.status_code == 400
        assert too_long.get_json()["details"]["max_length"] == 150

    def test_list_by_time_range(self, client, db_session, customer, actor_headers):
        for at in ("2026-05-01T10:00:00Z", "2026-05-02T10:00:00Z", "2026-05-03T10:00:00Z"):
            client.post(
                "/api/movements",
                json={"account_id": "c1", "kind": "INFLOW", "amount_cents": 100, "occurred_at": at},
                headers=actor_headers,
            )

        response = client.get("/api/movements?start=2026-05-02T10:00:00Z&end=2026-05-03T10:00:00Z")

        assert response.status_code == 200
        assert [m["occurred_at"] for m in response.get_json()["items"]] == [
            "2026-05-02T10:00:00Z",
            "2026-05-03T10:00:00Z",
        ]

    def test_list_bad_range(self, client, db_session):
        assert client.get("/api/movements?start=yesterday").status_code == 400
        assert client.get("/api/movements?start=2026-05-03T00:00:00Z&end=2026-05-01T00:00:00Z").status_code == 400


class TestAccountRoutes:
    def test_open_and_get_account(self, client, db_session, actor_headers):
        created = client.post("/api/accounts", json={"id": "c5", "name": "Fifth"}, headers=actor_headers)
        assert created.status_code == 201

        response = client.get("/api/accounts/c5")

        assert response.status_code == 200
        assert response.get_json()["account"]["balance_cents"] == 0

    def test_unknown_account(self, client, db_session):
        assert client.get("/api/accounts/nobody").status_code == 404

    def test_history_order(self, client, db_session, customer, actor_headers):
        for at in ("2026-05-01T10:00:00Z", "2026-05-02T10:00:00Z"):
            client.post(
                "/api/movements",
                json={"account_id": "c1", "kind": "INFLOW", "amount_cents": 100, "occurred_at": at},
                headers=actor_headers,
            )

        desc = client.get("/api/accounts/c1/movements").get_json()["items"]
        asc = client.get("/api/accounts/c1/movements?order=asc").get_json()["items"]

        assert [m["balance_after_cents"] for m in desc] == [200, 100]
        assert [m["balance_after_cents"] for m in asc] == [100, 200]
        assert client.get("/api/accounts/c1/movements?order=random").status_code == 400

    def test_disable_account_blocks_new_movements(self, client, db_session, customer, actor_headers):
        disabled = client.patch("/api/accounts/c1/status", json={"is_enabled": False}, headers=actor_headers)

        assert disabled.status_code == 200
        assert disabled.get_json()["account"]["is_enabled"] is False
        assert disabled.get_json()["changed"] is True

        rejected = client.post(
            "/api/movements",
            json={"account_id": "c1", "kind": "INFLOW", "amount_cents": 100},
            headers=actor_headers,
        )
        assert rejected.status_code == 409
        assert rejected.get_json()["details"] == {"account_id": "c1"}

        enabled = client.patch("/api/accounts/c1/status", json={"is_enabled": True}, headers=actor_headers)
        assert enabled.get_json()["account"]["is_enabled"] is True

    def test_status_requires_flag(self, client, db_session, customer, actor_headers):
        assert client.patch("/api/accounts/c1/status", json={}, headers=actor_headers).status_code == 400
        assert client.patch("/api/accounts/c1/status", json={"is_enabled": "no"}, headers=actor_headers).status_code == 400
        assert client.patch("/api/accounts/c1/status", json={"is_enabled": False}).status_code == 401
        assert client.patch("/api/accounts/nobody/status", json={"is_enabled": False}, headers=actor_headers).status_code == 404

    def test_recalculate(self, client, db_session, customer, actor_headers):
        client.post("/api/movements", json={"account_id": "c1", "kind": "INFLOW", "amount_cents": 300}, headers=actor_headers)

        response = client.post("/api/accounts/c1/recalculate")

        assert response.status_code == 200
        assert response.get_json()["recalculation"] == {
            "account_id": "c1",
            "balance_cents": 300,
            "movements_updated": 0,
            "account_updated": False,
            "writes": 0,
        }


class TestItemRoutes:
    def test_register_and_get(self, client, db_session, actor_headers):
        created = client.post(
            "/api/items",
            json={"id": "C", "name": "Stapler", "quantity": 4, "selling_price_cents": 1200, "min_stock": 1},
            headers=actor_headers,
        )
        assert created.status_code == 201

        item = client.get("/api/items/C").get_json()["item"]
        assert item["quantity"] == 4
        assert item["suggested_price_cents"] is None

    def test_low_stock(self, client, db_session, items):
        body = client.get("/api/items/low-stock").get_json()

        assert [i["id"] for i in body["items"]] == ["B"]

    def test_receipt_and_pricing(self, client, db_session, items, actor_headers):
        received = client.post(
            "/api/items/receipts",
            json={"lines": [{"item_id": "A", "quantity": 3, "unit_cost_cents": 4000}], "distributor_name": "Paper Inc"},
            headers=actor_headers,
        )
        assert received.status_code == 201
        receipt_id = received.get_json()["receipt"]["id"]

        priced = client.patch("/api/items/A/pricing", json={"margin_bps": 2500, "use_suggested": True}, headers=actor_headers)
        assert priced.status_code == 200
        item = priced.get_json()["item"]
        assert item["selling_price_cents"] == 5000
        assert item["margin_percent"] == 25.0
        assert item["quantity"] == 8

        cancelled = client.post(f"/api/items/receipts/{receipt_id}/cancel", json={"reason": "returned"}, headers=actor_headers)
        assert cancelled.get_json()["outcome"] == "CANCELLED"
        assert client.get("/api/items/A").get_json()["item"]["quantity"] == 5

    def test_pricing_without_cost(self, client, db_session, items, actor_headers):
        response = client.patch("/api/items/A/pricing", json={"use_suggested": True}, headers=actor_headers)

        assert response.status_code == 400


class TestReportRoutes:
    def test_daily_sales(self, client, db_session, items, customer, actor_headers):
        at = "2026-06-10T15:00:00Z"
        sale = _post_sale(client, actor_headers, [{"item_id": "A", "quantity": 2}], occurred_at=at).get_json()
        _post_sale(client, actor_headers, [{"item_id": "B", "quantity": 1}], occurred_at=at)
        client.post(f"/api/movements/{sale['movement']['id']}/cancel", headers=actor_headers)
        client.post(
            "/api/movements",
            json={"account_id": "c1", "kind": "INFLOW", "amount_cents": 1000, "occurred_at": at},
            headers=actor_headers,
        )
        _post_sale(client, actor_headers, [{"item_id": "A", "quantity": 1}], occurred_at="2026-06-11T00:00:00Z")

        report = client.get("/api/reports/daily-sales?date=2026-06-10").get_json()

        assert report["sales_count"] == 1
        assert report["cancelled_sales_count"] == 1
        assert report["sales_total_cents"] == 2000
        assert report["payments_total_cents"] == 1000
        assert report["items"] == [{"item_id": "B", "item_name": "Pen", "quantity": 1, "total_cents": 2000}]

    def test_daily_sales_bad_date(self, client, db_session):
        assert client.get("/api/reports/daily-sales?date=10/06/2026").status_code == 400

    def test_ledger_events(self, client, db_session, customer, actor_headers):
        created = client.post(
            "/api/movements",
            json={"account_id": "c1", "kind": "INFLOW", "amount_cents": 100},
            headers=actor_headers,
        ).get_json()

        body = client.get(f"/api/ledger?entity_type=movement&entity_id={created['movement']['id']}").get_json()

        assert [e["event_type"] for e in body["items"]] == ["movement.created"]
        assert client.get("/api/ledger?limit=0").status_code == 400


class TestSystemRoutes:
    def test_health(self, client, db_session):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.get_json()["checks"]["database"]["status"] == "healthy"
