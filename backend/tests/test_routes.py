"""
HTTP API tests.

Exercises tenant headers, the error body contract (code, line, details) and
the order -> load -> reconciliation flow end to end over the test client.
"""

from conftest import business_headers

from depot.services import account_service, business_service, cheque_service, purchase_service, stock_service


def _create_order(client, business, customer, product, quantity=10, unit_price_cents=1000):
    return client.post(
        "/api/orders",
        json={
            "customer_id": customer.id,
            "lines": [{"product_id": product.id, "quantity": quantity, "unit_price_cents": unit_price_cents}],
            "order_date": "2026-03-02",
        },
        headers=business_headers(business.id),
    )


def _walk_to_loading(client, business, order_id):
    headers = business_headers(business.id)
    for step in ("approve", "checking", "pass-qc"):
        response = client.post(f"/api/orders/{order_id}/{step}", json={}, headers=headers)
        assert response.status_code == 200, response.get_json()
    return response.get_json()


class TestTenantHeaders:
    def test_missing_business_header(self, client, db_session):
        response = client.get("/api/orders")
        assert response.status_code == 400
        assert response.get_json()["code"] == "VALIDATION_ERROR"

    def test_malformed_actor_header(self, client, business):
        response = client.get("/api/orders", headers={"X-Business-Id": str(business.id), "X-Actor-Id": "abc"})
        assert response.status_code == 400

    def test_unknown_business(self, client, db_session):
        response = client.get("/api/orders", headers=business_headers(9_999))
        assert response.status_code == 404

    def test_other_business_order_hidden(self, client, business, other_business, customer, product):
        order_id = _create_order(client, business, customer, product).get_json()["id"]

        response = client.get(f"/api/orders/{order_id}", headers=business_headers(other_business.id))

        assert response.status_code == 404
        assert response.get_json()["code"] == "NOT_FOUND"


class TestOrderFlow:
    def test_create_and_fetch(self, client, business, customer, product):
        response = _create_order(client, business, customer, product)

        assert response.status_code == 201
        body = response.get_json()
        assert body["status"] == "PENDING"
        assert body["total_cents"] == 10_000
        assert body["lines"][0]["product_id"] == product.id

        fetched = client.get(f"/api/orders/{body['id']}", headers=business_headers(business.id))
        assert fetched.get_json()["order_number"] == body["order_number"]

    def test_illegal_transition_is_409(self, client, business, customer, product):
        order_id = _create_order(client, business, customer, product).get_json()["id"]

        response = client.post(f"/api/orders/{order_id}/pass-qc", json={}, headers=business_headers(business.id))

        assert response.status_code == 409
        assert response.get_json()["code"] == "INVALID_TRANSITION"

    def test_unknown_product_reports_line(self, client, business, customer, product):
        response = client.post(
            "/api/orders",
            json={
                "customer_id": customer.id,
                "lines": [
                    {"product_id": product.id, "quantity": 1, "unit_price_cents": 10},
                    {"product_id": 70_000, "quantity": 1, "unit_price_cents": 10},
                ],
            },
            headers=business_headers(business.id),
        )

        assert response.status_code == 404
        assert response.get_json()["line"] == 1

    def test_load_and_reconcile(self, client, business, customer, product):
        headers = business_headers(business.id, actor_id=21)
        order_id = _create_order(client, business, customer, product).get_json()["id"]
        assert _walk_to_loading(client, business, order_id)["status"] == "LOADING"

        load = client.post(
            "/api/loads",
            json={
                "order_ids": [order_id],
                "vehicle_ref": "LB-4021",
                "responsible_person_id": 3,
                "load_date": "2026-03-03",
            },
            headers=headers,
        )
        assert load.status_code == 201
        load_body = load.get_json()
        assert load_body["load_number"] == "LOAD-2026-1001"

        edit = client.patch(
            f"/api/orders/{order_id}/invoice",
            json={"total_cents": 9_500, "reason": "one case damaged"},
            headers=headers,
        )
        assert edit.status_code == 200
        assert edit.get_json()["dispatched_cents"] == 10_000

        result = client.post(
            f"/api/loads/{load_body['id']}/reconcile",
            json={
                "updates": [{"order_id": order_id, "status": "PARTIAL", "payment_status": "PAID"}],
                "close_load": True,
            },
            headers=headers,
        )
        assert result.status_code == 200
        body = result.get_json()
        assert body["closed"] is True
        assert body["load"]["is_open"] is False
        assert body["applied"][0]["diff_cents"] == -500
        assert body["applied"][0]["payment_status"] == "PAID"

        again = client.post(
            f"/api/loads/{load_body['id']}/reconcile",
            json={"updates": [{"order_id": order_id, "status": "DELIVERED"}]},
            headers=headers,
        )
        assert again.status_code == 409

        history = client.get(f"/api/orders/{order_id}/history", headers=headers).get_json()
        assert history["order"]["status"] == "PARTIAL"

    def test_load_rejects_pending_order_with_line(self, client, business, customer, product):
        order_id = _create_order(client, business, customer, product).get_json()["id"]

        response = client.post(
            "/api/loads",
            json={
                "order_ids": [order_id],
                "vehicle_ref": "LB-4021",
                "responsible_person_id": 3,
                "load_date": "2026-03-03",
            },
            headers=business_headers(business.id),
        )

        assert response.status_code == 409
        assert response.get_json()["line"] == 0

    def test_cheque_payment_flow(self, client, business, customer, product, bank_account):
        headers = business_headers(business.id)
        order_id = _create_order(client, business, customer, product).get_json()["id"]

        payment = client.post(
            f"/api/orders/{order_id}/payments",
            json={"method": "CHEQUE", "amount_cents": 10_000, "cheque_number": "778812", "cheque_date": "2026-03-02"},
            headers=headers,
        )
        assert payment.status_code == 201
        cheque_id = cheque_service.cheques_for_order(order_id)[0].id

        deposit = client.post(
            f"/api/cheques/{cheque_id}/deposit", json={"account_id": bank_account.id}, headers=headers
        )
        assert deposit.get_json()["status"] == "DEPOSITED"
        cleared = client.post(f"/api/cheques/{cheque_id}/clear", json={}, headers=headers)
        assert cleared.get_json()["status"] == "PASSED"

        returned = client.post(f"/api/cheques/{cheque_id}/return", json={"reason": "late"}, headers=headers)
        assert returned.status_code == 409

        account = client.get(f"/api/accounts/{bank_account.id}", headers=headers).get_json()
        assert account["balance_cents"] == 110_000


class TestFinanceAndStock:
    def test_transfer_insufficient_funds_is_422(self, client, business, bank_account, cash_account):
        response = client.post(
            "/api/accounts/transfer",
            json={"from_account_id": cash_account.id, "to_account_id": bank_account.id, "amount_cents": 500},
            headers=business_headers(business.id),
        )

        assert response.status_code == 422
        body = response.get_json()
        assert body["code"] == "INSUFFICIENT_FUNDS"
        assert body["details"] == {"balance_cents": 0, "amount_cents": 500}

    def test_transfer_same_account_is_400(self, client, business, bank_account):
        response = client.post(
            "/api/accounts/transfer",
            json={"from_account_id": bank_account.id, "to_account_id": bank_account.id, "amount_cents": 5},
            headers=business_headers(business.id),
        )
        assert response.status_code == 400
        assert response.get_json()["code"] == "SAME_ACCOUNT"

    def test_foreign_account_hidden(self, client, other_business, bank_account):
        response = client.get(f"/api/accounts/{bank_account.id}", headers=business_headers(other_business.id))
        assert response.status_code == 404

    def test_damage_short_stock_is_422_with_line(self, client, business, warehouse, product):
        stock_service.receive_purchase(location_id=warehouse.id, lines=[{"product_id": product.id, "quantity": 30}])

        response = client.post(
            "/api/stock/damage",
            json={
                "location_id": warehouse.id,
                "lines": [{"product_id": product.id, "quantity": 50, "damage_type": "crushed"}],
            },
            headers=business_headers(business.id),
        )

        assert response.status_code == 422
        body = response.get_json()
        assert body["code"] == "INSUFFICIENT_STOCK"
        assert body["line"] == 0
        position = client.get(f"/api/stock/{warehouse.id}/{product.id}", headers=business_headers(business.id))
        assert position.get_json()["good_quantity"] == 30

    def test_damage_returns_document(self, client, business, warehouse, product):
        stock_service.receive_purchase(location_id=warehouse.id, lines=[{"product_id": product.id, "quantity": 30}])

        response = client.post(
            "/api/stock/damage",
            json={"location_id": warehouse.id, "lines": [{"product_id": product.id, "quantity": 5}]},
            headers=business_headers(business.id),
        )

        assert response.status_code == 201
        assert response.get_json()["document_number"] == "DMG-1001"

    def test_foreign_location_hidden(self, client, other_business, warehouse, product):
        response = client.post(
            "/api/stock/receive",
            json={"location_id": warehouse.id, "lines": [{"product_id": product.id, "quantity": 1}]},
            headers=business_headers(other_business.id),
        )
        assert response.status_code == 404

    def test_claim_conversion_conflict(self, client, business, supplier, make_order):
        line_id = make_order(free_quantity=2, status="PENDING").lines[0].id
        headers = business_headers(business.id)
        payload = {"item_ids": [line_id], "supplier_id": supplier.id}

        first = client.post("/api/claims/convert", json=payload, headers=headers)
        second = client.post("/api/claims/convert", json=payload, headers=headers)

        assert first.status_code == 201
        assert first.get_json()["is_free_issue"] is True
        assert second.status_code == 409
        assert second.get_json()["details"] == {"item_ids": [line_id]}


class TestHistoryAndSystem:
    def test_history_feed(self, client, business, make_order):
        order = make_order(status="CHECKING")

        response = client.get(f"/api/history/order/{order.id}", headers=business_headers(business.id))

        assert response.status_code == 200
        states = [record["new_state"] for record in response.get_json()["history"]]
        assert states == ["PENDING", "PROCESSING", "CHECKING"]

    def test_history_unknown_type(self, client, business):
        response = client.get("/api/history/invoice/1", headers=business_headers(business.id))
        assert response.status_code == 400

    def test_history_of_other_business(self, client, other_business, make_order):
        order = make_order(status="PENDING")
        response = client.get(f"/api/history/order/{order.id}", headers=business_headers(other_business.id))
        assert response.status_code == 404

    def test_health(self, client, business):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.get_json()
        assert body["status"] == "healthy"
        assert body["checks"]["database"]["details"]["businesses"] == 1

    def test_version(self, client, db_session):
        assert client.get("/version").get_json()["api_version"] == "1.0.0"


class TestStockTenancy:
    def test_movements_hidden_from_other_business(self, client, business, other_business, warehouse, product):
        stock_service.receive_purchase(location_id=warehouse.id, lines=[{"product_id": product.id, "quantity": 5}])

        own = client.get("/api/stock/movements", headers=business_headers(business.id))
        foreign = client.get("/api/stock/movements", headers=business_headers(other_business.id))

        assert len(own.get_json()["movements"]) == 1
        assert foreign.status_code == 200
        assert foreign.get_json()["movements"] == []

    def test_shared_location_rejects_foreign_product(self, client, business, other_business, product):
        yard = business_service.create_location(business_id=None, name="Shared Yard")

        response = client.post(
            "/api/stock/receive",
            json={"location_id": yard.id, "lines": [{"product_id": product.id, "quantity": 3}]},
            headers=business_headers(other_business.id),
        )

        assert response.status_code == 404
        assert response.get_json()["line"] == 0
        assert stock_service.get_position(yard.id, product.id)["good_quantity"] == 0

    def test_shared_location_movements_split_by_product_owner(self, client, business, other_business, product):
        yard = business_service.create_location(business_id=None, name="Shared Yard")
        their_product = business_service.create_product(business_id=other_business.id, sku="SKU-900", name="Rice 5kg")
        for owner, item in ((business, product), (other_business, their_product)):
            response = client.post(
                "/api/stock/receive",
                json={"location_id": yard.id, "lines": [{"product_id": item.id, "quantity": 4}]},
                headers=business_headers(owner.id),
            )
            assert response.status_code == 201, response.get_json()

        listed = client.get(f"/api/stock/movements?location_id={yard.id}", headers=business_headers(business.id))

        assert [m["product_id"] for m in listed.get_json()["movements"]] == [product.id]


class TestSupplierPaymentRoutes:
    def test_pay_and_list(self, client, business, supplier, product, bank_account):
        purchase = purchase_service.create_purchase(
            business_id=business.id,
            supplier_id=supplier.id,
            lines=[{"product_id": product.id, "quantity": 10, "unit_cost_cents": 400}],
        )
        headers = business_headers(business.id)

        response = client.post(
            f"/api/purchases/{purchase.id}/payments",
            json={"account_id": bank_account.id, "amount_cents": 4_000},
            headers=headers,
        )

        assert response.status_code == 201
        assert response.get_json()["payment_number"] == "SP-1001"
        fetched = client.get(f"/api/purchases/{purchase.id}", headers=headers).get_json()
        assert fetched["payment_status"] == "PAID"
        assert fetched["paid_cents"] == 4_000
        listed = client.get(f"/api/purchases/{purchase.id}/payments", headers=headers).get_json()
        assert [p["amount_cents"] for p in listed["payments"]] == [4_000]
        assert client.get(f"/api/accounts/{bank_account.id}", headers=headers).get_json()["balance_cents"] == 96_000

    def test_other_business_cannot_pay(self, client, business, other_business, supplier, product, bank_account):
        purchase = purchase_service.create_purchase(
            business_id=business.id,
            supplier_id=supplier.id,
            lines=[{"product_id": product.id, "quantity": 1, "unit_cost_cents": 400}],
        )
        their_account = account_service.create_account(
            business_id=other_business.id, name="South Bank", account_type="SAVINGS", opening_balance_cents=5_000
        )

        with_own_account = client.post(
            f"/api/purchases/{purchase.id}/payments",
            json={"account_id": their_account.id, "amount_cents": 100},
            headers=business_headers(other_business.id),
        )
        with_owner_account = client.post(
            f"/api/purchases/{purchase.id}/payments",
            json={"account_id": bank_account.id, "amount_cents": 100},
            headers=business_headers(other_business.id),
        )

        assert with_own_account.status_code == 404
        assert with_owner_account.status_code == 404
        assert purchase_service.get_purchase(purchase.id).paid_cents == 0
