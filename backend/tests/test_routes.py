from decimal import Decimal

from conftest import CASHIER_TOKEN, OTHER_STORE_TOKEN, OWNER_TOKEN, auth_headers
from tillcore.models import Sale, SaleLineItem


class TestAuth:
    def test_missing_token(self, client, db_session):
        response = client.post("/api/sales/quote", json={"items": []})
        assert response.status_code == 401

    def test_unknown_token(self, client, db_session):
        response = client.post("/api/sales/quote", json={"items": []}, headers=auth_headers("nope"))
        assert response.status_code == 401

    def test_cashier_cannot_view_history(self, client, db_session):
        response = client.get("/api/sales", headers=auth_headers(CASHIER_TOKEN))
        assert response.status_code == 403
        assert response.get_json()["required_permission"] == "VIEW_SALES"


class TestSalesRoutes:
    def test_quote(self, client, db_session, store, make_product):
        store.tax_enabled = True
        store.tax_kind = "fixed"
        store.tax_value = Decimal("5")
        db_session.commit()
        item = make_product(price="25.00")

        response = client.post(
            "/api/sales/quote",
            json={"items": [{"product_id": item.id, "quantity": 2}]},
            headers=auth_headers(CASHIER_TOKEN),
        )

        assert response.status_code == 200
        body = response.get_json()
        assert body["totals"]["grand_total"] == "55.00"
        assert body["next_transaction_id"] == "TRX-00001"

    def test_quote_empty_cart(self, client, db_session, store):
        response = client.post("/api/sales/quote", json={"items": []}, headers=auth_headers(CASHIER_TOKEN))
        assert response.status_code == 200
        assert response.get_json()["totals"]["checkout_enabled"] is False

    def test_checkout_and_fetch(self, client, db_session, sender, store, product):
        response = client.post(
            "/api/sales/checkout",
            json={
                "items": [{"product_id": product.id, "quantity": 3}],
                "payment_method": "momo",
                "customer": {"name": "Ama", "phone": "0241234567"},
            },
            headers=auth_headers(CASHIER_TOKEN),
        )

        assert response.status_code == 201
        body = response.get_json()
        assert body["transaction_id"] == "TRX-00001"
        assert body["warnings"] == []
        assert body["is_new_customer"] is True
        assert body["points_earned"] == 30
        assert body["sale"]["employee_id"] == "emp-cashier"
        assert len(body["sale"]["items"]) == 1

        detail = client.get(f"/api/sales/{body['sale_id']}", headers=auth_headers(OWNER_TOKEN))
        assert detail.status_code == 200
        assert detail.get_json()["sale"]["payment_method"] == "momo"

    def test_checkout_idempotency_header(self, client, db_session, sender, store, product):
        payload = {"items": [{"product_id": product.id, "quantity": 1}], "payment_method": "cash"}
        headers = {**auth_headers(CASHIER_TOKEN), "Idempotency-Key": "till-7-42"}

        first = client.post("/api/sales/checkout", json=payload, headers=headers)
        second = client.post("/api/sales/checkout", json=payload, headers=headers)

        assert first.status_code == 201
        assert second.status_code == 200
        assert second.get_json()["replayed"] is True
        assert db_session.query(Sale).count() == 1

    def test_checkout_redemption_rejected(self, client, db_session, sender, store, product, make_customer):
        customer = make_customer(points=80)
        response = client.post(
            "/api/sales/checkout",
            json={
                "items": [{"product_id": product.id, "quantity": 1}],
                "payment_method": "cash",
                "customer": {"phone": customer.phone},
                "redeem_points": True,
            },
            headers=auth_headers(CASHIER_TOKEN),
        )
        assert response.status_code == 400
        assert response.get_json()["code"] == "BelowMinimumBalance"

    def test_checkout_insufficient_stock(self, app, client, db_session, sender, store, make_product):
        app.config["ALLOW_NEGATIVE_STOCK"] = False
        item = make_product(stock=1)
        response = client.post(
            "/api/sales/checkout",
            json={"items": [{"product_id": item.id, "quantity": 2}], "payment_method": "cash"},
            headers=auth_headers(CASHIER_TOKEN),
        )
        assert response.status_code == 409
        assert response.get_json()["code"] == "InsufficientStock"

    def test_checkout_validation_error(self, client, db_session, sender, store):
        response = client.post(
            "/api/sales/checkout",
            json={"items": [], "payment_method": "cash"},
            headers=auth_headers(CASHIER_TOKEN),
        )
        assert response.status_code == 400

    def test_history_is_store_scoped(self, client, db_session, sender, store, product):
        client.post(
            "/api/sales/checkout",
            json={"items": [{"product_id": product.id, "quantity": 1}], "payment_method": "cash"},
            headers=auth_headers(CASHIER_TOKEN),
        )

        mine = client.get("/api/sales", headers=auth_headers(OWNER_TOKEN)).get_json()
        theirs = client.get("/api/sales", headers=auth_headers(OTHER_STORE_TOKEN)).get_json()

        assert mine["total"] == 1
        assert theirs["total"] == 0

    def test_owner_deletes_sale_with_items(self, client, db_session, sender, store, product):
        created = client.post(
            "/api/sales/checkout",
            json={"items": [{"product_id": product.id, "quantity": 1}], "payment_method": "cash"},
            headers=auth_headers(CASHIER_TOKEN),
        ).get_json()

        response = client.delete(f"/api/sales/{created['sale_id']}", headers=auth_headers(OWNER_TOKEN))

        assert response.status_code == 200
        assert db_session.query(Sale).count() == 0
        assert db_session.query(SaleLineItem).count() == 0

    def test_cashier_cannot_delete(self, client, db_session, sender, store, product):
        created = client.post(
            "/api/sales/checkout",
            json={"items": [{"product_id": product.id, "quantity": 1}], "payment_method": "cash"},
            headers=auth_headers(CASHIER_TOKEN),
        ).get_json()

        response = client.delete(f"/api/sales/{created['sale_id']}", headers=auth_headers(CASHIER_TOKEN))
        assert response.status_code == 403
        assert db_session.query(Sale).count() == 1

    def test_delete_other_store_sale_not_found(self, client, db_session, sender, store, product):
        created = client.post(
            "/api/sales/checkout",
            json={"items": [{"product_id": product.id, "quantity": 1}], "payment_method": "cash"},
            headers=auth_headers(CASHIER_TOKEN),
        ).get_json()

        response = client.delete(f"/api/sales/{created['sale_id']}", headers=auth_headers(OTHER_STORE_TOKEN))
        assert response.status_code == 404


class TestLoyaltyRoutes:
    def test_lookup_and_redeem(self, client, db_session, store, make_customer):
        customer = make_customer(points=120)

        lookup = client.get(f"/api/loyalty/customers/{customer.phone}", headers=auth_headers(CASHIER_TOKEN))
        assert lookup.status_code == 200
        assert lookup.get_json()["can_redeem"] is True

        redeem = client.post(
            "/api/loyalty/redeem",
            json={"phone": customer.phone, "points": 50, "reason": "Free drink"},
            headers=auth_headers(CASHIER_TOKEN),
        )
        assert redeem.status_code == 200
        assert redeem.get_json()["points_balance"] == 70

        ledger = client.get(f"/api/loyalty/customers/{customer.id}/ledger", headers=auth_headers(CASHIER_TOKEN))
        body = ledger.get_json()
        assert body["ledger_balance"] == 70
        assert [e["points"] for e in body["entries"]] == [-50, 120]

    def test_redeem_rejection_code(self, client, db_session, store, make_customer):
        customer = make_customer(points=80)
        response = client.post(
            "/api/loyalty/redeem",
            json={"phone": customer.phone, "points": 10},
            headers=auth_headers(CASHIER_TOKEN),
        )
        assert response.status_code == 400
        assert response.get_json()["code"] == "BelowMinimumBalance"

    def test_lookup_unknown_phone(self, client, db_session, store):
        response = client.get("/api/loyalty/customers/0550000000", headers=auth_headers(CASHIER_TOKEN))
        assert response.status_code == 404

    def test_lookup_create(self, client, db_session, store):
        response = client.get(
            "/api/loyalty/customers/0550000000?create=true&name=Yaw",
            headers=auth_headers(CASHIER_TOKEN),
        )
        assert response.status_code == 200
        assert response.get_json()["customer"]["name"] == "Yaw"

    def test_stats(self, client, db_session, store, make_customer):
        make_customer(points=40)
        response = client.get("/api/loyalty/stats", headers=auth_headers(CASHIER_TOKEN))
        assert response.get_json()["stats"]["points_issued"] == 40


class TestStoreRoutes:
    def test_update_and_read_settings(self, client, db_session, store):
        response = client.put(
            f"/api/stores/{store.id}/settings",
            json={
                "receipt_prefix": "SHOP",
                "tax_settings": {"enabled": True, "type": "percentage", "value": "12.5"},
                "loyalty": {"earn_rate": "2", "min_redemption_points": 50},
                "messaging": {"notify_customer_whatsapp": True},
            },
            headers=auth_headers(OWNER_TOKEN),
        )
        assert response.status_code == 200
        body = response.get_json()
        assert body["store"]["receipt_prefix"] == "SHOP"
        assert body["store"]["tax_settings"] == {"enabled": True, "type": "percentage", "value": "12.5000"}
        assert body["loyalty"]["min_redemption_points"] == 50
        assert body["messaging"]["notify_customer_whatsapp"] is True

        quote = client.post("/api/sales/quote", json={"items": []}, headers=auth_headers(OWNER_TOKEN))
        assert quote.get_json()["next_transaction_id"] == "SHOP-00001"

    def test_invalid_tax_type(self, client, db_session, store):
        response = client.put(
            f"/api/stores/{store.id}/settings",
            json={"tax_settings": {"type": "compound"}},
            headers=auth_headers(OWNER_TOKEN),
        )
        assert response.status_code == 400

    def test_cashier_cannot_manage_store(self, client, db_session, store):
        response = client.get(f"/api/stores/{store.id}/settings", headers=auth_headers(CASHIER_TOKEN))
        assert response.status_code == 403

    def test_other_store_denied(self, client, db_session, store):
        response = client.get(f"/api/stores/{store.id}/settings", headers=auth_headers(OTHER_STORE_TOKEN))
        assert response.status_code == 403


class TestNotificationRoutes:
    def test_list_and_mark_read(self, client, db_session, sender, store, product):
        client.post(
            "/api/sales/checkout",
            json={"items": [{"product_id": product.id, "quantity": 1}], "payment_method": "cash"},
            headers=auth_headers(CASHIER_TOKEN),
        )

        listed = client.get("/api/notifications?unread=true", headers=auth_headers(OWNER_TOKEN)).get_json()
        assert [n["type"] for n in listed["notifications"]] == ["order"]

        notification_id = listed["notifications"][0]["id"]
        marked = client.post(f"/api/notifications/{notification_id}/read", headers=auth_headers(OWNER_TOKEN))
        assert marked.get_json()["notification"]["is_read"] is True

        unread = client.get("/api/notifications?unread=true", headers=auth_headers(OWNER_TOKEN)).get_json()
        assert unread["notifications"] == []


class TestHealth:
    def test_health(self, client, db_session):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.get_json()["checks"]["database"]["status"] == "healthy"
