# Overview: Pytest coverage for the HTTP surface and its error mapping.

from conftest import imei_for


class TestHealth:

    def test_health(self, client, db_session):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.get_json()["checks"]["database"]["status"] == "healthy"


class TestProductRoutes:

    def test_create_and_list_with_resolved_stock(self, client, db_session, phone):
        product, _ = phone
        resp = client.post("/api/products", json={"name": "Screen protector", "price": "5.00", "stock": 12})
        assert resp.status_code == 201

        items = client.get("/api/products").get_json()["items"]
        stock_by_name = {p["name"]: p["stock"] for p in items}
        assert stock_by_name == {"Galaxy A14": 5, "Screen protector": 12}

    def test_validation_error_is_400(self, client, db_session):
        resp = client.post("/api/products", json={"price": "5.00"})
        assert resp.status_code == 400

    def test_missing_product_is_404(self, client, db_session):
        assert client.get("/api/products/999").status_code == 404

    def test_stock_write_on_tracked_product_rejected(self, client, db_session, phone):
        product, _ = phone
        resp = client.patch(f"/api/products/{product.id}", json={"stock": 50})
        assert resp.status_code == 400


class TestProductModelRoutes:

    def test_create_link_and_delete(self, client, db_session):
        resp = client.post("/api/product-models", json={"id": "PM-13", "name": "iPhone 13", "brand": "Apple"})
        assert resp.status_code == 201
        assert client.get("/api/product-models/PM-13").get_json()["product_model"]["brand"] == "Apple"

        resp = client.post("/api/products", json={"name": "iPhone 13 128GB", "product_model_id": "PM-13"})
        assert resp.status_code == 201
        product_id = resp.get_json()["product"]["id"]

        assert client.delete("/api/product-models/PM-13").status_code == 409
        client.patch(f"/api/products/{product_id}", json={"product_model_id": None})
        assert client.delete("/api/product-models/PM-13").status_code == 200
        assert client.get("/api/product-models/PM-13").status_code == 404

    def test_unknown_model_on_product_is_400(self, client, db_session):
        resp = client.post("/api/products", json={"name": "Ghost", "product_model_id": "NOPE"})
        assert resp.status_code == 400


class TestInventoryRoutes:

    def test_register_and_duplicate(self, client, db_session, make_product):
        product = make_product(tracked=True)
        body = {"product_id": product.id, "imei": imei_for(900)}
        assert client.post("/api/inventory-items", json=body).status_code == 201
        assert client.post("/api/inventory-items", json=body).status_code == 409

    def test_lookup_by_imei(self, client, db_session, phone):
        _, units = phone
        resp = client.get("/api/inventory-items", query_string={"imei": units[1].imei})
        assert [i["id"] for i in resp.get_json()["items"]] == [units[1].id]


class TestSaleRoutes:

    def test_partial_sale_is_2xx_with_summary(self, client, db_session, make_product, make_units):
        product = make_product("Pixel 7", tracked=True)
        make_units(product, 1)
        resp = client.post("/api/sales", json={"items": [{"productId": product.id, "quantity": 2}]})

        assert resp.status_code == 201
        body = resp.get_json()
        assert body["ok"] is False
        assert body["shortfalls"][0]["missing"] == 1
        assert body["record"]["status"] == "completed"

    def test_allocation_mismatch_is_422(self, client, db_session, phone, make_product):
        _, units = phone
        other = make_product("Other", tracked=True)
        resp = client.post("/api/sales", json={
            "items": [{"productId": other.id, "quantity": 1, "inventoryItemIds": [units[0].id]}]
        })
        assert resp.status_code == 422

    def test_delete_twice(self, client, db_session, make_product):
        cable = make_product(stock=3)
        sale_id = client.post("/api/sales", json={
            "items": [{"productId": cable.id, "quantity": 1}]
        }).get_json()["record"]["id"]

        assert client.delete(f"/api/sales/{sale_id}").get_json()["noop"] is False
        assert client.delete(f"/api/sales/{sale_id}").get_json()["noop"] is True
        assert client.get(f"/api/sales/{sale_id}").status_code == 404


class TestSwapAndDebtRoutes:

    def test_swap_round_trip(self, client, db_session, phone):
        product, _ = phone
        resp = client.post("/api/swaps", json={
            "purchased_product_id": product.id,
            "trade_in_imei": "123456789012345",
            "trade_in_value": 600,
            "difference_paid": 900,
            "trade_in_product_name": "Used iPhone 11",
        })
        assert resp.status_code == 201
        swap_id = resp.get_json()["record"]["id"]

        resp = client.delete(f"/api/swaps/{swap_id}")
        assert resp.status_code == 200
        assert resp.get_json()["ok"] is True

    def test_debt_payment(self, client, db_session, make_customer):
        customer = make_customer()
        debt_id = client.post("/api/debts", json={"amount": 50, "customer_id": customer.id}).get_json()["debt"]["id"]

        resp = client.post(f"/api/debts/{debt_id}/payments", json={"amount": 50, "method": "cash"})
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["record"]["status"] == "paid"
        assert body["related"]["payment"]["amount"] == 50.0

        assert client.post(f"/api/debts/{debt_id}/payments", json={"amount": 0}).status_code == 400
