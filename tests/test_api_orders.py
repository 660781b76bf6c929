"""API tests for the order routes."""

from conftest import DELIVERY_ADDRESS, auth_header


def place(client, *lines, token="customer-token", **extra):
    body = {
        "items": [{"product_id": str(pid), "quantity": qty} for pid, qty in lines],
        "delivery_address": DELIVERY_ADDRESS,
        "payment_method": "online",
        **extra,
    }
    return client.post("/api/orders", json=body, headers=auth_header(token))


class TestCreateOrder:
    def test_created(self, client, db, make_product):
        pid = make_product(price=500)

        response = place(client, (pid, 2))

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["message"] == "Order created successfully"
        order = body["data"]["order"]
        assert order["order_id"].startswith("KAKE")
        assert order["order_summary"]["total"] == 1050
        assert order["items"][0]["product_id"] == str(pid)
        assert order["delivery_status"] == "on-time"
        assert db["product"].find_one({"_id": pid})["availability"]["quantity"] == 8

    def test_requires_token(self, client, make_product):
        response = client.post(
            "/api/orders",
            json={
                "items": [{"product_id": str(make_product()), "quantity": 1}],
                "delivery_address": DELIVERY_ADDRESS,
                "payment_method": "cod",
            },
        )

        assert response.status_code == 401
        assert response.json()["success"] is False

    def test_empty_items_rejected(self, client):
        response = client.post(
            "/api/orders",
            json={"items": [], "delivery_address": DELIVERY_ADDRESS, "payment_method": "cod"},
            headers=auth_header(),
        )

        assert response.status_code == 400
        body = response.json()
        assert body["message"] == "Validation failed"
        assert any(e["field"] == "items" for e in body["errors"])

    def test_invalid_pincode_rejected(self, client, make_product):
        address = {**DELIVERY_ADDRESS, "pincode": "12345"}
        response = client.post(
            "/api/orders",
            json={
                "items": [{"product_id": str(make_product()), "quantity": 1}],
                "delivery_address": address,
                "payment_method": "cod",
            },
            headers=auth_header(),
        )

        assert response.status_code == 400
        assert any(e["field"].endswith("pincode") for e in response.json()["errors"])

    def test_malformed_product_id(self, client):
        response = place(client, ("not-an-id", 1))

        assert response.status_code == 400
        assert response.json()["errors"][0]["field"] == "product_id"

    def test_out_of_stock_is_business_error(self, client, make_product):
        pid = make_product(availability={"in_stock": False, "quantity": 0})

        response = place(client, (pid, 1))

        assert response.status_code == 400
        assert "out of stock" in response.json()["message"]


class TestReadOrders:
    def test_list_own_orders_only(self, client, make_product):
        pid = make_product()
        place(client, (pid, 1))
        place(client, (pid, 1))
        place(client, (pid, 1), token="other-token")

        response = client.get("/api/orders", headers=auth_header())

        data = response.json()["data"]
        assert len(data["orders"]) == 2
        assert data["pagination"]["total"] == 2
        assert data["orders"][0]["items"][0]["product"]["name"].startswith("Test Cake")

    def test_filter_by_status(self, client, make_product):
        pid = make_product()
        first = place(client, (pid, 1)).json()["data"]["order"]
        place(client, (pid, 1))
        client.put(f"/api/orders/{first['order_id']}/cancel", headers=auth_header())

        response = client.get("/api/orders", params={"status": "cancelled"}, headers=auth_header())

        orders = response.json()["data"]["orders"]
        assert [o["order_id"] for o in orders] == [first["order_id"]]

    def test_get_by_id_and_order_id(self, client, make_product):
        order = place(client, (make_product(), 1)).json()["data"]["order"]

        by_id = client.get(f"/api/orders/{order['id']}", headers=auth_header())
        by_ref = client.get(f"/api/orders/{order['order_id'].lower()}", headers=auth_header())

        assert by_id.status_code == 200
        assert by_ref.json()["data"]["order"]["id"] == order["id"]

    def test_other_users_order_is_not_found(self, client, make_product):
        order = place(client, (make_product(), 1)).json()["data"]["order"]

        response = client.get(f"/api/orders/{order['order_id']}", headers=auth_header("other-token"))

        assert response.status_code == 404
        assert response.json() == {"success": False, "message": "Order not found"}


class TestCancelAndRate:
    def test_cancel_with_reason(self, client, db, make_product):
        pid = make_product()
        order = place(client, (pid, 3)).json()["data"]["order"]

        response = client.put(
            f"/api/orders/{order['order_id']}/cancel",
            json={"reason": "Ordered by mistake"},
            headers=auth_header(),
        )

        assert response.status_code == 200
        data = response.json()["data"]["order"]
        assert data["status"] == "cancelled"
        assert data["cancellation_reason"] == "Ordered by mistake"
        assert db["product"].find_one({"_id": pid})["availability"]["quantity"] == 10

    def test_cancel_twice_rejected(self, client, make_product):
        order = place(client, (make_product(), 1)).json()["data"]["order"]
        client.put(f"/api/orders/{order['order_id']}/cancel", headers=auth_header())

        response = client.put(f"/api/orders/{order['order_id']}/cancel", headers=auth_header())

        assert response.status_code == 400
        assert response.json()["message"] == "Order cannot be cancelled at this stage"

    def test_rate_delivered_order(self, client, make_product):
        order = place(client, (make_product(), 1)).json()["data"]["order"]
        client.put(
            f"/api/orders/{order['order_id']}/status",
            json={"status": "delivered"},
            headers=auth_header("admin-token"),
        )

        response = client.put(
            f"/api/orders/{order['order_id']}/rating",
            json={"overall": 4, "food": 5, "delivery": 3, "comment": "Lovely"},
            headers=auth_header(),
        )

        assert response.status_code == 200
        assert response.json()["data"]["rating"]["overall"] == 4

    def test_rating_out_of_range(self, client, make_product):
        order = place(client, (make_product(), 1)).json()["data"]["order"]

        response = client.put(
            f"/api/orders/{order['order_id']}/rating",
            json={"overall": 6, "food": 5, "delivery": 5},
            headers=auth_header(),
        )

        assert response.status_code == 400


class TestAdminRoutes:
    def test_status_update_requires_admin(self, client, make_product):
        order = place(client, (make_product(), 1)).json()["data"]["order"]

        response = client.put(
            f"/api/orders/{order['order_id']}/status",
            json={"status": "confirmed"},
            headers=auth_header(),
        )

        assert response.status_code == 403
        assert response.json()["message"] == "Admin access required."

    def test_status_update(self, client, make_product):
        order = place(client, (make_product(), 1)).json()["data"]["order"]

        response = client.put(
            f"/api/orders/{order['order_id']}/status",
            json={"status": "baking", "notes": "In the oven"},
            headers=auth_header("admin-token"),
        )

        data = response.json()["data"]["order"]
        assert data["status"] == "baking"
        assert data["notes"] == "In the oven"
        assert set(data["timeline"]) == {"pending", "baking"}

    def test_unknown_status_rejected(self, client, make_product):
        order = place(client, (make_product(), 1)).json()["data"]["order"]

        response = client.put(
            f"/api/orders/{order['order_id']}/status",
            json={"status": "shipped"},
            headers=auth_header("admin-token"),
        )

        assert response.status_code == 400

    def test_all_orders_include_customer(self, client, make_product):
        pid = make_product()
        place(client, (pid, 1))
        place(client, (pid, 1), token="other-token")

        response = client.get("/api/orders/admin/all", headers=auth_header("admin-token"))

        orders = response.json()["data"]["orders"]
        assert len(orders) == 2
        assert {o["user"]["phone"] for o in orders} == {"9876543210", "9812345678"}

    def test_stats(self, client, make_product):
        pid = make_product(price=500)
        place(client, (pid, 2))

        response = client.get("/api/orders/admin/stats", headers=auth_header("admin-token"))

        stats = response.json()["data"]["stats"]
        assert stats["total_orders"] == 1
        assert stats["total_revenue"] == 1050
        assert stats["status_breakdown"]["pending"]["count"] == 1
