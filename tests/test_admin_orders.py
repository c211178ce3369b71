import pytest
from bson import ObjectId


@pytest.fixture()
def order_id(client, customer_headers, make_product, order_payload):
    product_id = make_product(price=15.0, stock=10)
    response = client.post("/orders", json=order_payload([(product_id, 2)], payment_method="cod"), headers=customer_headers)
    return response.json()["order_id"]


def _history(db, order_id):
    return db["order"].find_one({"_id": ObjectId(order_id)})["status_history"]


class TestUpdateOrderStatus:
    def test_sets_status_and_appends_history(self, client, db, admin_headers, order_id):
        response = client.put(
            f"/admin/orders/{order_id}/status",
            json={"status": "shipped", "note": "Left the warehouse"},
            headers=admin_headers,
        )

        assert response.status_code == 200
        assert response.json()["order"]["status"] == "shipped"
        history = _history(db, order_id)
        assert [h["status"] for h in history] == ["processing", "shipped"]
        assert history[-1]["note"] == "Left the warehouse"

    def test_history_is_append_only(self, client, db, admin_headers, order_id):
        for status in ("shipped", "delivered", "shipped"):
            client.put(f"/admin/orders/{order_id}/status", json={"status": status}, headers=admin_headers)

        history = _history(db, order_id)
        assert [h["status"] for h in history] == ["processing", "shipped", "delivered", "shipped"]
        assert history[1]["note"] == "Status updated to shipped"

    def test_sends_status_email(self, client, mailer, admin_headers, order_id):
        mailer.reset()

        client.put(f"/admin/orders/{order_id}/status", json={"status": "delivered"}, headers=admin_headers)

        assert len(mailer.sent_emails) == 1
        assert "Delivered" in mailer.sent_emails[0]["body"]

    def test_email_failure_keeps_the_change(self, client, db, mailer, admin_headers, order_id):
        mailer.configure(should_succeed=False)

        response = client.put(f"/admin/orders/{order_id}/status", json={"status": "cancelled"}, headers=admin_headers)

        assert response.status_code == 200
        assert db["order"].find_one({"_id": ObjectId(order_id)})["status"] == "cancelled"

    def test_unknown_status(self, client, admin_headers, order_id):
        response = client.put(f"/admin/orders/{order_id}/status", json={"status": "teleported"}, headers=admin_headers)

        assert response.status_code == 400

    def test_missing_order(self, client, admin_headers):
        response = client.put(f"/admin/orders/{ObjectId()}/status", json={"status": "shipped"}, headers=admin_headers)

        assert response.status_code == 404

    def test_customer_is_forbidden(self, client, customer_headers, order_id):
        response = client.put(f"/admin/orders/{order_id}/status", json={"status": "shipped"}, headers=customer_headers)

        assert response.status_code == 403
        assert response.json()["error"] == "ADMIN_REQUIRED"

    def test_anonymous_is_unauthenticated(self, client, order_id):
        response = client.put(f"/admin/orders/{order_id}/status", json={"status": "shipped"})

        assert response.status_code == 401


class TestAdminOrderReads:
    def test_list_shapes_orders(self, client, admin_headers, order_id):
        response = client.get("/admin/orders", headers=admin_headers)

        assert response.status_code == 200
        [order] = response.json()
        assert order["order_number"] == order_id[-6:]
        assert order["customer"]["email"] == "shopper@example.com"
        assert order["items"][0]["total"] == 30.0

    def test_details(self, client, admin_headers, order_id):
        response = client.get(f"/admin/orders/{order_id}", headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["id"] == order_id

    def test_invalid_id(self, client, admin_headers):
        response = client.get("/admin/orders/not-an-id", headers=admin_headers)

        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_ID"


class TestDeleteOrder:
    def test_delete_then_missing(self, client, db, admin_headers, order_id):
        response = client.delete(f"/admin/orders/{order_id}", headers=admin_headers)

        assert response.status_code == 200
        assert db["order"].count_documents({}) == 0
        assert client.delete(f"/admin/orders/{order_id}", headers=admin_headers).status_code == 404
