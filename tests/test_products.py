from bson import ObjectId

import catalog


def _product_body(**overrides):
    body = {
        "name": "Desk Lamp",
        "brand": "Lumen",
        "description": "Adjustable arm",
        "price": 39.0,
        "category": "Home",
        "images": ["https://img.test/lamp.jpg"],
        "stock": 12,
    }
    body.update(overrides)
    return body


class TestProductReads:
    def test_list_and_search(self, client, make_product):
        make_product(name="Blue Mug", category="Kitchen")
        make_product(name="Red Mug", category="Kitchen")
        make_product(name="Tent", category="Outdoor")

        assert len(client.get("/products").json()) == 3
        assert {p["name"] for p in client.get("/products?q=mug").json()} == {"Blue Mug", "Red Mug"}
        assert [p["name"] for p in client.get("/products?category=Outdoor").json()] == ["Tent"]

    def test_search_is_literal(self, client, make_product):
        make_product(name="Widget")

        assert client.get("/products", params={"q": ".*"}).json() == []

    def test_get_one(self, client, make_product):
        product_id = make_product(name="Lamp")

        response = client.get(f"/products/{product_id}")

        assert response.status_code == 200
        assert response.json()["id"] == product_id
        assert "_id" not in response.json()

    def test_missing(self, client):
        response = client.get(f"/products/{ObjectId()}")

        assert response.status_code == 404
        assert response.json()["error"] == "PRODUCT_NOT_FOUND"

    def test_invalid_id(self, client):
        assert client.get("/products/xyz").status_code == 400


class TestProductWrites:
    def test_admin_creates_updates_and_deletes(self, client, db, admin_headers):
        created = client.post("/products", json=_product_body(), headers=admin_headers)
        assert created.status_code == 201
        product_id = created.json()["id"]

        updated = client.put(f"/products/{product_id}", json={"price": 35.5, "stock": 4}, headers=admin_headers)
        assert updated.status_code == 200
        stored = db["product"].find_one({"_id": ObjectId(product_id)})
        assert stored["price"] == 35.5
        assert stored["stock"] == 4
        assert stored["name"] == "Desk Lamp"

        assert client.delete(f"/products/{product_id}", headers=admin_headers).status_code == 200
        assert db["product"].count_documents({}) == 0

    def test_empty_update(self, client, admin_headers, make_product):
        product_id = make_product()

        response = client.put(f"/products/{product_id}", json={}, headers=admin_headers)

        assert response.status_code == 400

    def test_negative_stock_rejected(self, client, admin_headers):
        response = client.post("/products", json=_product_body(stock=-1), headers=admin_headers)

        assert response.status_code == 400

    def test_customer_cannot_write(self, client, customer_headers):
        response = client.post("/products", json=_product_body(), headers=customer_headers)

        assert response.status_code == 403

    def test_delete_missing(self, client, admin_headers):
        assert client.delete(f"/products/{ObjectId()}", headers=admin_headers).status_code == 404


class TestStockReservation:
    def test_reserve_only_when_available(self, db, make_product):
        product_id = ObjectId(make_product(stock=2))

        assert catalog.reserve_stock(db, product_id, 2)["stock"] == 0
        assert catalog.reserve_stock(db, product_id, 1) is None

        catalog.release_stock(db, product_id, 2)
        assert db["product"].find_one({"_id": product_id})["stock"] == 2

    def test_seed_runs_once(self, db):
        assert catalog.seed_products(db) == len(catalog.DEMO_PRODUCTS)
        assert catalog.seed_products(db) == 0
