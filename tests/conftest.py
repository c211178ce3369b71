import mongomock
import pytest
from fastapi.testclient import TestClient

from config import Settings
from database import utcnow
from main import create_app
from notifications import FakeEmailAdapter
from payments import FakeGateway
from security import create_token, hash_password


@pytest.fixture()
def settings():
    return Settings(
        environment="test",
        jwt_secret="test-secret",
        bcrypt_rounds=4,
        frontend_url="https://shop.test",
    )


@pytest.fixture()
def db():
    client = mongomock.MongoClient(tz_aware=True)
    yield client["storefront_test"]
    client.close()


@pytest.fixture()
def gateway():
    return FakeGateway()


@pytest.fixture()
def mailer():
    return FakeEmailAdapter()


@pytest.fixture()
def app(settings, db, gateway, mailer):
    return create_app(settings, db=db, gateway=gateway, mailer=mailer)


@pytest.fixture()
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def make_user(db):
    def _make(email="shopper@example.com", password="secret123", role="user", name="Shopper", **extra):
        now = utcnow()
        doc = {
            "name": name,
            "email": email,
            "password_hash": hash_password(password, rounds=4),
            "role": role,
            "profile_picture": "",
            "is_active": True,
            "is_email_verified": False,
            "created_at": now,
            "updated_at": now,
        }
        doc.update(extra)
        doc["_id"] = db["user"].insert_one(doc).inserted_id
        return doc

    return _make


@pytest.fixture()
def auth_headers(settings):
    def _headers(user):
        token = create_token(str(user["_id"]), user["role"], settings)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture()
def customer(make_user):
    return make_user()


@pytest.fixture()
def admin_user(make_user):
    return make_user(email="admin@example.com", role="admin", name="Admin")


@pytest.fixture()
def customer_headers(customer, auth_headers):
    return auth_headers(customer)


@pytest.fixture()
def admin_headers(admin_user, auth_headers):
    return auth_headers(admin_user)


@pytest.fixture()
def make_product(db):
    def _make(name="Widget", price=25.0, stock=10, **extra):
        now = utcnow()
        doc = {
            "name": name,
            "brand": "Acme",
            "description": "",
            "price": price,
            "category": "General",
            "images": [f"https://img.test/{name.lower()}.jpg"],
            "stock": stock,
            "created_at": now,
            "updated_at": now,
        }
        doc.update(extra)
        return str(db["product"].insert_one(doc).inserted_id)

    return _make


@pytest.fixture()
def order_payload():
    def _payload(items, payment_method="card", **overrides):
        body = {
            "items": [{"product": product_id, "quantity": qty} for product_id, qty in items],
            "shipping_address": {
                "street": "1 Market St",
                "city": "Springfield",
                "state": "IL",
                "zip_code": "62701",
                "country": "US",
            },
            "payment_method": payment_method,
        }
        body.update(overrides)
        return body

    return _payload
