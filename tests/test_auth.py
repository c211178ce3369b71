from datetime import timedelta

from accounts import INVALID_CREDENTIALS
from config import Settings
from security import TOKEN_COOKIE, create_token, verify_password


def _register(client, **overrides):
    body = {"name": "New Shopper", "email": "New@Example.com", "password": "hunter22"}
    body.update(overrides)
    return client.post("/auth/register", json=body)


class TestRegister:
    def test_creates_user_with_hashed_password(self, client, db):
        response = _register(client)

        assert response.status_code == 201
        data = response.json()
        assert data["email"] == "new@example.com"
        assert data["role"] == "user"
        assert data["token"]
        assert TOKEN_COOKIE in response.cookies

        stored = db["user"].find_one({"email": "new@example.com"})
        assert stored["password_hash"] != "hunter22"
        assert verify_password("hunter22", stored["password_hash"])
        assert "google_id" not in stored

    def test_duplicate_email(self, client, customer):
        response = _register(client, email=customer["email"])

        assert response.status_code == 400
        assert response.json()["error"] == "EMAIL_EXISTS"

    def test_short_password(self, client):
        response = _register(client, password="abc")

        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"

    def test_invalid_email(self, client):
        assert _register(client, email="not-an-email").status_code == 400


class TestLogin:
    def test_success(self, client, customer):
        response = client.post("/auth/login", json={"email": "Shopper@example.com", "password": "secret123"})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["user"]["id"] == str(customer["_id"])
        assert data["redirect_url"] == "/"

    def test_admin_is_sent_to_dashboard(self, client, admin_user):
        response = client.post("/auth/login", json={"email": admin_user["email"], "password": "secret123"})

        assert response.json()["redirect_url"] == "/admin/dashboard"

    def test_wrong_password_and_unknown_email_share_message(self, client, customer):
        wrong = client.post("/auth/login", json={"email": customer["email"], "password": "nope-nope"})
        unknown = client.post("/auth/login", json={"email": "ghost@example.com", "password": "secret123"})

        assert wrong.status_code == unknown.status_code == 400
        assert wrong.json()["error"] == "INVALID_PASSWORD"
        assert unknown.json()["error"] == "USER_NOT_FOUND"
        assert wrong.json()["message"] == unknown.json()["message"] == INVALID_CREDENTIALS

    def test_google_only_account_has_no_password(self, client, make_user):
        make_user(email="oauth@example.com", password_hash=None, google_id="g-1")

        response = client.post("/auth/login", json={"email": "oauth@example.com", "password": "anything"})

        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_PASSWORD"

    def test_disabled_account(self, client, make_user):
        make_user(email="gone@example.com", is_active=False)

        response = client.post("/auth/login", json={"email": "gone@example.com", "password": "secret123"})

        assert response.json()["error"] == "ACCOUNT_DISABLED"


class TestGoogleLogin:
    def _login(self, client, email="g@example.com", sub="google-123", picture="https://img.test/me.png"):
        return client.post(
            "/auth/google",
            json={"access_token": "ya29.token", "user_info": {"sub": sub, "email": email, "name": "G User", "picture": picture}},
        )

    def test_creates_verified_user(self, client, db):
        response = self._login(client)

        assert response.status_code == 200
        user = response.json()["user"]
        assert user["is_email_verified"] is True
        assert user["profile_picture"] == "https://img.test/me.png"
        stored = db["user"].find_one({"email": "g@example.com"})
        assert stored["google_id"] == "google-123"
        assert "password_hash" not in stored

    def test_links_existing_account(self, client, db, customer):
        response = self._login(client, email=customer["email"])

        assert response.json()["user"]["id"] == str(customer["_id"])
        assert db["user"].count_documents({}) == 1
        stored = db["user"].find_one({"_id": customer["_id"]})
        assert stored["google_id"] == "google-123"
        assert stored["is_email_verified"] is True
        # local password still works after linking
        assert verify_password("secret123", stored["password_hash"])

    def test_disabled_account(self, client, db, make_user):
        make_user(email="g@example.com", google_id="google-123", is_active=False)

        response = self._login(client)

        assert response.status_code == 400
        assert response.json()["error"] == "ACCOUNT_DISABLED"
        assert TOKEN_COOKIE not in response.cookies

    def test_second_login_reuses_user(self, client, db):
        first = self._login(client)
        second = self._login(client)

        assert first.json()["user"]["id"] == second.json()["user"]["id"]
        assert db["user"].count_documents({}) == 1


class TestCurrentUser:
    def test_with_bearer_token(self, client, customer, customer_headers):
        response = client.get("/auth/me", headers=customer_headers)

        assert response.status_code == 200
        assert response.json()["id"] == str(customer["_id"])
        assert "password_hash" not in response.json()

    def test_with_cookie(self, client, settings, customer):
        client.cookies.set(TOKEN_COOKIE, create_token(str(customer["_id"]), "user", settings))

        response = client.get("/auth/me")

        assert response.status_code == 200

    def test_without_token(self, client):
        response = client.get("/auth/me")

        assert response.status_code == 401
        assert response.json()["error"] == "NO_TOKEN"

    def test_garbage_token(self, client):
        response = client.get("/auth/me", headers={"Authorization": "Bearer not.a.jwt"})

        assert response.status_code == 401
        assert response.json()["error"] == "INVALID_TOKEN"

    def test_expired_token(self, client, settings, customer):
        token = create_token(str(customer["_id"]), "user", settings, expires_in=timedelta(seconds=-10))

        response = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401
        assert response.json()["error"] == "TOKEN_EXPIRED"

    def test_token_signed_with_other_secret(self, client, customer):
        forged = create_token(str(customer["_id"]), "admin", Settings(jwt_secret="other"))

        response = client.get("/auth/me", headers={"Authorization": f"Bearer {forged}"})

        assert response.json()["error"] == "INVALID_TOKEN"

    def test_deleted_user(self, client, db, customer, customer_headers):
        db["user"].delete_one({"_id": customer["_id"]})

        assert client.get("/auth/me", headers=customer_headers).status_code == 401

    def test_role_comes_from_the_database(self, client, settings, customer):
        token = create_token(str(customer["_id"]), "admin", settings)

        response = client.get("/admin/dashboard", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 403


def test_logout_clears_cookie(client):
    response = client.post("/auth/logout")

    assert response.status_code == 200
    assert TOKEN_COOKIE in response.headers.get("set-cookie", "")
