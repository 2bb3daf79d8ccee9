"""
Auth API Tests

Registration, login, token refresh and the current-user endpoints.
"""
from datetime import timedelta

from routes.auth import create_access_token, create_refresh_token


class TestRegister:

    def test_register_investor_returns_tokens(self, client):
        r = client.post("/api/auth/register", json={
            "email": "Ada@Example.com",
            "password": "long-enough-pw",
            "first_name": "Ada",
            "last_name": "Lovelace",
            "role": "investor",
        })
        assert r.status_code == 201
        body = r.json()
        assert body["success"] is True
        assert body["data"]["access_token"]
        assert body["data"]["refresh_token"]
        assert body["data"]["user"]["email"] == "ada@example.com"
        assert body["data"]["user"]["role"] == "investor"

    def test_register_duplicate_email_conflicts(self, client, make_user):
        make_user("seller", email="taken@example.com")
        r = client.post("/api/auth/register", json={
            "email": "taken@example.com",
            "password": "long-enough-pw",
            "first_name": "Dup",
            "last_name": "User",
            "role": "seller",
        })
        assert r.status_code == 409
        assert r.json()["success"] is False

    def test_register_cannot_self_assign_admin(self, client):
        r = client.post("/api/auth/register", json={
            "email": "sneaky@example.com",
            "password": "long-enough-pw",
            "first_name": "Sneaky",
            "last_name": "User",
            "role": "admin",
        })
        assert r.status_code == 400
        assert any(e["field"] == "role" for e in r.json()["errors"])


class TestLogin:

    def test_login_with_valid_credentials(self, client, make_user, password):
        user = make_user("investor", email="login@example.com")
        r = client.post("/api/auth/login", json={"email": "LOGIN@example.com", "password": password})
        assert r.status_code == 200
        assert r.json()["data"]["user"]["id"] == user.id

    def test_login_wrong_password(self, client, make_user):
        make_user("investor", email="login@example.com")
        r = client.post("/api/auth/login", json={"email": "login@example.com", "password": "nope"})
        assert r.status_code == 401
        assert r.json()["message"] == "Invalid email or password"

    def test_deactivated_account_cannot_login(self, client, make_user, password):
        make_user("investor", email="gone@example.com", status="deactivated")
        r = client.post("/api/auth/login", json={"email": "gone@example.com", "password": password})
        assert r.status_code == 401


class TestTokens:

    def test_me_requires_bearer_token(self, client):
        r = client.get("/api/auth/me")
        assert r.status_code == 401
        assert r.json() == {"success": False, "message": "Not authenticated"}

    def test_me_returns_profile(self, client, buyer, auth_headers):
        r = client.get("/api/auth/me", headers=auth_headers(buyer))
        assert r.status_code == 200
        assert r.json()["data"]["email"] == buyer.email

    def test_expired_access_token_rejected(self, client, buyer):
        token = create_access_token({"sub": str(buyer.id)}, expires_delta=timedelta(seconds=-1))
        r = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert r.status_code == 401

    def test_refresh_token_is_not_an_access_token(self, client, buyer):
        token = create_refresh_token({"sub": str(buyer.id)})
        r = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert r.status_code == 401
        assert r.json()["message"] == "Invalid token type"

    def test_refresh_issues_new_pair(self, client, buyer):
        r = client.post("/api/auth/refresh", json={"refresh_token": create_refresh_token({"sub": str(buyer.id)})})
        assert r.status_code == 200
        assert r.json()["data"]["access_token"]

    def test_update_profile(self, client, buyer, auth_headers):
        r = client.patch("/api/auth/me", json={"company": "Lien Capital", "location": "Denver, CO"},
                         headers=auth_headers(buyer))
        assert r.status_code == 200
        assert r.json()["data"]["company"] == "Lien Capital"
        assert r.json()["data"]["role"] == "investor"

    def test_profile_name_cannot_be_nulled(self, client, buyer, auth_headers):
        r = client.patch("/api/auth/me", json={"first_name": None}, headers=auth_headers(buyer))
        assert r.status_code == 400
        assert r.json()["errors"][0]["field"] == "first_name"
