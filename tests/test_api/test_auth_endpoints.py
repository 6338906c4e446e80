"""
API tests for the authentication endpoints

Exercises registration, login, sessions via cookie and header, and the
password reset round trip against a fresh app per test.
"""
import pytest
from datetime import datetime, timedelta

from core.auth import SessionTokenCodec
from core.models import User


def error_code(response) -> str:
    return response.json()["error"]["code"]


def token_for(user: dict, secret: str, issued_at: datetime = None) -> str:
    clock = (lambda: issued_at) if issued_at else None
    account = User(id=user["id"], username=user["username"], email=user["email"], password_hash="x")
    return SessionTokenCodec(secret, clock=clock).issue_session(account)


class TestRegister:
    """Test POST /auth/register"""

    def test_register_success(self, test_client):
        response = test_client.post(
            "/auth/register",
            json={"username": "Alice", "email": "Alice@Example.com", "password": "pw-alice"},
        )

        assert response.status_code == 201
        data = response.json()
        assert data["user"]["username"] == "alice"
        assert data["user"]["email"] == "alice@example.com"
        assert data["user"]["plan"] == "free"
        assert "passwordHash" not in data["user"]
        assert "password_hash" not in data["user"]
        assert data["token"]

        set_cookie = response.headers["set-cookie"]
        assert "token=" in set_cookie
        assert "HttpOnly" in set_cookie
        assert "samesite=lax" in set_cookie.lower()
        assert "Max-Age=604800" in set_cookie

    def test_register_missing_field(self, test_client):
        response = test_client.post(
            "/auth/register", json={"username": "bob", "email": "bob@example.com"}
        )

        assert response.status_code == 400
        assert error_code(response) == "VALIDATION_ERROR"
        assert response.json()["error"]["details"]["field"] == "password"

    def test_register_duplicate(self, test_client, register_user):
        register_user("carol")

        response = test_client.post(
            "/auth/register",
            json={"username": "CAROL", "email": "new@example.com", "password": "pw"},
        )

        assert response.status_code == 400
        assert response.json()["error"]["details"]["field"] == "username"

    def test_register_malformed_body(self, test_client):
        response = test_client.post(
            "/auth/register",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert error_code(response) == "VALIDATION_ERROR"


class TestLogin:
    """Test POST /auth/login and /auth/logout"""

    def test_login_sets_cookie_and_tracks_first_login(self, test_client, register_user):
        register_user("dave", password="pw-dave")

        response = test_client.post(
            "/auth/login", json={"email": "dave@example.com", "password": "pw-dave"}
        )

        assert response.status_code == 200
        assert response.json()["user"]["isFirstLogin"] is True
        assert response.json()["user"]["lastLogin"] is not None
        assert test_client.cookies.get("token") == response.json()["token"]

        again = test_client.post(
            "/auth/login", json={"email": "dave@example.com", "password": "pw-dave"}
        )
        assert again.json()["user"]["isFirstLogin"] is False

    def test_wrong_password_and_unknown_email_look_the_same(
        self, test_client, register_user
    ):
        register_user("erin", password="pw-erin")

        wrong = test_client.post(
            "/auth/login", json={"email": "erin@example.com", "password": "nope"}
        )
        unknown = test_client.post(
            "/auth/login", json={"email": "ghost@example.com", "password": "nope"}
        )

        assert wrong.status_code == unknown.status_code == 401
        assert error_code(wrong) == error_code(unknown) == "INVALID_CREDENTIALS"
        assert wrong.json()["error"]["message"] == unknown.json()["error"]["message"]

    def test_login_missing_fields(self, test_client):
        response = test_client.post("/auth/login", json={"email": "x@example.com"})
        assert response.status_code == 400

    def test_logout_clears_cookie(self, test_client, register_user):
        register_user("frank", password="pw-frank")
        test_client.post(
            "/auth/login", json={"email": "frank@example.com", "password": "pw-frank"}
        )

        response = test_client.post("/auth/logout")

        assert response.status_code == 200
        assert test_client.get("/auth/me").status_code == 401


class TestSessions:
    """Test credential extraction through /auth/me and protected routes"""

    def test_me_via_bearer_header(self, test_client, register_user, auth_headers):
        account = register_user("grace")

        response = test_client.get("/auth/me", headers=auth_headers(account["token"]))

        assert response.status_code == 200
        user = response.json()["user"]
        assert user["id"] == account["user"]["id"]
        assert user["username"] == "grace"
        assert set(user) >= {"id", "username", "email", "plan", "status", "customDomain", "createdAt"}

    def test_me_via_raw_header(self, test_client, register_user):
        account = register_user("heidi")

        response = test_client.get("/auth/me", headers={"Authorization": account["token"]})

        assert response.status_code == 200

    def test_me_via_cookie(self, test_client, register_user):
        account = register_user("ivan")
        test_client.cookies.set("token", account["token"])

        assert test_client.get("/auth/me").status_code == 200

    def test_no_token(self, test_client):
        response = test_client.get("/auth/me")

        assert response.status_code == 401
        assert error_code(response) == "NO_TOKEN"

    def test_cookie_is_authoritative(self, test_client, register_user, auth_headers):
        account = register_user("judy")
        test_client.cookies.set("token", "garbage")

        response = test_client.get("/portfolio", headers=auth_headers(account["token"]))

        assert response.status_code == 401
        assert error_code(response) == "TOKEN_INVALID"

    def test_expired_token_distinguishable(
        self, test_client, register_user, test_settings, auth_headers
    ):
        account = register_user("mallory")
        expired = token_for(
            account["user"],
            test_settings.jwt_secret,
            issued_at=datetime.utcnow() - timedelta(days=8),
        )

        response = test_client.get("/portfolio", headers=auth_headers(expired))

        assert response.status_code == 401
        assert error_code(response) == "TOKEN_EXPIRED"

    def test_forged_token_invalid(self, test_client, register_user, auth_headers):
        account = register_user("niaj")
        forged = token_for(account["user"], "someone-elses-secret")

        response = test_client.get("/portfolio", headers=auth_headers(forged))

        assert response.status_code == 401
        assert error_code(response) == "TOKEN_INVALID"

    def test_token_for_vanished_user(self, test_client, test_settings, auth_headers):
        ghost = {"id": "no-such-id", "username": "ghost", "email": "ghost@example.com"}

        response = test_client.get(
            "/portfolio", headers=auth_headers(token_for(ghost, test_settings.jwt_secret))
        )

        assert response.status_code == 404
        assert error_code(response) == "USER_NOT_FOUND"


class TestPasswordReset:
    """Test forgot-password and reset-password"""

    def test_forgot_password_always_200(self, test_client, register_user, reset_notifier):
        register_user("oscar")

        known = test_client.post("/auth/forgot-password", json={"email": "oscar@example.com"})
        unknown = test_client.post("/auth/forgot-password", json={"email": "nobody@example.com"})

        assert known.status_code == unknown.status_code == 200
        assert known.json() == unknown.json()
        assert len(reset_notifier.sent) == 1
        assert reset_notifier.sent[0][1].startswith("http://frontend.test/reset-password/")

    def test_reset_round_trip(self, test_client, register_user, reset_notifier):
        register_user("peggy", password="old-pw")
        test_client.post("/auth/forgot-password", json={"email": "peggy@example.com"})

        response = test_client.post(
            "/auth/reset-password",
            json={"token": reset_notifier.last_token, "newPassword": "new-pw"},
        )

        assert response.status_code == 200
        assert test_client.post(
            "/auth/login", json={"email": "peggy@example.com", "password": "new-pw"}
        ).status_code == 200
        assert test_client.post(
            "/auth/login", json={"email": "peggy@example.com", "password": "old-pw"}
        ).status_code == 401

    def test_session_token_rejected_for_reset(self, test_client, register_user):
        account = register_user("rupert")

        response = test_client.post(
            "/auth/reset-password",
            json={"token": account["token"], "newPassword": "new-pw"},
        )

        assert response.status_code == 400
        assert response.json()["error"]["details"]["field"] == "token"

    def test_reset_token_rejected_as_session(
        self, test_client, register_user, reset_notifier, auth_headers
    ):
        register_user("sybil")
        test_client.post("/auth/forgot-password", json={"email": "sybil@example.com"})

        response = test_client.get("/auth/me", headers=auth_headers(reset_notifier.last_token))

        assert response.status_code == 401
        assert error_code(response) == "TOKEN_INVALID"

    def test_reset_missing_fields(self, test_client):
        response = test_client.post("/auth/reset-password", json={"token": "abc"})
        assert response.status_code == 400
