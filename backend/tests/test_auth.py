"""Test authentication endpoints and utilities."""

from datetime import timedelta

import pytest
from fastapi import HTTPException
from jose import jwt

from app.auth import (
    AUTH_COOKIE_NAME,
    create_access_token,
    decode_token,
    hash_password,
    verify_password,
)
from app.config import get_settings


class TestAuthUtilities:
    """Test authentication utility functions."""

    def test_hash_and_verify_password(self):
        hashed = hash_password("correct horse")
        assert hashed != "correct horse"
        assert verify_password("correct horse", hashed)
        assert not verify_password("wrong horse", hashed)

    def test_verify_against_garbage_hash(self):
        assert not verify_password("anything", "not-a-bcrypt-hash")

    def test_create_and_decode_token(self):
        settings = get_settings()
        token = create_access_token("usr_test123456", settings)

        payload = decode_token(token, settings)
        assert payload["sub"] == "usr_test123456"
        assert payload["type"] == "access"
        assert "exp" in payload
        assert "iat" in payload

    def test_expired_token_rejected(self):
        settings = get_settings()
        token = create_access_token("usr_1", settings, expires_delta=timedelta(seconds=-5))
        with pytest.raises(HTTPException) as exc_info:
            decode_token(token, settings)
        assert exc_info.value.status_code == 401

    def test_token_with_wrong_secret_rejected(self):
        settings = get_settings()
        token = jwt.encode({"sub": "usr_1", "type": "access"}, "other-secret", algorithm="HS256")
        with pytest.raises(HTTPException):
            decode_token(token, settings)


class TestLogin:
    def test_login_sets_cookie(self, client, make_user):
        user_id, _ = make_user(email="anna@example.com", password_hash=hash_password("s3cret-pass"))

        response = client.post(
            "/auth/login",
            json={"email": "Anna@Example.com ", "password": "s3cret-pass"},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["user_id"] == user_id
        assert data["token_type"] == "bearer"
        assert decode_token(data["access_token"], get_settings())["sub"] == user_id
        assert f"{AUTH_COOKIE_NAME}=" in response.headers["set-cookie"]

    def test_wrong_password(self, client, make_user):
        make_user(email="anna@example.com", password_hash=hash_password("s3cret-pass"))
        response = client.post("/auth/login", json={"email": "anna@example.com", "password": "nope"})
        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid email or password"

    def test_unknown_email_same_error(self, client):
        response = client.post("/auth/login", json={"email": "ghost@example.com", "password": "nope"})
        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid email or password"

    def test_logout(self, client):
        response = client.post("/auth/logout")
        assert response.status_code == 200
        assert response.json() == {"status": "logged_out"}


class TestCurrentUser:
    def test_me_without_auth(self, client):
        assert client.get("/auth/me").status_code == 401

    def test_me_with_bearer(self, client, make_user):
        user_id, headers = make_user(role="admin", name="Anna")
        response = client.get("/auth/me", headers=headers)
        assert response.status_code == 200
        data = response.json()
        assert data["user_id"] == user_id
        assert data["name"] == "Anna"
        assert data["role"] == "admin"
        assert data["org_id"] == "org_1"

    def test_me_with_cookie(self, client, make_user):
        user_id, headers = make_user()
        token = headers["Authorization"].removeprefix("Bearer ")
        response = client.get("/auth/me", headers={"Cookie": f"{AUTH_COOKIE_NAME}={token}"})
        assert response.status_code == 200
        assert response.json()["user_id"] == user_id

    def test_deleted_user_rejected(self, client):
        from conftest import make_token

        response = client.get("/auth/me", headers={"Authorization": f"Bearer {make_token('usr_gone')}"})
        assert response.status_code == 401

    def test_non_access_token_rejected(self, client, make_user):
        user_id, _ = make_user()
        settings = get_settings()
        token = jwt.encode(
            {"sub": user_id, "type": "refresh"},
            settings.jwt_secret_key,
            algorithm=settings.jwt_algorithm,
        )
        response = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401


class TestChangePassword:
    def test_change_password(self, client, make_user, fake_db):
        user_id, headers = make_user(password_hash=hash_password("old-password"))
        response = client.post(
            "/auth/change-password",
            json={"current_password": "old-password", "new_password": "new-password"},
            headers=headers,
        )
        assert response.status_code == 200
        assert response.json() == {"status": "password_changed"}
        stored = fake_db.rows("user_accounts")[0]["password_hash"]
        assert verify_password("new-password", stored)

    def test_wrong_current_password(self, client, make_user):
        _, headers = make_user(password_hash=hash_password("old-password"))
        response = client.post(
            "/auth/change-password",
            json={"current_password": "guess-1234", "new_password": "new-password"},
            headers=headers,
        )
        assert response.status_code == 400

    def test_same_password_rejected(self, client, make_user):
        _, headers = make_user(password_hash=hash_password("old-password"))
        response = client.post(
            "/auth/change-password",
            json={"current_password": "old-password", "new_password": "old-password"},
            headers=headers,
        )
        assert response.status_code == 400

    def test_short_password_rejected(self, client, make_user):
        _, headers = make_user(password_hash=hash_password("old-password"))
        response = client.post(
            "/auth/change-password",
            json={"current_password": "old-password", "new_password": "short"},
            headers=headers,
        )
        assert response.status_code == 422
