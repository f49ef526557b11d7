"""
Tests for the authentication endpoints and the error mapping.

Tests cover:
- Registration seeding default categories and tags
- Login, duplicate email, wrong password, inactive user
- Profile update and password change
- Token validation (expired, malformed)
- Unexpected errors surfacing as a generic 500
"""

import logging
from datetime import timedelta

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

import models
from main import app
from tests.conftest import auth_header, create_auth_token

logger = logging.getLogger(__name__)


def test_register_seeds_defaults(client: TestClient, test_db: Session):
    response = client.post(
        "/api/auth/register",
        json={"name": "New User", "email": "New.User@Example.com", "password": "correct-horse"},
    )

    assert response.status_code == 201, response.json()
    body = response.json()
    assert body["token_type"] == "bearer"
    assert body["user"]["email"] == "new.user@example.com"

    headers = {"Authorization": f"Bearer {body['access_token']}"}
    categories = client.get("/api/categories", headers=headers).json()
    tags = client.get("/api/tags", headers=headers).json()
    assert len(categories) == 5
    assert len(tags) == 5
    logger.info("✓ Registration seeded default categories and tags")


def test_register_duplicate_email(client: TestClient, owner_user: models.User):
    response = client.post(
        "/api/auth/register",
        json={"name": "Again", "email": owner_user.email, "password": "password123"},
    )
    assert response.status_code == 409


def test_login(client: TestClient, owner_user: models.User):
    response = client.post(
        "/api/auth/login", json={"email": owner_user.email, "password": "password123"}
    )
    assert response.status_code == 200
    token = response.json()["access_token"]

    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.json()["id"] == owner_user.id


def test_login_wrong_password(client: TestClient, owner_user: models.User):
    response = client.post(
        "/api/auth/login", json={"email": owner_user.email, "password": "wrong-password"}
    )
    assert response.status_code == 401


def test_inactive_user_rejected(client: TestClient, test_db: Session, owner_user: models.User):
    owner_user.is_active = False
    test_db.commit()

    response = client.post(
        "/api/auth/login", json={"email": owner_user.email, "password": "password123"}
    )
    assert response.status_code == 403
    assert client.get("/api/auth/me", headers=auth_header(owner_user)).status_code == 403


def test_expired_and_malformed_tokens(client: TestClient, owner_user: models.User):
    expired = create_auth_token(owner_user, expires_delta=timedelta(minutes=-5))
    response = client.get("/api/auth/me", headers={"Authorization": f"Bearer {expired}"})
    assert response.status_code == 401

    response = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401


def test_update_profile_preferences(client: TestClient, owner_user: models.User):
    response = client.put(
        "/api/auth/me",
        json={"name": "Renamed", "preferences": {"theme": "dark"}},
        headers=auth_header(owner_user),
    )
    assert response.status_code == 200, response.json()
    body = response.json()
    assert body["name"] == "Renamed"
    assert body["preferences"]["theme"] == "dark"
    assert body["preferences"]["default_view"] == "list"


def test_update_profile_null_name_keeps_name(client: TestClient, owner_user: models.User):
    headers = auth_header(owner_user)

    response = client.put(
        "/api/auth/me", json={"name": None, "avatar": "https://example.com/a.png"}, headers=headers
    )
    assert response.status_code == 200, response.json()
    assert response.json()["name"] == "Owner User"
    assert response.json()["avatar"] == "https://example.com/a.png"

    # avatar is nullable and can be cleared
    response = client.put("/api/auth/me", json={"avatar": None, "preferences": None}, headers=headers)
    assert response.status_code == 200, response.json()
    assert response.json()["avatar"] is None
    assert response.json()["preferences"]["default_view"] == "list"
    logger.info("✓ Null name left profile unchanged")


def test_change_password(client: TestClient, owner_user: models.User):
    headers = auth_header(owner_user)

    response = client.put(
        "/api/auth/password",
        json={"current_password": "wrong-password", "new_password": "new-password-1"},
        headers=headers,
    )
    assert response.status_code == 401

    response = client.put(
        "/api/auth/password",
        json={"current_password": "password123", "new_password": "new-password-1"},
        headers=headers,
    )
    assert response.status_code == 200

    response = client.post(
        "/api/auth/login", json={"email": owner_user.email, "password": "new-password-1"}
    )
    assert response.status_code == 200


def test_unexpected_error_is_generic_500(test_db: Session, owner_user: models.User):
    from database import get_db

    def broken_db():
        raise RuntimeError("connection pool exhausted")
        yield  # pragma: no cover

    app.dependency_overrides[get_db] = broken_db
    try:
        with TestClient(app, raise_server_exceptions=False) as broken_client:
            response = broken_client.get("/api/tasks", headers=auth_header(owner_user))
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 500
    assert response.json() == {"detail": "Internal server error"}
