from __future__ import annotations

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from app.core.security import create_access_token
from app.db.session import get_db
from app.main import app


@pytest.fixture()
def token_client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    client_instance = TestClient(app)
    try:
        yield client_instance
    finally:
        client_instance.close()
        app.dependency_overrides.clear()


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def test_valid_token_resolves_user(token_client, user):
    response = token_client.get("/api/profile", headers=_bearer(create_access_token({"sub": str(user.id)})))
    assert response.status_code == 200
    assert response.json()["id"] == user.id


def test_missing_or_garbage_token_is_rejected(token_client):
    assert token_client.get("/api/profile").status_code == 401
    assert token_client.get("/api/profile", headers=_bearer("not-a-jwt")).status_code == 401


def test_expired_token_is_rejected(token_client, user):
    token = create_access_token({"sub": str(user.id)}, expires_delta=timedelta(minutes=-5))
    assert token_client.get("/api/profile", headers=_bearer(token)).status_code == 401


def test_deactivated_user_is_rejected(token_client, db, user):
    token = create_access_token({"sub": str(user.id)})
    user.is_active = False
    db.commit()
    response = token_client.get("/api/profile", headers=_bearer(token))
    assert response.status_code == 401
    assert response.headers["WWW-Authenticate"] == "Bearer"


def test_token_without_subject_is_rejected(token_client):
    assert token_client.get("/api/profile", headers=_bearer(create_access_token({"role": "user"}))).status_code == 401
