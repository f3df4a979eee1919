from __future__ import annotations

from datetime import datetime, timezone

import pytest

from app.core.settings import settings
from app.models.enums import IntegrationCategory
from app.models.integration import IntegrationConnection
from app.models.invoice import Invoice
from app.services import profile as profile_service
from app.services.invoices import create_invoice


@pytest.fixture()
def sent_mail(monkeypatch):
    sent = []
    monkeypatch.setattr(profile_service, "send_email_verification", lambda user, token: sent.append((user.email, token)))
    return sent


def test_get_profile(client, user):
    body = client.get("/api/profile").json()
    assert body["id"] == user.id
    assert body["full_name"] == "Asha Rao"
    assert body["preferences"]["language"] == "en"


def test_update_profile_fields(client):
    response = client.put(
        "/api/profile",
        json={
            "first_name": "  Meera ",
            "pan_number": "ABCDE1234F",
            "gst_registration_number": "27AAPFU0939F1ZV",
            "website": "https://rao.example.com",
            "experience_years": 7,
        },
    )
    assert response.status_code == 200
    body = response.json()
    assert body["first_name"] == "Meera"
    assert body["pan_number"] == "ABCDE1234F"
    assert body["website"].startswith("https://rao.example.com")


@pytest.mark.parametrize(
    "payload",
    [
        {"pan_number": "ABCD1234F"},
        {"gst_registration_number": "27AAPFU0939F1Z"},
        {"experience_years": 51},
        {"bio": "x" * 501},
    ],
)
def test_invalid_profile_fields_are_rejected(client, payload):
    response = client.put("/api/profile", json=payload)
    assert response.status_code == 400
    assert response.json()["message"] == "Validation errors"


def test_change_email_resets_verification(client, user, sent_mail, password):
    response = client.put("/api/profile/email", json={"new_email": "Asha.New@Example.com", "password": password})
    assert response.status_code == 200
    body = response.json()
    assert body["email"] == "asha.new@example.com"
    assert body["email_verified"] is False
    assert sent_mail == [("asha.new@example.com", user.email_verification_token)]


def test_change_email_checks_password_and_uniqueness(client, make_user, sent_mail, password):
    taken = make_user()
    assert client.put("/api/profile/email", json={"new_email": "x@example.com", "password": "wrong"}).status_code == 400
    conflict = client.put("/api/profile/email", json={"new_email": taken.email, "password": password})
    assert conflict.status_code == 409
    assert sent_mail == []


def test_change_mobile_normalizes_and_detects_conflicts(client, make_user, password):
    response = client.put("/api/profile/mobile", json={"new_mobile": "+91 98765 43210", "password": password})
    assert response.status_code == 200
    assert response.json()["mobile"] == "9876543210"
    assert response.json()["mobile_verified"] is False

    make_user(mobile="9123456780")
    conflict = client.put("/api/profile/mobile", json={"new_mobile": "9123456780", "password": password})
    assert conflict.status_code == 409

    invalid = client.put("/api/profile/mobile", json={"new_mobile": "5123456789", "password": password})
    assert invalid.status_code == 400


def test_preferences_merge(client):
    client.put("/api/profile/preferences", json={"notifications": {"sms": True}})
    body = client.put("/api/profile/preferences", json={"language": "hi", "privacy": {"show_email": True}}).json()
    prefs = body["preferences"]
    assert prefs["language"] == "hi"
    assert prefs["notifications"]["sms"] is True
    assert prefs["notifications"]["email"] is True
    assert prefs["privacy"]["show_email"] is True
    assert prefs["privacy"]["profile_visibility"] == "members_only"


def test_avatar_upload_replaces_previous_file(client, monkeypatch, tmp_path):
    monkeypatch.setattr(settings, "uploads_dir", str(tmp_path))

    first = client.post("/api/profile/avatar", files={"avatar": ("me.png", b"\x89PNG first", "image/png")}).json()
    first_file = tmp_path / "avatars" / first["avatar_url"].rsplit("/", 1)[-1]
    assert first_file.exists()

    second = client.post("/api/profile/avatar", files={"avatar": ("me.jpg", b"jpeg bytes", "image/jpeg")}).json()
    assert second["avatar_url"].endswith(".jpg")
    assert not first_file.exists()

    rejected = client.post("/api/profile/avatar", files={"avatar": ("notes.txt", b"hello", "text/plain")})
    assert rejected.status_code == 400


def test_avatar_size_limit(client, monkeypatch, tmp_path):
    monkeypatch.setattr(settings, "uploads_dir", str(tmp_path))
    monkeypatch.setattr(settings, "avatar_max_bytes", 4)
    response = client.post("/api/profile/avatar", files={"avatar": ("me.png", b"too large", "image/png")})
    assert response.status_code == 400
    assert response.json()["detail"] == "File too large"


def test_delete_account_requires_confirmation(client, password):
    response = client.request("DELETE", "/api/profile", json={"password": password, "confirm_text": "delete"})
    assert response.status_code == 400


def test_delete_account_keeps_invoices(client, db, user, password):
    create_invoice(db, user_id=user.id, data={"items": [{"description": "Audit", "unit_price": "100"}]})
    db.add(
        IntegrationConnection(
            user_id=user.id,
            category=IntegrationCategory.ACCOUNTING.value,
            connected_at=datetime.now(timezone.utc),
            provider="tally",
            encrypted_credentials="opaque",
        )
    )
    db.commit()

    assert client.request(
        "DELETE", "/api/profile", json={"password": "wrong", "confirm_text": "DELETE MY ACCOUNT"}
    ).status_code == 400

    response = client.request("DELETE", "/api/profile", json={"password": password, "confirm_text": "DELETE MY ACCOUNT"})
    assert response.status_code == 200
    assert response.json() == {"success": True, "message": "Account deleted successfully"}

    db.refresh(user)
    assert user.is_active is False
    assert user.email == f"deleted-{user.id}@invalid.local"
    assert user.hashed_password is None
    assert db.query(IntegrationConnection).count() == 0
    assert db.query(Invoice).filter(Invoice.user_id == user.id).count() == 1
