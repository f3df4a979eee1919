from __future__ import annotations

import base64
import hashlib
import json
import threading
import time

import httpx
import pytest

from app.core.security import decrypt_credentials
from app.core.settings import settings
from app.models.integration import IntegrationConnection
from app.services import integrations
from app.services.gstn import GSTNClient
from app.services.integration_providers import IntegrationError, phonepe_checksum


@pytest.fixture()
def encryption_key(monkeypatch):
    monkeypatch.setattr(settings, "encryption_key", "unit-test-encryption-key")


@pytest.fixture()
def gstn_credentials(monkeypatch):
    monkeypatch.setattr(settings, "gstn_api_url", "https://gst.example.com")
    monkeypatch.setattr(settings, "gstn_client_id", "client")
    monkeypatch.setattr(settings, "gstn_client_secret", "secret")


def test_unknown_category_and_provider_fail_without_raising():
    assert integrations.dispatch("crypto", "btc", "connect")["success"] is False

    result = integrations.dispatch("accounting", "xero", "connect", {})
    assert result["success"] is False
    assert "Unsupported accounting software: xero" == result["error"]


def test_unsupported_accounting_key_on_connect(db, user, encryption_key):
    result = integrations.connect_accounting(db, user, "xero", {"server_url": "http://tally.local"})
    assert result["success"] is False
    assert db.query(IntegrationConnection).count() == 0


@pytest.mark.parametrize(
    ("category", "provider", "operation"),
    [
        ("accounting", "sage", "connect"),
        ("payment", "payu", "process_payment"),
        ("payment", "stripe", "setup_recurring"),
        ("upi", "googlepay", "initiate_payment"),
    ],
)
def test_registered_providers_without_capability_report_not_supported(category, provider, operation):
    result = integrations.dispatch(category, provider, operation, {})
    assert result["success"] is False
    assert result["not_supported"] is True


def test_transport_errors_become_failure_results(monkeypatch):
    adapter = integrations.get_adapter("payment", "razorpay")
    monkeypatch.setattr(settings, "razorpay_key_id", "rzp_key")
    monkeypatch.setattr(settings, "razorpay_key_secret", "rzp_secret")

    def fake_request(method, url, *, timeout=None, **kwargs):  # noqa: ANN001
        raise httpx.ConnectError("connection refused")

    monkeypatch.setattr(adapter, "_request", fake_request)
    result = integrations.process_payment({"amount": 100, "currency": "INR", "user_id": 1})
    assert result == {"success": False, "error": "connection refused"}


def test_razorpay_order_uses_paise(monkeypatch):
    adapter = integrations.get_adapter("payment", "razorpay")
    monkeypatch.setattr(settings, "razorpay_key_id", "rzp_key")
    monkeypatch.setattr(settings, "razorpay_key_secret", "rzp_secret")
    seen = {}

    def fake_request(method, url, *, timeout=None, **kwargs):  # noqa: ANN001
        seen.update(kwargs["json"])
        return {"id": "order_1", "status": "created", "currency": "INR"}

    monkeypatch.setattr(adapter, "_request", fake_request)
    result = integrations.process_payment({"amount": "199.99", "currency": "INR", "user_id": 7})
    assert result["success"] is True
    assert result["order_id"] == "order_1"
    assert seen["amount"] == 19999


def test_gstn_token_is_cached_until_expiry(monkeypatch, gstn_credentials):
    now = {"t": 1000.0}
    client = GSTNClient(clock=lambda: now["t"])
    calls = {"auth": 0, "search": 0}

    def fake_request(method, url, *, timeout=None, **kwargs):  # noqa: ANN001
        if url.endswith("/authenticate"):
            calls["auth"] += 1
            return {"access_token": f"token-{calls['auth']}", "expires_in": 3600}
        calls["search"] += 1
        assert kwargs["headers"]["Authorization"] == f"Bearer token-{calls['auth']}"
        return {"status": "Active", "gstin": kwargs["params"]["gstin"]}

    monkeypatch.setattr(client, "_request", fake_request)

    assert client.validate_gstin("27AAPFU0939F1ZV")["is_valid"] is True
    assert client.validate_gstin("27AAPFU0939F1ZV")["is_valid"] is True
    assert calls == {"auth": 1, "search": 2}

    now["t"] += 3600
    client.validate_gstin("27AAPFU0939F1ZV")
    assert calls["auth"] == 2


def test_gstn_refresh_is_single_flight(monkeypatch, gstn_credentials):
    client = GSTNClient()
    calls = {"auth": 0}
    lock = threading.Lock()

    def fake_request(method, url, *, timeout=None, **kwargs):  # noqa: ANN001
        with lock:
            calls["auth"] += 1
        time.sleep(0.05)
        return {"access_token": "shared-token", "expires_in": 600}

    monkeypatch.setattr(client, "_request", fake_request)

    tokens = []
    start = threading.Barrier(8)

    def worker():
        start.wait()
        tokens.append(client.authenticate())

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert calls["auth"] == 1
    assert tokens == ["shared-token"] * 8


def test_gstn_without_credentials_reports_failure(monkeypatch):
    monkeypatch.setattr(settings, "gstn_client_id", None)
    client = GSTNClient()
    monkeypatch.setitem(integrations.REGISTRY["tax_authority"], "gstn", client)

    result = integrations.validate_gstin("27AAPFU0939F1ZV")
    assert result["success"] is False
    assert result["is_valid"] is False
    assert "not configured" in result["error"]


def test_connect_and_sync_round_trip_encrypted_credentials(db, user, monkeypatch, encryption_key):
    adapter = integrations.get_adapter("accounting", "tally")
    requested = []

    def fake_request(method, url, *, timeout=None, **kwargs):  # noqa: ANN001
        requested.append((url, timeout))
        if url.endswith("/api/company"):
            return [{"name": "Rao Traders"}]
        return [
            {
                "voucherId": "V1",
                "voucherNumber": "S-001",
                "date": "2026-10-01",
                "partyName": "Acme",
                "amount": 1180,
                "taxAmount": 180,
            }
        ]

    monkeypatch.setattr(adapter, "_request", fake_request)

    connected = integrations.connect_accounting(db, user, "tally", {"server_url": "http://tally.local:9000"})
    assert connected["success"] is True
    db.commit()

    connection = db.query(IntegrationConnection).one()
    assert connection.provider == "tally"
    assert "tally.local" not in connection.encrypted_credentials
    assert decrypt_credentials(connection.encrypted_credentials) == {"server_url": "http://tally.local:9000"}
    assert requested[0] == ("http://tally.local:9000/api/company", settings.tally_connect_timeout_seconds)

    synced = integrations.sync_accounting(db, user, "all")
    assert synced["success"] is True
    results = synced["sync_results"]
    assert results["invoices"]["count"] == 1
    assert results["invoices"]["invoices"][0]["invoice_number"] == "S-001"
    assert results["purchases"]["not_supported"] is True
    assert results["customers"]["not_supported"] is True
    assert connection.last_synced_at is not None

    status = integrations.integration_status(db, user)
    assert status["accounting"]["connected"] is True
    assert status["accounting"]["software"] == "tally"


def test_connect_without_encryption_key_stores_nothing(db, user, monkeypatch):
    monkeypatch.setattr(settings, "encryption_key", None)
    adapter = integrations.get_adapter("accounting", "tally")
    monkeypatch.setattr(adapter, "_request", lambda method, url, **kwargs: [])

    result = integrations.connect_accounting(db, user, "tally", {})
    assert result["success"] is False
    assert db.query(IntegrationConnection).count() == 0


def test_sync_without_connection(db, user):
    result = integrations.sync_accounting(db, user)
    assert result == {"success": False, "error": "No accounting software connected"}
    assert integrations.integration_status(db, user)["accounting"] == {"connected": False}


def test_phonepe_request_is_signed(monkeypatch):
    adapter = integrations.get_adapter("upi", "phonepe")
    monkeypatch.setattr(settings, "phonepe_merchant_id", "MERCHANT")
    monkeypatch.setattr(settings, "phonepe_salt_key", "salt")
    monkeypatch.setattr(settings, "phonepe_salt_index", "2")
    captured = {}

    def fake_request(method, url, *, timeout=None, **kwargs):  # noqa: ANN001
        captured.update(kwargs)
        return {"code": "PAYMENT_INITIATED", "data": {"state": "PENDING"}}

    monkeypatch.setattr(adapter, "_request", fake_request)
    result = integrations.initiate_upi_payment({"amount": 10, "upi_id": "asha@okbank", "user_id": 3})
    assert result["success"] is True

    encoded = captured["json"]["request"]
    body = json.loads(base64.b64decode(encoded))
    assert body["amount"] == 1000
    assert body["paymentInstrument"] == {"type": "UPI_COLLECT", "vpa": "asha@okbank"}
    expected = hashlib.sha256((encoded + "/pg/v1/pay" + "salt").encode()).hexdigest() + "###2"
    assert captured["headers"]["X-VERIFY"] == expected
    assert phonepe_checksum("/pg/v1/status/M/T", "salt", "2").endswith("###2")


def test_bank_verification_failure_is_not_valid(monkeypatch):
    monkeypatch.setattr(settings, "bank_verification_api_key", None)
    result = integrations.verify_bank_account("123456789012", "HDFC0001234")
    assert result["success"] is False
    assert result["is_valid"] is False


def test_status_endpoint(client):
    body = client.get("/api/integrations/status").json()
    assert body["success"] is True
    assert body["integrations"]["accounting"] == {"connected": False}
    assert "razorpay" in body["integrations"]["payment"]["gateways"]
    assert "payu" not in body["integrations"]["payment"]["gateways"]


def test_gstin_format_is_checked_before_calling_out(client):
    response = client.post("/api/integrations/gstn/validate-gstin", json={"gstin": "27AAPFU0939F1Z"})
    assert response.status_code == 400
    assert response.json()["message"] == "Validation errors"


def test_not_supported_gateway_maps_to_400(client):
    response = client.post(
        "/api/integrations/payment/process",
        json={"amount": 100, "currency": "INR", "gateway": "payu"},
    )
    assert response.status_code == 400
    assert "not supported" in response.json()["detail"]


def test_gstn_reauthenticates_once_when_token_is_rejected(monkeypatch, gstn_credentials):
    client = GSTNClient()
    calls = {"auth": 0, "search": 0}

    def fake_request(method, url, *, timeout=None, **kwargs):  # noqa: ANN001
        if url.endswith("/authenticate"):
            calls["auth"] += 1
            return {"access_token": f"token-{calls['auth']}", "expires_in": 3600}
        calls["search"] += 1
        if kwargs["headers"]["Authorization"] == "Bearer token-1":
            raise IntegrationError("GSTN returned HTTP 401", status_code=401)
        return {"status": "Active"}

    monkeypatch.setattr(client, "_request", fake_request)
    assert client.validate_gstin("27AAPFU0939F1ZV")["is_valid"] is True
    assert calls == {"auth": 2, "search": 2}


def test_gstn_does_not_retry_other_errors(monkeypatch, gstn_credentials):
    client = GSTNClient()
    calls = {"search": 0}

    def fake_request(method, url, *, timeout=None, **kwargs):  # noqa: ANN001
        if url.endswith("/authenticate"):
            return {"access_token": "token", "expires_in": 3600}
        calls["search"] += 1
        raise IntegrationError("GSTN returned HTTP 500", status_code=500)

    monkeypatch.setattr(client, "_request", fake_request)
    with pytest.raises(IntegrationError):
        client.validate_gstin("27AAPFU0939F1ZV")
    assert calls["search"] == 1
