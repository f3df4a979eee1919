from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

from app.models.invoice import Invoice
from app.services import email as email_service
from app.services.invoices import create_invoice
import app.routers.invoices as invoices_router

TODAY = datetime.now(timezone.utc).date()


def _payload(**overrides):
    payload = {
        "issue_date": TODAY.isoformat(),
        "due_date": (TODAY + timedelta(days=15)).isoformat(),
        "items": [
            {"description": "GST filing retainer", "quantity": "1", "unit_price": "1000.00", "tax_rate": "18"},
        ],
        "internal_notes": "priority client",
    }
    payload.update(overrides)
    return payload


def test_create_invoice_assigns_number_and_totals(client):
    response = client.post("/api/invoices", json=_payload())
    assert response.status_code == 201
    body = response.json()
    assert body["invoice_number"] == f"GST-{TODAY:%Y%m}-0001"
    assert body["status"] == "draft"
    assert Decimal(body["subtotal"]) == Decimal("1000.00")
    assert Decimal(body["tax_total"]) == Decimal("180.00")
    assert Decimal(body["total"]) == Decimal("1180.00")
    assert body["internal_notes"] is None
    assert body["items"][0]["order_index"] == 0


def test_list_and_fetch_are_scoped_to_owner(client, acting, make_user):
    own = client.post("/api/invoices", json=_payload()).json()

    acting["user"] = make_user()
    other = client.post("/api/invoices", json=_payload()).json()
    assert other["invoice_number"] == f"GST-{TODAY:%Y%m}-0002"

    listing = client.get("/api/invoices").json()
    assert listing["total"] == 1
    assert [item["id"] for item in listing["items"]] == [other["id"]]
    assert client.get(f"/api/invoices/{own['id']}").status_code == 404


def test_admin_sees_internal_notes_and_all_invoices(client, acting, admin):
    created = client.post("/api/invoices", json=_payload()).json()

    acting["user"] = admin
    fetched = client.get(f"/api/invoices/{created['id']}").json()
    assert fetched["internal_notes"] == "priority client"
    assert client.get("/api/invoices").json()["total"] == 1


def test_lifecycle_conflicts_map_to_409(client):
    invoice = client.post("/api/invoices", json=_payload()).json()

    sent = client.post(f"/api/invoices/{invoice['id']}/send")
    assert sent.status_code == 200
    assert sent.json()["email_sent"] is True

    edit = client.patch(f"/api/invoices/{invoice['id']}", json={"notes": "late edit"})
    assert edit.status_code == 409

    paid = client.post(
        f"/api/invoices/{invoice['id']}/pay",
        json={"payment_method": "upi", "payment_details": {"utr": "UTR123"}},
    )
    assert paid.status_code == 200
    assert paid.json()["status"] == "paid"
    assert paid.json()["payment_details"] == {"utr": "UTR123"}

    assert client.post(f"/api/invoices/{invoice['id']}/cancel", json={}).status_code == 409


def test_refund_requires_admin(client, acting, admin):
    invoice = client.post("/api/invoices", json=_payload(status="paid")).json()
    assert client.post(f"/api/invoices/{invoice['id']}/refund", json={}).status_code == 403

    acting["user"] = admin
    refunded = client.post(f"/api/invoices/{invoice['id']}/refund", json={"refund_details": {"ref": "R1"}})
    assert refunded.status_code == 200
    assert refunded.json()["status"] == "refunded"


def test_remind_counts_only_delivered_reminders(client, monkeypatch):
    invoice = client.post("/api/invoices", json=_payload()).json()
    assert client.post(f"/api/invoices/{invoice['id']}/remind").status_code == 409

    client.post(f"/api/invoices/{invoice['id']}/send")

    def failing(invoice, days):  # noqa: ANN001
        raise email_service.EmailSendError("smtp down")

    monkeypatch.setattr(invoices_router, "send_overdue_reminder", failing)
    assert client.post(f"/api/invoices/{invoice['id']}/remind").status_code == 502

    monkeypatch.setattr(invoices_router, "send_overdue_reminder", lambda invoice, days: None)
    reminded = client.post(f"/api/invoices/{invoice['id']}/remind")
    assert reminded.status_code == 200
    assert reminded.json()["reminders_sent"] == 1


def test_overdue_filter(client, db):
    past = _payload(
        issue_date=(TODAY - timedelta(days=30)).isoformat(),
        due_date=(TODAY - timedelta(days=4)).isoformat(),
        status="sent",
    )
    overdue = client.post("/api/invoices", json=past).json()
    client.post("/api/invoices", json=_payload(status="sent"))

    listing = client.get("/api/invoices", params={"overdue": "true"}).json()
    assert [item["id"] for item in listing["items"]] == [overdue["id"]]
    assert listing["items"][0]["is_overdue"] is True
    assert listing["items"][0]["days_overdue"] == 5

    rows = client.get("/api/invoices/overdue").json()
    assert [row["id"] for row in rows] == [overdue["id"]]


def test_revenue_is_admin_only(client, acting, admin):
    client.post("/api/invoices", json=_payload(status="paid"))
    assert client.get("/api/invoices/revenue").status_code == 403

    acting["user"] = admin
    summary = client.get("/api/invoices/revenue").json()
    assert Decimal(summary["total_revenue"]) == Decimal("1180.00")
    assert summary["total_invoices"] == 1

    inverted = client.get(
        "/api/invoices/revenue",
        params={"start": TODAY.isoformat(), "end": (TODAY - timedelta(days=1)).isoformat()},
    )
    assert inverted.status_code == 400


def test_validation_errors_use_envelope(client):
    response = client.post(
        "/api/invoices",
        json=_payload(items=[{"description": "Bad", "quantity": "0", "unit_price": "10"}]),
    )
    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["message"] == "Validation errors"
    assert any(error["field"] == "items.0.quantity" for error in body["errors"])


def test_due_before_issue_rejected(client, db):
    response = client.post(
        "/api/invoices",
        json=_payload(due_date=(TODAY - timedelta(days=1)).isoformat()),
    )
    assert response.status_code == 400
    assert db.query(Invoice).count() == 0


def test_attachment_upload(client, monkeypatch, tmp_path):
    monkeypatch.setattr(invoices_router.settings, "uploads_dir", str(tmp_path))
    invoice = client.post("/api/invoices", json=_payload()).json()

    response = client.post(
        f"/api/invoices/{invoice['id']}/attachments",
        files={"file": ("../../receipt.pdf", b"%PDF-1.4", "application/pdf")},
    )
    assert response.status_code == 201
    body = response.json()
    assert body["filename"] == "receipt.pdf"
    assert body["size"] == 8
    stored = tmp_path / "invoices" / str(invoice["id"]) / body["url"].rsplit("/", 1)[-1]
    assert stored.read_bytes() == b"%PDF-1.4"


def test_remind_after_mark_overdue_reports_days_past_due(client, monkeypatch):
    late = _payload(
        issue_date=(TODAY - timedelta(days=30)).isoformat(),
        due_date=(TODAY - timedelta(days=5)).isoformat(),
        status="sent",
    )
    invoice = client.post("/api/invoices", json=late).json()
    marked = client.post(f"/api/invoices/{invoice['id']}/mark-overdue").json()
    assert marked["status"] == "overdue"
    assert marked["days_overdue"] == 0

    days_sent = []
    monkeypatch.setattr(invoices_router, "send_overdue_reminder", lambda invoice, days: days_sent.append(days))
    assert client.post(f"/api/invoices/{invoice['id']}/remind").status_code == 200
    assert days_sent == [6]


def test_reminder_wording_before_and_after_due_date(db, user, monkeypatch):
    messages = []
    monkeypatch.setattr(email_service, "send_email", lambda **kwargs: messages.append(kwargs))
    invoice = create_invoice(
        db,
        user_id=user.id,
        data={"due_date": TODAY + timedelta(days=3), "items": [{"description": "Audit", "unit_price": "100"}]},
    )
    db.commit()

    email_service.send_overdue_reminder(invoice, 0)
    email_service.send_overdue_reminder(invoice, 6)
    assert messages[0]["subject"].startswith("Payment Reminder")
    assert f"is due on {invoice.due_date.isoformat()}" in messages[0]["text"]
    assert messages[1]["subject"].startswith("Overdue Invoice Reminder")
    assert "is overdue by 6 days" in messages[1]["text"]
