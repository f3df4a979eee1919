from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal

import pytest

from app.models.enums import InvoiceStatus, PaymentMethod
from app.services import invoices as invoice_service
from app.services.invoices import InvoiceError, InvoiceStateError

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
TODAY = NOW.date()


def _create(db, user, *, status=InvoiceStatus.DRAFT, due_date: date | None = None, **extra):
    data = {
        "status": status,
        "issue_date": TODAY - timedelta(days=30),
        "due_date": due_date or TODAY,
        "items": [
            {"description": "GST return filing", "quantity": 2, "unit_price": "500.00", "tax_rate": 18},
            {"description": "Consultation", "quantity": 1, "unit_price": "250.00", "tax_rate": 0},
        ],
        **extra,
    }
    invoice = invoice_service.create_invoice(db, user_id=user.id, data=data, now=NOW)
    db.commit()
    return invoice


def test_totals_are_derived_from_items(db, user):
    invoice = _create(db, user, discount_total="50.00")
    assert invoice.subtotal == Decimal("1250.00")
    assert invoice.tax_total == Decimal("180.00")
    assert invoice.total == Decimal("1380.00")
    assert [item.order_index for item in invoice.items] == [0, 1]


def test_discount_larger_than_invoice_is_rejected(db, user):
    with pytest.raises(InvoiceError):
        _create(db, user, discount_total="5000.00")


def test_due_date_before_issue_date_is_rejected(db, user):
    with pytest.raises(InvoiceError):
        invoice_service.create_invoice(
            db,
            user_id=user.id,
            data={"issue_date": TODAY, "due_date": TODAY - timedelta(days=1)},
            now=NOW,
        )


def test_initial_sent_status_stamps_email(db, user):
    invoice = _create(db, user, status=InvoiceStatus.SENT)
    assert invoice.email_sent is True
    assert invoice.email_sent_at is not None


def test_overdue_predicate_only_for_sent_invoices(db, user):
    invoice = _create(db, user, status=InvoiceStatus.SENT, due_date=TODAY - timedelta(days=3))
    assert invoice_service.is_overdue(invoice, NOW) is True
    assert invoice_service.days_overdue(invoice, NOW) == 4

    invoice_service.mark_invoice_overdue(db, invoice)
    # The explicit OVERDUE status does not feed the predicate.
    assert invoice.status == InvoiceStatus.OVERDUE
    assert invoice_service.is_overdue(invoice, NOW) is False
    assert invoice_service.days_overdue(invoice, NOW) == 0


def test_due_date_falls_due_at_midnight_utc(db, user):
    due_today = _create(db, user, status=InvoiceStatus.SENT, due_date=TODAY)
    assert invoice_service.is_overdue(due_today, NOW) is True
    assert invoice_service.days_overdue(due_today, NOW) == 1

    midnight = datetime.combine(TODAY, time.min, tzinfo=timezone.utc)
    assert invoice_service.is_overdue(due_today, midnight) is False
    assert invoice_service.days_overdue(due_today, midnight) == 0

    due_tomorrow = _create(db, user, status=InvoiceStatus.SENT, due_date=TODAY + timedelta(days=1))
    assert invoice_service.is_overdue(due_tomorrow, NOW) is False


def test_partial_days_round_up(db, user):
    afternoon = datetime(2024, 3, 10, 15, 0, tzinfo=timezone.utc)
    invoice = _create(db, user, status=InvoiceStatus.SENT, due_date=TODAY)
    invoice.due_date = date(2024, 3, 7)
    assert invoice_service.days_overdue(invoice, afternoon) == 4
    invoice.due_date = date(2024, 3, 10)
    assert invoice_service.is_overdue(invoice, afternoon) is True
    assert invoice_service.days_overdue(invoice, afternoon) == 1


def test_find_overdue_uses_midnight_cutoff(db, user):
    due_today = _create(db, user, status=InvoiceStatus.SENT, due_date=TODAY)
    midnight = datetime.combine(TODAY, time.min, tzinfo=timezone.utc)
    assert invoice_service.find_overdue_invoices(db, now=midnight) == []
    assert invoice_service.find_overdue_invoices(db, now=NOW) == [due_today]


def test_paid_invoice_is_never_overdue(db, user):

    paid = _create(db, user, status=InvoiceStatus.PAID, due_date=TODAY - timedelta(days=10))
    assert invoice_service.is_overdue(paid, NOW) is False
    assert invoice_service.days_overdue(paid, NOW) == 0


def test_mark_paid_merges_payment_details(db, user):
    invoice = _create(db, user, status=InvoiceStatus.SENT, payment_details={"gateway": "razorpay", "attempt": 1})

    invoice_service.mark_invoice_paid(
        db,
        invoice,
        payment_details={"attempt": 2, "payment_id": "pay_123"},
        payment_method=PaymentMethod.RAZORPAY,
        now=NOW,
    )
    assert invoice.status == InvoiceStatus.PAID
    assert invoice.paid_date == NOW
    assert invoice.payment_method == PaymentMethod.RAZORPAY
    assert invoice.payment_details == {"gateway": "razorpay", "attempt": 2, "payment_id": "pay_123"}


def test_mark_paid_again_restamps_paid_date(db, user):
    invoice = _create(db, user, status=InvoiceStatus.SENT)
    invoice_service.mark_invoice_paid(db, invoice, now=NOW)
    later = NOW + timedelta(hours=2)
    invoice_service.mark_invoice_paid(db, invoice, payment_details={"note": "bank confirmed"}, now=later)
    assert invoice.status == InvoiceStatus.PAID
    assert invoice.paid_date == later
    assert invoice.payment_details == {"note": "bank confirmed"}


@pytest.mark.parametrize("terminal", [InvoiceStatus.CANCELLED, InvoiceStatus.REFUNDED])
def test_terminal_states_reject_payment(db, user, terminal):
    invoice = _create(db, user, status=InvoiceStatus.PAID)
    if terminal == InvoiceStatus.CANCELLED:
        invoice = _create(db, user)
        invoice_service.cancel_invoice(db, invoice, reason="duplicate")
    else:
        invoice_service.refund_invoice(db, invoice, refund_details={"refund_id": "rfnd_1"})
    assert invoice.status == terminal

    with pytest.raises(InvoiceStateError):
        invoice_service.mark_invoice_paid(db, invoice, now=NOW)


def test_cancel_records_reason_and_refund_keeps_history(db, user):
    draft = _create(db, user)
    invoice_service.cancel_invoice(db, draft, reason="Raised in error")
    assert "Cancelled: Raised in error" in draft.internal_notes

    paid = _create(db, user, status=InvoiceStatus.PAID, payment_details={"payment_id": "pay_9"})
    invoice_service.refund_invoice(db, paid, refund_details={"refund_id": "rfnd_9"})
    assert paid.payment_details == {"payment_id": "pay_9", "refund": {"refund_id": "rfnd_9"}}


def test_only_drafts_are_editable(db, user):
    invoice = _create(db, user, status=InvoiceStatus.SENT)
    with pytest.raises(InvoiceStateError):
        invoice_service.update_invoice(db, invoice, {"notes": "late edit"})


def test_draft_update_replaces_items_and_recomputes(db, user):
    invoice = _create(db, user)
    invoice_service.update_invoice(
        db,
        invoice,
        {"items": [{"description": "Annual return", "quantity": 1, "unit_price": "2000.00", "tax_rate": 18}]},
    )
    db.commit()
    assert len(invoice.items) == 1
    assert invoice.total == Decimal("2360.00")


def test_send_reminder_counts(db, user):
    invoice = _create(db, user, status=InvoiceStatus.SENT)
    invoice_service.send_reminder(db, invoice, now=NOW)
    invoice_service.send_reminder(db, invoice, now=NOW)
    assert invoice.reminders_sent == 2
    assert invoice.last_reminder_sent == NOW


def test_sweep_respects_reminder_cap_and_failures(db, user):
    overdue = _create(db, user, status=InvoiceStatus.SENT, due_date=TODAY - timedelta(days=5))
    capped = _create(db, user, status=InvoiceStatus.SENT, due_date=TODAY - timedelta(days=8))
    capped.reminders_sent = 3
    failing = _create(db, user, status=InvoiceStatus.SENT, due_date=TODAY - timedelta(days=2))
    _create(db, user, status=InvoiceStatus.SENT, due_date=TODAY + timedelta(days=2))
    db.commit()

    notified = []

    def notify(invoice, days):
        if invoice.id == failing.id:
            raise RuntimeError("smtp down")
        notified.append((invoice.id, days))

    sent = invoice_service.sweep_overdue_reminders(db, notify=notify, now=NOW, max_reminders=3)
    assert sent == 1
    assert notified == [(overdue.id, 6)]
    assert overdue.reminders_sent == 1
    assert capped.reminders_sent == 3
    assert failing.reminders_sent == 0
