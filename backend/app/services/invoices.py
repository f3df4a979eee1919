from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Callable, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from app.core.observability import invoices_numbered_total
from app.core.settings import settings
from app.models.enums import InvoiceStatus, InvoiceType, PaymentMethod
from app.models.invoice import Invoice, InvoiceItem, InvoiceSequence, overdue_cutoff

logger = logging.getLogger(__name__)

TWOPLACES = Decimal("0.01")
ZERO = Decimal("0.00")
NUMBER_WIDTH = 4
MAX_NUMBERING_ATTEMPTS = 5

ALLOWED_TRANSITIONS: dict[InvoiceStatus, frozenset[InvoiceStatus]] = {
    InvoiceStatus.DRAFT: frozenset({InvoiceStatus.SENT, InvoiceStatus.PAID, InvoiceStatus.CANCELLED}),
    InvoiceStatus.SENT: frozenset({InvoiceStatus.PAID, InvoiceStatus.OVERDUE, InvoiceStatus.CANCELLED}),
    InvoiceStatus.OVERDUE: frozenset({InvoiceStatus.PAID, InvoiceStatus.CANCELLED}),
    InvoiceStatus.PAID: frozenset({InvoiceStatus.PAID, InvoiceStatus.REFUNDED}),
    InvoiceStatus.CANCELLED: frozenset(),
    InvoiceStatus.REFUNDED: frozenset(),
}

INITIAL_STATUSES = frozenset({InvoiceStatus.DRAFT, InvoiceStatus.SENT, InvoiceStatus.PAID})


class InvoiceError(ValueError):
    pass


class InvoiceStateError(InvoiceError):
    pass


class InvoiceNumberError(InvoiceError):
    pass


def _q(value: Decimal) -> Decimal:
    return value.quantize(TWOPLACES, rounding=ROUND_HALF_UP)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _money(value: Any, default: Decimal = ZERO) -> Decimal:
    if value is None:
        return default
    return Decimal(str(value))


# ── Numbering ───────────────────────────────────────────────────────────


def period_key(issue_date: date) -> str:
    return f"{issue_date.year:04d}{issue_date.month:02d}"


def invoice_number_prefix(issue_date: date) -> str:
    return f"{settings.invoice_number_prefix}-{period_key(issue_date)}-"


def format_invoice_number(issue_date: date, sequence: int) -> str:
    if sequence < 1:
        raise InvoiceNumberError(f"Invoice sequence must start at 1, got {sequence}")
    return f"{invoice_number_prefix(issue_date)}{sequence:0{NUMBER_WIDTH}d}"


def parse_invoice_sequence(invoice_number: str | None) -> Optional[int]:
    """Trailing numeric segment of an invoice number, or None when it is malformed."""
    if not invoice_number:
        return None
    suffix = invoice_number.rsplit("-", 1)[-1]
    if not suffix.isdigit():
        return None
    return int(suffix)


def last_issued_sequence(db: Session, issue_date: date) -> int:
    prefix = invoice_number_prefix(issue_date)
    numbers = (
        db.query(Invoice.invoice_number)
        .filter(Invoice.invoice_number.like(f"{prefix}%"))
        .order_by(Invoice.invoice_number.desc())
        .all()
    )
    highest = 0
    for (number,) in numbers:
        parsed = parse_invoice_sequence(number)
        if parsed is None:
            logger.warning("malformed_invoice_number", extra={"invoice_number": number})
            continue
        highest = max(highest, parsed)
    return highest


def next_invoice_number(db: Session, *, issue_date: date, rescan: bool = False) -> str:
    period = period_key(issue_date)
    sequence = (
        db.query(InvoiceSequence)
        .filter(InvoiceSequence.period == period)
        .with_for_update()
        .first()
    )
    if not sequence:
        sequence = InvoiceSequence(period=period, last_number=last_issued_sequence(db, issue_date))
        db.add(sequence)
        db.flush()
    elif rescan:
        sequence.last_number = max(sequence.last_number, last_issued_sequence(db, issue_date))
    sequence.last_number += 1
    db.add(sequence)
    db.flush()
    return format_invoice_number(issue_date, sequence.last_number)


_NUMBERING_CONSTRAINTS = ("ix_invoices_invoice_number", "ix_invoice_sequences_period")
_NUMBERING_COLUMNS = ("invoices.invoice_number", "invoice_sequences.period")


def _is_numbering_collision(exc: IntegrityError) -> bool:
    """True only for unique violations on the invoice number or the period sequence row."""
    constraint = getattr(getattr(exc.orig, "diag", None), "constraint_name", None)
    if constraint:
        return constraint in _NUMBERING_CONSTRAINTS
    message = str(exc.orig)
    return "UNIQUE" in message.upper() and any(column in message for column in _NUMBERING_COLUMNS)


def assign_invoice_number(db: Session, invoice: Invoice) -> str:
    """Number and insert an unsaved invoice. A number is never reassigned."""
    if invoice.invoice_number:
        return invoice.invoice_number

    for attempt in range(1, MAX_NUMBERING_ATTEMPTS + 1):
        try:
            with db.begin_nested():
                invoice.invoice_number = next_invoice_number(db, issue_date=invoice.issue_date, rescan=attempt > 1)
                db.add(invoice)
                db.flush()
        except IntegrityError as exc:
            if not _is_numbering_collision(exc):
                invoice.invoice_number = None
                raise
            logger.warning(
                "invoice_number_collision",
                extra={"invoice_number": invoice.invoice_number, "user_id": invoice.user_id},
            )
            invoice.invoice_number = None
            continue
        invoices_numbered_total.inc()
        return invoice.invoice_number

    raise InvoiceNumberError(f"Could not allocate an invoice number after {MAX_NUMBERING_ATTEMPTS} attempts")


# ── Totals ──────────────────────────────────────────────────────────────


def compute_line(quantity: Decimal, unit_price: Decimal, tax_rate: Decimal) -> tuple[Decimal, Decimal]:
    if quantity < ZERO or unit_price < ZERO:
        raise InvoiceError("Quantity and unit price must be non-negative")
    if tax_rate < ZERO or tax_rate > Decimal("100"):
        raise InvoiceError("Tax rate must be between 0 and 100")
    line_total = _q(quantity * unit_price)
    return line_total, _q(line_total * tax_rate / Decimal("100"))


def replace_invoice_items(invoice: Invoice, items_payload: Iterable[dict]) -> List[InvoiceItem]:
    invoice.items.clear()
    created: List[InvoiceItem] = []
    for idx, item in enumerate(items_payload):
        quantity = _money(item.get("quantity"), Decimal("1"))
        unit_price = _money(item.get("unit_price"))
        tax_rate = _money(item.get("tax_rate"), settings.invoice_default_tax_rate)
        line_total, tax_amount = compute_line(quantity, unit_price, tax_rate)
        invoice_item = InvoiceItem(
            description=str(item["description"]),
            quantity=quantity,
            unit_price=unit_price,
            line_total=line_total,
            tax_rate=tax_rate,
            tax_amount=tax_amount,
            order_index=int(item.get("order_index") if item.get("order_index") is not None else idx),
        )
        invoice.items.append(invoice_item)
        created.append(invoice_item)
    return created


def recompute_invoice_totals(invoice: Invoice) -> Invoice:
    subtotal = _q(sum((item.line_total for item in invoice.items), start=ZERO))
    tax_total = _q(sum((item.tax_amount for item in invoice.items), start=ZERO))
    discount = _q(_money(invoice.discount_total))
    if discount < ZERO:
        raise InvoiceError("Discount must be non-negative")
    if discount > subtotal + tax_total:
        raise InvoiceError("Discount cannot exceed the invoice amount")

    invoice.subtotal = subtotal
    invoice.tax_total = tax_total
    invoice.discount_total = discount
    invoice.total = _q(subtotal + tax_total - discount)
    return invoice


# ── Lifecycle ───────────────────────────────────────────────────────────


def _transition(invoice: Invoice, target: InvoiceStatus) -> None:
    current = invoice.status or InvoiceStatus.DRAFT
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvoiceStateError(f"Cannot move invoice from {current.value} to {target.value}")
    invoice.status = target


def _merge_payment_details(invoice: Invoice, details: dict | None) -> None:
    merged = dict(invoice.payment_details or {})
    merged.update(details or {})
    # Reassign so the JSON column is flagged dirty.
    invoice.payment_details = merged


def create_invoice(db: Session, *, user_id: int, data: dict, now: datetime | None = None) -> Invoice:
    now = now or _utcnow()
    status = InvoiceStatus(data.get("status") or InvoiceStatus.DRAFT)
    if status not in INITIAL_STATUSES:
        raise InvoiceStateError(f"Invoices cannot be created as {status.value}")
    issue_date = data.get("issue_date") or now.date()
    due_date = data.get("due_date") or issue_date
    if due_date < issue_date:
        raise InvoiceError("Due date cannot be before the issue date")

    invoice = Invoice(
        user_id=user_id,
        subscription_id=data.get("subscription_id"),
        invoice_type=InvoiceType(data.get("invoice_type") or InvoiceType.SUBSCRIPTION),
        status=status,
        issue_date=issue_date,
        due_date=due_date,
        discount_total=_money(data.get("discount_total")),
        currency=(data.get("currency") or "INR").upper(),
        payment_method=PaymentMethod(data["payment_method"]) if data.get("payment_method") else None,
        payment_details=dict(data.get("payment_details") or {}) or None,
        billing_address=data.get("billing_address"),
        notes=data.get("notes"),
        internal_notes=data.get("internal_notes"),
        email_sent=False,
        reminders_sent=0,
    )
    replace_invoice_items(invoice, data.get("items") or [])
    recompute_invoice_totals(invoice)
    if status == InvoiceStatus.SENT:
        invoice.email_sent = True
        invoice.email_sent_at = now
    if status == InvoiceStatus.PAID:
        invoice.paid_date = now

    assign_invoice_number(db, invoice)
    logger.info(
        "invoice_created",
        extra={"invoice_id": invoice.id, "invoice_number": invoice.invoice_number, "user_id": user_id},
    )
    return invoice


_DRAFT_FIELDS = (
    "issue_date",
    "due_date",
    "invoice_type",
    "subscription_id",
    "currency",
    "payment_method",
    "billing_address",
    "notes",
    "internal_notes",
    "discount_total",
)
_REQUIRED_FIELDS = frozenset({"issue_date", "due_date", "invoice_type", "currency", "discount_total"})


def update_invoice(db: Session, invoice: Invoice, data: dict) -> Invoice:
    if invoice.status != InvoiceStatus.DRAFT:
        raise InvoiceStateError("Only draft invoices can be edited")
    for field in _DRAFT_FIELDS:
        if field not in data:
            continue
        if data[field] is None and field in _REQUIRED_FIELDS:
            continue
        setattr(invoice, field, data[field])
    if invoice.due_date < invoice.issue_date:
        raise InvoiceError("Due date cannot be before the issue date")
    # Editing issue_date keeps the assigned number.
    if "items" in data and data["items"] is not None:
        replace_invoice_items(invoice, data["items"])
    recompute_invoice_totals(invoice)
    db.add(invoice)
    db.flush()
    return invoice


def send_invoice(db: Session, invoice: Invoice, *, now: datetime | None = None) -> Invoice:
    _transition(invoice, InvoiceStatus.SENT)
    invoice.email_sent = True
    invoice.email_sent_at = now or _utcnow()
    db.add(invoice)
    db.flush()
    return invoice


def mark_invoice_paid(
    db: Session,
    invoice: Invoice,
    *,
    payment_details: dict | None = None,
    payment_method: PaymentMethod | None = None,
    now: datetime | None = None,
) -> Invoice:
    """Move to paid, stamp paid_date and merge payment metadata (later keys win).

    Re-marking an already paid invoice is accepted and re-stamps paid_date.
    """
    _transition(invoice, InvoiceStatus.PAID)
    invoice.paid_date = now or _utcnow()
    if payment_method is not None:
        invoice.payment_method = payment_method
    _merge_payment_details(invoice, payment_details)
    db.add(invoice)
    db.flush()
    logger.info("invoice_paid", extra={"invoice_id": invoice.id, "invoice_number": invoice.invoice_number})
    return invoice


def mark_invoice_overdue(db: Session, invoice: Invoice) -> Invoice:
    _transition(invoice, InvoiceStatus.OVERDUE)
    db.add(invoice)
    db.flush()
    return invoice


def cancel_invoice(db: Session, invoice: Invoice, *, reason: str | None = None) -> Invoice:
    _transition(invoice, InvoiceStatus.CANCELLED)
    if reason:
        invoice.internal_notes = "\n".join(filter(None, [invoice.internal_notes, f"Cancelled: {reason}"]))
    db.add(invoice)
    db.flush()
    return invoice


def refund_invoice(db: Session, invoice: Invoice, *, refund_details: dict | None = None) -> Invoice:
    _transition(invoice, InvoiceStatus.REFUNDED)
    if refund_details:
        _merge_payment_details(invoice, {"refund": refund_details})
    db.add(invoice)
    db.flush()
    return invoice


def send_reminder(db: Session, invoice: Invoice, *, now: datetime | None = None) -> Invoice:
    invoice.reminders_sent = (invoice.reminders_sent or 0) + 1
    invoice.last_reminder_sent = now or _utcnow()
    db.add(invoice)
    db.flush()
    return invoice


def is_overdue(invoice: Invoice, now: datetime | None = None) -> bool:
    return invoice.is_overdue_at(now or _utcnow())


def days_overdue(invoice: Invoice, now: datetime | None = None) -> int:
    return invoice.days_overdue_at(now or _utcnow())


def find_overdue_invoices(db: Session, *, now: datetime | None = None) -> List[Invoice]:
    cutoff = overdue_cutoff(now or _utcnow())
    return (
        db.query(Invoice)
        .options(selectinload(Invoice.user))
        .filter(Invoice.status == InvoiceStatus.SENT, Invoice.due_date <= cutoff)
        .order_by(Invoice.due_date.asc(), Invoice.id.asc())
        .all()
    )


def sweep_overdue_reminders(
    db: Session,
    *,
    notify: Callable[[Invoice, int], Any],
    now: datetime | None = None,
    max_reminders: int | None = None,
) -> int:
    now = now or _utcnow()
    cap = settings.invoice_max_reminders if max_reminders is None else max_reminders
    sent = 0
    for invoice in find_overdue_invoices(db, now=now):
        if invoice.reminders_sent >= cap:
            continue
        try:
            notify(invoice, invoice.days_overdue_at(now))
        except Exception:  # noqa: BLE001
            logger.exception("overdue_reminder_failed", extra={"invoice_id": invoice.id})
            continue
        send_reminder(db, invoice, now=now)
        sent += 1
    return sent


# ── Reporting ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class RevenueSummary:
    total_revenue: Decimal
    total_invoices: int


def _paid_between(query, start: datetime, end: datetime):
    if start > end:
        raise ValueError("start must not be after end")
    return query.filter(
        Invoice.status == InvoiceStatus.PAID,
        Invoice.paid_date >= start,
        Invoice.paid_date <= end,
    )


def calculate_revenue(db: Session, *, start: datetime, end: datetime) -> RevenueSummary:
    total, count = _paid_between(
        db.query(func.coalesce(func.sum(Invoice.total), 0), func.count(Invoice.id)),
        start,
        end,
    ).one()
    return RevenueSummary(total_revenue=_q(_money(total)), total_invoices=int(count or 0))


def revenue_trend(db: Session, *, start: datetime, end: datetime) -> list[dict[str, Any]]:
    rows = _paid_between(db.query(Invoice.paid_date, Invoice.total), start, end).all()
    buckets: dict[date, Decimal] = {}
    for paid_date, total in rows:
        day = paid_date.date()
        buckets[day] = buckets.get(day, ZERO) + _money(total)
    return [{"day": day, "revenue": _q(amount)} for day, amount in sorted(buckets.items())]
