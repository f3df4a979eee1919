from __future__ import annotations

import math
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, IDMixin, TimestampMixin, non_negative, utcnow
from app.models.enums import InvoiceStatus, InvoiceType, PaymentMethod


ONE_DAY = timedelta(days=1)


def due_date_start(due_date: date) -> datetime:
    """Due dates are calendar days; an invoice falls due at 00:00 UTC of that day."""
    return datetime.combine(due_date, time.min, tzinfo=timezone.utc)


def overdue_cutoff(now: datetime) -> date:
    """Latest due date that is already past at ``now``."""
    today = now.astimezone(timezone.utc).date()
    return today if now > due_date_start(today) else today - ONE_DAY


class Invoice(IDMixin, TimestampMixin, Base):
    __tablename__ = "invoices"
    __table_args__ = (
        Index("ix_invoices_user_id_status", "user_id", "status"),
        Index("ix_invoices_due_date_status", "due_date", "status"),
        *non_negative("subtotal", "tax_total", "discount_total", "total"),
    )

    # Assigned once, before the first flush; never rewritten afterwards.
    invoice_number: Mapped[Optional[str]] = mapped_column(String(32), unique=True, nullable=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    subscription_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)

    invoice_type: Mapped[InvoiceType] = mapped_column(
        Enum(InvoiceType, name="invoice_type"),
        default=InvoiceType.SUBSCRIPTION,
        nullable=False,
    )
    status: Mapped[InvoiceStatus] = mapped_column(
        Enum(InvoiceStatus, name="invoice_status"),
        default=InvoiceStatus.DRAFT,
        nullable=False,
        index=True,
    )

    issue_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    paid_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True, index=True)

    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    tax_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    discount_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="INR", nullable=False)

    payment_method: Mapped[Optional[PaymentMethod]] = mapped_column(
        Enum(PaymentMethod, name="payment_method"),
        nullable=True,
    )
    payment_details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    billing_address: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    internal_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    email_sent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    email_sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    reminders_sent: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_reminder_sent: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    user: Mapped["User"] = relationship(back_populates="invoices")
    items: Mapped[List["InvoiceItem"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by=lambda: InvoiceItem.order_index.asc(),
    )
    attachments: Mapped[List["InvoiceAttachment"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by=lambda: InvoiceAttachment.created_at.asc(),
    )

    def days_past_due_at(self, now: datetime) -> int:
        """Whole days, rounded up, since the start of the due date; 0 until then."""
        if self.due_date is None:
            return 0
        delta = now - due_date_start(self.due_date)
        if delta <= timedelta(0):
            return 0
        return math.ceil(delta / ONE_DAY)

    def is_overdue_at(self, now: datetime) -> bool:
        # Only a sent invoice counts; the explicit OVERDUE status is a separate signal.
        return self.status == InvoiceStatus.SENT and self.days_past_due_at(now) > 0

    def days_overdue_at(self, now: datetime) -> int:
        return self.days_past_due_at(now) if self.is_overdue_at(now) else 0

    @property
    def is_overdue(self) -> bool:
        return self.is_overdue_at(utcnow())

    @property
    def days_overdue(self) -> int:
        return self.days_overdue_at(utcnow())

    @property
    def days_past_due(self) -> int:
        return self.days_past_due_at(utcnow())


class InvoiceItem(IDMixin, TimestampMixin, Base):
    __tablename__ = "invoice_items"
    __table_args__ = non_negative("quantity", "unit_price", "line_total", "tax_rate", "tax_amount")

    invoice_id: Mapped[int] = mapped_column(ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("1.00"), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    line_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("18.00"), nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    order_index: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    invoice: Mapped[Invoice] = relationship(back_populates="items")


class InvoiceAttachment(IDMixin, TimestampMixin, Base):
    __tablename__ = "invoice_attachments"

    invoice_id: Mapped[int] = mapped_column(ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    url: Mapped[str] = mapped_column(String(500), nullable=False, unique=True)
    size: Mapped[int] = mapped_column(Integer, nullable=False)
    mime_type: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    invoice: Mapped[Invoice] = relationship(back_populates="attachments")


class InvoiceSequence(IDMixin, TimestampMixin, Base):
    __tablename__ = "invoice_sequences"

    period: Mapped[str] = mapped_column(String(6), nullable=False, unique=True, index=True)
    last_number: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
