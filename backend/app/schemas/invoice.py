from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import Field, field_validator

from app.models.enums import InvoiceStatus, InvoiceType, PaymentMethod
from app.schemas.base import ORMModel


class InvoiceItemCreate(ORMModel):
    description: str = Field(..., min_length=1, max_length=255)
    quantity: Decimal = Field(default=Decimal("1.00"), gt=Decimal("0"))
    unit_price: Decimal = Field(default=Decimal("0.00"), ge=Decimal("0"))
    tax_rate: Optional[Decimal] = Field(default=None, ge=Decimal("0"), le=Decimal("100"))
    order_index: Optional[int] = None


class InvoiceItemRead(ORMModel):
    id: int
    description: str
    quantity: Decimal
    unit_price: Decimal
    line_total: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    order_index: int


class InvoiceAttachmentRead(ORMModel):
    id: int
    filename: str
    url: str
    size: Optional[int] = None
    mime_type: Optional[str] = None
    created_at: datetime


class InvoiceCreate(ORMModel):
    invoice_type: InvoiceType = InvoiceType.SUBSCRIPTION
    status: InvoiceStatus = InvoiceStatus.DRAFT
    subscription_id: Optional[str] = Field(default=None, max_length=64)
    issue_date: Optional[date] = None
    due_date: date
    discount_total: Decimal = Field(default=Decimal("0.00"), ge=Decimal("0"))
    currency: str = Field(default="INR", min_length=3, max_length=3)
    payment_method: Optional[PaymentMethod] = None
    payment_details: Optional[dict] = None
    billing_address: Optional[dict] = None
    notes: Optional[str] = None
    internal_notes: Optional[str] = None
    items: List[InvoiceItemCreate] = Field(default_factory=list)
    # Admins may bill on behalf of another account.
    user_id: Optional[int] = None

    @field_validator("status")
    @classmethod
    def validate_initial_status(cls, value: InvoiceStatus) -> InvoiceStatus:
        if value not in {InvoiceStatus.DRAFT, InvoiceStatus.SENT, InvoiceStatus.PAID}:
            raise ValueError("Invoices can only be created as draft, sent or paid")
        return value


class InvoiceUpdate(ORMModel):
    invoice_type: Optional[InvoiceType] = None
    subscription_id: Optional[str] = Field(default=None, max_length=64)
    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    discount_total: Optional[Decimal] = Field(default=None, ge=Decimal("0"))
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    payment_method: Optional[PaymentMethod] = None
    billing_address: Optional[dict] = None
    notes: Optional[str] = None
    internal_notes: Optional[str] = None
    items: Optional[List[InvoiceItemCreate]] = None


class InvoicePayPayload(ORMModel):
    payment_method: Optional[PaymentMethod] = None
    payment_details: dict = Field(default_factory=dict)


class InvoiceCancelPayload(ORMModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class InvoiceRefundPayload(ORMModel):
    refund_details: dict = Field(default_factory=dict)


class InvoiceRead(ORMModel):
    id: int
    invoice_number: Optional[str] = None
    user_id: int
    subscription_id: Optional[str] = None
    invoice_type: InvoiceType
    status: InvoiceStatus
    issue_date: date
    due_date: date
    paid_date: Optional[datetime] = None
    subtotal: Decimal
    tax_total: Decimal
    discount_total: Decimal
    total: Decimal
    currency: str
    payment_method: Optional[PaymentMethod] = None
    payment_details: Optional[dict] = None
    billing_address: Optional[dict] = None
    notes: Optional[str] = None
    internal_notes: Optional[str] = None
    email_sent: bool
    email_sent_at: Optional[datetime] = None
    reminders_sent: int
    last_reminder_sent: Optional[datetime] = None
    is_overdue: bool
    days_overdue: int
    items: List[InvoiceItemRead] = Field(default_factory=list)
    attachments: List[InvoiceAttachmentRead] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class InvoiceListResponse(ORMModel):
    items: List[InvoiceRead]
    total: int
    page: int
    page_size: int
    has_more: bool


class RevenueSummaryRead(ORMModel):
    start: datetime
    end: datetime
    total_revenue: Decimal
    total_invoices: int


class RevenueTrendRow(ORMModel):
    day: date
    revenue: Decimal
