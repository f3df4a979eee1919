from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone
from pathlib import Path
from typing import List, Optional
from uuid import uuid4

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status
from sqlalchemy.orm import Session, selectinload

from app.core.deps import get_current_user, is_admin
from app.core.settings import settings
from app.db.session import get_db
from app.models.enums import InvoiceStatus
from app.models.invoice import Invoice, InvoiceAttachment, overdue_cutoff
from app.models.user import User
from app.schemas.invoice import (
    InvoiceAttachmentRead,
    InvoiceCancelPayload,
    InvoiceCreate,
    InvoiceListResponse,
    InvoicePayPayload,
    InvoiceRead,
    InvoiceRefundPayload,
    InvoiceUpdate,
    RevenueSummaryRead,
    RevenueTrendRow,
)
from app.services import invoices as invoice_service
from app.services.email import EmailSendError, send_overdue_reminder
from app.services.invoices import InvoiceError, InvoiceNumberError, InvoiceStateError

router = APIRouter(prefix="/api/invoices", tags=["invoices"])
logger = logging.getLogger(__name__)

MAX_ATTACHMENT_BYTES = 10 * 1024 * 1024


def _serialize(invoice: Invoice, user: User) -> InvoiceRead:
    read = InvoiceRead.model_validate(invoice)
    if is_admin(user):
        return read
    return read.model_copy(update={"internal_notes": None})


def _get_invoice_or_404(db: Session, invoice_id: int, user: User) -> Invoice:
    invoice = (
        db.query(Invoice)
        .options(selectinload(Invoice.items), selectinload(Invoice.attachments))
        .filter(Invoice.id == invoice_id)
        .first()
    )
    # Another user's invoice is reported as missing rather than forbidden.
    if not invoice or (invoice.user_id != user.id and not is_admin(user)):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invoice not found")
    return invoice


def _raise_for(exc: InvoiceError) -> None:
    if isinstance(exc, InvoiceStateError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, InvoiceNumberError):
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


def _require_admin(user: User) -> None:
    if not is_admin(user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorised to view revenue")


def _revenue_window(start: Optional[date], end: Optional[date]) -> tuple[datetime, datetime]:
    today = datetime.now(timezone.utc).date()
    end_day = end or today
    start_day = start or end_day - timedelta(days=30)
    if start_day > end_day:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="start must not be after end")
    return (
        datetime.combine(start_day, time.min, tzinfo=timezone.utc),
        datetime.combine(end_day, time.max, tzinfo=timezone.utc),
    )


@router.get("", response_model=InvoiceListResponse)
def list_invoices(
    page: int = Query(1, ge=1),
    page_size: int = Query(25, ge=1, le=100),
    status_filter: Optional[InvoiceStatus] = Query(None, alias="status"),
    overdue: Optional[bool] = Query(None),
    user_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> InvoiceListResponse:
    query = db.query(Invoice).options(selectinload(Invoice.items), selectinload(Invoice.attachments))
    if is_admin(current_user):
        if user_id:
            query = query.filter(Invoice.user_id == user_id)
    else:
        query = query.filter(Invoice.user_id == current_user.id)

    if status_filter:
        query = query.filter(Invoice.status == status_filter)
    cutoff = overdue_cutoff(datetime.now(timezone.utc))
    if overdue is True:
        query = query.filter(Invoice.status == InvoiceStatus.SENT, Invoice.due_date <= cutoff)
    if overdue is False:
        query = query.filter((Invoice.status != InvoiceStatus.SENT) | (Invoice.due_date > cutoff))

    total = query.count()
    invoices = (
        query.order_by(Invoice.issue_date.desc(), Invoice.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return InvoiceListResponse(
        items=[_serialize(invoice, current_user) for invoice in invoices],
        total=total,
        page=page,
        page_size=page_size,
        has_more=page * page_size < total,
    )


@router.get("/overdue", response_model=List[InvoiceRead])
def list_overdue_invoices(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[InvoiceRead]:
    invoices = invoice_service.find_overdue_invoices(db)
    if not is_admin(current_user):
        invoices = [invoice for invoice in invoices if invoice.user_id == current_user.id]
    return [_serialize(invoice, current_user) for invoice in invoices]


@router.get("/revenue", response_model=RevenueSummaryRead)
def get_revenue(
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> RevenueSummaryRead:
    _require_admin(current_user)
    window_start, window_end = _revenue_window(start, end)
    summary = invoice_service.calculate_revenue(db, start=window_start, end=window_end)
    return RevenueSummaryRead(
        start=window_start,
        end=window_end,
        total_revenue=summary.total_revenue,
        total_invoices=summary.total_invoices,
    )


@router.get("/revenue/trend", response_model=List[RevenueTrendRow])
def get_revenue_trend(
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[RevenueTrendRow]:
    _require_admin(current_user)
    window_start, window_end = _revenue_window(start, end)
    rows = invoice_service.revenue_trend(db, start=window_start, end=window_end)
    return [RevenueTrendRow(**row) for row in rows]


@router.post("", response_model=InvoiceRead, status_code=status.HTTP_201_CREATED)
def create_invoice(
    invoice_in: InvoiceCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> InvoiceRead:
    owner_id = current_user.id
    if invoice_in.user_id and invoice_in.user_id != current_user.id:
        if not is_admin(current_user):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorised to bill other users")
        if not db.get(User, invoice_in.user_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
        owner_id = invoice_in.user_id

    payload = invoice_in.model_dump(exclude={"user_id"})
    payload["items"] = [item.model_dump() for item in invoice_in.items]
    try:
        invoice = invoice_service.create_invoice(db, user_id=owner_id, data=payload)
    except InvoiceError as exc:
        db.rollback()
        _raise_for(exc)
    db.commit()
    db.refresh(invoice)
    return _serialize(invoice, current_user)


@router.get("/{invoice_id}", response_model=InvoiceRead)
def get_invoice(
    invoice_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> InvoiceRead:
    return _serialize(_get_invoice_or_404(db, invoice_id, current_user), current_user)


@router.patch("/{invoice_id}", response_model=InvoiceRead)
def update_invoice(
    invoice_id: int,
    invoice_update: InvoiceUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> InvoiceRead:
    invoice = _get_invoice_or_404(db, invoice_id, current_user)
    data = invoice_update.model_dump(exclude_unset=True)
    if invoice_update.items is not None:
        data["items"] = [item.model_dump() for item in invoice_update.items]
    try:
        invoice_service.update_invoice(db, invoice, data)
    except InvoiceError as exc:
        db.rollback()
        _raise_for(exc)
    db.commit()
    db.refresh(invoice)
    return _serialize(invoice, current_user)


@router.post("/{invoice_id}/send", response_model=InvoiceRead)
def send_invoice(
    invoice_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> InvoiceRead:
    invoice = _get_invoice_or_404(db, invoice_id, current_user)
    try:
        invoice_service.send_invoice(db, invoice)
    except InvoiceError as exc:
        db.rollback()
        _raise_for(exc)
    db.commit()
    db.refresh(invoice)
    return _serialize(invoice, current_user)


@router.post("/{invoice_id}/pay", response_model=InvoiceRead)
def pay_invoice(
    invoice_id: int,
    payload: InvoicePayPayload,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> InvoiceRead:
    invoice = _get_invoice_or_404(db, invoice_id, current_user)
    try:
        invoice_service.mark_invoice_paid(
            db,
            invoice,
            payment_details=payload.payment_details,
            payment_method=payload.payment_method,
        )
    except InvoiceError as exc:
        db.rollback()
        _raise_for(exc)
    db.commit()
    db.refresh(invoice)
    return _serialize(invoice, current_user)


@router.post("/{invoice_id}/mark-overdue", response_model=InvoiceRead)
def mark_invoice_overdue(
    invoice_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> InvoiceRead:
    invoice = _get_invoice_or_404(db, invoice_id, current_user)
    try:
        invoice_service.mark_invoice_overdue(db, invoice)
    except InvoiceError as exc:
        db.rollback()
        _raise_for(exc)
    db.commit()
    db.refresh(invoice)
    return _serialize(invoice, current_user)


@router.post("/{invoice_id}/cancel", response_model=InvoiceRead)
def cancel_invoice(
    invoice_id: int,
    payload: InvoiceCancelPayload,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> InvoiceRead:
    invoice = _get_invoice_or_404(db, invoice_id, current_user)
    try:
        invoice_service.cancel_invoice(db, invoice, reason=payload.reason)
    except InvoiceError as exc:
        db.rollback()
        _raise_for(exc)
    db.commit()
    db.refresh(invoice)
    return _serialize(invoice, current_user)


@router.post("/{invoice_id}/refund", response_model=InvoiceRead)
def refund_invoice(
    invoice_id: int,
    payload: InvoiceRefundPayload,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> InvoiceRead:
    if not is_admin(current_user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorised to refund invoices")
    invoice = _get_invoice_or_404(db, invoice_id, current_user)
    try:
        invoice_service.refund_invoice(db, invoice, refund_details=payload.refund_details)
    except InvoiceError as exc:
        db.rollback()
        _raise_for(exc)
    db.commit()
    db.refresh(invoice)
    return _serialize(invoice, current_user)


@router.post("/{invoice_id}/remind", response_model=InvoiceRead)
def remind_invoice(
    invoice_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> InvoiceRead:
    invoice = _get_invoice_or_404(db, invoice_id, current_user)
    if invoice.status not in {InvoiceStatus.SENT, InvoiceStatus.OVERDUE}:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Only unpaid sent invoices can be reminded")
    try:
        send_overdue_reminder(invoice, invoice.days_past_due)
    except EmailSendError as exc:
        logger.warning("invoice_reminder_not_sent: %s", exc, extra={"invoice_id": invoice.id})
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Reminder email could not be sent") from exc
    invoice_service.send_reminder(db, invoice)
    db.commit()
    db.refresh(invoice)
    return _serialize(invoice, current_user)


@router.post("/{invoice_id}/attachments", response_model=InvoiceAttachmentRead, status_code=status.HTTP_201_CREATED)
def upload_invoice_attachment(
    invoice_id: int,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> InvoiceAttachmentRead:
    invoice = _get_invoice_or_404(db, invoice_id, current_user)

    upload_dir = Path(settings.uploads_dir) / "invoices" / str(invoice.id)
    upload_dir.mkdir(parents=True, exist_ok=True)
    # Sanitize filename to prevent path traversal
    safe_filename = Path(file.filename or "upload.bin").name
    filename = f"{uuid4().hex}{Path(safe_filename).suffix}"

    content = file.file.read()
    if len(content) > MAX_ATTACHMENT_BYTES:
        raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail="Attachment too large")
    (upload_dir / filename).write_bytes(content)

    attachment = InvoiceAttachment(
        invoice_id=invoice.id,
        filename=safe_filename,
        url=f"/uploads/invoices/{invoice.id}/{filename}",
        size=len(content),
        mime_type=file.content_type,
    )
    db.add(attachment)
    db.commit()
    db.refresh(attachment)
    return InvoiceAttachmentRead.model_validate(attachment)
