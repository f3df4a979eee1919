from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.core.deps import get_current_user
from app.db.session import get_db
from app.models.enums import ReturnType
from app.models.user import User
from app.schemas.integration import (
    AccountingConnectRequest,
    AccountingSyncRequest,
    BankAccountVerificationRequest,
    EWayBillRequest,
    GSTINValidationRequest,
    GSTReturnFilingRequest,
    PaymentRequest,
    RecurringPaymentRequest,
    RefundRequest,
    RETURN_PERIOD_PATTERN,
    UPIPaymentRequest,
    UPIProvider,
)
from app.services import integrations

router = APIRouter(prefix="/api/integrations", tags=["integrations"])
logger = logging.getLogger(__name__)


def _require_success(result: dict[str, Any], fallback: str) -> dict[str, Any]:
    if not result.get("success"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.get("error") or fallback)
    return result


def _payload(result: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in result.items() if key != "success"}


@router.post("/gstn/validate-gstin")
def validate_gstin(
    payload: GSTINValidationRequest,
    current_user: User = Depends(get_current_user),
) -> dict:
    result = integrations.validate_gstin(payload.gstin)
    return {"success": True, "validation": _payload(result)}


@router.post("/gstn/file-return")
def file_gst_return(
    payload: GSTReturnFilingRequest,
    current_user: User = Depends(get_current_user),
) -> dict:
    body = payload.model_dump(mode="json")
    result = _require_success(integrations.file_gst_return(body), "Failed to file GST return")
    logger.info("gst_return_filed", extra={"user_id": current_user.id})
    return {
        "success": True,
        "message": "GST return filed successfully",
        "acknowledgment_number": result.get("acknowledgment_number"),
        "reference_id": result.get("reference_id"),
    }


@router.post("/gstn/generate-eway-bill")
def generate_eway_bill(
    payload: EWayBillRequest,
    current_user: User = Depends(get_current_user),
) -> dict:
    body = payload.model_dump(mode="json", by_alias=True)
    result = _require_success(integrations.generate_eway_bill(body), "Failed to generate E-Way Bill")
    return {"success": True, "message": "E-Way Bill generated successfully", "eway_bill": _payload(result)}


@router.get("/gstn/return-status")
def get_return_status(
    gstin: str = Query(..., min_length=15, max_length=15),
    return_period: str = Query(..., pattern=RETURN_PERIOD_PATTERN.pattern),
    return_type: ReturnType = Query(...),
    current_user: User = Depends(get_current_user),
) -> dict:
    result = _require_success(
        integrations.get_return_status(gstin, return_period, return_type.value),
        "Failed to fetch return status",
    )
    return {"success": True, "status": _payload(result)}


@router.post("/accounting/connect")
def connect_accounting(
    payload: AccountingConnectRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict:
    result = integrations.connect_accounting(db, current_user, payload.software_type, payload.credentials)
    if result["success"]:
        db.commit()
    else:
        db.rollback()
    return result


@router.post("/accounting/sync")
def sync_accounting(
    payload: Optional[AccountingSyncRequest] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict:
    data_type = (payload or AccountingSyncRequest()).data_type.value
    result = integrations.sync_accounting(db, current_user, data_type)
    db.commit()
    return result


@router.post("/payment/process")
def process_payment(
    payload: PaymentRequest,
    current_user: User = Depends(get_current_user),
) -> dict:
    data = payload.model_dump(exclude={"gateway"})
    data["user_id"] = current_user.id
    result = _require_success(integrations.process_payment(data, payload.gateway), "Payment processing failed")
    return {"success": True, "payment": _payload(result)}


@router.post("/payment/recurring")
def setup_recurring_payment(
    payload: RecurringPaymentRequest,
    current_user: User = Depends(get_current_user),
) -> dict:
    data = payload.model_dump(exclude={"gateway"})
    data["user_id"] = current_user.id
    result = _require_success(
        integrations.setup_recurring_payment(data, payload.gateway),
        "Recurring payment setup failed",
    )
    return {"success": True, "subscription": _payload(result)}


@router.post("/payment/refund")
def refund_payment(
    payload: RefundRequest,
    current_user: User = Depends(get_current_user),
) -> dict:
    result = _require_success(
        integrations.refund_payment(payload.payment_id, payload.amount, payload.gateway),
        "Refund failed",
    )
    logger.info("payment_refunded", extra={"user_id": current_user.id, "provider": payload.gateway})
    return {"success": True, "refund": _payload(result)}


@router.post("/upi/initiate")
def initiate_upi_payment(
    payload: UPIPaymentRequest,
    current_user: User = Depends(get_current_user),
) -> dict:
    data = payload.model_dump(exclude={"provider"})
    data["user_id"] = current_user.id
    result = _require_success(integrations.initiate_upi_payment(data, payload.provider), "UPI payment failed")
    return {"success": True, "payment": _payload(result)}


@router.get("/upi/verify/{transaction_id}")
def verify_upi_payment(
    transaction_id: str,
    provider: UPIProvider = Query("phonepe"),
    current_user: User = Depends(get_current_user),
) -> dict:
    result = _require_success(
        integrations.verify_upi_payment(transaction_id, provider),
        "UPI payment verification failed",
    )
    return {"success": True, "verification": _payload(result)}


@router.post("/banking/verify-account")
def verify_bank_account(
    payload: BankAccountVerificationRequest,
    current_user: User = Depends(get_current_user),
) -> dict:
    result = integrations.verify_bank_account(payload.account_number, payload.ifsc_code)
    return {"success": True, "verification": _payload(result)}


@router.get("/status")
def integration_status(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict:
    return {"success": True, "integrations": integrations.integration_status(db, current_user)}
