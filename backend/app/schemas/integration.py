from __future__ import annotations

import re
from decimal import Decimal
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models.enums import ReturnType, SyncDataType

GSTIN_PATTERN = re.compile(r"^[0-9]{2}[A-Z]{5}[0-9]{4}[A-Z][1-9A-Z]Z[0-9A-Z]$")
RETURN_PERIOD_PATTERN = re.compile(r"^(0[1-9]|1[0-2])[0-9]{4}$")
UPI_ID_PATTERN = re.compile(r"^[\w.-]+@[\w.-]+$")
IFSC_PATTERN = re.compile(r"^[A-Z]{4}0[A-Z0-9]{6}$")

AccountingSoftware = Literal["tally", "quickbooks", "zoho", "sage"]
PaymentGateway = Literal["razorpay", "stripe", "payu", "ccavenue", "instamojo"]
UPIProvider = Literal["phonepe", "googlepay", "paytm", "bhim"]


def validate_gstin_format(value: str) -> str:
    if len(value) != 15:
        raise ValueError("GSTIN must be 15 characters long")
    if not GSTIN_PATTERN.match(value):
        raise ValueError("Invalid GSTIN format")
    return value


class GSTINValidationRequest(BaseModel):
    gstin: str

    @field_validator("gstin")
    @classmethod
    def validate_gstin(cls, value: str) -> str:
        return validate_gstin_format(value)


class GSTReturnFilingRequest(BaseModel):
    gstin: str
    ret_period: str
    return_type: ReturnType
    data: dict[str, Any] = Field(default_factory=dict)

    @field_validator("gstin")
    @classmethod
    def validate_gstin(cls, value: str) -> str:
        return validate_gstin_format(value)

    @field_validator("ret_period")
    @classmethod
    def validate_period(cls, value: str) -> str:
        if not RETURN_PERIOD_PATTERN.match(value):
            raise ValueError("Invalid return period format (MMYYYY)")
        return value


class EWayBillRequest(BaseModel):
    """Passed through to the e-way bill API as-is; only the supplier GSTIN is checked here."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    supplier_gstin: str = Field(..., alias="fromGstin")

    @field_validator("supplier_gstin")
    @classmethod
    def validate_gstin(cls, value: str) -> str:
        return validate_gstin_format(value)


class AccountingConnectRequest(BaseModel):
    software_type: AccountingSoftware
    credentials: dict[str, Any]


class AccountingSyncRequest(BaseModel):
    data_type: SyncDataType = SyncDataType.ALL


class PaymentRequest(BaseModel):
    amount: Decimal = Field(..., ge=Decimal("1"))
    currency: Literal["INR", "USD"] = "INR"
    gateway: PaymentGateway = "razorpay"
    receipt: Optional[str] = Field(default=None, max_length=40)


class RecurringPaymentRequest(BaseModel):
    gateway: PaymentGateway = "razorpay"
    plan_id: str = Field(..., min_length=1)
    total_count: int = Field(default=12, ge=1)


class RefundRequest(BaseModel):
    payment_id: str = Field(..., min_length=1)
    amount: Decimal = Field(..., ge=Decimal("1"))
    reason: Optional[str] = None
    gateway: PaymentGateway = "razorpay"


class UPIPaymentRequest(BaseModel):
    amount: Decimal = Field(..., ge=Decimal("1"))
    upi_id: Optional[str] = None
    provider: UPIProvider = "phonepe"

    @field_validator("upi_id")
    @classmethod
    def validate_upi_id(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not UPI_ID_PATTERN.match(value):
            raise ValueError("Invalid UPI ID format")
        return value


class BankAccountVerificationRequest(BaseModel):
    account_number: str = Field(..., min_length=9, max_length=18)
    ifsc_code: str

    @field_validator("ifsc_code")
    @classmethod
    def validate_ifsc(cls, value: str) -> str:
        if not IFSC_PATTERN.match(value):
            raise ValueError("Invalid IFSC code format")
        return value
