"""Facade over external tax, accounting, payment and UPI providers.

Every public call returns a result mapping with a ``success`` flag. Provider
errors are logged, counted and turned into failure results here, so callers
never need to catch transport exceptions.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

import httpx
from sqlalchemy.orm import Session

from app.core.observability import record_integration_call
from app.core.security import CredentialsError, decrypt_credentials, encrypt_credentials
from app.core.settings import settings
from app.models.enums import IntegrationCategory, SyncDataType
from app.models.integration import IntegrationConnection
from app.models.user import User
from app.services.gstn import GSTNClient
from app.services.integration_providers import (
    BankVerificationClient,
    IntegrationError,
    PhonePeAdapter,
    ProviderAdapter,
    QuickBooksAdapter,
    RazorpayAdapter,
    StripeAdapter,
    TallyAdapter,
    UnavailableProvider,
    ZohoBooksAdapter,
    failure,
    not_supported,
    ok,
)

logger = logging.getLogger(__name__)

CATEGORY_LABELS = {
    IntegrationCategory.TAX_AUTHORITY.value: "tax authority",
    IntegrationCategory.ACCOUNTING.value: "accounting software",
    IntegrationCategory.PAYMENT.value: "payment gateway",
    IntegrationCategory.UPI.value: "UPI provider",
}


def _index(*adapters: ProviderAdapter) -> dict[str, ProviderAdapter]:
    return {adapter.key: adapter for adapter in adapters}


gstn_client = GSTNClient()
bank_verification_client = BankVerificationClient()

REGISTRY: dict[str, dict[str, ProviderAdapter]] = {
    IntegrationCategory.TAX_AUTHORITY.value: _index(gstn_client),
    IntegrationCategory.ACCOUNTING.value: _index(
        TallyAdapter(),
        QuickBooksAdapter(),
        ZohoBooksAdapter(),
        UnavailableProvider("sage", "Sage"),
    ),
    IntegrationCategory.PAYMENT.value: _index(
        RazorpayAdapter(),
        StripeAdapter(),
        UnavailableProvider("payu", "PayU"),
        UnavailableProvider("ccavenue", "CCAvenue"),
        UnavailableProvider("instamojo", "Instamojo"),
    ),
    IntegrationCategory.UPI.value: _index(
        PhonePeAdapter(),
        UnavailableProvider("googlepay", "Google Pay"),
        UnavailableProvider("paytm", "Paytm"),
        UnavailableProvider("bhim", "BHIM"),
    ),
}


def get_adapter(category: str, provider: str) -> Optional[ProviderAdapter]:
    return REGISTRY.get(category, {}).get(provider)


def _invoke(category: str, adapter: ProviderAdapter, operation: str, *args: Any, **kwargs: Any) -> dict[str, Any]:
    log_extra = {"category": category, "provider": adapter.key, "operation": operation}
    try:
        result = getattr(adapter, operation)(*args, **kwargs)
    except (IntegrationError, httpx.HTTPError, ValueError, KeyError) as exc:
        logger.warning("integration_call_failed: %s", exc, extra=log_extra)
        record_integration_call(category, adapter.key, operation, "failure")
        return failure(str(exc) or exc.__class__.__name__)
    record_integration_call(category, adapter.key, operation, "success")
    logger.info("integration_call", extra=log_extra)
    return result


def dispatch(category: str, provider: str, operation: str, *args: Any, **kwargs: Any) -> dict[str, Any]:
    """Route an operation to the provider registered under ``category``."""
    if category not in REGISTRY:
        return failure(f"Unsupported integration category: {category}")
    adapter = get_adapter(category, provider)
    if adapter is None:
        record_integration_call(category, "unknown", operation, "unsupported")
        return failure(f"Unsupported {CATEGORY_LABELS[category]}: {provider}")
    if not adapter.supports(operation):
        record_integration_call(category, adapter.key, operation, "not_supported")
        return not_supported(adapter.display_name or adapter.key, operation)
    return _invoke(category, adapter, operation, *args, **kwargs)


# ── Tax authority ───────────────────────────────────────────────────────


def validate_gstin(gstin: str) -> dict[str, Any]:
    result = dispatch(IntegrationCategory.TAX_AUTHORITY.value, "gstn", "validate_gstin", gstin)
    if not result["success"]:
        result.setdefault("is_valid", False)
    return result


def file_gst_return(data: dict[str, Any]) -> dict[str, Any]:
    return dispatch(IntegrationCategory.TAX_AUTHORITY.value, "gstn", "file_return", data)


def generate_eway_bill(data: dict[str, Any]) -> dict[str, Any]:
    return dispatch(IntegrationCategory.TAX_AUTHORITY.value, "gstn", "generate_eway_bill", data)


def get_return_status(gstin: str, return_period: str, return_type: str) -> dict[str, Any]:
    return dispatch(IntegrationCategory.TAX_AUTHORITY.value, "gstn", "return_status", gstin, return_period, return_type)


# ── Accounting software ─────────────────────────────────────────────────


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def get_accounting_connection(db: Session, user: User) -> Optional[IntegrationConnection]:
    return (
        db.query(IntegrationConnection)
        .filter(
            IntegrationConnection.user_id == user.id,
            IntegrationConnection.category == IntegrationCategory.ACCOUNTING.value,
        )
        .first()
    )


def connect_accounting(db: Session, user: User, provider: str, credentials: dict[str, Any]) -> dict[str, Any]:
    """Probe or authorise ``provider`` and store the credentials encrypted on the user's connection."""
    result = dispatch(IntegrationCategory.ACCOUNTING.value, provider, "connect", credentials)
    if not result["success"]:
        return result

    stored = {**credentials, **(result.get("tokens") or {})}
    if result.get("company_id"):
        stored["company_id"] = result["company_id"]
    try:
        encrypted = encrypt_credentials(stored)
    except CredentialsError as exc:
        logger.error("integration_credentials_unavailable: %s", exc, extra={"provider": provider})
        return failure(str(exc))

    connection = get_accounting_connection(db, user)
    if connection is None:
        connection = IntegrationConnection(user_id=user.id, category=IntegrationCategory.ACCOUNTING.value)
        db.add(connection)
    connection.provider = provider
    connection.connected = True
    connection.connected_at = _utcnow()
    connection.last_synced_at = None
    connection.encrypted_credentials = encrypted
    db.flush()
    logger.info("accounting_connected", extra={"user_id": user.id, "provider": provider})
    return ok(message="Successfully connected to accounting software", provider=provider)


def _sync_types(data_type: str) -> list[str]:
    if data_type == SyncDataType.ALL.value:
        return [member.value for member in SyncDataType if member != SyncDataType.ALL]
    return [SyncDataType(data_type).value]


def sync_accounting(db: Session, user: User, data_type: str = SyncDataType.ALL.value) -> dict[str, Any]:
    connection = get_accounting_connection(db, user)
    if connection is None or not connection.connected:
        return failure("No accounting software connected")
    try:
        credentials = decrypt_credentials(connection.encrypted_credentials)
    except CredentialsError as exc:
        logger.error("integration_credentials_unreadable: %s", exc, extra={"user_id": user.id})
        return failure(str(exc))

    sync_results = {
        kind: dispatch(IntegrationCategory.ACCOUNTING.value, connection.provider, f"sync_{kind}", credentials)
        for kind in _sync_types(data_type)
    }
    if not any(result["success"] for result in sync_results.values()):
        return failure("Sync failed", sync_results=sync_results)
    connection.last_synced_at = _utcnow()
    db.flush()
    return ok(sync_results=sync_results)


# ── Payments ────────────────────────────────────────────────────────────


def process_payment(data: dict[str, Any], gateway: str = "razorpay") -> dict[str, Any]:
    return dispatch(IntegrationCategory.PAYMENT.value, gateway, "process_payment", data)


def setup_recurring_payment(data: dict[str, Any], gateway: str = "razorpay") -> dict[str, Any]:
    return dispatch(IntegrationCategory.PAYMENT.value, gateway, "setup_recurring", data)


def refund_payment(payment_id: str, amount: Any, gateway: str = "razorpay") -> dict[str, Any]:
    return dispatch(IntegrationCategory.PAYMENT.value, gateway, "refund", payment_id, amount)


def initiate_upi_payment(data: dict[str, Any], provider: str = "phonepe") -> dict[str, Any]:
    return dispatch(IntegrationCategory.UPI.value, provider, "initiate_payment", data)


def verify_upi_payment(transaction_id: str, provider: str = "phonepe") -> dict[str, Any]:
    return dispatch(IntegrationCategory.UPI.value, provider, "verify_payment", transaction_id)


# ── Banking ─────────────────────────────────────────────────────────────


def verify_bank_account(account_number: str, ifsc_code: str) -> dict[str, Any]:
    result = _invoke("banking", bank_verification_client, "verify_account", account_number, ifsc_code)
    if not result["success"]:
        result.setdefault("is_valid", False)
    return result


# ── Status ──────────────────────────────────────────────────────────────


def integration_status(db: Session, user: User) -> dict[str, Any]:
    connection = get_accounting_connection(db, user)
    if connection is not None and connection.connected:
        accounting = {
            "connected": True,
            "software": connection.provider,
            "connected_at": connection.connected_at,
            "last_synced_at": connection.last_synced_at,
        }
    else:
        accounting = {"connected": False}
    return {
        "accounting": accounting,
        "gstn": {"configured": bool(settings.gstn_client_id and settings.gstn_client_secret)},
        "payment": {
            "gateways": sorted(
                key for key, adapter in REGISTRY[IntegrationCategory.PAYMENT.value].items() if adapter.capabilities
            ),
        },
        "upi": {
            "providers": sorted(
                key for key, adapter in REGISTRY[IntegrationCategory.UPI.value].items() if adapter.capabilities
            ),
        },
        "banking": {"configured": bool(settings.bank_verification_api_key)},
    }
