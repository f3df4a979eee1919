"""Provider adapters behind the integration facade.

Each adapter declares the operations it really implements in ``capabilities``.
Providers registered without capabilities are known keys whose integration is
not available yet; the facade answers for them with a not-supported result.
Adapters raise ``IntegrationError`` (or let ``httpx.HTTPError`` propagate) and
never build failure results themselves.
"""

from __future__ import annotations

import base64
import hashlib
import json
import logging
from decimal import Decimal
from typing import Any, Optional
from uuid import uuid4

import httpx

from app.core.settings import settings

logger = logging.getLogger(__name__)


class IntegrationError(RuntimeError):
    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def ok(**data: Any) -> dict[str, Any]:
    return {"success": True, **data}


def failure(error: str, **data: Any) -> dict[str, Any]:
    return {"success": False, "error": error, **data}


def not_supported(provider: str, operation: str) -> dict[str, Any]:
    return failure(f"{operation} is not supported by {provider}", not_supported=True)


def to_minor_units(amount: Any) -> int:
    """Rupees to paise, as the gateways expect integer minor units."""
    return int((Decimal(str(amount)) * 100).to_integral_value())


class ProviderAdapter:
    key: str = ""
    display_name: str = ""
    capabilities: frozenset[str] = frozenset()

    def supports(self, operation: str) -> bool:
        return operation in self.capabilities

    def _timeout(self) -> float:
        return max(float(settings.integration_http_timeout_seconds or 15.0), 0.5)

    def _request(
        self,
        method: str,
        url: str,
        *,
        timeout: Optional[float] = None,
        **kwargs: Any,
    ) -> Any:
        with httpx.Client(timeout=timeout or self._timeout()) as client:
            response = client.request(method, url, **kwargs)
        if response.status_code >= 400:
            logger.warning(
                "provider_request_failed status=%s provider=%s url=%s",
                response.status_code,
                self.key,
                url,
            )
            raise IntegrationError(
                f"{self.display_name or self.key} returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        if not response.content:
            return {}
        return response.json()


class UnavailableProvider(ProviderAdapter):
    """A recognised provider key with no implemented operations."""

    def __init__(self, key: str, display_name: str) -> None:
        self.key = key
        self.display_name = display_name


# ── Accounting software ─────────────────────────────────────────────────


class TallyAdapter(ProviderAdapter):
    key = "tally"
    display_name = "Tally"
    capabilities = frozenset({"connect", "sync_invoices"})

    def _server_url(self, credentials: dict[str, Any]) -> str:
        return (credentials.get("server_url") or settings.tally_default_url).rstrip("/")

    def connect(self, credentials: dict[str, Any]) -> dict[str, Any]:
        try:
            companies = self._request(
                "GET",
                f"{self._server_url(credentials)}/api/company",
                timeout=settings.tally_connect_timeout_seconds,
            )
        except (httpx.HTTPError, IntegrationError) as exc:
            raise IntegrationError("Unable to connect to Tally server") from exc
        return ok(companies=companies)

    def sync_invoices(self, credentials: dict[str, Any]) -> dict[str, Any]:
        vouchers = self._request("GET", f"{self._server_url(credentials)}/api/vouchers/sales")
        invoices = [
            {
                "external_id": voucher.get("voucherId"),
                "invoice_number": voucher.get("voucherNumber"),
                "date": voucher.get("date"),
                "customer_name": voucher.get("partyName"),
                "amount": voucher.get("amount"),
                "tax_amount": voucher.get("taxAmount"),
                "source": self.key,
            }
            for voucher in vouchers or []
        ]
        return ok(count=len(invoices), invoices=invoices)


class QuickBooksAdapter(ProviderAdapter):
    key = "quickbooks"
    display_name = "QuickBooks"
    capabilities = frozenset({"connect", "sync_invoices"})
    token_url = "https://oauth.platform.intuit.com/oauth2/v1/tokens/bearer"

    def connect(self, credentials: dict[str, Any]) -> dict[str, Any]:
        if not (settings.quickbooks_client_id and settings.quickbooks_client_secret):
            raise IntegrationError("QuickBooks client credentials not configured")
        if not credentials.get("auth_code"):
            raise IntegrationError("QuickBooks authorization code is required")
        try:
            tokens = self._request(
                "POST",
                self.token_url,
                data={
                    "grant_type": "authorization_code",
                    "code": credentials["auth_code"],
                    "redirect_uri": credentials.get("redirect_uri"),
                },
                auth=(settings.quickbooks_client_id, settings.quickbooks_client_secret),
                headers={"Accept": "application/json"},
            )
        except (httpx.HTTPError, IntegrationError) as exc:
            raise IntegrationError("QuickBooks authentication failed") from exc
        return ok(
            company_id=credentials.get("company_id"),
            tokens={
                "access_token": tokens.get("access_token"),
                "refresh_token": tokens.get("refresh_token"),
            },
        )

    def sync_invoices(self, credentials: dict[str, Any]) -> dict[str, Any]:
        company_id = credentials.get("company_id")
        if not company_id or not credentials.get("access_token"):
            raise IntegrationError("QuickBooks connection is missing company id or token")
        payload = self._request(
            "GET",
            f"{settings.quickbooks_api_url.rstrip('/')}/v3/company/{company_id}/query",
            params={"query": "select * from Invoice"},
            headers={
                "Authorization": f"Bearer {credentials['access_token']}",
                "Accept": "application/json",
            },
        )
        rows = (payload.get("QueryResponse") or {}).get("Invoice") or []
        invoices = [
            {
                "external_id": row.get("Id"),
                "invoice_number": row.get("DocNumber"),
                "date": row.get("TxnDate"),
                "customer_name": (row.get("CustomerRef") or {}).get("name"),
                "amount": row.get("TotalAmt"),
                "tax_amount": (row.get("TxnTaxDetail") or {}).get("TotalTax"),
                "source": self.key,
            }
            for row in rows
        ]
        return ok(count=len(invoices), invoices=invoices)


class ZohoBooksAdapter(ProviderAdapter):
    key = "zoho"
    display_name = "Zoho Books"
    capabilities = frozenset({"connect", "sync_invoices"})
    token_url = "https://accounts.zoho.in/oauth/v2/token"
    api_url = "https://www.zohoapis.in/books/v3"

    def connect(self, credentials: dict[str, Any]) -> dict[str, Any]:
        if not (settings.zoho_client_id and settings.zoho_client_secret):
            raise IntegrationError("Zoho client credentials not configured")
        if not credentials.get("auth_code"):
            raise IntegrationError("Zoho authorization code is required")
        try:
            tokens = self._request(
                "POST",
                self.token_url,
                data={
                    "grant_type": "authorization_code",
                    "client_id": settings.zoho_client_id,
                    "client_secret": settings.zoho_client_secret,
                    "code": credentials["auth_code"],
                    "redirect_uri": credentials.get("redirect_uri"),
                },
            )
        except (httpx.HTTPError, IntegrationError) as exc:
            raise IntegrationError("Zoho authentication failed") from exc
        return ok(
            tokens={
                "access_token": tokens.get("access_token"),
                "refresh_token": tokens.get("refresh_token"),
            },
        )

    def sync_invoices(self, credentials: dict[str, Any]) -> dict[str, Any]:
        if not credentials.get("access_token") or not credentials.get("organization_id"):
            raise IntegrationError("Zoho connection is missing organization id or token")
        payload = self._request(
            "GET",
            f"{self.api_url}/invoices",
            params={"organization_id": credentials["organization_id"]},
            headers={"Authorization": f"Zoho-oauthtoken {credentials['access_token']}"},
        )
        invoices = [
            {
                "external_id": row.get("invoice_id"),
                "invoice_number": row.get("invoice_number"),
                "date": row.get("date"),
                "customer_name": row.get("customer_name"),
                "amount": row.get("total"),
                "tax_amount": None,
                "source": self.key,
            }
            for row in payload.get("invoices") or []
        ]
        return ok(count=len(invoices), invoices=invoices)


# ── Payment gateways ────────────────────────────────────────────────────


class RazorpayAdapter(ProviderAdapter):
    key = "razorpay"
    display_name = "Razorpay"
    capabilities = frozenset({"process_payment", "setup_recurring", "refund"})
    api_url = "https://api.razorpay.com/v1"

    def _auth(self) -> tuple[str, str]:
        if not (settings.razorpay_key_id and settings.razorpay_key_secret):
            raise IntegrationError("Razorpay credentials not configured")
        return settings.razorpay_key_id, settings.razorpay_key_secret

    def process_payment(self, data: dict[str, Any]) -> dict[str, Any]:
        order = self._request(
            "POST",
            f"{self.api_url}/orders",
            auth=self._auth(),
            json={
                "amount": to_minor_units(data["amount"]),
                "currency": data.get("currency") or "INR",
                "receipt": data.get("receipt") or f"rcpt_{uuid4().hex[:20]}",
                "notes": {"user_id": str(data.get("user_id", ""))},
            },
        )
        return ok(order_id=order.get("id"), status=order.get("status"), amount=data["amount"], currency=order.get("currency"))

    def setup_recurring(self, data: dict[str, Any]) -> dict[str, Any]:
        if not data.get("plan_id"):
            raise IntegrationError("plan_id is required for Razorpay subscriptions")
        subscription = self._request(
            "POST",
            f"{self.api_url}/subscriptions",
            auth=self._auth(),
            json={
                "plan_id": data["plan_id"],
                "total_count": int(data.get("total_count") or 12),
                "customer_notify": 1,
                "notes": {"user_id": str(data.get("user_id", ""))},
            },
        )
        return ok(subscription_id=subscription.get("id"), status=subscription.get("status"), short_url=subscription.get("short_url"))

    def refund(self, payment_id: str, amount: Any) -> dict[str, Any]:
        refund = self._request(
            "POST",
            f"{self.api_url}/payments/{payment_id}/refund",
            auth=self._auth(),
            json={"amount": to_minor_units(amount)},
        )
        return ok(refund_id=refund.get("id"), status=refund.get("status"), payment_id=payment_id)


class StripeAdapter(ProviderAdapter):
    key = "stripe"
    display_name = "Stripe"
    capabilities = frozenset({"process_payment", "refund"})
    api_url = "https://api.stripe.com/v1"

    def _auth(self) -> tuple[str, str]:
        if not settings.stripe_secret_key:
            raise IntegrationError("Stripe secret key not configured")
        return settings.stripe_secret_key, ""

    def process_payment(self, data: dict[str, Any]) -> dict[str, Any]:
        intent = self._request(
            "POST",
            f"{self.api_url}/payment_intents",
            auth=self._auth(),
            data={
                "amount": to_minor_units(data["amount"]),
                "currency": (data.get("currency") or "INR").lower(),
                "metadata[user_id]": str(data.get("user_id", "")),
            },
        )
        return ok(
            payment_intent_id=intent.get("id"),
            client_secret=intent.get("client_secret"),
            status=intent.get("status"),
        )

    def refund(self, payment_id: str, amount: Any) -> dict[str, Any]:
        refund = self._request(
            "POST",
            f"{self.api_url}/refunds",
            auth=self._auth(),
            data={"payment_intent": payment_id, "amount": to_minor_units(amount)},
        )
        return ok(refund_id=refund.get("id"), status=refund.get("status"), payment_id=payment_id)


# ── UPI ─────────────────────────────────────────────────────────────────


def phonepe_checksum(payload: str, salt_key: str, salt_index: str) -> str:
    return f"{hashlib.sha256((payload + salt_key).encode('utf-8')).hexdigest()}###{salt_index}"


class PhonePeAdapter(ProviderAdapter):
    key = "phonepe"
    display_name = "PhonePe"
    capabilities = frozenset({"initiate_payment", "verify_payment"})
    pay_path = "/pg/v1/pay"

    def _merchant(self) -> tuple[str, str]:
        if not (settings.phonepe_merchant_id and settings.phonepe_salt_key):
            raise IntegrationError("PhonePe merchant credentials not configured")
        return settings.phonepe_merchant_id, settings.phonepe_salt_key

    def initiate_payment(self, data: dict[str, Any]) -> dict[str, Any]:
        merchant_id, salt_key = self._merchant()
        transaction_id = data.get("transaction_id") or f"TXN{uuid4().hex[:30]}"
        body = {
            "merchantId": merchant_id,
            "merchantTransactionId": transaction_id,
            "merchantUserId": f"U{data.get('user_id', '')}",
            "amount": to_minor_units(data["amount"]),
            "callbackUrl": f"{settings.app_base_url.rstrip('/')}/payments/upi/callback",
            "paymentInstrument": {"type": "UPI_COLLECT", "vpa": data.get("upi_id")},
        }
        encoded = base64.b64encode(json.dumps(body).encode("utf-8")).decode("ascii")
        response = self._request(
            "POST",
            f"{settings.phonepe_api_url.rstrip('/')}{self.pay_path}",
            json={"request": encoded},
            headers={"X-VERIFY": phonepe_checksum(encoded + self.pay_path, salt_key, settings.phonepe_salt_index)},
        )
        return ok(
            transaction_id=transaction_id,
            code=response.get("code"),
            state=(response.get("data") or {}).get("state"),
        )

    def verify_payment(self, transaction_id: str) -> dict[str, Any]:
        merchant_id, salt_key = self._merchant()
        path = f"/pg/v1/status/{merchant_id}/{transaction_id}"
        response = self._request(
            "GET",
            f"{settings.phonepe_api_url.rstrip('/')}{path}",
            headers={
                "X-VERIFY": phonepe_checksum(path, salt_key, settings.phonepe_salt_index),
                "X-MERCHANT-ID": merchant_id,
            },
        )
        code = response.get("code")
        return ok(transaction_id=transaction_id, code=code, paid=code == "PAYMENT_SUCCESS")


# ── Bank account verification ───────────────────────────────────────────


class BankVerificationClient(ProviderAdapter):
    key = "bank_verification"
    display_name = "Bank verification"
    capabilities = frozenset({"verify_account"})

    def verify_account(self, account_number: str, ifsc_code: str) -> dict[str, Any]:
        if not settings.bank_verification_api_key:
            raise IntegrationError("BANK_VERIFICATION_API_KEY not configured")
        payload = self._request(
            "GET",
            settings.bank_verification_api_url,
            params={"account": account_number, "ifsc": ifsc_code},
            headers={"Authorization": f"Bearer {settings.bank_verification_api_key}"},
        )
        return ok(
            is_valid=bool(payload.get("valid")),
            account_holder_name=payload.get("name"),
            bank_name=payload.get("bank_name"),
            branch_name=payload.get("branch_name"),
        )
