"""GSTN tax-authority client.

The bearer token is cached per client instance and refreshed at most once at a
time: concurrent callers that find the token expired wait on the refresh lock
and reuse whatever token the first caller obtained.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Optional

from app.core.settings import settings
from app.services.integration_providers import IntegrationError, ProviderAdapter, ok

logger = logging.getLogger(__name__)

# Refresh a little before the provider's stated expiry.
TOKEN_EXPIRY_SKEW_SECONDS = 30
API_PREFIX = "/taxpayerapi/v1.0"


class GSTNClient(ProviderAdapter):
    key = "gstn"
    display_name = "GSTN"
    capabilities = frozenset({"validate_gstin", "file_return", "generate_eway_bill", "return_status"})

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._access_token: Optional[str] = None
        self._token_expires_at = 0.0

    @property
    def base_url(self) -> str:
        return settings.gstn_api_url.rstrip("/")

    def _token_is_fresh(self) -> bool:
        return bool(self._access_token) and self._clock() < self._token_expires_at

    def invalidate_token(self) -> None:
        with self._lock:
            self._access_token = None
            self._token_expires_at = 0.0

    def authenticate(self) -> str:
        if self._token_is_fresh():
            return self._access_token  # type: ignore[return-value]
        with self._lock:
            if self._token_is_fresh():
                return self._access_token  # type: ignore[return-value]
            if not (settings.gstn_client_id and settings.gstn_client_secret):
                raise IntegrationError("GSTN credentials not configured")
            payload = self._request(
                "POST",
                f"{self.base_url}{API_PREFIX}/authenticate",
                json={
                    "client_id": settings.gstn_client_id,
                    "client_secret": settings.gstn_client_secret,
                    "grant_type": "client_credentials",
                },
            )
            token = payload.get("access_token")
            if not token:
                raise IntegrationError("GSTN authentication returned no access token")
            expires_in = int(payload.get("expires_in") or 0)
            self._access_token = token
            self._token_expires_at = self._clock() + max(expires_in - TOKEN_EXPIRY_SKEW_SECONDS, 0)
            logger.info("gstn_authenticated", extra={"provider": self.key})
            return token

    def _authorized(self, method: str, path: str, **kwargs: Any) -> Any:
        extra_headers = kwargs.pop("headers", {})
        for attempt in (1, 2):
            headers = {"Authorization": f"Bearer {self.authenticate()}", **extra_headers}
            try:
                return self._request(method, f"{self.base_url}{path}", headers=headers, **kwargs)
            except IntegrationError as exc:
                # A token revoked before its expiry: drop it and authenticate once more.
                if exc.status_code != 401 or attempt == 2:
                    raise
                logger.info("gstn_token_rejected", extra={"provider": self.key})
                self.invalidate_token()

    def validate_gstin(self, gstin: str) -> dict[str, Any]:
        details = self._authorized("GET", f"{API_PREFIX}/search", params={"gstin": gstin})
        return ok(is_valid=details.get("status") == "Active", details=details)

    def file_return(self, data: dict[str, Any]) -> dict[str, Any]:
        response = self._authorized("POST", f"{API_PREFIX}/returns", json=data)
        return ok(
            acknowledgment_number=response.get("ack_num"),
            reference_id=response.get("reference_id"),
            status=response.get("status"),
        )

    def generate_eway_bill(self, data: dict[str, Any]) -> dict[str, Any]:
        response = self._authorized("POST", f"{API_PREFIX}/ewayapi", json=data)
        return ok(
            eway_bill_number=response.get("ewayBillNo"),
            eway_bill_date=response.get("ewayBillDate"),
            valid_upto=response.get("validUpto"),
        )

    def return_status(self, gstin: str, return_period: str, return_type: str) -> dict[str, Any]:
        response = self._authorized(
            "GET",
            f"{API_PREFIX}/returns/status",
            params={"gstin": gstin, "ret_period": return_period, "return_type": return_type},
        )
        return ok(status=response.get("status"), details=response)
