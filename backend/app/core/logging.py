from __future__ import annotations

import json
import logging
import sys
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import Request, Response
from jose import JWTError
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.security import decode_token

_EXTRA_KEYS = (
    "request_id",
    "user_id",
    "path",
    "method",
    "status_code",
    "latency_ms",
    "invoice_id",
    "invoice_number",
    "category",
    "provider",
    "operation",
)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key in _EXTRA_KEYS:
            if hasattr(record, key):
                payload[key] = getattr(record, key)

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


def configure_logging(level: str = "INFO") -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    logging.basicConfig(
        level=level,
        handlers=[handler],
        force=True,
    )
    # httpx logs every outbound request at INFO, including query strings with GSTINs.
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _resolve_user_id(request: Request) -> Optional[int]:
    auth_header = request.headers.get("authorization") or ""
    if not auth_header.lower().startswith("bearer "):
        return None
    token = auth_header.split(" ", 1)[1].strip()
    if not token:
        return None
    try:
        raw_user_id = decode_token(token).get("sub")
        if raw_user_id is None:
            return None
        return int(raw_user_id)
    except (JWTError, ValueError, TypeError):
        return None


def _request_fields(request: Request, request_id: str, started: float) -> dict[str, Any]:
    return {
        "request_id": request_id,
        "path": request.url.path,
        "method": request.method,
        "latency_ms": round((time.perf_counter() - started) * 1000, 2),
        "user_id": _resolve_user_id(request),
    }


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One structured line per request, tagged with a propagated X-Request-Id."""

    def __init__(self, app, logger_name: str = "request") -> None:
        super().__init__(app)
        self.logger = logging.getLogger(logger_name)
        self.security_logger = logging.getLogger("security")

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        request.state.request_id = request_id
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            self.logger.exception("unhandled_exception", extra=_request_fields(request, request_id, started))
            raise

        fields = _request_fields(request, request_id, started)
        fields["status_code"] = response.status_code
        self.logger.info("request", extra=fields)
        if response.status_code in (401, 403):
            # Denials are mirrored to the security audit stream.
            self.security_logger.info("access_denied", extra=fields)

        response.headers["X-Request-Id"] = request_id
        return response
