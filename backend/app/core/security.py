from __future__ import annotations

import base64
import hashlib
import json
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from cryptography.fernet import Fernet, InvalidToken
from jose import jwt
from passlib.context import CryptContext

from app.core.settings import settings


pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    if not plain_password or not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """Mint a token in the format the auth collaborator issues."""
    to_encode = data.copy()
    now = datetime.now(timezone.utc)
    to_encode.setdefault("iat", now)
    to_encode["exp"] = now + (expires_delta or timedelta(minutes=60))
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.algorithm)


def decode_token(token: str) -> Dict[str, Any]:
    return jwt.decode(token, settings.jwt_secret, algorithms=[settings.algorithm])


def generate_verification_token() -> str:
    return secrets.token_hex(32)


# ── Integration credentials ─────────────────────────────────────────────


class CredentialsError(RuntimeError):
    pass


def _fernet(key: str | None = None) -> Fernet:
    raw = key if key is not None else settings.encryption_key
    if not raw:
        raise CredentialsError("ENCRYPTION_KEY not configured")
    # Any operator-supplied string is stretched to a valid 32-byte Fernet key.
    digest = hashlib.sha256(raw.encode("utf-8")).digest()
    return Fernet(base64.urlsafe_b64encode(digest))


def encrypt_credentials(credentials: dict[str, Any], *, key: str | None = None) -> str:
    serialized = json.dumps(credentials, sort_keys=True, default=str)
    return _fernet(key).encrypt(serialized.encode("utf-8")).decode("ascii")


def decrypt_credentials(token: str, *, key: str | None = None) -> dict[str, Any]:
    try:
        decrypted = _fernet(key).decrypt(token.encode("ascii"))
    except InvalidToken as exc:
        raise CredentialsError("Stored credentials could not be decrypted") from exc
    return json.loads(decrypted.decode("utf-8"))
