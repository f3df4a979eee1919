from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import Any

from sqlalchemy.orm import Session

from app.core.security import generate_verification_token, verify_password
from app.core.settings import settings
from app.models.integration import IntegrationConnection
from app.models.user import User, default_preferences
from app.services.email import EmailSendError, send_email_verification

logger = logging.getLogger(__name__)

AVATAR_TYPES = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
}


class ProfileError(ValueError):
    pass


class ProfileConflictError(ProfileError):
    pass


def _require_password(user: User, password: str) -> None:
    if not verify_password(password, user.hashed_password or ""):
        raise ProfileError("Invalid password")


def update_profile(db: Session, user: User, data: dict[str, Any]) -> User:
    for field, value in data.items():
        if field in {"website", "linkedin_profile"} and value is not None:
            value = str(value)
        setattr(user, field, value)
    db.add(user)
    db.flush()
    return user


def store_avatar(db: Session, user: User, *, content: bytes, content_type: str | None) -> User:
    extension = AVATAR_TYPES.get((content_type or "").lower())
    if extension is None:
        raise ProfileError("Only image files are allowed")
    if not content:
        raise ProfileError("No file uploaded")
    if len(content) > settings.avatar_max_bytes:
        raise ProfileError("File too large")

    avatar_dir = Path(settings.uploads_dir) / "avatars"
    avatar_dir.mkdir(parents=True, exist_ok=True)
    filename = f"{user.id}_{uuid.uuid4().hex}{extension}"
    (avatar_dir / filename).write_bytes(content)

    previous = user.avatar_url
    user.avatar_url = f"/uploads/avatars/{filename}"
    db.add(user)
    db.flush()
    if previous and previous.startswith("/uploads/avatars/"):
        (avatar_dir / previous.rsplit("/", 1)[-1]).unlink(missing_ok=True)
    return user


def change_email(db: Session, user: User, *, new_email: str, password: str) -> User:
    _require_password(user, password)
    new_email = new_email.strip().lower()
    taken = db.query(User.id).filter(User.email == new_email, User.id != user.id).first()
    if taken:
        raise ProfileConflictError("Email already in use")

    user.email = new_email
    user.email_verified = False
    user.email_verification_token = generate_verification_token()
    db.add(user)
    db.flush()
    try:
        send_email_verification(user, user.email_verification_token)
    except EmailSendError as exc:
        # The change stands; the user can request a new verification mail.
        logger.warning("email_verification_not_sent: %s", exc, extra={"user_id": user.id})
    return user


def change_mobile(db: Session, user: User, *, new_mobile: str, password: str) -> User:
    _require_password(user, password)
    taken = db.query(User.id).filter(User.mobile == new_mobile, User.id != user.id).first()
    if taken:
        raise ProfileConflictError("Mobile number already in use")
    user.mobile = new_mobile
    user.mobile_verified = False
    db.add(user)
    db.flush()
    return user


def update_preferences(db: Session, user: User, data: dict[str, Any]) -> User:
    """Deep-merge the supplied keys into the stored preferences."""
    merged = default_preferences()
    for key, value in (user.preferences or {}).items():
        merged[key] = dict(value) if isinstance(value, dict) else value
    for key, value in data.items():
        if isinstance(value, dict):
            section = dict(merged.get(key) or {})
            section.update({k: v for k, v in value.items() if v is not None})
            merged[key] = section
        elif value is not None:
            merged[key] = value
    user.preferences = merged
    db.add(user)
    db.flush()
    return user


def delete_account(db: Session, user: User, *, password: str) -> None:
    """Close the account.

    Invoices are tax records and outlive the account, so the user row is
    deactivated and stripped of personal data instead of being removed.
    """
    _require_password(user, password)
    db.query(IntegrationConnection).filter(IntegrationConnection.user_id == user.id).delete()
    user.is_active = False
    user.name = "Deleted user"
    user.email = f"deleted-{user.id}@invalid.local"
    user.mobile = None
    user.hashed_password = None
    user.email_verification_token = None
    for field in (
        "first_name",
        "last_name",
        "avatar_url",
        "bio",
        "date_of_birth",
        "pan_number",
        "website",
        "linkedin_profile",
        "address",
    ):
        setattr(user, field, None)
    db.add(user)
    db.flush()
    logger.info("account_deleted", extra={"user_id": user.id})
