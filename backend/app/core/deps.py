from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends, HTTPException, Request, Security, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from sqlalchemy.orm import Session

from app.core.security import decode_token
from app.db.session import get_db
from app.models.enums import Role
from app.models.user import User

# Tokens are minted by the external auth service; this API only verifies them.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")
logger = logging.getLogger("security")


def _reject(event: str, request: Request, user_id: Optional[int] = None) -> HTTPException:
    logger.info(
        event,
        extra={
            "request_id": getattr(request.state, "request_id", None) or request.headers.get("x-request-id"),
            "path": request.url.path,
            "method": request.method,
            "user_id": user_id,
        },
    )
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user(
    request: Request,
    token: str = Security(oauth2_scheme),
    db: Session = Depends(get_db),
) -> User:
    try:
        subject = decode_token(token).get("sub")
    except JWTError:
        raise _reject("token_invalid", request)
    if subject is None:
        raise _reject("token_missing_sub", request)
    try:
        user_id = int(subject)
    except (TypeError, ValueError):
        raise _reject("token_bad_sub", request)

    user = db.get(User, user_id)
    # Closed accounts keep their row for invoice history but cannot authenticate.
    if user is None or not user.is_active:
        raise _reject("user_inactive_or_missing", request, user_id)
    return user


def is_admin(user: User) -> bool:
    return user.role == Role.ADMIN
