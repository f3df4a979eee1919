from __future__ import annotations

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.deps import get_current_user
from app.db.session import get_db
from app.models.user import User
from app.schemas.profile import (
    AccountDeletion,
    EmailUpdate,
    MobileUpdate,
    PreferencesUpdate,
    ProfileRead,
    ProfileUpdate,
)
from app.services import profile as profile_service
from app.services.profile import ProfileConflictError, ProfileError

router = APIRouter(prefix="/api/profile", tags=["profile"])


def _raise_for(exc: ProfileError) -> None:
    if isinstance(exc, ProfileConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


def _commit(db: Session, user: User) -> ProfileRead:
    try:
        db.commit()
    except IntegrityError as exc:
        # Lost a race on the unique email or mobile index.
        db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Value already in use") from exc
    db.refresh(user)
    return ProfileRead.model_validate(user)


@router.get("", response_model=ProfileRead)
def get_profile(current_user: User = Depends(get_current_user)) -> ProfileRead:
    return ProfileRead.model_validate(current_user)


@router.put("", response_model=ProfileRead)
def update_profile(
    profile_in: ProfileUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ProfileRead:
    profile_service.update_profile(db, current_user, profile_in.model_dump(exclude_unset=True))
    return _commit(db, current_user)


@router.post("/avatar", response_model=ProfileRead)
def upload_avatar(
    avatar: UploadFile = File(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ProfileRead:
    try:
        profile_service.store_avatar(db, current_user, content=avatar.file.read(), content_type=avatar.content_type)
    except ProfileError as exc:
        db.rollback()
        _raise_for(exc)
    return _commit(db, current_user)


@router.put("/email", response_model=ProfileRead)
def update_email(
    payload: EmailUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ProfileRead:
    try:
        profile_service.change_email(db, current_user, new_email=payload.new_email, password=payload.password)
    except ProfileError as exc:
        db.rollback()
        _raise_for(exc)
    return _commit(db, current_user)


@router.put("/mobile", response_model=ProfileRead)
def update_mobile(
    payload: MobileUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ProfileRead:
    try:
        profile_service.change_mobile(db, current_user, new_mobile=payload.new_mobile, password=payload.password)
    except ProfileError as exc:
        db.rollback()
        _raise_for(exc)
    return _commit(db, current_user)


@router.put("/preferences", response_model=ProfileRead)
def update_preferences(
    payload: PreferencesUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ProfileRead:
    profile_service.update_preferences(db, current_user, payload.model_dump(exclude_unset=True, mode="json"))
    return _commit(db, current_user)


@router.delete("", response_model=dict)
def delete_account(
    payload: AccountDeletion,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict:
    try:
        profile_service.delete_account(db, current_user, password=payload.password)
    except ProfileError as exc:
        db.rollback()
        _raise_for(exc)
    db.commit()
    return {"success": True, "message": "Account deleted successfully"}
