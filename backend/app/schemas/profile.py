from __future__ import annotations

import re
from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, EmailStr, Field, HttpUrl, field_validator

from app.models.enums import Gender, Profession, ProfileVisibility, Role
from app.schemas.base import ORMModel
from app.schemas.integration import GSTIN_PATTERN

PAN_PATTERN = re.compile(r"^[A-Z]{5}[0-9]{4}[A-Z]$")
INDIAN_MOBILE_PATTERN = re.compile(r"^(?:\+?91)?([6-9]\d{9})$")
DELETE_CONFIRMATION = "DELETE MY ACCOUNT"


class ProfileRead(ORMModel):
    id: int
    name: str
    email: str
    mobile: Optional[str] = None
    email_verified: bool
    mobile_verified: bool
    role: Role
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    full_name: str
    avatar_url: Optional[str] = None
    bio: Optional[str] = None
    date_of_birth: Optional[date] = None
    gender: Optional[Gender] = None
    profession: Optional[Profession] = None
    experience_years: Optional[int] = None
    specialization: Optional[list[str]] = None
    qualifications: Optional[list[str]] = None
    gst_registration_number: Optional[str] = None
    pan_number: Optional[str] = None
    company_name: Optional[str] = None
    website: Optional[str] = None
    linkedin_profile: Optional[str] = None
    address: Optional[dict] = None
    preferences: dict
    last_login_at: Optional[datetime] = None
    created_at: datetime


class ProfileUpdate(BaseModel):
    """Profile fields a user may edit; account fields have their own endpoints."""

    first_name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    bio: Optional[str] = Field(default=None, max_length=500)
    date_of_birth: Optional[date] = None
    gender: Optional[Gender] = None
    profession: Optional[Profession] = None
    experience_years: Optional[int] = Field(default=None, ge=0, le=50)
    specialization: Optional[list[str]] = None
    qualifications: Optional[list[str]] = None
    gst_registration_number: Optional[str] = None
    pan_number: Optional[str] = None
    company_name: Optional[str] = Field(default=None, max_length=255)
    website: Optional[HttpUrl] = None
    linkedin_profile: Optional[HttpUrl] = None
    address: Optional[dict] = None

    @field_validator("first_name", "last_name", "bio", mode="before")
    @classmethod
    def strip_text(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("gst_registration_number")
    @classmethod
    def validate_gstin(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not GSTIN_PATTERN.match(value):
            raise ValueError("Invalid GST registration number")
        return value

    @field_validator("pan_number")
    @classmethod
    def validate_pan(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not PAN_PATTERN.match(value):
            raise ValueError("Invalid PAN number")
        return value


class EmailUpdate(BaseModel):
    new_email: EmailStr
    password: str = Field(..., min_length=1)


class MobileUpdate(BaseModel):
    new_mobile: str
    password: str = Field(..., min_length=1)

    @field_validator("new_mobile")
    @classmethod
    def validate_mobile(cls, value: str) -> str:
        match = INDIAN_MOBILE_PATTERN.match(value.replace(" ", ""))
        if not match:
            raise ValueError("Please provide a valid Indian mobile number")
        return match.group(1)


class NotificationPreferences(BaseModel):
    email: Optional[bool] = None
    sms: Optional[bool] = None
    push: Optional[bool] = None


class PrivacyPreferences(BaseModel):
    profile_visibility: Optional[ProfileVisibility] = None
    show_email: Optional[bool] = None
    show_mobile: Optional[bool] = None


class PreferencesUpdate(BaseModel):
    notifications: Optional[NotificationPreferences] = None
    privacy: Optional[PrivacyPreferences] = None
    language: Optional[Literal["en", "hi"]] = None
    timezone: Optional[str] = Field(default=None, max_length=64)


class AccountDeletion(BaseModel):
    password: str = Field(..., min_length=1)
    confirm_text: str

    @field_validator("confirm_text")
    @classmethod
    def validate_confirmation(cls, value: str) -> str:
        if value != DELETE_CONFIRMATION:
            raise ValueError(f'Please type "{DELETE_CONFIRMATION}" to confirm')
        return value
