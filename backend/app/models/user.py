from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional

from sqlalchemy import Boolean, Date, DateTime, Enum, Integer, JSON, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, IDMixin, TimestampMixin
from app.models.enums import Gender, Profession, Role


def default_preferences() -> dict:
    return {
        "notifications": {"email": True, "sms": False, "push": True},
        "privacy": {"profile_visibility": "members_only", "show_email": False, "show_mobile": False},
        "language": "en",
        "timezone": "Asia/Kolkata",
    }


class User(IDMixin, TimestampMixin, Base):
    __tablename__ = "users"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    hashed_password: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    mobile: Mapped[Optional[str]] = mapped_column(String(15), unique=True, nullable=True, index=True)
    email_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    mobile_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    email_verification_token: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    role: Mapped[Role] = mapped_column(Enum(Role, name="role"), default=Role.USER, nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Profile sub-document
    first_name: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    avatar_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    bio: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    date_of_birth: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    gender: Mapped[Optional[Gender]] = mapped_column(Enum(Gender, name="gender"), nullable=True)
    profession: Mapped[Optional[Profession]] = mapped_column(Enum(Profession, name="profession"), nullable=True)
    experience_years: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    specialization: Mapped[Optional[list[str]]] = mapped_column(JSON().with_variant(JSONB, "postgresql"), nullable=True)
    qualifications: Mapped[Optional[list[str]]] = mapped_column(JSON().with_variant(JSONB, "postgresql"), nullable=True)
    gst_registration_number: Mapped[Optional[str]] = mapped_column(String(15), nullable=True)
    pan_number: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    company_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    website: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    linkedin_profile: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    address: Mapped[Optional[dict]] = mapped_column(JSON().with_variant(JSONB, "postgresql"), nullable=True)

    preferences: Mapped[dict] = mapped_column(
        JSON().with_variant(JSONB, "postgresql"),
        default=default_preferences,
        nullable=False,
    )

    invoices: Mapped[List["Invoice"]] = relationship(back_populates="user")
    integration_connections: Mapped[List["IntegrationConnection"]] = relationship(
        back_populates="user",
        cascade="all, delete-orphan",
    )

    @property
    def full_name(self) -> str:
        if self.first_name and self.last_name:
            return f"{self.first_name} {self.last_name}"
        return self.name
