from __future__ import annotations

import json
from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import List

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, DotEnvSettingsSource, EnvSettingsSource, SettingsConfigDict


class _FallbackEnvSettingsSource(EnvSettingsSource):
    """Allow ALLOW_ORIGINS to be comma-separated instead of strict JSON."""

    def decode_complex_value(self, field_name, field, value):  # type: ignore[override]
        try:
            return super().decode_complex_value(field_name, field, value)
        except json.JSONDecodeError:
            if field_name == "allow_origins":
                return value
            raise


class _FallbackDotEnvSettingsSource(DotEnvSettingsSource):
    """Allow ALLOW_ORIGINS to be comma-separated instead of strict JSON."""

    def decode_complex_value(self, field_name, field, value):  # type: ignore[override]
        try:
            return super().decode_complex_value(field_name, field, value)
        except json.JSONDecodeError:
            if field_name == "allow_origins":
                return value
            raise


_DEFAULT_ORIGINS = [
    "http://localhost",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    project_name: str = "GST Billing API"
    project_version: str = "1.0.0"
    environment: str = Field(
        default="development",
        description="Deployment environment name",
        validation_alias=AliasChoices("ENV", "ENVIRONMENT"),
    )
    log_level: str = Field(default="INFO", description="Logging level")

    # Database
    database_url: str = Field(
        default="postgresql+psycopg2://postgres@localhost:5432/gst_billing",
        description="SQLAlchemy database URL",
    )
    db_pool_size: int = Field(default=5, description="Base DB connection pool size")
    db_max_overflow: int = Field(default=10, description="Additional DB connections beyond pool size")
    db_pool_timeout: int = Field(default=30, description="Seconds to wait for a DB connection")
    db_pool_recycle: int = Field(default=1800, description="Recycle DB connections after N seconds")

    # Auth collaborator (tokens are issued elsewhere, verified here)
    jwt_secret: str = Field(default="change_me", description="JWT signing secret")
    algorithm: str = Field(default="HS256", description="JWT signing algorithm")

    allow_origins: List[str] = Field(default_factory=lambda: list(_DEFAULT_ORIGINS))

    # Storage
    uploads_dir: str = Field(
        default="./uploads",
        description="Directory for avatars and invoice attachments",
        validation_alias=AliasChoices("UPLOAD_DIR", "UPLOADS_DIR"),
    )
    avatar_max_bytes: int = Field(default=5 * 1024 * 1024, description="Largest accepted avatar upload")

    # Stored integration credentials
    encryption_key: str | None = Field(
        default=None,
        description="Symmetric key for integration credentials",
        validation_alias=AliasChoices("ENCRYPTION_KEY", "CREDENTIALS_ENCRYPTION_KEY"),
    )

    # GSTN taxpayer API
    gstn_api_url: str = Field(default="https://api.gst.gov.in", validation_alias=AliasChoices("GSTN_API_URL"))
    gstn_client_id: str | None = Field(default=None, validation_alias=AliasChoices("GSTN_CLIENT_ID"))
    gstn_client_secret: str | None = Field(default=None, validation_alias=AliasChoices("GSTN_CLIENT_SECRET"))

    # Accounting software
    quickbooks_client_id: str | None = Field(default=None, validation_alias=AliasChoices("QUICKBOOKS_CLIENT_ID"))
    quickbooks_client_secret: str | None = Field(
        default=None, validation_alias=AliasChoices("QUICKBOOKS_CLIENT_SECRET")
    )
    quickbooks_api_url: str = Field(
        default="https://sandbox-quickbooks.api.intuit.com",
        validation_alias=AliasChoices("QUICKBOOKS_API_URL"),
    )
    zoho_client_id: str | None = Field(default=None, validation_alias=AliasChoices("ZOHO_CLIENT_ID"))
    zoho_client_secret: str | None = Field(default=None, validation_alias=AliasChoices("ZOHO_CLIENT_SECRET"))
    tally_default_url: str = Field(default="http://localhost:9000", validation_alias=AliasChoices("TALLY_URL"))

    # Payment gateways
    razorpay_key_id: str | None = Field(default=None, validation_alias=AliasChoices("RAZORPAY_KEY_ID"))
    razorpay_key_secret: str | None = Field(default=None, validation_alias=AliasChoices("RAZORPAY_KEY_SECRET"))
    stripe_secret_key: str | None = Field(default=None, validation_alias=AliasChoices("STRIPE_SECRET_KEY"))

    # UPI
    phonepe_api_url: str = Field(
        default="https://api.phonepe.com/apis/hermes",
        validation_alias=AliasChoices("PHONEPE_API_URL"),
    )
    phonepe_merchant_id: str | None = Field(default=None, validation_alias=AliasChoices("PHONEPE_MERCHANT_ID"))
    phonepe_salt_key: str | None = Field(default=None, validation_alias=AliasChoices("PHONEPE_SALT_KEY"))
    phonepe_salt_index: str = Field(default="1", validation_alias=AliasChoices("PHONEPE_SALT_INDEX"))

    # Bank account verification
    bank_verification_api_url: str = Field(
        default="https://api.bankverification.com/verify",
        validation_alias=AliasChoices("BANK_VERIFICATION_API_URL"),
    )
    bank_verification_api_key: str | None = Field(
        default=None, validation_alias=AliasChoices("BANK_VERIFICATION_API_KEY")
    )

    integration_http_timeout_seconds: float = Field(
        default=15.0,
        description="Timeout for outbound integration HTTP requests",
        validation_alias=AliasChoices("INTEGRATION_HTTP_TIMEOUT_SECONDS"),
    )
    tally_connect_timeout_seconds: float = Field(default=5.0, description="Timeout when probing a Tally server")

    # Email delivery
    app_base_url: str = Field(
        default="http://localhost:3000",
        description="Base URL for links in emails",
        validation_alias=AliasChoices("APP_BASE_URL", "FRONTEND_URL"),
    )
    email_provider: str = Field(
        default="disabled",
        description="Email provider: resend, smtp, disabled",
        validation_alias=AliasChoices("EMAIL_PROVIDER"),
    )
    email_api_key: str | None = Field(default=None, validation_alias=AliasChoices("EMAIL_API_KEY"))
    email_from: str | None = Field(default=None, validation_alias=AliasChoices("EMAIL_FROM"))
    smtp_host: str | None = Field(default=None, description="SMTP host")
    smtp_port: int = Field(default=587, description="SMTP port")
    smtp_username: str | None = Field(default=None, description="SMTP username")
    smtp_password: str | None = Field(default=None, description="SMTP password")
    smtp_use_tls: bool = Field(default=True, description="Use TLS for SMTP")

    # Invoices
    invoice_number_prefix: str = Field(default="GST", description="Prefix of generated invoice numbers")
    invoice_default_tax_rate: Decimal = Field(default=Decimal("18.00"), description="GST rate applied to new lines")
    invoice_max_reminders: int = Field(default=3, description="Reminder cap used by the overdue sweep")

    @field_validator("allow_origins", mode="before")
    @classmethod
    def parse_allow_origins(cls, value: str | List[str]) -> List[str]:
        if isinstance(value, list):
            return value
        if isinstance(value, str) and value.strip():
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return list(_DEFAULT_ORIGINS)

    @field_validator("email_provider")
    @classmethod
    def normalize_email_provider(cls, value: str) -> str:
        return (value or "disabled").strip().lower()

    def ensure_uploads_dir(self) -> Path:
        uploads_path = Path(self.uploads_dir).expanduser().resolve()
        uploads_path.mkdir(parents=True, exist_ok=True)
        return uploads_path

    @property
    def is_production(self) -> bool:
        return self.environment.lower() in ("production", "prod")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            _FallbackEnvSettingsSource(settings_cls),
            _FallbackDotEnvSettingsSource(settings_cls),
            file_secret_settings,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    settings = Settings()
    settings.ensure_uploads_dir()
    return settings


settings = get_settings()
