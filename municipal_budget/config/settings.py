"""
Configuration Management for the Municipal Budget Portal

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.
"""

from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


PLACEHOLDER_RESEND_KEY = "your_resend_api_key"


class OtpSettings(BaseSettings):
    """One-time verification code configuration."""

    model_config = SettingsConfigDict(
        env_prefix="OTP_",
        extra="ignore"
    )

    code_length: int = Field(
        default=6,
        ge=4,
        le=10,
        description="Number of decimal digits in a code"
    )
    expiry_minutes: int = Field(
        default=10,
        ge=1,
        le=60,
        description="Minutes a code stays valid"
    )
    max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Failed verifications before the code is discarded"
    )
    delivery_timeout_seconds: float = Field(
        default=15.0,
        gt=0,
        description="Upper bound on waiting for the notifier"
    )


class AuthSettings(BaseSettings):
    """Account and bootstrap configuration."""

    model_config = SettingsConfigDict(
        env_prefix="AUTH_",
        extra="ignore"
    )

    bootstrap_admin_email: str = Field(
        default="admin@platform.com",
        description="Admin created when the user directory is empty"
    )
    bootstrap_admin_password: str = Field(
        default="admin123",
        min_length=6,
        description="Initial password of the bootstrap admin (change it!)"
    )
    bootstrap_admin_name: str = Field(
        default="Administrator",
        description="Display name of the bootstrap admin"
    )
    password_pepper: str = Field(
        default="",
        description="Server-side secret mixed into every password hash"
    )


class MailRelaySettings(BaseSettings):
    """Client-side configuration for reaching the mail relay."""

    model_config = SettingsConfigDict(
        env_prefix="MAIL_RELAY_",
        extra="ignore"
    )

    api_url: str = Field(
        default="http://localhost:3001",
        description="Base URL of the mail relay"
    )
    timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="HTTP timeout for a relay call"
    )


class ResendSettings(BaseSettings):
    """Resend transactional mail provider configuration."""

    model_config = SettingsConfigDict(
        env_prefix="RESEND_",
        extra="ignore"
    )

    api_key: Optional[str] = Field(
        default=None,
        description="Resend API key"
    )
    from_email: str = Field(
        default="onboarding@resend.dev",
        description="Sender address"
    )
    from_name: str = Field(
        default="Municipal Budget Platform",
        description="Sender display name"
    )
    api_url: str = Field(
        default="https://api.resend.com/emails",
        description="Resend send endpoint"
    )
    timeout_seconds: float = Field(
        default=10.0,
        gt=0,
    )

    @property
    def is_configured(self) -> bool:
        """A key is present and is not the sample placeholder."""
        return bool(self.api_key) and self.api_key != PLACEHOLDER_RESEND_KEY


class RelayServerSettings(BaseSettings):
    """Mail relay HTTP server configuration."""

    model_config = SettingsConfigDict(
        env_prefix="RELAY_",
        extra="ignore"
    )

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3001, ge=1, le=65535)
    frontend_url: str = Field(
        default="http://localhost:5173",
        description="Origin allowed by CORS"
    )
    service_name: str = Field(default="MFA Email Service")


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets key-value storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use"
    )
    store_sheet_name: str = Field(
        default="PortalStore",
        description="Name of the sheet holding key/value rows"
    )
    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Name of the sheet for audit logs, one row per event"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    storage_backend: str = Field(
        default="memory",
        pattern="^(memory|json|google_sheets)$",
        description="Key-value store backing the portal"
    )
    data_file: str = Field(
        default="data/portal_store.json",
        description="File used by the json storage backend"
    )

    balance_tolerance: Decimal = Field(
        default=Decimal("0.01"),
        ge=0,
        description="Largest revenue/expense gap still considered balanced"
    )
    audit_max_events: int = Field(
        default=5000,
        ge=100,
        description="Audit events kept in the key-value audit log"
    )
    max_import_rows: int = Field(
        default=5000,
        ge=1,
        description="Rows accepted from a single import file"
    )


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Note: These are loaded lazily to allow partial configuration

    @property
    def otp(self) -> OtpSettings:
        return OtpSettings()

    @property
    def auth(self) -> AuthSettings:
        return AuthSettings()

    @property
    def mail_relay(self) -> MailRelaySettings:
        return MailRelaySettings()

    @property
    def resend(self) -> ResendSettings:
        return ResendSettings()

    @property
    def relay_server(self) -> RelayServerSettings:
        return RelayServerSettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks. The mail provider counts as valid only
    when an API key is present.
    """
    results = {}

    settings = get_settings()

    for name in ("otp", "auth", "mail_relay", "relay_server", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    try:
        results["resend"] = settings.resend.is_configured
    except Exception as e:
        results["resend"] = False
        results["resend_error"] = str(e)

    # Sheets is only required for that backend
    try:
        if settings.app.storage_backend == "google_sheets":
            _ = settings.google_sheets
        results["google_sheets"] = True
    except Exception as e:
        results["google_sheets"] = False
        results["google_sheets_error"] = str(e)

    return results
