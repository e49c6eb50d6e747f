"""Configuration package."""

from municipal_budget.config.settings import (
    AppSettings,
    AuthSettings,
    GoogleSheetsSettings,
    MailRelaySettings,
    OtpSettings,
    RelayServerSettings,
    ResendSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "AuthSettings",
    "GoogleSheetsSettings",
    "MailRelaySettings",
    "OtpSettings",
    "RelayServerSettings",
    "ResendSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
