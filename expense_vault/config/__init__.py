"""Configuration package."""

from expense_vault.config.settings import (
    AppSettings,
    AuthSettings,
    EncryptionSettings,
    GoogleSheetsSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "AuthSettings",
    "EncryptionSettings",
    "GoogleSheetsSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
