"""
Configuration Management for Expense Vault

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.

CRITICAL: Cryptographic parameters (PBKDF2 iterations, IV and tag
lengths) are NOT configurable. They live as constants in
expense_vault.crypto, because changing them would make every stored
wrapped master key unrecoverable.
"""

import warnings
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EncryptionSettings(BaseSettings):
    """End-to-end field encryption switch."""

    model_config = SettingsConfigDict(
        env_prefix="ENCRYPTION_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    enabled: bool = Field(
        default=False,
        description="Generate master keys at registration and encrypt expense text fields"
    )


class AuthSettings(BaseSettings):
    """Registration and login configuration."""

    model_config = SettingsConfigDict(
        env_prefix="AUTH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    invite_code: Optional[str] = Field(
        default=None,
        description="If set, registration requires this invite code"
    )
    min_password_length: int = Field(
        default=8,
        ge=1,
        le=128,
        description="Minimum password length"
    )
    min_password_char_classes: int = Field(
        default=2,
        ge=1,
        le=3,
        description="How many of {letters, digits, symbols} a password must contain"
    )
    bcrypt_rounds: int = Field(
        default=10,
        ge=4,
        le=16,
        description="bcrypt cost factor for login password hashes"
    )

    @property
    def require_invite(self) -> bool:
        return bool(self.invite_code)


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets storage configuration."""

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

    # Sheet names within the spreadsheet
    expenses_sheet_name: str = Field(
        default="Expenses",
        description="Name of the sheet for expenses"
    )
    users_sheet_name: str = Field(
        default="Users",
        description="Name of the sheet for user accounts"
    )
    key_material_sheet_name: str = Field(
        default="KeyMaterial",
        description="Name of the sheet for wrapped master keys and salts"
    )
    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Name of the sheet for audit logs"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
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

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    # Plaintext limits, checked before encryption
    max_title_length: int = Field(
        default=255,
        ge=1,
        description="Maximum expense title length (characters)"
    )
    max_category_length: int = Field(
        default=50,
        ge=1,
        description="Maximum category length (characters)"
    )
    max_note_length: int = Field(
        default=500,
        ge=1,
        description="Maximum note length (characters)"
    )
    max_expense_amount: float = Field(
        default=10_000_000.0,
        description="Amounts above this are flagged for review"
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
    def encryption(self) -> EncryptionSettings:
        return EncryptionSettings()

    @property
    def auth(self) -> AuthSettings:
        return AuthSettings()

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
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("encryption", "auth", "google_sheets", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
