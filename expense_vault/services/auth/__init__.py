"""Account services package."""

from expense_vault.services.auth.passwords import hash_password, verify_password
from expense_vault.services.auth.service import (
    AuthError,
    AuthService,
    InvalidCredentialsError,
    InviteCodeError,
    RegistrationError,
    WeakPasswordError,
)

__all__ = [
    "AuthError",
    "AuthService",
    "InvalidCredentialsError",
    "InviteCodeError",
    "RegistrationError",
    "WeakPasswordError",
    "hash_password",
    "verify_password",
]
