"""
End-to-end field encryption package.

Entry points for the authentication flow:
    generate_master_key, wrap_master_key, unwrap_master_key,
    derive_key_from_password

Entry points for the expense CRUD flow:
    encrypt_fields, decrypt_expenses (or a CryptoSession)
"""

from expense_vault.crypto.codec import (
    INVALID_CATEGORY,
    INVALID_NOTE,
    INVALID_TITLE,
    decrypt_expense,
    decrypt_expenses,
    decrypt_fields,
    encrypt_fields,
    is_sentinel,
)
from expense_vault.crypto.envelope import decrypt, encrypt, looks_like_envelope
from expense_vault.crypto.errors import (
    AuthenticationFailedError,
    CryptoError,
    InvalidEnvelopeFormatError,
    KeyUnwrapFailedError,
    MalformedSaltError,
    SessionClosedError,
)
from expense_vault.crypto.kdf import derive_key_from_password, generate_salt
from expense_vault.crypto.master_key import (
    KeyState,
    generate_master_key,
    provision_master_key,
    recover_master_key,
    unwrap_master_key,
    wrap_master_key,
)
from expense_vault.crypto.session import CryptoSession

__all__ = [
    # Envelope
    "decrypt",
    "encrypt",
    "looks_like_envelope",
    # Key derivation
    "derive_key_from_password",
    "generate_salt",
    # Master key lifecycle
    "KeyState",
    "generate_master_key",
    "provision_master_key",
    "recover_master_key",
    "unwrap_master_key",
    "wrap_master_key",
    # Field codec
    "INVALID_CATEGORY",
    "INVALID_NOTE",
    "INVALID_TITLE",
    "decrypt_expense",
    "decrypt_expenses",
    "decrypt_fields",
    "encrypt_fields",
    "is_sentinel",
    # Session
    "CryptoSession",
    # Exceptions
    "AuthenticationFailedError",
    "CryptoError",
    "InvalidEnvelopeFormatError",
    "KeyUnwrapFailedError",
    "MalformedSaltError",
    "SessionClosedError",
]
