"""
Password Key Derivation

PBKDF2-HMAC-SHA256, 100,000 iterations, 32-byte output.

CRITICAL: The iteration count must never change for existing users.
A key wrapped at registration is only recoverable with the exact same
parameters, so these are constants rather than settings.

An empty password is accepted here. Password policy belongs to the
registration flow (see validation.validator), not to this module.
"""

import base64
import binascii
import os

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from expense_vault.crypto.errors import MalformedSaltError


PBKDF2_ITERATIONS = 100_000
DERIVED_KEY_LENGTH = 32
SALT_LENGTH = 32


def generate_salt() -> str:
    """Generate a random 32-byte salt, base64 encoded for storage."""
    return base64.b64encode(os.urandom(SALT_LENGTH)).decode("ascii")


def decode_salt(salt: str) -> bytes:
    """
    Decode a stored base64 salt.

    Raises:
        MalformedSaltError: If the salt is not a non-empty base64 string
    """
    if not isinstance(salt, str) or not salt:
        raise MalformedSaltError("Salt must be a non-empty base64 string")
    try:
        raw = base64.b64decode(salt, validate=True)
    except (binascii.Error, ValueError):
        raise MalformedSaltError("Salt is not valid base64") from None
    if not raw:
        raise MalformedSaltError("Salt decodes to zero bytes")
    return raw


def derive_key_from_password(password: str, salt: str) -> bytes:
    """
    Derive a 256-bit key from a password and a base64 salt.

    Deterministic: identical inputs always give the identical key.
    Deliberately slow (tens to hundreds of milliseconds).
    """
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=DERIVED_KEY_LENGTH,
        salt=decode_salt(salt),
        iterations=PBKDF2_ITERATIONS,
    )
    return kdf.derive(password.encode("utf-8"))
