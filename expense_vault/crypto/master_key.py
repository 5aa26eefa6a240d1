"""
Master Key Lifecycle

STATE MACHINE:

    NO_KEY --(registration, encryption on)--> WRAPPED_PERSISTED
    WRAPPED_PERSISTED --(login, right password)--> UNWRAPPED_IN_SESSION
    UNWRAPPED_IN_SESSION --(logout / session end)--> NO_KEY
                                                 (wrapped copy untouched)

There is no rotation state. A master key is generated exactly once per
user and never regenerated.

Wrapping is plain envelope encryption of base64(master_key) under the
password-derived key, so the wrapped key uses the same wire format as
every expense field.
"""

import base64
import binascii
import secrets
from enum import Enum

import structlog

from expense_vault.crypto import envelope
from expense_vault.crypto.errors import (
    AuthenticationFailedError,
    InvalidEnvelopeFormatError,
    KeyUnwrapFailedError,
    MalformedSaltError,
)
from expense_vault.crypto.kdf import derive_key_from_password, generate_salt
from expense_vault.models.user import MasterKeyMaterial


MASTER_KEY_LENGTH = 32

logger = structlog.get_logger(__name__)


class KeyState(str, Enum):
    """Where a user's master key currently lives."""
    NO_KEY = "no_key"
    WRAPPED_PERSISTED = "wrapped_persisted"
    UNWRAPPED_IN_SESSION = "unwrapped_in_session"


def generate_master_key() -> bytes:
    """Produce 32 cryptographically random bytes."""
    return secrets.token_bytes(MASTER_KEY_LENGTH)


def wrap_master_key(master_key: bytes, password_key: bytes) -> str:
    """Encrypt the master key under the password-derived key."""
    if len(master_key) != MASTER_KEY_LENGTH:
        raise ValueError(f"Master key must be exactly {MASTER_KEY_LENGTH} bytes")
    encoded = base64.b64encode(master_key).decode("ascii")
    return envelope.encrypt(encoded, password_key)


def unwrap_master_key(wrapped: str, password_key: bytes) -> bytes:
    """
    Recover the master key from its wrapped form.

    Raises:
        KeyUnwrapFailedError: For a wrong password and for corrupted
            material alike. The cause is chained but not revealed in
            the message.
    """
    try:
        encoded = envelope.decrypt(wrapped, password_key)
    except (AuthenticationFailedError, InvalidEnvelopeFormatError) as e:
        raise KeyUnwrapFailedError() from e

    try:
        master_key = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as e:
        raise KeyUnwrapFailedError() from e

    if len(master_key) != MASTER_KEY_LENGTH:
        raise KeyUnwrapFailedError()
    return master_key


def provision_master_key(password: str) -> tuple[MasterKeyMaterial, bytes]:
    """
    Registration step: create a master key and its persistable wrapping.

    Returns:
        (material_to_persist, plaintext_master_key)

    The plaintext key is returned only so the caller can open a session
    straight away. It must not be stored.
    """
    master_key = generate_master_key()
    salt = generate_salt()
    password_key = derive_key_from_password(password, salt)
    material = MasterKeyMaterial(
        wrapped_master_key=wrap_master_key(master_key, password_key),
        salt=salt,
    )
    logger.info("master_key_provisioned")
    return material, master_key


def recover_master_key(password: str, material: MasterKeyMaterial) -> bytes:
    """
    Login step: derive the password key and unwrap the stored master key.

    A malformed stored salt is reported as an unwrap failure too, so
    the caller only ever sees one kind of error.
    """
    try:
        password_key = derive_key_from_password(password, material.salt)
    except MalformedSaltError as e:
        logger.warning("master_key_salt_invalid")
        raise KeyUnwrapFailedError() from e

    try:
        return unwrap_master_key(material.wrapped_master_key, password_key)
    except KeyUnwrapFailedError:
        logger.warning("master_key_unwrap_failed")
        raise
