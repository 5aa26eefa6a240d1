"""
Symmetric Cipher Envelope

Authenticated encryption of a single string field with AES-256-GCM.

WIRE FORMAT (bit-exact, shared with previously stored data):

    base64(iv) ":" base64(ciphertext) ":" base64(tag)

- iv is always 12 bytes, freshly random for every call
- tag is always 16 bytes
- no associated data
- plaintext is UTF-8

DESIGN DECISION: The IV and tag lengths are module constants, not
parameters. GCM security collapses under IV reuse, so every call draws
a new IV from the OS CSPRNG (`os.urandom`, safe for concurrent use).
"""

import base64
import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from expense_vault.crypto.errors import (
    AuthenticationFailedError,
    InvalidEnvelopeFormatError,
)


KEY_LENGTH = 32
IV_LENGTH = 12
TAG_LENGTH = 16
DELIMITER = ":"


def _check_key(key: bytes) -> None:
    if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_LENGTH:
        raise ValueError(f"Key must be exactly {KEY_LENGTH} bytes")


def _b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _b64decode(segment: str, name: str) -> bytes:
    try:
        return base64.b64decode(segment, validate=True)
    except (binascii.Error, ValueError):
        raise InvalidEnvelopeFormatError(f"Envelope {name} segment is not valid base64")


def split_envelope(value: str) -> tuple[str, str, str]:
    """
    Split an envelope into its (iv, ciphertext, tag) text segments.

    Only the segment count is checked here.

    Raises:
        InvalidEnvelopeFormatError: If the value does not have exactly 3 parts
    """
    if not isinstance(value, str):
        raise InvalidEnvelopeFormatError("Envelope must be a string")
    parts = value.split(DELIMITER)
    if len(parts) != 3:
        raise InvalidEnvelopeFormatError(
            f"Invalid encrypted format: expected 3 segments, got {len(parts)}"
        )
    return parts[0], parts[1], parts[2]


def looks_like_envelope(value: object) -> bool:
    """
    Shape check used to tell envelopes from legacy plaintext.

    A value is envelope-shaped only if all three segments are strict
    base64 and the IV and tag decode to 12 and 16 bytes. Plaintext that
    merely contains two colons ("Train 08:15-09:40") is not.
    """
    if not isinstance(value, str):
        return False
    try:
        iv_text, body_text, tag_text = split_envelope(value)
        iv = _b64decode(iv_text, "iv")
        _b64decode(body_text, "ciphertext")
        tag = _b64decode(tag_text, "tag")
    except InvalidEnvelopeFormatError:
        return False
    return len(iv) == IV_LENGTH and len(tag) == TAG_LENGTH


def encrypt(plaintext: str, key: bytes) -> str:
    """
    Encrypt a string and return an `iv:ciphertext:tag` envelope.

    Two calls with the same plaintext and key never return the same
    envelope because the IV is fresh each time.
    """
    _check_key(key)
    iv = os.urandom(IV_LENGTH)
    sealed = AESGCM(bytes(key)).encrypt(iv, plaintext.encode("utf-8"), None)
    # cryptography appends the tag to the ciphertext
    body, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
    return DELIMITER.join((_b64encode(iv), _b64encode(body), _b64encode(tag)))


def decrypt(envelope: str, key: bytes) -> str:
    """
    Decrypt an `iv:ciphertext:tag` envelope.

    Raises:
        InvalidEnvelopeFormatError: Wrong segment count, bad base64,
            empty IV/tag segment or wrong IV length
        AuthenticationFailedError: Tag did not verify (tampering, wrong
            key, corruption or a truncated tag)
    """
    _check_key(key)
    iv_text, body_text, tag_text = split_envelope(envelope)
    if not iv_text or not tag_text:
        raise InvalidEnvelopeFormatError("Envelope IV and tag segments must not be empty")

    iv = _b64decode(iv_text, "iv")
    body = _b64decode(body_text, "ciphertext")
    tag = _b64decode(tag_text, "tag")

    if len(iv) != IV_LENGTH:
        raise InvalidEnvelopeFormatError(f"Envelope IV must be {IV_LENGTH} bytes")
    if len(tag) != TAG_LENGTH:
        raise AuthenticationFailedError("Authentication tag is truncated or oversized")

    try:
        data = AESGCM(bytes(key)).decrypt(iv, body + tag, None)
    except InvalidTag:
        raise AuthenticationFailedError("Authentication tag verification failed") from None

    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        raise InvalidEnvelopeFormatError("Decrypted payload is not valid UTF-8") from None
