"""
Crypto Exceptions

All failures raised by the encryption core derive from CryptoError so
callers can catch the whole family at once.

DESIGN DECISION: Messages never include key material, passwords or
plaintext. They may be shown to users or end up in logs.
"""


class CryptoError(Exception):
    """Base exception for the encryption core."""
    pass


class MalformedSaltError(CryptoError):
    """The salt handed to key derivation is not valid base64."""
    pass


class InvalidEnvelopeFormatError(CryptoError):
    """The value is not an `iv:ciphertext:tag` envelope."""
    pass


class AuthenticationFailedError(CryptoError):
    """
    The GCM tag did not verify.

    Raised for tampered data, truncated data and the wrong key alike.
    No plaintext is ever returned alongside this error.
    """
    pass


class KeyUnwrapFailedError(CryptoError):
    """
    The wrapped master key could not be recovered.

    We deliberately do NOT say whether the password was wrong or the
    stored material is corrupted.
    """

    DEFAULT_MESSAGE = "incorrect password or corrupted key material"

    def __init__(self, message: str = DEFAULT_MESSAGE):
        super().__init__(message)


class SessionClosedError(CryptoError):
    """A crypto session was used after it was closed."""
    pass
