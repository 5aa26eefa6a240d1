"""
Crypto Session

An explicit, scoped handle on a user's unwrapped master key.

DESIGN DECISION: The master key is NOT kept in module-level or global
state. A session is acquired at login, passed by reference to the two
call sites that need it (encrypt-before-write, decrypt-after-read) and
released at logout. Nothing here persists the key anywhere.

A deployment with encryption disabled gets a plaintext session with
the same interface, so call sites do not branch on the mode.

Usage:
    with CryptoSession.open(password, material) as session:
        payload = session.encrypt_fields(fields)
        ...
"""

import asyncio
from typing import Iterable, Optional, TypeVar

from pydantic import BaseModel

from expense_vault.crypto import codec
from expense_vault.crypto.errors import SessionClosedError
from expense_vault.crypto.master_key import KeyState, recover_master_key
from expense_vault.models.expense import ExpenseFields
from expense_vault.models.user import MasterKeyMaterial


RecordT = TypeVar("RecordT", bound=BaseModel)


class CryptoSession:
    """
    Holds a master key for the lifetime of one login.

    Sessions are cheap value holders; they do no locking because the
    codec functions share no mutable state.
    """

    def __init__(self, master_key: Optional[bytes], encryption: bool = True):
        if encryption and master_key is None:
            raise ValueError("An encrypting session needs a master key")
        self._master_key = master_key
        self._encryption = encryption
        self._closed = False

    @classmethod
    def open(cls, password: str, material: MasterKeyMaterial) -> "CryptoSession":
        """
        Derive the password key, unwrap the master key and open a session.

        Raises:
            KeyUnwrapFailedError: Wrong password or corrupted material
        """
        return cls(recover_master_key(password, material))

    @classmethod
    async def open_async(
        cls,
        password: str,
        material: MasterKeyMaterial,
    ) -> "CryptoSession":
        """Same as open(), with PBKDF2 run in a worker thread."""
        master_key = await asyncio.to_thread(recover_master_key, password, material)
        return cls(master_key)

    @classmethod
    def plaintext(cls) -> "CryptoSession":
        """A passthrough session for deployments without encryption."""
        return cls(None, encryption=False)

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def encryption(self) -> bool:
        return self._encryption

    @property
    def is_open(self) -> bool:
        return not self._closed

    @property
    def key_state(self) -> KeyState:
        if self._closed or not self._encryption:
            return KeyState.NO_KEY
        return KeyState.UNWRAPPED_IN_SESSION

    def _key(self) -> bytes:
        if self._closed:
            raise SessionClosedError("Crypto session is closed")
        return self._master_key

    def close(self) -> None:
        """Drop the key reference. Safe to call more than once."""
        self._master_key = None
        self._closed = True

    def __enter__(self) -> "CryptoSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        # never show the key
        return f"CryptoSession(encryption={self._encryption}, open={self.is_open})"

    # -------------------------------------------------------------------------
    # Codec entry points
    # -------------------------------------------------------------------------

    def encrypt_fields(self, fields: ExpenseFields) -> ExpenseFields:
        key = self._key()
        if not self._encryption:
            return fields
        return codec.encrypt_fields(fields, key)

    def decrypt_expenses(self, records: Iterable[RecordT]) -> list[RecordT]:
        key = self._key()
        if not self._encryption:
            return list(records)
        return codec.decrypt_expenses(records, key)

    async def decrypt_expenses_async(self, records: Iterable[RecordT]) -> list[RecordT]:
        """Batch decrypt off the event loop."""
        return await asyncio.to_thread(self.decrypt_expenses, list(records))
