"""
Field-Level Codec

Applies the cipher envelope to the confidential expense fields.

WRITE PATH (encrypt_fields):
- title and category are always encrypted
- note is encrypted only when present and non-empty
- amount and date never pass through here

READ PATH (decrypt_expense / decrypt_expenses):
1. A title/category value that is not a well-formed envelope (three
   strict base64 segments, 12-byte IV, 16-byte tag) is LEGACY PLAINTEXT
   and passes through unchanged, colons and all.
2. If title or category IS well-formed and fails to decrypt, the whole
   record is CORRUPTED: title, category and note are replaced with fixed
   sentinel strings. Amount and date are kept.
3. A note that fails to decrypt keeps its raw value. A bad note alone
   does not mark the record corrupted.

DESIGN DECISION: Batch decryption contains failures per record. One bad
row must never blank the user's whole expense list.

Legacy passthrough and corruption are logged as DIFFERENT events even
though neither raises, so the two cases stay distinguishable.
"""

from typing import Iterable, Optional, TypeVar

import structlog
from pydantic import BaseModel

from expense_vault.crypto import envelope
from expense_vault.crypto.errors import CryptoError
from expense_vault.models.expense import ExpenseFields


INVALID_TITLE = "[Invalid encrypted data]"
INVALID_CATEGORY = "Corrupted data"
INVALID_NOTE = (
    "Decryption failed. This may be corrupted legacy data; "
    "consider deleting this record."
)

RecordT = TypeVar("RecordT", bound=BaseModel)

logger = structlog.get_logger(__name__)


class _CorruptedField(Exception):
    """Internal signal: an envelope-shaped title/category did not decrypt."""

    def __init__(self, field: str, cause: CryptoError):
        self.field = field
        self.cause = cause
        super().__init__(field)


def encrypt_fields(fields: ExpenseFields, master_key: bytes) -> ExpenseFields:
    """
    Encrypt title, category and (if non-empty) note independently.

    There is no cross-field binding: each field gets its own IV and tag.
    """
    return ExpenseFields(
        title=envelope.encrypt(fields.title, master_key),
        category=envelope.encrypt(fields.category, master_key),
        note=envelope.encrypt(fields.note, master_key) if fields.note else None,
    )


def _decrypt_required(name: str, value: str, master_key: bytes) -> str:
    if not envelope.looks_like_envelope(value):
        logger.debug("legacy_plaintext_passthrough", field=name)
        return value
    try:
        return envelope.decrypt(value, master_key)
    except CryptoError as e:
        raise _CorruptedField(name, e)


def _decrypt_note(value: Optional[str], master_key: bytes) -> Optional[str]:
    if not value or not envelope.looks_like_envelope(value):
        return value
    try:
        return envelope.decrypt(value, master_key)
    except CryptoError as e:
        logger.info("note_decryption_failed", error_type=type(e).__name__)
        return value


def decrypt_fields(fields: ExpenseFields, master_key: bytes) -> ExpenseFields:
    """
    Decrypt one set of fields, substituting sentinels on corruption.

    Never raises for crypto failures.
    """
    try:
        title = _decrypt_required("title", fields.title, master_key)
        category = _decrypt_required("category", fields.category, master_key)
    except _CorruptedField as e:
        logger.warning(
            "encrypted_record_corrupted",
            field=e.field,
            error_type=type(e.cause).__name__,
        )
        return ExpenseFields(
            title=INVALID_TITLE,
            category=INVALID_CATEGORY,
            note=INVALID_NOTE,
        )

    # stored rows are not re-validated on the way out
    return ExpenseFields.model_construct(
        title=title,
        category=category,
        note=_decrypt_note(fields.note, master_key),
    )


def is_sentinel(fields: ExpenseFields) -> bool:
    """True if these fields are the corrupted-record placeholder."""
    return fields.title == INVALID_TITLE and fields.category == INVALID_CATEGORY


def decrypt_expense(record: RecordT, master_key: bytes) -> RecordT:
    """
    Decrypt the text fields of any record with title/category/note.

    Returns a copy; the input is left untouched. Other attributes
    (id, amount, date, ...) are carried over as they are.
    """
    current = ExpenseFields.model_construct(
        title=record.title,
        category=record.category,
        note=getattr(record, "note", None),
    )
    plain = decrypt_fields(current, master_key)
    update = {"title": plain.title, "category": plain.category}
    if "note" in type(record).model_fields:
        update["note"] = plain.note
    return record.model_copy(update=update)


def decrypt_expenses(records: Iterable[RecordT], master_key: bytes) -> list[RecordT]:
    """
    Batch decrypt. Always returns exactly one record per input record.

    Records share no state, so order of processing does not matter;
    output order matches input order.
    """
    return [decrypt_expense(record, master_key) for record in records]
