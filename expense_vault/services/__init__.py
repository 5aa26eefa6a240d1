"""
Services package.

Account services live in expense_vault.services.auth and are imported
from there directly; they depend on the audit logger, which in turn
depends on storage.
"""

from expense_vault.services.storage import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    ExpenseStorageInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsExpenseStorage,
    GoogleSheetsUserStorage,
    InMemoryAuditStorage,
    InMemoryExpenseStorage,
    InMemoryUserStorage,
    NotFoundError,
    StorageError,
    UserStorageInterface,
)

__all__ = [
    # Storage services
    "AuditStorageInterface",
    "ExpenseStorageInterface",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsExpenseStorage",
    "GoogleSheetsUserStorage",
    "InMemoryAuditStorage",
    "InMemoryExpenseStorage",
    "InMemoryUserStorage",
    "UserStorageInterface",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
]
