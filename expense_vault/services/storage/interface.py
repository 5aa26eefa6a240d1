"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a real database later
2. Use in-memory storage for testing
3. Keep business logic decoupled from storage implementation

CRITICAL: Storage treats title/category/note and the wrapped master key
as opaque text. It never parses, validates or decrypts them.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional
from uuid import UUID

from expense_vault.models.audit import AuditEvent
from expense_vault.models.expense import ExpenseRecord
from expense_vault.models.user import MasterKeyMaterial, UserAccount


class ExpenseStorageInterface(ABC):
    """
    Abstract interface for expense storage operations.

    Every read and write is scoped to one owner.
    """

    @abstractmethod
    async def save_expense(self, expense: ExpenseRecord) -> ExpenseRecord:
        """
        Insert a new expense.

        Returns:
            The stored record

        Raises:
            StorageError: If save fails
        """
        pass

    @abstractmethod
    async def get_expense(
        self,
        user_id: UUID,
        expense_id: UUID,
    ) -> Optional[ExpenseRecord]:
        """
        Retrieve one of the user's expenses.

        Returns:
            The record if found and owned by user_id, None otherwise
        """
        pass

    @abstractmethod
    async def update_expense(self, expense: ExpenseRecord) -> ExpenseRecord:
        """
        Replace an existing expense (matched on id and user_id).

        Raises:
            NotFoundError: If no such expense exists for that owner
        """
        pass

    @abstractmethod
    async def delete_expense(self, user_id: UUID, expense_id: UUID) -> bool:
        """
        Delete one of the user's expenses.

        Returns:
            True if a row was deleted, False if there was nothing to delete
        """
        pass

    @abstractmethod
    async def list_expenses(
        self,
        user_id: UUID,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        limit: int = 1000,
        offset: int = 0,
    ) -> list[ExpenseRecord]:
        """
        List a user's expenses, newest first.

        Args:
            user_id: Owner
            date_from: Only expenses on or after this moment
            date_to: Only expenses on or before this moment
            limit: Maximum number of results
            offset: Number of results to skip
        """
        pass

    @abstractmethod
    async def assign_unowned_expenses(self, user_id: UUID) -> int:
        """
        Give every expense without an owner to user_id.

        Returns:
            Number of expenses adopted
        """
        pass


class UserStorageInterface(ABC):
    """
    Abstract interface for accounts and their key material.
    """

    @abstractmethod
    async def create_user(
        self,
        user: UserAccount,
        key_material: Optional[MasterKeyMaterial] = None,
    ) -> UserAccount:
        """
        Insert a user and (optionally) their key material in one step.

        Raises:
            DuplicateError: If the username is taken
        """
        pass

    @abstractmethod
    async def get_user_by_username(self, username: str) -> Optional[UserAccount]:
        pass

    @abstractmethod
    async def get_user(self, user_id: UUID) -> Optional[UserAccount]:
        pass

    @abstractmethod
    async def count_users(self) -> int:
        pass

    @abstractmethod
    async def get_key_material(self, user_id: UUID) -> Optional[MasterKeyMaterial]:
        """
        Wrapped master key + salt for a user, or None if they have none.
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Events for one correlation ID, in chronological order."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Most recent audit events (newest first)."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
