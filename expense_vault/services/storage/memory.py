"""
In-Memory Storage Implementation

Used by the test-suite and for running the flows locally without a
spreadsheet. Same semantics as the Google Sheets backend, held in dicts.

Each store guards its state with an asyncio.Lock so concurrent flows
on one event loop see consistent data.
"""

import asyncio
from datetime import datetime
from typing import Optional
from uuid import UUID

from expense_vault.models.audit import AuditEvent
from expense_vault.models.expense import ExpenseRecord
from expense_vault.models.user import MasterKeyMaterial, UserAccount
from expense_vault.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    ExpenseStorageInterface,
    NotFoundError,
    UserStorageInterface,
)


class InMemoryExpenseStorage(ExpenseStorageInterface):
    """Expenses keyed by id."""

    def __init__(self, expenses: Optional[list[ExpenseRecord]] = None):
        self._expenses: dict[UUID, ExpenseRecord] = {
            expense.id: expense for expense in expenses or []
        }
        self._lock = asyncio.Lock()

    async def save_expense(self, expense: ExpenseRecord) -> ExpenseRecord:
        async with self._lock:
            if expense.id in self._expenses:
                raise DuplicateError(f"Expense already exists: {expense.id}")
            self._expenses[expense.id] = expense
            return expense

    async def get_expense(
        self,
        user_id: UUID,
        expense_id: UUID,
    ) -> Optional[ExpenseRecord]:
        expense = self._expenses.get(expense_id)
        if expense is None or expense.user_id != user_id:
            return None
        return expense

    async def update_expense(self, expense: ExpenseRecord) -> ExpenseRecord:
        async with self._lock:
            existing = self._expenses.get(expense.id)
            if existing is None or existing.user_id != expense.user_id:
                raise NotFoundError(f"Expense not found: {expense.id}")
            self._expenses[expense.id] = expense
            return expense

    async def delete_expense(self, user_id: UUID, expense_id: UUID) -> bool:
        async with self._lock:
            existing = self._expenses.get(expense_id)
            if existing is None or existing.user_id != user_id:
                return False
            del self._expenses[expense_id]
            return True

    async def list_expenses(
        self,
        user_id: UUID,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        limit: int = 1000,
        offset: int = 0,
    ) -> list[ExpenseRecord]:
        expenses = [
            e for e in self._expenses.values()
            if e.user_id == user_id
            and (date_from is None or e.date >= date_from)
            and (date_to is None or e.date <= date_to)
        ]
        expenses.sort(key=lambda e: e.date, reverse=True)
        return expenses[offset:offset + limit]

    async def assign_unowned_expenses(self, user_id: UUID) -> int:
        async with self._lock:
            adopted = 0
            for expense_id, expense in list(self._expenses.items()):
                if expense.user_id is None:
                    self._expenses[expense_id] = expense.model_copy(update={"user_id": user_id})
                    adopted += 1
            return adopted


class InMemoryUserStorage(UserStorageInterface):
    """Users keyed by id, with a username index."""

    def __init__(self):
        self._users: dict[UUID, UserAccount] = {}
        self._by_username: dict[str, UUID] = {}
        self._key_material: dict[UUID, MasterKeyMaterial] = {}
        self._lock = asyncio.Lock()

    async def create_user(
        self,
        user: UserAccount,
        key_material: Optional[MasterKeyMaterial] = None,
    ) -> UserAccount:
        async with self._lock:
            if user.username in self._by_username:
                raise DuplicateError(f"Username already registered: {user.username}")
            self._users[user.id] = user
            self._by_username[user.username] = user.id
            if key_material is not None:
                self._key_material[user.id] = key_material.model_copy(
                    update={"user_id": user.id}
                )
            return user

    async def get_user_by_username(self, username: str) -> Optional[UserAccount]:
        user_id = self._by_username.get(username)
        return self._users.get(user_id) if user_id else None

    async def get_user(self, user_id: UUID) -> Optional[UserAccount]:
        return self._users.get(user_id)

    async def count_users(self) -> int:
        return len(self._users)

    async def get_key_material(self, user_id: UUID) -> Optional[MasterKeyMaterial]:
        return self._key_material.get(user_id)


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of events."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    @property
    def events(self) -> list[AuditEvent]:
        return list(self._events)

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = sorted(self._events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
