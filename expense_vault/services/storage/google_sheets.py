"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is the persistent backend because:
1. No database setup required for a personal tracker
2. Built-in backup (Google's infrastructure)
3. With encryption on, the sheet only ever holds ciphertext for the
   text fields, so sharing the spreadsheet does not leak them

TRADEOFFS:
- Not suitable for high-volume data (we're fine for personal use)
- No transactions (a user row is written before its key material row,
  so both appends are retried separately and are idempotent per user id)
- Limited query capabilities (we filter in Python)
"""

import json
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from tenacity import (
    retry,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from expense_vault.config import GoogleSheetsSettings, get_settings
from expense_vault.models.audit import AuditEvent, AuditEventType, AuditSeverity
from expense_vault.models.expense import ExpenseRecord
from expense_vault.models.user import MasterKeyMaterial, UserAccount
from expense_vault.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    ExpenseStorageInterface,
    NotFoundError,
    StorageError,
    UserStorageInterface,
)


EXPENSE_COLUMNS = [
    "id",
    "user_id",
    "title",
    "amount",
    "category",
    "note",
    "date",
    "created_at",
]

USER_COLUMNS = [
    "id",
    "username",
    "password_hash",
    "created_at",
]

KEY_MATERIAL_COLUMNS = [
    "user_id",
    "wrapped_master_key",
    "salt",
    "created_at",
]

AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "user_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]

logger = structlog.get_logger(__name__)

# Not-found and duplicate are answers, not transient failures
write_retry = retry(
    retry=retry_if_not_exception_type((DuplicateError, NotFoundError)),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    reraise=True,
)


def _safe_get(row: list, index: int, default: str = "") -> str:
    try:
        return row[index] if row[index] else default
    except IndexError:
        return default


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and lazily creates worksheets with headers.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets

    @write_retry
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def _get_or_create(self, title: str, columns: list[str], rows: int) -> gspread.Worksheet:
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_expenses_sheet(self) -> gspread.Worksheet:
        return self._get_or_create(self._settings.expenses_sheet_name, EXPENSE_COLUMNS, 1000)

    def get_users_sheet(self) -> gspread.Worksheet:
        return self._get_or_create(self._settings.users_sheet_name, USER_COLUMNS, 100)

    def get_key_material_sheet(self) -> gspread.Worksheet:
        return self._get_or_create(
            self._settings.key_material_sheet_name, KEY_MATERIAL_COLUMNS, 100
        )

    def get_audit_sheet(self) -> gspread.Worksheet:
        return self._get_or_create(self._settings.audit_sheet_name, AUDIT_COLUMNS, 5000)


class GoogleSheetsExpenseStorage(ExpenseStorageInterface):
    """
    Expenses stored one per row.

    title/category/note cells hold whatever the client sent: plaintext
    for legacy rows, envelopes when encryption is on.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _expense_to_row(self, expense: ExpenseRecord) -> list:
        return [
            str(expense.id),
            str(expense.user_id) if expense.user_id else "",
            expense.title,
            str(expense.amount),
            expense.category,
            expense.note or "",
            expense.date.isoformat(),
            expense.created_at.isoformat(),
        ]

    def _row_to_expense(self, row: list) -> ExpenseRecord:
        user_id = _safe_get(row, 1)
        return ExpenseRecord(
            id=UUID(_safe_get(row, 0)),
            user_id=UUID(user_id) if user_id else None,
            title=_safe_get(row, 2),
            amount=Decimal(_safe_get(row, 3, "0")),
            category=_safe_get(row, 4),
            note=_safe_get(row, 5) or None,
            date=datetime.fromisoformat(_safe_get(row, 6)),
            created_at=datetime.fromisoformat(_safe_get(row, 7)),
        )

    def _find_row(self, all_rows: list, user_id: UUID, expense_id: UUID) -> Optional[int]:
        # Start from 2 (row 1 is header)
        for idx, row in enumerate(all_rows[1:], start=2):
            if row and row[0] == str(expense_id) and _safe_get(row, 1) == str(user_id):
                return idx
        return None

    @write_retry
    async def save_expense(self, expense: ExpenseRecord) -> ExpenseRecord:
        try:
            sheet = self._client.get_expenses_sheet()
            sheet.append_row(self._expense_to_row(expense), value_input_option="RAW")
            return expense
        except Exception as e:
            raise StorageError(f"Failed to save expense: {e}")

    async def get_expense(
        self,
        user_id: UUID,
        expense_id: UUID,
    ) -> Optional[ExpenseRecord]:
        try:
            all_rows = self._client.get_expenses_sheet().get_all_values()
        except Exception as e:
            raise StorageError(f"Failed to get expense: {e}")
        idx = self._find_row(all_rows, user_id, expense_id)
        return self._row_to_expense(all_rows[idx - 1]) if idx else None

    @write_retry
    async def update_expense(self, expense: ExpenseRecord) -> ExpenseRecord:
        try:
            sheet = self._client.get_expenses_sheet()
            all_rows = sheet.get_all_values()
            idx = self._find_row(all_rows, expense.user_id, expense.id)
            if idx is None:
                raise NotFoundError(f"Expense not found: {expense.id}")
            sheet.update(
                range_name=f"A{idx}",
                values=[self._expense_to_row(expense)],
                value_input_option="RAW",
            )
            return expense
        except NotFoundError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update expense: {e}")

    async def delete_expense(self, user_id: UUID, expense_id: UUID) -> bool:
        try:
            sheet = self._client.get_expenses_sheet()
            idx = self._find_row(sheet.get_all_values(), user_id, expense_id)
            if idx is None:
                return False
            sheet.delete_rows(idx)
            return True
        except Exception as e:
            raise StorageError(f"Failed to delete expense: {e}")

    async def list_expenses(
        self,
        user_id: UUID,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        limit: int = 1000,
        offset: int = 0,
    ) -> list[ExpenseRecord]:
        try:
            all_rows = self._client.get_expenses_sheet().get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to list expenses: {e}")

        expenses = []
        for row in all_rows:
            if not row or not row[0] or _safe_get(row, 1) != str(user_id):
                continue
            try:
                expense = self._row_to_expense(row)
            except (ValueError, ArithmeticError) as e:
                logger.warning("malformed_expense_row", expense_id=row[0], error=str(e))
                continue

            if date_from and expense.date < date_from:
                continue
            if date_to and expense.date > date_to:
                continue
            expenses.append(expense)

        expenses.sort(key=lambda e: e.date, reverse=True)
        return expenses[offset:offset + limit]

    @write_retry
    async def assign_unowned_expenses(self, user_id: UUID) -> int:
        try:
            sheet = self._client.get_expenses_sheet()
            all_rows = sheet.get_all_values()
            adopted = 0
            for idx, row in enumerate(all_rows[1:], start=2):
                if row and row[0] and not _safe_get(row, 1):
                    sheet.update_cell(idx, 2, str(user_id))
                    adopted += 1
            return adopted
        except Exception as e:
            raise StorageError(f"Failed to migrate legacy expenses: {e}")


class GoogleSheetsUserStorage(UserStorageInterface):
    """
    Users and their key material, in two worksheets.

    The key material sheet holds only wrapped master keys and salts.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_user(self, row: list) -> UserAccount:
        return UserAccount(
            id=UUID(_safe_get(row, 0)),
            username=_safe_get(row, 1),
            password_hash=_safe_get(row, 2),
            created_at=datetime.fromisoformat(_safe_get(row, 3)),
        )

    def _user_rows(self) -> list:
        try:
            return self._client.get_users_sheet().get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to read users: {e}")

    async def create_user(
        self,
        user: UserAccount,
        key_material: Optional[MasterKeyMaterial] = None,
    ) -> UserAccount:
        """
        Append the user row, then the key material row.

        The username check runs once. Each append is retried on its own
        and skipped if a row for this user id is already there, so a
        retry never mistakes our own half-written user for a duplicate.
        """
        if await self.get_user_by_username(user.username) is not None:
            raise DuplicateError(f"Username already registered: {user.username}")
        await self._append_user(user)
        if key_material is not None:
            await self._append_key_material(user.id, key_material)
        return user

    @staticmethod
    def _has_row_for(sheet, key: str) -> bool:
        return any(row and row[0] == key for row in sheet.get_all_values()[1:])

    @write_retry
    async def _append_user(self, user: UserAccount) -> None:
        try:
            sheet = self._client.get_users_sheet()
            if self._has_row_for(sheet, str(user.id)):
                return
            sheet.append_row(
                [str(user.id), user.username, user.password_hash, user.created_at.isoformat()],
                value_input_option="RAW",
            )
        except Exception as e:
            raise StorageError(f"Failed to create user: {e}")

    @write_retry
    async def _append_key_material(self, user_id: UUID, key_material: MasterKeyMaterial) -> None:
        try:
            sheet = self._client.get_key_material_sheet()
            if self._has_row_for(sheet, str(user_id)):
                return
            sheet.append_row(
                [
                    str(user_id),
                    key_material.wrapped_master_key,
                    key_material.salt,
                    key_material.created_at.isoformat(),
                ],
                value_input_option="RAW",
            )
        except Exception as e:
            raise StorageError(f"Failed to store key material: {e}")

    async def get_user_by_username(self, username: str) -> Optional[UserAccount]:
        for row in self._user_rows():
            if row and _safe_get(row, 1) == username:
                return self._row_to_user(row)
        return None

    async def get_user(self, user_id: UUID) -> Optional[UserAccount]:
        for row in self._user_rows():
            if row and row[0] == str(user_id):
                return self._row_to_user(row)
        return None

    async def count_users(self) -> int:
        return sum(1 for row in self._user_rows() if row and row[0])

    async def get_key_material(self, user_id: UUID) -> Optional[MasterKeyMaterial]:
        try:
            all_rows = self._client.get_key_material_sheet().get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to read key material: {e}")
        for row in all_rows:
            if row and row[0] == str(user_id):
                return MasterKeyMaterial(
                    user_id=user_id,
                    wrapped_master_key=_safe_get(row, 1),
                    salt=_safe_get(row, 2),
                    created_at=datetime.fromisoformat(_safe_get(row, 3)),
                )
        return None


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        entity_id = _safe_get(row, 5)
        user_id = _safe_get(row, 6)
        correlation_id = _safe_get(row, 7)
        details = _safe_get(row, 9)
        return AuditEvent(
            event_id=UUID(_safe_get(row, 0)),
            timestamp=datetime.fromisoformat(_safe_get(row, 1)),
            event_type=AuditEventType(_safe_get(row, 2)),
            severity=AuditSeverity(_safe_get(row, 3)),
            entity_type=_safe_get(row, 4) or None,
            entity_id=UUID(entity_id) if entity_id else None,
            user_id=UUID(user_id) if user_id else None,
            correlation_id=UUID(correlation_id) if correlation_id else None,
            description=_safe_get(row, 8),
            details=json.loads(details) if details else {},
            error_message=_safe_get(row, 10) or None,
            is_user_action=_safe_get(row, 11).lower() == "true",
        )

    def _events(self) -> list[AuditEvent]:
        try:
            all_rows = self._client.get_audit_sheet().get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

        events = []
        for row in all_rows:
            if not row or not row[0]:
                continue
            try:
                events.append(self._row_to_event(row))
            except ValueError:
                continue
        return events

    @write_retry
    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            sheet = self._client.get_audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            # audit logging must not break the main flow
            logger.warning("audit_event_write_failed", error=str(e))
            return False

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._events() if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = self._events()
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
