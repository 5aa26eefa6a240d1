"""
Main Orchestrator for Expense Vault

This module ties together all the components and defines the
end-to-end flows for:
1. Expense CRUD on the server (validate presence → scope to owner → store)
2. The client session (login → unwrap key → encrypt before write /
   decrypt after read → logout)

DESIGN DECISION: The orchestrator enforces the boundaries:
- The server side (ExpenseService) never sees plaintext title, category
  or note when encryption is on, and never holds a key
- The client side (ExpenseClient) is the only place a master key lives,
  inside an explicit CryptoSession
- Every step is audited

This is the "glue" that ensures the system works correctly
even when individual components might behave unexpectedly.
"""

from datetime import datetime
from typing import Optional, Union
from uuid import UUID

import structlog
from pydantic import BaseModel, ConfigDict, ValidationError

from expense_vault.audit import AuditLogger, create_correlation_id
from expense_vault.config import AppSettings, AuthSettings, EncryptionSettings, get_settings
from expense_vault.crypto import CryptoSession, KeyUnwrapFailedError, is_sentinel
from expense_vault.models.audit import AuditEventType
from expense_vault.models.expense import ExpenseInput, ExpenseRecord, ImportResult
from expense_vault.models.user import AuthConfig, UserAccount
from expense_vault.services.auth import AuthService, InvalidCredentialsError
from expense_vault.services.storage import (
    ExpenseStorageInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsExpenseStorage,
    GoogleSheetsUserStorage,
    InMemoryExpenseStorage,
    InMemoryUserStorage,
    NotFoundError,
    StorageError,
    UserStorageInterface,
)
from expense_vault.validation import ExpenseValidator


logger = structlog.get_logger(__name__)


class ExpenseValidationError(Exception):
    """Expense input rejected before it reached storage."""

    def __init__(self, message: str, issues: Optional[list[str]] = None):
        self.issues = issues or [message]
        super().__init__(message)


# =============================================================================
# SERVER SIDE
# =============================================================================

class ExpenseService:
    """
    Owner-scoped expense CRUD.

    Text fields arrive already encrypted (or plaintext when encryption
    is off) and are stored exactly as received. Only presence is checked
    here: the server cannot measure the length of an envelope's content.
    """

    def __init__(
        self,
        expense_storage: ExpenseStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = expense_storage
        self._audit_logger = audit_logger

    async def _storage_failed(
        self,
        operation: str,
        error: Exception,
        correlation_id: Optional[UUID],
    ) -> None:
        logger.error("expense_storage_failed", operation=operation, error=str(error))
        if self._audit_logger:
            await self._audit_logger.log_storage_error(
                operation=operation,
                error_message=str(error),
                correlation_id=correlation_id,
            )

    async def create_expense(
        self,
        user_id: UUID,
        expense: ExpenseInput,
        correlation_id: Optional[UUID] = None,
    ) -> ExpenseRecord:
        """
        Store a new expense for user_id.

        Raises:
            ExpenseValidationError: title, category or amount missing
        """
        correlation_id = correlation_id or create_correlation_id()

        if not expense.title or not expense.category or not expense.amount:
            raise ExpenseValidationError("Title, amount and category are required")

        record = ExpenseRecord(
            user_id=user_id,
            title=expense.title,
            amount=expense.amount,
            category=expense.category,
            note=expense.note or None,
            date=expense.date or datetime.utcnow(),
        )
        try:
            saved = await self._storage.save_expense(record)
        except StorageError as e:
            await self._storage_failed("save_expense", e, correlation_id)
            raise

        if self._audit_logger:
            await self._audit_logger.log_expense_changed(
                event_type=AuditEventType.EXPENSE_CREATED,
                expense_id=saved.id,
                user_id=user_id,
                correlation_id=correlation_id,
            )
        return saved

    async def update_expense(
        self,
        user_id: UUID,
        expense_id: UUID,
        expense: ExpenseInput,
        correlation_id: Optional[UUID] = None,
    ) -> ExpenseRecord:
        """
        Replace an expense owned by user_id.

        The amount may be zero here. A note or date that was not supplied
        at all keeps its stored value; an empty note clears it.

        Raises:
            ExpenseValidationError: title or category missing
            NotFoundError: No such expense for this user
        """
        correlation_id = correlation_id or create_correlation_id()

        if not expense.title or not expense.category:
            raise ExpenseValidationError("Title and category are required")

        existing = await self._storage.get_expense(user_id, expense_id)
        if existing is None:
            raise NotFoundError(f"Expense {expense_id} not found")

        update = {
            "title": expense.title,
            "amount": expense.amount,
            "category": expense.category,
        }
        if "note" in expense.model_fields_set:
            update["note"] = expense.note or None
        if expense.date is not None:
            update["date"] = expense.date

        try:
            updated = await self._storage.update_expense(existing.model_copy(update=update))
        except NotFoundError:
            raise
        except StorageError as e:
            await self._storage_failed("update_expense", e, correlation_id)
            raise

        if self._audit_logger:
            await self._audit_logger.log_expense_changed(
                event_type=AuditEventType.EXPENSE_UPDATED,
                expense_id=expense_id,
                user_id=user_id,
                correlation_id=correlation_id,
            )
        return updated

    async def delete_expense(
        self,
        user_id: UUID,
        expense_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        """
        Delete an expense owned by user_id.

        Deleting something that is not there (or not yours) is not an
        error; returns False.
        """
        deleted = await self._storage.delete_expense(user_id, expense_id)
        if deleted and self._audit_logger:
            await self._audit_logger.log_expense_changed(
                event_type=AuditEventType.EXPENSE_DELETED,
                expense_id=expense_id,
                user_id=user_id,
                correlation_id=correlation_id or create_correlation_id(),
            )
        return deleted

    async def list_expenses(
        self,
        user_id: UUID,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        limit: int = 1000,
        offset: int = 0,
    ) -> list[ExpenseRecord]:
        """The user's expenses, newest first, still encrypted."""
        return await self._storage.list_expenses(
            user_id,
            date_from=date_from,
            date_to=date_to,
            limit=limit,
            offset=offset,
        )

    async def import_expenses(
        self,
        user_id: UUID,
        items: list[Union[ExpenseInput, dict]],
        correlation_id: Optional[UUID] = None,
    ) -> ImportResult:
        """
        Bulk insert. Items missing title, amount or category are skipped.

        Raises:
            ExpenseValidationError: Nothing to import
        """
        correlation_id = correlation_id or create_correlation_id()

        if not items:
            raise ExpenseValidationError("No expenses to import")

        imported = 0
        skipped = 0
        for item in items:
            try:
                expense = item if isinstance(item, ExpenseInput) else ExpenseInput.model_validate(item)
            except ValidationError:
                skipped += 1
                continue

            if not expense.title or not expense.category or not expense.amount:
                skipped += 1
                continue

            record = ExpenseRecord(
                user_id=user_id,
                title=expense.title,
                amount=expense.amount,
                category=expense.category,
                note=expense.note or None,
                date=expense.date or datetime.utcnow(),
            )
            try:
                await self._storage.save_expense(record)
            except StorageError as e:
                # rows saved so far stay saved
                await self._storage_failed("import_expenses", e, correlation_id)
                raise
            imported += 1

        logger.info("expenses_imported", user_id=str(user_id), imported=imported, skipped=skipped)
        if self._audit_logger:
            await self._audit_logger.log_expenses_imported(
                user_id=user_id,
                imported=imported,
                skipped=skipped,
                correlation_id=correlation_id,
            )
        return ImportResult(imported=imported, skipped=skipped)


# =============================================================================
# CLIENT SIDE
# =============================================================================

class UserSession(BaseModel):
    """A logged-in user and the crypto session tied to that login."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    user_id: UUID
    username: str
    crypto: CryptoSession
    correlation_id: UUID


class ExpenseClient:
    """
    The client half of the system.

    Flow:
    1. Login → verify credentials, unwrap the master key locally
    2. Write → validate plaintext, encrypt title/category/note, send
    3. Read → fetch, decrypt each record (failures contained per record)
    4. Logout → drop the key

    The master key exists only inside the UserSession's CryptoSession.
    """

    def __init__(
        self,
        auth_service: AuthService,
        expense_service: ExpenseService,
        validator: Optional[ExpenseValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._auth = auth_service
        self._expenses = expense_service
        self._validator = validator or ExpenseValidator()
        self._audit_logger = audit_logger

    def get_public_config(self) -> AuthConfig:
        return self._auth.get_public_config()

    async def register(
        self,
        username: str,
        password: str,
        invite_code: Optional[str] = None,
    ) -> UserAccount:
        return await self._auth.register(
            username,
            password,
            invite_code=invite_code,
            correlation_id=create_correlation_id(),
        )

    async def login(self, username: str, password: str) -> UserSession:
        """
        Log in and open the crypto session.

        A master key that fails to unwrap is reported exactly like a
        wrong password.

        Raises:
            InvalidCredentialsError: Any login failure
        """
        correlation_id = create_correlation_id()
        result = await self._auth.login(username, password, correlation_id=correlation_id)

        material = result.key_material
        if not result.encryption:
            crypto = CryptoSession.plaintext()
        elif material is None:
            # account registered before encryption was switched on
            logger.warning("login_without_key_material", user_id=str(result.user_id))
            crypto = CryptoSession.plaintext()
        else:
            try:
                crypto = await CryptoSession.open_async(password, material)
            except KeyUnwrapFailedError:
                if self._audit_logger:
                    await self._audit_logger.log_master_key_unwrap_failed(
                        user_id=result.user_id,
                        correlation_id=correlation_id,
                    )
                raise InvalidCredentialsError()

        if self._audit_logger:
            await self._audit_logger.log_session_opened(
                user_id=result.user_id,
                encryption=crypto.encryption,
                correlation_id=correlation_id,
            )

        return UserSession(
            user_id=result.user_id,
            username=result.username,
            crypto=crypto,
            correlation_id=correlation_id,
        )

    async def logout(self, session: UserSession) -> None:
        session.crypto.close()
        if self._audit_logger:
            await self._audit_logger.log_session_closed(
                user_id=session.user_id,
                correlation_id=session.correlation_id,
            )

    def _prepare(self, session: UserSession, expense: ExpenseInput, require_amount: bool) -> ExpenseInput:
        result = self._validator.validate(expense, require_amount=require_amount)
        if not result.is_valid:
            messages = [issue.message for issue in result.issues if issue.severity == "error"]
            raise ExpenseValidationError(
                self._validator.get_user_friendly_summary(result),
                issues=messages,
            )
        for warning in result.warnings:
            logger.info("expense_validation_warning", warning=warning)

        encrypted = expense.with_fields(session.crypto.encrypt_fields(expense.fields))
        if "note" not in expense.model_fields_set:
            # keep "not supplied" distinct from "cleared" for updates
            encrypted = ExpenseInput.model_validate(
                encrypted.model_dump(exclude={"note"})
            )
        return encrypted

    async def _decrypt(self, session: UserSession, records: list[ExpenseRecord]) -> list[ExpenseRecord]:
        plain = await session.crypto.decrypt_expenses_async(records)
        if self._audit_logger and session.crypto.encryption:
            for record in plain:
                if is_sentinel(record.fields):
                    await self._audit_logger.log_record_decryption_failed(
                        expense_id=record.id,
                        user_id=session.user_id,
                        correlation_id=session.correlation_id,
                    )
        return plain

    async def add_expense(self, session: UserSession, expense: ExpenseInput) -> ExpenseRecord:
        """
        Validate, encrypt and store. Returns the stored record decrypted.

        Raises:
            ExpenseValidationError: Plaintext failed validation
        """
        payload = self._prepare(session, expense, require_amount=True)
        saved = await self._expenses.create_expense(
            session.user_id,
            payload,
            correlation_id=session.correlation_id,
        )
        return (await self._decrypt(session, [saved]))[0]

    async def update_expense(
        self,
        session: UserSession,
        expense_id: UUID,
        expense: ExpenseInput,
    ) -> ExpenseRecord:
        payload = self._prepare(session, expense, require_amount=False)
        updated = await self._expenses.update_expense(
            session.user_id,
            expense_id,
            payload,
            correlation_id=session.correlation_id,
        )
        return (await self._decrypt(session, [updated]))[0]

    async def delete_expense(self, session: UserSession, expense_id: UUID) -> bool:
        return await self._expenses.delete_expense(
            session.user_id,
            expense_id,
            correlation_id=session.correlation_id,
        )

    async def list_expenses(
        self,
        session: UserSession,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        limit: int = 1000,
        offset: int = 0,
    ) -> list[ExpenseRecord]:
        """
        Fetch and decrypt. Corrupted records come back as placeholders
        instead of failing the whole list.
        """
        records = await self._expenses.list_expenses(
            session.user_id,
            date_from=date_from,
            date_to=date_to,
            limit=limit,
            offset=offset,
        )
        return await self._decrypt(session, records)

    async def import_expenses(
        self,
        session: UserSession,
        items: list[ExpenseInput],
    ) -> ImportResult:
        """
        Encrypt and bulk import.

        Items that fail plaintext validation are left out and counted as
        skipped together with whatever the server skips.
        """
        payload = []
        rejected = 0
        for item in items:
            try:
                payload.append(self._prepare(session, item, require_amount=True))
            except ExpenseValidationError:
                rejected += 1

        if not payload:
            raise ExpenseValidationError("No valid expenses to import")

        result = await self._expenses.import_expenses(
            session.user_id,
            payload,
            correlation_id=session.correlation_id,
        )
        return ImportResult(imported=result.imported, skipped=result.skipped + rejected)


# =============================================================================
# FACTORY
# =============================================================================

def create_app_components(
    use_storage: bool = True,
    auth_settings: Optional[AuthSettings] = None,
    encryption_settings: Optional[EncryptionSettings] = None,
    app_settings: Optional[AppSettings] = None,
) -> tuple[AuthService, ExpenseService, ExpenseClient, Optional[GoogleSheetsClient]]:
    """
    Factory function to create all application components.

    Args:
        use_storage: Whether to initialize Google Sheets storage.
                    Set to False (or leave Sheets unconfigured) to run
                    on in-memory storage.

    Returns:
        (auth_service, expense_service, expense_client, sheets_client)
    """
    sheets_client = None
    expense_storage: ExpenseStorageInterface
    user_storage: UserStorageInterface

    if use_storage:
        try:
            sheets_client = GoogleSheetsClient()
            expense_storage = GoogleSheetsExpenseStorage(sheets_client)
            user_storage = GoogleSheetsUserStorage(sheets_client)
            audit_logger = AuditLogger(GoogleSheetsAuditStorage(sheets_client))
        except Exception as e:
            # Storage not configured - continue in memory
            logger.warning("storage_not_configured", error=str(e))
            sheets_client = None
            use_storage = False

    if not use_storage:
        expense_storage = InMemoryExpenseStorage()
        user_storage = InMemoryUserStorage()
        audit_logger = AuditLogger()  # Local-only logging

    auth_service = AuthService(
        user_storage,
        expense_storage,
        audit_logger=audit_logger,
        auth_settings=auth_settings,
        encryption_settings=encryption_settings,
    )
    expense_service = ExpenseService(expense_storage, audit_logger=audit_logger)
    expense_client = ExpenseClient(
        auth_service,
        expense_service,
        validator=ExpenseValidator(app_settings or get_settings().app),
        audit_logger=audit_logger,
    )

    return auth_service, expense_service, expense_client, sheets_client
