"""
Audit Logger

DESIGN DECISION: Every security-relevant action in the system is logged.
This provides:
1. Traceability of registrations, logins and key operations
2. Debugging capability when records fail to decrypt
3. Compliance readiness

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from expense_vault.models.audit import AuditEvent, AuditEventBuilder, AuditEventType
from expense_vault.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence), when configured
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("expense_vault.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_user_registered(
        self,
        user_id: UUID,
        username: str,
        encryption: bool,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.user_registered(
            user_id=user_id,
            username=username,
            encryption=encryption,
            correlation_id=correlation_id,
        ))

    async def log_registration_rejected(
        self,
        username: str,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.registration_rejected(
            username=username,
            reason=reason,
            correlation_id=correlation_id,
        ))

    async def log_login_succeeded(
        self,
        user_id: UUID,
        username: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.login_succeeded(
            user_id=user_id,
            username=username,
            correlation_id=correlation_id,
        ))

    async def log_login_failed(
        self,
        username: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.login_failed(
            username=username,
            correlation_id=correlation_id,
        ))

    async def log_legacy_expenses_migrated(
        self,
        user_id: UUID,
        count: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.legacy_expenses_migrated(
            user_id=user_id,
            count=count,
            correlation_id=correlation_id,
        ))

    async def log_master_key_provisioned(
        self,
        user_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.master_key_provisioned(
            user_id=user_id,
            correlation_id=correlation_id,
        ))

    async def log_master_key_unwrap_failed(
        self,
        user_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.master_key_unwrap_failed(
            user_id=user_id,
            correlation_id=correlation_id,
        ))

    async def log_session_opened(
        self,
        user_id: UUID,
        encryption: bool,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.session_opened(
            user_id=user_id,
            encryption=encryption,
            correlation_id=correlation_id,
        ))

    async def log_session_closed(
        self,
        user_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.session_closed(
            user_id=user_id,
            correlation_id=correlation_id,
        ))

    async def log_expense_changed(
        self,
        event_type: AuditEventType,
        expense_id: UUID,
        user_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a create, update or delete of one expense."""
        await self.log(AuditEventBuilder.expense_changed(
            event_type=event_type,
            expense_id=expense_id,
            user_id=user_id,
            correlation_id=correlation_id,
        ))

    async def log_expenses_imported(
        self,
        user_id: UUID,
        imported: int,
        skipped: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.expenses_imported(
            user_id=user_id,
            imported=imported,
            skipped=skipped,
            correlation_id=correlation_id,
        ))

    async def log_record_decryption_failed(
        self,
        expense_id: UUID,
        user_id: Optional[UUID],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.record_decryption_failed(
            expense_id=expense_id,
            user_id=user_id,
            correlation_id=correlation_id,
        ))

    async def log_storage_error(
        self,
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.storage_error(
            operation=operation,
            error_message=error_message,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., a login).
    Pass it through all subsequent operations.
    """
    return uuid4()
