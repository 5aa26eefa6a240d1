"""
Audit Models for Expense Vault

Every security-relevant action in the system is logged for audit purposes.
This provides:
1. Traceability of registrations, logins and key operations
2. Debugging information when decryption goes wrong
3. A way to tell legacy plaintext from corrupted ciphertext after the fact

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.

CRITICAL: Audit events never carry keys, passwords or decrypted field
values. Expense titles and categories are NOT logged either, because they
may be plaintext.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Accounts
    USER_REGISTERED = "user_registered"
    REGISTRATION_REJECTED = "registration_rejected"
    LOGIN_SUCCEEDED = "login_succeeded"
    LOGIN_FAILED = "login_failed"
    LEGACY_EXPENSES_MIGRATED = "legacy_expenses_migrated"

    # Key lifecycle
    MASTER_KEY_PROVISIONED = "master_key_provisioned"
    MASTER_KEY_UNWRAP_FAILED = "master_key_unwrap_failed"
    SESSION_OPENED = "session_opened"
    SESSION_CLOSED = "session_closed"

    # Expenses
    EXPENSE_CREATED = "expense_created"
    EXPENSE_UPDATED = "expense_updated"
    EXPENSE_DELETED = "expense_deleted"
    EXPENSES_IMPORTED = "expenses_imported"
    RECORD_DECRYPTION_FAILED = "record_decryption_failed"

    # System events
    STORAGE_ERROR = "storage_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'user', 'expense', 'session')"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )
    user_id: Optional[UUID] = Field(
        default=None,
        description="Acting user, when known"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one login)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "user_id": str(self.user_id) if self.user_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         user_id, correlation_id, description, details_json, error_message,
         is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            str(self.entity_id) if self.entity_id else "",
            str(self.user_id) if self.user_id else "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.user_registered(user_id, "alice", True)
        event = AuditEventBuilder.login_failed("alice", correlation_id)
    """

    @staticmethod
    def user_registered(
        user_id: UUID,
        username: str,
        encryption: bool,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.USER_REGISTERED,
            entity_type="user",
            entity_id=user_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"User registered: {username}",
            details={
                "username": username,
                "encryption": encryption,
            },
            is_user_action=True,
        )

    @staticmethod
    def registration_rejected(
        username: str,
        reason: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REGISTRATION_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="user",
            correlation_id=correlation_id,
            description=f"Registration rejected: {reason}",
            details={
                "username": username,
                "reason": reason,
            },
            is_user_action=True,
        )

    @staticmethod
    def login_succeeded(
        user_id: UUID,
        username: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LOGIN_SUCCEEDED,
            entity_type="user",
            entity_id=user_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"User logged in: {username}",
            details={"username": username},
            is_user_action=True,
        )

    @staticmethod
    def login_failed(
        username: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LOGIN_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="user",
            correlation_id=correlation_id,
            description="Login failed: bad username or password",
            details={"username": username},
            is_user_action=True,
        )

    @staticmethod
    def legacy_expenses_migrated(
        user_id: UUID,
        count: int,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LEGACY_EXPENSES_MIGRATED,
            entity_type="user",
            entity_id=user_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"First user adopted {count} legacy expenses",
            details={"count": count},
        )

    @staticmethod
    def master_key_provisioned(
        user_id: UUID,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MASTER_KEY_PROVISIONED,
            entity_type="user",
            entity_id=user_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description="Master key generated and wrapped",
        )

    @staticmethod
    def master_key_unwrap_failed(
        user_id: UUID,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MASTER_KEY_UNWRAP_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="user",
            entity_id=user_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description="Master key unwrap failed (wrong password or corrupted material)",
        )

    @staticmethod
    def session_opened(
        user_id: UUID,
        encryption: bool,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SESSION_OPENED,
            entity_type="session",
            user_id=user_id,
            correlation_id=correlation_id,
            description="Crypto session opened",
            details={"encryption": encryption},
        )

    @staticmethod
    def session_closed(
        user_id: UUID,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SESSION_CLOSED,
            entity_type="session",
            user_id=user_id,
            correlation_id=correlation_id,
            description="Crypto session closed",
            is_user_action=True,
        )

    @staticmethod
    def expense_changed(
        event_type: AuditEventType,
        expense_id: UUID,
        user_id: UUID,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        verb = event_type.value.split("_", 1)[1]
        return AuditEvent(
            event_type=event_type,
            entity_type="expense",
            entity_id=expense_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Expense {verb}",
            is_user_action=True,
        )

    @staticmethod
    def expenses_imported(
        user_id: UUID,
        imported: int,
        skipped: int,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSES_IMPORTED,
            entity_type="expense",
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Imported {imported} expenses ({skipped} skipped)",
            details={
                "imported": imported,
                "skipped": skipped,
            },
            is_user_action=True,
        )

    @staticmethod
    def record_decryption_failed(
        expense_id: UUID,
        user_id: Optional[UUID],
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORD_DECRYPTION_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="expense",
            entity_id=expense_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description="Expense fields failed to decrypt; sentinel shown",
        )

    @staticmethod
    def storage_error(
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORAGE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"Storage error during {operation}",
            error_message=error_message,
            details={"operation": operation},
            correlation_id=correlation_id,
        )
