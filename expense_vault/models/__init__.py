"""
Data Models Package

This package contains all Pydantic models used in Expense Vault.
All data flowing through the system must conform to these schemas.
"""

from expense_vault.models.expense import (
    ExpenseFields,
    ExpenseInput,
    ExpenseRecord,
    ImportResult,
    ValidationIssue,
    ValidationResult,
)
from expense_vault.models.user import (
    AuthConfig,
    LoginResult,
    MasterKeyMaterial,
    UserAccount,
)
from expense_vault.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Expense models
    "ExpenseFields",
    "ExpenseInput",
    "ExpenseRecord",
    "ImportResult",
    "ValidationIssue",
    "ValidationResult",
    # Account models
    "AuthConfig",
    "LoginResult",
    "MasterKeyMaterial",
    "UserAccount",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
