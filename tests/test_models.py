"""
Tests for Expense Vault

Test strategy:
1. Unit tests for individual components (models, crypto, validators)
2. Integration tests for flows (with in-memory storage)
3. No real Google Sheets calls in tests
"""

import pytest
from datetime import datetime
from decimal import Decimal
from uuid import uuid4

from expense_vault.models.expense import (
    ExpenseFields,
    ExpenseInput,
    ExpenseRecord,
    ImportResult,
    ValidationIssue,
    ValidationResult,
)
from expense_vault.models.user import (
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


class TestExpenseModels:
    """Tests for expense-related Pydantic models."""

    def test_expense_fields_require_title_and_category(self):
        """Empty title or category is rejected at the codec boundary."""
        with pytest.raises(ValueError):
            ExpenseFields(title="", category="Food")
        with pytest.raises(ValueError):
            ExpenseFields(title="Lunch", category="")

    def test_expense_fields_empty_note_is_none(self):
        """An empty note is normalised to None."""
        fields = ExpenseFields(title="Lunch", category="Food", note="")
        assert fields.note is None

    def test_expense_input_defaults(self):
        """ExpenseInput defaults to zero amount and no date."""
        expense = ExpenseInput(title="Lunch", category="Food")
        assert expense.amount == Decimal("0")
        assert expense.date is None
        assert expense.note is None

    def test_expense_input_with_fields(self):
        """with_fields swaps the text fields and keeps amount and date."""
        when = datetime(2024, 3, 1, 12, 0)
        expense = ExpenseInput(
            title="Lunch",
            amount=Decimal("12.50"),
            category="Food",
            date=when,
            note="with Bob",
        )
        swapped = expense.with_fields(ExpenseFields(title="a:b:c", category="d:e:f", note=None))
        assert swapped.title == "a:b:c"
        assert swapped.category == "d:e:f"
        assert swapped.note is None
        assert swapped.amount == Decimal("12.50")
        assert swapped.date == when
        assert expense.title == "Lunch"

    def test_expense_input_rejects_extra_decimal_places(self):
        """Amounts carry at most two decimal places."""
        with pytest.raises(ValueError):
            ExpenseInput(title="Lunch", category="Food", amount=Decimal("1.234"))

    def test_expense_record_creation(self):
        """ExpenseRecord gets an id and timestamps by default."""
        record = ExpenseRecord(
            title="Lunch",
            amount=Decimal("12.50"),
            category="Food",
        )
        assert record.id is not None
        assert record.user_id is None
        assert isinstance(record.date, datetime)
        assert record.fields.title == "Lunch"

    def test_import_result_counts_non_negative(self):
        """Import counts cannot be negative."""
        with pytest.raises(ValueError):
            ImportResult(imported=-1)


class TestUserModels:
    """Tests for account models."""

    def test_user_account_strips_whitespace(self):
        """Usernames are stripped."""
        user = UserAccount(username="  alice  ", password_hash="$2b$04$hash")
        assert user.username == "alice"

    def test_user_account_repr_hides_hash(self):
        """The password hash is not shown in repr."""
        user = UserAccount(username="alice", password_hash="$2b$04$secret-hash")
        assert "secret-hash" not in repr(user)

    def test_login_result_key_material(self):
        """key_material is built only when both values are present."""
        user_id = uuid4()
        result = LoginResult(
            user_id=user_id,
            username="alice",
            encryption=True,
            wrapped_master_key="iv:ct:tag",
            master_key_salt="c2FsdA==",
        )
        material = result.key_material
        assert isinstance(material, MasterKeyMaterial)
        assert material.user_id == user_id
        assert material.salt == "c2FsdA=="

    def test_login_result_without_key_material(self):
        """No wrapped key means no key material."""
        result = LoginResult(user_id=uuid4(), username="alice", encryption=True)
        assert result.key_material is None


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.USER_REGISTERED,
            description="Test user registered",
        )
        assert event.event_type == AuditEventType.USER_REGISTERED
        assert event.severity == AuditSeverity.INFO

    def test_audit_event_to_log_dict(self):
        """Test conversion to log dictionary."""
        event = AuditEvent(
            event_type=AuditEventType.EXPENSES_IMPORTED,
            description="Imported 3 expenses",
            details={"imported": 3, "skipped": 1},
        )
        log_dict = event.to_log_dict()
        assert "event_id" in log_dict
        assert log_dict["event_type"] == "expenses_imported"
        assert log_dict["details"]["skipped"] == 1

    def test_audit_event_to_sheets_row(self):
        """Test conversion to sheets row."""
        user_id = uuid4()
        event = AuditEvent(
            event_type=AuditEventType.LOGIN_SUCCEEDED,
            description="User logged in",
            user_id=user_id,
            is_user_action=True,
        )
        row = event.to_sheets_row()
        assert len(row) == 12
        assert row[2] == "login_succeeded"
        assert row[6] == str(user_id)
        assert row[11] == "True"

    def test_audit_event_builder_user_registered(self):
        """Test AuditEventBuilder.user_registered."""
        user_id = uuid4()
        correlation_id = uuid4()

        event = AuditEventBuilder.user_registered(
            user_id=user_id,
            username="alice",
            encryption=True,
            correlation_id=correlation_id,
        )

        assert event.event_type == AuditEventType.USER_REGISTERED
        assert event.entity_id == user_id
        assert event.correlation_id == correlation_id
        assert event.details["encryption"] is True
        assert event.is_user_action is True

    def test_audit_event_builder_expense_changed(self):
        """expense_changed describes the verb from the event type."""
        event = AuditEventBuilder.expense_changed(
            event_type=AuditEventType.EXPENSE_DELETED,
            expense_id=uuid4(),
            user_id=uuid4(),
        )
        assert event.description == "Expense deleted"
        assert event.entity_type == "expense"

    def test_audit_event_builder_login_failed_is_warning(self):
        """Failed logins are warnings and carry no user id."""
        event = AuditEventBuilder.login_failed(username="mallory")
        assert event.severity == AuditSeverity.WARNING
        assert event.user_id is None


class TestValidationResult:
    """Tests for ValidationResult model."""

    def test_validation_result_has_errors(self):
        """Test has_errors property."""
        result = ValidationResult(
            is_valid=False,
            issues=[
                ValidationIssue(
                    field="title",
                    issue_type="missing",
                    message="Title is required",
                    severity="error",
                ),
                ValidationIssue(
                    field="amount",
                    issue_type="suspicious_value",
                    message="Amount seems high",
                    severity="warning",
                ),
            ],
        )
        assert result.has_errors is True
        assert result.error_count == 1

    def test_validation_result_warnings_only(self):
        """Warnings alone are not errors."""
        result = ValidationResult(
            is_valid=True,
            issues=[
                ValidationIssue(
                    field="amount",
                    issue_type="suspicious_value",
                    message="Amount seems high",
                    severity="warning",
                ),
            ],
            warnings=["Amount seems high"],
        )
        assert result.has_errors is False
        assert result.error_count == 0

    def test_validation_issue_rejects_unknown_severity(self):
        """Severity must be error, warning or info."""
        with pytest.raises(ValueError):
            ValidationIssue(
                field="title",
                issue_type="missing",
                message="x",
                severity="fatal",
            )


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
