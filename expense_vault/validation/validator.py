"""
Input Validation

DESIGN DECISION: Validation runs on PLAINTEXT, before anything is
encrypted. Once a field is an envelope the server cannot tell how long
or how empty the original was, so limits must be checked client-side.

Two validators live here:
- ExpenseValidator: required fields, lengths, sanity of amounts
- PasswordPolicy: registration password strength

IMPORTANT: Validation NEVER silently fixes issues.
It reports them for the user to correct.
"""

import re
from decimal import Decimal
from typing import Optional

from expense_vault.config import AppSettings, AuthSettings, get_settings
from expense_vault.models.expense import (
    ExpenseInput,
    ValidationIssue,
    ValidationResult,
)


def _result(issues: list[ValidationIssue]) -> ValidationResult:
    return ValidationResult(
        is_valid=not any(issue.severity == "error" for issue in issues),
        issues=issues,
        warnings=[issue.message for issue in issues if issue.severity == "warning"],
    )


class ExpenseValidator:
    """
    Validates plaintext expense input before it is encrypted and sent.
    """

    def __init__(self, settings: Optional[AppSettings] = None):
        self._settings = settings or get_settings().app

    def validate(
        self,
        expense: ExpenseInput,
        require_amount: bool = True,
    ) -> ValidationResult:
        """
        Check an expense for create or update.

        Args:
            expense: The plaintext input
            require_amount: Creates need a non-zero amount, updates may
                set the amount to zero
        """
        issues = []

        if not expense.title.strip():
            issues.append(ValidationIssue(
                field="title",
                issue_type="missing",
                message="Title is required",
                severity="error",
            ))
        elif len(expense.title) > self._settings.max_title_length:
            issues.append(ValidationIssue(
                field="title",
                issue_type="too_long",
                message=f"Title is longer than {self._settings.max_title_length} characters",
                severity="error",
                suggested_fix="Shorten the title or move details into the note",
            ))

        if not expense.category.strip():
            issues.append(ValidationIssue(
                field="category",
                issue_type="missing",
                message="Category is required",
                severity="error",
            ))
        elif len(expense.category) > self._settings.max_category_length:
            issues.append(ValidationIssue(
                field="category",
                issue_type="too_long",
                message=f"Category is longer than {self._settings.max_category_length} characters",
                severity="error",
            ))

        if expense.note and len(expense.note) > self._settings.max_note_length:
            issues.append(ValidationIssue(
                field="note",
                issue_type="too_long",
                message=f"Note is longer than {self._settings.max_note_length} characters",
                severity="error",
            ))

        if require_amount and expense.amount == 0:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="missing",
                message="Amount is required",
                severity="error",
            ))

        max_amount = Decimal(str(self._settings.max_expense_amount))
        if abs(expense.amount) > max_amount:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="suspicious_value",
                message=f"Amount ({expense.amount:,.2f}) seems unusually high",
                severity="warning",
                suggested_fix="Please verify this amount is correct",
            ))

        return _result(issues)

    def get_user_friendly_summary(self, result: ValidationResult) -> str:
        """
        Generate a user-friendly summary of validation results.
        """
        if result.is_valid and not result.warnings:
            return "All checks passed."

        lines = []
        if result.has_errors:
            lines.append("Please fix the following:")
            for issue in result.issues:
                if issue.severity == "error":
                    lines.append(f"  - {issue.message}")
                    if issue.suggested_fix:
                        lines.append(f"    ({issue.suggested_fix})")

        if result.warnings:
            lines.append("Please verify the following:")
            for warning in result.warnings:
                lines.append(f"  - {warning}")

        return "\n".join(lines)


class PasswordPolicy:
    """
    Registration password rules.

    Defaults: at least 8 characters, and at least two of
    {letters, digits, symbols}.
    """

    _CHAR_CLASSES = (
        ("letters", re.compile(r"[a-zA-Z]")),
        ("digits", re.compile(r"[0-9]")),
        ("symbols", re.compile(r"[^a-zA-Z0-9]")),
    )

    def __init__(self, settings: Optional[AuthSettings] = None):
        self._settings = settings or get_settings().auth

    def validate(self, password: str) -> ValidationResult:
        issues = []

        if len(password) < self._settings.min_password_length:
            issues.append(ValidationIssue(
                field="password",
                issue_type="too_short",
                message=(
                    f"Password must be at least "
                    f"{self._settings.min_password_length} characters"
                ),
                severity="error",
            ))

        present = [name for name, pattern in self._CHAR_CLASSES if pattern.search(password)]
        if len(present) < self._settings.min_password_char_classes:
            issues.append(ValidationIssue(
                field="password",
                issue_type="weak",
                message=(
                    f"Password must mix at least "
                    f"{self._settings.min_password_char_classes} of: letters, digits, symbols"
                ),
                severity="error",
            ))

        return _result(issues)
