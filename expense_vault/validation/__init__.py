"""Validation package."""

from expense_vault.validation.validator import ExpenseValidator, PasswordPolicy

__all__ = ["ExpenseValidator", "PasswordPolicy"]
