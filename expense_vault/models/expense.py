"""
Expense Data Models

These models define the schemas for expenses flowing through the system.

DESIGN DECISION: title, category and note are plain `str` fields that
may hold either plaintext or an encrypted envelope. The storage layer
and the server-side services never look inside them. Only the crypto
codec knows the difference.

Amount and date are ALWAYS plaintext: they are needed for sorting and
range queries on the server.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# ENCRYPTABLE FIELDS
# =============================================================================

class ExpenseFields(BaseModel):
    """
    The confidential subset of an expense.

    title and category are required; note is optional. This is the shape
    validated at the codec boundary.
    """
    model_config = ConfigDict(frozen=True)

    title: str = Field(..., min_length=1)
    category: str = Field(..., min_length=1)
    note: Optional[str] = None

    @field_validator("note")
    @classmethod
    def empty_note_is_none(cls, v: Optional[str]) -> Optional[str]:
        """An empty note and a missing note mean the same thing."""
        return v or None


# =============================================================================
# EXPENSE INPUT / RECORD
# =============================================================================

class ExpenseInput(BaseModel):
    """
    An expense as submitted by a client for create/update/import.

    Text fields may already be envelopes when encryption is on.
    """

    title: str = ""
    amount: Decimal = Field(
        default=Decimal("0"),
        decimal_places=2,
        description="Amount in the user's currency"
    )
    category: str = ""
    date: Optional[datetime] = Field(
        default=None,
        description="When the expense happened (defaults to now)"
    )
    note: Optional[str] = None

    @property
    def fields(self) -> ExpenseFields:
        """The encryptable fields of this input."""
        return ExpenseFields(title=self.title, category=self.category, note=self.note)

    def with_fields(self, fields: ExpenseFields) -> "ExpenseInput":
        """Return a copy carrying the given (typically encrypted) fields."""
        return self.model_copy(update={
            "title": fields.title,
            "category": fields.category,
            "note": fields.note,
        })


class ExpenseRecord(BaseModel):
    """
    A stored expense row.

    user_id is None only for legacy rows created before accounts
    existed. The first registered user adopts them.
    """

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique expense ID"
    )
    user_id: Optional[UUID] = None
    title: str
    amount: Decimal = Field(decimal_places=2)
    category: str
    note: Optional[str] = None
    date: datetime = Field(
        default_factory=datetime.utcnow,
    )
    created_at: datetime = Field(
        default_factory=datetime.utcnow,
    )

    @property
    def fields(self) -> ExpenseFields:
        return ExpenseFields.model_construct(
            title=self.title, category=self.category, note=self.note
        )


class ImportResult(BaseModel):
    """Outcome of a bulk import."""

    imported: int = Field(ge=0)
    skipped: int = Field(default=0, ge=0)


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'too_long', 'weak')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
    suggested_fix: Optional[str] = None


class ValidationResult(BaseModel):
    """Result of validating one piece of user input."""

    is_valid: bool
    issues: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")
