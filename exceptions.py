"""
Unified exception hierarchy for the budget board.

This module defines the exception hierarchy with BudgetBoardError as the base
exception. Every class carries a ``kind`` and an HTTP-style ``status_code`` so
an outer surface (CLI, web layer) can turn any failure into a structured
response without inspecting messages.
"""

from typing import Any, Dict, Optional


class BudgetBoardError(Exception):
    """
    Base exception class for all budget board errors.

    Attributes:
        message: Human-readable error message
        details: Optional dictionary with additional error context
        original_error: Optional original exception that caused this error
    """

    kind = "error"
    status_code = 500

    def __init__(
        self,
        message: str,
        details: Optional[dict] = None,
        original_error: Optional[Exception] = None
    ) -> None:
        """
        Initialize BudgetBoardError.

        Args:
            message: Human-readable error message
            details: Optional dictionary with additional error context
            original_error: Optional original exception that caused this error
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.original_error = original_error

    def __str__(self) -> str:
        """Return string representation of the error."""
        msg = self.message
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            msg = f"{msg} ({detail_str})"
        return msg

    def to_dict(self) -> Dict[str, Any]:
        """Return the structured error body handed to callers."""
        return {
            "error": self.kind,
            "message": self.message,
            "details": dict(self.details),
        }


class ConfigError(BudgetBoardError):
    """Raised when configuration loading or validation fails."""
    kind = "config_error"


class ValidationError(BudgetBoardError):
    """Raised for negative amounts, missing fields or malformed ids."""
    kind = "validation_error"
    status_code = 400


class NotFoundError(BudgetBoardError):
    """Raised when a month, category, budget line or snapshot id is unknown."""
    kind = "not_found"
    status_code = 404


class ConflictError(BudgetBoardError):
    """Base class for requests that clash with the current state of the data."""
    kind = "conflict"
    status_code = 409


class FinalizedMonthError(ConflictError):
    """Raised when budget or actual data of a closed month is mutated."""
    kind = "finalized_month"


class AlreadyFinalizedError(ConflictError):
    """Raised when finalize is called for a month that is already closed."""
    kind = "already_finalized"


class CategoryInUseError(ConflictError):
    """Raised when deleting a category still used by an open month."""
    kind = "category_in_use"


class MonthExistsError(ConflictError):
    """Raised when a month period (year, month) already exists."""
    kind = "month_exists"


class StorageError(BudgetBoardError):
    """Raised when a database transaction or commit fails."""
    kind = "storage_error"


class BackupError(BudgetBoardError):
    """Raised when exporting the database to JSON fails."""
    kind = "backup_error"
