"""Exception hierarchy for the dual budget engine.

Storage failures are split into distinguishable kinds so callers can react
to a missing row differently from a constraint or disk problem.  The pure
engine modules (aggregation, overrides, forecast) never raise these.
"""

from __future__ import annotations


class DualBudgetError(Exception):
    """Base exception for the package."""


class StorageError(DualBudgetError):
    """Base exception for ledger store operations."""


class NotFound(StorageError):
    """The requested row does not exist (or is soft-deleted)."""

    def __init__(self, table: str, record_id: str) -> None:
        super().__init__(f"{table} record '{record_id}' not found")
        self.table = table
        self.record_id = record_id


class ConstraintViolation(StorageError):
    """A uniqueness, foreign key or check constraint was violated."""


class IOFailure(StorageError):
    """The database file could not be opened, read or written."""


class SyncInProgress(DualBudgetError):
    """A reconciliation pass is already running for the profile."""


class InvalidMonth(DualBudgetError, ValueError):
    """A month value was not a ``YYYY-MM`` string."""
