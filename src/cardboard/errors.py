"""Structured error types for Cardboard."""

from __future__ import annotations


class CardboardError(Exception):
    """Base error for all Cardboard errors."""


class ValidationError(CardboardError):
    """Raised when caller input is structurally invalid. Nothing has been written."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ConditionalCheckFailedError(CardboardError):
    """Raised when the guard on a conditional write does not hold.

    Covers true concurrent modification, a stale version token, a missing
    target and a re-insert whose content differs from the stored record.
    """

    code = "ConditionalCheckFailedException"

    def __init__(self, message: str = "The conditional request failed") -> None:
        super().__init__(message)


class StorageBackendError(CardboardError):
    """Raised when key-value or blob storage operations fail."""

    def __init__(self, operation: str, detail: str) -> None:
        self.operation = operation
        self.detail = detail
        super().__init__(f"Storage backend error during {operation}: {detail}")
