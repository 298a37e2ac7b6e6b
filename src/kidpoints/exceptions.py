"""Custom exception hierarchy for the KidPoints package."""

from __future__ import annotations

from typing import Any, Mapping, Optional

from .models import ErrorKind


class KidPointsError(Exception):
    """Base class for all KidPoints specific errors."""

    kind: ErrorKind = ErrorKind.VALIDATION_ERROR
    user_message = "The request could not be completed."

    def __init__(self, message: str | None = None, *, details: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(message or self.user_message)
        self.details = dict(details or {})


class InvalidStateError(KidPointsError):
    """Raised when a transition is attempted from a state that does not permit it."""

    kind = ErrorKind.INVALID_STATE
    user_message = "This item has already been reviewed or is no longer open."


class InsufficientBalanceError(KidPointsError):
    """Raised when a ledger write would take a balance below zero."""

    kind = ErrorKind.INSUFFICIENT_BALANCE
    user_message = "Not enough points for this change."


class InsufficientPointsError(KidPointsError):
    """Raised when a reward is requested without enough points."""

    kind = ErrorKind.INSUFFICIENT_POINTS
    user_message = "Not enough points for this reward."


class OutOfStockError(KidPointsError):
    """Raised when a reward has no remaining stock."""

    kind = ErrorKind.OUT_OF_STOCK
    user_message = "This reward is out of stock."


class RewardUnavailableError(KidPointsError):
    """Raised when a reward is not currently offered."""

    kind = ErrorKind.REWARD_UNAVAILABLE
    user_message = "This reward is not available right now."


class DuplicateAssignmentError(KidPointsError):
    """Raised when a child already has a live assignment for a task."""

    kind = ErrorKind.DUPLICATE_ASSIGNMENT
    user_message = "This task is already assigned to that child."


class PhotoRequiredError(KidPointsError):
    """Raised when a submission lacks the photo its task requires."""

    kind = ErrorKind.PHOTO_REQUIRED
    user_message = "A photo is required for this task."


class NotFoundError(KidPointsError):
    """Raised when a referenced record does not exist."""

    kind = ErrorKind.NOT_FOUND
    user_message = "The requested item could not be found."


class ValidationError(KidPointsError):
    """Raised for malformed input such as blank feedback or negative points."""

    kind = ErrorKind.VALIDATION_ERROR
    user_message = "Some of the information provided is invalid."


class BelowRedeemedError(KidPointsError):
    """Raised when stock would be set below the number already redeemed."""

    kind = ErrorKind.BELOW_REDEEMED
    user_message = "Stock cannot be lower than the number already redeemed."


class ConcurrentUpdateError(KidPointsError):
    """Raised when another writer changed the same record first."""

    kind = ErrorKind.CONFLICT
    user_message = "Someone else updated this at the same time. Please try again."


class LedgerCorruptionError(KidPointsError):
    """Raised when stored balances no longer match the sum of deltas."""

    kind = ErrorKind.STORAGE_ERROR
    user_message = "The points history is inconsistent."


__all__ = [
    "KidPointsError",
    "InvalidStateError",
    "InsufficientBalanceError",
    "InsufficientPointsError",
    "OutOfStockError",
    "RewardUnavailableError",
    "DuplicateAssignmentError",
    "PhotoRequiredError",
    "NotFoundError",
    "ValidationError",
    "BelowRedeemedError",
    "ConcurrentUpdateError",
    "LedgerCorruptionError",
]
