"""Domain enums and value objects used by the KidPoints package."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Generic, Mapping, Optional, Sequence, TypeVar

T = TypeVar("T")


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what SQLite hands back."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware ``value`` to naive UTC; naive values are taken as UTC already."""

    if getattr(value, "tzinfo", None) is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class LedgerReason(str, Enum):
    """Why a ledger entry was written."""

    TASK_AWARD = "task_award"
    REDEMPTION_SPEND = "redemption_spend"
    REDEMPTION_REFUND = "redemption_refund"
    MANUAL_ADJUSTMENT = "manual_adjustment"


class AssignmentStatus(str, Enum):
    """Lifecycle for one child's instance of a task."""

    PENDING = "pending"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    ARCHIVED = "archived"

    @property
    def is_terminal(self) -> bool:
        return self in (AssignmentStatus.APPROVED, AssignmentStatus.ARCHIVED)


class RedemptionStatus(str, Enum):
    """Lifecycle for reward requests that require parent approval."""

    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not RedemptionStatus.PENDING


class TaskStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    ARCHIVED = "archived"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class RewardStatus(str, Enum):
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"
    ARCHIVED = "archived"


class ReviewDecision(str, Enum):
    """Decision a parent takes on a submitted assignment or redemption."""

    APPROVE = "approve"
    REJECT = "reject"
    DENY = "deny"


class ErrorKind(str, Enum):
    """Failure kinds surfaced to callers of the orchestrator."""

    INVALID_STATE = "invalid_state"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    INSUFFICIENT_POINTS = "insufficient_points"
    OUT_OF_STOCK = "out_of_stock"
    REWARD_UNAVAILABLE = "reward_unavailable"
    DUPLICATE_ASSIGNMENT = "duplicate_assignment"
    PHOTO_REQUIRED = "photo_required"
    NOT_FOUND = "not_found"
    VALIDATION_ERROR = "validation_error"
    BELOW_REDEEMED = "below_redeemed"
    CONFLICT = "conflict"
    STORAGE_ERROR = "storage_error"


@dataclass(slots=True)
class Outcome(Generic[T]):
    """Result of a use case: either a value or a specific error kind."""

    ok: bool
    value: Optional[T] = None
    error: Optional[ErrorKind] = None
    message: str = ""
    details: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def success(cls, value: T) -> "Outcome[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(
        cls,
        error: ErrorKind,
        message: str,
        details: Optional[Mapping[str, Any]] = None,
    ) -> "Outcome[T]":
        return cls(ok=False, error=error, message=message, details=dict(details or {}))

    def unwrap(self) -> T:
        """Return the value, raising :class:`RuntimeError` for failed outcomes."""

        if not self.ok:
            raise RuntimeError(f"{self.error.value if self.error else 'error'}: {self.message}")
        return self.value  # type: ignore[return-value]


@dataclass(slots=True)
class HistoryFilter:
    """Criteria for reading a child's ledger history."""

    reasons: Optional[Sequence[LedgerReason]] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    limit: Optional[int] = None
    newest_first: bool = True


@dataclass(slots=True)
class LedgerSummary:
    """Balance snapshot with lifetime totals for a child."""

    child_id: str
    balance: int
    total_earned: int
    total_spent: int
    entry_count: int


@dataclass(slots=True)
class LeaderboardEntry:
    """Simple value object for family standings."""

    child_id: str
    name: str
    balance: int
    tasks_completed: int


@dataclass(slots=True)
class AssignmentStats:
    """Per-status assignment counts for a child."""

    child_id: str
    counts: Mapping[AssignmentStatus, int]
    overdue: int

    @property
    def completed(self) -> int:
        return self.counts.get(AssignmentStatus.APPROVED, 0)


@dataclass(slots=True)
class RedemptionStats:
    """Per-status redemption counts and points spent for a child."""

    child_id: str
    counts: Mapping[RedemptionStatus, int]
    total_points_spent: int
