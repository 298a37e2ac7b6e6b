"""KidPoints package: chore approvals, a points ledger and reward redemptions for families."""

from .assignments import AssignmentMachine, is_overdue
from .catalog import Catalog
from .exceptions import (
    BelowRedeemedError,
    ConcurrentUpdateError,
    DuplicateAssignmentError,
    InsufficientBalanceError,
    InsufficientPointsError,
    InvalidStateError,
    KidPointsError,
    LedgerCorruptionError,
    NotFoundError,
    OutOfStockError,
    PhotoRequiredError,
    RewardUnavailableError,
    ValidationError,
)
from .inventory import RewardInventoryBook
from .ledger import PointLedger
from .locking import KeyedLocks
from .models import (
    AssignmentStats,
    AssignmentStatus,
    ErrorKind,
    HistoryFilter,
    LeaderboardEntry,
    LedgerReason,
    LedgerSummary,
    Outcome,
    RedemptionStats,
    RedemptionStatus,
    ReviewDecision,
    RewardStatus,
    TaskPriority,
    TaskStatus,
)
from .notifications import Notification, NotificationCenter, NotificationPort, NotificationType
from .ops import StructuredLogger
from .persistence import (
    Assignment,
    Child,
    PointLedgerEntry,
    Redemption,
    Reward,
    RewardInventory,
    Task,
    create_db_and_tables,
    create_engine_for,
    unit_of_work,
)
from .redemptions import RedemptionMachine
from .service import KidPoints

__all__ = [
    "Assignment",
    "AssignmentMachine",
    "AssignmentStats",
    "AssignmentStatus",
    "BelowRedeemedError",
    "Catalog",
    "Child",
    "ConcurrentUpdateError",
    "DuplicateAssignmentError",
    "ErrorKind",
    "HistoryFilter",
    "InsufficientBalanceError",
    "InsufficientPointsError",
    "InvalidStateError",
    "KeyedLocks",
    "KidPoints",
    "KidPointsError",
    "LeaderboardEntry",
    "LedgerCorruptionError",
    "LedgerReason",
    "LedgerSummary",
    "NotFoundError",
    "Notification",
    "NotificationCenter",
    "NotificationPort",
    "NotificationType",
    "Outcome",
    "OutOfStockError",
    "PhotoRequiredError",
    "PointLedger",
    "PointLedgerEntry",
    "Redemption",
    "RedemptionMachine",
    "RedemptionStats",
    "RedemptionStatus",
    "ReviewDecision",
    "Reward",
    "RewardInventory",
    "RewardInventoryBook",
    "RewardStatus",
    "RewardUnavailableError",
    "StructuredLogger",
    "Task",
    "TaskPriority",
    "TaskStatus",
    "ValidationError",
    "create_db_and_tables",
    "create_engine_for",
    "is_overdue",
    "unit_of_work",
]
