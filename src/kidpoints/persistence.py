"""Persistence and SQLModel definitions for the KidPoints core."""
from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Optional
from uuid import uuid4

from sqlalchemy import DateTime, UniqueConstraint
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import Field, Session, SQLModel, create_engine

from .config import DATABASE_URL, SQL_ECHO
from .models import (
    AssignmentStatus,
    LedgerReason,
    RedemptionStatus,
    RewardStatus,
    TaskPriority,
    TaskStatus,
    as_utc,
    utcnow,
)


# Timestamps are stored as naive UTC; see ``models.as_utc``.
NaiveDateTime = DateTime(timezone=False)


def _new_id() -> str:
    return str(uuid4())


# ---------------------------------------------------------------------------
# Database models
# ---------------------------------------------------------------------------
class Child(SQLModel, table=True):
    child_id: str = Field(default_factory=_new_id, primary_key=True)
    family_id: str = Field(index=True)
    name: str
    active: bool = True
    created_at: datetime = Field(default_factory=utcnow, sa_type=NaiveDateTime)


class Task(SQLModel, table=True):
    task_id: str = Field(default_factory=_new_id, primary_key=True)
    family_id: str = Field(index=True)
    title: str
    description: Optional[str] = None
    points_reward: int
    priority: TaskPriority = TaskPriority.MEDIUM
    photo_required: bool = False
    deadline: Optional[datetime] = Field(default=None, sa_type=NaiveDateTime)
    status: TaskStatus = Field(default=TaskStatus.ACTIVE, index=True)
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow, sa_type=NaiveDateTime)


class Assignment(SQLModel, table=True):
    assignment_id: str = Field(default_factory=_new_id, primary_key=True)
    task_id: str = Field(index=True, foreign_key="task.task_id")
    child_id: str = Field(index=True, foreign_key="child.child_id")
    status: AssignmentStatus = Field(default=AssignmentStatus.PENDING, index=True)
    due_date: Optional[datetime] = Field(default=None, sa_type=NaiveDateTime)
    submitted_at: Optional[datetime] = Field(default=None, sa_type=NaiveDateTime)
    submission_note: Optional[str] = None
    submission_photo_ref: Optional[str] = None
    reviewed_at: Optional[datetime] = Field(default=None, sa_type=NaiveDateTime)
    reviewed_by: Optional[str] = None
    feedback: Optional[str] = None
    points_awarded: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow, sa_type=NaiveDateTime)

    def is_overdue(self, *, at: Optional[datetime] = None) -> bool:
        """Derived flag; never stored so editing a due date cannot corrupt history."""

        if self.due_date is None or self.status is not AssignmentStatus.PENDING:
            return False
        return self.due_date < (as_utc(at) or utcnow())


class Reward(SQLModel, table=True):
    reward_id: str = Field(default_factory=_new_id, primary_key=True)
    family_id: str = Field(index=True)
    name: str
    description: Optional[str] = None
    points_required: int
    status: RewardStatus = Field(default=RewardStatus.AVAILABLE, index=True)
    created_at: datetime = Field(default_factory=utcnow, sa_type=NaiveDateTime)


class RewardInventory(SQLModel, table=True):
    reward_id: str = Field(primary_key=True, foreign_key="reward.reward_id")
    quantity_available: int = 0
    quantity_redeemed: int = 0

    @property
    def remaining(self) -> int:
        return self.quantity_available - self.quantity_redeemed


class Redemption(SQLModel, table=True):
    redemption_id: str = Field(default_factory=_new_id, primary_key=True)
    reward_id: str = Field(index=True, foreign_key="reward.reward_id")
    child_id: str = Field(index=True, foreign_key="child.child_id")
    status: RedemptionStatus = Field(default=RedemptionStatus.PENDING, index=True)
    points_required_snapshot: int
    requested_at: datetime = Field(default_factory=utcnow, sa_type=NaiveDateTime)
    reviewed_at: Optional[datetime] = Field(default=None, sa_type=NaiveDateTime)
    reviewed_by: Optional[str] = None
    review_notes: Optional[str] = None


class PointLedgerEntry(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("child_id", "sequence", name="uq_ledger_child_sequence"),)

    entry_id: Optional[int] = Field(default=None, primary_key=True)
    child_id: str = Field(index=True, foreign_key="child.child_id")
    sequence: int
    delta: int
    reason: LedgerReason = Field(index=True)
    reference_id: Optional[str] = Field(default=None, index=True)
    description: str = ""
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow, sa_type=NaiveDateTime)
    balance_after: int


# ---------------------------------------------------------------------------
# Engine & unit of work
# ---------------------------------------------------------------------------
def create_engine_for(url: Optional[str] = None, *, echo: Optional[bool] = None) -> Engine:
    """Build an engine for ``url`` (defaults to the configured database)."""

    target = url or DATABASE_URL
    kwargs: dict = {"echo": SQL_ECHO if echo is None else echo}
    if target.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}
        if target in {"sqlite://", "sqlite:///:memory:"}:
            kwargs["poolclass"] = StaticPool
    return create_engine(target, **kwargs)


def create_db_and_tables(engine: Engine) -> None:
    SQLModel.metadata.create_all(engine)


@contextmanager
def unit_of_work(engine: Engine) -> Iterator[Session]:
    """Session whose work is committed as one transaction, or not at all."""

    session = Session(engine, expire_on_commit=False)
    try:
        yield session
        session.commit()
    except BaseException:
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def read_session(engine: Engine) -> Iterator[Session]:
    session = Session(engine, expire_on_commit=False)
    try:
        yield session
    finally:
        session.close()


__all__ = [
    "Child",
    "Task",
    "Assignment",
    "Reward",
    "RewardInventory",
    "Redemption",
    "PointLedgerEntry",
    "create_engine_for",
    "create_db_and_tables",
    "unit_of_work",
    "read_session",
]
