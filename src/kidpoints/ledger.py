"""Append-only point ledger; the single source of truth for balances."""

from __future__ import annotations

import csv
from datetime import datetime
from io import StringIO
from typing import List, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, desc, select

from .exceptions import (
    ConcurrentUpdateError,
    InsufficientBalanceError,
    LedgerCorruptionError,
    ValidationError,
)
from .locking import lock_for_update
from .models import (
    AssignmentStatus,
    HistoryFilter,
    LeaderboardEntry,
    LedgerReason,
    LedgerSummary,
    as_utc,
    utcnow,
)
from .persistence import Assignment, Child, PointLedgerEntry
from .points import PointsLike, format_points, to_points


class PointLedger:
    """Read and append signed point deltas for children.

    Entries are never updated or deleted. Every write runs inside the
    caller's session so it commits (or rolls back) together with the state
    transition that caused it.
    """

    def append(
        self,
        session: Session,
        child_id: str,
        delta: PointsLike,
        reason: LedgerReason,
        reference_id: Optional[str] = None,
        *,
        description: str = "",
        created_by: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> PointLedgerEntry:
        """Write one entry, rejecting debits the balance cannot cover."""

        value = to_points(delta)
        if value == 0:
            raise ValidationError("A ledger entry must change the balance.")
        try:
            reason = LedgerReason(reason)
        except ValueError as exc:
            raise ValidationError(f"Unknown ledger reason: {reason!r}") from exc

        tail = self._tail(session, child_id, for_update=True)
        balance = tail.balance_after if tail else 0
        new_balance = balance + value
        if value < 0 and new_balance < 0:
            raise InsufficientBalanceError(
                f"Child '{child_id}' has {format_points(balance)}; cannot apply {value:+d}.",
                details={"balance": balance, "delta": value},
            )

        entry = PointLedgerEntry(
            child_id=child_id,
            sequence=(tail.sequence if tail else 0) + 1,
            delta=value,
            reason=reason,
            reference_id=reference_id,
            description=description or _default_description(reason),
            created_by=created_by,
            created_at=as_utc(at) or utcnow(),
            balance_after=new_balance,
        )
        session.add(entry)
        try:
            session.flush()
        except IntegrityError as exc:
            raise ConcurrentUpdateError(
                f"Ledger for child '{child_id}' changed while writing.",
                details={"child_id": child_id},
            ) from exc
        return entry

    def balance_of(self, session: Session, child_id: str) -> int:
        tail = self._tail(session, child_id)
        return tail.balance_after if tail else 0

    def history_of(
        self,
        session: Session,
        child_id: str,
        filters: Optional[HistoryFilter] = None,
    ) -> List[PointLedgerEntry]:
        """Return entries matching ``filters``; every entry, newest first, by default."""

        criteria = filters or HistoryFilter()
        statement = select(PointLedgerEntry).where(PointLedgerEntry.child_id == child_id)
        if criteria.reasons:
            statement = statement.where(PointLedgerEntry.reason.in_(list(criteria.reasons)))
        if criteria.start is not None:
            statement = statement.where(PointLedgerEntry.created_at >= as_utc(criteria.start))
        if criteria.end is not None:
            statement = statement.where(PointLedgerEntry.created_at <= as_utc(criteria.end))
        if criteria.newest_first:
            statement = statement.order_by(desc(PointLedgerEntry.sequence))
        else:
            statement = statement.order_by(PointLedgerEntry.sequence)
        if criteria.limit is not None:
            if isinstance(criteria.limit, bool) or not isinstance(criteria.limit, int) or criteria.limit < 0:
                raise ValidationError("limit must be a whole number of zero or more")
            statement = statement.limit(criteria.limit)
        return list(session.exec(statement).all())

    def derive_balance(self, session: Session, child_id: str) -> int:
        """Recompute the balance from scratch by summing every delta."""

        total = session.exec(
            select(func.coalesce(func.sum(PointLedgerEntry.delta), 0)).where(
                PointLedgerEntry.child_id == child_id
            )
        ).one()
        return int(total)

    def verify(self, session: Session, child_id: str) -> int:
        """Check the running-balance chain and return the derived balance."""

        running = 0
        expected_sequence = 1
        entries = self.history_of(session, child_id, HistoryFilter(newest_first=False))
        for entry in entries:
            running += entry.delta
            if entry.sequence != expected_sequence or entry.balance_after != running:
                raise LedgerCorruptionError(
                    f"Ledger for child '{child_id}' breaks at entry {entry.entry_id}.",
                    details={"entry_id": entry.entry_id, "expected_balance": running},
                )
            if running < 0:
                raise LedgerCorruptionError(
                    f"Ledger for child '{child_id}' goes negative at entry {entry.entry_id}.",
                    details={"entry_id": entry.entry_id},
                )
            expected_sequence += 1
        return running

    def summary(self, session: Session, child_id: str) -> LedgerSummary:
        earned = self._sum(session, child_id, (LedgerReason.TASK_AWARD,))
        spent = self._sum(
            session, child_id, (LedgerReason.REDEMPTION_SPEND, LedgerReason.REDEMPTION_REFUND)
        )
        count = session.exec(
            select(func.count()).select_from(PointLedgerEntry).where(PointLedgerEntry.child_id == child_id)
        ).one()
        return LedgerSummary(
            child_id=child_id,
            balance=self.balance_of(session, child_id),
            total_earned=earned,
            total_spent=-spent,
            entry_count=int(count),
        )

    def export_csv(
        self,
        session: Session,
        child_id: str,
        filters: Optional[HistoryFilter] = None,
    ) -> str:
        """Return a CSV export of the child's ledger, oldest entry first."""

        criteria = filters or HistoryFilter()
        criteria = HistoryFilter(
            reasons=criteria.reasons,
            start=criteria.start,
            end=criteria.end,
            limit=criteria.limit,
            newest_first=False,
        )
        buffer = StringIO()
        writer = csv.writer(buffer)
        writer.writerow(["timestamp", "reason", "reference", "description", "delta", "balance"])
        for entry in self.history_of(session, child_id, criteria):
            writer.writerow(
                [
                    entry.created_at.isoformat(),
                    entry.reason.value,
                    entry.reference_id or "",
                    entry.description,
                    f"{entry.delta:+d}",
                    entry.balance_after,
                ]
            )
        return buffer.getvalue()

    def leaderboard(self, session: Session, family_id: str, *, limit: Optional[int] = None) -> Sequence[LeaderboardEntry]:
        """Rank a family's active children by balance, then completed tasks."""

        children = session.exec(
            select(Child).where(Child.family_id == family_id, Child.active == True)  # noqa: E712
        ).all()
        standings = []
        for child in children:
            completed = session.exec(
                select(func.count())
                .select_from(Assignment)
                .where(
                    Assignment.child_id == child.child_id,
                    Assignment.status == AssignmentStatus.APPROVED,
                )
            ).one()
            standings.append(
                LeaderboardEntry(
                    child_id=child.child_id,
                    name=child.name,
                    balance=self.balance_of(session, child.child_id),
                    tasks_completed=int(completed),
                )
            )
        standings.sort(key=lambda entry: (-entry.balance, -entry.tasks_completed, entry.name))
        return tuple(standings[:limit] if limit is not None else standings)

    def _tail(self, session: Session, child_id: str, *, for_update: bool = False) -> Optional[PointLedgerEntry]:
        statement = (
            select(PointLedgerEntry)
            .where(PointLedgerEntry.child_id == child_id)
            .order_by(desc(PointLedgerEntry.sequence))
            .limit(1)
        )
        if for_update:
            statement = lock_for_update(statement)
        return session.exec(statement).first()

    def _sum(self, session: Session, child_id: str, reasons: Sequence[LedgerReason]) -> int:
        total = session.exec(
            select(func.coalesce(func.sum(PointLedgerEntry.delta), 0)).where(
                PointLedgerEntry.child_id == child_id,
                PointLedgerEntry.reason.in_(list(reasons)),
            )
        ).one()
        return int(total)


def _default_description(reason: LedgerReason) -> str:
    return {
        LedgerReason.TASK_AWARD: "Task completed",
        LedgerReason.REDEMPTION_SPEND: "Reward redeemed",
        LedgerReason.REDEMPTION_REFUND: "Reward refunded",
        LedgerReason.MANUAL_ADJUSTMENT: "Manual adjustment",
    }[reason]


__all__ = ["PointLedger"]
