"""High level facade that sequences KidPoints use cases as atomic units of work."""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Iterable, List, Optional, Sequence, TypeVar

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from .assignments import AssignmentMachine
from .catalog import Catalog
from .config import EVENT_LOG_PATH, LEADERBOARD_LIMIT
from .exceptions import KidPointsError, ValidationError
from .inventory import RewardInventoryBook
from .ledger import PointLedger
from .locking import KeyedLocks, child_key, reward_key
from .models import (
    AssignmentStats,
    ErrorKind,
    HistoryFilter,
    LeaderboardEntry,
    LedgerReason,
    LedgerSummary,
    Outcome,
    RedemptionStats,
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
    read_session,
    unit_of_work,
)
from .points import PointsLike, format_points
from .redemptions import RedemptionMachine

T = TypeVar("T")
Outbox = List[Notification]


def _family_inbox(family_id: str) -> str:
    return f"family:{family_id}"


def _task_key(task_id: str) -> str:
    return f"task:{task_id}"


class KidPoints:
    """Entry point for controllers.

    Every write runs under the keyed locks it needs, inside one database
    transaction, and comes back as an :class:`~kidpoints.models.Outcome`.
    Notifications are published only after the transaction commits.
    """

    __slots__ = (
        "_engine",
        "_ledger",
        "_inventory",
        "_catalog",
        "_assignments",
        "_redemptions",
        "_locks",
        "_notifications",
        "_logger",
    )

    def __init__(
        self,
        engine: Optional[Engine] = None,
        *,
        database_url: Optional[str] = None,
        notifier: Optional[NotificationPort] = None,
        logger: Optional[StructuredLogger] = None,
        create_tables: bool = True,
    ) -> None:
        self._engine = engine or create_engine_for(database_url)
        if create_tables:
            create_db_and_tables(self._engine)
        self._ledger = PointLedger()
        self._inventory = RewardInventoryBook()
        self._catalog = Catalog(self._inventory)
        self._assignments = AssignmentMachine(self._ledger, self._catalog)
        self._redemptions = RedemptionMachine(self._ledger, self._inventory, self._catalog)
        self._locks = KeyedLocks()
        self._notifications = notifier if notifier is not None else NotificationCenter()
        self._logger = logger or StructuredLogger(path=EVENT_LOG_PATH)

    @property
    def engine(self) -> Engine:
        return self._engine

    @property
    def notifications(self) -> NotificationPort:
        return self._notifications

    @property
    def logger(self) -> StructuredLogger:
        return self._logger

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------
    def add_child(self, family_id: str, name: str, *, child_id: Optional[str] = None) -> Outcome[Child]:
        return self._run(
            "child_added",
            lambda session, outbox: self._catalog.add_child(session, family_id, name, child_id=child_id),
            family=family_id,
        )

    def remove_child(self, child_id: str) -> Outcome[List[Assignment]]:
        """Deactivate a child and archive their open assignments."""

        def work(session: Session, outbox: Outbox) -> List[Assignment]:
            self._catalog.deactivate_child(session, child_id)
            return self._assignments.archive_for_child(session, child_id)

        return self._run("child_removed", work, locks=lambda session: [child_key(child_id)], child=child_id)

    def create_task(
        self,
        family_id: str,
        title: str,
        points_reward: PointsLike,
        *,
        description: Optional[str] = None,
        priority: TaskPriority = TaskPriority.MEDIUM,
        photo_required: bool = False,
        deadline: Optional[datetime] = None,
        created_by: Optional[str] = None,
        scale_by_priority: bool = False,
    ) -> Outcome[Task]:
        return self._run(
            "task_created",
            lambda session, outbox: self._catalog.create_task(
                session,
                family_id,
                title,
                points_reward,
                description=description,
                priority=priority,
                photo_required=photo_required,
                deadline=deadline,
                created_by=created_by,
                scale_by_priority=scale_by_priority,
            ),
            family=family_id,
        )

    def archive_task(self, task_id: str) -> Outcome[List[Assignment]]:
        """Cancel a task; open assignments are archived, reviewed ones kept."""

        def work(session: Session, outbox: Outbox) -> List[Assignment]:
            self._catalog.set_task_status(session, task_id, TaskStatus.ARCHIVED)
            return self._assignments.archive_for_task(session, task_id)

        def keys(session: Session) -> List[str]:
            open_rows = self._assignments.open_for_task(session, task_id)
            return [_task_key(task_id), *(child_key(row.child_id) for row in open_rows)]

        return self._run("task_archived", work, locks=keys, task=task_id)

    def create_reward(
        self,
        family_id: str,
        name: str,
        points_required: PointsLike,
        *,
        quantity_available: PointsLike = 1,
        description: Optional[str] = None,
        status: RewardStatus = RewardStatus.AVAILABLE,
    ) -> Outcome[Reward]:
        return self._run(
            "reward_created",
            lambda session, outbox: self._catalog.create_reward(
                session,
                family_id,
                name,
                points_required,
                quantity_available=quantity_available,
                description=description,
                status=status,
            ),
            family=family_id,
        )

    def update_reward(
        self,
        reward_id: str,
        *,
        points_required: Optional[PointsLike] = None,
        status: Optional[RewardStatus] = None,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Outcome[Reward]:
        return self._run(
            "reward_updated",
            lambda session, outbox: self._catalog.update_reward(
                session,
                reward_id,
                points_required=points_required,
                status=status,
                name=name,
                description=description,
            ),
            locks=lambda session: [reward_key(reward_id)],
            reward=reward_id,
        )

    def set_reward_stock(self, reward_id: str, quantity_available: PointsLike) -> Outcome[RewardInventory]:
        return self._run(
            "reward_stock_set",
            lambda session, outbox: self._inventory.set_quantity_available(session, reward_id, quantity_available),
            locks=lambda session: [reward_key(reward_id)],
            reward=reward_id,
        )

    # ------------------------------------------------------------------
    # Assignments
    # ------------------------------------------------------------------
    def assign_task_to_children(
        self,
        task_id: str,
        child_ids: Sequence[str],
        due_date: Optional[datetime] = None,
        *,
        at: Optional[datetime] = None,
    ) -> Outcome[List[Assignment]]:
        def work(session: Session, outbox: Outbox) -> List[Assignment]:
            task = self._catalog.get_task(session, task_id)
            created = self._assignments.assign(session, task, _ids(child_ids), due_date, at=at)
            for assignment in created:
                outbox.append(
                    Notification(
                        recipient=assignment.child_id,
                        type=NotificationType.TASK_ASSIGNED,
                        title="New task",
                        body=f"You have a new task: {task.title} ({format_points(task.points_reward)}).",
                        reference_id=assignment.assignment_id,
                    )
                )
            return created

        return self._run(
            "task_assigned",
            work,
            locks=lambda session: [_task_key(task_id), *(child_key(child_id) for child_id in _ids(child_ids))],
            task=task_id,
            children=_ids(child_ids),
        )

    def submit_assignment(
        self,
        assignment_id: str,
        note: Optional[str] = None,
        photo_ref: Optional[str] = None,
        *,
        at: Optional[datetime] = None,
    ) -> Outcome[Assignment]:
        def work(session: Session, outbox: Outbox) -> Assignment:
            assignment = self._assignments.submit(session, assignment_id, note, photo_ref, at=at)
            task = self._catalog.get_task(session, assignment.task_id)
            outbox.append(
                Notification(
                    recipient=_family_inbox(task.family_id),
                    type=NotificationType.TASK_SUBMITTED,
                    title="Task submitted",
                    body=f"'{task.title}' is waiting for review.",
                    reference_id=assignment.assignment_id,
                    metadata={"child_id": assignment.child_id},
                )
            )
            return assignment

        return self._run(
            "assignment_submitted",
            work,
            locks=self._assignment_locks(assignment_id),
            assignment=assignment_id,
        )

    def review_assignment(
        self,
        assignment_id: str,
        decision: ReviewDecision | str,
        *,
        feedback: Optional[str] = None,
        reviewed_by: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> Outcome[Assignment]:
        """Approve (awarding points) or reject a submitted assignment."""

        def work(session: Session, outbox: Outbox) -> Assignment:
            choice = _decision(decision, (ReviewDecision.APPROVE, ReviewDecision.REJECT))
            if choice is ReviewDecision.APPROVE:
                assignment = self._assignments.approve(
                    session, assignment_id, reviewed_by=reviewed_by, feedback=feedback, at=at
                )
                outbox.append(
                    Notification(
                        recipient=assignment.child_id,
                        type=NotificationType.TASK_APPROVED,
                        title="Task approved!",
                        body=f"Your task was approved. You earned {format_points(assignment.points_awarded or 0)}!",
                        reference_id=assignment.assignment_id,
                    )
                )
            else:
                assignment = self._assignments.reject(
                    session, assignment_id, feedback or "", reviewed_by=reviewed_by, at=at
                )
                outbox.append(
                    Notification(
                        recipient=assignment.child_id,
                        type=NotificationType.TASK_REJECTED,
                        title="Task needs another try",
                        body=assignment.feedback or "",
                        reference_id=assignment.assignment_id,
                    )
                )
            return assignment

        return self._run(
            "assignment_reviewed",
            work,
            locks=self._assignment_locks(assignment_id),
            assignment=assignment_id,
            decision=str(getattr(decision, "value", decision)),
        )

    def extend_deadline(self, assignment_id: str, due_date: Optional[datetime]) -> Outcome[Assignment]:
        return self._run(
            "deadline_extended",
            lambda session, outbox: self._assignments.extend_deadline(session, assignment_id, due_date),
            locks=self._assignment_locks(assignment_id),
            assignment=assignment_id,
        )

    # ------------------------------------------------------------------
    # Redemptions
    # ------------------------------------------------------------------
    def request_redemption(
        self,
        child_id: str,
        reward_id: str,
        *,
        at: Optional[datetime] = None,
    ) -> Outcome[Redemption]:
        def work(session: Session, outbox: Outbox) -> Redemption:
            redemption = self._redemptions.request(session, child_id, reward_id, at=at)
            reward = self._catalog.get_reward(session, reward_id)
            outbox.append(
                Notification(
                    recipient=_family_inbox(reward.family_id),
                    type=NotificationType.REWARD_REQUESTED,
                    title="Reward requested",
                    body=f"'{reward.name}' was requested for {format_points(redemption.points_required_snapshot)}.",
                    reference_id=redemption.redemption_id,
                    metadata={"child_id": child_id},
                )
            )
            return redemption

        return self._run(
            "redemption_requested",
            work,
            locks=lambda session: [child_key(child_id), reward_key(reward_id)],
            child=child_id,
            reward=reward_id,
        )

    def review_redemption(
        self,
        redemption_id: str,
        decision: ReviewDecision | str,
        *,
        reason: Optional[str] = None,
        reviewed_by: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> Outcome[Redemption]:
        """Approve (deducting points and stock) or deny a pending redemption."""

        def work(session: Session, outbox: Outbox) -> Redemption:
            choice = _decision(decision, (ReviewDecision.APPROVE, ReviewDecision.DENY))
            if choice is ReviewDecision.APPROVE:
                redemption = self._redemptions.approve(
                    session, redemption_id, reviewed_by=reviewed_by, notes=reason, at=at
                )
                notification_type, title = NotificationType.REWARD_APPROVED, "Reward approved!"
                body = f"Enjoy your reward! {format_points(redemption.points_required_snapshot)} spent."
            else:
                redemption = self._redemptions.deny(
                    session, redemption_id, reason or "", reviewed_by=reviewed_by, at=at
                )
                notification_type, title = NotificationType.REWARD_DENIED, "Reward request denied"
                body = redemption.review_notes or ""
            outbox.append(
                Notification(
                    recipient=redemption.child_id,
                    type=notification_type,
                    title=title,
                    body=body,
                    reference_id=redemption.redemption_id,
                )
            )
            return redemption

        return self._run(
            "redemption_reviewed",
            work,
            locks=self._redemption_locks(redemption_id),
            redemption=redemption_id,
            decision=str(getattr(decision, "value", decision)),
        )

    def cancel_redemption(self, redemption_id: str, *, child_id: Optional[str] = None) -> Outcome[Redemption]:
        return self._run(
            "redemption_cancelled",
            lambda session, outbox: self._redemptions.cancel(session, redemption_id, child_id=child_id),
            locks=self._redemption_locks(redemption_id),
            redemption=redemption_id,
        )

    # ------------------------------------------------------------------
    # Ledger
    # ------------------------------------------------------------------
    def adjust_points(
        self,
        child_id: str,
        delta: PointsLike,
        description: str = "Manual adjustment",
        *,
        adjusted_by: Optional[str] = None,
        reason: LedgerReason = LedgerReason.MANUAL_ADJUSTMENT,
    ) -> Outcome[PointLedgerEntry]:
        """Correct a balance with a new entry; history is never rewritten."""

        def work(session: Session, outbox: Outbox) -> PointLedgerEntry:
            if reason not in (LedgerReason.MANUAL_ADJUSTMENT, LedgerReason.REDEMPTION_REFUND):
                raise ValidationError("Only manual adjustments and refunds can be posted directly.")
            self._catalog.get_child(session, child_id)
            entry = self._ledger.append(
                session, child_id, delta, reason, None, description=description, created_by=adjusted_by
            )
            outbox.append(
                Notification(
                    recipient=child_id,
                    type=NotificationType.POINTS_ADJUSTED,
                    title="Points updated",
                    body=f"{entry.delta:+d} points: {entry.description}",
                    reference_id=str(entry.entry_id),
                )
            )
            return entry

        return self._run("points_adjusted", work, locks=lambda session: [child_key(child_id)], child=child_id)

    # ------------------------------------------------------------------
    # Read-only queries
    # ------------------------------------------------------------------
    def balance(self, child_id: str) -> Outcome[int]:
        return self._child_read(child_id, lambda session: self._ledger.balance_of(session, child_id))

    def history(self, child_id: str, filters: Optional[HistoryFilter] = None) -> Outcome[List[PointLedgerEntry]]:
        return self._child_read(child_id, lambda session: self._ledger.history_of(session, child_id, filters))

    def summary(self, child_id: str) -> Outcome[LedgerSummary]:
        return self._child_read(child_id, lambda session: self._ledger.summary(session, child_id))

    def export_history_csv(self, child_id: str, filters: Optional[HistoryFilter] = None) -> Outcome[str]:
        return self._child_read(child_id, lambda session: self._ledger.export_csv(session, child_id, filters))

    def verify_ledger(self, child_id: str) -> Outcome[int]:
        return self._child_read(child_id, lambda session: self._ledger.verify(session, child_id))

    def leaderboard(self, family_id: str, *, limit: Optional[int] = LEADERBOARD_LIMIT) -> Outcome[Sequence[LeaderboardEntry]]:
        return self._read(lambda session: self._ledger.leaderboard(session, family_id, limit=limit))

    def assignment(self, assignment_id: str) -> Outcome[Assignment]:
        return self._read(lambda session: self._assignments.get(session, assignment_id))

    def is_overdue(self, assignment_id: str, *, at: Optional[datetime] = None) -> Outcome[bool]:
        return self._read(lambda session: self._assignments.get(session, assignment_id).is_overdue(at=at))

    def pending_reviews(self, family_id: str) -> Outcome[List[Assignment]]:
        return self._read(lambda session: self._assignments.pending_reviews(session, family_id))

    def overdue_assignments(self, family_id: str, *, at: Optional[datetime] = None) -> Outcome[List[Assignment]]:
        return self._read(lambda session: self._assignments.overdue(session, family_id, at=at))

    def assignment_statistics(self, child_id: str, *, at: Optional[datetime] = None) -> Outcome[AssignmentStats]:
        return self._child_read(child_id, lambda session: self._assignments.statistics(session, child_id, at=at))

    def redemption(self, redemption_id: str) -> Outcome[Redemption]:
        return self._read(lambda session: self._redemptions.get(session, redemption_id))

    def pending_redemptions(self, family_id: str) -> Outcome[List[Redemption]]:
        return self._read(lambda session: self._redemptions.pending_for_family(session, family_id))

    def redemption_statistics(self, child_id: str) -> Outcome[RedemptionStats]:
        return self._child_read(child_id, lambda session: self._redemptions.statistics(session, child_id))

    def remaining(self, reward_id: str) -> Outcome[int]:
        return self._read(lambda session: self._inventory.remaining(session, reward_id))

    def reward(self, reward_id: str) -> Outcome[Reward]:
        return self._read(lambda session: self._catalog.get_reward(session, reward_id))

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _child_read(self, child_id: str, query: Callable[[Session], T]) -> Outcome[T]:
        def run(session: Session) -> T:
            self._catalog.get_child(session, child_id, active_only=False)
            return query(session)

        return self._read(run)

    def _assignment_locks(self, assignment_id: str) -> Callable[[Session], List[str]]:
        def keys(session: Session) -> List[str]:
            return [child_key(self._assignments.get(session, assignment_id).child_id)]

        return keys

    def _redemption_locks(self, redemption_id: str) -> Callable[[Session], List[str]]:
        def keys(session: Session) -> List[str]:
            redemption = self._redemptions.get(session, redemption_id)
            return [child_key(redemption.child_id), reward_key(redemption.reward_id)]

        return keys

    def _run(
        self,
        action: str,
        work: Callable[[Session, Outbox], T],
        *,
        locks: Optional[Callable[[Session], Sequence[str]]] = None,
        **fields: object,
    ) -> Outcome[T]:
        outbox: Outbox = []
        try:
            keys: Sequence[str] = ()
            if locks is not None:
                with read_session(self._engine) as session:
                    keys = locks(session)
            with self._locks.hold(*keys):
                with unit_of_work(self._engine) as session:
                    value = work(session, outbox)
        except KidPointsError as exc:
            self._logger.log("rejected", action=action, error=exc.kind.value, detail=str(exc), **fields)
            return Outcome.failure(exc.kind, exc.user_message, {"detail": str(exc), **exc.details})
        except SQLAlchemyError as exc:
            self._logger.log("storage_error", action=action, error=type(exc).__name__, detail=str(exc), **fields)
            return Outcome.failure(ErrorKind.STORAGE_ERROR, "The change could not be saved. Please try again.")

        self._logger.log(action, **fields)
        self._publish(outbox)
        return Outcome.success(value)

    def _read(self, query: Callable[[Session], T]) -> Outcome[T]:
        try:
            with read_session(self._engine) as session:
                return Outcome.success(query(session))
        except KidPointsError as exc:
            return Outcome.failure(exc.kind, exc.user_message, {"detail": str(exc), **exc.details})
        except SQLAlchemyError as exc:
            self._logger.log("storage_error", action="read", error=type(exc).__name__, detail=str(exc))
            return Outcome.failure(ErrorKind.STORAGE_ERROR, "The data could not be loaded. Please try again.")

    def _publish(self, outbox: Outbox) -> None:
        for notification in outbox:
            try:
                self._notifications.publish(notification)
            except Exception as exc:  # delivery never undoes a committed change
                self._logger.log(
                    "notification_failed",
                    type=notification.type.value,
                    recipient=notification.recipient,
                    error=type(exc).__name__,
                )


def _ids(child_ids) -> List[str]:
    if isinstance(child_ids, str):
        return [child_ids]
    if not isinstance(child_ids, Iterable):
        return []
    return [str(child_id) for child_id in child_ids or ()]


def _decision(value: ReviewDecision | str, allowed: Sequence[ReviewDecision]) -> ReviewDecision:
    try:
        choice = ReviewDecision(value)
    except ValueError as exc:
        raise ValidationError(f"Unknown decision: {value!r}") from exc
    if choice not in allowed:
        raise ValidationError(f"'{choice.value}' is not a valid decision here.")
    return choice


__all__ = ["KidPoints"]
