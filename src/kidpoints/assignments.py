"""Lifecycle of one child's instance of a task, from assignment to points awarded."""

from __future__ import annotations

from collections import Counter
from datetime import datetime
from typing import Iterable, List, Optional, Sequence

from sqlmodel import Session, select

from .catalog import Catalog
from .exceptions import (
    ConcurrentUpdateError,
    DuplicateAssignmentError,
    InvalidStateError,
    NotFoundError,
    PhotoRequiredError,
    ValidationError,
)
from .ledger import PointLedger
from .locking import compare_and_set, lock_for_update
from .models import AssignmentStats, AssignmentStatus, LedgerReason, TaskStatus, as_utc, utcnow
from .persistence import Assignment, Task
from .points import require_moment, require_text

SUBMITTABLE = frozenset({AssignmentStatus.PENDING, AssignmentStatus.REJECTED})
REVIEWABLE = frozenset({AssignmentStatus.SUBMITTED})
ARCHIVABLE = frozenset({AssignmentStatus.PENDING, AssignmentStatus.SUBMITTED})
LIVE = frozenset(
    {AssignmentStatus.PENDING, AssignmentStatus.SUBMITTED, AssignmentStatus.REJECTED, AssignmentStatus.APPROVED}
)


def is_overdue(assignment: Assignment, *, at: Optional[datetime] = None) -> bool:
    """True while a pending assignment is past its due date."""

    return assignment.is_overdue(at=at)


class AssignmentMachine:
    """The only place assignment statuses change.

    ``pending -> submitted -> approved | rejected``, ``rejected -> submitted``
    and ``pending | submitted -> archived``. Approval writes the task award
    to the ledger in the same session as the status change.
    """

    def __init__(self, ledger: PointLedger, catalog: Catalog) -> None:
        self._ledger = ledger
        self._catalog = catalog

    def get(self, session: Session, assignment_id: str, *, for_update: bool = False) -> Assignment:
        statement = select(Assignment).where(Assignment.assignment_id == assignment_id)
        if for_update:
            statement = lock_for_update(statement)
        assignment = session.exec(statement).first()
        if assignment is None:
            raise NotFoundError(f"Assignment '{assignment_id}' does not exist.")
        return assignment

    def assign(
        self,
        session: Session,
        task: Task,
        child_ids: Sequence[str],
        due_date: Optional[datetime] = None,
        *,
        at: Optional[datetime] = None,
    ) -> List[Assignment]:
        """Create one pending assignment per child, or none at all."""

        if isinstance(child_ids, str):
            child_ids = [child_ids]
        unique_ids = list(dict.fromkeys(child_ids or ()))
        if not unique_ids:
            raise ValidationError("At least one child is required.")
        if task.status is not TaskStatus.ACTIVE:
            raise ValidationError(f"Task '{task.title}' is {task.status.value} and cannot be assigned.")

        children = [self._catalog.get_child(session, child_id) for child_id in unique_ids]
        for child in children:
            if child.family_id != task.family_id:
                raise ValidationError(f"Child '{child.name}' is not in the task's family.")

        existing = self._live_for_task(session, task.task_id, unique_ids)
        if existing:
            taken = sorted({assignment.child_id for assignment in existing})
            raise DuplicateAssignmentError(
                f"Task '{task.title}' is already assigned to {', '.join(taken)}.",
                details={"child_ids": taken},
            )

        due = require_moment(due_date, "due_date")
        moment = as_utc(at) or utcnow()
        created = []
        for child in children:
            assignment = Assignment(
                task_id=task.task_id,
                child_id=child.child_id,
                due_date=due if due is not None else task.deadline,
                created_at=moment,
            )
            session.add(assignment)
            created.append(assignment)
        session.flush()
        return created

    def submit(
        self,
        session: Session,
        assignment_id: str,
        note: Optional[str] = None,
        photo_ref: Optional[str] = None,
        *,
        at: Optional[datetime] = None,
    ) -> Assignment:
        assignment = self.get(session, assignment_id, for_update=True)
        self._require(assignment, SUBMITTABLE, "submit")
        task = self._catalog.get_task(session, assignment.task_id)
        photo = (photo_ref or "").strip() or None
        if task.photo_required and photo is None:
            raise PhotoRequiredError(f"Task '{task.title}' needs a photo as proof.")

        self._move(session, assignment, SUBMITTABLE, "submit", AssignmentStatus.SUBMITTED)
        assignment.submitted_at = as_utc(at) or utcnow()
        assignment.submission_note = (note or "").strip() or None
        assignment.submission_photo_ref = photo
        return self._save(session, assignment)

    def approve(
        self,
        session: Session,
        assignment_id: str,
        *,
        reviewed_by: Optional[str] = None,
        feedback: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> Assignment:
        assignment = self.get(session, assignment_id, for_update=True)
        self._require(assignment, REVIEWABLE, "approve")
        task = self._catalog.get_task(session, assignment.task_id)
        moment = as_utc(at) or utcnow()

        self._move(session, assignment, REVIEWABLE, "approve", AssignmentStatus.APPROVED)
        self._ledger.append(
            session,
            assignment.child_id,
            task.points_reward,
            LedgerReason.TASK_AWARD,
            assignment.assignment_id,
            description=f"Task '{task.title}' completed",
            created_by=reviewed_by,
            at=moment,
        )
        assignment.points_awarded = task.points_reward
        assignment.reviewed_at = moment
        assignment.reviewed_by = reviewed_by
        assignment.feedback = (feedback or "").strip() or None
        return self._save(session, assignment)

    def reject(
        self,
        session: Session,
        assignment_id: str,
        feedback: str,
        *,
        reviewed_by: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> Assignment:
        assignment = self.get(session, assignment_id, for_update=True)
        self._require(assignment, REVIEWABLE, "reject")
        text = require_text(feedback, "Feedback")

        self._move(session, assignment, REVIEWABLE, "reject", AssignmentStatus.REJECTED)
        assignment.reviewed_at = as_utc(at) or utcnow()
        assignment.reviewed_by = reviewed_by
        assignment.feedback = text
        return self._save(session, assignment)

    def archive(self, session: Session, assignment_id: str) -> Assignment:
        assignment = self.get(session, assignment_id, for_update=True)
        self._move(session, assignment, ARCHIVABLE, "archive", AssignmentStatus.ARCHIVED)
        return self._save(session, assignment)

    def archive_for_task(self, session: Session, task_id: str) -> List[Assignment]:
        """Archive open assignments of a cancelled task; reviewed ones stay for history."""

        return self._archive_all(session, self.open_for_task(session, task_id))

    def archive_for_child(self, session: Session, child_id: str) -> List[Assignment]:
        rows = session.exec(
            select(Assignment).where(
                Assignment.child_id == child_id,
                Assignment.status.in_(list(ARCHIVABLE)),
            )
        ).all()
        return self._archive_all(session, rows)

    def open_for_task(self, session: Session, task_id: str) -> List[Assignment]:
        """Pending and submitted assignments of ``task_id``."""

        statement = select(Assignment).where(
            Assignment.task_id == task_id,
            Assignment.status.in_(list(ARCHIVABLE)),
        )
        return list(session.exec(statement).all())

    def extend_deadline(self, session: Session, assignment_id: str, due_date: Optional[datetime]) -> Assignment:
        assignment = self.get(session, assignment_id, for_update=True)
        self._require(assignment, SUBMITTABLE | REVIEWABLE, "extend the deadline of")
        assignment.due_date = require_moment(due_date, "due_date")
        return self._save(session, assignment)

    # ------------------------------------------------------------------
    # Read-only projections
    # ------------------------------------------------------------------
    def list_for_child(
        self,
        session: Session,
        child_id: str,
        *,
        statuses: Optional[Iterable[AssignmentStatus]] = None,
    ) -> List[Assignment]:
        statement = select(Assignment).where(Assignment.child_id == child_id)
        if statuses is not None:
            statement = statement.where(Assignment.status.in_(list(statuses)))
        return list(session.exec(statement.order_by(Assignment.created_at)).all())

    def pending_reviews(self, session: Session, family_id: str) -> List[Assignment]:
        statement = (
            select(Assignment)
            .join(Task, Task.task_id == Assignment.task_id)
            .where(Task.family_id == family_id, Assignment.status == AssignmentStatus.SUBMITTED)
            .order_by(Assignment.submitted_at)
        )
        return list(session.exec(statement).all())

    def overdue(self, session: Session, family_id: str, *, at: Optional[datetime] = None) -> List[Assignment]:
        moment = as_utc(at) or utcnow()
        statement = (
            select(Assignment)
            .join(Task, Task.task_id == Assignment.task_id)
            .where(
                Task.family_id == family_id,
                Assignment.status == AssignmentStatus.PENDING,
                Assignment.due_date.is_not(None),
                Assignment.due_date < moment,
            )
            .order_by(Assignment.due_date)
        )
        return list(session.exec(statement).all())

    def statistics(self, session: Session, child_id: str, *, at: Optional[datetime] = None) -> AssignmentStats:
        rows = self.list_for_child(session, child_id)
        counts = Counter(row.status for row in rows)
        overdue = sum(1 for row in rows if row.is_overdue(at=at))
        return AssignmentStats(
            child_id=child_id,
            counts={status: counts.get(status, 0) for status in AssignmentStatus},
            overdue=overdue,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _live_for_task(self, session: Session, task_id: str, child_ids: Sequence[str]) -> List[Assignment]:
        statement = select(Assignment).where(
            Assignment.task_id == task_id,
            Assignment.child_id.in_(list(child_ids)),
            Assignment.status.in_(list(LIVE)),
        )
        return list(session.exec(statement).all())

    def _archive_all(self, session: Session, rows: Iterable[Assignment]) -> List[Assignment]:
        """Archive the rows still open in storage; ones reviewed meanwhile are skipped."""

        archived = []
        for assignment in rows:
            if not compare_and_set(
                session, Assignment.assignment_id, assignment.assignment_id, ARCHIVABLE, AssignmentStatus.ARCHIVED
            ):
                session.refresh(assignment)
                continue
            assignment.status = AssignmentStatus.ARCHIVED
            session.add(assignment)
            archived.append(assignment)
        session.flush()
        return archived

    def _move(
        self,
        session: Session,
        assignment: Assignment,
        allowed: frozenset,
        action: str,
        status: AssignmentStatus,
    ) -> None:
        self._require(assignment, allowed, action)
        if not compare_and_set(session, Assignment.assignment_id, assignment.assignment_id, allowed, status):
            session.refresh(assignment)
            self._require(assignment, allowed, action)
            raise ConcurrentUpdateError(
                f"Assignment '{assignment.assignment_id}' changed while updating.",
                details={"assignment_id": assignment.assignment_id},
            )
        assignment.status = status

    @staticmethod
    def _require(assignment: Assignment, allowed: frozenset, action: str) -> None:
        if assignment.status not in allowed:
            raise InvalidStateError(
                f"Cannot {action} an assignment that is {assignment.status.value}.",
                details={"assignment_id": assignment.assignment_id, "status": assignment.status.value},
            )

    @staticmethod
    def _save(session: Session, assignment: Assignment) -> Assignment:
        session.add(assignment)
        session.flush()
        return assignment


__all__ = ["AssignmentMachine", "is_overdue"]
