"""Reward requests and their approval, coupled to the ledger and stock."""

from __future__ import annotations

from collections import Counter
from datetime import datetime
from typing import Iterable, List, Optional

from sqlmodel import Session, select

from .catalog import Catalog
from .exceptions import (
    ConcurrentUpdateError,
    InsufficientPointsError,
    InvalidStateError,
    NotFoundError,
    OutOfStockError,
    RewardUnavailableError,
    ValidationError,
)
from .inventory import RewardInventoryBook
from .ledger import PointLedger
from .locking import compare_and_set, lock_for_update
from .models import LedgerReason, RedemptionStats, RedemptionStatus, RewardStatus, as_utc, utcnow
from .persistence import Redemption, Reward
from .points import format_points, require_text


class RedemptionMachine:
    """``pending -> approved | denied | cancelled``; every outcome is terminal.

    Points are only verified when a reward is requested. They are deducted
    at approval, where balance and stock are checked again, so a request
    that was affordable can still fail when it is reviewed.
    """

    def __init__(self, ledger: PointLedger, inventory: RewardInventoryBook, catalog: Catalog) -> None:
        self._ledger = ledger
        self._inventory = inventory
        self._catalog = catalog

    def get(self, session: Session, redemption_id: str, *, for_update: bool = False) -> Redemption:
        statement = select(Redemption).where(Redemption.redemption_id == redemption_id)
        if for_update:
            statement = lock_for_update(statement)
        redemption = session.exec(statement).first()
        if redemption is None:
            raise NotFoundError(f"Redemption '{redemption_id}' does not exist.")
        return redemption

    def request(
        self,
        session: Session,
        child_id: str,
        reward_id: str,
        *,
        at: Optional[datetime] = None,
    ) -> Redemption:
        child = self._catalog.get_child(session, child_id)
        reward = self._catalog.get_reward(session, reward_id)
        if reward.family_id != child.family_id:
            raise NotFoundError(f"Reward '{reward_id}' is not offered to this family.")
        if reward.status is not RewardStatus.AVAILABLE:
            raise RewardUnavailableError(f"Reward '{reward.name}' is {reward.status.value}.")
        remaining = self._inventory.remaining(session, reward_id)
        if remaining <= 0:
            raise OutOfStockError(f"Reward '{reward.name}' is out of stock.", details={"remaining": remaining})
        balance = self._ledger.balance_of(session, child_id)
        if balance < reward.points_required:
            raise InsufficientPointsError(
                f"'{reward.name}' costs {format_points(reward.points_required)}; "
                f"balance is {format_points(balance)}.",
                details={"balance": balance, "required": reward.points_required},
            )

        redemption = Redemption(
            reward_id=reward_id,
            child_id=child_id,
            points_required_snapshot=reward.points_required,
            requested_at=as_utc(at) or utcnow(),
        )
        session.add(redemption)
        session.flush()
        return redemption

    def approve(
        self,
        session: Session,
        redemption_id: str,
        *,
        reviewed_by: Optional[str] = None,
        notes: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> Redemption:
        redemption = self.get(session, redemption_id, for_update=True)
        self._require_pending(redemption, "approve")
        reward = self._catalog.get_reward(session, redemption.reward_id)
        moment = as_utc(at) or utcnow()

        self._ledger.append(
            session,
            redemption.child_id,
            -redemption.points_required_snapshot,
            LedgerReason.REDEMPTION_SPEND,
            redemption.redemption_id,
            description=f"Reward '{reward.name}' redeemed",
            created_by=reviewed_by,
            at=moment,
        )
        self._inventory.increment_redeemed(session, redemption.reward_id)

        self._move(session, redemption, "approve", RedemptionStatus.APPROVED)
        redemption.reviewed_at = moment
        redemption.reviewed_by = reviewed_by
        redemption.review_notes = (notes or "").strip() or None
        return self._save(session, redemption)

    def deny(
        self,
        session: Session,
        redemption_id: str,
        reason: str,
        *,
        reviewed_by: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> Redemption:
        redemption = self.get(session, redemption_id, for_update=True)
        self._require_pending(redemption, "deny")
        text = require_text(reason, "Reason")

        self._move(session, redemption, "deny", RedemptionStatus.DENIED)
        redemption.reviewed_at = as_utc(at) or utcnow()
        redemption.reviewed_by = reviewed_by
        redemption.review_notes = text
        return self._save(session, redemption)

    def cancel(
        self,
        session: Session,
        redemption_id: str,
        *,
        child_id: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> Redemption:
        """Withdraw a pending request; only the requesting child may do so when ``child_id`` is given."""

        redemption = self.get(session, redemption_id, for_update=True)
        if child_id is not None and child_id != redemption.child_id:
            raise ValidationError("Only the child who requested the reward can cancel it.")
        self._require_pending(redemption, "cancel")
        self._move(session, redemption, "cancel", RedemptionStatus.CANCELLED)
        redemption.reviewed_at = as_utc(at) or utcnow()
        return self._save(session, redemption)

    # ------------------------------------------------------------------
    # Read-only projections
    # ------------------------------------------------------------------
    def list_for_child(
        self,
        session: Session,
        child_id: str,
        *,
        statuses: Optional[Iterable[RedemptionStatus]] = None,
    ) -> List[Redemption]:
        statement = select(Redemption).where(Redemption.child_id == child_id)
        if statuses is not None:
            statement = statement.where(Redemption.status.in_(list(statuses)))
        return list(session.exec(statement.order_by(Redemption.requested_at)).all())

    def pending_for_family(self, session: Session, family_id: str) -> List[Redemption]:
        statement = (
            select(Redemption)
            .join(Reward, Reward.reward_id == Redemption.reward_id)
            .where(Reward.family_id == family_id, Redemption.status == RedemptionStatus.PENDING)
            .order_by(Redemption.requested_at)
        )
        return list(session.exec(statement).all())

    def statistics(self, session: Session, child_id: str) -> RedemptionStats:
        rows = self.list_for_child(session, child_id)
        counts = Counter(row.status for row in rows)
        spent = sum(row.points_required_snapshot for row in rows if row.status is RedemptionStatus.APPROVED)
        return RedemptionStats(
            child_id=child_id,
            counts={status: counts.get(status, 0) for status in RedemptionStatus},
            total_points_spent=spent,
        )

    def _move(self, session: Session, redemption: Redemption, action: str, status: RedemptionStatus) -> None:
        if not compare_and_set(
            session, Redemption.redemption_id, redemption.redemption_id, (RedemptionStatus.PENDING,), status
        ):
            session.refresh(redemption)
            self._require_pending(redemption, action)
            raise ConcurrentUpdateError(
                f"Redemption '{redemption.redemption_id}' changed while updating.",
                details={"redemption_id": redemption.redemption_id},
            )
        redemption.status = status

    @staticmethod
    def _require_pending(redemption: Redemption, action: str) -> None:
        if redemption.status is not RedemptionStatus.PENDING:
            raise InvalidStateError(
                f"Cannot {action} a redemption that is {redemption.status.value}.",
                details={"redemption_id": redemption.redemption_id, "status": redemption.status.value},
            )

    @staticmethod
    def _save(session: Session, redemption: Redemption) -> Redemption:
        session.add(redemption)
        session.flush()
        return redemption


__all__ = ["RedemptionMachine"]
