"""Remaining redeemable stock per reward."""

from __future__ import annotations

from sqlalchemy import update
from sqlmodel import Session, select

from .exceptions import BelowRedeemedError, NotFoundError, OutOfStockError
from .locking import lock_for_update
from .persistence import RewardInventory
from .points import PointsLike, require_positive, to_points


class RewardInventoryBook:
    """Stock bookkeeping; ``quantity_available - quantity_redeemed`` never drops below zero."""

    def ensure(self, session: Session, reward_id: str, quantity_available: PointsLike = 0) -> RewardInventory:
        row = session.get(RewardInventory, reward_id)
        if row is None:
            quantity = require_positive(to_points(quantity_available), allow_zero=True)
            row = RewardInventory(reward_id=reward_id, quantity_available=quantity)
            session.add(row)
            session.flush()
        return row

    def get(self, session: Session, reward_id: str, *, for_update: bool = False) -> RewardInventory:
        statement = select(RewardInventory).where(RewardInventory.reward_id == reward_id)
        if for_update:
            statement = lock_for_update(statement)
        row = session.exec(statement).first()
        if row is None:
            raise NotFoundError(f"No inventory recorded for reward '{reward_id}'.")
        return row

    def remaining(self, session: Session, reward_id: str) -> int:
        return self.get(session, reward_id).remaining

    def increment_redeemed(self, session: Session, reward_id: str) -> RewardInventory:
        """Take one unit of stock, failing when none remains."""

        # Check and increment in one statement so two approvals cannot both pass.
        result = session.connection().execute(
            update(RewardInventory)
            .where(
                RewardInventory.reward_id == reward_id,
                RewardInventory.quantity_redeemed < RewardInventory.quantity_available,
            )
            .values(quantity_redeemed=RewardInventory.quantity_redeemed + 1)
        )
        if result.rowcount != 1:
            row = self.get(session, reward_id)
            raise OutOfStockError(
                f"Reward '{reward_id}' has no remaining stock.",
                details={"reward_id": reward_id, "remaining": row.remaining},
            )
        row = self.get(session, reward_id)
        session.refresh(row)
        return row

    def set_quantity_available(self, session: Session, reward_id: str, quantity: PointsLike) -> RewardInventory:
        value = require_positive(to_points(quantity), allow_zero=True)
        row = self.get(session, reward_id, for_update=True)
        if value < row.quantity_redeemed:
            raise BelowRedeemedError(
                f"Cannot set stock to {value}; {row.quantity_redeemed} already redeemed.",
                details={"quantity_redeemed": row.quantity_redeemed},
            )
        row.quantity_available = value
        session.add(row)
        session.flush()
        return row


__all__ = ["RewardInventoryBook"]
