"""Children, task and reward definitions the state machines refer to."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlmodel import Session, select

from .exceptions import NotFoundError, ValidationError
from .inventory import RewardInventoryBook
from .models import RewardStatus, TaskPriority, TaskStatus
from .persistence import Child, Reward, Task
from .points import PointsLike, calculate_task_points, require_moment, require_positive, require_text, to_points


class Catalog:
    """Lookup and maintenance for the definitions behind assignments and redemptions."""

    def __init__(self, inventory: RewardInventoryBook) -> None:
        self._inventory = inventory

    # ------------------------------------------------------------------
    # Children
    # ------------------------------------------------------------------
    def add_child(self, session: Session, family_id: str, name: str, *, child_id: Optional[str] = None) -> Child:
        child = Child(family_id=require_text(family_id, "family_id"), name=require_text(name, "name"))
        if child_id:
            if session.get(Child, child_id) is not None:
                raise ValidationError(f"Child '{child_id}' already exists.")
            child.child_id = child_id
        session.add(child)
        session.flush()
        return child

    def get_child(self, session: Session, child_id: str, *, active_only: bool = True) -> Child:
        child = session.get(Child, child_id)
        if child is None or (active_only and not child.active):
            raise NotFoundError(f"Child '{child_id}' does not exist.")
        return child

    def deactivate_child(self, session: Session, child_id: str) -> Child:
        child = self.get_child(session, child_id)
        child.active = False
        session.add(child)
        session.flush()
        return child

    def children(self, session: Session, family_id: str) -> tuple[Child, ...]:
        rows = session.exec(
            select(Child).where(Child.family_id == family_id, Child.active == True)  # noqa: E712
        ).all()
        return tuple(sorted(rows, key=lambda child: child.name))

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------
    def create_task(
        self,
        session: Session,
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
    ) -> Task:
        points = require_positive(to_points(points_reward))
        priority = _coerce(TaskPriority, priority, "priority")
        if scale_by_priority:
            points = require_positive(calculate_task_points(points, priority))
        task = Task(
            family_id=require_text(family_id, "family_id"),
            title=require_text(title, "title"),
            description=description,
            points_reward=points,
            priority=priority,
            photo_required=bool(photo_required),
            deadline=require_moment(deadline, "deadline"),
            created_by=created_by,
        )
        session.add(task)
        session.flush()
        return task

    def get_task(self, session: Session, task_id: str) -> Task:
        task = session.get(Task, task_id)
        if task is None:
            raise NotFoundError(f"Task '{task_id}' does not exist.")
        return task

    def set_task_status(self, session: Session, task_id: str, status: TaskStatus) -> Task:
        task = self.get_task(session, task_id)
        task.status = _coerce(TaskStatus, status, "status")
        session.add(task)
        session.flush()
        return task

    # ------------------------------------------------------------------
    # Rewards
    # ------------------------------------------------------------------
    def create_reward(
        self,
        session: Session,
        family_id: str,
        name: str,
        points_required: PointsLike,
        *,
        quantity_available: PointsLike = 1,
        description: Optional[str] = None,
        status: RewardStatus = RewardStatus.AVAILABLE,
    ) -> Reward:
        reward = Reward(
            family_id=require_text(family_id, "family_id"),
            name=require_text(name, "name"),
            description=description,
            points_required=require_positive(to_points(points_required)),
            status=_coerce(RewardStatus, status, "status"),
        )
        session.add(reward)
        session.flush()
        self._inventory.ensure(session, reward.reward_id, quantity_available)
        return reward

    def get_reward(self, session: Session, reward_id: str) -> Reward:
        reward = session.get(Reward, reward_id)
        if reward is None:
            raise NotFoundError(f"Reward '{reward_id}' does not exist.")
        return reward

    def update_reward(
        self,
        session: Session,
        reward_id: str,
        *,
        points_required: Optional[PointsLike] = None,
        status: Optional[RewardStatus] = None,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Reward:
        """Edit a reward definition; existing redemptions keep their price snapshot."""

        reward = self.get_reward(session, reward_id)
        if points_required is not None:
            reward.points_required = require_positive(to_points(points_required))
        if status is not None:
            reward.status = _coerce(RewardStatus, status, "status")
        if name is not None:
            reward.name = require_text(name, "name")
        if description is not None:
            reward.description = description
        session.add(reward)
        session.flush()
        return reward


def _coerce(enum_type, value, field: str):
    try:
        return enum_type(value)
    except ValueError as exc:
        raise ValidationError(f"Invalid {field}: {value!r}") from exc


__all__ = ["Catalog"]
