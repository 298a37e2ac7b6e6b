"""Notification primitives for KidPoints."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Protocol, Sequence

from .models import utcnow


class NotificationType(str, Enum):
    TASK_ASSIGNED = "task_assigned"
    TASK_SUBMITTED = "task_submitted"
    TASK_APPROVED = "task_approved"
    TASK_REJECTED = "task_rejected"
    REWARD_REQUESTED = "reward_requested"
    REWARD_APPROVED = "reward_approved"
    REWARD_DENIED = "reward_denied"
    POINTS_ADJUSTED = "points_adjusted"


@dataclass(slots=True)
class Notification:
    """A domain event the delivery layer may push to a family member."""

    recipient: str
    type: NotificationType
    title: str
    body: str
    reference_id: str = ""
    metadata: Dict[str, str] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)

    def as_dict(self) -> Dict[str, str]:
        payload = {
            "recipient": self.recipient,
            "type": self.type.value,
            "title": self.title,
            "body": self.body,
            "reference_id": self.reference_id,
            "created_at": self.created_at.isoformat(),
        }
        payload.update(self.metadata)
        return payload


class NotificationPort(Protocol):
    """What the orchestrator needs from a notification dispatcher."""

    def publish(self, notification: Notification) -> None:
        ...


class NotificationCenter:
    """In-memory notification inbox used for tests and integrations."""

    def __init__(self) -> None:
        self._queue: List[Notification] = []
        self._sent: List[Notification] = []

    def publish(self, notification: Notification) -> None:
        self._queue.append(notification)

    def pending(
        self,
        *,
        notification_type: NotificationType | None = None,
        recipient: str | None = None,
    ) -> Sequence[Notification]:
        items = self._queue
        if notification_type is not None:
            items = [item for item in items if item.type is notification_type]
        if recipient is not None:
            items = [item for item in items if item.recipient == recipient]
        return tuple(items)

    def pop_all(self) -> Sequence[Notification]:
        pending = tuple(self._queue)
        self._queue.clear()
        self._sent.extend(pending)
        return pending

    def history(self) -> Sequence[Notification]:
        return tuple(self._sent)


__all__ = [
    "Notification",
    "NotificationCenter",
    "NotificationPort",
    "NotificationType",
]
