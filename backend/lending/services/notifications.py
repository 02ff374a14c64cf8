"""
Borrower notifications composed from lending events.

Delivery channels (push, e-mail) are outside this service; composed
notifications are logged and kept in a bounded in-process outbox that a
delivery worker can drain.
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, List, Optional

from lending.core.config import to_local
from lending.domain.entities import (
    ItemReturned,
    LendingEvent,
    LevelUp,
    PointsAwarded,
    ReservationCreated,
    ReservationOverdue,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notification:
    type: str
    user_id: int
    title: str
    body: str
    data: dict = field(default_factory=dict)


def compose_notification(event: LendingEvent) -> Optional[Notification]:
    if isinstance(event, ReservationCreated):
        due = to_local(event.due_at)
        return Notification(
            "BORROW_CONFIRMED",
            event.user_id,
            "Item Borrowed Successfully",
            f"Reservation #{event.reservation_id} confirmed. Due back {due:%Y-%m-%d}.",
            {"item_id": event.item_id, "due_at": event.due_at.isoformat()},
        )
    if isinstance(event, ReservationOverdue):
        return Notification(
            "OVERDUE_NOTICE",
            event.user_id,
            "Item Overdue",
            f"Reservation #{event.reservation_id} is overdue. "
            "Please return it immediately.",
            {"item_id": event.item_id, "due_at": event.due_at.isoformat()},
        )
    if isinstance(event, LevelUp):
        return Notification(
            "LEVEL_UP",
            event.user_id,
            "Level Up!",
            f"Congratulations! You're now Level {event.new_level} "
            f"({event.level_name})!",
            {"new_level": event.new_level},
        )
    if isinstance(event, PointsAwarded) and event.points > 0:
        return Notification(
            "REWARD_EARNED",
            event.user_id,
            f"+{event.points} Points",
            event.reason,
            {"points": event.points, "total": event.total},
        )
    if isinstance(event, ItemReturned) and not event.forced:
        return Notification(
            "RETURN_RECORDED",
            event.user_id,
            "Return Recorded",
            f"Thanks! Reservation #{event.reservation_id} is closed.",
            {"item_id": event.item_id, "condition": event.condition.value},
        )
    return None


class NotificationOutbox:
    """Event subscriber that composes and queues notifications."""

    def __init__(self, maxlen: int = 1000):
        self._queue: Deque[Notification] = deque(maxlen=maxlen)
        self._lock = threading.Lock()

    def __call__(self, event: LendingEvent) -> None:
        notification = compose_notification(event)
        if notification is None:
            return
        with self._lock:
            self._queue.append(notification)
        logger.info(
            f"Notification queued: {notification.type}",
            extra={
                "context": {"user_id": notification.user_id, "type": notification.type}
            },
        )

    def drain(self) -> List[Notification]:
        with self._lock:
            items = list(self._queue)
            self._queue.clear()
        return items

    def __len__(self) -> int:
        return len(self._queue)
