"""
Post-commit event delivery.

Services collect events while a transaction is open and hand them to the
publisher only after commit. A failing subscriber is logged and skipped;
it never undoes the committed state change or blocks other subscribers.
"""

import logging
from typing import Callable, Iterable, List, Optional, Tuple

from lending.domain.entities import LendingEvent

logger = logging.getLogger(__name__)

Subscriber = Callable[[LendingEvent], None]


class EventPublisher:
    def __init__(self):
        self._subscribers: List[Tuple[Optional[frozenset], Subscriber]] = []

    def subscribe(self, callback: Subscriber, *event_names: str) -> None:
        """Register ``callback`` for the named events, or for all when none given."""
        names = frozenset(event_names) if event_names else None
        self._subscribers.append((names, callback))

    def publish(self, event: LendingEvent) -> None:
        for names, callback in list(self._subscribers):
            if names is not None and event.name not in names:
                continue
            try:
                callback(event)
            except Exception:
                logger.error(
                    "Event subscriber failed",
                    extra={
                        "context": {
                            "event": event.name,
                            "subscriber": getattr(callback, "__name__", repr(callback)),
                        }
                    },
                    exc_info=True,
                )

    def publish_all(self, events: Iterable[LendingEvent]) -> None:
        for event in events:
            self.publish(event)


def log_event(event: LendingEvent) -> None:
    logging.getLogger("lending.events").info(
        f"Event {event.name}", extra={"context": event.to_dict()}
    )
