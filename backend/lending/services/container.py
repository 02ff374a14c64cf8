"""Wiring of the lending services for one application instance."""

from dataclasses import dataclass
from typing import Callable, Optional

from flask import current_app

from lending.core.config import utcnow
from lending.services.availability_cache import (
    AvailabilityCache,
    CacheStore,
    create_cache_store,
)
from lending.services.events import EventPublisher, log_event
from lending.services.notifications import NotificationOutbox
from lending.services.progression_service import ProgressionEngine
from lending.services.reservation_coordinator import (
    ItemLockRegistry,
    ReservationCoordinator,
)
from lending.services.subscription_service import SubscriptionService

EXTENSION_KEY = "lending"


@dataclass
class LendingServices:
    session_factory: Callable
    publisher: EventPublisher
    outbox: NotificationOutbox
    cache: AvailabilityCache
    progression: ProgressionEngine
    coordinator: ReservationCoordinator
    subscriptions: SubscriptionService


def build_services(
    session_factory,
    cache_store: Optional[CacheStore] = None,
    cache_url: str = "memory://",
    cache_ttl_seconds: int = 300,
    clock: Callable = utcnow,
) -> LendingServices:
    publisher = EventPublisher()
    publisher.subscribe(log_event)
    outbox = NotificationOutbox()
    publisher.subscribe(outbox)

    cache = AvailabilityCache(
        cache_store or create_cache_store(cache_url), session_factory, cache_ttl_seconds
    )
    progression = ProgressionEngine(session_factory, publisher, clock)
    coordinator = ReservationCoordinator(
        session_factory,
        cache=cache,
        progression=progression,
        publisher=publisher,
        clock=clock,
        locks=ItemLockRegistry(),
    )
    return LendingServices(
        session_factory=session_factory,
        publisher=publisher,
        outbox=outbox,
        cache=cache,
        progression=progression,
        coordinator=coordinator,
        subscriptions=SubscriptionService(session_factory, clock),
    )


def get_services() -> LendingServices:
    return current_app.extensions[EXTENSION_KEY]
