"""
Reservation coordinator.

Sole writer of reservations and of the item availability flag. Each
operation runs as one short transaction:

    reserve:  validate -> load item -> ledger availability -> compare-and-set
              flag -> lock borrower -> snapshot -> eligibility -> insert -> audit
              -> commit
    return:   close reservation -> free item -> progression -> audit -> commit

After commit the availability cache entry is invalidated and events are
published. Losing a race yields ConflictError; nothing is retried here.

Exclusion on a single item is layered: an in-process lock per item id,
the compare-and-set UPDATE on ``items.available`` and the partial unique
index allowing one active/overdue record per item.

Plan limits are serialized per borrower by a row lock on the user, taken
after the item row so the lock order matches returns (item, then user).
A denial rolls the compare-and-set back with the transaction.
"""

import logging
import threading
import time
import uuid
from contextlib import contextmanager
from datetime import timedelta
from typing import Callable, Dict, List, Optional

from sqlalchemy.exc import IntegrityError

from lending.core.config import DEFAULT_LOAN_DAYS, MAX_LOAN_DAYS, MIN_LOAN_DAYS, utcnow
from lending.core.exceptions import ConflictError, DeniedError, InvalidInputError
from lending.core.logging_config import log_performance
from lending.domain.entities import (
    HandoverConfirmation,
    HandoverConfirmed,
    ItemReturned,
    Reservation,
    ReservationCreated,
    ReservationOverdue,
    ReservationReceipt,
    ReservationStatus,
    ReturnCondition,
    ReturnReceipt,
    UserSnapshot,
)
from lending.repositories.audit_repository import AuditRepository
from lending.repositories.ledger_repository import LedgerRepository
from lending.repositories.subscription_repository import SubscriptionRepository
from lending.repositories.user_repository import UserRepository
from lending.services.availability_cache import AvailabilityCache
from lending.services.eligibility import can_reserve
from lending.services.events import EventPublisher
from lending.services.progression_service import ProgressionEngine
from lending.services.transaction import atomic

logger = logging.getLogger(__name__)

HANDOVER_TOKEN_PREFIX = "LOT-"
ADMIN_OVERRIDE_PREFIX = "[ADMIN OVERRIDE]"


def new_handover_token() -> str:
    return HANDOVER_TOKEN_PREFIX + uuid.uuid4().hex[:12].upper()


def parse_condition(value) -> ReturnCondition:
    if isinstance(value, ReturnCondition):
        return value
    try:
        return ReturnCondition(str(value).lower())
    except ValueError:
        raise InvalidInputError(f"Unknown return condition: {value}") from None


class ItemLockRegistry:
    """One mutex per item id, shared by every coordinator in the process."""

    def __init__(self):
        self._locks: Dict[int, threading.Lock] = {}
        self._guard = threading.Lock()

    def lock_for(self, item_id: int) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(item_id)
            if lock is None:
                lock = self._locks[item_id] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, item_id: int):
        with self.lock_for(item_id):
            yield


class ReservationCoordinator:
    def __init__(
        self,
        session_factory,
        cache: Optional[AvailabilityCache] = None,
        progression: Optional[ProgressionEngine] = None,
        publisher: Optional[EventPublisher] = None,
        clock: Callable = utcnow,
        locks: Optional[ItemLockRegistry] = None,
    ):
        self.session_factory = session_factory
        self.cache = cache
        self.publisher = publisher or EventPublisher()
        self.clock = clock
        self.progression = progression or ProgressionEngine(
            session_factory, self.publisher, clock
        )
        self.locks = locks or ItemLockRegistry()

    # ----- reserve -----

    def reserve(
        self, user_id: int, item_id: int, duration_days: int = DEFAULT_LOAN_DAYS
    ) -> ReservationReceipt:
        if (
            isinstance(duration_days, bool)
            or not isinstance(duration_days, int)
            or not MIN_LOAN_DAYS <= duration_days <= MAX_LOAN_DAYS
        ):
            raise InvalidInputError(
                f"duration_days must be between {MIN_LOAN_DAYS} and {MAX_LOAN_DAYS}",
                {"duration_days": duration_days},
            )

        context = {"user_id": user_id, "item_id": item_id}
        with self.locks.hold(item_id):
            now = self.clock()
            with atomic(self.session_factory, "reserve", **context) as db:
                ledger = LedgerRepository(db)
                item = ledger.get_item(item_id)
                if not ledger.is_available(item_id):
                    raise ConflictError("item unavailable", context)

                if not ledger.mark_unavailable(item_id):
                    raise ConflictError("item unavailable", context)

                snapshot = self._load_snapshot(db, ledger, user_id)
                decision = can_reserve(snapshot, item, now)
                if not decision.allowed:
                    logger.info(
                        f"Reservation denied: {decision.reason}",
                        extra={"context": {**context, "reason": decision.reason}},
                    )
                    raise DeniedError(decision.reason, context)

                try:
                    reservation = ledger.add_reservation(
                        Reservation(
                            id=None,
                            item_id=item_id,
                            user_id=user_id,
                            borrowed_at=now,
                            due_at=now + timedelta(days=duration_days),
                            handover_token=new_handover_token(),
                        )
                    )
                except IntegrityError as e:
                    raise ConflictError("item unavailable", context) from e

                AuditRepository(db).record(
                    "reservation_created",
                    user_id=user_id,
                    target_type="borrow_record",
                    target_id=reservation.id,
                    details={"item_id": item_id, "duration_days": duration_days},
                )

        self._invalidate(item_id)
        logger.info(
            "Reservation created",
            extra={"context": {**context, "reservation_id": reservation.id}},
        )
        self.publisher.publish(
            ReservationCreated(reservation.id, user_id, item_id, reservation.due_at)
        )
        return ReservationReceipt(
            reservation_id=reservation.id,
            item_id=item_id,
            user_id=user_id,
            borrowed_at=reservation.borrowed_at,
            due_at=reservation.due_at,
            handover_token=reservation.handover_token,
        )

    def _load_snapshot(
        self, db, ledger: LedgerRepository, user_id: int
    ) -> UserSnapshot:
        users = UserRepository(db)
        users.lock_for_update(user_id)
        level, trust, points = users.get_progress(user_id)
        return UserSnapshot(
            user_id=user_id,
            level=level,
            trust_score=trust,
            reward_points=points,
            subscription=SubscriptionRepository(db).get_terms(user_id),
            active_count=ledger.active_reservation_count(user_id),
        )

    # ----- handover -----

    def confirm_handover(self, token: str) -> HandoverConfirmation:
        """Single use: the second confirmation of a token is denied."""
        token = (token or "").strip().upper()
        now = self.clock()
        with atomic(self.session_factory, "confirm_handover") as db:
            ledger = LedgerRepository(db)
            reservation = ledger.get_reservation_by_token(token)
            context = {"reservation_id": reservation.id, "item_id": reservation.item_id}
            if reservation.effective_status(now) != ReservationStatus.ACTIVE:
                raise DeniedError("reservation not active", context)
            if not ledger.record_handover(reservation.id, now):
                raise DeniedError("handover already confirmed", context)
            AuditRepository(db).record(
                "handover_confirmed",
                user_id=reservation.user_id,
                target_type="borrow_record",
                target_id=reservation.id,
            )

        self.publisher.publish(
            HandoverConfirmed(
                reservation.id, reservation.user_id, reservation.item_id, now
            )
        )
        return HandoverConfirmation(
            reservation_id=reservation.id,
            item_id=reservation.item_id,
            user_id=reservation.user_id,
            handed_over_at=now,
        )

    # ----- return -----

    def return_item(
        self,
        reservation_id: int,
        condition=ReturnCondition.GOOD,
        condition_notes: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> ReturnReceipt:
        """Close a reservation and apply progression in the same transaction.

        ``user_id``, when given, must be the holder of the reservation.
        """
        condition = parse_condition(condition)
        now = self.clock()
        with atomic(
            self.session_factory, "return_item", reservation_id=reservation_id
        ) as db:
            ledger = LedgerRepository(db)
            reservation = ledger.get_reservation(reservation_id)
            context = {"reservation_id": reservation_id, "item_id": reservation.item_id}
            if user_id is not None and reservation.user_id != user_id:
                raise DeniedError("not the reservation holder", context)
            if reservation.status == ReservationStatus.RETURNED:
                raise DeniedError("already returned", context)

            ledger.close_reservation(
                reservation_id, now, condition.value, condition_notes
            )
            ledger.mark_available(reservation.item_id)

            returned = ItemReturned(
                reservation_id=reservation_id,
                user_id=reservation.user_id,
                item_id=reservation.item_id,
                borrowed_at=reservation.borrowed_at,
                due_at=reservation.due_at,
                returned_at=now,
                condition=condition,
            )
            outcome, progression_events = self.progression.apply_return(db, returned)
            AuditRepository(db).record(
                "item_returned",
                user_id=reservation.user_id,
                target_type="borrow_record",
                target_id=reservation_id,
                details={
                    "item_id": reservation.item_id,
                    "condition": condition.value,
                    "was_late": returned.was_late,
                },
            )

        self._invalidate(reservation.item_id)
        logger.info(
            "Item returned",
            extra={"context": {**context, "timeliness": outcome.timeliness}},
        )
        self.publisher.publish_all([returned, *progression_events])
        return ReturnReceipt(
            reservation_id=reservation_id,
            item_id=reservation.item_id,
            user_id=reservation.user_id,
            returned_at=now,
            was_late=returned.was_late,
            condition=condition,
            progression=outcome,
        )

    def force_return(
        self, reservation_id: int, reason: str, actor_id: Optional[int] = None
    ) -> ReturnReceipt:
        """Admin override: close the reservation without touching progression."""
        reason = (reason or "").strip()
        if not reason:
            raise InvalidInputError("A reason is required for a forced return")

        now = self.clock()
        with atomic(
            self.session_factory, "force_return", reservation_id=reservation_id
        ) as db:
            ledger = LedgerRepository(db)
            reservation = ledger.get_reservation(reservation_id)
            if reservation.status == ReservationStatus.RETURNED:
                raise DeniedError(
                    "already returned", {"reservation_id": reservation_id}
                )

            ledger.close_reservation(
                reservation_id, now, None, f"{ADMIN_OVERRIDE_PREFIX} {reason}"
            )
            ledger.mark_available(reservation.item_id)
            AuditRepository(db).record(
                "admin_force_return",
                user_id=actor_id,
                target_type="borrow_record",
                target_id=reservation_id,
                details={
                    "reason": reason,
                    "borrower_id": reservation.user_id,
                    "item_id": reservation.item_id,
                },
            )

        self._invalidate(reservation.item_id)
        logger.warning(
            "Reservation force-returned by admin",
            extra={
                "context": {
                    "reservation_id": reservation_id,
                    "actor_id": actor_id,
                    "reason": reason,
                }
            },
        )
        returned = ItemReturned(
            reservation_id=reservation_id,
            user_id=reservation.user_id,
            item_id=reservation.item_id,
            borrowed_at=reservation.borrowed_at,
            due_at=reservation.due_at,
            returned_at=now,
            forced=True,
        )
        self.publisher.publish(returned)
        return ReturnReceipt(
            reservation_id=reservation_id,
            item_id=reservation.item_id,
            user_id=reservation.user_id,
            returned_at=now,
            was_late=returned.was_late,
            condition=ReturnCondition.GOOD,
        )

    # ----- overdue -----

    def sweep_overdue(self) -> int:
        """Move active reservations past due to overdue. Safe to run repeatedly."""
        started = time.perf_counter()
        now = self.clock()
        with atomic(self.session_factory, "sweep_overdue") as db:
            moved = LedgerRepository(db).mark_overdue(now)
            if moved:
                AuditRepository(db).record(
                    "overdue_sweep",
                    target_type="borrow_record",
                    details={"reservation_ids": [r.id for r in moved]},
                )

        self.publisher.publish_all(
            ReservationOverdue(r.id, r.user_id, r.item_id, r.due_at) for r in moved
        )
        log_performance(
            "sweep_overdue",
            (time.perf_counter() - started) * 1000,
            transitioned=len(moved),
        )
        return len(moved)

    # ----- reads -----

    def is_available(self, item_id: int) -> bool:
        if self.cache is not None:
            return self.cache.get(item_id)
        with atomic(self.session_factory, "availability_lookup", item_id=item_id) as db:
            return LedgerRepository(db).is_available(item_id)

    def availability_for(self, item_ids: List[int]) -> Dict[int, bool]:
        """Batch form of ``is_available``; unknown ids are left out."""
        if self.cache is not None:
            return self.cache.get_many(item_ids)
        with atomic(
            self.session_factory, "availability_batch_lookup", count=len(item_ids)
        ) as db:
            return LedgerRepository(db).availability_for(list(item_ids))

    def get_reservation(self, reservation_id: int) -> Reservation:
        with atomic(self.session_factory, "get_reservation") as db:
            return LedgerRepository(db).get_reservation(reservation_id)

    def list_user_reservations(self, user_id: int) -> List[Reservation]:
        with atomic(
            self.session_factory, "list_user_reservations", user_id=user_id
        ) as db:
            return LedgerRepository(db).list_user_reservations(user_id)

    def list_overdue(self) -> List[Reservation]:
        with atomic(self.session_factory, "list_overdue") as db:
            return LedgerRepository(db).list_overdue(self.clock())

    def _invalidate(self, item_id: int) -> None:
        if self.cache is not None:
            self.cache.invalidate(item_id)
