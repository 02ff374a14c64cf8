"""
Progression engine.

The only writer of trust score, reward points and level. Return events are
applied inside the reservation coordinator's transaction through
``apply_return``; every other operation runs its own short transaction.
Events are published only after commit.
"""

import logging
from typing import Callable, List, Optional, Tuple

from lending.core.config import utcnow
from lending.core.exceptions import InvalidInputError
from lending.domain.entities import (
    ItemReturned,
    LendingEvent,
    LevelUp,
    PointsAwarded,
    ProgressionOutcome,
    ProgressionSummary,
    TrustChanged,
)
from lending.repositories.audit_repository import AuditRepository
from lending.repositories.subscription_repository import SubscriptionRepository
from lending.repositories.user_repository import UserRepository
from lending.services import progression_rules as rules
from lending.services.events import EventPublisher
from lending.services.transaction import atomic

logger = logging.getLogger(__name__)


class ProgressionEngine:
    def __init__(
        self,
        session_factory,
        publisher: Optional[EventPublisher] = None,
        clock: Callable = utcnow,
    ):
        self.session_factory = session_factory
        self.publisher = publisher or EventPublisher()
        self.clock = clock

    # ----- in-transaction building blocks -----

    def _change_trust(
        self, users: UserRepository, user_id: int, delta: int, reason: str
    ) -> Tuple[int, List[LendingEvent]]:
        old, new = users.apply_trust_delta(user_id, delta)
        events: List[LendingEvent] = []
        if old != new:
            events.append(TrustChanged(user_id, old, new, reason))
        return new, events

    def _award(
        self, users: UserRepository, user_id: int, points: int, reason: str
    ) -> Tuple[int, int, bool, List[LendingEvent]]:
        """Add points and recompute level upwards.

        Returns ``(total, level, leveled_up, events)``.
        """
        level, _, _ = users.get_progress(user_id)
        events: List[LendingEvent] = []
        total = users.add_points(user_id, points)
        if points:
            events.append(PointsAwarded(user_id, points, total, reason))

        derived = rules.level_for_points(total)
        if derived > level:
            users.set_level(user_id, derived)
            events.append(LevelUp(user_id, level, derived, rules.LEVEL_NAMES[derived]))
            logger.info(
                "User leveled up",
                extra={"context": {"user_id": user_id, "from": level, "to": derived}},
            )
            return total, derived, True, events
        return total, level, False, events

    def apply_return(
        self, db, event: ItemReturned
    ) -> Tuple[ProgressionOutcome, List[LendingEvent]]:
        """Apply one return inside the caller's open transaction."""
        users = UserRepository(db)
        terms = SubscriptionRepository(db).get_terms(event.user_id)

        timeliness = rules.classify_return(
            event.borrowed_at, event.due_at, event.returned_at
        )
        trust_delta = rules.return_trust_delta(timeliness, event.condition)
        points = rules.return_points(
            timeliness, event.condition, terms.reward_multiplier
        )

        trust, events = self._change_trust(
            users, event.user_id, trust_delta, f"return_{timeliness}"
        )
        total, level, leveled_up, award_events = self._award(
            users,
            event.user_id,
            points,
            f"Returned item {timeliness.replace('_', ' ')}",
        )
        events.extend(award_events)

        AuditRepository(db).record(
            "progression_return_applied",
            user_id=event.user_id,
            target_type="borrow_record",
            target_id=event.reservation_id,
            details={
                "timeliness": timeliness,
                "condition": event.condition.value,
                "trust_delta": trust_delta,
                "points": points,
            },
        )

        outcome = ProgressionOutcome(
            timeliness=timeliness,
            trust_delta=trust_delta,
            trust_score=trust,
            points_awarded=points,
            reward_points=total,
            level=level,
            leveled_up=leveled_up,
        )
        return outcome, events

    # ----- standalone operations -----

    def adjust_trust(
        self,
        user_id: int,
        delta: Optional[int] = None,
        change: Optional[str] = None,
        actor_id: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> int:
        """Apply a raw delta or a named change such as ``ITEM_LOST``.

        Returns the new score.
        """
        if change is not None:
            if change not in rules.TRUST_CHANGES:
                raise InvalidInputError(f"Unknown trust change: {change}")
            delta = rules.TRUST_CHANGES[change]
        if delta is None or isinstance(delta, bool) or not isinstance(delta, int):
            raise InvalidInputError(
                "Trust adjustment requires an integer delta or a known change"
            )

        with atomic(self.session_factory, "adjust_trust", user_id=user_id) as db:
            new_score, events = self._change_trust(
                UserRepository(db), user_id, delta, reason or change or "adjustment"
            )
            AuditRepository(db).record(
                "trust_adjusted",
                user_id=actor_id,
                target_type="user",
                target_id=user_id,
                details={
                    "delta": delta,
                    "change": change,
                    "reason": reason,
                    "new_score": new_score,
                },
            )
        self.publisher.publish_all(events)
        return new_score

    def award_points(self, user_id: int, action: str) -> int:
        """Award the points for a named action, scaled by the plan multiplier."""
        if action not in rules.POINT_REWARDS:
            raise InvalidInputError(f"Unknown reward action: {action}")

        with atomic(self.session_factory, "award_points", user_id=user_id) as db:
            users = UserRepository(db)
            users.get_progress(user_id)
            multiplier = SubscriptionRepository(db).get_terms(user_id).reward_multiplier
            points = rules.scaled_points(rules.POINT_REWARDS[action], multiplier)
            total, _, _, events = self._award(users, user_id, points, action)
            AuditRepository(db).record(
                "points_awarded",
                user_id=user_id,
                target_type="user",
                target_id=user_id,
                details={"action": action, "points": points, "multiplier": multiplier},
            )
        self.publisher.publish_all(events)
        return total

    def adjust_points(
        self,
        user_id: int,
        delta: int,
        actor_id: Optional[int] = None,
        reason: str = "",
    ) -> int:
        """Admin correction. May subtract; the balance never drops below zero."""
        if isinstance(delta, bool) or not isinstance(delta, int) or delta == 0:
            raise InvalidInputError("Points adjustment must be a non-zero integer")

        with atomic(self.session_factory, "adjust_points", user_id=user_id) as db:
            users = UserRepository(db)
            if delta > 0:
                total, _, _, events = self._award(
                    users, user_id, delta, reason or "Admin adjustment"
                )
            else:
                users.get_progress(user_id)
                total = users.add_points(user_id, delta)
                events = []
            AuditRepository(db).record(
                "admin_adjust_points",
                user_id=actor_id,
                target_type="user",
                target_id=user_id,
                details={"delta": delta, "reason": reason, "total": total},
            )
        self.publisher.publish_all(events)
        return total

    def record_community_contribution(self, user_id: int) -> ProgressionSummary:
        """Approved community post: trust credit plus post points."""
        with atomic(
            self.session_factory, "community_contribution", user_id=user_id
        ) as db:
            users = UserRepository(db)
            _, events = self._change_trust(
                users,
                user_id,
                rules.TRUST_CHANGES["COMMUNITY_CONTRIBUTION"],
                "community_contribution",
            )
            multiplier = SubscriptionRepository(db).get_terms(user_id).reward_multiplier
            reward = rules.POINT_REWARDS["COMMUNITY_POST"]
            points = rules.scaled_points(reward, multiplier)
            _, _, _, award_events = self._award(
                users, user_id, points, "Community contribution"
            )
            events.extend(award_events)
            AuditRepository(db).record(
                "community_contribution",
                user_id=user_id,
                target_type="user",
                target_id=user_id,
                details={"points": points},
            )
        self.publisher.publish_all(events)
        return self.get_progression(user_id)

    def set_level(
        self, user_id: int, level: int, actor_id: Optional[int] = None
    ) -> int:
        """Admin override. Unlike automatic recomputation this may lower the level."""
        valid = isinstance(level, int) and not isinstance(level, bool)
        if not valid or not 1 <= level <= rules.MAX_LEVEL:
            raise InvalidInputError("Level must be between 1 and 5")

        events: List[LendingEvent] = []
        with atomic(self.session_factory, "set_level", user_id=user_id) as db:
            old_level = UserRepository(db).set_level(user_id, level)
            AuditRepository(db).record(
                "admin_set_level",
                user_id=actor_id,
                target_type="user",
                target_id=user_id,
                details={"old_level": old_level, "new_level": level},
            )
            if level > old_level:
                events.append(
                    LevelUp(user_id, old_level, level, rules.LEVEL_NAMES[level])
                )
        self.publisher.publish_all(events)
        return level

    def get_progression(self, user_id: int) -> ProgressionSummary:
        with atomic(self.session_factory, "get_progression", user_id=user_id) as db:
            level, trust, points = UserRepository(db).get_progress(user_id)
            terms = SubscriptionRepository(db).get_terms(user_id)

        next_xp, percent = rules.next_level_progress(points, level)
        return ProgressionSummary(
            user_id=user_id,
            level=level,
            level_name=rules.LEVEL_NAMES[level],
            reward_points=points,
            trust_score=trust,
            trust_label=rules.trust_label(trust),
            plan=terms.plan,
            reward_multiplier=terms.reward_multiplier,
            next_level_xp=next_xp,
            progress_percent=percent,
        )

    def leaderboard(self, limit: int = 10) -> List[dict]:
        with atomic(self.session_factory, "leaderboard") as db:
            entries = UserRepository(db).top_by_points(limit)
        for rank, entry in enumerate(entries, start=1):
            entry["rank"] = rank
            entry["level_name"] = rules.LEVEL_NAMES[entry["level"]]
        return entries
