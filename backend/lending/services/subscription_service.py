from dataclasses import replace
from datetime import timedelta
from typing import Callable, List, Optional

from lending.core.config import utcnow
from lending.core.exceptions import InvalidInputError
from lending.domain.entities import PLANS, Plan, PlanTerms, SubscriptionTerms
from lending.repositories.audit_repository import AuditRepository
from lending.repositories.subscription_repository import SubscriptionRepository
from lending.repositories.user_repository import UserRepository
from lending.services.transaction import atomic


def parse_plan(value) -> Plan:
    if isinstance(value, Plan):
        return value
    try:
        return Plan(str(value).upper())
    except ValueError:
        raise InvalidInputError(f"Unknown plan: {value}") from None


class SubscriptionService:
    """Membership plan terms. Payment handling happens elsewhere; only an
    opaque payment reference is recorded."""

    def __init__(self, session_factory, clock: Callable = utcnow):
        self.session_factory = session_factory
        self.clock = clock

    def list_plans(self) -> List[PlanTerms]:
        return list(PLANS.values())

    def get_subscription(self, user_id: int) -> SubscriptionTerms:
        with atomic(self.session_factory, "get_subscription", user_id=user_id) as db:
            UserRepository(db).get_progress(user_id)
            return SubscriptionRepository(db).get_terms(user_id)

    def change_plan(
        self,
        user_id: int,
        plan,
        actor_id: Optional[int] = None,
        payment_reference: Optional[str] = None,
    ) -> SubscriptionTerms:
        plan = parse_plan(plan)
        now = self.clock()
        period = PLANS[plan].period_days
        terms = SubscriptionTerms.for_plan(
            plan,
            started_at=now,
            expires_at=now + timedelta(days=period) if period else None,
        )
        if payment_reference:
            terms = replace(terms, payment_reference=payment_reference)

        with atomic(self.session_factory, "change_plan", user_id=user_id) as db:
            UserRepository(db).get_progress(user_id)
            saved = SubscriptionRepository(db).upsert(user_id, terms)
            AuditRepository(db).record(
                "subscription_changed",
                user_id=actor_id or user_id,
                target_type="user",
                target_id=user_id,
                details={
                    "plan": plan.value,
                    "expires_at": (
                        saved.expires_at.isoformat() if saved.expires_at else None
                    ),
                },
            )
        return saved

    def cancel(self, user_id: int, actor_id: Optional[int] = None) -> SubscriptionTerms:
        """Revert to the free plan.

        Held items are kept; new reservations follow BASIC limits.
        """
        return self.change_plan(user_id, Plan.BASIC, actor_id=actor_id)
