from sqlalchemy import select

from lending.db.base import Subscription
from lending.domain.entities import Plan, RiskTier, SubscriptionTerms
from lending.domain.interfaces import ISubscriptionRepository


class SubscriptionRepository(ISubscriptionRepository):
    def __init__(self, db_session):
        self.db = db_session

    def get_terms(self, user_id: int) -> SubscriptionTerms:
        db_sub = self.db.execute(
            select(Subscription).where(Subscription.user_id == user_id)
        ).scalar_one_or_none()
        if db_sub is None:
            # No row means the free plan
            return SubscriptionTerms.for_plan(Plan.BASIC)
        return self._to_domain(db_sub)

    def upsert(self, user_id: int, terms: SubscriptionTerms) -> SubscriptionTerms:
        db_sub = self.db.execute(
            select(Subscription).where(Subscription.user_id == user_id)
        ).scalar_one_or_none()
        if db_sub is None:
            db_sub = Subscription(user_id=user_id)
            self.db.add(db_sub)
        db_sub.plan = terms.plan.value
        db_sub.max_items = terms.max_items
        db_sub.max_risk_level = terms.max_risk.value
        db_sub.monthly_fee = terms.monthly_fee
        db_sub.started_at = terms.started_at
        db_sub.expires_at = terms.expires_at
        db_sub.payment_reference = terms.payment_reference
        self.db.flush()
        return self._to_domain(db_sub)

    def _to_domain(self, db_sub: Subscription) -> SubscriptionTerms:
        return SubscriptionTerms(
            plan=Plan(db_sub.plan),
            max_items=db_sub.max_items,
            max_risk=RiskTier(db_sub.max_risk_level),
            expires_at=db_sub.expires_at,
            started_at=db_sub.started_at,
            monthly_fee=db_sub.monthly_fee,
            payment_reference=db_sub.payment_reference,
        )
