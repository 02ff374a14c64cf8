"""
Eligibility evaluator.

A pure function over a borrower snapshot and an item. Checks run in a fixed
order and the first failing rule decides the reason.
"""

from datetime import datetime

from lending.domain.entities import EligibilityDecision, Item, UserSnapshot


def can_reserve(
    snapshot: UserSnapshot, item: Item, now: datetime
) -> EligibilityDecision:
    terms = snapshot.subscription

    if snapshot.active_count >= terms.max_items:
        return EligibilityDecision.deny(EligibilityDecision.LIMIT_EXCEEDED)

    if item.risk_tier.exceeds(terms.max_risk):
        return EligibilityDecision.deny(EligibilityDecision.RISK_NOT_PERMITTED)

    if snapshot.level < item.min_level:
        return EligibilityDecision.deny(EligibilityDecision.INSUFFICIENT_LEVEL)

    if terms.is_expired(now):
        return EligibilityDecision.deny(EligibilityDecision.SUBSCRIPTION_EXPIRED)

    return EligibilityDecision.allow()
