from datetime import datetime, timedelta, timezone

import pytest

from lending.domain.entities import (
    EligibilityDecision,
    Item,
    Plan,
    RiskTier,
    SubscriptionTerms,
    UserSnapshot,
)
from lending.services.eligibility import can_reserve

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def snapshot(plan=Plan.BASIC, level=1, active_count=0, expires_at=None):
    return UserSnapshot(
        user_id=1,
        level=level,
        trust_score=100,
        reward_points=0,
        subscription=SubscriptionTerms.for_plan(plan, expires_at=expires_at),
        active_count=active_count,
    )


def item(risk=RiskTier.LOW, min_level=1):
    return Item(id=10, name="Soldering Station", risk_tier=risk, min_level=min_level)


@pytest.mark.unit
def test_basic_member_may_borrow_low_risk_item():
    decision = can_reserve(snapshot(), item(), NOW)

    assert decision.allowed is True
    assert decision.reason is None


@pytest.mark.unit
def test_active_count_at_plan_limit_is_denied():
    decision = can_reserve(snapshot(Plan.MAKER, active_count=3), item(), NOW)

    assert decision == EligibilityDecision.deny("limit exceeded")


@pytest.mark.unit
def test_one_below_limit_is_allowed():
    assert can_reserve(snapshot(Plan.MAKER, active_count=2), item(), NOW).allowed


@pytest.mark.unit
@pytest.mark.parametrize(
    "plan,risk,allowed",
    [
        (Plan.BASIC, RiskTier.LOW, True),
        (Plan.BASIC, RiskTier.MEDIUM, False),
        (Plan.MAKER, RiskTier.MEDIUM, True),
        (Plan.MAKER, RiskTier.HIGH, False),
        (Plan.INNOVATOR, RiskTier.HIGH, True),
    ],
)
def test_risk_ceiling_per_plan(plan, risk, allowed):
    decision = can_reserve(snapshot(plan), item(risk=risk), NOW)

    assert decision.allowed is allowed
    if not allowed:
        assert decision.reason == "risk tier not permitted"


@pytest.mark.unit
def test_level_below_item_minimum_is_denied():
    decision = can_reserve(snapshot(level=2), item(min_level=3), NOW)

    assert decision.reason == "insufficient level"


@pytest.mark.unit
def test_expired_subscription_is_denied():
    expired = NOW - timedelta(seconds=1)

    decision = can_reserve(snapshot(Plan.MAKER, expires_at=expired), item(), NOW)

    assert decision.reason == "subscription expired"


@pytest.mark.unit
def test_subscription_expiring_exactly_now_is_still_valid():
    assert can_reserve(snapshot(Plan.MAKER, expires_at=NOW), item(), NOW).allowed


@pytest.mark.unit
@pytest.mark.parametrize(
    "kwargs,item_kwargs,expected",
    [
        # limit wins over every other failure
        (
            {"active_count": 1, "level": 1, "expires_at": NOW - timedelta(days=1)},
            {"risk": RiskTier.HIGH, "min_level": 5},
            "limit exceeded",
        ),
        # risk before level and expiry
        (
            {"level": 1, "expires_at": NOW - timedelta(days=1)},
            {"risk": RiskTier.MEDIUM, "min_level": 5},
            "risk tier not permitted",
        ),
        # level before expiry
        (
            {"level": 1, "expires_at": NOW - timedelta(days=1)},
            {"min_level": 2},
            "insufficient level",
        ),
    ],
)
def test_first_failing_rule_decides_the_reason(kwargs, item_kwargs, expected):
    decision = can_reserve(snapshot(Plan.BASIC, **kwargs), item(**item_kwargs), NOW)

    assert decision.allowed is False
    assert decision.reason == expected
