"""
Domain entities - pure business types, no framework dependencies.

Repositories map ORM rows into these dataclasses; services and the
eligibility evaluator only ever see these.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import ClassVar, Dict, Optional


class RiskTier(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _RISK_RANK[self]

    def exceeds(self, ceiling: "RiskTier") -> bool:
        return self.rank > ceiling.rank


_RISK_RANK = {RiskTier.LOW: 0, RiskTier.MEDIUM: 1, RiskTier.HIGH: 2}


class ReservationStatus(str, Enum):
    ACTIVE = "active"
    RETURNED = "returned"
    OVERDUE = "overdue"


class ReturnCondition(str, Enum):
    GOOD = "good"
    DAMAGED = "damaged"


class Plan(str, Enum):
    BASIC = "BASIC"
    MAKER = "MAKER"
    INNOVATOR = "INNOVATOR"


@dataclass(frozen=True)
class PlanTerms:
    """Catalog entry for a membership plan."""

    plan: Plan
    name: str
    max_items: int
    max_risk: RiskTier
    monthly_fee: int  # cents
    reward_multiplier: float
    # None means the plan never expires
    period_days: Optional[int] = 30


PLANS: Dict[Plan, PlanTerms] = {
    Plan.BASIC: PlanTerms(Plan.BASIC, "Basic", 1, RiskTier.LOW, 0, 1.0, None),
    Plan.MAKER: PlanTerms(Plan.MAKER, "Maker", 3, RiskTier.MEDIUM, 1500, 1.5, 30),
    Plan.INNOVATOR: PlanTerms(
        Plan.INNOVATOR, "Innovator", 10, RiskTier.HIGH, 5000, 2.0, 30
    ),
}


@dataclass
class Item:
    """Lendable item as seen by the eligibility evaluator and coordinator."""

    id: int
    name: str
    risk_tier: RiskTier = RiskTier.LOW
    min_level: int = 1
    available: bool = True
    description: Optional[str] = None
    category: Optional[str] = None
    replacement_value: int = 0  # cents

    def __post_init__(self):
        self.risk_tier = RiskTier(self.risk_tier)
        if not 1 <= self.min_level <= 5:
            raise ValueError("Minimum level must be between 1 and 5")
        if self.replacement_value < 0:
            raise ValueError("Replacement value cannot be negative")


@dataclass
class Reservation:
    """A borrow record. ``returned`` is terminal."""

    id: Optional[int]
    item_id: int
    user_id: int
    borrowed_at: datetime
    due_at: datetime
    handover_token: str
    status: ReservationStatus = ReservationStatus.ACTIVE
    returned_at: Optional[datetime] = None
    condition_notes: Optional[str] = None
    return_condition: Optional[ReturnCondition] = None
    handed_over_at: Optional[datetime] = None

    def __post_init__(self):
        self.status = ReservationStatus(self.status)
        if self.return_condition is not None:
            self.return_condition = ReturnCondition(self.return_condition)
        if self.due_at <= self.borrowed_at:
            raise ValueError("Due date must be after borrow date")

    def effective_status(self, now: datetime) -> ReservationStatus:
        """Status with lazy overdue detection, independent of the sweep."""
        if self.status == ReservationStatus.ACTIVE and self.due_at < now:
            return ReservationStatus.OVERDUE
        return self.status


@dataclass(frozen=True)
class SubscriptionTerms:
    plan: Plan
    max_items: int
    max_risk: RiskTier
    expires_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    monthly_fee: int = 0
    payment_reference: Optional[str] = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at < now

    @property
    def reward_multiplier(self) -> float:
        return PLANS[self.plan].reward_multiplier

    @classmethod
    def for_plan(
        cls,
        plan: Plan,
        started_at: Optional[datetime] = None,
        expires_at: Optional[datetime] = None,
    ) -> "SubscriptionTerms":
        terms = PLANS[Plan(plan)]
        return cls(
            plan=terms.plan,
            max_items=terms.max_items,
            max_risk=terms.max_risk,
            expires_at=expires_at,
            started_at=started_at,
            monthly_fee=terms.monthly_fee,
        )


@dataclass(frozen=True)
class UserSnapshot:
    """Everything the eligibility evaluator needs about a borrower."""

    user_id: int
    level: int
    trust_score: int
    reward_points: int
    subscription: SubscriptionTerms
    active_count: int


@dataclass(frozen=True)
class EligibilityDecision:
    allowed: bool
    reason: Optional[str] = None

    LIMIT_EXCEEDED: ClassVar[str] = "limit exceeded"
    RISK_NOT_PERMITTED: ClassVar[str] = "risk tier not permitted"
    INSUFFICIENT_LEVEL: ClassVar[str] = "insufficient level"
    SUBSCRIPTION_EXPIRED: ClassVar[str] = "subscription expired"

    @classmethod
    def allow(cls) -> "EligibilityDecision":
        return cls(True)

    @classmethod
    def deny(cls, reason: str) -> "EligibilityDecision":
        return cls(False, reason)


# ------------------- RECEIPTS -------------------


@dataclass(frozen=True)
class ReservationReceipt:
    reservation_id: int
    item_id: int
    user_id: int
    borrowed_at: datetime
    due_at: datetime
    handover_token: str


@dataclass(frozen=True)
class HandoverConfirmation:
    reservation_id: int
    item_id: int
    user_id: int
    handed_over_at: datetime


@dataclass(frozen=True)
class ProgressionOutcome:
    """Result of applying one return to a borrower's progression state."""

    timeliness: str
    trust_delta: int
    trust_score: int
    points_awarded: int
    reward_points: int
    level: int
    leveled_up: bool = False


@dataclass(frozen=True)
class ReturnReceipt:
    reservation_id: int
    item_id: int
    user_id: int
    returned_at: datetime
    was_late: bool
    condition: ReturnCondition
    progression: Optional[ProgressionOutcome] = None


@dataclass(frozen=True)
class ProgressionSummary:
    user_id: int
    level: int
    level_name: str
    reward_points: int
    trust_score: int
    trust_label: str
    plan: Plan
    reward_multiplier: float
    next_level_xp: Optional[int]
    progress_percent: int


@dataclass(frozen=True)
class AuditEntry:
    id: int
    user_id: Optional[int]
    action: str
    target_type: Optional[str]
    target_id: Optional[int]
    details: dict
    created_at: Optional[datetime]


# ------------------- EVENTS -------------------


@dataclass(frozen=True)
class LendingEvent:
    """Base for post-commit notifications. ``name`` is stable for subscribers."""

    name: ClassVar[str] = "lending_event"

    def to_dict(self) -> dict:
        payload = {"event": self.name}
        for key, value in self.__dict__.items():
            if isinstance(value, datetime):
                value = value.isoformat()
            elif isinstance(value, Enum):
                value = value.value
            payload[key] = value
        return payload


@dataclass(frozen=True)
class ReservationCreated(LendingEvent):
    name: ClassVar[str] = "reservation_created"

    reservation_id: int
    user_id: int
    item_id: int
    due_at: datetime


@dataclass(frozen=True)
class HandoverConfirmed(LendingEvent):
    name: ClassVar[str] = "handover_confirmed"

    reservation_id: int
    user_id: int
    item_id: int
    handed_over_at: datetime


@dataclass(frozen=True)
class ItemReturned(LendingEvent):
    name: ClassVar[str] = "item_returned"

    reservation_id: int
    user_id: int
    item_id: int
    borrowed_at: datetime
    due_at: datetime
    returned_at: datetime
    condition: ReturnCondition = ReturnCondition.GOOD
    forced: bool = False

    @property
    def was_late(self) -> bool:
        return self.returned_at > self.due_at


@dataclass(frozen=True)
class ReservationOverdue(LendingEvent):
    name: ClassVar[str] = "reservation_overdue"

    reservation_id: int
    user_id: int
    item_id: int
    due_at: datetime


@dataclass(frozen=True)
class TrustChanged(LendingEvent):
    name: ClassVar[str] = "trust_changed"

    user_id: int
    old_score: int
    new_score: int
    reason: str


@dataclass(frozen=True)
class PointsAwarded(LendingEvent):
    name: ClassVar[str] = "points_awarded"

    user_id: int
    points: int
    total: int
    reason: str


@dataclass(frozen=True)
class LevelUp(LendingEvent):
    name: ClassVar[str] = "level_up"

    user_id: int
    old_level: int
    new_level: int
    level_name: str = field(default="")
