"""
Data Transfer Objects (DTOs) for the HTTP boundary.

Request DTOs validate shape and ranges before anything reaches the
coordinator; ``from_json`` turns validation failures into InvalidInputError.
Response DTOs flatten domain objects into JSON-ready dicts.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, fields
from datetime import datetime
from typing import Any, Dict, List, Optional

from lending.core.config import DEFAULT_LOAN_DAYS, MAX_LOAN_DAYS, MIN_LOAN_DAYS
from lending.core.exceptions import InvalidInputError
from lending.domain.entities import Plan, ReturnCondition

HANDOVER_TOKEN_PATTERN = re.compile(r"^LOT-[0-9A-F]{12}$")
MAX_NOTES_LENGTH = 1000


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class RequestDTO(ABC):
    """Build from a JSON body and validate in one step."""

    @classmethod
    def from_json(cls, payload: Optional[Dict[str, Any]]):
        if payload is None:
            payload = {}
        if not isinstance(payload, dict):
            raise InvalidInputError("Request body must be a JSON object")
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(payload) - known)
        if unknown:
            raise InvalidInputError(f"Unknown fields: {', '.join(unknown)}")
        try:
            dto = cls(**payload)
            dto.validate()
        except (TypeError, ValueError) as e:
            raise InvalidInputError(str(e)) from None
        return dto

    @abstractmethod
    def validate(self) -> None:
        """Raise ValueError or TypeError on bad input; may normalize fields."""


@dataclass
class ReserveRequest(RequestDTO):
    """DTO for reservation requests."""

    item_id: int
    duration_days: int = DEFAULT_LOAN_DAYS

    def validate(self) -> None:
        if not _is_int(self.item_id) or self.item_id <= 0:
            raise ValueError("item_id must be a positive integer")
        if not _is_int(self.duration_days) or not (
            MIN_LOAN_DAYS <= self.duration_days <= MAX_LOAN_DAYS
        ):
            raise ValueError(
                f"duration_days must be between {MIN_LOAN_DAYS} and {MAX_LOAN_DAYS}"
            )


@dataclass
class HandoverRequest(RequestDTO):
    handover_token: str

    def validate(self) -> None:
        if not isinstance(self.handover_token, str):
            raise ValueError("handover_token must be a string")
        self.handover_token = self.handover_token.strip().upper()
        if not HANDOVER_TOKEN_PATTERN.match(self.handover_token):
            raise ValueError("handover_token is malformed")


@dataclass
class ReturnRequest(RequestDTO):
    condition: str = ReturnCondition.GOOD.value
    condition_notes: Optional[str] = None

    def validate(self) -> None:
        if self.condition not in {c.value for c in ReturnCondition}:
            raise ValueError("condition must be 'good' or 'damaged'")
        if self.condition_notes is not None:
            if not isinstance(self.condition_notes, str):
                raise ValueError("condition_notes must be a string")
            if len(self.condition_notes) > MAX_NOTES_LENGTH:
                raise ValueError(
                    f"condition_notes exceeds {MAX_NOTES_LENGTH} characters"
                )


@dataclass
class ForceReturnRequest(RequestDTO):
    reason: str

    def validate(self) -> None:
        if not isinstance(self.reason, str) or not self.reason.strip():
            raise ValueError("reason is required")
        if len(self.reason) > MAX_NOTES_LENGTH:
            raise ValueError(f"reason exceeds {MAX_NOTES_LENGTH} characters")


@dataclass
class TrustAdjustRequest(RequestDTO):
    user_id: int
    delta: Optional[int] = None
    change: Optional[str] = None
    reason: Optional[str] = None

    def validate(self) -> None:
        if not _is_int(self.user_id) or self.user_id <= 0:
            raise ValueError("user_id must be a positive integer")
        if (self.delta is None) == (self.change is None):
            raise ValueError("Provide exactly one of delta or change")
        if self.delta is not None and not _is_int(self.delta):
            raise ValueError("delta must be an integer")


@dataclass
class PointsAdjustRequest(RequestDTO):
    """Either a named reward action or a raw correction."""

    user_id: int
    delta: Optional[int] = None
    action: Optional[str] = None
    reason: str = ""

    def validate(self) -> None:
        if not _is_int(self.user_id) or self.user_id <= 0:
            raise ValueError("user_id must be a positive integer")
        if (self.delta is None) == (self.action is None):
            raise ValueError("Provide exactly one of delta or action")
        if self.delta is not None and (not _is_int(self.delta) or self.delta == 0):
            raise ValueError("delta must be a non-zero integer")


@dataclass
class LevelSetRequest(RequestDTO):
    user_id: int
    level: int

    def validate(self) -> None:
        if not _is_int(self.user_id) or self.user_id <= 0:
            raise ValueError("user_id must be a positive integer")
        if not _is_int(self.level) or not 1 <= self.level <= 5:
            raise ValueError("level must be between 1 and 5")


@dataclass
class SubscriptionChangeRequest(RequestDTO):
    plan: str
    payment_reference: Optional[str] = None

    def validate(self) -> None:
        plans = {p.value for p in Plan}
        if not isinstance(self.plan, str) or self.plan.upper() not in plans:
            raise ValueError("plan must be one of BASIC, MAKER, INNOVATOR")
        self.plan = self.plan.upper()


# ------------------- RESPONSES -------------------


@dataclass
class ReservationResponse:
    id: int
    item_id: int
    user_id: int
    status: str
    borrowed_at: Optional[str]
    due_at: Optional[str]
    returned_at: Optional[str]
    handed_over_at: Optional[str]
    condition: Optional[str]
    condition_notes: Optional[str]

    @classmethod
    def from_domain(cls, reservation, now: datetime) -> "ReservationResponse":
        """Status is reported with lazy overdue detection."""
        return cls(
            id=reservation.id,
            item_id=reservation.item_id,
            user_id=reservation.user_id,
            status=reservation.effective_status(now).value,
            borrowed_at=_iso(reservation.borrowed_at),
            due_at=_iso(reservation.due_at),
            returned_at=_iso(reservation.returned_at),
            handed_over_at=_iso(reservation.handed_over_at),
            condition=(
                reservation.return_condition.value
                if reservation.return_condition
                else None
            ),
            condition_notes=reservation.condition_notes,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def receipt_to_dict(receipt) -> Dict[str, Any]:
    return {
        "reservation_id": receipt.reservation_id,
        "item_id": receipt.item_id,
        "due_at": _iso(receipt.due_at),
        "handover_token": receipt.handover_token,
    }


def handover_to_dict(confirmation) -> Dict[str, Any]:
    return {
        "reservation_id": confirmation.reservation_id,
        "item_id": confirmation.item_id,
        "handed_over_at": _iso(confirmation.handed_over_at),
    }


def return_receipt_to_dict(receipt) -> Dict[str, Any]:
    data = {
        "reservation_id": receipt.reservation_id,
        "item_id": receipt.item_id,
        "returned_at": _iso(receipt.returned_at),
        "was_late": receipt.was_late,
        "condition": receipt.condition.value,
    }
    if receipt.progression is not None:
        data["progression"] = asdict(receipt.progression)
    return data


def progression_to_dict(summary) -> Dict[str, Any]:
    data = asdict(summary)
    data["plan"] = summary.plan.value
    return data


def plan_to_dict(terms) -> Dict[str, Any]:
    return {
        "plan": terms.plan.value,
        "name": terms.name,
        "max_items": terms.max_items,
        "max_risk_level": terms.max_risk.value,
        "monthly_fee": terms.monthly_fee,
        "reward_multiplier": terms.reward_multiplier,
        "period_days": terms.period_days,
    }


def subscription_to_dict(terms, now: datetime) -> Dict[str, Any]:
    return {
        "plan": terms.plan.value,
        "max_items": terms.max_items,
        "max_risk_level": terms.max_risk.value,
        "monthly_fee": terms.monthly_fee,
        "started_at": _iso(terms.started_at),
        "expires_at": _iso(terms.expires_at),
        "expired": terms.is_expired(now),
    }


def audit_entries_to_list(entries) -> List[Dict[str, Any]]:
    return [
        {
            "id": entry.id,
            "user_id": entry.user_id,
            "action": entry.action,
            "target_type": entry.target_type,
            "target_id": entry.target_id,
            "details": entry.details,
            "created_at": _iso(entry.created_at),
        }
        for entry in entries
    ]
