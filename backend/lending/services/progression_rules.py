"""
Progression rules: constants and pure calculations.

Trust score is a bounded reputation value in [0, 200]. Reward points only
grow through earned actions (admins may adjust them). Level is derived
from points through fixed thresholds and never drops automatically.
"""

import math
from datetime import datetime, timedelta
from typing import Optional, Tuple

from lending.domain.entities import ReturnCondition

TRUST_MIN = 0
TRUST_MAX = 200
TRUST_DEFAULT = 100

LEVEL_THRESHOLDS = {1: 0, 2: 100, 3: 300, 4: 700, 5: 1500}
LEVEL_NAMES = {1: "Starter", 2: "Explorer", 3: "Builder", 4: "Maker", 5: "Innovator"}
MAX_LEVEL = max(LEVEL_THRESHOLDS)

TRUST_CHANGES = {
    "RETURN_ON_TIME": 2,
    "RETURN_EARLY": 3,
    "RETURN_LATE": -5,
    "RETURN_VERY_LATE": -15,
    "ITEM_DAMAGED": -10,
    "ITEM_LOST": -50,
    "COMMUNITY_CONTRIBUTION": 5,
    "ADMIN_OVERRIDE_POSITIVE": 20,
    "ADMIN_OVERRIDE_NEGATIVE": -20,
}

POINT_REWARDS = {
    "BORROW_COMPLETE": 10,
    "RETURN_ON_TIME": 15,
    "RETURN_EARLY": 20,
    "COMMUNITY_POST": 25,
    "POST_APPROVED": 50,
    "FIRST_BORROW": 50,
}

# Lower bounds, checked from the top
TRUST_LABELS = (
    (160, "EXCELLENT"),
    (120, "HIGH"),
    (80, "NORMAL"),
    (50, "LOW"),
    (0, "UNTRUSTED"),
)

EARLY = "early"
ON_TIME = "on_time"
LATE = "late"
VERY_LATE = "very_late"

VERY_LATE_AFTER = timedelta(days=3)
# Returned before this share of the loan period elapsed counts as early
EARLY_RETURN_FRACTION = 0.5


def clamp_trust(score: int) -> int:
    return max(TRUST_MIN, min(TRUST_MAX, score))


def trust_label(score: int) -> str:
    for lower_bound, label in TRUST_LABELS:
        if score >= lower_bound:
            return label
    return "UNTRUSTED"


def level_for_points(points: int) -> int:
    level = 1
    for candidate, threshold in sorted(LEVEL_THRESHOLDS.items()):
        if points >= threshold:
            level = candidate
    return level


def next_level_progress(points: int, level: int) -> Tuple[Optional[int], int]:
    """Return (points needed for the next level, percent towards it)."""
    if level >= MAX_LEVEL:
        return None, 100
    current = LEVEL_THRESHOLDS[level]
    target = LEVEL_THRESHOLDS[level + 1]
    percent = int((points - current) * 100 / (target - current))
    return target, max(0, min(100, percent))


def scaled_points(base: int, multiplier: float) -> int:
    return math.floor(base * multiplier)


def classify_return(
    borrowed_at: datetime, due_at: datetime, returned_at: datetime
) -> str:
    if returned_at > due_at + VERY_LATE_AFTER:
        return VERY_LATE
    if returned_at > due_at:
        return LATE
    early_cutoff = borrowed_at + (due_at - borrowed_at) * EARLY_RETURN_FRACTION
    if returned_at < early_cutoff:
        return EARLY
    return ON_TIME


def return_trust_delta(timeliness: str, condition: ReturnCondition) -> int:
    """Trust change for one return.

    Damage replaces any early/on-time credit but stacks with late penalties.
    """
    late_penalty = {
        LATE: TRUST_CHANGES["RETURN_LATE"],
        VERY_LATE: TRUST_CHANGES["RETURN_VERY_LATE"],
    }.get(timeliness, 0)

    if condition == ReturnCondition.DAMAGED:
        return TRUST_CHANGES["ITEM_DAMAGED"] + late_penalty
    if late_penalty:
        return late_penalty
    if timeliness == EARLY:
        return TRUST_CHANGES["RETURN_EARLY"]
    return TRUST_CHANGES["RETURN_ON_TIME"]


def return_points(
    timeliness: str, condition: ReturnCondition, multiplier: float
) -> int:
    if condition == ReturnCondition.DAMAGED:
        return 0
    base = {
        EARLY: POINT_REWARDS["RETURN_EARLY"],
        ON_TIME: POINT_REWARDS["RETURN_ON_TIME"],
    }.get(timeliness, 0)
    return scaled_points(base, multiplier)
