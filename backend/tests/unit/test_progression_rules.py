from datetime import datetime, timedelta, timezone

import pytest

from lending.domain.entities import ReturnCondition
from lending.services import progression_rules as rules

BORROWED = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)
DUE = BORROWED + timedelta(days=8)


@pytest.mark.unit
@pytest.mark.parametrize(
    "returned_at,expected",
    [
        (BORROWED + timedelta(days=1), rules.EARLY),
        (BORROWED + timedelta(days=4), rules.ON_TIME),  # exactly half the loan
        (DUE, rules.ON_TIME),
        (DUE + timedelta(minutes=1), rules.LATE),
        (DUE + timedelta(days=3), rules.LATE),
        (DUE + timedelta(days=3, seconds=1), rules.VERY_LATE),
    ],
)
def test_classify_return(returned_at, expected):
    assert rules.classify_return(BORROWED, DUE, returned_at) == expected


@pytest.mark.unit
@pytest.mark.parametrize(
    "timeliness,condition,expected",
    [
        (rules.EARLY, ReturnCondition.GOOD, 3),
        (rules.ON_TIME, ReturnCondition.GOOD, 2),
        (rules.LATE, ReturnCondition.GOOD, -5),
        (rules.VERY_LATE, ReturnCondition.GOOD, -15),
        (rules.EARLY, ReturnCondition.DAMAGED, -10),
        (rules.ON_TIME, ReturnCondition.DAMAGED, -10),
        (rules.LATE, ReturnCondition.DAMAGED, -15),
        (rules.VERY_LATE, ReturnCondition.DAMAGED, -25),
    ],
)
def test_return_trust_delta(timeliness, condition, expected):
    assert rules.return_trust_delta(timeliness, condition) == expected


@pytest.mark.unit
@pytest.mark.parametrize(
    "timeliness,condition,multiplier,expected",
    [
        (rules.ON_TIME, ReturnCondition.GOOD, 1.0, 15),
        (rules.EARLY, ReturnCondition.GOOD, 1.0, 20),
        (rules.ON_TIME, ReturnCondition.GOOD, 1.5, 22),  # floored
        (rules.EARLY, ReturnCondition.GOOD, 2.0, 40),
        (rules.LATE, ReturnCondition.GOOD, 2.0, 0),
        (rules.EARLY, ReturnCondition.DAMAGED, 2.0, 0),
    ],
)
def test_return_points(timeliness, condition, multiplier, expected):
    assert rules.return_points(timeliness, condition, multiplier) == expected


@pytest.mark.unit
def test_clamp_trust_bounds():
    assert rules.clamp_trust(-40) == 0
    assert rules.clamp_trust(250) == 200
    assert rules.clamp_trust(130) == 130


@pytest.mark.unit
@pytest.mark.parametrize(
    "score,label",
    [(200, "EXCELLENT"), (160, "EXCELLENT"), (159, "HIGH"), (100, "NORMAL"), (50, "LOW"), (0, "UNTRUSTED")],
)
def test_trust_label(score, label):
    assert rules.trust_label(score) == label


@pytest.mark.unit
@pytest.mark.parametrize(
    "points,level", [(0, 1), (99, 1), (100, 2), (299, 2), (300, 3), (700, 4), (5000, 5)]
)
def test_level_for_points(points, level):
    assert rules.level_for_points(points) == level


@pytest.mark.unit
def test_next_level_progress():
    assert rules.next_level_progress(200, 2) == (300, 50)
    assert rules.next_level_progress(1600, 5) == (None, 100)
