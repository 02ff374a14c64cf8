"""
Racing reservations against a file-backed SQLite database.

Each worker gets its own coordinator and lock registry, as separate
processes would, so only the database enforces mutual exclusion.

File SQLite opens every transaction with BEGIN IMMEDIATE, which
serializes whole transactions; on PostgreSQL the same guarantees come from
the compare-and-set, the one-holder index and the borrower row lock.
"""

import threading

import pytest
from sqlalchemy import func, select

from lending.core.exceptions import ConflictError, DeniedError
from lending.db.base import BorrowRecord, Item, User
from lending.db.session import build_engine, create_tables, make_sessionmaker
from lending.services.reservation_coordinator import (
    ItemLockRegistry,
    ReservationCoordinator,
)

WORKERS = 8


@pytest.fixture
def file_session_factory(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'race.db'}")
    create_tables(engine)
    yield make_sessionmaker(engine)
    engine.dispose()


def seed(session_factory, users, items=1):
    with session_factory() as db:
        things = [
            Item(name=f"3D Printer {i}", risk_level="low", min_level_required=1)
            for i in range(items)
        ]
        db.add_all(things)
        borrowers = [
            User(email=f"racer{i}@example.com", name=f"Racer {i}") for i in range(users)
        ]
        db.add_all(borrowers)
        db.commit()
        return [t.id for t in things], [u.id for u in borrowers]


def race(session_factory, attempts, shared_locks=None):
    """Run each (user_id, item_id) attempt on its own thread at once."""
    barrier = threading.Barrier(len(attempts))
    outcomes = []
    outcomes_lock = threading.Lock()

    def worker(user_id, item_id):
        coordinator = ReservationCoordinator(
            session_factory, locks=shared_locks or ItemLockRegistry()
        )
        barrier.wait()
        try:
            receipt = coordinator.reserve(user_id, item_id)
            outcome = ("ok", receipt.reservation_id)
        except ConflictError:
            outcome = ("conflict", None)
        except DeniedError as e:
            outcome = ("denied", e.reason)
        except Exception as e:  # surfaced through the assertion below
            outcome = ("error", repr(e))
        with outcomes_lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=worker, args=attempt) for attempt in attempts]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)
    return outcomes


@pytest.mark.integration
@pytest.mark.concurrency
@pytest.mark.slow
def test_exactly_one_concurrent_reservation_wins(file_session_factory):
    (item_id,), user_ids = seed(file_session_factory, WORKERS)

    outcomes = race(file_session_factory, [(uid, item_id) for uid in user_ids])

    kinds = sorted(kind for kind, _ in outcomes)
    assert kinds == ["conflict"] * (WORKERS - 1) + ["ok"], outcomes

    with file_session_factory() as db:
        holders = db.execute(
            select(func.count(BorrowRecord.id)).where(
                BorrowRecord.item_id == item_id,
                BorrowRecord.status.in_(("active", "overdue")),
            )
        ).scalar_one()
        item = db.get(Item, item_id)
    assert holders == 1
    assert item.available is False


@pytest.mark.integration
@pytest.mark.concurrency
def test_in_process_lock_serializes_same_item(file_session_factory):
    (item_id,), user_ids = seed(file_session_factory, 4)

    outcomes = race(
        file_session_factory,
        [(uid, item_id) for uid in user_ids],
        shared_locks=ItemLockRegistry(),
    )

    kinds = sorted(kind for kind, _ in outcomes)
    assert kinds == ["conflict", "conflict", "conflict", "ok"]


@pytest.mark.integration
@pytest.mark.concurrency
def test_one_borrower_racing_for_two_items_stays_within_plan(file_session_factory):
    item_ids, (user_id,) = seed(file_session_factory, 1, items=2)

    outcomes = race(file_session_factory, [(user_id, item) for item in item_ids])

    kinds = sorted(kind for kind, _ in outcomes)
    assert kinds == ["denied", "ok"], outcomes
    assert ("denied", "limit exceeded") in outcomes

    with file_session_factory() as db:
        held = db.execute(
            select(func.count(BorrowRecord.id)).where(
                BorrowRecord.user_id == user_id,
                BorrowRecord.status.in_(("active", "overdue")),
            )
        ).scalar_one()
        flags = sorted(db.get(Item, item).available for item in item_ids)
    assert held == 1
    assert flags == [False, True]
