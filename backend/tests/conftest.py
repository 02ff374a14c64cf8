"""
Central pytest configuration for the lending service tests.

Every test gets a fresh in-memory SQLite database, a controllable clock and
a services container wired to both. Environment variables are set before
any ``lending`` import so import-time configuration picks them up.
"""

import itertools
import os
from datetime import datetime, timedelta, timezone

import pytest

os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["TESTING"] = "true"
os.environ["RATE_LIMIT_ENABLED"] = "0"  # Disable rate limiting in tests
os.environ["ENABLE_OVERDUE_SWEEP_JOB"] = "false"
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-for-lending-tests-000")

from lending.db.base import Item, Subscription, User  # noqa: E402
from lending.db.session import build_engine, create_tables, make_sessionmaker  # noqa: E402
from lending.domain.entities import PLANS, Plan  # noqa: E402
from lending.services.availability_cache import MemoryCacheStore  # noqa: E402
from lending.services.container import build_services  # noqa: E402

START = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "integration: mark test as an integration test")
    config.addinivalue_line("markers", "api: mark test as API endpoint test")
    config.addinivalue_line("markers", "concurrency: mark test as multi-threaded")
    config.addinivalue_line("markers", "slow: mark test as slow running")


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def engine():
    engine = build_engine("sqlite://")
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_sessionmaker(engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def cache_store():
    return MemoryCacheStore()


@pytest.fixture
def services(session_factory, clock, cache_store):
    return build_services(session_factory, cache_store=cache_store, clock=clock)


@pytest.fixture
def coordinator(services):
    return services.coordinator


@pytest.fixture
def progression(services):
    return services.progression


_emails = itertools.count(1)


@pytest.fixture
def make_user(session_factory):
    """Create a committed user and return its id."""

    def _make_user(
        level=1,
        trust_score=100,
        reward_points=0,
        is_admin=False,
        active=True,
        plan=None,
        expires_at=None,
        name="Borrower",
    ):
        with session_factory() as db:
            user = User(
                email=f"user{next(_emails)}@example.com",
                name=name,
                level=level,
                trust_score=trust_score,
                reward_points=reward_points,
                is_admin=is_admin,
                active_flag=active,
            )
            db.add(user)
            db.flush()
            if plan is not None:
                terms = PLANS[Plan(plan)]
                db.add(
                    Subscription(
                        user_id=user.id,
                        plan=terms.plan.value,
                        max_items=terms.max_items,
                        max_risk_level=terms.max_risk.value,
                        monthly_fee=terms.monthly_fee,
                        started_at=START,
                        expires_at=expires_at,
                    )
                )
            db.commit()
            return user.id

    return _make_user


@pytest.fixture
def make_item(session_factory):
    """Create a committed item and return its id."""

    def _make_item(name="Cordless Drill", risk_level="low", min_level=1, available=True):
        with session_factory() as db:
            item = Item(
                name=name,
                risk_level=risk_level,
                min_level_required=min_level,
                available=available,
                replacement_value=12000,
            )
            db.add(item)
            db.commit()
            return item.id

    return _make_item


@pytest.fixture
def fetch_user(session_factory):
    def _fetch_user(user_id):
        with session_factory() as db:
            return db.get(User, user_id)

    return _fetch_user


@pytest.fixture
def fetch_item(session_factory):
    def _fetch_item(item_id):
        with session_factory() as db:
            return db.get(Item, item_id)

    return _fetch_item
