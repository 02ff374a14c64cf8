from typing import List, Tuple

from sqlalchemy import case, select, update

from lending.core.exceptions import NotFoundError
from lending.db.base import User
from lending.domain.interfaces import IUserRepository

TRUST_MIN = 0
TRUST_MAX = 200


class UserRepository(IUserRepository):
    """Borrower progression state. Flushes, never commits."""

    def __init__(self, db_session):
        self.db = db_session

    def get_progress(self, user_id: int) -> Tuple[int, int, int]:
        row = self.db.execute(
            select(User.level, User.trust_score, User.reward_points).where(
                User.id == user_id
            )
        ).one_or_none()
        if row is None:
            raise NotFoundError(f"User {user_id} not found", {"user_id": user_id})
        return row.level, row.trust_score, row.reward_points

    def lock_for_update(self, user_id: int) -> None:
        # Serializes reservations of one borrower; a no-op on SQLite
        locked = self.db.execute(
            select(User.id).where(User.id == user_id).with_for_update()
        ).scalar_one_or_none()
        if locked is None:
            raise NotFoundError(f"User {user_id} not found", {"user_id": user_id})

    def apply_trust_delta(self, user_id: int, delta: int) -> Tuple[int, int]:
        _, old_trust, _ = self.get_progress(user_id)
        raw = User.trust_score + delta
        self.db.execute(
            update(User)
            .where(User.id == user_id)
            .values(
                trust_score=case(
                    (raw > TRUST_MAX, TRUST_MAX),
                    (raw < TRUST_MIN, TRUST_MIN),
                    else_=raw,
                )
            )
            .execution_options(synchronize_session=False)
        )
        _, new_trust, _ = self.get_progress(user_id)
        return old_trust, new_trust

    def add_points(self, user_id: int, points: int) -> int:
        self.get_progress(user_id)
        raw = User.reward_points + points
        self.db.execute(
            update(User)
            .where(User.id == user_id)
            .values(reward_points=case((raw < 0, 0), else_=raw))
            .execution_options(synchronize_session=False)
        )
        return self.get_progress(user_id)[2]

    def set_level(self, user_id: int, level: int) -> int:
        old_level = self.get_progress(user_id)[0]
        self.db.execute(
            update(User)
            .where(User.id == user_id)
            .values(level=level)
            .execution_options(synchronize_session=False)
        )
        return old_level

    def top_by_points(self, limit: int = 10) -> List[dict]:
        rows = self.db.execute(
            select(User.id, User.name, User.level, User.reward_points)
            .where(User.active_flag.is_(True))
            .order_by(User.reward_points.desc(), User.id.asc())
            .limit(limit)
        )
        return [
            {
                "user_id": row.id,
                "name": row.name,
                "level": row.level,
                "reward_points": row.reward_points,
            }
            for row in rows
        ]
