from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from .session import Base

HOLDING_STATUSES = ("active", "overdue")


class UTCDateTime(TypeDecorator):
    """Store naive UTC, hand back timezone-aware UTC datetimes.

    SQLite has no timezone support, so every timestamp is normalized to UTC
    on the way in and tagged as UTC on the way out.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class User(Base):
    """Borrower account with progression state.

    Implements the Flask-Login user interface explicitly.
    """

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint(
            "trust_score >= 0 AND trust_score <= 200", name="ck_users_trust_range"
        ),
        CheckConstraint("level >= 1 AND level <= 5", name="ck_users_level_range"),
        CheckConstraint("reward_points >= 0", name="ck_users_points_non_negative"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    trust_score: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    reward_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    active_flag: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime(), server_default=func.now()
    )

    @property
    def is_active(self) -> bool:
        return self.active_flag

    def get_id(self):
        """Return user identifier for Flask-Login"""
        return str(self.id)

    @property
    def is_authenticated(self):
        return True

    @property
    def is_anonymous(self):
        return False

    def __repr__(self):
        return f"<User id={self.id} level={self.level} trust={self.trust_score}>"


class Subscription(Base):
    """Membership plan terms. At most one row per user."""

    __tablename__ = "subscriptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    plan: Mapped[str] = mapped_column(String(20), nullable=False, default="BASIC")
    max_items: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    max_risk_level: Mapped[str] = mapped_column(
        String(10), nullable=False, default="low"
    )
    monthly_fee: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    started_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime(), server_default=func.now()
    )
    expires_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    payment_reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    def __repr__(self):
        return f"<Subscription user_id={self.user_id} plan={self.plan}>"


class Item(Base):
    """Lendable physical item."""

    __tablename__ = "items"
    __table_args__ = (
        CheckConstraint(
            "risk_level IN ('low', 'medium', 'high')", name="ck_items_risk_level"
        ),
        CheckConstraint(
            "min_level_required >= 1 AND min_level_required <= 5",
            name="ck_items_min_level_range",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    replacement_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    risk_level: Mapped[str] = mapped_column(String(10), nullable=False, default="low")
    min_level_required: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    # Denormalized; False exactly while an active/overdue borrow record exists
    available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime(), server_default=func.now()
    )

    def __repr__(self):
        return f"<Item id={self.id} name={self.name!r} available={self.available}>"


class BorrowRecord(Base):
    """One reservation of one item by one user."""

    __tablename__ = "borrow_records"
    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'returned', 'overdue')",
            name="ck_borrow_records_status",
        ),
        Index(
            "uq_borrow_records_one_holder",
            "item_id",
            unique=True,
            sqlite_where=text("status IN ('active', 'overdue')"),
            postgresql_where=text("status IN ('active', 'overdue')"),
        ),
        Index("ix_borrow_records_user_status", "user_id", "status"),
        Index("ix_borrow_records_status_due", "status", "due_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    item_id: Mapped[int] = mapped_column(ForeignKey("items.id"), nullable=False)
    borrowed_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    due_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    returned_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime(), nullable=True
    )
    condition_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    return_condition: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    handover_token: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    handed_over_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime(), nullable=True
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")

    def __repr__(self):
        return (
            f"<BorrowRecord id={self.id} item_id={self.item_id} "
            f"user_id={self.user_id} status={self.status}>"
        )


class AuditLog(Base):
    """Append-only trail of lifecycle transitions and admin actions."""

    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    target_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    target_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    details: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime(), server_default=func.now()
    )

    def __repr__(self):
        return (
            f"<AuditLog id={self.id} action={self.action} "
            f"target={self.target_type}:{self.target_id}>"
        )
