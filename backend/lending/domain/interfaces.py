"""
Abstract interfaces for repositories following Interface Segregation Principle.

Services depend on these contracts; the SQLAlchemy repositories implement
them, and unit tests substitute mocks.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional

from .entities import (
    AuditEntry,
    Item,
    Reservation,
    SubscriptionTerms,
)


class ILedgerReader(ABC):
    """Read side of the resource ledger."""

    @abstractmethod
    def get_item(self, item_id: int) -> Item:
        """Return the item or raise NotFoundError."""

    @abstractmethod
    def is_available(self, item_id: int) -> bool:
        """Flag set and no active/overdue reservation for the item."""

    @abstractmethod
    def active_reservation_count(self, user_id: int) -> int:
        """Number of active plus overdue reservations held by the user."""

    @abstractmethod
    def get_reservation(self, reservation_id: int) -> Reservation:
        """Return the reservation or raise NotFoundError."""

    @abstractmethod
    def get_reservation_by_token(self, token: str) -> Reservation:
        """Return the reservation holding this handover token or raise NotFoundError."""

    @abstractmethod
    def availability_for(self, item_ids: List[int]) -> Dict[int, bool]:
        """Availability keyed by item id; unknown ids are omitted."""

    @abstractmethod
    def list_user_reservations(self, user_id: int) -> List[Reservation]:
        pass

    @abstractmethod
    def list_overdue(self, now: datetime) -> List[Reservation]:
        pass


class ILedgerWriter(ABC):
    """Write side of the resource ledger. Never commits."""

    @abstractmethod
    def mark_unavailable(self, item_id: int) -> bool:
        """Compare-and-set the availability flag. True when this caller won."""

    @abstractmethod
    def mark_available(self, item_id: int) -> None:
        pass

    @abstractmethod
    def add_reservation(self, reservation: Reservation) -> Reservation:
        pass

    @abstractmethod
    def record_handover(self, reservation_id: int, at: datetime) -> bool:
        """Stamp handed_over_at once. False when already stamped."""

    @abstractmethod
    def close_reservation(
        self,
        reservation_id: int,
        returned_at: datetime,
        condition: Optional[str],
        notes: Optional[str],
    ) -> Reservation:
        pass

    @abstractmethod
    def mark_overdue(self, now: datetime) -> List[Reservation]:
        """Move active reservations past due to overdue; return the moved rows."""


class ILedgerRepository(ILedgerReader, ILedgerWriter):
    """Complete ledger interface combining read/write operations."""


class IUserRepository(ABC):
    """Borrower reads plus progression writes."""

    @abstractmethod
    def get_progress(self, user_id: int) -> tuple:
        """Return (level, trust_score, reward_points) or raise NotFoundError."""

    @abstractmethod
    def lock_for_update(self, user_id: int) -> None:
        """Row-lock the user until the transaction ends or raise NotFoundError."""

    @abstractmethod
    def apply_trust_delta(self, user_id: int, delta: int) -> tuple:
        """Clamp trust into range in one statement; return (old, new)."""

    @abstractmethod
    def add_points(self, user_id: int, points: int) -> int:
        """Add points (never below zero); return the new total."""

    @abstractmethod
    def set_level(self, user_id: int, level: int) -> int:
        """Set level; return the previous level."""


class ISubscriptionRepository(ABC):
    @abstractmethod
    def get_terms(self, user_id: int) -> SubscriptionTerms:
        """Return the user's terms, BASIC when no subscription row exists."""

    @abstractmethod
    def upsert(self, user_id: int, terms: SubscriptionTerms) -> SubscriptionTerms:
        pass


class IAuditRepository(ABC):
    @abstractmethod
    def record(
        self,
        action: str,
        user_id: Optional[int] = None,
        target_type: Optional[str] = None,
        target_id: Optional[int] = None,
        details: Optional[dict] = None,
    ) -> None:
        pass

    @abstractmethod
    def list_recent(
        self, limit: int = 50, action: Optional[str] = None
    ) -> List[AuditEntry]:
        pass
