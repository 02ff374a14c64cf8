from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import func, or_, select, update

from lending.core.exceptions import DeniedError, NotFoundError
from lending.db.base import HOLDING_STATUSES, BorrowRecord
from lending.db.base import Item as ItemModel
from lending.domain.entities import Item, Reservation, ReservationStatus
from lending.domain.interfaces import ILedgerRepository


class LedgerRepository(ILedgerRepository):
    """Resource ledger over one SQLAlchemy session.

    Flushes but never commits; the caller owns the transaction boundary.
    """

    def __init__(self, db_session):
        self.db = db_session

    # ----- items -----

    def get_item(self, item_id: int) -> Item:
        db_item = self.db.get(ItemModel, item_id, populate_existing=True)
        if db_item is None:
            raise NotFoundError(f"Item {item_id} not found", {"item_id": item_id})
        return self._item_to_domain(db_item)

    def is_available(self, item_id: int) -> bool:
        # Column select so a stale identity-map copy is never consulted
        flag = self.db.execute(
            select(ItemModel.available).where(ItemModel.id == item_id)
        ).scalar_one_or_none()
        if flag is None:
            raise NotFoundError(f"Item {item_id} not found", {"item_id": item_id})
        if not flag:
            return False
        return self._holder_id(item_id) is None

    def availability_for(self, item_ids: List[int]) -> Dict[int, bool]:
        if not item_ids:
            return {}
        flags = dict(
            self.db.execute(
                select(ItemModel.id, ItemModel.available).where(
                    ItemModel.id.in_(item_ids)
                )
            ).all()
        )
        held = set(
            self.db.execute(
                select(BorrowRecord.item_id).where(
                    BorrowRecord.item_id.in_(item_ids),
                    BorrowRecord.status.in_(HOLDING_STATUSES),
                )
            ).scalars()
        )
        return {
            item_id: bool(flag) and item_id not in held
            for item_id, flag in flags.items()
        }

    def mark_unavailable(self, item_id: int) -> bool:
        result = self.db.execute(
            update(ItemModel)
            .where(ItemModel.id == item_id, ItemModel.available.is_(True))
            .values(available=False)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def mark_available(self, item_id: int) -> None:
        self.db.execute(
            update(ItemModel)
            .where(ItemModel.id == item_id)
            .values(available=True)
            .execution_options(synchronize_session=False)
        )

    def _holder_id(self, item_id: int) -> Optional[int]:
        return self.db.execute(
            select(BorrowRecord.id).where(
                BorrowRecord.item_id == item_id,
                BorrowRecord.status.in_(HOLDING_STATUSES),
            )
        ).scalar_one_or_none()

    # ----- reservations -----

    def active_reservation_count(self, user_id: int) -> int:
        return self.db.execute(
            select(func.count(BorrowRecord.id)).where(
                BorrowRecord.user_id == user_id,
                BorrowRecord.status.in_(HOLDING_STATUSES),
            )
        ).scalar_one()

    def get_reservation(self, reservation_id: int) -> Reservation:
        row = self._fetch(BorrowRecord.id == reservation_id, reservation_id)
        return self._to_domain(row)

    def get_reservation_by_token(self, token: str) -> Reservation:
        return self._to_domain(self._fetch(BorrowRecord.handover_token == token, token))

    def list_user_reservations(self, user_id: int) -> List[Reservation]:
        rows = self.db.execute(
            select(BorrowRecord)
            .where(BorrowRecord.user_id == user_id)
            .order_by(BorrowRecord.borrowed_at.desc(), BorrowRecord.id.desc())
        ).scalars()
        return [self._to_domain(row) for row in rows]

    def list_overdue(self, now: datetime) -> List[Reservation]:
        """Overdue rows plus active rows whose due date already passed."""
        rows = self.db.execute(
            select(BorrowRecord)
            .where(
                or_(
                    BorrowRecord.status == ReservationStatus.OVERDUE.value,
                    (BorrowRecord.status == ReservationStatus.ACTIVE.value)
                    & (BorrowRecord.due_at < now),
                )
            )
            .order_by(BorrowRecord.due_at.asc())
        ).scalars()
        return [self._to_domain(row) for row in rows]

    def add_reservation(self, reservation: Reservation) -> Reservation:
        db_record = BorrowRecord(
            user_id=reservation.user_id,
            item_id=reservation.item_id,
            borrowed_at=reservation.borrowed_at,
            due_at=reservation.due_at,
            handover_token=reservation.handover_token,
            status=reservation.status.value,
        )
        self.db.add(db_record)
        # Surfaces the one-holder and token unique indexes as IntegrityError
        self.db.flush()
        return self._to_domain(db_record)

    def record_handover(self, reservation_id: int, at: datetime) -> bool:
        result = self.db.execute(
            update(BorrowRecord)
            .where(
                BorrowRecord.id == reservation_id,
                BorrowRecord.handed_over_at.is_(None),
            )
            .values(handed_over_at=at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def close_reservation(
        self,
        reservation_id: int,
        returned_at: datetime,
        condition: Optional[str],
        notes: Optional[str],
    ) -> Reservation:
        result = self.db.execute(
            update(BorrowRecord)
            .where(
                BorrowRecord.id == reservation_id,
                BorrowRecord.status.in_(HOLDING_STATUSES),
            )
            .values(
                status=ReservationStatus.RETURNED.value,
                returned_at=returned_at,
                return_condition=condition,
                condition_notes=notes,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise DeniedError("already returned", {"reservation_id": reservation_id})
        return self.get_reservation(reservation_id)

    def mark_overdue(self, now: datetime) -> List[Reservation]:
        rows = (
            self.db.execute(
                select(BorrowRecord)
                .where(
                    BorrowRecord.status == ReservationStatus.ACTIVE.value,
                    BorrowRecord.due_at < now,
                )
                .with_for_update(skip_locked=True)
                .execution_options(populate_existing=True)
            )
            .scalars()
            .all()
        )
        for row in rows:
            row.status = ReservationStatus.OVERDUE.value
        self.db.flush()
        return [self._to_domain(row) for row in rows]

    def _fetch(self, criterion, key) -> BorrowRecord:
        row = self.db.execute(
            select(BorrowRecord)
            .where(criterion)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if row is None:
            raise NotFoundError(
                f"Reservation {key} not found", {"reservation": str(key)}
            )
        return row

    def _item_to_domain(self, db_item: ItemModel) -> Item:
        return Item(
            id=db_item.id,
            name=db_item.name,
            risk_tier=db_item.risk_level,
            min_level=db_item.min_level_required,
            available=db_item.available,
            description=db_item.description,
            category=db_item.category,
            replacement_value=db_item.replacement_value or 0,
        )

    def _to_domain(self, db_record: BorrowRecord) -> Reservation:
        return Reservation(
            id=db_record.id,
            item_id=db_record.item_id,
            user_id=db_record.user_id,
            borrowed_at=db_record.borrowed_at,
            due_at=db_record.due_at,
            handover_token=db_record.handover_token,
            status=db_record.status,
            returned_at=db_record.returned_at,
            condition_notes=db_record.condition_notes,
            return_condition=db_record.return_condition,
            handed_over_at=db_record.handed_over_at,
        )
