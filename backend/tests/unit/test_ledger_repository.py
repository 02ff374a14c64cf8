from datetime import timedelta
from unittest.mock import Mock

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import IntegrityError

from lending.core.exceptions import DeniedError, NotFoundError
from lending.domain.entities import Reservation, ReservationStatus, RiskTier
from lending.repositories.ledger_repository import LedgerRepository
from lending.repositories.user_repository import UserRepository
from tests.conftest import START


def new_reservation(item_id, user_id, token="LOT-000000000001", days=7, borrowed_at=START):
    return Reservation(
        id=None,
        item_id=item_id,
        user_id=user_id,
        borrowed_at=borrowed_at,
        due_at=borrowed_at + timedelta(days=days),
        handover_token=token,
    )


@pytest.mark.integration
def test_get_item_maps_to_domain(db_session, make_item):
    item_id = make_item(name="Laser Cutter", risk_level="high", min_level=3)

    item = LedgerRepository(db_session).get_item(item_id)

    assert item.name == "Laser Cutter"
    assert item.risk_tier is RiskTier.HIGH
    assert item.min_level == 3


@pytest.mark.integration
def test_get_item_missing_raises_not_found(db_session):
    with pytest.raises(NotFoundError):
        LedgerRepository(db_session).get_item(999)


@pytest.mark.integration
def test_mark_unavailable_is_compare_and_set(db_session, make_item):
    item_id = make_item()
    ledger = LedgerRepository(db_session)

    assert ledger.mark_unavailable(item_id) is True
    assert ledger.mark_unavailable(item_id) is False

    ledger.mark_available(item_id)
    assert ledger.mark_unavailable(item_id) is True


@pytest.mark.integration
def test_item_with_holder_is_unavailable_even_if_flag_is_set(
    db_session, make_item, make_user
):
    item_id, user_id = make_item(), make_user()
    ledger = LedgerRepository(db_session)
    ledger.add_reservation(new_reservation(item_id, user_id))

    assert ledger.is_available(item_id) is False


@pytest.mark.integration
def test_second_holding_record_for_item_violates_unique_index(
    db_session, make_item, make_user
):
    item_id, first_user, second_user = make_item(), make_user(), make_user()
    ledger = LedgerRepository(db_session)
    ledger.add_reservation(new_reservation(item_id, first_user))

    with pytest.raises(IntegrityError):
        ledger.add_reservation(
            new_reservation(item_id, second_user, token="LOT-000000000002")
        )


@pytest.mark.integration
def test_returned_record_does_not_block_new_holder(db_session, make_item, make_user):
    item_id, first_user, second_user = make_item(), make_user(), make_user()
    ledger = LedgerRepository(db_session)
    first = ledger.add_reservation(new_reservation(item_id, first_user))
    ledger.close_reservation(first.id, START + timedelta(days=1), "good", None)

    second = ledger.add_reservation(
        new_reservation(item_id, second_user, token="LOT-000000000002")
    )

    assert second.status is ReservationStatus.ACTIVE


@pytest.mark.integration
def test_close_reservation_twice_is_denied(db_session, make_item, make_user):
    ledger = LedgerRepository(db_session)
    reservation = ledger.add_reservation(new_reservation(make_item(), make_user()))

    closed = ledger.close_reservation(reservation.id, START, "damaged", "cracked lens")
    assert closed.status is ReservationStatus.RETURNED
    assert closed.condition_notes == "cracked lens"

    with pytest.raises(DeniedError) as exc:
        ledger.close_reservation(reservation.id, START, "good", None)
    assert exc.value.reason == "already returned"


@pytest.mark.integration
def test_record_handover_only_once(db_session, make_item, make_user):
    ledger = LedgerRepository(db_session)
    reservation = ledger.add_reservation(new_reservation(make_item(), make_user()))

    assert ledger.record_handover(reservation.id, START) is True
    assert ledger.record_handover(reservation.id, START) is False
    assert ledger.get_reservation(reservation.id).handed_over_at == START


@pytest.mark.integration
def test_active_count_includes_overdue(db_session, make_item, make_user):
    user_id, first_item, second_item = make_user(), make_item(), make_item()
    ledger = LedgerRepository(db_session)
    ledger.add_reservation(new_reservation(first_item, user_id, days=1))
    ledger.add_reservation(
        new_reservation(second_item, user_id, token="LOT-000000000002", days=10)
    )
    ledger.mark_overdue(START + timedelta(days=2))

    assert ledger.active_reservation_count(user_id) == 2


@pytest.mark.integration
def test_mark_overdue_moves_only_past_due_active_rows(db_session, make_item, make_user):
    user_id, first_item, second_item = make_user(), make_item(), make_item()
    ledger = LedgerRepository(db_session)
    past_due = ledger.add_reservation(new_reservation(first_item, user_id, days=1))
    ledger.add_reservation(
        new_reservation(second_item, user_id, token="LOT-000000000002", days=10)
    )

    moved = ledger.mark_overdue(START + timedelta(days=2))

    assert [r.id for r in moved] == [past_due.id]
    assert moved[0].status is ReservationStatus.OVERDUE
    assert ledger.mark_overdue(START + timedelta(days=2)) == []


@pytest.mark.integration
def test_get_reservation_by_unknown_token_raises(db_session):
    with pytest.raises(NotFoundError):
        LedgerRepository(db_session).get_reservation_by_token("LOT-FFFFFFFFFFFF")


@pytest.mark.integration
def test_list_overdue_includes_lazy_overdue(db_session, make_item, make_user):
    ledger = LedgerRepository(db_session)
    reservation = ledger.add_reservation(
        new_reservation(make_item(), make_user(), days=1)
    )

    overdue = ledger.list_overdue(START + timedelta(days=3))

    assert [r.id for r in overdue] == [reservation.id]
    later = START + timedelta(days=3)
    assert overdue[0].effective_status(later) is ReservationStatus.OVERDUE


@pytest.mark.integration
def test_availability_for_answers_a_batch(db_session, make_item, make_user):
    free_item, held_item = make_item(), make_item()
    flagged_off = make_item(available=False)
    user_id = make_user()
    ledger = LedgerRepository(db_session)
    ledger.add_reservation(new_reservation(held_item, user_id))

    availability = ledger.availability_for([free_item, held_item, flagged_off, 999])

    assert availability == {free_item: True, held_item: False, flagged_off: False}
    assert ledger.availability_for([]) == {}


@pytest.mark.integration
def test_lock_for_update_unknown_user_raises(db_session):
    with pytest.raises(NotFoundError):
        UserRepository(db_session).lock_for_update(4242)


@pytest.mark.unit
def test_lock_for_update_selects_user_row_for_update():
    session = Mock()

    UserRepository(session).lock_for_update(7)

    statement = session.execute.call_args[0][0]
    sql = str(statement.compile(dialect=postgresql.dialect()))
    assert "FROM users" in sql
    assert sql.rstrip().endswith("FOR UPDATE")
