"""
Reservation controller: HTTP concerns only.

Lending errors raised by the coordinator propagate to the error handlers
registered in ``lending.core.api_utils``.
"""

from flask import Blueprint, request
from flask_login import current_user, login_required

from lending.core.api_utils import api_response
from lending.core.exceptions import NotFoundError
from lending.core.limiter_config import limiter
from lending.schemas.dtos import (
    HandoverRequest,
    ReservationResponse,
    ReserveRequest,
    ReturnRequest,
    handover_to_dict,
    receipt_to_dict,
    return_receipt_to_dict,
)
from lending.services.container import get_services

reservation_bp = Blueprint("reservations", __name__, url_prefix="/reservations")


@reservation_bp.route("", methods=["POST"])
@limiter.limit("30 per minute")
@login_required
def create_reservation():
    """Reserve an item for the authenticated borrower."""
    payload = ReserveRequest.from_json(request.get_json(silent=True))
    receipt = get_services().coordinator.reserve(
        current_user.id, payload.item_id, payload.duration_days
    )
    return api_response(True, "Reservation created", receipt_to_dict(receipt), 201)


@reservation_bp.route("/handover", methods=["POST"])
@limiter.limit("30 per minute")
@login_required
def confirm_handover():
    payload = HandoverRequest.from_json(request.get_json(silent=True))
    confirmation = get_services().coordinator.confirm_handover(payload.handover_token)
    return api_response(True, "Handover confirmed", handover_to_dict(confirmation))


@reservation_bp.route("/<int:reservation_id>/return", methods=["POST"])
@limiter.limit("30 per minute")
@login_required
def return_item(reservation_id: int):
    payload = ReturnRequest.from_json(request.get_json(silent=True))
    receipt = get_services().coordinator.return_item(
        reservation_id,
        payload.condition,
        payload.condition_notes,
        user_id=current_user.id,
    )
    return api_response(True, "Item returned", return_receipt_to_dict(receipt))


@reservation_bp.route("/mine", methods=["GET"])
@limiter.limit("100 per minute")
@login_required
def my_reservations():
    coordinator = get_services().coordinator
    now = coordinator.clock()
    reservations = coordinator.list_user_reservations(current_user.id)
    return api_response(
        True,
        "Reservations retrieved",
        [ReservationResponse.from_domain(r, now).to_dict() for r in reservations],
    )


@reservation_bp.route("/<int:reservation_id>", methods=["GET"])
@limiter.limit("100 per minute")
@login_required
def get_reservation(reservation_id: int):
    coordinator = get_services().coordinator
    reservation = coordinator.get_reservation(reservation_id)
    if reservation.user_id != current_user.id and not current_user.is_admin:
        # Do not reveal other borrowers' reservations
        raise NotFoundError(f"Reservation {reservation_id} not found")
    return api_response(
        True,
        "Reservation retrieved",
        ReservationResponse.from_domain(reservation, coordinator.clock()).to_dict(),
    )
