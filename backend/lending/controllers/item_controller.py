from flask import Blueprint, request
from flask_login import login_required

from lending.core.api_utils import api_response
from lending.core.exceptions import InvalidInputError
from lending.core.limiter_config import limiter
from lending.services.container import get_services

item_bp = Blueprint("items", __name__, url_prefix="/items")

MAX_BATCH_IDS = 100


@item_bp.route("/<int:item_id>/availability", methods=["GET"])
@limiter.limit("100 per minute")
@login_required
def item_availability(item_id: int):
    """Cached availability answer. Advisory only; reserving re-checks the ledger."""
    available = get_services().coordinator.is_available(item_id)
    return api_response(
        True, "Availability retrieved", {"item_id": item_id, "available": available}
    )


@item_bp.route("/availability", methods=["GET"])
@limiter.limit("60 per minute")
@login_required
def batch_availability():
    """``?ids=1,2,3``. Unknown ids are omitted from the answer."""
    raw = request.args.get("ids", "")
    try:
        item_ids = [int(part) for part in raw.split(",") if part.strip()]
    except ValueError:
        raise InvalidInputError(
            "ids must be a comma-separated list of integers"
        ) from None
    if not item_ids or len(item_ids) > MAX_BATCH_IDS:
        raise InvalidInputError(f"ids must name between 1 and {MAX_BATCH_IDS} items")

    availability = get_services().coordinator.availability_for(item_ids)
    return api_response(
        True,
        "Availability retrieved",
        [
            {"item_id": item_id, "available": available}
            for item_id, available in availability.items()
        ],
    )
