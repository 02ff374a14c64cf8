"""
Admin controller: overrides and maintenance operations.

Every mutating route here writes an audit row through the service it calls.
"""

from flask import Blueprint, request

from lending.core.api_utils import api_response
from lending.core.auth_decorators import admin_required, current_user_id
from lending.core.exceptions import InvalidInputError
from lending.core.limiter_config import limiter
from lending.repositories.audit_repository import AuditRepository
from lending.schemas.dtos import (
    ForceReturnRequest,
    LevelSetRequest,
    PointsAdjustRequest,
    ReservationResponse,
    SubscriptionChangeRequest,
    TrustAdjustRequest,
    audit_entries_to_list,
    progression_to_dict,
    return_receipt_to_dict,
    subscription_to_dict,
)
from lending.services.container import get_services
from lending.services.transaction import atomic

admin_bp = Blueprint("admin", __name__, url_prefix="/admin")


@admin_bp.route("/reservations/sweep-overdue", methods=["POST"])
@limiter.limit("10 per minute")
@admin_required
def sweep_overdue():
    transitioned = get_services().coordinator.sweep_overdue()
    return api_response(True, "Overdue sweep completed", {"transitioned": transitioned})


@admin_bp.route("/reservations/overdue", methods=["GET"])
@limiter.limit("30 per minute")
@admin_required
def list_overdue():
    coordinator = get_services().coordinator
    now = coordinator.clock()
    overdue = [
        ReservationResponse.from_domain(r, now).to_dict()
        for r in coordinator.list_overdue()
    ]
    return api_response(True, "Overdue reservations retrieved", overdue)


@admin_bp.route("/reservations/<int:reservation_id>/force-return", methods=["POST"])
@limiter.limit("30 per minute")
@admin_required
def force_return(reservation_id: int):
    payload = ForceReturnRequest.from_json(request.get_json(silent=True))
    receipt = get_services().coordinator.force_return(
        reservation_id, payload.reason, actor_id=current_user_id()
    )
    return api_response(
        True, "Reservation force-returned", return_receipt_to_dict(receipt)
    )


@admin_bp.route("/progression/trust", methods=["POST"])
@limiter.limit("30 per minute")
@admin_required
def adjust_trust():
    payload = TrustAdjustRequest.from_json(request.get_json(silent=True))
    score = get_services().progression.adjust_trust(
        payload.user_id,
        delta=payload.delta,
        change=payload.change,
        actor_id=current_user_id(),
        reason=payload.reason,
    )
    return api_response(
        True, "Trust adjusted", {"user_id": payload.user_id, "trust_score": score}
    )


@admin_bp.route("/progression/points", methods=["POST"])
@limiter.limit("30 per minute")
@admin_required
def adjust_points():
    payload = PointsAdjustRequest.from_json(request.get_json(silent=True))
    progression = get_services().progression
    if payload.action is not None:
        total = progression.award_points(payload.user_id, payload.action)
    else:
        total = progression.adjust_points(
            payload.user_id,
            payload.delta,
            actor_id=current_user_id(),
            reason=payload.reason,
        )
    return api_response(
        True,
        "Points adjusted",
        {"user_id": payload.user_id, "reward_points": total},
    )


@admin_bp.route("/progression/level", methods=["POST"])
@limiter.limit("30 per minute")
@admin_required
def set_level():
    payload = LevelSetRequest.from_json(request.get_json(silent=True))
    level = get_services().progression.set_level(
        payload.user_id, payload.level, actor_id=current_user_id()
    )
    return api_response(
        True, "Level updated", {"user_id": payload.user_id, "level": level}
    )


@admin_bp.route("/subscriptions/<int:user_id>", methods=["PUT"])
@limiter.limit("30 per minute")
@admin_required
def change_subscription(user_id: int):
    payload = SubscriptionChangeRequest.from_json(request.get_json(silent=True))
    service = get_services().subscriptions
    terms = service.change_plan(
        user_id,
        payload.plan,
        actor_id=current_user_id(),
        payment_reference=payload.payment_reference,
    )
    return api_response(
        True, "Subscription updated", subscription_to_dict(terms, service.clock())
    )


@admin_bp.route("/audit-logs", methods=["GET"])
@limiter.limit("30 per minute")
@admin_required
def audit_logs():
    try:
        limit = int(request.args.get("limit", 50))
    except ValueError:
        raise InvalidInputError("limit must be an integer") from None
    limit = max(1, min(200, limit))
    action = request.args.get("action") or None

    with atomic(get_services().session_factory, "list_audit_logs") as db:
        entries = AuditRepository(db).list_recent(limit=limit, action=action)
    return api_response(True, "Audit logs retrieved", audit_entries_to_list(entries))


@admin_bp.route("/progression/community/<int:user_id>", methods=["POST"])
@limiter.limit("30 per minute")
@admin_required
def approve_community_contribution(user_id: int):
    """Credit an approved community post to its author."""
    summary = get_services().progression.record_community_contribution(user_id)
    return api_response(True, "Contribution recorded", progression_to_dict(summary))
