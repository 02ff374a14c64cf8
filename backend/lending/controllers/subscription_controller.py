from flask import Blueprint
from flask_login import current_user, login_required

from lending.core.api_utils import api_response
from lending.core.limiter_config import limiter
from lending.schemas.dtos import plan_to_dict, subscription_to_dict
from lending.services.container import get_services

subscription_bp = Blueprint("subscriptions", __name__, url_prefix="/subscriptions")


@subscription_bp.route("/plans", methods=["GET"])
@limiter.limit("100 per minute")
def list_plans():
    plans = get_services().subscriptions.list_plans()
    return api_response(True, "Plans retrieved", [plan_to_dict(p) for p in plans])


@subscription_bp.route("/me", methods=["GET"])
@limiter.limit("100 per minute")
@login_required
def my_subscription():
    service = get_services().subscriptions
    terms = service.get_subscription(current_user.id)
    return api_response(
        True, "Subscription retrieved", subscription_to_dict(terms, service.clock())
    )
