from flask import Blueprint, request
from flask_login import current_user, login_required

from lending.core.api_utils import api_response
from lending.core.exceptions import InvalidInputError
from lending.core.limiter_config import limiter
from lending.schemas.dtos import progression_to_dict
from lending.services import progression_rules as rules
from lending.services.container import get_services

progression_bp = Blueprint("progression", __name__, url_prefix="/progression")


@progression_bp.route("/me", methods=["GET"])
@limiter.limit("100 per minute")
@login_required
def my_progression():
    summary = get_services().progression.get_progression(current_user.id)
    return api_response(True, "Progression retrieved", progression_to_dict(summary))


@progression_bp.route("/levels", methods=["GET"])
@limiter.limit("100 per minute")
def levels():
    """Public level ladder and trust bands."""
    data = {
        "levels": [
            {
                "level": level,
                "name": rules.LEVEL_NAMES[level],
                "points_required": threshold,
            }
            for level, threshold in sorted(rules.LEVEL_THRESHOLDS.items())
        ],
        "trust_labels": [
            {"label": label, "min_score": lower} for lower, label in rules.TRUST_LABELS
        ],
    }
    return api_response(True, "Levels retrieved", data)


@progression_bp.route("/leaderboard", methods=["GET"])
@limiter.limit("60 per minute")
@login_required
def leaderboard():
    try:
        limit = max(1, min(50, int(request.args.get("limit", 10))))
    except ValueError:
        raise InvalidInputError("limit must be an integer") from None
    entries = get_services().progression.leaderboard(limit)
    return api_response(True, "Leaderboard retrieved", entries)
