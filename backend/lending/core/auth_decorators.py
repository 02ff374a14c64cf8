"""
Authorization helpers for lending routes.

Borrowers authenticate with a Bearer JWT resolved by the Flask-Login
``request_loader`` in ``lending.main``. These decorators add role checks on
top of ``login_required``.

Examples:
    @admin_bp.route("/reservations/sweep-overdue", methods=["POST"])
    @admin_required
    def sweep_overdue():
        ...
"""

from functools import wraps
from typing import Optional

from flask_login import current_user

from lending.core.api_utils import api_response


def current_user_id() -> Optional[int]:
    if current_user and getattr(current_user, "is_authenticated", False):
        return getattr(current_user, "id", None)
    return None


def admin_required(f):
    """Require an authenticated user flagged as admin."""

    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_user or not getattr(current_user, "is_authenticated", False):
            return api_response(False, "Authentication required", None, 401)
        if not getattr(current_user, "is_admin", False):
            return api_response(False, "Admin access required", None, 403)
        return f(*args, **kwargs)

    return decorated_function
