"""
Lending error taxonomy.

Every failure surfaced by the reservation engine is one of these kinds.
Controllers map them onto HTTP status codes in ``lending.core.api_utils``.
"""

from typing import Any, Dict, Optional


class LendingError(Exception):
    """Base class for all expected lending failures."""

    kind = "internal"

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = dict(context or {})

    def __str__(self) -> str:
        return self.message


class NotFoundError(LendingError):
    """Referenced item, user, reservation or handover token does not exist."""

    kind = "not_found"


class ConflictError(LendingError):
    """Another holder owns the item, or a concurrent reservation won the race."""

    kind = "conflict"


class DeniedError(LendingError):
    """Eligibility or state rule refused the operation.

    ``reason`` is one of the stable reason strings, e.g. "limit exceeded".
    """

    kind = "denied"

    def __init__(self, reason: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(reason, context)
        self.reason = reason


class InvalidInputError(LendingError):
    """Malformed request (duration out of range, unknown plan, ...)."""

    kind = "invalid_input"


class InternalError(LendingError):
    """Storage or other unexpected failure. The transaction was rolled back."""

    kind = "internal"
