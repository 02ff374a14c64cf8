"""
Common API utilities for consistent response formatting across all controllers.
"""

import logging
from typing import Any, Optional

from flask import Flask, current_app, g, jsonify, request
from werkzeug.exceptions import HTTPException

from lending.core.exceptions import (
    ConflictError,
    DeniedError,
    InternalError,
    InvalidInputError,
    LendingError,
    NotFoundError,
)

logger = logging.getLogger(__name__)

STATUS_BY_ERROR = {
    InvalidInputError: 400,
    DeniedError: 403,
    NotFoundError: 404,
    ConflictError: 409,
    InternalError: 500,
}


def api_response(
    success: bool, message: str, data: Optional[Any] = None, status_code: int = 200
) -> tuple:
    """
    Standardized API response format for all endpoints.

    Args:
        success: Whether the operation was successful
        message: Human-readable message about the operation
        data: Optional data payload
        status_code: HTTP status code

    Returns:
        Tuple of (json_response, status_code)
    """
    response = {"success": success, "message": message}

    if data is not None:
        response["data"] = data

    return jsonify(response), status_code


def status_for(error: LendingError) -> int:
    for error_type, status in STATUS_BY_ERROR.items():
        if isinstance(error, error_type):
            return status
    return 500


def register_error_handlers(app: Flask) -> None:
    """Translate the lending error taxonomy into JSON responses."""

    @app.errorhandler(LendingError)
    def handle_lending_error(error: LendingError):
        status = status_for(error)
        context = {
            "request_id": g.get("request_id"),
            "path": request.path,
            "kind": error.kind,
        }
        context.update(error.context)

        if status >= 500:
            logger.error(
                "Internal lending failure",
                extra={"context": context},
                exc_info=error,
            )
            return api_response(False, "Internal error", None, 500)

        # Expected outcomes (denials, conflicts, ...) are not errors
        logger.info(f"Request refused: {error.message}", extra={"context": context})
        data = {"kind": error.kind}
        if isinstance(error, DeniedError):
            data["reason"] = error.reason
        return api_response(False, error.message, data, status)

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException):
        return api_response(False, error.description or error.name, None, error.code)


def verify_health_token() -> bool:
    """
    Verify the health check token from request headers.

    Returns:
        bool: True if token is valid, False otherwise
    """
    token = request.headers.get("X-Health-Token")
    expected = current_app.config.get("HEALTH_CHECK_TOKEN")
    if not expected:
        return False
    return bool(token and token == expected)
