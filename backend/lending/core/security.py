"""
Bearer token helpers.

Tokens are issued elsewhere; this service only verifies them. ``create_access_token``
exists for operators and tests that need to mint a token for a known user.
"""

import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt

JWT_ALGORITHM = "HS256"
JWT_EXPIRATION_HOURS = 24
WEAK_SECRETS = ("dev-jwt-secret-change-me", "dev-secret-change-me", "secret123")


def get_jwt_secret_key() -> str:
    """Get JWT secret key with production validation.

    Raises:
        ValueError: If production deployment uses weak or missing JWT secret
    """
    secret = os.getenv("JWT_SECRET_KEY", "dev-jwt-secret-change-me")
    is_production = os.getenv("FLASK_ENV") == "production"

    if is_production and (secret in WEAK_SECRETS or len(secret) < 32):
        raise ValueError(
            "Production deployment requires strong JWT_SECRET_KEY (min 32 chars). "
            "Set JWT_SECRET_KEY environment variable."
        )

    return secret


def create_access_token(
    data: Dict[str, Any], expires_delta: Optional[timedelta] = None
) -> str:
    """Create a signed JWT access token.

    Args:
        data: Payload data to encode in the token
        expires_delta: Optional custom expiration time

    Returns:
        Encoded JWT token string
    """
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(hours=JWT_EXPIRATION_HOURS)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, get_jwt_secret_key(), algorithm=JWT_ALGORITHM)


def create_user_token(user_id: int) -> str:
    return create_access_token({"user_id": user_id, "type": "access"})


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """Decode and validate a JWT access token.

    Returns:
        Decoded payload if valid, None if invalid or expired
    """
    try:
        return jwt.decode(token, get_jwt_secret_key(), algorithms=[JWT_ALGORITHM])
    except jwt.PyJWTError:
        return None


def user_id_from_bearer(header_value: Optional[str]) -> Optional[int]:
    """Extract the ``user_id`` claim from an ``Authorization: Bearer ...`` value."""
    if not header_value or not header_value.startswith("Bearer "):
        return None

    payload = decode_access_token(header_value.split(" ", 1)[1].strip())
    if not payload:
        return None

    user_id = payload.get("user_id")
    try:
        return int(user_id) if user_id is not None else None
    except (TypeError, ValueError):
        return None
