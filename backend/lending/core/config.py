"""
Centralized configuration module for application-wide settings.

Values are read from environment variables once at import time and cached
as module globals. Call the ``log_*_config`` helpers during startup to make
the effective configuration visible in the logs.
"""

import logging
import os
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower().strip() in ("true", "1", "yes")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(
            f"Invalid integer for {name}, using default",
            extra={"context": {"env_var": name, "value": raw, "default": default}},
        )
        return default


# ===========================
# Timezone Configuration
# ===========================


def get_app_timezone() -> ZoneInfo:
    """
    Get the application timezone from environment variable.

    Environment Variables:
        TZ: Timezone identifier (e.g., 'Europe/Berlin', 'UTC')
            Default: 'UTC'

    All timestamps are stored in UTC; APP_TZ is only used for display.
    """
    tz_name = os.getenv("TZ", "UTC")

    try:
        return ZoneInfo(tz_name)
    except Exception as e:
        logger.warning(
            f"Invalid timezone '{tz_name}' specified in TZ environment variable. "
            f"Falling back to UTC. Error: {e}"
        )
        return ZoneInfo("UTC")


APP_TZ = get_app_timezone()


def utcnow() -> datetime:
    """Timezone-aware current time in UTC. Default clock for services."""
    return datetime.now(timezone.utc)


def to_local(value: datetime) -> datetime:
    return value.astimezone(APP_TZ)


def log_timezone_config():
    logger.info(
        "Timezone configuration initialized",
        extra={
            "context": {
                "timezone": str(APP_TZ),
                "tz_env_var": os.getenv("TZ", "UTC"),
            }
        },
    )


# ===========================
# Database Configuration
# ===========================


def get_database_url() -> str:
    """
    Environment Variables:
        DATABASE_URL: SQLAlchemy URL
            Default: 'sqlite:///./lending.db'
    """
    return os.getenv("DATABASE_URL", "sqlite:///./lending.db")


# ===========================
# Reservation Configuration
# ===========================

MIN_LOAN_DAYS = 1
MAX_LOAN_DAYS = 30


def get_default_loan_days() -> int:
    """
    Environment Variables:
        DEFAULT_LOAN_DAYS: Loan length used when a request omits duration_days
            Default: 7 (clamped into [MIN_LOAN_DAYS, MAX_LOAN_DAYS])
    """
    days = _env_int("DEFAULT_LOAN_DAYS", 7)
    return max(MIN_LOAN_DAYS, min(MAX_LOAN_DAYS, days))


DEFAULT_LOAN_DAYS = get_default_loan_days()


# ===========================
# Availability Cache Configuration
# ===========================


def get_availability_cache_url() -> str:
    """
    Environment Variables:
        AVAILABILITY_CACHE_URL: 'memory://' or a redis URL
            Default: 'memory://'
    """
    return os.getenv("AVAILABILITY_CACHE_URL", "memory://")


def get_availability_cache_ttl() -> int:
    """
    Environment Variables:
        AVAILABILITY_CACHE_TTL_SECONDS: Lifetime of a cached availability answer
            Default: 300
    """
    ttl = _env_int("AVAILABILITY_CACHE_TTL_SECONDS", 300)
    if ttl <= 0:
        logger.warning(
            "AVAILABILITY_CACHE_TTL_SECONDS must be positive, using 300",
            extra={"context": {"value": ttl}},
        )
        return 300
    return ttl


AVAILABILITY_CACHE_URL = get_availability_cache_url()
AVAILABILITY_CACHE_TTL_SECONDS = get_availability_cache_ttl()


def log_cache_config():
    logger.info(
        "Availability cache configuration initialized",
        extra={
            "context": {
                "backend": AVAILABILITY_CACHE_URL.split("://", 1)[0],
                "ttl_seconds": AVAILABILITY_CACHE_TTL_SECONDS,
            }
        },
    )


# ===========================
# Overdue Sweep Job Configuration
# ===========================


def get_overdue_sweep_enabled() -> bool:
    """
    Environment Variables:
        ENABLE_OVERDUE_SWEEP_JOB: Run the periodic overdue sweep in-process
            Default: 'true'
    """
    enabled = _env_bool("ENABLE_OVERDUE_SWEEP_JOB", "true")
    if not enabled:
        logger.warning(
            "Overdue sweep job is DISABLED - reservations are only marked overdue "
            "on demand",
            extra={"context": {"environment": os.getenv("FLASK_ENV", "unknown")}},
        )
    return enabled


def get_overdue_sweep_interval() -> int:
    """
    Environment Variables:
        OVERDUE_SWEEP_INTERVAL_MINUTES: Minutes between sweeps
            Default: 15
    """
    return max(1, _env_int("OVERDUE_SWEEP_INTERVAL_MINUTES", 15))


ENABLE_OVERDUE_SWEEP_JOB = get_overdue_sweep_enabled()
OVERDUE_SWEEP_INTERVAL_MINUTES = get_overdue_sweep_interval()


def log_sweep_config():
    logger.info(
        "Overdue sweep configuration initialized",
        extra={
            "context": {
                "enabled": ENABLE_OVERDUE_SWEEP_JOB,
                "interval_minutes": OVERDUE_SWEEP_INTERVAL_MINUTES,
            }
        },
    )


# ===========================
# Health Check Configuration
# ===========================


def get_health_check_token() -> str | None:
    """
    Environment Variables:
        HEALTH_CHECK_TOKEN: Token required for detailed health checks
            Default: None (detailed health output disabled)
    """
    return os.getenv("HEALTH_CHECK_TOKEN", None)


HEALTH_CHECK_TOKEN = get_health_check_token()


def is_test_mode() -> bool:
    """True when running under pytest or with TESTING set."""
    import sys

    if _env_bool("TESTING", ""):
        return True
    if "pytest" in sys.modules:
        return True
    return bool(os.getenv("PYTEST_CURRENT_TEST"))
