import logging
import os
from typing import Any, Dict, Optional

import click
from dotenv import load_dotenv
from flask import Flask, jsonify
from flask_login import LoginManager
from sqlalchemy import text

from lending.core.config import is_test_mode

# Only load from .env when DATABASE_URL is not already defined by the environment
if not os.getenv("DATABASE_URL"):
    load_dotenv()

logger = logging.getLogger(__name__)

WEAK_SECRETS = ("dev-secret-change-me", "dev-jwt-secret-change-me", "secret123")


def _init_sentry(env: str) -> None:
    sentry_dsn = os.getenv("SENTRY_DSN")
    if not sentry_dsn:
        logger.info(
            "Sentry not initialized (SENTRY_DSN not set)",
            extra={"context": {"environment": env}},
        )
        return

    import sentry_sdk
    from sentry_sdk.integrations.flask import FlaskIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=sentry_dsn,
        environment=env,
        release=os.getenv("GIT_SHA", "unknown"),
        integrations=[FlaskIntegration(), SqlalchemyIntegration()],
        traces_sample_rate=0.1,
        send_default_pii=False,
    )
    logger.info(
        "Sentry initialized",
        extra={"context": {"environment": env, "traces_sample_rate": 0.1}},
    )


def _init_metrics(app: Flask, env: str) -> None:
    # Registered before the limiter so /metrics is never rate-limited
    from prometheus_client import CollectorRegistry
    from prometheus_flask_exporter import PrometheusMetrics

    # Test apps are created per test; a private registry avoids duplicate series
    registry = None
    if app.config.get("TESTING"):
        registry = CollectorRegistry(auto_describe=True)
    metrics = PrometheusMetrics(app, registry=registry)
    try:
        metrics.info(
            "app_info",
            "Application information",
            version=os.getenv("GIT_SHA", "unknown"),
            environment=env,
        )
    except ValueError as e:
        # Metric already registered (create_app called more than once per process)
        logger.debug(
            "app_info metric already registered",
            extra={"context": {"error": str(e)}},
        )


def _init_login(app: Flask) -> None:
    from lending.core.api_utils import api_response
    from lending.core.security import user_id_from_bearer
    from lending.db.base import User
    from lending.services.container import get_services

    login_manager = LoginManager()
    login_manager.init_app(app)

    @login_manager.request_loader
    def load_user_from_request(request):
        """Resolve the caller from an ``Authorization: Bearer`` JWT."""
        user_id = user_id_from_bearer(request.headers.get("Authorization"))
        if user_id is None:
            return None
        with get_services().session_factory() as db:
            user = db.get(User, user_id)
            if user and user.is_active:
                return user
        return None

    @login_manager.unauthorized_handler
    def unauthorized():
        return api_response(False, "Authentication required", None, 401)


def _register_blueprints(app: Flask) -> None:
    from lending.controllers.admin_controller import admin_bp
    from lending.controllers.item_controller import item_bp
    from lending.controllers.progression_controller import progression_bp
    from lending.controllers.reservation_controller import reservation_bp
    from lending.controllers.subscription_controller import subscription_bp

    app.register_blueprint(reservation_bp)
    app.register_blueprint(item_bp)
    app.register_blueprint(progression_bp)
    app.register_blueprint(subscription_bp)
    app.register_blueprint(admin_bp)


def _run_overdue_sweep(app: Flask) -> None:
    """Scheduled job: move past-due reservations to overdue."""
    from lending.services.container import get_services

    with app.app_context():
        try:
            transitioned = get_services().coordinator.sweep_overdue()
        except Exception as e:
            logger.error(
                "Scheduled overdue sweep failed",
                extra={"context": {"job": "overdue_sweep", "error": str(e)}},
                exc_info=True,
            )
            return
        logger.info(
            "Scheduled overdue sweep completed",
            extra={"context": {"job": "overdue_sweep", "transitioned": transitioned}},
        )


def _start_scheduler(app: Flask) -> None:
    from apscheduler.schedulers.background import BackgroundScheduler
    from apscheduler.triggers.interval import IntervalTrigger

    from lending.core.config import OVERDUE_SWEEP_INTERVAL_MINUTES

    scheduler = BackgroundScheduler()
    scheduler.add_job(
        _run_overdue_sweep,
        args=[app],
        trigger=IntervalTrigger(minutes=OVERDUE_SWEEP_INTERVAL_MINUTES),
        id="overdue_sweep",
        name="Mark past-due reservations overdue",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    logger.info(
        "Background scheduler started",
        extra={
            "context": {
                "job_id": "overdue_sweep",
                "interval_minutes": OVERDUE_SWEEP_INTERVAL_MINUTES,
            }
        },
    )
    # Keep a reference so the scheduler is not garbage collected
    app.config["SCHEDULER"] = scheduler


def _register_cli(app: Flask) -> None:
    from lending.services.container import get_services

    @app.cli.command("init-db")
    def init_db_command():
        """Create all tables."""
        from lending.db.session import create_tables

        create_tables()
        click.echo("Database tables created")

    @app.cli.command("sweep-overdue")
    def sweep_overdue_command():
        """Run one overdue sweep now."""
        transitioned = get_services().coordinator.sweep_overdue()
        click.echo(f"{transitioned} reservation(s) marked overdue")


def create_app(
    services=None, config_overrides: Optional[Dict[str, Any]] = None
) -> Flask:
    """Application factory.

    ``services`` lets tests inject a ``LendingServices`` bound to their own
    engine; by default the services are built from DATABASE_URL.
    """
    env = os.getenv("FLASK_ENV", "development")
    is_production = env == "production"

    app = Flask(__name__)
    if is_test_mode():
        app.config["TESTING"] = True
    if config_overrides:
        app.config.update(config_overrides)

    from lending.core.config import (
        AVAILABILITY_CACHE_TTL_SECONDS,
        AVAILABILITY_CACHE_URL,
        ENABLE_OVERDUE_SWEEP_JOB,
        HEALTH_CHECK_TOKEN,
        log_cache_config,
        log_sweep_config,
        log_timezone_config,
    )
    from lending.core.logging_config import setup_logging

    setup_logging(
        app=app,
        log_level=logging.INFO if is_production else logging.DEBUG,
        use_json_format=is_production,
    )
    log_timezone_config()
    log_cache_config()
    log_sweep_config()

    _init_sentry(env)
    _init_metrics(app, env)

    app.config["SECRET_KEY"] = os.getenv("FLASK_SECRET_KEY", "dev-secret-change-me")
    app.config.setdefault("HEALTH_CHECK_TOKEN", HEALTH_CHECK_TOKEN)
    if is_production:
        secret_key = app.config["SECRET_KEY"]
        if secret_key in WEAK_SECRETS or len(secret_key) < 32:
            raise ValueError(
                "Production deployment requires strong SECRET_KEY (min 32 chars). "
                "Set FLASK_SECRET_KEY environment variable."
            )

    from lending.core.limiter_config import limiter

    app.config["RATELIMIT_STORAGE_URI"] = os.getenv("LIMITER_STORAGE_URI", "memory://")
    limiter.init_app(app)
    if app.config.get("TESTING") and os.getenv("RATE_LIMIT_ENABLED", "1") == "0":
        limiter.enabled = False
        logger.info(
            "Rate limiting disabled for testing", extra={"context": {"test_mode": True}}
        )

    if services is None:
        from lending.db.session import get_sessionmaker
        from lending.services.container import build_services

        services = build_services(
            get_sessionmaker(),
            cache_url=AVAILABILITY_CACHE_URL,
            cache_ttl_seconds=AVAILABILITY_CACHE_TTL_SECONDS,
        )

    from lending.core.api_utils import register_error_handlers, verify_health_token
    from lending.services.container import EXTENSION_KEY

    app.extensions[EXTENSION_KEY] = services

    _init_login(app)
    register_error_handlers(app)
    _register_blueprints(app)

    @app.route("/health")
    def health_check():
        """Liveness plus database check; details only with a valid health token."""
        try:
            with services.session_factory() as db:
                db.execute(text("SELECT 1"))
            db_ok = True
        except Exception as e:
            logger.error(
                "Database connection failed",
                extra={"context": {"error": str(e)}},
                exc_info=True,
            )
            db_ok = False

        body = {
            "status": "healthy" if db_ok else "unhealthy",
            "database": "connected" if db_ok else "disconnected",
        }
        if verify_health_token():
            body["details"] = {
                "environment": env,
                "pending_notifications": len(services.outbox),
                "scheduler_running": "SCHEDULER" in app.config,
            }
        return jsonify(body), (200 if db_ok else 503)

    if ENABLE_OVERDUE_SWEEP_JOB and not app.config.get("TESTING"):
        _start_scheduler(app)
    else:
        logger.info(
            "Overdue sweep job not scheduled",
            extra={
                "context": {
                    "enabled": ENABLE_OVERDUE_SWEEP_JOB,
                    "testing": bool(app.config.get("TESTING")),
                }
            },
        )

    _register_cli(app)
    return app
