"""Application factory for the Leadflow automation backend."""
from __future__ import annotations

import time

from flask import Flask
from sqlalchemy.exc import OperationalError

from .config import Config
from .crm.gateway import CrmGateway
from .extensions import TENANT_HEADER, cors, db, limiter


def create_app(
    config_class: type[Config] = Config, crm_gateway: CrmGateway | None = None
) -> Flask:
    """Create and configure the Flask application instance."""
    app = Flask(__name__)
    app.config.from_object(config_class)

    db.init_app(app)

    if cors is not None:
        allowed_origins = [
            origin.strip()
            for origin in (app.config.get("CORS_ALLOWED_ORIGINS") or "").split(",")
            if origin.strip()
        ]
        cors.init_app(
            app,
            resources={r"/api/*": {"origins": allowed_origins}},
            allow_headers=["Content-Type", "Authorization", TENANT_HEADER],
        )

    limiter.init_app(app)

    from .api.automations import bp as automations_bp
    from .api.events import bp as events_bp
    from .api.folders import bp as folders_bp
    from .api.health import bp as health_bp

    app.register_blueprint(health_bp, url_prefix="/api")
    app.register_blueprint(automations_bp, url_prefix="/api")
    app.register_blueprint(events_bp, url_prefix="/api")
    app.register_blueprint(folders_bp, url_prefix="/api")

    with app.app_context():
        # Import models to ensure they are registered with SQLAlchemy before creating tables.
        from .models import automation, runs  # noqa: F401

        _initialize_database(app)

    from . import automation as engine

    if crm_gateway is None:
        from .crm.memory import InMemoryCrmGateway

        crm_gateway = InMemoryCrmGateway()
    engine.init_app(app, crm_gateway)

    if app.config.get("ENABLE_RESUME_SCHEDULER", True):
        from .automation.scheduler import ensure_scheduler_started

        ensure_scheduler_started(app)

    return app


def _initialize_database(app: Flask) -> None:
    """Initialize the database with retry logic to handle delayed availability."""

    max_retries = int(app.config.get("DB_INIT_MAX_RETRIES", 30))
    retry_delay = float(app.config.get("DB_INIT_RETRY_DELAY", 2))

    for attempt in range(1, max_retries + 1):
        try:
            db.create_all()
            return
        except OperationalError as exc:
            if attempt >= max_retries:
                app.logger.exception("Database initialization failed after %s attempts.", attempt)
                raise

            app.logger.warning(
                "Database initialization attempt %s/%s failed: %s", attempt, max_retries, exc
            )
            time.sleep(retry_delay)


__all__ = ["Config", "create_app"]
