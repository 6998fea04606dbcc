"""Health check endpoint."""

from http import HTTPStatus

from flask import Blueprint, current_app, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ..automation import get_engine
from ..extensions import db

bp = Blueprint("health", __name__)


@bp.get("/health")
def health() -> tuple[object, int]:
    """Report database reachability and whether wait resumption is polling."""
    try:
        db.session.execute(text("SELECT 1"))
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("health check could not reach the database")
        return jsonify({"status": "degraded", "database": "unavailable"}), HTTPStatus.SERVICE_UNAVAILABLE

    scheduler = get_engine().scheduler
    return (
        jsonify({"status": "ok", "database": "ok", "resumeScheduler": scheduler.is_running}),
        HTTPStatus.OK,
    )
