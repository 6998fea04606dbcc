"""Domain event ingestion endpoint."""

from __future__ import annotations

from http import HTTPStatus

from flask import Blueprint, jsonify, request

from ..automation import get_engine
from ..automation.events import DomainEvent
from ..automation.graph import TRIGGER_FILTERS
from ..extensions import TENANT_HEADER

bp = Blueprint("events", __name__)


@bp.post("/events")
def ingest_event() -> tuple[object, int]:
    payload = request.get_json(silent=True, force=True) or {}
    event_type = (payload.get("type") or "").strip()
    record_id = payload.get("recordId")

    errors = []
    if event_type not in TRIGGER_FILTERS:
        errors.append("type is not a supported event")
    if not record_id:
        errors.append("recordId is required")
    data = payload.get("payload") or {}
    if not isinstance(data, dict):
        errors.append("payload must be an object")
    if errors:
        return jsonify({"errors": errors}), HTTPStatus.BAD_REQUEST

    event = DomainEvent(
        type=event_type,
        record_id=str(record_id),
        payload=data,
        actor_id=payload.get("actorId"),
        tenant_id=(request.headers.get(TENANT_HEADER) or "").strip() or None,
    )
    matched = get_engine().dispatcher.dispatch(event)
    return jsonify({"matched": matched}), HTTPStatus.ACCEPTED
