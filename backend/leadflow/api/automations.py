"""REST API endpoints for managing, testing and inspecting automations."""

from __future__ import annotations

import json
from http import HTTPStatus
from typing import Any

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import func

from ..automation import get_engine
from ..automation.errors import ValidationError
from ..automation.graph import load_graph
from ..crm.gateway import EntityNotFoundError
from ..extensions import TENANT_HEADER, db, limiter
from ..models.automation import EMPTY_GRAPH_JSON, Automation, AutomationFolder
from ..models.runs import ExecutionRun, RunStatus
from ..utils.clock import isoformat

bp = Blueprint("automations", __name__)

MAX_GRAPH_BYTES = 500_000
MAX_LOG_PAGE = 200
DEFAULT_LOG_PAGE = 50


def _tenant_id() -> str:
    tenant = (request.headers.get(TENANT_HEADER) or "").strip()
    return tenant or current_app.config.get("DEFAULT_TENANT_ID", "default")


def _get_automation_or_404(automation_id: int) -> Automation | None:
    return Automation.query.filter_by(id=automation_id, tenant_id=_tenant_id()).first()


def _not_found() -> tuple[object, int]:
    return jsonify({"error": "automation not found"}), HTTPStatus.NOT_FOUND


def _serialize_automation(automation: Automation, *, include_graph: bool = True) -> dict[str, Any]:
    """Return a JSON serialisable representation of an automation."""

    data: dict[str, Any] = {
        "id": automation.id,
        "name": automation.name,
        "description": automation.description,
        "folderId": automation.folder_id,
        "isActive": automation.is_active,
        "isDraft": automation.is_draft,
        "runCount": automation.run_count,
        "lastRunAt": isoformat(automation.last_run_at),
        "createdAt": isoformat(automation.created_at),
        "updatedAt": isoformat(automation.updated_at),
    }
    if include_graph:
        try:
            data["workflowGraph"] = json.loads(automation.graph_json)
        except (TypeError, ValueError):
            data["workflowGraph"] = {}
    return data


def _serialize_run(run: ExecutionRun, *, include_steps: bool = False) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": run.id,
        "automationId": run.automation_id,
        "recordId": run.record_id,
        "triggeredBy": run.triggered_by,
        "status": run.status,
        "hops": run.hops,
        "startedAt": isoformat(run.started_at),
        "completedAt": isoformat(run.completed_at),
        "resumeAt": isoformat(run.resume_at),
        "errorMessage": run.error_message,
    }
    if include_steps:
        try:
            data["steps"] = json.loads(run.steps_json or "[]")
        except (TypeError, ValueError):
            data["steps"] = []
    return data


def _normalize_graph(value: Any) -> tuple[str, list[str]]:
    """Serialise and validate a submitted graph, returning errors if present."""

    if isinstance(value, str):
        graph_text = value
    else:
        try:
            graph_text = json.dumps(value)
        except (TypeError, ValueError):
            return "", ["workflowGraph must be serialisable"]

    if len(graph_text.encode("utf-8")) > MAX_GRAPH_BYTES:
        return "", ["workflowGraph exceeds the maximum size"]

    try:
        load_graph(graph_text)
    except ValidationError as exc:
        return "", exc.errors
    return graph_text, []


def _graph_errors(graph_text: str) -> list[str]:
    try:
        load_graph(graph_text)
    except ValidationError as exc:
        return exc.errors
    return []


def _is_name_unique(name: str, automation_id: int | None = None) -> bool:
    """Check whether the automation name is unique within the tenant."""

    query = Automation.query.filter(
        Automation.tenant_id == _tenant_id(),
        func.lower(Automation.name) == name.lower(),
    )
    if automation_id is not None:
        query = query.filter(Automation.id != automation_id)
    return not db.session.query(query.exists()).scalar()


def _as_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in {"true", "false"}:
        return value.lower() == "true"
    return None


def _read_flags(payload: dict[str, Any]) -> tuple[dict[str, bool], list[str]]:
    """Parse the optional isActive/isDraft fields, rejecting anything that is not a boolean."""

    flags: dict[str, bool] = {}
    errors = []
    for key in ("isActive", "isDraft"):
        if payload.get(key) is None:
            continue
        value = _as_bool(payload[key])
        if value is None:
            errors.append(f"{key} must be a boolean")
        else:
            flags[key] = value
    return flags, errors


def _resolve_folder(value: Any) -> tuple[int | None, list[str]]:
    if value in (None, ""):
        return None, []
    folder = None
    if isinstance(value, int) and not isinstance(value, bool):
        folder = AutomationFolder.query.filter_by(id=value, tenant_id=_tenant_id()).first()
    if folder is None:
        return None, ["folder not found"]
    return folder.id, []


@bp.post("/automations")
def create_automation() -> tuple[object, int]:
    payload = request.get_json(silent=True, force=True) or {}
    name = (payload.get("name") or "").strip()

    if not name:
        return jsonify({"error": "name is required"}), HTTPStatus.BAD_REQUEST

    if not _is_name_unique(name):
        return jsonify({"error": "an automation with this name already exists"}), HTTPStatus.CONFLICT

    flags, errors = _read_flags(payload)
    folder_id, folder_errors = _resolve_folder(payload.get("folderId"))
    errors.extend(folder_errors)
    if errors:
        return jsonify({"errors": errors}), HTTPStatus.BAD_REQUEST

    graph_text = EMPTY_GRAPH_JSON
    graph = payload.get("workflowGraph")
    if graph is not None:
        graph_text, errors = _normalize_graph(graph)
        if errors:
            return jsonify({"errors": errors}), HTTPStatus.BAD_REQUEST

    is_active = flags.get("isActive", False)
    if is_active and graph is None:
        return jsonify({"errors": _graph_errors(graph_text)}), HTTPStatus.BAD_REQUEST

    automation = Automation(
        tenant_id=_tenant_id(),
        name=name,
        description=(payload.get("description") or "").strip() or None,
        folder_id=folder_id,
        graph_json=graph_text,
        is_active=is_active,
        is_draft=flags.get("isDraft", not is_active),
    )
    db.session.add(automation)
    db.session.commit()

    return jsonify(_serialize_automation(automation)), HTTPStatus.CREATED


@bp.get("/automations")
def list_automations() -> tuple[object, int]:
    query = Automation.query.filter(Automation.tenant_id == _tenant_id())
    is_active = _as_bool(request.args.get("isActive"))
    if is_active is not None:
        query = query.filter(Automation.is_active.is_(is_active))
    folder_filter = request.args.get("folderId")
    if folder_filter == "null":
        query = query.filter(Automation.folder_id.is_(None))
    elif folder_filter:
        if not folder_filter.isdigit():
            return jsonify({"error": "folderId must be a folder id or null"}), HTTPStatus.BAD_REQUEST
        query = query.filter(Automation.folder_id == int(folder_filter))
    automations = query.order_by(Automation.created_at.desc(), Automation.id.desc()).all()
    return (
        jsonify([_serialize_automation(item, include_graph=False) for item in automations]),
        HTTPStatus.OK,
    )


@bp.get("/automations/<int:automation_id>")
def get_automation(automation_id: int) -> tuple[object, int]:
    automation = _get_automation_or_404(automation_id)
    if automation is None:
        return _not_found()
    return jsonify(_serialize_automation(automation)), HTTPStatus.OK


@bp.put("/automations/<int:automation_id>")
def update_automation(automation_id: int) -> tuple[object, int]:
    automation = _get_automation_or_404(automation_id)
    if automation is None:
        return _not_found()
    payload = request.get_json(silent=True, force=True) or {}

    name = payload.get("name")
    if name is not None:
        name = str(name).strip()
        if not name:
            return jsonify({"error": "name must not be empty"}), HTTPStatus.BAD_REQUEST
        if not _is_name_unique(name, automation_id):
            return jsonify({"error": "an automation with this name already exists"}), HTTPStatus.CONFLICT

    flags, errors = _read_flags(payload)
    folder_id, folder_errors = _resolve_folder(payload.get("folderId"))
    errors.extend(folder_errors)
    if errors:
        return jsonify({"errors": errors}), HTTPStatus.BAD_REQUEST

    graph_text = None
    if "workflowGraph" in payload:
        graph_text, errors = _normalize_graph(payload["workflowGraph"])
        if errors:
            return jsonify({"errors": errors}), HTTPStatus.BAD_REQUEST

    is_active = flags.get("isActive")
    if is_active is not None:
        if is_active and graph_text is None:
            errors = _graph_errors(automation.graph_json)
            if errors:
                return jsonify({"errors": errors}), HTTPStatus.BAD_REQUEST

    if name is not None:
        automation.name = name
    if "description" in payload:
        automation.description = (payload.get("description") or "").strip() or None
    if "folderId" in payload:
        automation.folder_id = folder_id
    if graph_text is not None:
        automation.graph_json = graph_text
    if is_active is not None:
        automation.is_active = is_active
    if "isDraft" in flags:
        automation.is_draft = flags["isDraft"]
    db.session.commit()

    return jsonify(_serialize_automation(automation)), HTTPStatus.OK


@bp.delete("/automations/<int:automation_id>")
def delete_automation(automation_id: int) -> tuple[object, int]:
    automation = _get_automation_or_404(automation_id)
    if automation is None:
        return _not_found()
    db.session.delete(automation)
    db.session.commit()
    return "", HTTPStatus.NO_CONTENT


@bp.post("/automations/<int:automation_id>/duplicate")
def duplicate_automation(automation_id: int) -> tuple[object, int]:
    source = _get_automation_or_404(automation_id)
    if source is None:
        return _not_found()

    base = f"{source.name} (Copy)"
    name = base
    suffix = 2
    while not _is_name_unique(name):
        name = f"{base} {suffix}"
        suffix += 1

    copy = Automation(
        tenant_id=source.tenant_id,
        name=name,
        description=source.description,
        folder_id=source.folder_id,
        graph_json=source.graph_json,
        is_active=False,
        is_draft=True,
    )
    db.session.add(copy)
    db.session.commit()
    return jsonify(_serialize_automation(copy)), HTTPStatus.CREATED


@bp.post("/automations/<int:automation_id>/test")
@limiter.limit("10 per minute")
def test_automation(automation_id: int) -> tuple[object, int]:
    automation = _get_automation_or_404(automation_id)
    if automation is None:
        return _not_found()

    payload = request.get_json(silent=True, force=True) or {}
    record_id = payload.get("recordId")
    if not record_id:
        return jsonify({"error": "recordId is required"}), HTTPStatus.BAD_REQUEST

    try:
        run = get_engine().test_runner.run(automation, str(record_id))
    except ValidationError as exc:
        return jsonify({"errors": exc.errors}), HTTPStatus.BAD_REQUEST
    except EntityNotFoundError as exc:
        return jsonify({"error": str(exc)}), HTTPStatus.NOT_FOUND

    return jsonify(_serialize_run(run, include_steps=True)), HTTPStatus.OK


@bp.get("/automations/<int:automation_id>/logs")
def list_logs(automation_id: int) -> tuple[object, int]:
    automation = _get_automation_or_404(automation_id)
    if automation is None:
        return _not_found()

    limit = request.args.get("limit", type=int) or DEFAULT_LOG_PAGE
    limit = max(1, min(limit, MAX_LOG_PAGE))
    offset = max(0, request.args.get("offset", type=int) or 0)
    status = request.args.get("status") or None
    if status is not None and status not in RunStatus.ALL:
        return jsonify({"error": "invalid status"}), HTTPStatus.BAD_REQUEST

    runs, total = get_engine().execution_log.list_runs(
        automation.id, limit=limit, offset=offset, status=status
    )
    return (
        jsonify(
            {
                "logs": [_serialize_run(run) for run in runs],
                "total": total,
                "limit": limit,
                "offset": offset,
            }
        ),
        HTTPStatus.OK,
    )


def _get_run(automation_id: int, run_id: int) -> ExecutionRun | None:
    automation = _get_automation_or_404(automation_id)
    if automation is None:
        return None
    return ExecutionRun.query.filter_by(id=run_id, automation_id=automation.id).first()


@bp.get("/automations/<int:automation_id>/logs/<int:run_id>")
def get_log(automation_id: int, run_id: int) -> tuple[object, int]:
    run = _get_run(automation_id, run_id)
    if run is None:
        return jsonify({"error": "run not found"}), HTTPStatus.NOT_FOUND
    return jsonify(_serialize_run(run, include_steps=True)), HTTPStatus.OK


@bp.post("/automations/<int:automation_id>/logs/<int:run_id>/cancel")
def cancel_run(automation_id: int, run_id: int) -> tuple[object, int]:
    run = _get_run(automation_id, run_id)
    if run is None:
        return jsonify({"error": "run not found"}), HTTPStatus.NOT_FOUND
    if not get_engine().execution_log.cancel(run.id):
        return jsonify({"error": "only suspended runs can be cancelled"}), HTTPStatus.CONFLICT
    run = db.session.get(ExecutionRun, run_id)
    return jsonify(_serialize_run(run)), HTTPStatus.OK
