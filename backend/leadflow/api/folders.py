"""REST API endpoints for organising automations into folders."""

from __future__ import annotations

from http import HTTPStatus
from typing import Any

from flask import Blueprint, jsonify, request
from sqlalchemy import func, update

from ..extensions import db
from ..models.automation import DEFAULT_FOLDER_COLOR, Automation, AutomationFolder
from ..utils.clock import isoformat
from .automations import _tenant_id

bp = Blueprint("folders", __name__)


def _get_folder(folder_id: int) -> AutomationFolder | None:
    return AutomationFolder.query.filter_by(id=folder_id, tenant_id=_tenant_id()).first()


def _not_found() -> tuple[object, int]:
    return jsonify({"error": "folder not found"}), HTTPStatus.NOT_FOUND


def _serialize_folder(folder: AutomationFolder) -> dict[str, Any]:
    return {
        "id": folder.id,
        "name": folder.name,
        "description": folder.description,
        "color": folder.color,
        "order": folder.sort_order,
        "automationCount": len(folder.automations),
        "automations": [
            {
                "id": automation.id,
                "name": automation.name,
                "isActive": automation.is_active,
                "isDraft": automation.is_draft,
                "runCount": automation.run_count,
                "lastRunAt": isoformat(automation.last_run_at),
            }
            for automation in folder.automations
        ],
        "createdAt": isoformat(folder.created_at),
        "updatedAt": isoformat(folder.updated_at),
    }


def _is_name_unique(name: str, folder_id: int | None = None) -> bool:
    query = AutomationFolder.query.filter(
        AutomationFolder.tenant_id == _tenant_id(),
        func.lower(AutomationFolder.name) == name.lower(),
    )
    if folder_id is not None:
        query = query.filter(AutomationFolder.id != folder_id)
    return not db.session.query(query.exists()).scalar()


@bp.get("/automation-folders")
def list_folders() -> tuple[object, int]:
    folders = (
        AutomationFolder.query.filter(AutomationFolder.tenant_id == _tenant_id())
        .order_by(AutomationFolder.sort_order.asc(), AutomationFolder.id.asc())
        .all()
    )
    return jsonify([_serialize_folder(folder) for folder in folders]), HTTPStatus.OK


@bp.post("/automation-folders")
def create_folder() -> tuple[object, int]:
    payload = request.get_json(silent=True, force=True) or {}
    name = payload.get("name")
    if not isinstance(name, str) or not name.strip():
        return jsonify({"error": "name is required"}), HTTPStatus.BAD_REQUEST
    name = name.strip()
    if not _is_name_unique(name):
        return jsonify({"error": "a folder with this name already exists"}), HTTPStatus.CONFLICT

    highest = (
        db.session.query(func.max(AutomationFolder.sort_order))
        .filter(AutomationFolder.tenant_id == _tenant_id())
        .scalar()
    )
    folder = AutomationFolder(
        tenant_id=_tenant_id(),
        name=name,
        description=(payload.get("description") or "").strip() or None,
        color=payload.get("color") or DEFAULT_FOLDER_COLOR,
        sort_order=0 if highest is None else highest + 1,
    )
    db.session.add(folder)
    db.session.commit()
    return jsonify(_serialize_folder(folder)), HTTPStatus.CREATED


@bp.get("/automation-folders/<int:folder_id>")
def get_folder(folder_id: int) -> tuple[object, int]:
    folder = _get_folder(folder_id)
    if folder is None:
        return _not_found()
    return jsonify(_serialize_folder(folder)), HTTPStatus.OK


@bp.put("/automation-folders/<int:folder_id>")
def update_folder(folder_id: int) -> tuple[object, int]:
    folder = _get_folder(folder_id)
    if folder is None:
        return _not_found()
    payload = request.get_json(silent=True, force=True) or {}

    name = payload.get("name")
    if name is not None:
        if not isinstance(name, str) or not name.strip():
            return jsonify({"error": "name must not be empty"}), HTTPStatus.BAD_REQUEST
        name = name.strip()
        if not _is_name_unique(name, folder_id):
            return jsonify({"error": "a folder with this name already exists"}), HTTPStatus.CONFLICT

    order = payload.get("order")
    if order is not None and (isinstance(order, bool) or not isinstance(order, int)):
        return jsonify({"error": "order must be an integer"}), HTTPStatus.BAD_REQUEST

    if name is not None:
        folder.name = name
    if order is not None:
        folder.sort_order = order
    if "description" in payload:
        folder.description = (payload.get("description") or "").strip() or None
    if payload.get("color"):
        folder.color = payload["color"]
    db.session.commit()
    return jsonify(_serialize_folder(folder)), HTTPStatus.OK


@bp.delete("/automation-folders/<int:folder_id>")
def delete_folder(folder_id: int) -> tuple[object, int]:
    """Delete a folder; its automations become uncategorised."""
    folder = _get_folder(folder_id)
    if folder is None:
        return _not_found()
    db.session.execute(
        update(Automation)
        .where(Automation.folder_id == folder.id)
        .values(folder_id=None)
        .execution_options(synchronize_session=False)
    )
    db.session.delete(folder)
    db.session.commit()
    return "", HTTPStatus.NO_CONTENT
