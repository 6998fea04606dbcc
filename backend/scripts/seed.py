"""Seed the database with example automations."""
from __future__ import annotations

import json
import pathlib
import sys

ROOT = pathlib.Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from backend.leadflow import Config, create_app
from backend.leadflow.extensions import db
from backend.leadflow.models.automation import Automation

HOT_LEAD_NAME = "Hot Lead Follow-up"
REMINDER_NAME = "Offer Reminder"


def _hot_lead_graph(owner_id: str) -> dict[str, object]:
    """Assign hot, unassigned leads and schedule an offer call when their status changes."""

    return {
        "nodes": [
            {"id": "trigger", "kind": "trigger", "subtype": "status_changed", "config": {}},
            {
                "id": "check",
                "kind": "condition",
                "subtype": "if_else",
                "config": {
                    "branches": [
                        {
                            "id": "hot-unassigned",
                            "name": "Hot and unassigned",
                            "conditions": [
                                {"field": "temperature", "operator": "equals", "value": "HOT"},
                                {
                                    "field": "isAssigned",
                                    "operator": "is_empty",
                                    "combinator": "AND",
                                },
                            ],
                        }
                    ]
                },
            },
            {"id": "hot-path", "kind": "branch", "config": {"name": "Hot and unassigned"}},
            {"id": "none-path", "kind": "branch", "config": {"name": "None"}},
            {"id": "assign", "kind": "action", "subtype": "assign_user", "config": {"userId": owner_id}},
            {
                "id": "offer-task",
                "kind": "action",
                "subtype": "create_task",
                "config": {
                    "title": "Make Offer",
                    "priority": "HIGH",
                    "assignedToId": owner_id,
                    "dueDaysFromNow": 1,
                    "dueTime": "09:00",
                    "skipWeekends": True,
                },
            },
        ],
        "edges": [
            {"source": "trigger", "target": "check"},
            {"source": "check", "target": "hot-path", "branchId": "hot-unassigned"},
            {"source": "check", "target": "none-path", "branchId": "none"},
            {"source": "hot-path", "target": "assign"},
            {"source": "assign", "target": "offer-task"},
        ],
    }


def _reminder_graph(owner_id: str) -> dict[str, object]:
    return {
        "nodes": [
            {"id": "trigger", "kind": "trigger", "subtype": "task_created", "config": {}},
            {"id": "wait", "kind": "action", "subtype": "wait", "config": {"duration": 1, "unit": "days"}},
            {
                "id": "notify",
                "kind": "action",
                "subtype": "send_notification",
                "config": {
                    "userId": owner_id,
                    "title": "Follow up",
                    "message": "An offer task was created yesterday.",
                },
            },
        ],
        "edges": [
            {"source": "trigger", "target": "wait"},
            {"source": "wait", "target": "notify"},
        ],
    }


def _ensure_automation(tenant_id: str, name: str, graph: dict[str, object]) -> tuple[bool, bool]:
    graph_json = json.dumps(graph)
    automation = Automation.query.filter_by(tenant_id=tenant_id, name=name).first()
    if automation is None:
        db.session.add(
            Automation(
                tenant_id=tenant_id,
                name=name,
                graph_json=graph_json,
                is_active=True,
                is_draft=False,
            )
        )
        return True, False
    if automation.graph_json != graph_json:
        automation.graph_json = graph_json
        return False, True
    return False, False


def main() -> None:
    app = create_app()
    owner_id = sys.argv[1] if len(sys.argv) > 1 else "owner"
    with app.app_context():
        tenant_id = app.config.get("DEFAULT_TENANT_ID", Config.DEFAULT_TENANT_ID)
        created = updated = 0
        for name, graph in (
            (HOT_LEAD_NAME, _hot_lead_graph(owner_id)),
            (REMINDER_NAME, _reminder_graph(owner_id)),
        ):
            was_created, was_updated = _ensure_automation(tenant_id, name, graph)
            created += int(was_created)
            updated += int(was_updated)

        db.session.commit()

        print(
            "Seed completed",
            f"automations created={created}",
            f"automations updated={updated}",
        )


if __name__ == "__main__":
    main()
