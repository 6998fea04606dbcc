"""Graph builders and database shortcuts shared by the test modules."""

from __future__ import annotations

import json
from typing import Any

from backend.leadflow.extensions import db
from backend.leadflow.models import Automation, ExecutionRun


def trigger(subtype: str = "status_changed", node_id: str = "trigger", **config: Any) -> dict[str, Any]:
    return {"id": node_id, "kind": "trigger", "subtype": subtype, "config": config}


def action(node_id: str, subtype: str, **config: Any) -> dict[str, Any]:
    return {"id": node_id, "kind": "action", "subtype": subtype, "config": config}


def branch(node_id: str, name: str = "") -> dict[str, Any]:
    return {"id": node_id, "kind": "branch", "config": {"name": name}}


def condition(node_id: str, branches: list[dict[str, Any]]) -> dict[str, Any]:
    return {"id": node_id, "kind": "condition", "subtype": "if_else", "config": {"branches": branches}}


def rule(field: str, operator: str, value: Any = None, combinator: str = "AND") -> dict[str, Any]:
    return {"field": field, "operator": operator, "value": value, "combinator": combinator}


def edge(source: str, target: str, branch_id: str | None = None) -> dict[str, Any]:
    data = {"source": source, "target": target}
    if branch_id is not None:
        data["branchId"] = branch_id
    return data


def chain(trigger_node: dict[str, Any], *actions: dict[str, Any]) -> dict[str, Any]:
    """Trigger followed by the given action nodes in sequence."""

    nodes = [trigger_node, *actions]
    edges = [edge(a["id"], b["id"]) for a, b in zip(nodes, nodes[1:])]
    return {"nodes": nodes, "edges": edges}


def hot_unassigned_graph(user_id: str = "U1") -> dict[str, Any]:
    """Status change -> if hot and unassigned: assign and create a "Make Offer" task."""

    return {
        "nodes": [
            trigger("status_changed"),
            condition(
                "check",
                [
                    {
                        "id": "hot-unassigned",
                        "name": "HotUnassigned",
                        "conditions": [
                            rule("temperature", "equals", "HOT"),
                            rule("isAssigned", "is_empty", combinator="AND"),
                        ],
                    }
                ],
            ),
            branch("hot-path", "HotUnassigned"),
            branch("none-path", "None"),
            action("assign", "assign_user", userId=user_id),
            action("offer", "create_task", title="Make Offer"),
        ],
        "edges": [
            edge("trigger", "check"),
            edge("check", "hot-path", "hot-unassigned"),
            edge("check", "none-path", "none"),
            edge("hot-path", "assign"),
            edge("assign", "offer"),
        ],
    }


def create_automation(
    name: str,
    graph: dict[str, Any] | str,
    *,
    tenant_id: str = "default",
    is_active: bool = True,
) -> Automation:
    automation = Automation(
        tenant_id=tenant_id,
        name=name,
        graph_json=graph if isinstance(graph, str) else json.dumps(graph),
        is_active=is_active,
        is_draft=not is_active,
    )
    db.session.add(automation)
    db.session.commit()
    return automation


def runs_for(automation_id: int) -> list[ExecutionRun]:
    db.session.expire_all()
    return (
        ExecutionRun.query.filter_by(automation_id=automation_id)
        .order_by(ExecutionRun.id.asc())
        .all()
    )


def steps_of(run: ExecutionRun) -> list[str]:
    return [step["nodeId"] for step in json.loads(run.steps_json)]
