"""Tests for the automation REST API."""

from __future__ import annotations

from backend.leadflow.extensions import db
from backend.leadflow.models import ExecutionRun
from backend.tests.helpers import action, chain, hot_unassigned_graph, trigger


def _create(client, name: str = "Hot leads", **fields):
    response = client.post("/api/automations", json={"name": name, **fields})
    assert response.status_code == 201, response.get_json()
    return response.get_json()


def test_automation_roundtrip(client):
    created = _create(client, description="Assign hot leads")
    assert created["isActive"] is False
    assert created["isDraft"] is True
    assert created["runCount"] == 0
    assert created["workflowGraph"] == {"nodes": [], "edges": []}

    listed = client.get("/api/automations").get_json()
    assert [item["id"] for item in listed] == [created["id"]]
    assert "workflowGraph" not in listed[0]

    graph = hot_unassigned_graph()
    updated = client.put(
        f"/api/automations/{created['id']}",
        json={"workflowGraph": graph, "isActive": True, "isDraft": False, "name": "Hot leads v2"},
    )
    assert updated.status_code == 200
    body = updated.get_json()
    assert body["name"] == "Hot leads v2"
    assert body["isActive"] is True
    assert body["isDraft"] is False
    assert body["workflowGraph"] == graph

    active = client.get("/api/automations?isActive=true").get_json()
    assert [item["id"] for item in active] == [created["id"]]
    assert client.get("/api/automations?isActive=false").get_json() == []

    detail = client.get(f"/api/automations/{created['id']}")
    assert detail.status_code == 200
    assert detail.get_json()["description"] == "Assign hot leads"

    assert client.delete(f"/api/automations/{created['id']}").status_code == 204
    assert client.get(f"/api/automations/{created['id']}").status_code == 404


def test_name_is_required_and_unique_per_tenant(client):
    assert client.post("/api/automations", json={}).status_code == 400

    _create(client, "Alpha")
    assert client.post("/api/automations", json={"name": "alpha"}).status_code == 409

    other_tenant = client.post(
        "/api/automations", json={"name": "Alpha"}, headers={"X-Tenant-Id": "tenant-b"}
    )
    assert other_tenant.status_code == 201

    beta = _create(client, "Beta")
    rename = client.put(f"/api/automations/{beta['id']}", json={"name": "ALPHA"})
    assert rename.status_code == 409


def test_automations_are_invisible_to_other_tenants(client):
    created = _create(client)
    hidden = client.get(f"/api/automations/{created['id']}", headers={"X-Tenant-Id": "tenant-b"})
    assert hidden.status_code == 404
    assert client.get("/api/automations", headers={"X-Tenant-Id": "tenant-b"}).get_json() == []


def test_graph_without_trigger_is_rejected_and_stays_inactive(client):
    no_trigger = {"nodes": [action("a", "mark_complete")], "edges": []}

    rejected = client.post("/api/automations", json={"name": "Broken", "workflowGraph": no_trigger})
    assert rejected.status_code == 400
    assert any("exactly one trigger" in error for error in rejected.get_json()["errors"])

    created = _create(client, "Draft")
    response = client.put(
        f"/api/automations/{created['id']}",
        json={"workflowGraph": no_trigger, "isActive": True},
    )
    assert response.status_code == 400
    assert any("exactly one trigger" in error for error in response.get_json()["errors"])

    activate_empty = client.put(f"/api/automations/{created['id']}", json={"isActive": True})
    assert activate_empty.status_code == 400

    detail = client.get(f"/api/automations/{created['id']}").get_json()
    assert detail["isActive"] is False
    assert detail["workflowGraph"] == {"nodes": [], "edges": []}


def test_activation_of_valid_stored_graph(client):
    created = _create(client, workflowGraph=chain(trigger(), action("done", "mark_complete")))
    response = client.put(f"/api/automations/{created['id']}", json={"isActive": True})
    assert response.status_code == 200
    assert response.get_json()["isActive"] is True


def test_test_run_on_draft_produces_one_manual_run(client, crm):
    crm.add_record("r1", temperature="HOT")
    created = _create(client, workflowGraph=hot_unassigned_graph("U1"))
    assert created["isActive"] is False

    response = client.post(f"/api/automations/{created['id']}/test", json={"recordId": "r1"})
    assert response.status_code == 200
    run = response.get_json()
    assert run["triggeredBy"] == "manual_test"
    assert run["status"] == "completed"
    assert [step["nodeId"] for step in run["steps"]] == ["trigger", "check", "hot-path", "assign", "offer"]

    detail = client.get(f"/api/automations/{created['id']}").get_json()
    assert detail["isActive"] is False
    assert detail["runCount"] == 1

    logs = client.get(f"/api/automations/{created['id']}/logs").get_json()
    assert logs["total"] == 1
    assert [log["triggeredBy"] for log in logs["logs"]] == ["manual_test"]
    assert crm.get_record("r1").assigned_to_id == "U1"


def test_test_run_validation(client, crm):
    crm.add_record("r1")
    empty = _create(client, "Empty")
    assert client.post(f"/api/automations/{empty['id']}/test", json={}).status_code == 400

    invalid = client.post(f"/api/automations/{empty['id']}/test", json={"recordId": "r1"})
    assert invalid.status_code == 400
    assert invalid.get_json()["errors"]

    valid = _create(client, "Valid", workflowGraph=chain(trigger(), action("done", "mark_complete")))
    missing = client.post(f"/api/automations/{valid['id']}/test", json={"recordId": "ghost"})
    assert missing.status_code == 404

    assert client.post("/api/automations/9999/test", json={"recordId": "r1"}).status_code == 404


def test_failed_test_run_reports_error(client, crm):
    crm.add_record("r1")
    created = _create(
        client, workflowGraph=chain(trigger(), action("status", "update_status", statusId="gone"))
    )

    run = client.post(f"/api/automations/{created['id']}/test", json={"recordId": "r1"}).get_json()
    assert run["status"] == "failed"
    assert "status gone not found" in run["errorMessage"]


def test_logs_are_paginated_and_filterable(client, crm):
    crm.add_record("r1")
    created = _create(client, workflowGraph=chain(trigger(), action("done", "mark_complete")))
    run_ids = [
        client.post(f"/api/automations/{created['id']}/test", json={"recordId": "r1"}).get_json()["id"]
        for _ in range(5)
    ]

    page = client.get(f"/api/automations/{created['id']}/logs?limit=2&offset=1").get_json()
    assert page["total"] == 5
    assert page["limit"] == 2
    assert page["offset"] == 1
    assert [log["id"] for log in page["logs"]] == [run_ids[3], run_ids[2]]

    completed = client.get(f"/api/automations/{created['id']}/logs?status=completed").get_json()
    assert completed["total"] == 5
    failed = client.get(f"/api/automations/{created['id']}/logs?status=failed").get_json()
    assert failed == {"logs": [], "total": 0, "limit": 50, "offset": 0}

    assert client.get(f"/api/automations/{created['id']}/logs?status=bogus").status_code == 400

    detail = client.get(f"/api/automations/{created['id']}/logs/{run_ids[0]}").get_json()
    assert [step["nodeId"] for step in detail["steps"]] == ["trigger", "done"]
    assert client.get(f"/api/automations/{created['id']}/logs/9999").status_code == 404


def test_delete_removes_runs(client, crm):
    crm.add_record("r1")
    created = _create(client, workflowGraph=chain(trigger(), action("done", "mark_complete")))
    client.post(f"/api/automations/{created['id']}/test", json={"recordId": "r1"})
    assert ExecutionRun.query.filter_by(automation_id=created["id"]).count() == 1

    assert client.delete(f"/api/automations/{created['id']}").status_code == 204
    db.session.expire_all()
    assert ExecutionRun.query.filter_by(automation_id=created["id"]).count() == 0


def test_duplicate_creates_inactive_draft_copy(client):
    graph = chain(trigger(), action("done", "mark_complete"))
    created = _create(client, workflowGraph=graph, isActive=True)
    assert created["isActive"] is True

    copy = client.post(f"/api/automations/{created['id']}/duplicate")
    assert copy.status_code == 201
    body = copy.get_json()
    assert body["name"] == "Hot leads (Copy)"
    assert body["isActive"] is False
    assert body["isDraft"] is True
    assert body["workflowGraph"] == graph

    second = client.post(f"/api/automations/{created['id']}/duplicate").get_json()
    assert second["name"] == "Hot leads (Copy) 2"


def test_flags_must_be_booleans(client):
    graph = chain(trigger(), action("done", "mark_complete"))

    rejected = client.post("/api/automations", json={"name": "Flags", "isActive": "yes", "workflowGraph": graph})
    assert rejected.status_code == 400
    assert rejected.get_json()["errors"] == ["isActive must be a boolean"]

    created = _create(client, "Flags", workflowGraph=graph, isActive="false")
    assert created["isActive"] is False

    response = client.put(f"/api/automations/{created['id']}", json={"isActive": "false", "isDraft": 0})
    assert response.status_code == 400
    assert response.get_json()["errors"] == ["isDraft must be a boolean"]

    activated = client.put(f"/api/automations/{created['id']}", json={"isActive": "true"})
    assert activated.get_json()["isActive"] is True
    deactivated = client.put(f"/api/automations/{created['id']}", json={"isActive": "false"})
    assert deactivated.get_json()["isActive"] is False
