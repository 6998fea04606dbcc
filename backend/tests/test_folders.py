"""Tests for the automation folder API."""

from __future__ import annotations


def _folder(client, name: str = "Follow-ups", **fields):
    response = client.post("/api/automation-folders", json={"name": name, **fields})
    assert response.status_code == 201, response.get_json()
    return response.get_json()


def _automation(client, name: str, **fields):
    response = client.post("/api/automations", json={"name": name, **fields})
    assert response.status_code == 201, response.get_json()
    return response.get_json()


def test_folder_roundtrip(client):
    first = _folder(client, description="Lead nurturing")
    second = _folder(client, "Assignments", color="#ff0000")
    assert first["color"] == "#6366f1"
    assert (first["order"], second["order"]) == (0, 1)
    assert first["automationCount"] == 0

    listed = client.get("/api/automation-folders").get_json()
    assert [folder["name"] for folder in listed] == ["Follow-ups", "Assignments"]

    updated = client.put(f"/api/automation-folders/{second['id']}", json={"order": -1, "name": "Routing"})
    assert updated.status_code == 200
    assert updated.get_json()["name"] == "Routing"

    listed = client.get("/api/automation-folders").get_json()
    assert [folder["name"] for folder in listed] == ["Routing", "Follow-ups"]

    detail = client.get(f"/api/automation-folders/{first['id']}")
    assert detail.status_code == 200
    assert detail.get_json()["description"] == "Lead nurturing"


def test_folder_names_are_required_and_unique(client):
    assert client.post("/api/automation-folders", json={"name": "  "}).status_code == 400
    _folder(client, "Hot")
    assert client.post("/api/automation-folders", json={"name": "hot"}).status_code == 409
    other = client.post(
        "/api/automation-folders", json={"name": "Hot"}, headers={"X-Tenant-Id": "tenant-b"}
    )
    assert other.status_code == 201

    cold = _folder(client, "Cold")
    assert client.put(f"/api/automation-folders/{cold['id']}", json={"name": "HOT"}).status_code == 409
    assert client.put(f"/api/automation-folders/{cold['id']}", json={"order": "first"}).status_code == 400
    assert client.get(f"/api/automation-folders/{cold['id']}").get_json()["name"] == "Cold"


def test_automations_are_filed_and_filtered_by_folder(client):
    folder = _folder(client)
    filed = _automation(client, "Filed", folderId=folder["id"])
    loose = _automation(client, "Loose")
    assert filed["folderId"] == folder["id"]
    assert loose["folderId"] is None

    in_folder = client.get(f"/api/automations?folderId={folder['id']}").get_json()
    assert [item["id"] for item in in_folder] == [filed["id"]]
    uncategorised = client.get("/api/automations?folderId=null").get_json()
    assert [item["id"] for item in uncategorised] == [loose["id"]]
    assert client.get("/api/automations?folderId=abc").status_code == 400

    summary = client.get(f"/api/automation-folders/{folder['id']}").get_json()
    assert summary["automationCount"] == 1
    assert [item["name"] for item in summary["automations"]] == ["Filed"]

    moved = client.put(f"/api/automations/{loose['id']}", json={"folderId": folder["id"]})
    assert moved.get_json()["folderId"] == folder["id"]
    unfiled = client.put(f"/api/automations/{filed['id']}", json={"folderId": None})
    assert unfiled.get_json()["folderId"] is None

    copy = client.post(f"/api/automations/{loose['id']}/duplicate").get_json()
    assert copy["folderId"] == folder["id"]


def test_unknown_or_foreign_folder_is_rejected(client):
    foreign = client.post(
        "/api/automation-folders", json={"name": "Theirs"}, headers={"X-Tenant-Id": "tenant-b"}
    ).get_json()

    missing = client.post("/api/automations", json={"name": "A", "folderId": 9999})
    assert missing.status_code == 400
    assert missing.get_json()["errors"] == ["folder not found"]
    assert client.post("/api/automations", json={"name": "B", "folderId": foreign["id"]}).status_code == 400
    assert client.get(f"/api/automation-folders/{foreign['id']}").status_code == 404


def test_deleting_folder_keeps_its_automations(client):
    folder = _folder(client)
    filed = _automation(client, "Filed", folderId=folder["id"])

    assert client.delete(f"/api/automation-folders/{folder['id']}").status_code == 204
    assert client.get(f"/api/automation-folders/{folder['id']}").status_code == 404

    detail = client.get(f"/api/automations/{filed['id']}")
    assert detail.status_code == 200
    assert detail.get_json()["folderId"] is None
