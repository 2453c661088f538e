import json

import pytest
from fastapi.testclient import TestClient

from potion import main
from potion.config import settings
from potion.storage.sqlalchemy_adapter import SqlAlchemyStorageAdapter

from conftest import database_url

WORKSPACE_ID = settings.DEFAULT_WORKSPACE_ID


@pytest.fixture
def client(tmp_path, monkeypatch):
    adapter = SqlAlchemyStorageAdapter(
        database_url=database_url(tmp_path / "api.db"),
        backup_dir=str(tmp_path / "backups"),
    )
    monkeypatch.setattr(main, "storage", adapter)
    with TestClient(main.app) as test_client:
        yield test_client


def create_page(client, title, parent=None):
    response = client.post(
        "/api/pages",
        json={"workspaceId": WORKSPACE_ID, "title": title, "parentPageId": parent},
    )
    assert response.status_code == 201
    return response.json()


def test_get_stats(client):
    response = client.get("/api/stats")
    assert response.status_code == 200
    data = response.json()
    assert data["workspaceCount"] == 1
    assert data["pageCount"] == 1


def test_tree_endpoint_returns_list(client):
    response = client.get(f"/api/workspaces/{WORKSPACE_ID}/tree")
    assert response.status_code == 200
    tree = response.json()
    assert isinstance(tree, list)
    assert tree[0]["title"] == "Welcome to Potion"


def test_unknown_workspace_is_404(client):
    assert client.get("/api/workspaces/nope/tree").status_code == 404


def test_page_lifecycle(client):
    parent = create_page(client, "Parent")
    child = create_page(client, "Child", parent["id"])

    response = client.patch(f"/api/pages/{child['id']}", json={"title": "Renamed", "isFavorite": True})
    assert response.status_code == 200
    assert response.json()["title"] == "Renamed"
    assert response.json()["isFavorite"] is True

    response = client.delete(f"/api/pages/{parent['id']}")
    assert response.status_code == 200
    assert set(response.json()["deleted"]) == {parent["id"], child["id"]}
    assert client.get(f"/api/pages/{child['id']}").status_code == 404


def test_patch_with_null_title_or_content_is_rejected(client):
    page = create_page(client, "Stays")

    for body in ({"title": None}, {"content": None}, {"isFavorite": None}):
        response = client.patch(f"/api/pages/{page['id']}", json=body)
        assert response.status_code == 422

    stored = client.get(f"/api/pages/{page['id']}").json()
    assert stored["title"] == "Stays"
    assert stored["content"] == page["content"]


def test_move_into_descendant_is_conflict(client):
    parent = create_page(client, "Parent")
    child = create_page(client, "Child", parent["id"])

    response = client.post(f"/api/pages/{parent['id']}/move", json={"newParentId": child["id"]})
    assert response.status_code == 409

    response = client.post(f"/api/pages/{parent['id']}/move", json={"newParentId": parent["id"]})
    assert response.status_code == 409


def test_orphan_then_delete_without_cascade(client):
    parent = create_page(client, "Parent")
    child = create_page(client, "Child", parent["id"])

    assert client.delete(f"/api/pages/{parent['id']}?cascade=false").status_code == 409
    orphaned = client.post(f"/api/pages/{parent['id']}/orphan").json()
    assert [p["id"] for p in orphaned] == [child["id"]]
    assert client.delete(f"/api/pages/{parent['id']}?cascade=false").json() == {"deleted": [parent["id"]]}
    assert client.get(f"/api/pages/{child['id']}").json()["parentPageId"] is None


def test_duplicate_page(client):
    page = create_page(client, "Original")
    response = client.post(f"/api/pages/{page['id']}/duplicate")
    assert response.status_code == 201
    assert response.json()["title"] == "Original (copy)"


def test_database_rows_and_view(client):
    response = client.post("/api/databases", json={
        "workspaceId": WORKSPACE_ID,
        "title": "Budget",
        "properties": [{"id": "amount", "name": "Amount", "type": "number"}],
    })
    assert response.status_code == 201
    database = response.json()
    page_id = database["pageId"]
    view_id = database["views"][0]["id"]

    for amount in (5, 15):
        row = client.post(f"/api/databases/{page_id}/rows", json={"values": {"amount": amount}}).json()
        assert row["values"] == {"amount": amount}

    rows = client.get(f"/api/databases/{page_id}/views/{view_id}/rows").json()
    assert sorted(r["values"]["amount"] for r in rows) == [5, 15]
    assert len(client.get(f"/api/databases/{page_id}/rows").json()) == 2


def test_export_download_and_reimport(client):
    page = create_page(client, "My Notes")

    response = client.get(f"/api/workspaces/{WORKSPACE_ID}/export")
    assert response.status_code == 200
    assert "potion-workspace-" in response.headers["content-disposition"]
    exported = response.json()
    assert exported["formatVersion"] == 1

    response = client.get(f"/api/pages/{page['id']}/export")
    assert "potion-my-notes-" in response.headers["content-disposition"]

    response = client.get(f"/api/pages/{page['id']}/markdown")
    assert response.text.startswith("# My Notes")
    assert "my-notes.md" in response.headers["content-disposition"]

    validation = client.post("/api/import/validate", content=json.dumps(exported)).json()
    assert validation["valid"] is True
    assert validation["pageCount"] == 2

    result = client.post(
        f"/api/workspaces/{WORKSPACE_ID}/import?mode=merge", content=json.dumps(exported)
    ).json()
    assert result["success"] is True
    assert result["pagesAdded"] == 0
    assert len(result["conflicts"]) == 2


def test_invalid_import_reports_errors(client):
    response = client.post(f"/api/workspaces/{WORKSPACE_ID}/import?mode=replace", content="{broken")
    assert response.status_code == 200
    result = response.json()
    assert result["success"] is False
    assert result["errors"]
    assert client.get("/api/stats").json()["pageCount"] == 1
