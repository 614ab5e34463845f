from __future__ import annotations

from collections.abc import Callable

import orjson
import pytest
from fastapi.testclient import TestClient

from app.config import AppSettings
from app.web_main import create_app
from tests.helpers.recipe_fixtures import InMemoryRecipeStore, store_with_recipe


def _client(app_settings: AppSettings, store: InMemoryRecipeStore) -> TestClient:
    return TestClient(create_app(app_settings, store=store))


def _open_session(client: TestClient, recipe_id: str = "RCP-001") -> str:
    response = client.post(f"/api/recipes/{recipe_id}/sessions")
    assert response.status_code == 201
    return str(response.json()["session_id"])


def test_recipe_crud_with_filesystem_store(app_settings: AppSettings) -> None:
    client = TestClient(create_app(app_settings))

    created = client.post("/api/recipes", json={"id": "RCP-001", "name": "Yogurt"})
    duplicate = client.post("/api/recipes", json={"id": "RCP-001", "name": "Again"})
    listed = client.get("/api/recipes")
    fetched = client.get("/api/recipes/RCP-001")
    deleted = client.delete("/api/recipes/RCP-001")
    missing = client.get("/api/recipes/RCP-001")

    assert created.status_code == 201
    assert created.json()["type"] == "RECIPE"
    assert duplicate.status_code == 409
    assert listed.json()["items"] == [
        {
            "id": "RCP-001",
            "name": "Yogurt",
            "description": None,
            "has_procedure_logic": False,
        }
    ]
    assert fetched.json()["procedureLogic"] is None
    assert deleted.json() == {"status": "ok", "recipe_id": "RCP-001"}
    assert missing.status_code == 404


def test_open_session_returns_bare_root(app_settings: AppSettings) -> None:
    client = _client(app_settings, store_with_recipe())

    response = client.post("/api/recipes/RCP-001/sessions")
    payload = response.json()

    assert response.status_code == 201
    assert payload["state"] == "editing"
    assert payload["dirty"] is False
    assert payload["tree"]["id"] == "RCP-001"
    assert payload["tree"]["label"] == "Recipe"
    assert payload["tree"]["child_type"] == "PROCEDURE"
    assert payload["tree"]["children"] == []
    assert payload["levels"] == {}


def test_open_session_for_unknown_recipe(app_settings: AppSettings) -> None:
    client = _client(app_settings, InMemoryRecipeStore())

    response = client.post("/api/recipes/RCP-404/sessions")

    assert response.status_code == 404


def test_edit_and_save_workflow(app_settings: AppSettings) -> None:
    store = store_with_recipe()
    client = _client(app_settings, store)
    session_id = _open_session(client)
    base = f"/api/sessions/{session_id}"

    added = client.post(
        f"{base}/nodes", json={"parent_id": "RCP-001", "id": "PRO-1", "name": "Ferment"}
    )
    client.post(f"{base}/nodes", json={"parent_id": "RCP-001", "id": "PRO-2", "name": "Cool"})
    opened = client.post(f"{base}/levels/RCP-001")
    client.post(f"{base}/levels/RCP-001/placements", json={"child_id": "PRO-1"})
    client.post(f"{base}/levels/RCP-001/placements", json={"child_id": "PRO-2"})
    moved = client.put(f"{base}/levels/RCP-001/positions/PRO-1", json={"x": 300, "y": 160})
    connected = client.post(
        f"{base}/levels/RCP-001/connections", json={"source": "PRO-1", "target": "PRO-2"}
    )
    saved = client.post(f"{base}/save")
    saved_again = client.post(f"{base}/save")

    assert added.status_code == 201
    assert added.json()["added"]["type"] == "PROCEDURE"
    assert added.json()["dirty"] is True
    assert [item["id"] for item in opened.json()["available"]] == ["PRO-1", "PRO-2"]
    assert moved.json()["positions"]["PRO-1"] == {"x": 300.0, "y": 160.0}
    assert connected.json()["connections"] == [
        {"id": "e-PRO-1-PRO-2", "source": "PRO-1", "target": "PRO-2"}
    ]
    assert connected.json()["available"] == []
    assert saved.json() == {"status": "ok", "saved": True, "dirty": False}
    assert saved_again.json()["saved"] is False

    document = store.records["RCP-001"].procedure_logic
    assert document is not None
    assert [(edge.source, edge.target) for edge in document.workflow.edges] == [
        ("PRO-1", "PRO-2")
    ]


def test_hierarchy_violation_is_bad_request(app_settings: AppSettings) -> None:
    client = _client(app_settings, store_with_recipe())
    session_id = _open_session(client)

    response = client.post(
        f"/api/sessions/{session_id}/nodes",
        json={"parent_id": "RCP-001", "id": "PH-1", "name": "Dose", "type": "PHASE"},
    )
    state = client.get(f"/api/sessions/{session_id}").json()

    assert response.status_code == 400
    assert "accepts Procedure children" in response.json()["detail"]
    assert state["tree"]["children"] == []
    assert state["dirty"] is False


def test_canvas_errors(app_settings: AppSettings) -> None:
    client = _client(app_settings, store_with_recipe())
    session_id = _open_session(client)
    base = f"/api/sessions/{session_id}"
    client.post(f"{base}/nodes", json={"parent_id": "RCP-001", "id": "PRO-1", "name": "p"})

    unknown_level = client.post(f"{base}/levels/NOPE")
    not_placed = client.post(
        f"{base}/levels/RCP-001/connections", json={"source": "PRO-1", "target": "PRO-1"}
    )
    bad_replace = client.put(
        f"{base}/levels/RCP-001", json={"placed": ["PRO-1"], "positions": {}}
    )

    assert unknown_level.status_code == 404
    assert not_placed.status_code == 400
    assert bad_replace.status_code == 400


def test_replace_level_and_document(app_settings: AppSettings) -> None:
    client = _client(app_settings, store_with_recipe())
    session_id = _open_session(client)
    base = f"/api/sessions/{session_id}"
    client.post(f"{base}/nodes", json={"parent_id": "RCP-001", "id": "PRO-1", "name": "p"})

    replaced = client.put(
        f"{base}/levels/RCP-001",
        json={"placed": ["PRO-1"], "positions": {"PRO-1": {"x": 10, "y": 20}}},
    )
    document = client.get(f"{base}/document").json()

    assert replaced.status_code == 200
    assert replaced.json()["placed"] == ["PRO-1"]
    record = next(n for n in document["workflow"]["nodes"] if n["id"] == "PRO-1")
    assert record["parentId"] == "RCP-001"
    assert record["placed"] is True
    assert record["position"] == {"x": 10.0, "y": 20.0}
    assert document["externalElements"] == []


def test_node_path(app_settings: AppSettings) -> None:
    client = _client(app_settings, store_with_recipe())
    session_id = _open_session(client)
    base = f"/api/sessions/{session_id}"
    client.post(f"{base}/nodes", json={"parent_id": "RCP-001", "id": "PRO-1", "name": "p"})
    client.post(f"{base}/nodes", json={"parent_id": "PRO-1", "id": "UP-1", "name": "u"})

    found = client.get(f"{base}/nodes/UP-1/path")
    missing = client.get(f"{base}/nodes/UP-9/path")

    assert [item["id"] for item in found.json()["path"]] == ["RCP-001", "PRO-1", "UP-1"]
    assert missing.status_code == 404


def test_failed_save_reports_store_error(app_settings: AppSettings) -> None:
    store = store_with_recipe()
    client = _client(app_settings, store)
    session_id = _open_session(client)
    client.post(
        f"/api/sessions/{session_id}/nodes",
        json={"parent_id": "RCP-001", "id": "PRO-1", "name": "p"},
    )
    store.fail_with = RuntimeError("store offline")

    response = client.post(f"/api/sessions/{session_id}/save")
    state = client.get(f"/api/sessions/{session_id}").json()

    assert response.status_code == 502
    assert response.json()["detail"] == "store offline"
    assert state["dirty"] is True
    assert state["state"] == "editing"


def test_close_requires_confirmation_when_dirty(app_settings: AppSettings) -> None:
    client = _client(app_settings, store_with_recipe())
    session_id = _open_session(client)
    client.post(
        f"/api/sessions/{session_id}/nodes",
        json={"parent_id": "RCP-001", "id": "PRO-1", "name": "p"},
    )

    refused = client.delete(f"/api/sessions/{session_id}")
    closed = client.delete(f"/api/sessions/{session_id}", params={"confirm": "true"})
    gone = client.get(f"/api/sessions/{session_id}")

    assert refused.status_code == 409
    assert closed.json() == {"status": "closed", "session_id": session_id}
    assert gone.status_code == 404


@pytest.mark.parametrize("limit", [1, 2])
def test_session_limit(
    app_settings_factory: Callable[..., AppSettings], limit: int
) -> None:
    client = _client(app_settings_factory(max_open_sessions=limit), store_with_recipe())
    for _ in range(limit):
        _open_session(client)

    response = client.post("/api/recipes/RCP-001/sessions")

    assert response.status_code == 409


def test_open_session_tolerates_extra_roots(app_settings: AppSettings) -> None:
    client = TestClient(create_app(app_settings))
    records_dir = app_settings.editor.recipes_dir
    records_dir.mkdir(parents=True)
    (records_dir / "RCP-001.json").write_bytes(
        orjson.dumps(
            {
                "id": "RCP-001",
                "name": "Yogurt",
                "procedureLogic": {
                    "workflow": {
                        "nodes": [
                            {"id": "RCP-001", "type": "RECIPE"},
                            {"id": "OLD-ROOT", "type": "RECIPE"},
                        ],
                        "edges": [],
                    },
                    "externalElements": [],
                },
            }
        )
    )

    response = client.post("/api/recipes/RCP-001/sessions")

    assert response.status_code == 201
    assert response.json()["tree"]["children"] == []


def test_malformed_stored_record_is_unprocessable(app_settings: AppSettings) -> None:
    client = TestClient(create_app(app_settings))
    records_dir = app_settings.editor.recipes_dir
    records_dir.mkdir(parents=True)
    (records_dir / "RCP-001.json").write_bytes(
        orjson.dumps(
            {
                "id": "RCP-001",
                "name": "Yogurt",
                "procedureLogic": {"workflow": {"nodes": [{"id": "X", "type": "VESSEL"}]}},
            }
        )
    )

    response = client.post("/api/recipes/RCP-001/sessions")

    assert response.status_code == 422
    assert response.json()["detail"] == "Stored recipe record is malformed"
