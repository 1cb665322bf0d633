from __future__ import annotations

from typing import cast

from fastapi.testclient import TestClient

from fakes import ScriptedProvider, install_dispatcher
from mindhit.workers.tasks.mindmaps import handle_mindmap_generate


GRAPH = '{"core": {"label": "Empty session", "description": "Nothing visited"}, "topics": [], "connections": []}'


def _start(client: TestClient, auth: dict[str, str]) -> str:
    resp = client.post("/v1/sessions/start", headers=auth)
    assert resp.status_code == 201
    return cast(str, cast(dict[str, object], cast(dict[str, object], resp.json())["session"])["id"])


def _mindmap(resp_json: object) -> dict[str, object]:
    return cast(dict[str, object], cast(dict[str, object], resp_json)["mindmap"])


def _session_status(client: TestClient, auth: dict[str, str], sid: str) -> object:
    resp = client.get(f"/v1/sessions/{sid}", headers=auth)
    return cast(dict[str, object], cast(dict[str, object], resp.json())["session"])["session_status"]


def test_get_mindmap_before_generation_is_not_found(client: TestClient, auth: dict[str, str]) -> None:
    sid = _start(client, auth)
    resp = client.get(f"/v1/sessions/{sid}/mindmap", headers=auth)
    assert resp.status_code == 404


def test_generate_requires_stopped_session(client: TestClient, auth: dict[str, str]) -> None:
    sid = _start(client, auth)
    resp = client.post(f"/v1/sessions/{sid}/mindmap/generate", headers=auth)
    assert resp.status_code == 400
    assert cast(dict[str, object], cast(dict[str, object], resp.json())["error"])["code"] == "INVALID_STATE_TRANSITION"


def test_generate_while_processing_does_not_enqueue_again(
    client: TestClient,
    auth: dict[str, str],
    enqueued: list[tuple[str, dict[str, object]]],
) -> None:
    sid = _start(client, auth)
    assert client.post(f"/v1/sessions/{sid}/stop", headers=auth).status_code == 200

    resp = client.post(f"/v1/sessions/{sid}/mindmap/generate", headers=auth)
    assert resp.status_code == 202
    mindmap = _mindmap(resp.json())
    assert mindmap["status"] == "pending"
    assert mindmap["version"] == 1
    assert mindmap["nodes"] == []

    resp = client.post(f"/v1/sessions/{sid}/mindmap/generate", headers=auth)
    assert resp.status_code == 202
    assert [job for job, _ in enqueued] == ["mindmap:generate"]

    resp = client.get(f"/v1/sessions/{sid}/mindmap", headers=auth)
    assert resp.status_code == 200
    assert _mindmap(resp.json())["status"] == "pending"


def test_completed_mindmap_is_returned_unless_forced(
    ai_configs: None,
    client: TestClient,
    auth: dict[str, str],
    enqueued: list[tuple[str, dict[str, object]]],
) -> None:
    sid = _start(client, auth)
    assert client.post(f"/v1/sessions/{sid}/stop", headers=auth).status_code == 200
    _ = install_dispatcher(ScriptedProvider("claude", [GRAPH]))
    handle_mindmap_generate({"session_id": sid})
    assert _session_status(client, auth, sid) == "completed"

    resp = client.post(f"/v1/sessions/{sid}/mindmap/generate", headers=auth, json={"force": False})
    assert resp.status_code == 202
    mindmap = _mindmap(resp.json())
    assert mindmap["status"] == "completed"
    assert mindmap["version"] == 1
    assert len(cast(list[object], mindmap["nodes"])) == 1
    assert len(enqueued) == 1

    resp = client.post(f"/v1/sessions/{sid}/mindmap/generate", headers=auth, json={"force": True})
    assert resp.status_code == 202
    mindmap = _mindmap(resp.json())
    assert mindmap["status"] == "pending"
    assert mindmap["version"] == 2
    assert mindmap["nodes"] == []
    assert enqueued[-1] == ("mindmap:generate", {"session_id": sid})
    assert len(enqueued) == 2
    assert _session_status(client, auth, sid) == "processing"

    # The regenerated run completes the session again.
    handle_mindmap_generate({"session_id": sid})
    resp = client.get(f"/v1/sessions/{sid}/mindmap", headers=auth)
    mindmap = _mindmap(resp.json())
    assert mindmap["status"] == "completed"
    assert mindmap["version"] == 2
    assert _session_status(client, auth, sid) == "completed"


def test_failed_session_can_be_regenerated(
    client: TestClient,
    auth: dict[str, str],
    enqueued: list[tuple[str, dict[str, object]]],
) -> None:
    from mindhit.db.session import SessionLocal
    from mindhit.services import mindmap_service

    sid = _start(client, auth)
    assert client.post(f"/v1/sessions/{sid}/stop", headers=auth).status_code == 200
    with SessionLocal() as db:
        mindmap_service.mark_failed(db, sid, "provider exploded")
    assert _session_status(client, auth, sid) == "failed"

    resp = client.get(f"/v1/sessions/{sid}/mindmap", headers=auth)
    assert _mindmap(resp.json())["error_message"] == "provider exploded"

    resp = client.post(f"/v1/sessions/{sid}/mindmap/generate", headers=auth)
    assert resp.status_code == 202
    mindmap = _mindmap(resp.json())
    assert mindmap["status"] == "pending"
    assert mindmap["error_message"] is None
    assert _session_status(client, auth, sid) == "processing"
    assert len(enqueued) == 2
