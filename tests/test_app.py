import pytest
from fastapi.testclient import TestClient

import app as server
from conftest import BASE_MS


@pytest.fixture
def client(tmp_db, prefs_path, projects_dir):
    with TestClient(server.app) as client:
        yield client


def hook_event(timestamp=BASE_MS, **overrides):
    body = {
        "source_app": "demo-app",
        "session_id": "abc-123",
        "hook_event_type": "PreToolUse",
        "payload": {"tool_name": "Bash", "tool_input": {"command": f"echo {timestamp}"}},
        "timestamp": timestamp,
    }
    body.update(overrides)
    return body


class TestEvents:
    def test_post_stores_and_returns_event(self, client):
        resp = client.post("/api/events", json=hook_event(summary="Ran echo"))
        assert resp.status_code == 200
        saved = resp.json()
        assert saved["id"] == 1
        assert saved["summary"] == "Ran echo"

        recent = client.get("/api/events/recent").json()
        assert [e["id"] for e in recent] == [1]

    @pytest.mark.parametrize(
        "overrides",
        [
            {"session_id": "bad id!"},
            {"source_app": ""},
            {"hook_event_type": "Whatever"},
            {"timestamp": -5},
            {"unexpected": True},
        ],
    )
    def test_post_rejects_invalid_events(self, client, overrides):
        resp = client.post("/api/events", json=hook_event(**overrides))
        assert resp.status_code == 400

    def test_post_requires_payload(self, client):
        body = hook_event()
        del body["payload"]
        assert client.post("/api/events", json=body).status_code == 400

    def test_historical_requires_valid_before(self, client):
        assert client.get("/api/events/historical").status_code == 400
        assert client.get("/api/events/historical", params={"before": "yesterday"}).status_code == 400

    def test_historical_page(self, client):
        for ts in (BASE_MS, BASE_MS + 1000):
            client.post("/api/events", json=hook_event(ts))
        resp = client.get("/api/events/historical", params={"before": "2023-11-14T22:13:21Z"})
        body = resp.json()
        assert resp.status_code == 200
        assert [e["timestamp"] for e in body["events"]] == [BASE_MS]
        assert body["has_more"] is False

    def test_filter_options(self, client):
        client.post("/api/events", json=hook_event())
        assert client.get("/api/events/filter-options").json() == {
            "source_apps": ["demo-app"],
            "session_ids": ["abc-123"],
            "hook_event_types": ["PreToolUse"],
        }


class TestGroupedEvents:
    def test_groups_recent_events(self, client):
        for i in range(3):
            client.post("/api/events", json=hook_event(BASE_MS + i * 1000))
        client.post("/api/events", json=hook_event(BASE_MS + 60_000))

        body = client.get("/api/events/grouped").json()

        isolated, group = body["events"]
        assert "isGroup" not in isolated
        assert group["isGroup"] is True
        assert group["groupMeta"]["count"] == 3
        assert group["groupMeta"]["timeRange"] == [BASE_MS, BASE_MS + 2000]
        assert body["stats"]["totalEvents"] == 4
        assert body["stats"]["groupedCount"] == 1
        assert body["animations"][str(isolated["id"])] == "enter"

    def test_raw_events_animate_once(self, client):
        client.post("/api/events", json=hook_event())
        assert client.get("/api/events/grouped").json()["animations"] == {"1": "enter"}
        assert client.get("/api/events/grouped").json()["animations"] == {}

    def test_respects_disabled_grouping(self, client):
        client.put("/api/preferences/grouping", json={"enabled": False})
        for i in range(3):
            client.post("/api/events", json=hook_event(BASE_MS + i))
        body = client.get("/api/events/grouped").json()
        assert len(body["events"]) == 3
        assert body["stats"]["groupedCount"] == 0


class TestUsage:
    def test_blocks_without_transcripts(self, client):
        assert client.get("/api/usage/blocks").json() == {
            "success": True, "data": [], "error": None, "message": None,
        }

    def test_live_without_active_block(self, client):
        body = client.get("/api/usage/live").json()
        assert body["success"] is True
        assert body["data"] is None
        assert body["message"] == "No active session block"

    def test_invalid_token_limit(self, client):
        assert client.get("/api/usage/blocks", params={"tokenLimit": "lots"}).status_code == 400

    def test_daily_without_transcripts(self, client):
        assert client.get("/api/usage/daily", params={"breakdown": "true"}).json()["data"] == []


class TestPreferences:
    def test_defaults(self, client):
        body = client.get("/api/preferences/grouping").json()
        assert body["timeWindow"] == 10000
        assert body["minEventsToGroup"] == 2

    def test_put_clamps_time_window_and_persists(self, client, prefs_path):
        resp = client.put("/api/preferences/grouping", json={"timeWindow": 99999, "maxGroupSize": 5})
        assert resp.json()["timeWindow"] == 15000
        assert client.get("/api/preferences/grouping").json()["maxGroupSize"] == 5
        assert prefs_path.exists()

    def test_presets_and_reset(self, client):
        assert client.post("/api/preferences/grouping/preset/aggressive").json()["maxGroupSize"] == 50
        assert client.post("/api/preferences/grouping/preset/extreme").status_code == 404
        assert client.post("/api/preferences/grouping/reset").json()["maxGroupSize"] == 20


def test_stream_sends_initial_events(client):
    client.post("/api/events", json=hook_event())
    with client.websocket_connect("/stream") as websocket:
        message = websocket.receive_json()
    assert message["type"] == "initial"
    assert [e["id"] for e in message["data"]] == [1]
