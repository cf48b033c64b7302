import json
import re
import time

import pytest
from fastapi.testclient import TestClient

from wt.analysis.config import PipelineConfig
from wt.runtime import TopologyRuntime
from wt.server import create_app

from helpers import FakeScanner, HangingScanner, three_ap_batches, write_recording


def wait_for(predicate, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return False


@pytest.fixture
def runtime():
    return TopologyRuntime(FakeScanner(three_ap_batches(12)), PipelineConfig(scan_interval_ms=300))


@pytest.fixture
def client(runtime):
    with TestClient(create_app(runtime)) as c:
        yield c


def test_health(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["ok"] is True
    assert body["mode"] == "live"
    assert body["scanIntervalMs"] == 300
    assert body["recording"]["enabled"] is False
    assert body["replay"]["active"] is False


def test_get_and_put_config(client):
    assert client.get("/api/config").json()["windowSize"] == 30

    resp = client.put("/api/config", json={"windowSize": 12, "edgeThreshold": 0.7})
    assert resp.status_code == 200
    assert resp.json()["windowSize"] == 12
    assert resp.json()["edgeThreshold"] == 0.7
    assert client.get("/api/config").json()["windowSize"] == 12


def test_put_config_out_of_bounds(client):
    resp = client.put("/api/config", json={"windowSize": 500})
    assert resp.status_code == 400
    assert resp.json() == {"error": "windowSize must be between 8 and 240"}
    assert client.get("/api/config").json()["windowSize"] == 30


def test_put_config_malformed(client):
    resp = client.put("/api/config", json={"windowSize": "big"})
    assert resp.status_code == 400
    assert "windowSize" in resp.json()["error"]


def test_recording_endpoints(client, tmp_path):
    target = tmp_path / "live.ndjson"
    resp = client.post("/api/record/start", json={"path": str(target)})
    assert resp.status_code == 200
    assert resp.json()["enabled"] is True
    assert client.get("/api/record/status").json()["path"] == str(target)

    assert wait_for(lambda: client.get("/api/record/status").json()["count"] >= 1)
    assert client.post("/api/record/stop").json()["enabled"] is False

    first = json.loads(target.read_text().splitlines()[0])
    assert first["type"] == "snapshot"
    assert first["meta"]["recording"] is True


def test_recording_default_path(client, tmp_path, monkeypatch):
    monkeypatch.setenv("RECORDINGS_DIR", str(tmp_path))
    resp = client.post("/api/record/start")
    assert resp.status_code == 200
    assert resp.json()["path"].startswith(str(tmp_path))
    client.post("/api/record/stop")


def test_replay_endpoints(client, runtime, tmp_path):
    path = write_recording(tmp_path / "rec.ndjson", [1000, 2000, 3000])
    resp = client.post("/api/replay/start", json={"path": str(path), "speed": 2, "loop": True})
    assert resp.status_code == 200
    assert resp.json()["active"] is True
    assert resp.json()["total"] == 3
    assert client.get("/api/config").json()["mode"] == "replay"
    assert runtime.live.paused

    assert client.get("/api/replay/status").json()["speed"] == 2
    resp = client.post("/api/replay/stop")
    assert resp.json()["active"] is False
    assert client.get("/api/health").json()["mode"] == "live"
    assert not runtime.live.paused


def test_replay_missing_file(client, tmp_path):
    resp = client.post("/api/replay/start", json={"path": str(tmp_path / "none.ndjson")})
    assert resp.status_code == 404
    assert "not found" in resp.json()["error"]


def test_replay_empty_file(client, tmp_path):
    path = tmp_path / "empty.ndjson"
    path.write_text("junk\n")
    resp = client.post("/api/replay/start", json={"path": str(path)})
    assert resp.status_code == 400
    assert resp.json() == {"error": "Replay file has no snapshot lines"}


def test_replay_speed_out_of_range(client, tmp_path):
    path = write_recording(tmp_path / "rec.ndjson", [1000])
    resp = client.post("/api/replay/start", json={"path": str(path), "speed": 10})
    assert resp.status_code == 400
    assert "speed" in resp.json()["error"]


def test_report_after_first_snapshot(client, runtime):
    assert wait_for(lambda: runtime.last_snapshot is not None)
    resp = client.get("/api/report.md")
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/markdown")
    assert resp.text.startswith("# Wi-Fi Topology Report")
    disposition = resp.headers["content-disposition"]
    assert re.fullmatch(r'attachment; filename="wifi-topology-report-\d{8}-\d{6}\.md"', disposition)


def test_report_before_any_snapshot():
    runtime = TopologyRuntime(HangingScanner(), PipelineConfig())
    # no lifespan: the live driver never starts
    client = TestClient(create_app(runtime))
    resp = client.get("/api/report.md")
    assert resp.status_code == 404
    assert resp.json() == {"error": "No snapshot available yet"}


def test_websocket_sends_last_snapshot(client, runtime):
    assert wait_for(lambda: runtime.last_snapshot is not None)
    with client.websocket_connect("/ws") as ws:
        data = ws.receive_json()
        assert data["type"] == "snapshot"
        assert {"t", "aps", "positions", "edges", "meta"} <= set(data)
        assert data["meta"]["mode"] == "live"


def test_websocket_streams_new_snapshots(client, runtime):
    assert wait_for(lambda: runtime.last_snapshot is not None)
    with client.websocket_connect("/ws") as ws:
        first = ws.receive_json()
        second = ws.receive_json()
        assert second["t"] > first["t"]


def test_shutdown_stops_live_driver(runtime):
    with TestClient(create_app(runtime)):
        assert wait_for(lambda: runtime.live.running)
    assert not runtime.live.running
