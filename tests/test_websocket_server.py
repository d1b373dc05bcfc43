import pytest

from conftest import LOOKING_LEFT, run_ticks
from server.websocket_server import SnapshotServer
from takeover_engine.data_structures import AutonomyMode


@pytest.fixture
def server(session):
    return SnapshotServer(session)


@pytest.fixture
def http(server):
    return server.app.test_client()


@pytest.fixture
def ws(server, http):
    client = server.socketio.test_client(server.app, flask_test_client=http)
    yield client
    if client.is_connected():
        client.disconnect()


def test_health(http):
    response = http.get("/health")
    assert response.status_code == 200
    assert response.get_json()["status"] == "ok"


def test_snapshot_falls_back_to_live_session(http):
    data = http.get("/snapshot").get_json()
    assert data["driverState"] == "ALERT"
    assert data["mode"] == "MANUAL"


def test_snapshot_without_session_is_404():
    http = SnapshotServer().app.test_client()
    assert http.get("/snapshot").status_code == 404


def test_emitted_snapshot_is_cached(server, session, clock, http):
    session.subscribe(server.emit_snapshot)
    run_ticks(session, clock, LOOKING_LEFT, count=1)

    assert server.latest["driverState"] == "DISTRACTED"
    assert http.get("/snapshot").get_json()["torUrgency"] == "MEDIUM"


def test_connect_counts_clients(server, ws):
    assert ws.is_connected()
    assert server.client_count == 1


def test_operator_mode_event(ws, session):
    ack = ws.emit("operator_mode", {"mode": "AUTONOMOUS"}, callback=True)
    assert ack == {"ok": True}
    assert session.mode is AutonomyMode.AUTONOMOUS


def test_operator_mode_rejects_unknown_mode(ws, session):
    ack = ws.emit("operator_mode", {"mode": "WARP"}, callback=True)
    assert ack["ok"] is False
    assert session.mode is AutonomyMode.MANUAL


def test_operator_release_refused_by_default(ws):
    ack = ws.emit("operator_release", callback=True)
    assert ack["ok"] is False
    assert "release disabled" in ack["error"]


def test_metrics_sample_event(ws, session):
    ack = ws.emit("metrics_sample", {"headPose": "down"}, callback=True)
    assert ack == {"ok": True}
    assert session.latest_sample.head_pose.value == "down"

    ack = ws.emit("metrics_sample", {"headPose": "sideways"}, callback=True)
    assert ack == {"ok": False}
