"""
UNIT TESTS: API Routes

Tests the HTTP and WebSocket surface with Starlette's TestClient. Each test
gets its own engine (bootstrap graph) and bus through create_app(engine).
"""
import io
import struct

import msgspec
import polars as pl
import pytest
from starlette.testclient import TestClient

from api.routes import create_app
from core.tool_channel import ToolChannel
from infrastructure.event_bus import EventType, publish_node_highlight


@pytest.fixture
def app(engine):
    return create_app(engine)


@pytest.fixture
def client(app):
    with TestClient(app) as started:
        yield started


# =============================================================================
# HEALTH & STATE
# =============================================================================

def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_state(client):
    data = client.get("/api/state").json()
    assert data["nodeCount"] == 4
    assert data["linkCount"] == 4
    assert data["isHoverMode"] is True
    assert data["selectedNodes"] == []


def test_app_state_wiring(app, client, engine):
    assert app.state.engine is engine
    assert app.state.bridge.subscribed
    assert engine.bus.subscriber_count(EventType.GRAPH_RELOAD) == 1


def test_nothing_subscribed_before_startup(engine):
    app = create_app(engine)
    assert not app.state.bridge.subscribed
    assert engine.bus.subscriber_count() == 0

    with TestClient(app):
        assert app.state.bridge.subscribed
    assert engine.bus.subscriber_count() == 0


def test_two_apps_apply_each_event_once(engine):
    first, second = create_app(engine), create_app(engine)
    with TestClient(first), TestClient(second):
        publish_node_highlight(["NERON-CORE"], bus=engine.bus)

    highlights = [
        note.content for note in engine.notifications.get_last(10)
        if note.content.startswith("Highlighted")
    ]
    assert highlights == ["Highlighted 1 nodes: NERON-CORE"]


# =============================================================================
# GRAPH SYNC
# =============================================================================

class TestGraphSync:
    def test_reload_raw(self, client, raw_graph):
        response = client.post("/api/graph/reload", json=raw_graph)
        assert response.status_code == 200
        assert response.json()["nodeCount"] == 3
        assert response.json()["linkCount"] == 2

    def test_reload_invalid_json(self, client):
        response = client.post(
            "/api/graph/reload",
            content=b"{broken",
            headers={"content-type": "application/json"},
        )
        assert response.status_code == 400
        assert "Invalid JSON" in response.json()["error"]

    def test_reload_requires_object(self, client):
        response = client.post("/api/graph/reload", json=[1, 2])
        assert response.status_code == 400

    def test_reload_with_bad_items_still_succeeds(self, client):
        payload = {"entities": [{"name": "ok"}, {"nope": True}], "relations": "junk"}
        response = client.post("/api/graph/reload", json=payload)
        assert response.status_code == 200
        assert response.json()["nodeCount"] == 1

    def test_highlight_core(self, client):
        response = client.post("/api/graph/highlight", json={"nodeIds": ["NERON-CORE"]})
        assert response.status_code == 200
        assert response.json() == {
            "highlightedNodes": ["NERON-CORE"],
            "highlightedLinks": ["NERON-CORE-DATA-FLOW", "NERON-CORE-NEURAL-INTERFACE"],
        }

    @pytest.mark.parametrize("body", [{}, {"nodeIds": "NERON-CORE"}, {"nodeIds": [1, 2]}])
    def test_highlight_validation(self, client, body):
        response = client.post("/api/graph/highlight", json=body)
        assert response.status_code == 400

    def test_export_then_reload(self, client, engine):
        original = engine.state.graph_data
        response = client.get("/api/graph/export")
        assert response.status_code == 200
        assert "neron-graph-export.json" in response.headers["content-disposition"]

        reload = client.post(
            "/api/graph/reload",
            content=response.content,
            headers={"content-type": "application/json"},
        )
        assert reload.status_code == 200
        assert engine.state.graph_data == original

    def test_connections(self, client):
        data = client.get("/api/nodes/NERON-CORE/connections").json()
        assert data["nodeId"] == "NERON-CORE"
        assert data["incoming"] == []
        assert sorted(c["node_id"] for c in data["outgoing"]) == ["DATA-FLOW", "NEURAL-INTERFACE"]

    def test_connections_unknown_node(self, client):
        assert client.get("/api/nodes/nope/connections").status_code == 404


# =============================================================================
# INTERACTION
# =============================================================================

class TestInteraction:
    def test_click(self, client):
        response = client.post(
            "/api/pointer",
            json={"gesture": "click", "nodeId": "DATA-FLOW", "x": 100, "y": 50},
        )
        assert response.status_code == 200
        assert response.json()["selectedNodes"] == [
            {"nodeId": "DATA-FLOW", "x": 120.0, "y": 70.0, "persistent": False},
        ]

    def test_double_click_then_background(self, client):
        client.post("/api/pointer", json={"gesture": "double_click", "nodeId": "NERON-CORE"})
        client.post("/api/pointer", json={"gesture": "click", "nodeId": "DATA-FLOW"})
        data = client.post("/api/pointer", json={"gesture": "background_click"}).json()
        assert [s["nodeId"] for s in data["selectedNodes"]] == []

    def test_invalid_gesture(self, client):
        response = client.post("/api/pointer", json={"gesture": "wave"})
        assert response.status_code == 400

    def test_invalid_coordinates(self, client):
        response = client.post("/api/pointer", json={"gesture": "click", "x": "left"})
        assert response.status_code == 400

    def test_keyboard(self, client):
        data = client.post("/api/keyboard", json={"key": "h"}).json()
        assert data["isHoverMode"] is False
        data = client.post("/api/keyboard", json={"key": "/", "target": "input"}).json()
        assert data["isConsoleVisible"] is False

    def test_keyboard_requires_key(self, client):
        assert client.post("/api/keyboard", json={}).status_code == 400

    def test_reset(self, client):
        client.post("/api/graph/highlight", json={"nodeIds": ["NERON-CORE"]})
        data = client.post("/api/reset").json()
        assert data["highlightedNodes"] == []


# =============================================================================
# CONSOLE
# =============================================================================

class StaticClient:
    async def send(self, message):
        return {"content": [{"type": "text", "text": f"echo: {message}"}]}


class TestConsole:
    def test_without_channel(self, client):
        data = client.post("/api/console/message", json={"message": "hello"}).json()
        assert data == {"response": "Error: no tool channel configured"}

    def test_with_channel(self, client, engine):
        engine.set_channel(ToolChannel(StaticClient(), bus=engine.bus))
        data = client.post("/api/console/message", json={"message": "hello"}).json()
        assert data == {"response": "echo: hello"}
        assert engine.state.is_loading is False

    def test_requires_message(self, client):
        assert client.post("/api/console/message", json={"message": "  "}).status_code == 400


# =============================================================================
# DIAGNOSTICS
# =============================================================================

def test_cache_metrics(client, raw_graph):
    client.post("/api/graph/reload", json=raw_graph)
    client.post("/api/graph/reload", json=raw_graph)
    data = client.get("/api/cache/metrics").json()
    assert data["hits"] == 1
    assert data["size"] >= 2


def test_notifications(client):
    client.post("/api/keyboard", json={"key": "h"})
    client.post("/api/keyboard", json={"key": "h"})
    notes = client.get("/api/notifications").json()["notifications"]
    assert [n["content"] for n in notes] == ["Hover mode disabled", "Hover mode enabled"]

    after = client.get("/api/notifications", params={"after": notes[0]["sequence"]}).json()
    assert [n["content"] for n in after["notifications"]] == ["Hover mode enabled"]


def test_notifications_bad_params(client):
    assert client.get("/api/notifications", params={"limit": "many"}).status_code == 400


# =============================================================================
# VISUALIZATION
# =============================================================================

class TestVisualization:
    def test_snapshot(self, client):
        data = client.get("/api/viz/snapshot").json()
        assert data["node_count"] == 4
        assert data["is_hover_mode"] is True

    def test_stream_nodes(self, client):
        response = client.get("/api/viz/stream", params={"format": "nodes"})
        assert pl.read_ipc(io.BytesIO(response.content)).height == 4

    def test_stream_both(self, client):
        content = client.get("/api/viz/stream").content
        (nodes_length,) = struct.unpack("<I", content[:4])
        nodes = pl.read_ipc(io.BytesIO(content[4:4 + nodes_length]))
        links = pl.read_ipc(io.BytesIO(content[4 + nodes_length:]))
        assert nodes.height == 4
        assert links.height == 4

    def test_websocket(self, client):
        with client.websocket_connect("/api/viz/ws") as ws:
            first = ws.receive_json()
            assert first["type"] == "snapshot"
            assert first["data"]["node_count"] == 4

            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}

            ws.send_json({"type": "bogus"})
            assert ws.receive_json()["type"] == "error"

    def test_websocket_bad_coordinates_keep_socket_open(self, client, engine):
        with client.websocket_connect("/api/viz/ws") as ws:
            ws.receive_json()

            ws.send_json({"type": "pointer", "gesture": "click", "nodeId": "DATA-FLOW", "x": "left"})
            assert ws.receive_json() == {"type": "error", "error": "x and y must be numbers"}

            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}
        assert engine.state.selected_nodes == ()


def test_export_body_is_valid_json(client):
    data = msgspec.json.decode(client.get("/api/graph/export").content)
    assert set(data) == {"nodes", "links", "layers", "tagIndex"}
