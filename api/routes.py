"""
NERON API ROUTES - The HTTP Interface

Starlette app in front of the interaction engine. Inbound routes publish
on the event bus (the event bridge applies them); read routes render the
engine's current state.

Endpoints:
- GET  /health                        - Health check
- GET  /api/state                     - Interaction state summary
- GET  /api/graph/export              - Current graph as a JSON download
- POST /api/graph/reload              - Push {entities, relations} or an enhanced graph
- POST /api/graph/highlight           - Highlight {nodeIds}
- GET  /api/nodes/{node_id}/connections - Incoming/outgoing neighbors (node card)
- POST /api/pointer                   - Pointer gesture from the renderer
- POST /api/keyboard                  - Key press from the page
- POST /api/console/message           - Send a console message to the tool channel
- POST /api/reset                     - Clear selections, highlights and hover
- GET  /api/cache/metrics             - Graph cache counters
- GET  /api/notifications             - Console system messages

Visualization Endpoints:
- GET  /api/viz/snapshot    - Render snapshot (JSON)
- GET  /api/viz/stream      - Render snapshot as Arrow IPC
- WS   /api/viz/ws          - Snapshots and notifications pushed live

Design:
- Starlette routes for ASGI compatibility with Granian
- msgspec for fast JSON serialization
- Arrow IPC for large graph transfer
- Graph pushes and gestures go through the bus; the event bridge applies them
"""
from contextlib import asynccontextmanager
from starlette.applications import Starlette
from starlette.responses import JSONResponse, Response
from starlette.routing import Route, WebSocketRoute
from starlette.requests import Request
from starlette.websockets import WebSocket, WebSocketDisconnect
from typing import Optional, Dict, Any, List, Set
import msgspec
import asyncio
import logging
import struct

from core.engine import InteractionEngine, get_engine, state_summary
from core.errors import PayloadError
from core.event_bridge import EventBridge
from core.ontology import PointerGesture
from core.schemas import decode_payload
from infrastructure.event_bus import (
    EventType,
    GraphEvent,
    publish_graph_reload,
    publish_node_highlight,
    publish_pointer,
    publish_key,
)
from viz.core import build_render_snapshot, serialize_to_arrow, get_connections


# =============================================================================
# LOGGING
# =============================================================================

logger = logging.getLogger("neron.api")


# =============================================================================
# WEBSOCKET SETTINGS
# =============================================================================

WS_HEARTBEAT_SECONDS = 30.0

# Engine events forwarded to WebSocket clients as they are
PUSHED_EVENT_TYPES = (
    EventType.NOTIFICATION,
    EventType.CENTER_REQUESTED,
    EventType.CONSOLE_FOCUS_REQUESTED,
)


def _engine(request: Request) -> InteractionEngine:
    return request.app.state.engine


# =============================================================================
# RESPONSE HELPERS
# =============================================================================

# Pre-compiled msgspec encoder for fast JSON serialization
_json_encoder = msgspec.json.Encoder()


def json_response(data: Any, status_code: int = 200) -> Response:
    """Create JSON response using msgspec for speed."""
    return Response(
        content=_json_encoder.encode(data),
        status_code=status_code,
        media_type="application/json"
    )


def error_response(message: str, status_code: int = 400) -> JSONResponse:
    """Create error response."""
    return JSONResponse(
        {"error": message},
        status_code=status_code
    )


async def _json_body(request: Request) -> Any:
    """Parsed JSON body. Raises PayloadError on malformed JSON."""
    body = await request.body()
    if not body:
        return {}
    return decode_payload(body)


# =============================================================================
# HEALTH & STATE
# =============================================================================

async def health(request: Request) -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse({
        "status": "healthy",
        "service": "neron",
        "version": "0.1.0"
    })


async def get_state(request: Request) -> Response:
    """Summary of the interaction state (ids only)."""
    return json_response(state_summary(_engine(request).state))


# =============================================================================
# GRAPH SYNC
# =============================================================================

async def graph_reload(request: Request) -> Response:
    """
    POST /api/graph/reload

    Request body: {entities, relations} or {nodes, links, layers, tagIndex}

    Response: state summary after the reload
    """
    try:
        body = await _json_body(request)
    except PayloadError as e:
        return error_response(str(e), 400)
    if not isinstance(body, dict):
        return error_response("Graph payload must be a JSON object", 400)

    engine = _engine(request)
    publish_graph_reload(body, source="api", bus=engine.bus)
    return json_response(state_summary(engine.state))


async def graph_highlight(request: Request) -> Response:
    """
    POST /api/graph/highlight

    Request body: {"nodeIds": [str, ...]}

    Response:
    {
        "highlightedNodes": List[str],
        "highlightedLinks": List[str]
    }
    """
    try:
        body = await _json_body(request)
    except PayloadError as e:
        return error_response(str(e), 400)

    node_ids = body.get("nodeIds") if isinstance(body, dict) else None
    if not isinstance(node_ids, list) or not all(isinstance(n, str) for n in node_ids):
        return error_response("nodeIds must be a list of strings", 400)

    engine = _engine(request)
    publish_node_highlight(node_ids, source="api", bus=engine.bus)
    state = engine.state
    return json_response({
        "highlightedNodes": sorted(state.highlighted_nodes),
        "highlightedLinks": sorted(state.highlighted_links),
    })


async def graph_export(request: Request) -> Response:
    """Current graph as an indented JSON attachment."""
    engine = _engine(request)
    filename = engine.config.export.filename
    return Response(
        content=engine.export_json(),
        media_type="application/json",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


async def node_connections(request: Request) -> Response:
    """Incoming and outgoing neighbors of a node."""
    node_id = request.path_params["node_id"]
    engine = _engine(request)
    if engine.get_node(node_id) is None:
        return error_response(f"Node not found: {node_id}", 404)
    connections = get_connections(engine.state.graph_data, node_id)
    return json_response({
        "nodeId": node_id,
        "incoming": connections["incoming"],
        "outgoing": connections["outgoing"],
    })


# =============================================================================
# INTERACTION
# =============================================================================

async def pointer(request: Request) -> Response:
    """
    POST /api/pointer

    Request body: {"gesture": str, "nodeId": str | null, "x": float, "y": float}
    """
    try:
        body = await _json_body(request)
    except PayloadError as e:
        return error_response(str(e), 400)
    if not isinstance(body, dict):
        return error_response("Pointer payload must be a JSON object", 400)

    gesture = body.get("gesture")
    if gesture not in {g.value for g in PointerGesture}:
        return error_response(f"Invalid gesture: {gesture}", 400)

    engine = _engine(request)
    try:
        x, y = float(body.get("x") or 0.0), float(body.get("y") or 0.0)
    except (TypeError, ValueError):
        return error_response("x and y must be numbers", 400)
    publish_pointer(gesture, body.get("nodeId"), x, y, source="api", bus=engine.bus)
    return json_response(state_summary(engine.state))


async def keyboard(request: Request) -> Response:
    """
    POST /api/keyboard

    Request body: {"key": str, "target": str}
    """
    try:
        body = await _json_body(request)
    except PayloadError as e:
        return error_response(str(e), 400)
    if not isinstance(body, dict) or not isinstance(body.get("key"), str):
        return error_response("Missing key", 400)

    engine = _engine(request)
    publish_key(body["key"], target=str(body.get("target") or "body"), source="api", bus=engine.bus)
    return json_response(state_summary(engine.state))


async def console_message(request: Request) -> Response:
    """
    POST /api/console/message

    Request body: {"message": str}

    Response: {"response": str}
    """
    try:
        body = await _json_body(request)
    except PayloadError as e:
        return error_response(str(e), 400)
    message = body.get("message") if isinstance(body, dict) else None
    if not isinstance(message, str) or not message.strip():
        return error_response("Missing message", 400)

    reply = await _engine(request).send_message(message)
    return json_response({"response": reply})


async def reset_interaction(request: Request) -> Response:
    engine = _engine(request)
    engine.reset()
    return json_response(state_summary(engine.state))


# =============================================================================
# DIAGNOSTICS
# =============================================================================

async def cache_metrics(request: Request) -> Response:
    return json_response(_engine(request).cache.metrics())


async def notifications(request: Request) -> Response:
    """
    Console system messages.

    Query params:
        after: Only messages with a higher sequence number
        limit: Max number of messages (default 50)
    """
    engine = _engine(request)
    try:
        after = int(request.query_params.get("after", 0))
        limit = int(request.query_params.get("limit", 50))
    except ValueError:
        return error_response("after and limit must be integers", 400)

    notes = engine.notifications.get_after(after) if after else engine.recent_notifications(limit)
    return json_response({"notifications": notes[-limit:] if limit > 0 else []})


# =============================================================================
# VISUALIZATION ENDPOINTS
# =============================================================================

async def viz_snapshot(request: Request) -> JSONResponse:
    """Render snapshot of the current interaction state."""
    return JSONResponse(build_render_snapshot(_engine(request).state).to_dict())


async def viz_stream(request: Request) -> Response:
    """
    Render snapshot as Apache Arrow IPC.

    Query params:
        format: "nodes" | "links" | "both" (default: "both")

    "both" returns a 4-byte little-endian length of the nodes file, the
    nodes file, then the links file.
    """
    format_type = request.query_params.get("format", "both")
    snapshot = build_render_snapshot(_engine(request).state)
    nodes_bytes, links_bytes = serialize_to_arrow(snapshot)

    if format_type == "nodes":
        return Response(
            content=nodes_bytes,
            media_type="application/vnd.apache.arrow.stream",
            headers={"Content-Disposition": "attachment; filename=nodes.arrow"}
        )
    elif format_type == "links":
        return Response(
            content=links_bytes,
            media_type="application/vnd.apache.arrow.stream",
            headers={"Content-Disposition": "attachment; filename=links.arrow"}
        )
    combined = struct.pack("<I", len(nodes_bytes)) + nodes_bytes + links_bytes
    return Response(
        content=combined,
        media_type="application/vnd.apache.arrow.stream",
        headers={"Content-Disposition": "attachment; filename=graph.arrow"}
    )


async def viz_websocket(websocket: WebSocket) -> None:
    """
    WebSocket endpoint for real-time updates.

    Protocol:
    1. Client connects
    2. Server sends the current render snapshot
    3. Server pushes snapshots, notifications and centering requests
    4. Client may send {"type": "pointer" | "keyboard" | "ping", ...}
    """
    await websocket.accept()
    connections: Set[WebSocket] = websocket.app.state.ws_connections
    connections.add(websocket)
    engine: InteractionEngine = websocket.app.state.engine

    try:
        await websocket.send_json({
            "type": "snapshot",
            "data": build_render_snapshot(engine.state).to_dict()
        })

        while True:
            try:
                data = await asyncio.wait_for(
                    websocket.receive_json(),
                    timeout=WS_HEARTBEAT_SECONDS
                )
            except asyncio.TimeoutError:
                await websocket.send_json({"type": "heartbeat"})
                continue

            message_type = data.get("type") if isinstance(data, dict) else None
            if message_type == "ping":
                await websocket.send_json({"type": "pong"})
            elif message_type == "pointer" and data.get("gesture") in {g.value for g in PointerGesture}:
                try:
                    x, y = float(data.get("x") or 0.0), float(data.get("y") or 0.0)
                except (TypeError, ValueError):
                    await websocket.send_json({"type": "error", "error": "x and y must be numbers"})
                    continue
                publish_pointer(data["gesture"], data.get("nodeId"), x, y, source="ws", bus=engine.bus)
            elif message_type == "keyboard" and isinstance(data.get("key"), str):
                publish_key(data["key"], target=str(data.get("target") or "body"), source="ws", bus=engine.bus)
            else:
                await websocket.send_json({"type": "error", "error": f"Unknown message: {message_type}"})

    except WebSocketDisconnect:
        logger.debug("WebSocket client disconnected")
    finally:
        connections.discard(websocket)


async def broadcast_json(connections: Set[WebSocket], message: Dict[str, Any]) -> None:
    """
    Broadcast a JSON message to the given WebSocket clients.

    Connections that fail to send are dropped.
    """
    if not connections:
        return

    dead = set()
    for ws in list(connections):
        try:
            await ws.send_json(message)
        except (WebSocketDisconnect, RuntimeError) as e:
            logger.debug(f"Dropping WebSocket connection: {e}")
            dead.add(ws)

    connections.difference_update(dead)


# =============================================================================
# APP FACTORY
# =============================================================================

def create_routes() -> List[Route]:
    """Create HTTP routes."""
    return [
        Route("/health", health, methods=["GET"]),
        Route("/api/state", get_state, methods=["GET"]),

        # Graph sync
        Route("/api/graph/reload", graph_reload, methods=["POST"]),
        Route("/api/graph/highlight", graph_highlight, methods=["POST"]),
        Route("/api/graph/export", graph_export, methods=["GET"]),
        Route("/api/nodes/{node_id}/connections", node_connections, methods=["GET"]),

        # Interaction
        Route("/api/pointer", pointer, methods=["POST"]),
        Route("/api/keyboard", keyboard, methods=["POST"]),
        Route("/api/console/message", console_message, methods=["POST"]),
        Route("/api/reset", reset_interaction, methods=["POST"]),

        # Diagnostics
        Route("/api/cache/metrics", cache_metrics, methods=["GET"]),
        Route("/api/notifications", notifications, methods=["GET"]),

        # Visualization
        Route("/api/viz/snapshot", viz_snapshot, methods=["GET"]),
        Route("/api/viz/stream", viz_stream, methods=["GET"]),
    ]


def create_websocket_routes() -> List[WebSocketRoute]:
    """Create WebSocket routes."""
    return [
        WebSocketRoute("/api/viz/ws", viz_websocket),
    ]


def create_app(engine: Optional[InteractionEngine] = None) -> Starlette:
    """
    Create the Starlette application.

    Nothing is subscribed until the app starts: the lifespan attaches the
    event bridge and the WebSocket broadcasters, and detaches them on
    shutdown. An engine is fed by at most one bridge at a time, so two apps
    over the same engine never apply an event twice.

    Args:
        engine: Engine to serve (defaults to the global engine). Its bus
            carries the app's inbound events and outbound pushes.
    """
    from starlette.middleware import Middleware
    from starlette.middleware.cors import CORSMiddleware

    engine = engine if engine is not None else get_engine()
    bridge = EventBridge(engine, engine.bus)
    connections: Set[WebSocket] = set()

    async def push_snapshot(event: GraphEvent) -> None:
        await broadcast_json(connections, {
            "type": "snapshot",
            "reason": event.payload.get("reason"),
            "data": build_render_snapshot(engine.state).to_dict(),
        })

    async def push_event(event: GraphEvent) -> None:
        await broadcast_json(connections, {"type": event.type.value, "data": event.payload})

    @asynccontextmanager
    async def lifespan(app: Starlette):
        with bridge:
            engine.bus.subscribe_async(EventType.STATE_CHANGED, push_snapshot)
            for event_type in PUSHED_EVENT_TYPES:
                engine.bus.subscribe_async(event_type, push_event)
            logger.info("Subscribed event bridge and WebSocket broadcasting")
            try:
                yield
            finally:
                engine.bus.unsubscribe(EventType.STATE_CHANGED, push_snapshot)
                for event_type in PUSHED_EVENT_TYPES:
                    engine.bus.unsubscribe(event_type, push_event)
                logger.info("Released event bridge")

    # CORS middleware for frontend access
    middleware = [
        Middleware(
            CORSMiddleware,
            allow_origins=engine.config.api.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    ]

    app = Starlette(
        routes=create_routes() + create_websocket_routes(),
        middleware=middleware,
        lifespan=lifespan,
        debug=False,
    )
    app.state.engine = engine
    app.state.bridge = bridge
    app.state.ws_connections = connections
    return app


def __getattr__(name: str):
    # ASGI target "api.routes:app" builds the default app on first access
    if name == "app":
        global app
        app = create_app()
        return app
    raise AttributeError(name)
