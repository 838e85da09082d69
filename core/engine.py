"""
NERON ENGINE - Owner of the interaction state

The engine holds the single current InteractionState and is the only thing
that replaces it. Each operation:

1. Computes the next state with a pure reducer (core.reducers)
2. Commits it and publishes STATE_CHANGED on the bus
3. Performs the side effects the transition implies: caching the graph,
   console notifications, deferred centering requests

All of it runs on the event loop thread. The only awaited operation is
send_message; every reducer runs to completion before the next event is
handled.

Usage:
    engine = InteractionEngine(bus=get_event_bus())
    engine.highlight_nodes(["NERON-CORE"])
    engine.state.highlighted_links
    # frozenset({'NERON-CORE-DATA-FLOW', 'NERON-CORE-NEURAL-INTERFACE'})
"""
import asyncio
import logging
import time
from typing import Any, Dict, Iterable, List, Optional

import msgspec

from core import reducers
from core.bootstrap import BOOTSTRAP_GRAPH
from core.graph_cache import GraphCache, content_key, get_graph_cache
from core.ontology import CacheKey, NotificationKind
from core.reducers import InteractionState
from core.schemas import GraphData, GraphNode, ScreenPosition
from core.tool_channel import ToolChannel, expand_command
from core.transformer import TransformReport, prepare_graph
from infrastructure.config import NeronConfig, get_config
from infrastructure.event_bus import (
    EventBus,
    EventType,
    GraphEvent,
    get_event_bus,
    publish_notification,
)
from infrastructure.logger import Notification, NotificationLog
from viz.core import compare_graphs, export_graph_json

logger = logging.getLogger("neron.engine")

# Where a neighbor link clicked inside a node card opens its own card
CARD_CLICK_POSITION = ScreenPosition(x=400.0, y=300.0)


def state_summary(state: InteractionState) -> Dict[str, Any]:
    """JSON-friendly view of a state (ids only, sorted sets)."""
    return {
        "nodeCount": len(state.graph_data.nodes),
        "linkCount": len(state.graph_data.links),
        "layerCount": len(state.graph_data.layers),
        "selectedNodes": [
            {
                "nodeId": s.node_id,
                "x": s.position.x,
                "y": s.position.y,
                "persistent": s.persistent,
            }
            for s in state.selected_nodes
        ],
        "highlightedNodes": sorted(state.highlighted_nodes),
        "highlightedLinks": sorted(state.highlighted_links),
        "hoveredNode": state.hovered_node.id if state.hovered_node else None,
        "isHoverMode": state.is_hover_mode,
        "isConsoleVisible": state.is_console_visible,
        "isFullscreen": state.is_fullscreen,
        "isLoading": state.is_loading,
    }


class InteractionEngine:
    """
    Applies reloads, highlights and gestures to the interaction state.

    Unknown node ids in gestures are ignored (logged at debug level).
    """

    def __init__(
        self,
        bus: Optional[EventBus] = None,
        cache: Optional[GraphCache] = None,
        config: Optional[NeronConfig] = None,
        notifications: Optional[NotificationLog] = None,
        channel: Optional[ToolChannel] = None,
        bootstrap: bool = True,
    ):
        # Empty caches and logs are falsy (__len__), so test against None
        self._bus = bus if bus is not None else get_event_bus()
        self._cache = cache if cache is not None else get_graph_cache()
        self._config = config if config is not None else get_config()
        if notifications is None:
            notifications = NotificationLog(max_size=self._config.logging.notification_buffer_size)
        self.notifications = notifications
        self._channel = channel
        self._state = InteractionState(is_hover_mode=self._config.interaction.hover_mode_default)
        self._index: Dict[str, GraphNode] = {}
        # Only the latest content entry is kept, with the report it produced
        self._content_key: Optional[str] = None
        self._content_report = TransformReport()

        if bootstrap:
            self.reload(BOOTSTRAP_GRAPH, source="bootstrap", notify=False)

    # =========================================================================
    # STATE
    # =========================================================================

    @property
    def state(self) -> InteractionState:
        return self._state

    @property
    def bus(self) -> EventBus:
        return self._bus

    @property
    def cache(self) -> GraphCache:
        return self._cache

    @property
    def config(self) -> NeronConfig:
        return self._config

    def set_channel(self, channel: Optional[ToolChannel]) -> None:
        self._channel = channel

    def get_node(self, node_id: str) -> Optional[GraphNode]:
        return self._index.get(node_id)

    def _commit(self, new_state: InteractionState, reason: str) -> InteractionState:
        if new_state is self._state:
            return new_state
        self._state = new_state
        payload = state_summary(new_state)
        payload["reason"] = reason
        self._publish(EventType.STATE_CHANGED, payload)
        return new_state

    def _publish(self, event_type: EventType, payload: Dict[str, Any]) -> None:
        self._bus.publish(GraphEvent(
            type=event_type,
            payload=payload,
            timestamp=time.time(),
            source="engine",
        ))

    def _publish_later(self, event_type: EventType, payload: Dict[str, Any]) -> None:
        """Publish after center_delay_seconds when a loop runs, else right away."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._publish(event_type, payload)
            return
        loop.call_later(
            self._config.interaction.center_delay_seconds,
            self._publish,
            event_type,
            payload,
        )

    def _request_center(self, node_ids: Iterable[str]) -> None:
        ids = sorted(node_ids)
        if ids:
            self._publish_later(EventType.CENTER_REQUESTED, {"nodeIds": ids})

    def notify(self, content: str, kind: NotificationKind = NotificationKind.SYSTEM) -> Notification:
        """Append a console system message and publish it."""
        note = self.notifications.append(kind.value, content)
        publish_notification(content, kind=kind.value, sequence=note.sequence, bus=self._bus)
        return note

    # =========================================================================
    # GRAPH SYNC
    # =========================================================================

    def reload(self, payload: Any, source: str = "unknown", notify: bool = True) -> TransformReport:
        """
        Replace the graph with a pushed payload.

        Enhanced payloads are installed as they are, raw ones transformed.
        The latest transform result is cached by payload content (one entry,
        replaced on every miss), and the installed graph is stored under
        CacheKey.FULL_GRAPH.

        Returns:
            Report of dropped items. A cache hit replays the stored report.
        """
        key: Optional[str] = None
        if not isinstance(payload, GraphData):
            try:
                key = content_key(payload)
            except TypeError as exc:
                logger.debug("Payload from %s is not content-addressable: %s", source, exc)

        graph = self._cache.get(key) if key else None
        if graph is None:
            graph, report = prepare_graph(payload)
            self._remember_content(key, graph, report)
        else:
            # Replay the stored counts so a repeated bad payload is reported again
            if key == self._content_key:
                report = msgspec.structs.replace(
                    self._content_report,
                    warnings=list(self._content_report.warnings),
                    duplicate_ids=list(self._content_report.duplicate_ids),
                )
            else:
                report = TransformReport()
            logger.debug("Reload from %s served from cache", source)

        previous = self._state.graph_data
        self._index = graph.node_index()
        self._commit(reducers.reload(self._state, graph), "reload")
        self._cache.set(CacheKey.FULL_GRAPH, graph)

        diff = compare_graphs(previous, graph)
        logger.info(
            "Graph reloaded from %s: %d nodes (%+d), %d links (%+d)",
            source, len(graph.nodes), diff.node_delta, len(graph.links), diff.link_delta,
        )
        if notify:
            self.notify(
                f"Graph reloaded: {len(graph.nodes)} nodes, {len(graph.links)} links",
                NotificationKind.TOOL,
            )
            if report.warnings:
                self.notify(
                    f"Dropped {report.dropped_entities} entities and "
                    f"{report.dropped_relations} relations while loading",
                    NotificationKind.ERROR,
                )
        return report

    def _remember_content(self, key: Optional[str], graph: GraphData, report: TransformReport) -> None:
        """Store the transform result under its content key, dropping the previous one."""
        if self._content_key is not None and self._content_key != key:
            self._cache.invalidate(self._content_key)
        self._content_key = key
        self._content_report = report
        if key:
            self._cache.set(key, graph)

    def highlight_nodes(self, node_ids: Iterable[str]) -> InteractionState:
        ids = list(dict.fromkeys(node_ids))
        state = self._commit(reducers.highlight_nodes(self._state, ids), "highlight")
        self._request_center(ids)
        self.notify(f"Highlighted {len(ids)} nodes: {', '.join(ids)}", NotificationKind.TOOL)
        return state

    # =========================================================================
    # GESTURES
    # =========================================================================

    def hover(self, node_id: Optional[str]) -> InteractionState:
        node = None
        if node_id is not None:
            node = self._index.get(node_id)
            if node is None:
                logger.debug("Hover on unknown node %s ignored", node_id)
                return self._state
        return self._commit(reducers.hover(self._state, node), "hover")

    def click(self, node_id: str, x: float = 0.0, y: float = 0.0) -> InteractionState:
        node = self._index.get(node_id)
        if node is None:
            logger.debug("Click on unknown node %s ignored", node_id)
            return self._state
        state = self._commit(
            reducers.click(
                self._state, node, ScreenPosition(x=x, y=y),
                offset=self._config.interaction.selection_offset_px,
            ),
            "click",
        )
        self._request_center([node.id])
        self.notify(f"Selected node: {node.name} ({node.type})")
        return state

    def double_click(self, node_id: str, x: float = 0.0, y: float = 0.0) -> InteractionState:
        node = self._index.get(node_id)
        if node is None:
            logger.debug("Double-click on unknown node %s ignored", node_id)
            return self._state
        state = self._commit(
            reducers.double_click(
                self._state, node, ScreenPosition(x=x, y=y),
                offset=self._config.interaction.selection_offset_px,
            ),
            "double_click",
        )
        self._request_center(state.highlighted_nodes)
        self.notify(
            f"Persistent selection: {node.name}. "
            f"Highlighted {len(state.highlighted_nodes)} connected nodes."
        )
        return state

    def card_node_click(self, node_id: str) -> InteractionState:
        """A neighbor listed in a node card was clicked: treat as a double-click."""
        return self.double_click(node_id, CARD_CLICK_POSITION.x, CARD_CLICK_POSITION.y)

    def background_click(self) -> InteractionState:
        return self._commit(reducers.background_click(self._state), "background_click")

    def close_selection(self, node_id: str) -> InteractionState:
        return self._commit(reducers.close_selection(self._state, node_id), "close_selection")

    def toggle_hover_mode(self) -> InteractionState:
        state = self._commit(reducers.toggle_hover_mode(self._state), "toggle_hover_mode")
        self.notify(f"Hover mode {'enabled' if state.is_hover_mode else 'disabled'}")
        return state

    def toggle_console(self) -> InteractionState:
        state = self._commit(reducers.toggle_console(self._state), "toggle_console")
        if state.is_console_visible:
            self._publish_later(EventType.CONSOLE_FOCUS_REQUESTED, {})
        return state

    def toggle_fullscreen(self) -> InteractionState:
        return self._commit(reducers.toggle_fullscreen(self._state), "toggle_fullscreen")

    def reset(self) -> InteractionState:
        state = self._commit(reducers.reset(self._state), "reset")
        self.notify("Interaction state reset")
        return state

    # =========================================================================
    # CONSOLE
    # =========================================================================

    async def send_message(self, text: str) -> str:
        """
        Forward a console message to the tool channel.

        is_loading is raised for the duration of the send. Concurrent sends
        are not serialized: the first one to finish clears the flag.

        Returns:
            The assistant's reply, or "Error: <reason>"
        """
        message, reply = expand_command(text)
        if reply is not None:
            return reply
        if self._channel is None:
            return "Error: no tool channel configured"

        self._commit(reducers.set_loading(self._state, True), "loading")
        self.notify(f'Processing command: "{text}"')
        try:
            return await self._channel.send_message(message)
        finally:
            self._commit(reducers.set_loading(self._state, False), "loading")

    # =========================================================================
    # EXPORT
    # =========================================================================

    def export_json(self) -> bytes:
        """Indented JSON of the current graph, re-importable through reload()."""
        return export_graph_json(self._state.graph_data, indent=self._config.export.indent)

    def recent_notifications(self, n: int = 50) -> List[Notification]:
        return self.notifications.get_last(n)


# =============================================================================
# GLOBAL INSTANCE
# =============================================================================

_engine: Optional[InteractionEngine] = None


def get_engine() -> InteractionEngine:
    """Get the global engine, creating it with the bootstrap graph on first use."""
    global _engine
    if _engine is None:
        _engine = InteractionEngine()
    return _engine


def set_engine(engine: InteractionEngine) -> None:
    global _engine
    _engine = engine


def reset_engine() -> None:
    global _engine
    _engine = None
