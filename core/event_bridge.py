"""
NERON EVENT BRIDGE - Bus events in, engine calls out

The bridge is the only subscriber that turns inbound bus events into engine
operations. Each event maps to exactly one engine call:

    GRAPH_RELOAD   -> engine.reload(payload)
    NODE_HIGHLIGHT -> engine.highlight_nodes(payload["nodeIds"])
    POINTER        -> hover / click / double_click / background_click / ...
    KEYBOARD       -> toggle_hover_mode ("h"), toggle_console ("/"),
                      toggle_fullscreen ("f")

The bus is passed in explicitly, never looked up globally, and the
subscription lifetime is scoped with a context manager:

    with EventBridge(engine, bus):
        ...  # events flow into the engine
    # unsubscribed here, even on error
"""
import logging
import weakref
from typing import Any, Callable, Dict, FrozenSet, Optional

from core.engine import InteractionEngine
from core.ontology import PointerGesture
from infrastructure.event_bus import EventBus, EventType, GraphEvent

logger = logging.getLogger("neron.event_bridge")

# Focus targets that swallow shortcut keys
TEXT_INPUT_TARGETS: FrozenSet[str] = frozenset({"input", "textarea", "contenteditable"})

# Engine -> the bridge currently feeding it
_active_bridges: "weakref.WeakKeyDictionary[InteractionEngine, EventBridge]" = weakref.WeakKeyDictionary()


class EventBridge:
    """
    Subscribes an engine to the inbound events of a bus.

    subscribe() and unsubscribe() are idempotent. An engine is fed by at
    most one bridge at a time: subscribing a second bridge for the same
    engine is refused with a warning until the first one unsubscribes.
    """

    def __init__(self, engine: InteractionEngine, bus: EventBus):
        self._engine = engine
        self._bus = bus
        self._subscribed = False
        self._handlers: Dict[EventType, Callable[[GraphEvent], None]] = {
            EventType.GRAPH_RELOAD: self.on_graph_reload,
            EventType.NODE_HIGHLIGHT: self.on_node_highlight,
            EventType.POINTER: self.on_pointer,
            EventType.KEYBOARD: self.on_key,
        }
        self._key_actions: Dict[str, Callable[[], Any]] = {
            "h": engine.toggle_hover_mode,
            "/": engine.toggle_console,
            "f": engine.toggle_fullscreen,
        }

    @property
    def subscribed(self) -> bool:
        return self._subscribed

    def subscribe(self) -> None:
        if self._subscribed:
            return
        active = _active_bridges.get(self._engine)
        if active is not None:
            logger.warning("Engine already has an active event bridge, not subscribing another")
            return
        for event_type, handler in self._handlers.items():
            self._bus.subscribe(event_type, handler)
        self._subscribed = True
        _active_bridges[self._engine] = self
        logger.debug("Event bridge subscribed")

    def unsubscribe(self) -> None:
        if not self._subscribed:
            return
        for event_type, handler in self._handlers.items():
            self._bus.unsubscribe(event_type, handler)
        self._subscribed = False
        if _active_bridges.get(self._engine) is self:
            del _active_bridges[self._engine]
        logger.debug("Event bridge unsubscribed")

    def __enter__(self) -> "EventBridge":
        self.subscribe()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.unsubscribe()

    # =========================================================================
    # HANDLERS
    # =========================================================================

    def on_graph_reload(self, event: GraphEvent) -> None:
        self._engine.reload(event.payload, source=event.source)

    def on_node_highlight(self, event: GraphEvent) -> None:
        node_ids = event.payload.get("nodeIds")
        if not isinstance(node_ids, list):
            logger.warning("Highlight from %s without a nodeIds list ignored", event.source)
            return
        self._engine.highlight_nodes(str(node_id) for node_id in node_ids)

    def on_pointer(self, event: GraphEvent) -> None:
        payload = event.payload
        try:
            gesture = PointerGesture(payload.get("gesture"))
        except ValueError:
            logger.warning("Unknown pointer gesture %r ignored", payload.get("gesture"))
            return

        node_id: Optional[str] = payload.get("nodeId")
        x = float(payload.get("x") or 0.0)
        y = float(payload.get("y") or 0.0)

        if gesture is PointerGesture.HOVER:
            if self._engine.state.is_hover_mode:
                self._engine.hover(node_id)
        elif gesture is PointerGesture.BACKGROUND_CLICK:
            self._engine.background_click()
        elif node_id is None:
            logger.warning("Pointer %s without a nodeId ignored", gesture.value)
        elif gesture is PointerGesture.CLICK:
            self._engine.click(node_id, x, y)
        elif gesture is PointerGesture.DOUBLE_CLICK:
            self._engine.double_click(node_id, x, y)
        elif gesture is PointerGesture.CLOSE_CARD:
            self._engine.close_selection(node_id)
        elif gesture is PointerGesture.CARD_NODE_CLICK:
            self._engine.card_node_click(node_id)

    def on_key(self, event: GraphEvent) -> None:
        target = str(event.payload.get("target") or "").lower()
        if target in TEXT_INPUT_TARGETS:
            return
        action = self._key_actions.get(str(event.payload.get("key") or "").lower())
        if action is not None:
            action()
