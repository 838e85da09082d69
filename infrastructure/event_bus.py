"""
Lightweight event bus between the outside world and the interaction engine.

Tool-call results, pointer gestures and key presses arrive here as events;
the engine's outputs (state changes, notifications, centering requests) leave
the same way.

Design Principles:
- Publisher-subscriber pattern (decoupled)
- Supports both sync and async handlers
- Non-blocking (async handlers scheduled via create_task)
- Singleton for global access, explicit instances for tests and embedding
- Type-safe events via msgspec

Architecture:
    Tool channel / HTTP / Renderer → EventBus → EventBridge → Engine
    Engine → EventBus → [WebSocket clients, Console]

Usage:
    from infrastructure.event_bus import get_event_bus, publish_node_highlight

    publish_node_highlight(["NERON-CORE"], source="mcp")

    def on_state(event: GraphEvent):
        print(event.payload["highlighted_nodes"])

    get_event_bus().subscribe(EventType.STATE_CHANGED, on_state)
"""
from typing import Callable, List, Dict, Any, Optional
from enum import Enum
import msgspec
import asyncio
from collections import defaultdict
import logging
import time


logger = logging.getLogger("neron.event_bus")


class EventType(str, Enum):
    """Types of events flowing through the bus."""
    # Inbound (consumed by the bridge)
    GRAPH_RELOAD = "graph_reload"
    NODE_HIGHLIGHT = "node_highlight"
    POINTER = "pointer"
    KEYBOARD = "keyboard"
    # Outbound (published by the engine)
    STATE_CHANGED = "state_changed"
    NOTIFICATION = "notification"
    CENTER_REQUESTED = "center_requested"
    CONSOLE_FOCUS_REQUESTED = "console_focus_requested"


class GraphEvent(msgspec.Struct, kw_only=True):
    """
    A single bus event.

    Attributes:
        type: Type of event (GRAPH_RELOAD, POINTER, etc.)
        payload: Event-specific data (graph payload, node ids, key, etc.)
        timestamp: Unix timestamp when event occurred
        source: Source of event ("mcp", "api", "renderer", "engine")
    """
    type: EventType
    payload: Dict[str, Any]
    timestamp: float
    source: str


class EventBus:
    """
    Routes GraphEvents from publishers to per-type handler lists.

    Handlers run in subscription order. Not thread-safe: publish from the
    event loop thread only. Async handlers become tasks on the running loop
    and are skipped (with a warning) when no loop runs.
    """

    def __init__(self):
        self._subscribers: Dict[EventType, List[Callable]] = defaultdict(list)
        self._async_subscribers: Dict[EventType, List[Callable]] = defaultdict(list)

    def subscribe(self, event_type: EventType, handler: Callable[[GraphEvent], None]):
        """
        Subscribe to events with a synchronous handler.

        Subscribing the same handler twice is a no-op.

        Args:
            event_type: Type of event to listen for
            handler: Callable that takes GraphEvent as argument
        """
        if handler not in self._subscribers[event_type]:
            self._subscribers[event_type].append(handler)
            logger.debug(f"Subscribed sync handler to {event_type.value}")

    def subscribe_async(self, event_type: EventType, handler: Callable[[GraphEvent], Any]):
        """
        Subscribe to events with an async handler.

        Args:
            event_type: Type of event to listen for
            handler: Async callable that takes GraphEvent as argument

        Example:
            async def on_state(event: GraphEvent):
                await broadcast(event.payload)

            event_bus.subscribe_async(EventType.STATE_CHANGED, on_state)
        """
        if handler not in self._async_subscribers[event_type]:
            self._async_subscribers[event_type].append(handler)
            logger.debug(f"Subscribed async handler to {event_type.value}")

    def publish(self, event: GraphEvent):
        """
        Publish an event to all subscribers.

        Args:
            event: GraphEvent to publish

        Note:
            - Sync handlers run immediately (blocking)
            - Async handlers are scheduled and run in the background
            - Exceptions in handlers are logged but don't propagate
        """
        logger.debug(
            f"Publishing {event.type.value} from {event.source} "
            f"(payload keys: {list(event.payload.keys())})"
        )

        # Copy: handlers may unsubscribe while we iterate
        for handler in list(self._subscribers[event.type]):
            try:
                handler(event)
            except Exception as e:
                logger.error(
                    f"Error in sync handler for {event.type.value}: {e}",
                    exc_info=True
                )

        async_handlers = list(self._async_subscribers[event.type])
        if not async_handlers:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(
                f"Cannot schedule {len(async_handlers)} async handler(s) for "
                f"{event.type.value}: no event loop running"
            )
            return

        for handler in async_handlers:
            loop.create_task(handler(event))

    def unsubscribe(self, event_type: EventType, handler: Callable):
        """
        Unsubscribe from events. Unknown handlers are ignored.

        Args:
            event_type: Type of event to unsubscribe from
            handler: Handler to remove (must compare equal to the subscribed one)
        """
        if handler in self._subscribers[event_type]:
            self._subscribers[event_type].remove(handler)
            logger.debug(f"Unsubscribed sync handler from {event_type.value}")

        if handler in self._async_subscribers[event_type]:
            self._async_subscribers[event_type].remove(handler)
            logger.debug(f"Unsubscribed async handler from {event_type.value}")

    def clear_subscribers(self, event_type: EventType = None):
        """Drop the handlers of one event type, or of every type (tests)."""
        if event_type is None:
            self._subscribers.clear()
            self._async_subscribers.clear()
            logger.info("Cleared all event subscribers")
        else:
            self._subscribers[event_type].clear()
            self._async_subscribers[event_type].clear()
            logger.info(f"Cleared subscribers for {event_type.value}")

    def subscriber_count(self, event_type: EventType = None) -> int:
        """Sync plus async handlers for event_type, or for every type when None."""
        if event_type is None:
            total = sum(len(handlers) for handlers in self._subscribers.values())
            total += sum(len(handlers) for handlers in self._async_subscribers.values())
            return total
        return (
            len(self._subscribers[event_type]) +
            len(self._async_subscribers[event_type])
        )


# =============================================================================
# SINGLETON INSTANCE
# =============================================================================

_event_bus: Optional[EventBus] = None


def get_event_bus() -> EventBus:
    """Get the global event bus instance (singleton)."""
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus()
        logger.info("Initialized global event bus")
    return _event_bus


def reset_event_bus() -> None:
    """Drop the global bus and all its subscribers (tests)."""
    global _event_bus
    _event_bus = None


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def _publish(event_type: EventType, payload: Dict[str, Any], source: str, bus: Optional[EventBus]):
    (bus if bus is not None else get_event_bus()).publish(GraphEvent(
        type=event_type,
        payload=payload,
        timestamp=time.time(),
        source=source,
    ))


def publish_graph_reload(graph: Dict[str, Any], source: str = "unknown", bus: Optional[EventBus] = None):
    """
    Publish a GRAPH_RELOAD event.

    Args:
        graph: Raw {entities, relations} or enhanced {nodes, links, layers, tagIndex}
        source: Source of the event
        bus: Bus to publish on (defaults to the global bus)
    """
    _publish(EventType.GRAPH_RELOAD, graph, source, bus)


def publish_node_highlight(node_ids: List[str], source: str = "unknown", bus: Optional[EventBus] = None):
    """Publish a NODE_HIGHLIGHT event for the given node ids."""
    _publish(EventType.NODE_HIGHLIGHT, {"nodeIds": list(node_ids)}, source, bus)


def publish_pointer(
    gesture: str,
    node_id: Optional[str] = None,
    x: float = 0.0,
    y: float = 0.0,
    source: str = "renderer",
    bus: Optional[EventBus] = None,
):
    """
    Publish a POINTER event.

    Args:
        gesture: One of PointerGesture (hover, click, double_click, ...)
        node_id: Node under the pointer (None for background/hover-out)
        x, y: Screen position of the gesture
    """
    _publish(EventType.POINTER, {"gesture": gesture, "nodeId": node_id, "x": x, "y": y}, source, bus)


def publish_key(key: str, target: str = "body", source: str = "keyboard", bus: Optional[EventBus] = None):
    """
    Publish a KEYBOARD event.

    Args:
        key: The key pressed ("h", "/", "f", ...)
        target: Tag name of the focused element ("body", "input", "textarea")
    """
    _publish(EventType.KEYBOARD, {"key": key, "target": target}, source, bus)


def publish_notification(
    content: str,
    kind: str = "system",
    sequence: int = 0,
    source: str = "engine",
    bus: Optional[EventBus] = None,
):
    """Publish a NOTIFICATION event (a console system message)."""
    _publish(
        EventType.NOTIFICATION,
        {"content": content, "kind": kind, "sequence": sequence},
        source,
        bus,
    )
