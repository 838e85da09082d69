"""
NERON REDUCERS - Pure interaction state transitions

Every operation of the interaction engine is a function
(state, payload) -> new state. Reducers never mutate their input, never
perform I/O and never raise on unknown ids: the engine owns side effects
(centering, notifications, caching) and calls these to compute the next
state.

Highlight sets are only ever produced in pairs (nodes + links) from the
same graph snapshot.
"""
from typing import FrozenSet, Iterable, Optional, Tuple

import msgspec
from msgspec.structs import replace

from core.schemas import (
    GraphData,
    GraphNode,
    NodeSelection,
    ScreenPosition,
)


class InteractionState(msgspec.Struct, kw_only=True, frozen=True):
    """
    Everything the client shows besides node positions.

    selected_nodes is ordered (card stacking order); the highlight sets are
    frozensets of node ids and "{sourceId}-{targetId}" link ids.
    """
    graph_data: GraphData = msgspec.field(default_factory=GraphData)
    selected_nodes: Tuple[NodeSelection, ...] = ()
    highlighted_nodes: FrozenSet[str] = frozenset()
    highlighted_links: FrozenSet[str] = frozenset()
    hovered_node: Optional[GraphNode] = None
    is_hover_mode: bool = True
    is_console_visible: bool = False
    is_fullscreen: bool = False
    is_loading: bool = False


EMPTY: FrozenSet[str] = frozenset()


# =============================================================================
# DERIVED SETS
# =============================================================================

def links_touching(graph: GraphData, node_ids: FrozenSet[str]) -> FrozenSet[str]:
    """
    Ids of the links with a resolved endpoint in node_ids.

    Links whose endpoints do not both name a node of the graph are skipped.
    """
    known = {node.id for node in graph.nodes}
    found = set()
    for link in graph.links:
        source_id, target_id = link.source_id, link.target_id
        if source_id not in known or target_id not in known:
            continue
        if source_id in node_ids or target_id in node_ids:
            found.add(link.link_id)
    return frozenset(found)


def connected_sets(graph: GraphData, node_id: str) -> Tuple[FrozenSet[str], FrozenSet[str]]:
    """
    Single-hop neighborhood of a node.

    Returns:
        (node ids including node_id itself, ids of the links that touch it)
    """
    known = {node.id for node in graph.nodes}
    nodes = {node_id}
    links = set()
    for link in graph.links:
        source_id, target_id = link.source_id, link.target_id
        if source_id not in known or target_id not in known:
            continue
        if source_id == node_id or target_id == node_id:
            nodes.add(source_id)
            nodes.add(target_id)
            links.add(link.link_id)
    return frozenset(nodes), frozenset(links)


def _offset(position: ScreenPosition, offset: float) -> ScreenPosition:
    return ScreenPosition(x=position.x + offset, y=position.y + offset)


# =============================================================================
# REDUCERS
# =============================================================================

def reload(state: InteractionState, graph: GraphData) -> InteractionState:
    """Install a new graph snapshot. Highlights are cleared, selections kept."""
    return replace(
        state,
        graph_data=graph,
        highlighted_nodes=EMPTY,
        highlighted_links=EMPTY,
    )


def highlight_nodes(state: InteractionState, node_ids: Iterable[str]) -> InteractionState:
    """Highlight exactly node_ids and every link of the current graph touching them."""
    ids = frozenset(node_ids)
    return replace(
        state,
        highlighted_nodes=ids,
        highlighted_links=links_touching(state.graph_data, ids),
    )


def hover(state: InteractionState, node: Optional[GraphNode]) -> InteractionState:
    return replace(state, hovered_node=node)


def click(
    state: InteractionState,
    node: GraphNode,
    position: ScreenPosition,
    offset: float = 20.0,
) -> InteractionState:
    """The clicked node becomes the only selection (non-persistent)."""
    selection = NodeSelection(node=node, position=_offset(position, offset), persistent=False)
    return replace(state, selected_nodes=(selection,))


def double_click(
    state: InteractionState,
    node: GraphNode,
    position: ScreenPosition,
    offset: float = 20.0,
) -> InteractionState:
    """
    Lock a persistent card on the node and highlight its neighborhood.

    An existing card for the same node id is replaced where it stands;
    other cards are kept.
    """
    selection = NodeSelection(node=node, position=_offset(position, offset), persistent=True)

    selections = []
    replaced = False
    for existing in state.selected_nodes:
        if existing.node_id == node.id:
            if not replaced:
                selections.append(selection)
                replaced = True
            continue
        selections.append(existing)
    if not replaced:
        selections.append(selection)

    nodes, links = connected_sets(state.graph_data, node.id)
    return replace(
        state,
        selected_nodes=tuple(selections),
        highlighted_nodes=nodes,
        highlighted_links=links,
    )


def background_click(state: InteractionState) -> InteractionState:
    """Drop non-persistent cards and every highlight."""
    return replace(
        state,
        selected_nodes=tuple(s for s in state.selected_nodes if s.persistent),
        highlighted_nodes=EMPTY,
        highlighted_links=EMPTY,
    )


def close_selection(state: InteractionState, node_id: str) -> InteractionState:
    remaining = tuple(s for s in state.selected_nodes if s.node_id != node_id)
    if len(remaining) == len(state.selected_nodes):
        return state
    return replace(state, selected_nodes=remaining)


def toggle_hover_mode(state: InteractionState) -> InteractionState:
    return replace(state, is_hover_mode=not state.is_hover_mode)


def toggle_console(state: InteractionState) -> InteractionState:
    return replace(state, is_console_visible=not state.is_console_visible)


def toggle_fullscreen(state: InteractionState) -> InteractionState:
    return replace(state, is_fullscreen=not state.is_fullscreen)


def reset(state: InteractionState) -> InteractionState:
    """Forget selections, highlights and hover. The graph stays."""
    return replace(
        state,
        selected_nodes=(),
        highlighted_nodes=EMPTY,
        highlighted_links=EMPTY,
        hovered_node=None,
    )


def set_loading(state: InteractionState, flag: bool) -> InteractionState:
    if state.is_loading == flag:
        return state
    return replace(state, is_loading=flag)
