"""
NERON VISUALIZATION CORE - The Rendering Surface's Data Model

This module bridges the interaction engine's state with what the 3D
rendering surface needs to draw, and with the JSON export format.

Architecture:
- RenderNode/RenderLink: Per-element draw hints (color, size, opacity, flags)
- RenderSnapshot: Full render state for initial paint and WebSocket pushes
- Export: Indented JSON of a GraphData, re-importable through a reload
- GraphComparison: What changed between two graph snapshots

Performance:
- Uses polars for Arrow IPC serialization of large graphs
- Highlight/selection styling done server-side to keep the client dumb
"""
import msgspec
from typing import Optional, Dict, List, Any, Tuple, Union
from dataclasses import dataclass, field
from pathlib import Path
import io

import polars as pl

from core.ontology import (
    SELECTED_NODE_COLOR,
    HIGHLIGHTED_LINK_COLOR,
    INTER_LAYER_LINK_COLOR,
)
from core.reducers import InteractionState
from core.schemas import GraphData, GraphNode, LayerInfo, now_utc, to_builtins


DEFAULT_EXPORT_FILENAME = "neron-graph-export.json"


# =============================================================================
# RENDER DATA STRUCTURES
# =============================================================================

class RenderNode(msgspec.Struct, kw_only=True):
    """
    Draw hints for one node.

    Contains only what the renderer needs, plus interaction flags so the
    client never recomputes highlight membership.
    """
    id: str
    label: str                          # Display name
    type: str
    color: str                          # Hex color (selected nodes are white)
    size: float = 5.0                   # Sphere radius after importance scaling
    opacity: float = 0.7
    x: Optional[float] = None
    y: Optional[float] = None
    z: Optional[float] = None           # Layer seed
    layer_id: Optional[str] = None

    is_selected: bool = False
    is_highlighted: bool = False
    is_hovered: bool = False


class RenderLink(msgspec.Struct, kw_only=True):
    """Draw hints for one link."""
    id: str                             # "{sourceId}-{targetId}"
    source: str
    target: str
    relation_type: str
    color: str
    width: float = 2.0
    is_inter_layer: bool = False
    is_highlighted: bool = False


class RenderSnapshot(msgspec.Struct, kw_only=True):
    """
    Complete render state.

    Sent on WebSocket connection and after every state change.
    """
    timestamp: str
    node_count: int
    link_count: int
    nodes: List[RenderNode]
    links: List[RenderLink]
    layers: List[LayerInfo] = msgspec.field(default_factory=list)

    selected_node_ids: List[str] = msgspec.field(default_factory=list)
    hovered_node_id: Optional[str] = None
    is_hover_mode: bool = True

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "timestamp": self.timestamp,
            "node_count": self.node_count,
            "link_count": self.link_count,
            "nodes": [msgspec.to_builtins(n) for n in self.nodes],
            "links": [msgspec.to_builtins(link) for link in self.links],
            "layers": [to_builtins(layer) for layer in self.layers],
            "selected_node_ids": self.selected_node_ids,
            "hovered_node_id": self.hovered_node_id,
            "is_hover_mode": self.is_hover_mode,
        }


def _node_display_color(node: GraphNode, layers: Dict[str, LayerInfo], selected: bool) -> str:
    if selected:
        return SELECTED_NODE_COLOR
    layer = layers.get(node.layer_id or "")
    if layer is not None and layer.color:
        return layer.color
    return node.color


def build_render_snapshot(state: InteractionState) -> RenderSnapshot:
    """
    Flatten an interaction state into render hints.

    Node size grows with importance (0.8x at 0 to 1.2x at 10). Opacity is
    1.0 for selected, 0.9 for highlighted and 0.7 for other nodes, scaled
    by the layer's opacity. Inter-layer links are white and 1.5x wider;
    highlighted links are white and another 1.5x wider.
    """
    graph = state.graph_data
    layers = {layer.id: layer for layer in graph.layers}
    selected_ids = [s.node_id for s in state.selected_nodes]
    selected = set(selected_ids)
    hovered_id = state.hovered_node.id if state.hovered_node else None

    nodes = []
    for node in graph.nodes:
        is_selected = node.id in selected
        is_highlighted = node.id in state.highlighted_nodes
        layer = layers.get(node.layer_id or "")
        base_opacity = 1.0 if is_selected else 0.9 if is_highlighted else 0.7
        nodes.append(RenderNode(
            id=node.id,
            label=node.name,
            type=node.type,
            color=_node_display_color(node, layers, is_selected),
            size=node.size * (0.8 + 0.4 * node.metadata.importance / 10),
            opacity=base_opacity * (layer.opacity if layer is not None else 1.0),
            x=node.x,
            y=node.y,
            z=node.z,
            layer_id=node.layer_id,
            is_selected=is_selected,
            is_highlighted=is_highlighted,
            is_hovered=node.id == hovered_id,
        ))

    links = []
    for link in graph.links:
        is_highlighted = link.link_id in state.highlighted_links
        width = link.width * 1.5 if link.is_inter_layer else link.width
        color = INTER_LAYER_LINK_COLOR if link.is_inter_layer else link.color
        links.append(RenderLink(
            id=link.link_id,
            source=link.source_id,
            target=link.target_id,
            relation_type=link.relation_type,
            color=HIGHLIGHTED_LINK_COLOR if is_highlighted else color,
            width=width * 1.5 if is_highlighted else width,
            is_inter_layer=link.is_inter_layer,
            is_highlighted=is_highlighted,
        ))

    return RenderSnapshot(
        timestamp=now_utc(),
        node_count=len(nodes),
        link_count=len(links),
        nodes=nodes,
        links=links,
        layers=list(graph.layers),
        selected_node_ids=selected_ids,
        hovered_node_id=hovered_id,
        is_hover_mode=state.is_hover_mode,
    )


# =============================================================================
# ARROW IPC SERIALIZATION
# =============================================================================

def serialize_to_arrow(snapshot: RenderSnapshot) -> Tuple[bytes, bytes]:
    """
    Serialize a RenderSnapshot to Apache Arrow IPC format.

    Returns:
        Tuple of (nodes_arrow_bytes, links_arrow_bytes)
    """
    nodes_df = pl.DataFrame({
        "id": [n.id for n in snapshot.nodes],
        "label": [n.label for n in snapshot.nodes],
        "type": [n.type for n in snapshot.nodes],
        "color": [n.color for n in snapshot.nodes],
        "size": [float(n.size) for n in snapshot.nodes],
        "opacity": [float(n.opacity) for n in snapshot.nodes],
        "x": [n.x for n in snapshot.nodes],
        "y": [n.y for n in snapshot.nodes],
        "z": [n.z for n in snapshot.nodes],
        "layer_id": [n.layer_id for n in snapshot.nodes],
        "is_selected": [n.is_selected for n in snapshot.nodes],
        "is_highlighted": [n.is_highlighted for n in snapshot.nodes],
    }, schema={
        "id": pl.Utf8,
        "label": pl.Utf8,
        "type": pl.Utf8,
        "color": pl.Utf8,
        "size": pl.Float64,
        "opacity": pl.Float64,
        "x": pl.Float64,
        "y": pl.Float64,
        "z": pl.Float64,
        "layer_id": pl.Utf8,
        "is_selected": pl.Boolean,
        "is_highlighted": pl.Boolean,
    })

    links_df = pl.DataFrame({
        "id": [link.id for link in snapshot.links],
        "source": [link.source for link in snapshot.links],
        "target": [link.target for link in snapshot.links],
        "relation_type": [link.relation_type for link in snapshot.links],
        "color": [link.color for link in snapshot.links],
        "width": [float(link.width) for link in snapshot.links],
        "is_inter_layer": [link.is_inter_layer for link in snapshot.links],
        "is_highlighted": [link.is_highlighted for link in snapshot.links],
    }, schema={
        "id": pl.Utf8,
        "source": pl.Utf8,
        "target": pl.Utf8,
        "relation_type": pl.Utf8,
        "color": pl.Utf8,
        "width": pl.Float64,
        "is_inter_layer": pl.Boolean,
        "is_highlighted": pl.Boolean,
    })

    nodes_buffer = io.BytesIO()
    links_buffer = io.BytesIO()

    nodes_df.write_ipc(nodes_buffer)
    links_df.write_ipc(links_buffer)

    return nodes_buffer.getvalue(), links_buffer.getvalue()


# =============================================================================
# EXPORT
# =============================================================================

def graph_to_export_dict(graph: GraphData) -> Dict[str, Any]:
    """GraphData as plain JSON types, link endpoints written as node ids."""
    data = to_builtins(graph)
    for raw_link, link in zip(data["links"], graph.links):
        raw_link["source"] = link.source_id
        raw_link["target"] = link.target_id
    return data


def export_graph_json(graph: GraphData, indent: int = 2) -> bytes:
    """
    Indented JSON export of a graph.

    Carries layers and tagIndex, so a reload of the result installs it
    as-is instead of transforming it again.
    """
    return msgspec.json.format(msgspec.json.encode(graph_to_export_dict(graph)), indent=indent)


def write_export(
    graph: GraphData,
    directory: Union[str, Path] = ".",
    filename: str = DEFAULT_EXPORT_FILENAME,
    indent: int = 2,
) -> Path:
    """Write export_graph_json(graph) to directory/filename and return the path."""
    path = Path(directory) / filename
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(export_graph_json(graph, indent=indent))
    return path


# =============================================================================
# NODE CARD HELPERS
# =============================================================================

class Connection(msgspec.Struct, kw_only=True):
    """One neighbor listed on a node card."""
    node_id: str
    name: str
    type: str
    relation_type: str
    direction: str                      # "incoming" | "outgoing"


def get_connections(graph: GraphData, node_id: str) -> Dict[str, List[Connection]]:
    """
    Incoming and outgoing neighbors of a node.

    Links to ids with no node behind them are left out.
    """
    by_id = graph.node_index()
    incoming: List[Connection] = []
    outgoing: List[Connection] = []

    for link in graph.links:
        source_id, target_id = link.source_id, link.target_id
        if target_id == node_id:
            other, direction, bucket = by_id.get(source_id), "incoming", incoming
        elif source_id == node_id:
            other, direction, bucket = by_id.get(target_id), "outgoing", outgoing
        else:
            continue
        if other is None:
            continue
        bucket.append(Connection(
            node_id=other.id,
            name=other.name,
            type=other.type,
            relation_type=link.relation_type,
            direction=direction,
        ))

    return {"incoming": incoming, "outgoing": outgoing}


# =============================================================================
# COMPARISON UTILITIES
# =============================================================================

@dataclass
class GraphComparison:
    """
    Comparison between two graph snapshots.

    Logged on every reload to show what the push changed.
    """
    baseline: GraphData
    treatment: GraphData

    # Delta metrics
    node_delta: int = 0
    link_delta: int = 0
    layer_delta: int = 0

    # Type breakdowns
    type_deltas: Dict[str, int] = field(default_factory=dict)

    # Structural changes
    nodes_only_in_baseline: List[str] = field(default_factory=list)
    nodes_only_in_treatment: List[str] = field(default_factory=list)
    nodes_in_both: List[str] = field(default_factory=list)
    links_added: List[str] = field(default_factory=list)
    links_removed: List[str] = field(default_factory=list)

    def __post_init__(self):
        self._compute_deltas()

    def _compute_deltas(self):
        self.node_delta = len(self.treatment.nodes) - len(self.baseline.nodes)
        self.link_delta = len(self.treatment.links) - len(self.baseline.links)
        self.layer_delta = len(self.treatment.layers) - len(self.baseline.layers)

        baseline_ids = {n.id for n in self.baseline.nodes}
        treatment_ids = {n.id for n in self.treatment.nodes}
        self.nodes_only_in_baseline = sorted(baseline_ids - treatment_ids)
        self.nodes_only_in_treatment = sorted(treatment_ids - baseline_ids)
        self.nodes_in_both = sorted(baseline_ids & treatment_ids)

        baseline_links = {link.link_id for link in self.baseline.links}
        treatment_links = {link.link_id for link in self.treatment.links}
        self.links_added = sorted(treatment_links - baseline_links)
        self.links_removed = sorted(baseline_links - treatment_links)

        baseline_types: Dict[str, int] = {}
        for n in self.baseline.nodes:
            baseline_types[n.type] = baseline_types.get(n.type, 0) + 1
        treatment_types: Dict[str, int] = {}
        for n in self.treatment.nodes:
            treatment_types[n.type] = treatment_types.get(n.type, 0) + 1
        for t in set(baseline_types) | set(treatment_types):
            self.type_deltas[t] = treatment_types.get(t, 0) - baseline_types.get(t, 0)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "node_delta": self.node_delta,
            "link_delta": self.link_delta,
            "layer_delta": self.layer_delta,
            "type_deltas": self.type_deltas,
            "nodes_only_in_baseline": self.nodes_only_in_baseline,
            "nodes_only_in_treatment": self.nodes_only_in_treatment,
            "nodes_in_both_count": len(self.nodes_in_both),
            "links_added": self.links_added,
            "links_removed": self.links_removed,
        }


def compare_graphs(baseline: GraphData, treatment: GraphData) -> GraphComparison:
    """
    Compare two graph snapshots.

    Args:
        baseline: The graph before the change
        treatment: The graph after the change

    Returns:
        GraphComparison with computed metrics
    """
    return GraphComparison(baseline=baseline, treatment=treatment)
