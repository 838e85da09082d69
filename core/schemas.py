"""
NERON SCHEMAS - The Grammar of the System

If ontology.py is the Dictionary (defining the words we can use),
schemas.py is the Grammar (defining how we structure a graph snapshot).

This module defines the data structures that flow between the transformer,
the interaction engine and the rendering surface:
- Entity / Relation / RawGraph: What the tool channel pushes in
- NodeTag / NodeMetadata / LayerInfo: Enrichment attached by the transformer
- GraphNode / GraphLink / GraphData: The enhanced, indexed snapshot
- NodeSelection / ScreenPosition: Selection cards pinned to a node
- Serialization helpers for export, cache isolation and IPC

Design Principles:
1. STRICT TYPING: msgspec.Struct with no silent type coercion
2. KW_ONLY: Enforce keyword arguments to prevent positional mix-ups
3. WIRE NAMES: Fields are snake_case in Python, camelCase on the wire
4. IMMUTABLE IDS: A node id is its entity name and never changes
5. TAGGED ENDPOINTS: A link endpoint is either an id or an embedded node,
   and every algorithm compares the resolved id
"""
import msgspec
from typing import Optional, Dict, Any, List, Union
from datetime import datetime, timezone
import hashlib

from core.errors import PayloadError
from core.ontology import TagCategory, LINK_ID_SEPARATOR


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def now_utc() -> str:
    """Fast UTC timestamp as ISO8601 string."""
    return datetime.now(timezone.utc).isoformat()


def compute_hash(content: bytes) -> str:
    """Content hash used to address cached graph snapshots."""
    return hashlib.sha256(content).hexdigest()


# =============================================================================
# RAW INPUT (What the tool channel sends)
# =============================================================================

class Entity(msgspec.Struct, kw_only=True, rename="camel"):
    """A named entity with free-text observations."""
    name: str
    type: str = ""
    observations: List[str] = msgspec.field(default_factory=list)


class Relation(msgspec.Struct, kw_only=True, rename="camel"):
    """A typed, directed relation between two entity names."""
    source: str
    target: str
    relation_type: str = "related"


class RawGraph(msgspec.Struct, kw_only=True, rename="camel"):
    """Unenhanced graph as produced by a read_graph tool call."""
    entities: List[Entity] = msgspec.field(default_factory=list)
    relations: List[Relation] = msgspec.field(default_factory=list)


# =============================================================================
# ENRICHMENT
# =============================================================================

class NodeTag(msgspec.Struct, kw_only=True, rename="camel"):
    """A weighted tag attached to a node."""
    name: str
    category: TagCategory = TagCategory.KEYWORD
    weight: int = 5                     # 1-10
    color: Optional[str] = None


class NodeMetadata(msgspec.Struct, kw_only=True, rename="camel"):
    """
    Derived properties of a node.

    importance is the rounded mean of the node's tag weights, keywords are
    the first content keywords in observation order.
    """
    created_at: str = msgspec.field(default_factory=now_utc)
    updated_at: str = msgspec.field(default_factory=now_utc)
    importance: int = 5                 # 1-10
    keywords: List[str] = msgspec.field(default_factory=list)
    connection_strength: float = 5.0
    category: Optional[str] = None
    cluster_id: Optional[str] = None


class LayerInfo(msgspec.Struct, kw_only=True, rename="camel"):
    """
    A z-plane grouping nodes by a dominant tag.

    The engine never interprets layers; they are passed through to the
    rendering surface untouched.
    """
    id: str
    name: str
    z_position: float = 0.0
    tags: List[str] = msgspec.field(default_factory=list)
    visible: bool = True
    opacity: float = 1.0
    color: str = "#00ff41"
    node_count: int = 0
    node_ids: List[str] = msgspec.field(default_factory=list)


# =============================================================================
# ENHANCED GRAPH
# =============================================================================

class GraphNode(msgspec.Struct, kw_only=True, rename="camel"):
    """
    One vertex of the enhanced graph.

    x/y/z are seeds only: the rendering surface owns positions and may
    overwrite them at any time.
    """
    id: str
    name: str
    type: str = ""
    observations: List[str] = msgspec.field(default_factory=list)
    color: str = "#00ff41"
    size: float = 5.0
    x: Optional[float] = None
    y: Optional[float] = None
    z: Optional[float] = None
    tags: List[NodeTag] = msgspec.field(default_factory=list)
    metadata: NodeMetadata = msgspec.field(default_factory=NodeMetadata)
    tag_string: str = ""
    layer_id: Optional[str] = None


Endpoint = Union[str, GraphNode]


def endpoint_id(endpoint: Endpoint) -> str:
    """Resolve a link endpoint (id or embedded node) to its node id."""
    if isinstance(endpoint, GraphNode):
        return endpoint.id
    return endpoint


class GraphLink(msgspec.Struct, kw_only=True, rename="camel"):
    """
    One directed edge of the enhanced graph.

    source/target start out as ids. The rendering surface may replace them
    with the node objects it resolved; use source_id/target_id to compare.
    """
    source: Endpoint
    target: Endpoint
    relation_type: str = "related"
    color: str = "#00ff41"
    width: float = 2.0
    strength: int = 3                   # 1-10
    is_inter_layer: bool = False
    tags: List[str] = msgspec.field(default_factory=list)

    @property
    def source_id(self) -> str:
        return endpoint_id(self.source)

    @property
    def target_id(self) -> str:
        return endpoint_id(self.target)

    @property
    def link_id(self) -> str:
        """Stable id "{sourceId}-{targetId}" used by highlight sets."""
        return link_id(self.source_id, self.target_id)


def link_id(source_id: str, target_id: str) -> str:
    return f"{source_id}{LINK_ID_SEPARATOR}{target_id}"


class GraphData(msgspec.Struct, kw_only=True, rename="camel"):
    """
    The enhanced graph snapshot.

    tag_index maps a tag name to the ids of the nodes carrying it, each id
    at most once, in first-seen order. Only the transformer builds it.
    """
    nodes: List[GraphNode] = msgspec.field(default_factory=list)
    links: List[GraphLink] = msgspec.field(default_factory=list)
    layers: List[LayerInfo] = msgspec.field(default_factory=list)
    tag_index: Dict[str, List[str]] = msgspec.field(default_factory=dict)

    def node_index(self) -> Dict[str, GraphNode]:
        """id -> node. With duplicate ids the last node wins."""
        return {node.id: node for node in self.nodes}

    def get_node(self, node_id: str) -> Optional[GraphNode]:
        found = None
        for node in self.nodes:
            if node.id == node_id:
                found = node
        return found


# =============================================================================
# SELECTION
# =============================================================================

class ScreenPosition(msgspec.Struct, kw_only=True, frozen=True):
    """Pixel position of a selection card."""
    x: float = 0.0
    y: float = 0.0


class NodeSelection(msgspec.Struct, kw_only=True, frozen=True):
    """
    A node card pinned to the screen.

    Two selections are the same card when they point at the same node id.
    Persistent selections survive background clicks.
    """
    node: GraphNode
    position: ScreenPosition = ScreenPosition()
    persistent: bool = False

    @property
    def node_id(self) -> str:
        return self.node.id


# =============================================================================
# SERIALIZATION HELPERS
# =============================================================================

# Pre-compiled encoders/decoders for hot paths
_json_decoder = msgspec.json.Decoder()
_msgpack_encoder = msgspec.msgpack.Encoder()
_msgpack_graph_decoder = msgspec.msgpack.Decoder(type=GraphData)


def decode_payload(data: bytes) -> Any:
    """
    Decode a JSON reload payload into plain Python types.

    Shape checks are left to the transformer, which drops what does not fit
    item by item.

    Raises:
        PayloadError: If data is not valid JSON
    """
    try:
        return _json_decoder.decode(data)
    except msgspec.DecodeError as e:
        raise PayloadError(f"Invalid JSON: {e}") from e


def pack_graph(graph: GraphData) -> bytes:
    """Serialize GraphData to msgpack bytes (used for cache isolation)."""
    return _msgpack_encoder.encode(graph)


def unpack_graph(data: bytes) -> GraphData:
    return _msgpack_graph_decoder.decode(data)


def to_builtins(value: Any) -> Any:
    """Convert structs to plain dicts/lists with wire (camelCase) names."""
    return msgspec.to_builtins(value)
