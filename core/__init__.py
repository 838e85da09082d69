"""
NERON CORE - Graph synchronization and interaction state.

This package provides:
- Data model (schemas, ontology)
- Graph transformation and caching (transformer, graph_cache)
- Interaction state (reducers, engine) and its event bridge
- Tool-call channel adapter
"""

from core.errors import NeronError, PayloadError, ToolChannelError
from core.schemas import (
    Entity,
    Relation,
    RawGraph,
    NodeTag,
    NodeMetadata,
    LayerInfo,
    GraphNode,
    GraphLink,
    GraphData,
    NodeSelection,
    ScreenPosition,
)
from core.transformer import transform, transform_with_report, TransformReport

__all__ = [
    "NeronError",
    "PayloadError",
    "ToolChannelError",
    "Entity",
    "Relation",
    "RawGraph",
    "NodeTag",
    "NodeMetadata",
    "LayerInfo",
    "GraphNode",
    "GraphLink",
    "GraphData",
    "NodeSelection",
    "ScreenPosition",
    "transform",
    "transform_with_report",
    "TransformReport",
]
