"""
NERON VISUALIZATION - What the rendering surface consumes

This package provides the render-side data model:
- core: Render snapshots, Arrow serialization, JSON export, graph comparison
"""

from viz.core import (
    RenderNode,
    RenderLink,
    RenderSnapshot,
    Connection,
    GraphComparison,
    build_render_snapshot,
    serialize_to_arrow,
    export_graph_json,
    write_export,
    get_connections,
    compare_graphs,
)

__all__ = [
    "RenderNode",
    "RenderLink",
    "RenderSnapshot",
    "Connection",
    "GraphComparison",
    "build_render_snapshot",
    "serialize_to_arrow",
    "export_graph_json",
    "write_export",
    "get_connections",
    "compare_graphs",
]
