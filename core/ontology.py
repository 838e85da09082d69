"""
NERON ONTOLOGY - The Dictionary of the System

If schemas.py is the Grammar (how we structure a graph snapshot),
ontology.py is the Dictionary (the words and constants we can use).

This module defines:
- Enums: The vocabulary (TagCategory, PointerGesture, CacheKey)
- Palettes: Deterministic node/layer/link colors
- Word lists: Stopwords and importance indicators for tag extraction

Everything here is static data. Nothing in this module has side effects.
"""
from typing import Dict, FrozenSet
from enum import Enum


# =============================================================================
# ENUMS (The Vocabulary)
# =============================================================================

class TagCategory(str, Enum):
    """Where a node tag came from."""
    HASHTAG = "hashtag"              # Explicit #word in the observations
    KEYWORD = "keyword"              # Extracted from free text
    TYPE = "type"                    # Derived from the entity type
    CUSTOM = "custom"                # Attached by hand (never by the transformer)


class PointerGesture(str, Enum):
    """Gestures the rendering surface and node cards can report."""
    HOVER = "hover"
    CLICK = "click"
    DOUBLE_CLICK = "double_click"
    BACKGROUND_CLICK = "background_click"
    CLOSE_CARD = "close_card"
    CARD_NODE_CLICK = "card_node_click"  # Neighbor link clicked inside a node card


class CacheKey(str, Enum):
    """Well-known graph cache keys."""
    FULL_GRAPH = "full_graph"


class NotificationKind(str, Enum):
    """Message kinds shown in the console."""
    SYSTEM = "system"
    TOOL = "mcp_tool"
    ERROR = "error"


# =============================================================================
# COLOR PALETTES
# =============================================================================

# Node colors by entity type (matrix green family)
NODE_COLORS: Dict[str, str] = {
    "Project": "#00ff41",
    "Development Phase": "#00cc33",
    "Historical Figure": "#33ff66",
    "Natural Phenomenon": "#66ff99",
    "Resource": "#99ffcc",
    "SYSTEM": "#00ff41",
    "PROCESS": "#00cc33",
    "INTERFACE": "#33ff66",
    "STORAGE": "#66ff99",
    "INTEGRATION": "#99ffcc",
    "default": "#00ff41",
}

# Layer colors by tag name
LAYER_COLORS: Dict[str, str] = {
    "project": "#00ff41",
    "development": "#00cc33",
    "research": "#33ff66",
    "concept": "#66ff99",
    "tool": "#99ffcc",
    "framework": "#ccffcc",
    "default": "#00ff41",
}

INTRA_LAYER_LINK_COLOR = "#00ff41"
INTER_LAYER_LINK_COLOR = "#ffffff"
SELECTED_NODE_COLOR = "#ffffff"
HIGHLIGHTED_LINK_COLOR = "#ffffff"


def node_color(node_type: str) -> str:
    """Color for an entity type, falling back to the default."""
    return NODE_COLORS.get(node_type, NODE_COLORS["default"])


def layer_color(tag_name: str) -> str:
    """Color for a layer/tag name, falling back to the default."""
    return LAYER_COLORS.get(tag_name, LAYER_COLORS["default"])


# =============================================================================
# TAG EXTRACTION VOCABULARY
# =============================================================================

# Indicator word -> weight it lends to every keyword in the same text
IMPORTANCE_KEYWORDS: Dict[str, int] = {
    "critical": 9,
    "important": 8,
    "essential": 8,
    "key": 7,
    "main": 7,
    "primary": 7,
    "core": 8,
    "fundamental": 8,
    "basic": 5,
    "minor": 3,
    "optional": 4,
    "experimental": 6,
}

STOPWORDS: FrozenSet[str] = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "is", "are", "was", "were", "be", "been", "have",
    "has", "had", "do", "does", "did", "will", "would", "could", "should",
    "can", "may", "might", "must", "this", "that", "these", "those",
})

# Tag weights by category
HASHTAG_WEIGHT = 6
TYPE_TAG_WEIGHT = 8
DEFAULT_TAG_WEIGHT = 5

# Layer generation
LAYER_MIN_WEIGHT = 7                 # Tags below this never get their own layer
LAYER_MIN_NODES = 2                  # ...nor do tags carried by a single node
LAYER_SPACING = 200.0                # z distance between consecutive layers
DEFAULT_LAYER_ID = "layer-default"

# Node sizing
MIN_NODE_SIZE = 5.0
MAX_NODE_SIZE = 15.0

# Metadata
MAX_METADATA_KEYWORDS = 10
DEFAULT_CONNECTION_STRENGTH = 5.0

# Link id separator ("{source}-{target}")
LINK_ID_SEPARATOR = "-"
