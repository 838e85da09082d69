"""
NERON TRANSFORMER - Raw entities in, enhanced graph out

Turns the {entities, relations} shape pushed by the tool channel into an
enriched, indexed GraphData:

1. One GraphNode per entity (id = entity name, duplicates kept)
2. Tags from hashtags, the entity type and content keywords
3. Layers for heavy tags shared by several nodes, plus a default layer
4. Links for relations whose endpoints both exist
5. A tag index (tag name -> node ids) for quick lookups

The transform is a pure function: no I/O, no clock reads unless no `now`
is passed in, and it never raises on malformed input. Dropped items are
reported in a TransformReport instead.
"""
import logging
import math
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

import msgspec

from core.ontology import (
    TagCategory,
    STOPWORDS,
    IMPORTANCE_KEYWORDS,
    HASHTAG_WEIGHT,
    TYPE_TAG_WEIGHT,
    DEFAULT_TAG_WEIGHT,
    LAYER_MIN_WEIGHT,
    LAYER_MIN_NODES,
    LAYER_SPACING,
    DEFAULT_LAYER_ID,
    MIN_NODE_SIZE,
    MAX_NODE_SIZE,
    MAX_METADATA_KEYWORDS,
    DEFAULT_CONNECTION_STRENGTH,
    INTER_LAYER_LINK_COLOR,
    INTRA_LAYER_LINK_COLOR,
    node_color,
    layer_color,
)
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
    now_utc,
)

logger = logging.getLogger("neron.transformer")

RawPayload = Union[RawGraph, Mapping[str, Any]]

_HASHTAG_RE = re.compile(r"#\w+")
_NON_WORD_RE = re.compile(r"[^\w\s-]")
_TECHNICAL_TERM_RE = re.compile(r"\b[A-Z][a-z]*(?:[A-Z][a-z]*)*\b")
_COMPOUND_WORD_RE = re.compile(r"\b\w+[-_]\w+\b")
_WHITESPACE_RE = re.compile(r"\s+")


# =============================================================================
# REPORT
# =============================================================================

class TransformReport(msgspec.Struct, kw_only=True):
    """What the transformer dropped or had to decide on the way."""
    warnings: List[str] = msgspec.field(default_factory=list)
    dropped_entities: int = 0
    dropped_relations: int = 0
    duplicate_ids: List[str] = msgspec.field(default_factory=list)
    installed_verbatim: bool = False

    def warn(self, message: str) -> None:
        self.warnings.append(message)
        logger.warning(message)


# =============================================================================
# TAG EXTRACTION
# =============================================================================

def extract_keywords(text: str) -> List[str]:
    """
    Meaningful words of a text, lowercased, in first-seen order.

    Plain words longer than two characters that are not stopwords, then
    Capitalized/CamelCase terms, then hyphen/underscore compounds.
    """
    cleaned = _NON_WORD_RE.sub(" ", text.lower())
    words = [
        word for word in _WHITESPACE_RE.split(cleaned)
        if len(word) > 2 and word not in STOPWORDS
    ]
    technical = [term.lower() for term in _TECHNICAL_TERM_RE.findall(text)]
    compounds = [term.lower() for term in _COMPOUND_WORD_RE.findall(text)]
    return list(dict.fromkeys(words + technical + compounds))


def keyword_weight(keyword: str, context: str) -> int:
    """
    Weight of a keyword within its context text, clamped to 1-10.

    Starts at the default weight, is raised to the strongest importance
    indicator present anywhere in the context, gains up to +3 for repeated
    mentions and +1 for compound terms.
    """
    lowered = context.lower()
    weight = DEFAULT_TAG_WEIGHT
    for indicator, value in IMPORTANCE_KEYWORDS.items():
        if indicator in lowered:
            weight = max(weight, value)

    frequency = lowered.count(keyword)
    weight += min(frequency - 1, 3)

    if "-" in keyword or "_" in keyword:
        weight += 1

    return min(max(weight, 1), 10)


def extract_tags(text: str, node_type: str) -> List[NodeTag]:
    """Hashtag, type and keyword tags for a node, without duplicate names."""
    tags: List[NodeTag] = []
    seen = set()

    for match in _HASHTAG_RE.findall(text):
        name = match.lower().replace("#", "", 1)
        if name not in seen:
            seen.add(name)
            tags.append(NodeTag(
                name=name,
                category=TagCategory.HASHTAG,
                weight=HASHTAG_WEIGHT,
                color=layer_color(name),
            ))

    if node_type and node_type.lower() not in seen:
        type_tag = _WHITESPACE_RE.sub("-", node_type.lower())
        seen.add(type_tag)
        tags.append(NodeTag(
            name=type_tag,
            category=TagCategory.TYPE,
            weight=TYPE_TAG_WEIGHT,
            color=node_color(node_type),
        ))

    for keyword in extract_keywords(text):
        if keyword not in seen and len(keyword) > 2:
            seen.add(keyword)
            tags.append(NodeTag(
                name=keyword,
                category=TagCategory.KEYWORD,
                weight=keyword_weight(keyword, text),
                color=layer_color(keyword),
            ))

    return tags


def build_metadata(observations: List[str], tags: List[NodeTag], now: str) -> NodeMetadata:
    """Importance is the rounded mean tag weight; keywords come from observations."""
    total = sum(tag.weight for tag in tags)
    mean = total / max(len(tags), 1)
    importance = min(max(math.floor(mean + 0.5), 1), 10)

    keywords: List[str] = []
    for observation in observations:
        keywords.extend(extract_keywords(observation))

    return NodeMetadata(
        created_at=now,
        updated_at=now,
        importance=importance,
        keywords=keywords[:MAX_METADATA_KEYWORDS],
        connection_strength=DEFAULT_CONNECTION_STRENGTH,
    )


def node_size(observation_count: int) -> float:
    return float(max(MIN_NODE_SIZE, min(MAX_NODE_SIZE, observation_count * 2)))


# =============================================================================
# LAYERS
# =============================================================================

def generate_layers(nodes: List[GraphNode]) -> List[LayerInfo]:
    """
    One layer per heavy tag (weight >= 7) carried by at least two nodes.

    Layers are ordered by how many nodes carry the tag (descending, stable
    on first appearance) and stacked LAYER_SPACING apart from z=0. A default
    layer sits one step below them and is always last.
    """
    # category -> tag name -> (weight of first occurrence, node ids)
    by_category: Dict[str, Dict[str, Tuple[int, List[str]]]] = {}
    for node in nodes:
        for tag in node.tags:
            tags = by_category.setdefault(tag.category, {})
            if tag.name not in tags:
                tags[tag.name] = (tag.weight, [])
            holders = tags[tag.name][1]
            if node.id not in holders:
                holders.append(node.id)

    important: List[str] = []
    for tags in by_category.values():
        for name, (weight, holders) in tags.items():
            if weight >= LAYER_MIN_WEIGHT and len(holders) >= LAYER_MIN_NODES:
                if name not in important:
                    important.append(name)

    def carriers(name: str) -> int:
        return sum(1 for node in nodes if any(t.name == name for t in node.tags))

    important.sort(key=carriers, reverse=True)

    layers: List[LayerInfo] = []
    z_position = 0.0
    for name in important:
        layers.append(LayerInfo(
            id=f"layer-{name}",
            name=name[:1].upper() + name[1:],
            z_position=z_position,
            tags=[name],
            color=layer_color(name),
        ))
        z_position += LAYER_SPACING

    layers.append(LayerInfo(
        id=DEFAULT_LAYER_ID,
        name="Default",
        z_position=-LAYER_SPACING,
        tags=["default"],
        color=layer_color("default"),
    ))
    return layers


def assign_nodes_to_layers(nodes: List[GraphNode], layers: List[LayerInfo]) -> List[GraphNode]:
    """
    Put every node on the layer of its heaviest matching tag.

    Returns new nodes with layer_id, z and tag_string set. The given layers
    get their node_count/node_ids filled in.
    """
    default = next(layer for layer in layers if layer.id == DEFAULT_LAYER_ID)
    assigned: List[GraphNode] = []

    for node in nodes:
        best = default
        highest = 0
        for tag in node.tags:
            matching = next((layer for layer in layers if tag.name in layer.tags), None)
            if matching is not None and tag.weight > highest:
                best = matching
                highest = tag.weight

        if node.id not in best.node_ids:
            best.node_ids.append(node.id)
        best.node_count = len(best.node_ids)

        assigned.append(msgspec.structs.replace(
            node,
            layer_id=best.id,
            z=best.z_position,
            tag_string=" ".join(tag.name for tag in node.tags),
        ))

    return assigned


def build_tag_index(nodes: Iterable[GraphNode]) -> Dict[str, List[str]]:
    """tag name -> ids of the nodes carrying it, each id once."""
    index: Dict[str, List[str]] = {}
    for node in nodes:
        for tag in node.tags:
            holders = index.setdefault(tag.name, [])
            if node.id not in holders:
                holders.append(node.id)
    return index


# =============================================================================
# LINKS
# =============================================================================

def build_link(relation: Relation, source: GraphNode, target: GraphNode) -> GraphLink:
    inter_layer = source.layer_id != target.layer_id
    target_tags = {tag.name for tag in target.tags}
    shared = [tag.name for tag in source.tags if tag.name in target_tags]
    return GraphLink(
        source=relation.source,
        target=relation.target,
        relation_type=relation.relation_type,
        color=INTER_LAYER_LINK_COLOR if inter_layer else INTRA_LAYER_LINK_COLOR,
        width=3.0 if inter_layer else 2.0,
        strength=min(max(len(shared) + 3, 1), 10),
        is_inter_layer=inter_layer,
        tags=shared,
    )


# =============================================================================
# INPUT COERCION
# =============================================================================

def _coerce_items(items: Any, item_type: type, label: str, report: TransformReport) -> Tuple[list, int]:
    if items is None:
        return [], 0
    if not isinstance(items, list):
        report.warn(f"Ignoring {label}: expected a list, got {type(items).__name__}")
        return [], 0

    coerced = []
    dropped = 0
    for position, item in enumerate(items):
        if isinstance(item, item_type):
            coerced.append(item)
            continue
        try:
            coerced.append(msgspec.convert(item, item_type))
        except msgspec.ValidationError as exc:
            dropped += 1
            report.warn(f"Dropped malformed {label} #{position}: {exc}")
    return coerced, dropped


def coerce_raw_graph(raw: RawPayload, report: TransformReport) -> RawGraph:
    """Validate a raw payload item by item, dropping what does not fit."""
    if isinstance(raw, RawGraph):
        return raw
    if not isinstance(raw, Mapping):
        report.warn(f"Ignoring payload: expected an object, got {type(raw).__name__}")
        return RawGraph()

    entities, dropped_entities = _coerce_items(raw.get("entities"), Entity, "entity", report)
    relations, dropped_relations = _coerce_items(raw.get("relations"), Relation, "relation", report)
    report.dropped_entities += dropped_entities
    report.dropped_relations += dropped_relations
    return RawGraph(entities=entities, relations=relations)


def is_enhanced(payload: Any) -> bool:
    """An enhanced payload already carries layers and a tag index."""
    return (
        isinstance(payload, GraphData)
        or (
            isinstance(payload, Mapping)
            and payload.get("layers") is not None
            and payload.get("tagIndex") is not None
        )
    )


def coerce_enhanced(payload: Union[GraphData, Mapping[str, Any]], report: TransformReport) -> GraphData:
    """
    Decode a pre-enhanced payload without re-deriving anything.

    Malformed nodes/links/layers are dropped individually. Dangling links
    are kept; highlight derivation skips them.
    """
    report.installed_verbatim = True
    if isinstance(payload, GraphData):
        return payload

    nodes, dropped_nodes = _coerce_items(payload.get("nodes"), GraphNode, "node", report)
    links, dropped_links = _coerce_items(payload.get("links"), GraphLink, "link", report)
    layers, _ = _coerce_items(payload.get("layers"), LayerInfo, "layer", report)
    report.dropped_entities += dropped_nodes
    report.dropped_relations += dropped_links

    try:
        tag_index = msgspec.convert(payload.get("tagIndex"), Dict[str, List[str]])
    except msgspec.ValidationError as exc:
        report.warn(f"Rebuilding malformed tagIndex: {exc}")
        tag_index = build_tag_index(nodes)

    known = {node.id for node in nodes}
    dangling = sum(1 for link in links if link.source_id not in known or link.target_id not in known)
    if dangling:
        report.warn(f"{dangling} link(s) reference unknown nodes")

    return GraphData(nodes=nodes, links=links, layers=layers, tag_index=tag_index)


def _nodes_to_raw(payload: Mapping[str, Any]) -> Dict[str, Any]:
    """Re-express a bare {nodes, links} payload as {entities, relations}."""
    entities = []
    for node in payload.get("nodes") or []:
        if isinstance(node, Mapping):
            entities.append({
                "name": node.get("name", node.get("id")),
                "type": node.get("type", ""),
                "observations": node.get("observations", []),
            })
        else:
            entities.append(node)

    relations = []
    for link in payload.get("links") or []:
        if isinstance(link, Mapping):
            source, target = link.get("source"), link.get("target")
            relations.append({
                "source": source.get("id") if isinstance(source, Mapping) else source,
                "target": target.get("id") if isinstance(target, Mapping) else target,
                "relationType": link.get("relationType", "related"),
            })
        else:
            relations.append(link)

    return {"entities": entities, "relations": relations}


# =============================================================================
# TRANSFORM
# =============================================================================

def transform_with_report(raw: RawPayload, now: Optional[str] = None) -> Tuple[GraphData, TransformReport]:
    """
    Build an enhanced GraphData from raw entities and relations.

    Args:
        raw: RawGraph or a mapping with "entities" and "relations"
        now: ISO timestamp stamped into node metadata (defaults to now)

    Returns:
        (graph, report) where report lists everything dropped
    """
    report = TransformReport()
    stamp = now or now_utc()
    graph_in = coerce_raw_graph(raw, report)

    nodes: List[GraphNode] = []
    seen_ids = set()
    for entity in graph_in.entities:
        if entity.name in seen_ids:
            report.duplicate_ids.append(entity.name)
            report.warn(f"Duplicate entity name '{entity.name}': id lookups resolve to the last one")
        seen_ids.add(entity.name)

        text = " ".join(entity.observations) + " " + entity.name
        tags = extract_tags(text, entity.type)
        nodes.append(GraphNode(
            id=entity.name,
            name=entity.name,
            type=entity.type,
            observations=list(entity.observations),
            color=node_color(entity.type),
            size=node_size(len(entity.observations)),
            tags=tags,
            metadata=build_metadata(entity.observations, tags, stamp),
            tag_string=" ".join(tag.name for tag in tags),
        ))

    layers = generate_layers(nodes)
    nodes = assign_nodes_to_layers(nodes, layers)
    by_id = {node.id: node for node in nodes}

    links: List[GraphLink] = []
    for relation in graph_in.relations:
        source = by_id.get(relation.source)
        target = by_id.get(relation.target)
        if source is None or target is None:
            report.dropped_relations += 1
            report.warn(
                f"Dropped relation {relation.source} -> {relation.target}: unknown endpoint"
            )
            continue
        links.append(build_link(relation, source, target))

    graph = GraphData(nodes=nodes, links=links, layers=layers, tag_index=build_tag_index(nodes))
    logger.debug(
        "Transformed %d entities / %d relations into %d nodes, %d links, %d layers",
        len(graph_in.entities), len(graph_in.relations), len(nodes), len(links), len(layers),
    )
    return graph, report


def transform(raw: RawPayload, now: Optional[str] = None) -> GraphData:
    """transform_with_report without the report."""
    graph, _ = transform_with_report(raw, now=now)
    return graph


def prepare_graph(payload: Any, now: Optional[str] = None) -> Tuple[GraphData, TransformReport]:
    """
    Decide how a reload payload becomes a GraphData.

    Enhanced payloads (with layers and tagIndex) are installed verbatim.
    Bare {nodes, links} payloads are re-derived from their nodes. Anything
    else goes through the transformer as {entities, relations}.
    """
    if is_enhanced(payload):
        report = TransformReport()
        return coerce_enhanced(payload, report), report
    if isinstance(payload, Mapping) and "entities" not in payload and "nodes" in payload:
        return transform_with_report(_nodes_to_raw(payload), now=now)
    return transform_with_report(payload, now=now)


# =============================================================================
# MERGE / VALIDATE
# =============================================================================

def merge_graphs(existing: GraphData, incoming: GraphData, now: Optional[str] = None) -> GraphData:
    """
    Union two enhanced graphs.

    Nodes with the same id get their observations unioned and their tags
    and metadata re-derived. Links are unique by (source, target, type),
    existing ones win. Layers and the tag index are rebuilt.
    """
    stamp = now or now_utc()
    merged: Dict[str, GraphNode] = {node.id: node for node in existing.nodes}

    for node in incoming.nodes:
        current = merged.get(node.id)
        if current is None:
            merged[node.id] = node
            continue
        observations = list(dict.fromkeys(current.observations + node.observations))
        tags = extract_tags(" ".join(observations) + " " + node.name, node.type)
        metadata = build_metadata(observations, tags, stamp)
        metadata = msgspec.structs.replace(metadata, created_at=current.metadata.created_at)
        merged[node.id] = msgspec.structs.replace(
            current,
            observations=observations,
            size=node_size(len(observations)),
            tags=tags,
            metadata=metadata,
            tag_string=" ".join(tag.name for tag in tags),
        )

    links: Dict[Tuple[str, str, str], GraphLink] = {}
    for link in list(existing.links) + list(incoming.links):
        key = (link.source_id, link.target_id, link.relation_type)
        links.setdefault(key, link)

    nodes = list(merged.values())
    layers = generate_layers(nodes)
    nodes = assign_nodes_to_layers(nodes, layers)
    return GraphData(
        nodes=nodes,
        links=list(links.values()),
        layers=layers,
        tag_index=build_tag_index(nodes),
    )


def validate_graph(graph: GraphData) -> bool:
    """True when every link endpoint names a node of the graph."""
    known = {node.id for node in graph.nodes}
    return all(link.source_id in known and link.target_id in known for link in graph.links)
