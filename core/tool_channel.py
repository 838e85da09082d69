"""
NERON TOOL CHANNEL - Adapter over the external tool-call client

The console sends free text to an assistant that can call graph tools
(read_graph, find_nodes) on a remote memory server. Responses come back as
a list of content blocks:

    {"type": "text", "text": "..."}
    {"type": "mcp_tool_use", "id": "tu_1", "name": "read_graph", "input": {}}
    {"type": "mcp_tool_result", "tool_use_id": "tu_1", "is_error": false,
     "content": [{"type": "text", "text": "{\"entities\": [...]}"}]}

Tool results are turned into bus events (GRAPH_RELOAD / NODE_HIGHLIGHT);
the event bridge applies them to the engine like any other push. How the
client reaches the server (HTTP, auth, streaming) is not this module's
concern: anything with `async send(message) -> dict` will do.
"""
import logging
import re
from typing import Any, Dict, List, Optional, Protocol, Tuple

import msgspec

from core.errors import ToolChannelError
from infrastructure.event_bus import EventBus, publish_graph_reload, publish_node_highlight

logger = logging.getLogger("neron.tool_channel")

READ_GRAPH_TOOL = "read_graph"
FIND_NODES_TOOL = "find_nodes"

READ_GRAPH_PROMPT = (
    "Use the read_graph MCP tool to get the complete graph structure "
    "with all nodes and relationships."
)
FIND_NODES_PROMPT = "Use the find_nodes MCP tool to find these specific nodes: {names}"
FIND_NODES_USAGE = 'Please specify node names to find. Example: "find nodes Tesla, Aurora"'
NO_RESPONSE = "No response received"

_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")
_FIND_NODES_RE = re.compile(r"find[_ ]nodes", re.IGNORECASE)
_NAME_SPLIT_RE = re.compile(r"[,\s]+")


class ToolChannelClient(Protocol):
    """Transport to the assistant. Raises on failure."""

    async def send(self, message: str) -> Dict[str, Any]:
        ...


# =============================================================================
# PARSING
# =============================================================================

def _text_of(blocks: Any) -> str:
    if not isinstance(blocks, list):
        return ""
    texts = [
        block["text"] for block in blocks
        if isinstance(block, dict) and block.get("type") == "text" and isinstance(block.get("text"), str)
    ]
    return "\n".join(texts)


def parse_tool_result(result: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Extract a raw {entities, relations} graph from a tool result block.

    Takes the outermost {...} span of the result's text, requires an
    "entities" list and defaults "relations" to []. Returns None on errored
    results and anything that does not parse.
    """
    if result.get("is_error"):
        return None
    match = _JSON_OBJECT_RE.search(_text_of(result.get("content")))
    if match is None:
        return None
    try:
        data = msgspec.json.decode(match.group(0))
    except msgspec.DecodeError as exc:
        logger.warning("Unparseable tool result %s: %s", result.get("tool_use_id"), exc)
        return None
    if not isinstance(data, dict) or not isinstance(data.get("entities"), list):
        return None
    if not isinstance(data.get("relations"), list):
        data["relations"] = []
    return data


def expand_command(text: str) -> Tuple[Optional[str], Optional[str]]:
    """
    Rewrite console shortcuts into tool instructions.

    Returns:
        (message to send, None), or (None, reply) when the command cannot
        be sent as typed
    """
    lowered = text.lower()
    if "read graph" in lowered:
        return READ_GRAPH_PROMPT, None
    if _FIND_NODES_RE.search(text):
        tail = _FIND_NODES_RE.split(text, maxsplit=1)[1].strip()
        names = [name for name in _NAME_SPLIT_RE.split(tail) if name]
        if not names:
            return None, FIND_NODES_USAGE
        return FIND_NODES_PROMPT.format(names=", ".join(names)), None
    return text, None


# =============================================================================
# CHANNEL
# =============================================================================

class ToolChannel:
    """
    Sends console messages and turns tool results into bus events.

    send_message never raises: every failure comes back as "Error: ...".
    """

    def __init__(self, client: ToolChannelClient, bus: Optional[EventBus] = None, source: str = "mcp"):
        self._client = client
        self._bus = bus
        self._source = source

    async def send_message(self, text: str) -> str:
        """
        Send text to the assistant and return its textual reply.

        Args:
            text: What the operator typed

        Returns:
            Text blocks joined by newlines, "No response received" when there
            are none, or "Error: <reason>" when the send failed
        """
        try:
            response = await self._client.send(text)
            if not isinstance(response, dict):
                raise ToolChannelError(f"unexpected response type {type(response).__name__}")
        except Exception as exc:
            logger.error("Tool channel send failed: %s", exc)
            return f"Error: {exc}"

        content = response.get("content")
        if not isinstance(content, list):
            content = []
        self.process_tool_results(content)
        return _text_of(content) or NO_RESPONSE

    def process_tool_results(self, content: List[Dict[str, Any]]) -> List[str]:
        """
        Publish reload/highlight events for the tool results in a response.

        Results without a matching tool use, or flagged is_error, are skipped.

        Returns:
            Names of the tools whose results produced an event
        """
        uses = {
            block.get("id"): block for block in content
            if isinstance(block, dict) and block.get("type") == "mcp_tool_use"
        }
        handled: List[str] = []

        for block in content:
            if not isinstance(block, dict) or block.get("type") != "mcp_tool_result":
                continue
            use = uses.get(block.get("tool_use_id"))
            if use is None or block.get("is_error"):
                logger.info(
                    "Skipping tool result %s (%s)",
                    block.get("tool_use_id"),
                    "no matching tool use" if use is None else "error flag set",
                )
                continue

            name = use.get("name")
            graph = parse_tool_result(block)
            if graph is None or not graph["entities"]:
                logger.info("Tool result for %s carried no entities", name)
                continue

            if name == READ_GRAPH_TOOL:
                publish_graph_reload(graph, source=self._source, bus=self._bus)
                handled.append(name)
            elif name == FIND_NODES_TOOL:
                node_ids = [
                    entity["name"] for entity in graph["entities"]
                    if isinstance(entity, dict) and isinstance(entity.get("name"), str)
                ]
                publish_node_highlight(node_ids, source=self._source, bus=self._bus)
                handled.append(name)
            else:
                logger.debug("Ignoring result of unhandled tool %s", name)

        return handled
