"""
UNIT TESTS: Tool Channel

Tests the adapter between console messages and the tool-call client:
- Console command expansion ("read graph", "find nodes a, b")
- Tool result parsing
- read_graph / find_nodes results published as bus events
- Failures reported as "Error: ..." strings
"""
import json

import pytest

from core.tool_channel import (
    FIND_NODES_USAGE,
    NO_RESPONSE,
    READ_GRAPH_PROMPT,
    ToolChannel,
    expand_command,
    parse_tool_result,
)
from infrastructure.event_bus import EventType


GRAPH_TEXT = json.dumps({
    "entities": [
        {"name": "Tesla", "type": "Historical Figure", "observations": ["inventor"]},
        {"name": "Aurora", "type": "Natural Phenomenon", "observations": []},
    ],
    "relations": [{"source": "Tesla", "target": "Aurora", "relationType": "studied"}],
})


def tool_response(tool_name, text, is_error=False, use_id="tu_1", result_id="tu_1"):
    return {
        "content": [
            {"type": "text", "text": "Looking that up."},
            {"type": "mcp_tool_use", "id": use_id, "name": tool_name, "input": {}},
            {
                "type": "mcp_tool_result",
                "tool_use_id": result_id,
                "is_error": is_error,
                "content": [{"type": "text", "text": text}],
            },
        ],
    }


class ScriptedClient:
    """Returns a canned response and records what it was sent."""

    def __init__(self, response):
        self.response = response
        self.sent = []

    async def send(self, message):
        self.sent.append(message)
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


# =============================================================================
# COMMAND EXPANSION
# =============================================================================

class TestExpandCommand:
    def test_read_graph(self):
        assert expand_command("Read Graph please") == (READ_GRAPH_PROMPT, None)

    def test_find_nodes_with_names(self):
        message, reply = expand_command("find nodes Tesla, Aurora")
        assert reply is None
        assert message.endswith("Tesla, Aurora")
        assert "find_nodes" in message

    def test_find_nodes_underscore_form(self):
        message, _ = expand_command("find_nodes Tesla")
        assert message.endswith("Tesla")

    def test_find_nodes_without_names(self):
        assert expand_command("find nodes   ") == (None, FIND_NODES_USAGE)

    def test_plain_text_passes_through(self):
        assert expand_command("what is connected to Tesla?") == ("what is connected to Tesla?", None)


# =============================================================================
# PARSING
# =============================================================================

class TestParseToolResult:
    def test_graph_extracted_from_text(self):
        result = tool_response("read_graph", "Here it is: " + GRAPH_TEXT + " done")["content"][2]
        graph = parse_tool_result(result)
        assert [e["name"] for e in graph["entities"]] == ["Tesla", "Aurora"]

    def test_missing_relations_default(self):
        result = tool_response("read_graph", '{"entities": [{"name": "x"}]}')["content"][2]
        assert parse_tool_result(result)["relations"] == []

    def test_error_result(self):
        result = tool_response("read_graph", GRAPH_TEXT, is_error=True)["content"][2]
        assert parse_tool_result(result) is None

    def test_no_json(self):
        result = tool_response("read_graph", "nothing here")["content"][2]
        assert parse_tool_result(result) is None

    def test_broken_json(self):
        result = tool_response("read_graph", "{not json}")["content"][2]
        assert parse_tool_result(result) is None

    def test_entities_required(self):
        result = tool_response("read_graph", '{"relations": []}')["content"][2]
        assert parse_tool_result(result) is None


# =============================================================================
# CHANNEL
# =============================================================================

class TestToolChannel:
    @pytest.mark.asyncio
    async def test_text_reply(self, bus):
        client = ScriptedClient({"content": [
            {"type": "text", "text": "line one"},
            {"type": "text", "text": "line two"},
        ]})
        reply = await ToolChannel(client, bus=bus).send_message("hi")
        assert reply == "line one\nline two"
        assert client.sent == ["hi"]

    @pytest.mark.asyncio
    async def test_no_text_blocks(self, bus):
        reply = await ToolChannel(ScriptedClient({"content": []}), bus=bus).send_message("hi")
        assert reply == NO_RESPONSE

    @pytest.mark.asyncio
    async def test_client_failure(self, bus):
        reply = await ToolChannel(ScriptedClient(ConnectionError("refused")), bus=bus).send_message("hi")
        assert reply == "Error: refused"

    @pytest.mark.asyncio
    async def test_non_dict_response(self, bus):
        reply = await ToolChannel(ScriptedClient(["nope"]), bus=bus).send_message("hi")
        assert reply.startswith("Error: unexpected response type")

    @pytest.mark.asyncio
    async def test_read_graph_publishes_reload(self, bus, recorder):
        events = recorder(EventType.GRAPH_RELOAD)
        channel = ToolChannel(ScriptedClient(tool_response("read_graph", GRAPH_TEXT)), bus=bus)
        await channel.send_message(READ_GRAPH_PROMPT)

        assert len(events) == 1
        assert events[0].source == "mcp"
        assert [e["name"] for e in events[0].payload["entities"]] == ["Tesla", "Aurora"]

    @pytest.mark.asyncio
    async def test_find_nodes_publishes_highlight(self, bus, recorder):
        events = recorder(EventType.NODE_HIGHLIGHT)
        channel = ToolChannel(ScriptedClient(tool_response("find_nodes", GRAPH_TEXT)), bus=bus)
        await channel.send_message("find")

        assert events[0].payload == {"nodeIds": ["Tesla", "Aurora"]}


class TestProcessToolResults:
    def test_unmatched_result_skipped(self, bus, recorder):
        events = recorder(EventType.GRAPH_RELOAD, EventType.NODE_HIGHLIGHT)
        content = tool_response("read_graph", GRAPH_TEXT, result_id="other")["content"]
        assert ToolChannel(None, bus=bus).process_tool_results(content) == []
        assert events == []

    def test_error_result_skipped(self, bus, recorder):
        events = recorder(EventType.GRAPH_RELOAD)
        content = tool_response("read_graph", GRAPH_TEXT, is_error=True)["content"]
        assert ToolChannel(None, bus=bus).process_tool_results(content) == []
        assert events == []

    def test_empty_entities_skipped(self, bus, recorder):
        events = recorder(EventType.GRAPH_RELOAD)
        content = tool_response("read_graph", '{"entities": []}')["content"]
        assert ToolChannel(None, bus=bus).process_tool_results(content) == []
        assert events == []

    def test_unhandled_tool_ignored(self, bus, recorder):
        events = recorder(EventType.GRAPH_RELOAD, EventType.NODE_HIGHLIGHT)
        content = tool_response("delete_graph", GRAPH_TEXT)["content"]
        assert ToolChannel(None, bus=bus).process_tool_results(content) == []
        assert events == []

    def test_handled_tools_reported(self, bus):
        content = tool_response("read_graph", GRAPH_TEXT)["content"]
        assert ToolChannel(None, bus=bus).process_tool_results(content) == ["read_graph"]
