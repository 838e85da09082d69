"""
UNIT TESTS: Interaction Engine

Tests the engine on top of the bootstrap graph:

    NERON-CORE -controls-> DATA-FLOW -reads-> MEMORY-BANK
    NERON-CORE -drives-> NEURAL-INTERFACE -displays-> MEMORY-BANK

Covers reloads (caching, verbatim installs, notifications), highlight
derivation, gestures, toggles, export and the console send path.
"""
import msgspec
import pytest

from core.bootstrap import BOOTSTRAP_GRAPH
from core.engine import InteractionEngine, get_engine, set_engine, state_summary
from core.graph_cache import GraphCache
from core.ontology import CacheKey, NotificationKind
from core.tool_channel import FIND_NODES_USAGE, ToolChannel
from infrastructure.config import InteractionConfig, NeronConfig
from infrastructure.event_bus import EventType
from infrastructure.logger import NotificationLog

CORE_LINKS = frozenset({"NERON-CORE-DATA-FLOW", "NERON-CORE-NEURAL-INTERFACE"})


class EchoClient:
    """Tool client that answers with fixed text and records what it saw."""

    def __init__(self, engine_ref=None, reply="done"):
        self.messages = []
        self.loading_seen = []
        self.engine_ref = engine_ref
        self.reply = reply

    async def send(self, message):
        self.messages.append(message)
        if self.engine_ref is not None:
            self.loading_seen.append(self.engine_ref.state.is_loading)
        return {"content": [{"type": "text", "text": self.reply}]}


class FailingClient:
    async def send(self, message):
        raise RuntimeError("boom")


# =============================================================================
# BOOTSTRAP & RELOAD
# =============================================================================

class TestReload:
    def test_bootstrap_graph_loaded(self, engine):
        summary = state_summary(engine.state)
        assert summary["nodeCount"] == 4
        assert summary["linkCount"] == 4
        assert engine.get_node("NERON-CORE") is not None

    def test_uses_injected_collaborators_even_when_empty(self, bus, cache, config):
        notifications = NotificationLog(max_size=5)
        engine = InteractionEngine(
            bus=bus, cache=cache, config=config, notifications=notifications, bootstrap=False,
        )
        assert engine.bus is bus
        assert engine.cache is cache
        assert engine.config is config
        assert engine.notifications is notifications

    def test_separate_engines_do_not_share_cache(self, bus, config):
        first = InteractionEngine(bus=bus, cache=GraphCache(), config=config)
        second = InteractionEngine(bus=bus, cache=GraphCache(), config=config, bootstrap=False)
        assert first.cache is not second.cache
        assert second.cache.get(CacheKey.FULL_GRAPH) is None

    def test_no_bootstrap(self, bus, cache, config):
        engine = InteractionEngine(bus=bus, cache=cache, config=config, bootstrap=False)
        assert engine.state.graph_data.nodes == []

    def test_reload_replaces_graph(self, engine, raw_graph):
        engine.reload(raw_graph, source="test")
        assert [node.id for node in engine.state.graph_data.nodes] == ["A", "B", "C"]
        assert engine.get_node("NERON-CORE") is None
        assert engine.get_node("A").name == "A"

    def test_reload_notifies(self, engine, raw_graph):
        engine.reload(raw_graph)
        note = engine.notifications.latest()
        assert note.content == "Graph reloaded: 3 nodes, 2 links"
        assert note.kind == NotificationKind.TOOL.value

    def test_reload_with_drops_notifies_error(self, engine, raw_graph):
        raw_graph["relations"].append({"source": "A", "target": "ghost"})
        report = engine.reload(raw_graph)
        assert report.dropped_relations == 1
        note = engine.notifications.latest()
        assert note.kind == NotificationKind.ERROR.value
        assert "1 relations" in note.content

    def test_reload_publishes_state_changed(self, engine, recorder, raw_graph):
        events = recorder(EventType.STATE_CHANGED)
        engine.reload(raw_graph)
        assert events[-1].payload["reason"] == "reload"
        assert events[-1].payload["nodeCount"] == 3

    def test_repeated_payload_served_from_cache(self, engine, raw_graph):
        engine.reload(raw_graph)
        first = engine.state.graph_data
        hits_before = engine.cache.metrics().hits

        report = engine.reload(raw_graph)
        assert engine.cache.metrics().hits == hits_before + 1
        assert report.warnings == []
        assert engine.state.graph_data == first

    def test_full_graph_cached(self, engine, raw_graph):
        engine.reload(raw_graph)
        assert engine.cache.get(CacheKey.FULL_GRAPH) == engine.state.graph_data

    def test_content_cache_keeps_latest_payload_only(self, engine, raw_graph):
        for i in range(50):
            raw_graph["entities"][0]["observations"] = [f"revision {i}"]
            engine.reload(raw_graph)
        # FULL_GRAPH plus the content entry of the last payload
        assert len(engine.cache) == 2
        assert engine.cache.has(CacheKey.FULL_GRAPH)

    def test_repeated_bad_payload_reported_each_time(self, engine, raw_graph):
        raw_graph["relations"].append({"source": "A", "target": "ghost"})
        engine.reload(raw_graph)
        hits_before = engine.cache.metrics().hits

        report = engine.reload(raw_graph)
        assert engine.cache.metrics().hits == hits_before + 1
        assert report.dropped_relations == 1
        errors = [
            note for note in engine.notifications.get_last(10)
            if note.kind == NotificationKind.ERROR.value
        ]
        assert len(errors) == 2

    def test_reload_clears_highlights_keeps_selection(self, engine):
        engine.double_click("NERON-CORE", 10, 10)
        engine.reload(BOOTSTRAP_GRAPH)
        assert engine.state.highlighted_nodes == frozenset()
        assert engine.state.highlighted_links == frozenset()
        assert [s.node_id for s in engine.state.selected_nodes] == ["NERON-CORE"]

    def test_export_reimports_verbatim(self, engine):
        original = engine.state.graph_data
        exported = msgspec.json.decode(engine.export_json())

        report = engine.reload(exported)
        assert report.installed_verbatim is True
        assert engine.state.graph_data == original


# =============================================================================
# HIGHLIGHT
# =============================================================================

class TestHighlight:
    def test_core_node_highlight(self, engine):
        engine.highlight_nodes(["NERON-CORE"])
        assert engine.state.highlighted_nodes == frozenset({"NERON-CORE"})
        assert engine.state.highlighted_links == CORE_LINKS

    def test_highlight_notifies(self, engine):
        engine.highlight_nodes(["NERON-CORE", "MEMORY-BANK"])
        assert engine.notifications.latest().content == (
            "Highlighted 2 nodes: NERON-CORE, MEMORY-BANK"
        )

    def test_highlight_requests_centering(self, engine, recorder):
        events = recorder(EventType.CENTER_REQUESTED)
        engine.highlight_nodes(["MEMORY-BANK", "NERON-CORE"])
        assert events[-1].payload == {"nodeIds": ["MEMORY-BANK", "NERON-CORE"]}

    def test_empty_highlight_requests_nothing(self, engine, recorder):
        events = recorder(EventType.CENTER_REQUESTED)
        engine.highlight_nodes([])
        assert events == []
        assert engine.state.highlighted_links == frozenset()


# =============================================================================
# GESTURES
# =============================================================================

class TestGestures:
    def test_click(self, engine):
        engine.click("DATA-FLOW", 100, 200)
        summary = state_summary(engine.state)
        assert summary["selectedNodes"] == [
            {"nodeId": "DATA-FLOW", "x": 120.0, "y": 220.0, "persistent": False},
        ]
        assert engine.notifications.latest().content == "Selected node: DATA-FLOW (PROCESS)"

    def test_click_offset_from_config(self, bus, cache):
        config = NeronConfig(interaction=InteractionConfig(selection_offset_px=5.0))
        engine = InteractionEngine(bus=bus, cache=cache, config=config)
        engine.click("DATA-FLOW", 0, 0)
        assert engine.state.selected_nodes[0].position.x == 5.0

    def test_click_unknown_node_ignored(self, engine, recorder):
        events = recorder(EventType.STATE_CHANGED)
        before = engine.state
        assert engine.click("nope", 1, 1) is before
        assert events == []

    def test_double_click(self, engine):
        engine.double_click("NERON-CORE", 0, 0)
        state = engine.state
        assert state.selected_nodes[0].persistent is True
        assert state.highlighted_nodes == frozenset({"NERON-CORE", "DATA-FLOW", "NEURAL-INTERFACE"})
        assert state.highlighted_links == CORE_LINKS
        assert engine.notifications.latest().content == (
            "Persistent selection: NERON-CORE. Highlighted 3 connected nodes."
        )

    def test_card_node_click_opens_persistent_card(self, engine):
        engine.card_node_click("MEMORY-BANK")
        selection = engine.state.selected_nodes[0]
        assert selection.persistent is True
        assert (selection.position.x, selection.position.y) == (420.0, 320.0)

    def test_hover_and_unknown_hover(self, engine):
        engine.hover("MEMORY-BANK")
        assert engine.state.hovered_node.id == "MEMORY-BANK"
        engine.hover("nope")
        assert engine.state.hovered_node.id == "MEMORY-BANK"
        engine.hover(None)
        assert engine.state.hovered_node is None

    def test_background_click(self, engine):
        engine.double_click("NERON-CORE")
        engine.click("DATA-FLOW")
        engine.double_click("MEMORY-BANK")
        engine.background_click()
        assert [s.node_id for s in engine.state.selected_nodes] == ["MEMORY-BANK"]
        assert engine.state.highlighted_nodes == frozenset()

    def test_close_selection(self, engine):
        engine.double_click("NERON-CORE")
        engine.close_selection("NERON-CORE")
        assert engine.state.selected_nodes == ()

    def test_toggle_hover_mode_notifies(self, engine):
        engine.toggle_hover_mode()
        assert engine.state.is_hover_mode is False
        assert engine.notifications.latest().content == "Hover mode disabled"
        engine.toggle_hover_mode()
        assert engine.notifications.latest().content == "Hover mode enabled"

    def test_opening_console_requests_focus(self, engine, recorder):
        events = recorder(EventType.CONSOLE_FOCUS_REQUESTED)
        engine.toggle_console()
        assert engine.state.is_console_visible is True
        assert len(events) == 1
        engine.toggle_console()
        assert len(events) == 1

    def test_reset(self, engine):
        engine.double_click("NERON-CORE")
        engine.hover("DATA-FLOW")
        engine.reset()
        assert engine.state.selected_nodes == ()
        assert engine.state.highlighted_nodes == frozenset()
        assert engine.state.hovered_node is None
        assert len(engine.state.graph_data.nodes) == 4

    def test_hover_mode_default_from_config(self, bus, cache):
        config = NeronConfig(interaction=InteractionConfig(hover_mode_default=False))
        engine = InteractionEngine(bus=bus, cache=cache, config=config)
        assert engine.state.is_hover_mode is False


# =============================================================================
# CONSOLE
# =============================================================================

class TestConsole:
    @pytest.mark.asyncio
    async def test_without_channel(self, engine):
        reply = await engine.send_message("hello")
        assert reply == "Error: no tool channel configured"
        assert engine.state.is_loading is False

    @pytest.mark.asyncio
    async def test_loading_raised_during_send(self, engine, bus):
        client = EchoClient(engine_ref=engine, reply="hi there")
        engine.set_channel(ToolChannel(client, bus=bus))

        reply = await engine.send_message("hello")
        assert reply == "hi there"
        assert client.loading_seen == [True]
        assert engine.state.is_loading is False
        assert engine.notifications.latest().content == 'Processing command: "hello"'

    @pytest.mark.asyncio
    async def test_loading_cleared_after_failure(self, engine, bus):
        engine.set_channel(ToolChannel(FailingClient(), bus=bus))
        reply = await engine.send_message("hello")
        assert reply == "Error: boom"
        assert engine.state.is_loading is False

    @pytest.mark.asyncio
    async def test_find_nodes_without_names(self, engine, bus):
        client = EchoClient()
        engine.set_channel(ToolChannel(client, bus=bus))
        reply = await engine.send_message("find nodes")
        assert reply == FIND_NODES_USAGE
        assert client.messages == []

    @pytest.mark.asyncio
    async def test_read_graph_expanded(self, engine, bus):
        client = EchoClient()
        engine.set_channel(ToolChannel(client, bus=bus))
        await engine.send_message("please read graph")
        assert "read_graph" in client.messages[0]


# =============================================================================
# GLOBAL INSTANCE
# =============================================================================

def test_global_engine(engine):
    set_engine(engine)
    assert get_engine() is engine
