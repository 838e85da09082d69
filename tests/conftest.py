"""
Pytest configuration and shared fixtures for the Neron test suite.
"""
import sys
from pathlib import Path

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))


@pytest.fixture(autouse=True)
def reset_global_state():
    """Reset the process-wide singletons so tests never share a bus or engine."""
    from core.engine import reset_engine
    from core.graph_cache import reset_graph_cache
    from infrastructure.config import reset_config
    from infrastructure.event_bus import reset_event_bus

    reset_event_bus()
    reset_graph_cache()
    reset_config()
    reset_engine()

    yield

    reset_engine()
    reset_event_bus()
    reset_graph_cache()
    reset_config()


@pytest.fixture
def bus():
    """Provide a fresh EventBus."""
    from infrastructure.event_bus import EventBus
    return EventBus()


@pytest.fixture
def cache():
    """Provide an empty GraphCache without expiry."""
    from core.graph_cache import GraphCache
    return GraphCache()


@pytest.fixture
def config():
    """Provide the default configuration (no file involved)."""
    from infrastructure.config import NeronConfig
    return NeronConfig()


@pytest.fixture
def engine(bus, cache, config):
    """Provide an engine showing the bootstrap graph."""
    from core.engine import InteractionEngine
    return InteractionEngine(bus=bus, cache=cache, config=config)


@pytest.fixture
def recorder(bus):
    """
    Record every event of the given types published on the bus.

    Usage:
        events = recorder(EventType.STATE_CHANGED)
        ...
        assert events[-1].payload["reason"] == "reload"
    """
    def _record(*event_types):
        events = []
        for event_type in event_types:
            bus.subscribe(event_type, events.append)
        return events
    return _record


@pytest.fixture
def raw_graph():
    """Small {entities, relations} payload with two layers' worth of structure."""
    return {
        "entities": [
            {"name": "A", "type": "Project", "observations": ["critical alpha"]},
            {"name": "B", "type": "Project", "observations": ["beta"]},
            {"name": "C", "type": "Resource", "observations": []},
        ],
        "relations": [
            {"source": "A", "target": "B", "relationType": "depends_on"},
            {"source": "A", "target": "C", "relationType": "uses"},
        ],
    }
