"""
NERON INFRASTRUCTURE - System-Level Modules

This package contains infrastructure components:
- config: Typed configuration loaded from neron.toml
- event_bus: Pub/sub between the outside world and the engine
- logger: Logging setup and the console notification buffer
"""

from infrastructure.config import NeronConfig, get_config, load_config, reset_config
from infrastructure.event_bus import EventBus, EventType, GraphEvent, get_event_bus
from infrastructure.logger import NotificationLog, Notification, configure_logging

__all__ = [
    "NeronConfig",
    "get_config",
    "load_config",
    "reset_config",
    "EventBus",
    "EventType",
    "GraphEvent",
    "get_event_bus",
    "NotificationLog",
    "Notification",
    "configure_logging",
]
