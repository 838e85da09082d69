"""
NERON ERRORS - Exception taxonomy

Exceptions are raised only at decode boundaries (payload parsing, tool
channel transport) and are always caught before they reach the engine.
Nothing here is fatal to the application.
"""
from typing import Optional


class NeronError(Exception):
    """Base exception for graph sync and interaction failures."""
    pass


class PayloadError(NeronError):
    """Raised when an incoming graph payload cannot be decoded."""
    def __init__(self, message: str, item: Optional[object] = None):
        self.item = item
        super().__init__(message)


class ToolChannelError(NeronError):
    """Raised when the tool-call channel fails to deliver a response."""
    pass
