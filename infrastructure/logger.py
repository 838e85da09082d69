"""
NERON LOGGER - Process logging and the console notification channel

Two concerns live here:
- configure_logging: stdlib logging for every "neron.*" logger, rendered
  through rich on the terminal
- NotificationLog: in-memory ring buffer of the system messages the engine
  shows in the console ("Graph reloaded: 4 nodes, 4 links", ...)

Usage:
    configure_logging("DEBUG")

    log = NotificationLog(max_size=200)
    log.append("system", "Hover mode enabled")
    for note in log.get_last(10):
        print(f"{note.sequence}: {note.content}")
"""
import logging
import threading
from collections import deque
from typing import List, Optional, Union

import msgspec
from rich.logging import RichHandler

from core.schemas import now_utc


# =============================================================================
# PROCESS LOGGING
# =============================================================================

def configure_logging(level: Union[str, int] = "INFO") -> logging.Logger:
    """
    Attach a rich handler to the "neron" logger tree.

    Calling it again only changes the level.

    Returns:
        The "neron" root logger
    """
    root = logging.getLogger("neron")
    root.setLevel(level if isinstance(level, int) else level.upper())
    if not any(isinstance(h, RichHandler) for h in root.handlers):
        handler = RichHandler(rich_tracebacks=True, show_path=False)
        handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
        root.addHandler(handler)
    return root


# =============================================================================
# NOTIFICATIONS
# =============================================================================

class Notification(msgspec.Struct, kw_only=True, frozen=True):
    """One console system message."""
    timestamp: str
    sequence: int
    kind: str
    content: str


class NotificationLog:
    """
    Thread-safe ring buffer for recent notifications.

    Sequence numbers keep increasing after old entries fall off the end,
    so clients can poll with get_after(last_seen).
    """

    def __init__(self, max_size: int = 200):
        self._buffer: deque = deque(maxlen=max_size)
        self._lock = threading.RLock()
        self._sequence = 0

    def append(self, kind: str, content: str) -> Notification:
        """Record a notification and return it."""
        with self._lock:
            self._sequence += 1
            note = Notification(
                timestamp=now_utc(),
                sequence=self._sequence,
                kind=kind,
                content=content,
            )
            self._buffer.append(note)
            return note

    def get_last(self, n: int) -> List[Notification]:
        """Get the last n notifications, oldest first."""
        with self._lock:
            items = list(self._buffer)
            return items[-n:] if n > 0 else []

    def get_after(self, sequence: int) -> List[Notification]:
        """Get notifications with a sequence number greater than the given one."""
        with self._lock:
            return [note for note in self._buffer if note.sequence > sequence]

    def latest(self) -> Optional[Notification]:
        with self._lock:
            return self._buffer[-1] if self._buffer else None

    def clear(self) -> None:
        with self._lock:
            self._buffer.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._buffer)
