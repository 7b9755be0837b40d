"""In-memory per-operation log store behind the relay's SSE endpoint.

Producers append lines; each SSE connection replays from a position and then
follows new lines. Lines are cleaned on the way in so the stream carries
plain text without timestamp or level prefixes.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime

from ..core.constants import RELAY_LEVEL_PREFIXES


@dataclass(frozen=True)
class RelayMessage:
    level: str
    text: str
    timestamp: datetime = field(default_factory=datetime.now)

    def to_json(self) -> dict:
        return {
            "Level": self.level,
            "Text": self.text,
            "Timestamp": self.timestamp.isoformat(),
        }


def clean_message(message: str | None) -> str | None:
    """Strip a leading ``[HH:MM:SS]`` stamp and one level tag; None if nothing is left."""
    if message is None or not message.strip():
        return None

    if len(message) > 20 and message.startswith("[") and "]" in message[:20]:
        close = message.index("]")
        if 0 < close < 20:
            message = message[close + 1:].strip()

    for prefix in RELAY_LEVEL_PREFIXES:
        if message.startswith(prefix):
            message = message[len(prefix):].strip()
            break

    if not message.strip():
        return None
    return message


class LogRelay:
    """Thread-safe append-only log queues keyed by operation id."""

    def __init__(self):
        self._streams: dict[str, list[RelayMessage]] = {}
        self._lock = threading.Lock()

    def ensure(self, stream_id: str) -> None:
        with self._lock:
            self._streams.setdefault(stream_id, [])

    def add(self, stream_id: str, level: str | None, text: str | None) -> RelayMessage | None:
        cleaned = clean_message(text)
        if cleaned is None:
            return None
        message = RelayMessage(level=level or "INFO", text=cleaned)
        with self._lock:
            self._streams.setdefault(stream_id, []).append(message)
        return message

    def count(self, stream_id: str) -> int:
        with self._lock:
            return len(self._streams.get(stream_id, []))

    def since(self, stream_id: str, index: int) -> list[RelayMessage]:
        with self._lock:
            queue = self._streams.get(stream_id, [])
            return list(queue[index:])

    def stream_count(self) -> int:
        with self._lock:
            return len(self._streams)
