"""Log event model and inbound event normalization."""

import json
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from .errors import MalformedEvent


class LogLevel(str, Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    SUCCESS = "SUCCESS"
    SCRIPT = "SCRIPT"
    SCRIPT_SECTION = "SCRIPT_SECTION"

    @classmethod
    def parse(cls, value) -> "LogLevel":
        """Map a producer level string to a LogLevel, defaulting to INFO.

        Matching is exact: producers send upper-case tags, anything else is INFO.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value)
            except ValueError:
                pass
        return cls.INFO


class Outcome(str, Enum):
    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"
    FAILURE = "failure"

    @property
    def is_success(self) -> bool:
        return self is not Outcome.FAILURE


@dataclass(frozen=True)
class LogEvent:
    """One observation from the remote operation. Immutable once created."""
    text: str
    level: LogLevel = LogLevel.INFO
    timestamp: datetime = field(default_factory=datetime.now)


# Producer field spellings, first non-empty match wins
TEXT_KEYS = ("Text", "text", "Message", "message")
LEVEL_KEYS = ("Level", "level")
TIMESTAMP_KEYS = ("Timestamp", "timestamp")

# .NET serializes up to 7 fractional digits; datetime accepts 6
_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


def normalize_event(payload) -> LogEvent:
    """Build a canonical LogEvent from a producer payload.

    Accepts a JSON string or an already-decoded dict. Raises MalformedEvent
    when the payload is not a JSON object or has no non-blank text.
    """
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except ValueError as e:
            raise MalformedEvent(f"Invalid JSON: {e}") from e
    if not isinstance(payload, dict):
        raise MalformedEvent(f"Expected a JSON object, got {type(payload).__name__}")

    text = _first(payload, TEXT_KEYS)
    if not isinstance(text, str) or not text.strip():
        raise MalformedEvent("Event has no text")

    level = LogLevel.parse(_first(payload, LEVEL_KEYS))
    timestamp = parse_timestamp(_first(payload, TIMESTAMP_KEYS))
    return LogEvent(text=text, level=level, timestamp=timestamp)


def parse_timestamp(value) -> datetime:
    """Parse a producer timestamp, falling back to local receipt time."""
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(_FRACTION_RE.sub(r"\1", value.replace("Z", "+00:00")))
        except ValueError:
            pass
    return datetime.now()


def _first(payload: dict, keys: tuple[str, ...]):
    for key in keys:
        value = payload.get(key)
        if value:
            return value
    return None


@dataclass
class OperationResult:
    """Result of one install or uninstall operation."""
    operation_id: str
    mode: str
    component_id: str
    version: str
    outcome: Outcome
    history: list[LogEvent] = field(default_factory=list)
    reported: bool = False
    report_error: str | None = None

    @property
    def success(self) -> bool:
        return self.outcome.is_success
