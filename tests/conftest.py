"""Shared test fixtures."""

import asyncio
import json

import pytest

from installstream.core.config import StreamConfig
from installstream.stream.channel import LOG, OPEN, ChannelFrame, EventChannel


class RecordingLogSink:
    """Collects rendered log lines."""

    def __init__(self):
        self.lines = []
        self.cleared = 0

    def write(self, line):
        self.lines.append(line)

    def clear(self):
        self.cleared += 1
        self.lines = []

    @property
    def texts(self) -> list[str]:
        return [line.text for line in self.lines]


class RecordingProgressSink:
    def __init__(self):
        self.states = []

    def show_progress(self, state):
        self.states.append(state)

    @property
    def percents(self) -> list[int]:
        return [s.percent for s in self.states]


class RecordingStatusSink:
    def __init__(self):
        self.statuses = []

    def show_status(self, status):
        self.statuses.append(status)


class FakeChannel(EventChannel):
    """Scripted channel: one script per connection attempt.

    A script is a list of frames; an exception in the list is raised at that
    point, an exception in place of the list fails the connection outright.
    With hold=True the stream stays open after the script runs out.
    """

    def __init__(self, *scripts, hold: bool = True):
        self.scripts = list(scripts)
        self.hold = hold
        self.calls: list[tuple[str, str | None]] = []
        self.closed = False

    async def stream(self, operation_id, last_event_id=None):
        self.calls.append((operation_id, last_event_id))
        script = self.scripts.pop(0) if self.scripts else []
        if isinstance(script, Exception):
            raise script
        yield ChannelFrame(OPEN)
        for frame in script:
            if isinstance(frame, Exception):
                raise frame
            yield frame
        if self.hold:
            await asyncio.Event().wait()

    async def aclose(self):
        self.closed = True


class ReplayChannel(EventChannel):
    """Serves a growing log and resumes after the Last-Event-ID it is sent."""

    def __init__(self, frames):
        self.frames = list(frames)
        self.calls: list[tuple[str, str | None]] = []

    async def stream(self, operation_id, last_event_id=None):
        self.calls.append((operation_id, last_event_id))
        start = 0 if last_event_id is None else int(last_event_id) + 1
        yield ChannelFrame(OPEN)
        for frame in list(self.frames[start:]):
            yield frame
        await asyncio.Event().wait()


def log_frame(text: str, level: str = "INFO", id: str | None = None) -> ChannelFrame:
    return ChannelFrame(LOG, json.dumps({"Level": level, "Text": text}), id)


@pytest.fixture
def stream_config():
    """Fast timings for session tests."""
    return StreamConfig(
        base_url="http://installer.test",
        idle_timeout_s=5.0,
        reconnect_delay_s=0.0,
        max_reconnects=2,
        disconnect_delay_s=0.0,
    )


@pytest.fixture
def log_sink():
    return RecordingLogSink()


@pytest.fixture
def progress_sink():
    return RecordingProgressSink()


@pytest.fixture
def status_sink():
    return RecordingStatusSink()
