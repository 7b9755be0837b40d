"""Stream session: drives one operation's event stream to an outcome.

Inbound frames are read by a reader task into a per-session mailbox and
handled one at a time by a single consumer task, so history, progress gate
and session state are never mutated concurrently. The reader re-opens the
channel after a drop; the consumer enforces the idle timeout.

State machine::

    Idle -> Connecting -> Connected <-> Error
      any open state -> Complete      (finalize)
      any open state -> Disconnected  (disconnect without finalize)

Complete and Disconnected are terminal until reset().
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from ..core.config import StreamConfig
from ..core.constants import (
    NOTICE_CONNECTED,
    NOTICE_CONNECTING,
    NOTICE_FINAL_FAILURE,
    NOTICE_FINAL_SUCCESS,
    NOTICE_FINAL_WARNING,
    NOTICE_IDLE_TIMEOUT,
    NOTICE_TRANSPORT_ERROR,
    STATUS_COMPLETE,
    STATUS_CONNECTED,
    STATUS_DISCONNECTED,
    STATUS_ERROR,
    STATUS_WARNING,
)
from ..core.errors import ConfigurationError, MalformedEvent, OperationAbandoned, TransportError
from ..core.events import LogEvent, LogLevel, Outcome, normalize_event
from .channel import CLOSE, LOG, OPEN, PING, ChannelFrame, EventChannel
from .classifier import classify
from .outcome import evaluate, is_terminal
from .progress import ProgressGate, ProgressState
from .sinks import LogSink, ProgressSink, StatusSink, format_log_line

logger = logging.getLogger(__name__)

CompletionCallback = Callable[[bool, list[LogEvent]], None]


class SessionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"
    DISCONNECTED = "disconnected"
    COMPLETE = "complete"


# outcome -> (status, notice level, notice text)
FINAL_DISPLAY = {
    Outcome.SUCCESS: (STATUS_COMPLETE, LogLevel.SUCCESS, NOTICE_FINAL_SUCCESS),
    Outcome.PARTIAL_SUCCESS: (STATUS_WARNING, LogLevel.WARNING, NOTICE_FINAL_WARNING),
    Outcome.FAILURE: (STATUS_ERROR, LogLevel.ERROR, NOTICE_FINAL_FAILURE),
}


@dataclass(frozen=True)
class SessionSnapshot:
    """Immutable view of session state."""
    operation_id: str | None
    state: SessionState
    percent: int
    color: str
    event_count: int
    outcome: Outcome | None
    updated_at: float  # time.monotonic()


@dataclass(frozen=True)
class _Fault:
    """Transport failure reported by the reader."""
    message: str


_STOP = object()


class StreamSession:
    """Owns one channel, one history and one progress gate for one operation."""

    def __init__(self, channel: EventChannel, config: StreamConfig | None = None):
        self._channel = channel
        self._config = config or StreamConfig()
        self.operation_id: str | None = None

        self._log_sink: LogSink | None = None
        self._progress_sink: ProgressSink | None = None
        self._status_sink: StatusSink | None = None
        self._on_complete: CompletionCallback | None = None

        self._state = SessionState.IDLE
        self._history: list[LogEvent] = []
        self._gate = ProgressGate(on_change=self._render_progress)
        self._outcome: Outcome | None = None
        self._finalized = False
        self._last_event_id: str | None = None
        self._updated_at = time.monotonic()

        self._mailbox: asyncio.Queue | None = None
        self._reader: asyncio.Task | None = None
        self._consumer: asyncio.Task | None = None
        self._opened: asyncio.Future | None = None
        self._settled = asyncio.Event()
        self._disconnect_handle: asyncio.TimerHandle | None = None

    # ── Public state ──────────────────────────────────────────────

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def history(self) -> list[LogEvent]:
        return list(self._history)

    @property
    def gate(self) -> ProgressGate:
        return self._gate

    @property
    def outcome(self) -> Outcome | None:
        return self._outcome

    @property
    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            operation_id=self.operation_id,
            state=self._state,
            percent=self._gate.percent,
            color=self._gate.color,
            event_count=len(self._history),
            outcome=self._outcome,
            updated_at=self._updated_at,
        )

    # ── Lifecycle ─────────────────────────────────────────────────

    def init(
        self,
        operation_id: str,
        *,
        log_sink: LogSink | None,
        progress_sink: ProgressSink | None = None,
        status_sink: StatusSink | None = None,
        on_complete: CompletionCallback | None = None,
    ) -> None:
        """Bind the operation and render targets. The log sink is mandatory."""
        if log_sink is None:
            raise ConfigurationError("A log sink is required to initialise a stream session")
        if not operation_id:
            raise ConfigurationError("An operation id is required to initialise a stream session")

        self.operation_id = operation_id
        self._log_sink = log_sink
        self._progress_sink = progress_sink
        self._status_sink = status_sink
        self._on_complete = on_complete
        self._history = []
        self._touch()

    async def connect(self) -> bool:
        """Open the channel; return True once it is open, False on a transport error.

        Reconnecting an open session tears down the previous channel first and
        resumes after the last event this session handled.
        """
        if self._log_sink is None or not self.operation_id:
            raise ConfigurationError("init() must be called before connect()")
        if self._state in (SessionState.COMPLETE, SessionState.DISCONNECTED):
            raise ConfigurationError(
                f"Session for {self.operation_id} is {self._state.value}; call reset() first"
            )

        self._stop_tasks()
        if self._opened is not None and not self._opened.done():
            self._opened.set_result(False)
        loop = asyncio.get_running_loop()
        self._mailbox = asyncio.Queue()
        self._opened = loop.create_future()

        self._set_state(SessionState.CONNECTING)
        self._notice(LogLevel.INFO, NOTICE_CONNECTING)

        self._consumer = asyncio.create_task(self._consume(self._mailbox))
        self._reader = asyncio.create_task(self._read(self._mailbox))
        return await asyncio.shield(self._opened)

    async def wait(self) -> Outcome:
        """Wait until the session finalizes or is abandoned.

        Raises OperationAbandoned when the session was disconnected first.
        """
        await self._settled.wait()
        if self._outcome is None:
            raise OperationAbandoned(f"Operation {self.operation_id} was abandoned before completion")
        return self._outcome

    def finalize(self) -> Outcome | None:
        """Evaluate the history, paint the final state and fire the completion callback once."""
        if self._finalized:
            return self._outcome
        if self._state is SessionState.DISCONNECTED:
            logger.debug("Finalize ignored for abandoned session %s", self.operation_id)
            return None

        self._finalized = True
        outcome = evaluate(self._history)
        self._outcome = outcome
        status, level, notice = FINAL_DISPLAY[outcome]

        self._gate.update(100, outcome is Outcome.FAILURE)
        self._notice(level, notice)
        self._set_state(SessionState.COMPLETE)
        self._show_status(status)
        logger.info("Operation %s finished: %s", self.operation_id, outcome.value)

        self._schedule_disconnect()
        self._settled.set()

        if self._on_complete is not None:
            self._on_complete(outcome.is_success, list(self._history))
        return outcome

    def disconnect(self) -> None:
        """Close the channel. Without a prior finalize this abandons the operation."""
        if self._state is SessionState.DISCONNECTED:
            return
        self._cancel_scheduled_disconnect()
        self._stop_tasks()
        if self._opened is not None and not self._opened.done():
            self._opened.set_result(False)

        if self._state is SessionState.COMPLETE:
            # keep the final status painted
            logger.debug("Channel closed for completed session %s", self.operation_id)
            return

        self._set_state(SessionState.DISCONNECTED)
        self._show_status(STATUS_DISCONNECTED)
        self._settled.set()
        logger.info("Session %s disconnected", self.operation_id)

    def clear_logs(self) -> None:
        self._history = []
        clear = getattr(self._log_sink, "clear", None)
        if callable(clear):
            clear()

    def reset(self) -> None:
        """Disconnect and return to Idle with empty history and progress at 0."""
        self.disconnect()
        self.clear_logs()
        self._gate.reset()
        self._outcome = None
        self._finalized = False
        self._last_event_id = None
        self._settled = asyncio.Event()
        self._set_state(SessionState.IDLE)
        self._show_status(STATUS_DISCONNECTED)

    async def aclose(self) -> None:
        """Disconnect, wait for the tasks to stop and release the channel."""
        tasks = [t for t in (self._reader, self._consumer) if t is not None]
        self.disconnect()
        self._cancel_scheduled_disconnect()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self._channel.aclose()

    # ── Event handling ────────────────────────────────────────────

    def receive(self, payload) -> LogEvent | None:
        """Handle one inbound log payload. Never raises for a bad payload."""
        if self._log_sink is None:
            raise ConfigurationError("init() must be called before events are received")
        if self._state in (SessionState.COMPLETE, SessionState.DISCONNECTED):
            logger.debug("Event after %s ignored for %s", self._state.value, self.operation_id)
            return None

        try:
            event = normalize_event(payload)
        except MalformedEvent as e:
            logger.debug("Dropped event for %s: %s", self.operation_id, e)
            return None

        self._history.append(event)
        self._touch()
        self._render(event)

        is_error = event.level is LogLevel.ERROR
        percent = classify(event.text)
        if percent is not None:
            self._gate.update(percent, is_error)
        elif is_error:
            self._gate.flag_error()

        if is_terminal(event):
            self.finalize()
        return event

    def _dispatch(self, item) -> None:
        if isinstance(item, _Fault):
            self._on_transport_error(item.message)
            return

        frame: ChannelFrame = item
        if frame.event == OPEN:
            self._on_open()
        elif frame.event == LOG:
            self.receive(frame.data)
        elif frame.event == PING:
            logger.debug("Ping on %s", self.operation_id)
        elif frame.event == CLOSE:
            if frame.data:
                self._notice(LogLevel.INFO, frame.data)
        else:
            logger.debug("Ignored %r frame on %s", frame.event, self.operation_id)
        if frame.id is not None:
            self._last_event_id = frame.id

    def _on_open(self) -> None:
        if self._state is SessionState.COMPLETE:
            return
        self._set_state(SessionState.CONNECTED)
        self._notice(LogLevel.SUCCESS, NOTICE_CONNECTED)
        self._show_status(STATUS_CONNECTED)
        if self._opened is not None and not self._opened.done():
            self._opened.set_result(True)
        logger.info("Channel open for %s", self.operation_id)

    def _on_transport_error(self, message: str) -> None:
        if self._state is SessionState.COMPLETE:
            return
        logger.warning("Transport error on %s: %s", self.operation_id, message)
        self._notice(LogLevel.ERROR, NOTICE_TRANSPORT_ERROR)
        self._set_state(SessionState.ERROR)
        self._show_status(STATUS_ERROR)
        self._gate.update(self._gate.percent, True)
        if self._opened is not None and not self._opened.done():
            self._opened.set_result(False)

    def _on_idle_timeout(self) -> None:
        logger.warning(
            "No activity on %s for %.0fs, abandoning",
            self.operation_id, self._config.idle_timeout_s,
        )
        self._notice(LogLevel.ERROR, NOTICE_IDLE_TIMEOUT)
        self.disconnect()

    # ── Tasks ─────────────────────────────────────────────────────

    async def _read(self, mailbox: asyncio.Queue) -> None:
        """Pump channel frames into the mailbox, re-opening after drops."""
        failures = 0
        # starts from the last handled frame; later drops resume from the last frame read
        resume_from = self._last_event_id
        while True:
            try:
                async for frame in self._channel.stream(self.operation_id, resume_from):
                    if frame.event == OPEN:
                        failures = 0
                    if frame.id is not None:
                        resume_from = frame.id
                    await mailbox.put(frame)
                reason = "Stream closed by server"
            except TransportError as e:
                reason = str(e)
            except Exception as e:
                logger.exception("Unexpected channel failure on %s", self.operation_id)
                reason = str(e) or type(e).__name__

            failures += 1
            await mailbox.put(_Fault(reason))
            if failures > self._config.max_reconnects:
                logger.warning(
                    "Giving up on %s after %d failed attempts", self.operation_id, failures,
                )
                return
            await asyncio.sleep(self._config.reconnect_delay_s)

    async def _consume(self, mailbox: asyncio.Queue) -> None:
        """Handle mailbox items strictly one at a time."""
        me = asyncio.current_task()
        while self._consumer is me:
            try:
                item = await asyncio.wait_for(mailbox.get(), timeout=self._config.idle_timeout_s)
            except TimeoutError:
                self._on_idle_timeout()
                return
            if item is _STOP:
                return
            try:
                self._dispatch(item)
            except Exception:
                # one bad event must not end the session
                logger.exception("Failed to handle event on %s", self.operation_id)

    def _stop_tasks(self) -> None:
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        for task in (self._reader, self._consumer):
            if task is not None and task is not current and not task.done():
                task.cancel()
        self._reader = None
        self._consumer = None

    def _schedule_disconnect(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # no event loop to paint on; close straight away
            self.disconnect()
            return
        self._cancel_scheduled_disconnect()
        self._disconnect_handle = loop.call_later(self._config.disconnect_delay_s, self.disconnect)

    def _cancel_scheduled_disconnect(self) -> None:
        if self._disconnect_handle is not None:
            self._disconnect_handle.cancel()
            self._disconnect_handle = None

    # ── Rendering ─────────────────────────────────────────────────

    def _render(self, event: LogEvent) -> None:
        line = format_log_line(event)
        if line is not None and self._log_sink is not None:
            self._log_sink.write(line)

    def _notice(self, level: LogLevel, text: str) -> None:
        """Render a locally-originated notice; notices never enter the history."""
        self._render(LogEvent(text=text, level=level))

    def _render_progress(self, state: ProgressState) -> None:
        if self._progress_sink is not None:
            self._progress_sink.show_progress(state)

    def _show_status(self, status: str) -> None:
        if self._status_sink is not None:
            self._status_sink.show_status(status)

    def _set_state(self, state: SessionState) -> None:
        if state is not self._state:
            logger.debug("Session %s: %s -> %s", self.operation_id, self._state.value, state.value)
        self._state = state
        self._touch()

    def _touch(self) -> None:
        self._updated_at = time.monotonic()
