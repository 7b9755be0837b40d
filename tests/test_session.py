"""Tests for the stream session state machine."""

import asyncio
import json

import pytest

from installstream.core.constants import (
    COLOR_ERROR,
    COLOR_NORMAL,
    NOTICE_CONNECTED,
    NOTICE_FINAL_SUCCESS,
    NOTICE_IDLE_TIMEOUT,
    NOTICE_TRANSPORT_ERROR,
)
from installstream.core.config import StreamConfig
from installstream.core.errors import ConfigurationError, OperationAbandoned, TransportError
from installstream.core.events import LogLevel, Outcome
from installstream.stream.channel import CLOSE, PING, ChannelFrame
from installstream.stream.session import SessionState, StreamSession

from conftest import (
    FakeChannel,
    RecordingLogSink,
    RecordingProgressSink,
    ReplayChannel,
    log_frame,
)

HAPPY_PATH = [
    ("INFO", "Téléchargement en cours"),
    ("INFO", "Extraction réussie"),
    ("INFO", "Installation des fichiers en cours"),
    ("SUCCESS", "Installation terminée avec succès"),
]


def _payload(level, text):
    return json.dumps({"Level": level, "Text": text})


@pytest.fixture
def completions():
    return []


@pytest.fixture
def session(stream_config, log_sink, progress_sink, status_sink, completions):
    """Initialised session on an idle channel, driven through receive()."""
    s = StreamSession(FakeChannel(), stream_config)
    s.init(
        "install-1",
        log_sink=log_sink,
        progress_sink=progress_sink,
        status_sink=status_sink,
        on_complete=lambda ok, history: completions.append((ok, history)),
    )
    return s


class TestInit:
    def test_log_sink_required(self):
        with pytest.raises(ConfigurationError):
            StreamSession(FakeChannel()).init("install-1", log_sink=None)

    def test_operation_id_required(self, log_sink):
        with pytest.raises(ConfigurationError):
            StreamSession(FakeChannel()).init("", log_sink=log_sink)

    def test_receive_before_init(self):
        with pytest.raises(ConfigurationError):
            StreamSession(FakeChannel()).receive(_payload("INFO", "hello"))

    def test_initial_state(self, session):
        assert session.state is SessionState.IDLE
        assert session.history == []
        assert session.outcome is None
        snap = session.snapshot
        assert snap.operation_id == "install-1"
        assert snap.percent == 0
        assert snap.color == COLOR_NORMAL


class TestReceive:
    def test_happy_path(self, session, progress_sink, status_sink, completions):
        """Four events drive progress 20, 30, 50, 100 and complete successfully."""
        for level, text in HAPPY_PATH:
            session.receive(_payload(level, text))

        assert progress_sink.percents == [20, 30, 50, 100]
        assert session.state is SessionState.COMPLETE
        assert session.outcome is Outcome.SUCCESS
        assert status_sink.statuses[-1] == "complete"
        assert len(completions) == 1
        ok, history = completions[0]
        assert ok is True
        assert [e.text for e in history] == [text for _, text in HAPPY_PATH]

    def test_every_event_rendered(self, session, log_sink):
        session.receive(_payload("WARNING", "Espace disque faible"))
        session.receive(_payload("SCRIPT", "[SCRIPT] Copie"))
        assert log_sink.texts == ["Espace disque faible", "Copie"]

    def test_empty_text_discarded(self, session, log_sink):
        assert session.receive(_payload("INFO", "   ")) is None
        assert session.history == []
        assert log_sink.lines == []

    def test_malformed_payload_discarded(self, session):
        assert session.receive("not json") is None
        assert session.receive(_payload("INFO", "Téléchargement")) is not None
        assert len(session.history) == 1

    def test_error_turns_bar_red(self, session, progress_sink):
        session.receive(_payload("INFO", "Téléchargement"))
        session.receive(_payload("ERROR", "Impossible de copier un fichier"))
        assert session.gate.percent == 20
        assert session.gate.color == COLOR_ERROR
        assert session.state is SessionState.IDLE
        assert progress_sink.states[-1].is_error

    def test_late_low_progress_ignored(self, session):
        session.receive(_payload("INFO", "Installation des fichiers"))
        session.receive(_payload("INFO", "Téléchargement"))
        assert session.gate.percent == 50

    def test_partial_success(self, session, status_sink, completions):
        """A critical error before completion paints a warning; the bar stays red."""
        session.receive(_payload("ERROR", "disk warning"))
        session.receive(_payload("SUCCESS", "Installation terminée avec succès"))
        assert session.outcome is Outcome.PARTIAL_SUCCESS
        assert status_sink.statuses[-1] == "warning"
        assert session.gate.percent == 100
        assert session.gate.color == COLOR_ERROR
        assert completions[0][0] is True

    def test_terminal_error(self, session, status_sink, completions):
        session.receive(_payload("INFO", "Téléchargement"))
        session.receive(_payload("ERROR", "L'installation ne peut pas continuer"))
        assert session.state is SessionState.COMPLETE
        assert session.outcome is Outcome.FAILURE
        assert session.gate.percent == 100
        assert session.gate.color == COLOR_ERROR
        assert status_sink.statuses[-1] == "error"
        assert completions[0][0] is False

    def test_completion_line_at_info_finalizes(self, session, completions):
        """A completion phrase logged at INFO ends the run at once, as a failure."""
        session.receive(_payload("INFO", "Installation du composant X terminée avec succès"))
        assert session.state is SessionState.COMPLETE
        assert session.outcome is Outcome.FAILURE
        assert completions == [(False, session.history)]

    def test_events_after_complete_ignored(self, session):
        session.receive(_payload("SUCCESS", "Installation réussie"))
        assert session.receive(_payload("ERROR", "late")) is None
        assert len(session.history) == 1

    def test_final_notice_not_in_history(self, session, log_sink):
        session.receive(_payload("SUCCESS", "Installation réussie"))
        assert log_sink.texts[-1] == NOTICE_FINAL_SUCCESS
        assert len(session.history) == 1


class TestFinalize:
    def test_idempotent(self, session, completions):
        session.receive(_payload("SUCCESS", "Installation réussie"))
        assert session.finalize() is Outcome.SUCCESS
        assert session.finalize() is Outcome.SUCCESS
        assert len(completions) == 1

    def test_explicit_finalize_without_success(self, session, completions):
        session.receive(_payload("INFO", "Téléchargement"))
        assert session.finalize() is Outcome.FAILURE
        assert completions == [(False, session.history)]

    def test_ignored_after_disconnect(self, session, completions):
        session.receive(_payload("INFO", "Téléchargement"))
        session.disconnect()
        assert session.finalize() is None
        assert completions == []

    def test_complete_survives_disconnect(self, session, status_sink):
        session.receive(_payload("SUCCESS", "Installation réussie"))
        session.disconnect()
        assert session.state is SessionState.COMPLETE
        assert status_sink.statuses[-1] == "complete"


class TestDisconnectAndReset:
    def test_disconnect_abandons(self, session, status_sink, completions):
        session.receive(_payload("INFO", "Téléchargement"))
        session.disconnect()
        assert session.state is SessionState.DISCONNECTED
        assert status_sink.statuses[-1] == "disconnected"
        assert completions == []

    def test_disconnect_twice(self, session, status_sink):
        session.disconnect()
        session.disconnect()
        assert status_sink.statuses.count("disconnected") == 1

    def test_reset(self, session, log_sink):
        for level, text in HAPPY_PATH:
            session.receive(_payload(level, text))
        session.reset()
        assert session.state is SessionState.IDLE
        assert session.history == []
        assert session.outcome is None
        assert session.gate.percent == 0
        assert session.gate.color == COLOR_NORMAL
        assert log_sink.cleared == 1

    def test_reused_after_reset(self, session, completions):
        session.receive(_payload("SUCCESS", "Installation réussie"))
        session.reset()
        session.receive(_payload("ERROR", "Échec complet de l'installation"))
        assert session.outcome is Outcome.FAILURE
        assert [ok for ok, _ in completions] == [True, False]


class TestConnect:
    @pytest.mark.asyncio
    async def test_end_to_end(self, stream_config, log_sink, progress_sink, status_sink):
        channel = FakeChannel([log_frame(text, level, str(i)) for i, (level, text) in enumerate(HAPPY_PATH)])
        session = StreamSession(channel, stream_config)
        done = []
        session.init(
            "install-1",
            log_sink=log_sink,
            progress_sink=progress_sink,
            status_sink=status_sink,
            on_complete=lambda ok, history: done.append((ok, len(history))),
        )

        assert await session.connect() is True
        assert await session.wait() is Outcome.SUCCESS
        await session.aclose()

        assert progress_sink.percents == [20, 30, 50, 100]
        assert status_sink.statuses == ["connected", "complete"]
        assert done == [(True, 4)]
        assert NOTICE_CONNECTED in log_sink.texts
        assert channel.calls == [("install-1", None)]
        assert channel.closed

    @pytest.mark.asyncio
    async def test_reconnect_while_connected_loses_nothing(self, stream_config, log_sink, progress_sink):
        """connect() on an open session resumes after the last handled event."""
        channel = ReplayChannel(
            [log_frame(text, level, str(i)) for i, (level, text) in enumerate(HAPPY_PATH[:3])]
        )
        session = StreamSession(channel, stream_config)
        session.init("install-1", log_sink=log_sink, progress_sink=progress_sink)

        assert await session.connect() is True
        level, text = HAPPY_PATH[3]
        channel.frames.append(log_frame(text, level, "3"))
        assert await session.connect() is True
        assert await session.wait() is Outcome.SUCCESS
        await session.aclose()

        assert [e.text for e in session.history] == [text for _, text in HAPPY_PATH]
        assert progress_sink.percents == [20, 30, 50, 100]
        assert len(channel.calls) == 2

    @pytest.mark.asyncio
    async def test_concurrent_sessions_are_independent(self, stream_config):
        """Two sessions running at once keep separate history, progress and sinks."""
        ok_sink, bad_sink = RecordingLogSink(), RecordingLogSink()
        ok_progress, bad_progress = RecordingProgressSink(), RecordingProgressSink()
        ok = StreamSession(
            FakeChannel([log_frame(text, level) for level, text in HAPPY_PATH]), stream_config,
        )
        bad = StreamSession(
            FakeChannel([
                log_frame("Téléchargement"),
                log_frame("Le fichier téléchargé est vide ou n'existe pas", "ERROR"),
            ]),
            stream_config,
        )
        ok.init("install-1", log_sink=ok_sink, progress_sink=ok_progress)
        bad.init("install-2", log_sink=bad_sink, progress_sink=bad_progress)

        async def run(session):
            await session.connect()
            try:
                return await session.wait()
            finally:
                await session.aclose()

        outcomes = await asyncio.gather(run(ok), run(bad))

        assert outcomes == [Outcome.SUCCESS, Outcome.FAILURE]
        assert len(ok.history) == 4
        assert len(bad.history) == 2
        assert ok.gate.color == COLOR_NORMAL
        assert bad.gate.color == COLOR_ERROR
        assert ok_progress.percents == [20, 30, 50, 100]
        assert bad_progress.states[-1].percent == 100
        assert bad_progress.states[-1].is_error
        assert not any("vide" in text for text in ok_sink.texts)

    @pytest.mark.asyncio
    async def test_connect_before_init(self):
        with pytest.raises(ConfigurationError):
            await StreamSession(FakeChannel()).connect()

    @pytest.mark.asyncio
    async def test_connect_after_complete(self, session):
        session.receive(_payload("SUCCESS", "Installation réussie"))
        with pytest.raises(ConfigurationError, match="reset"):
            await session.connect()

    @pytest.mark.asyncio
    async def test_transport_error(self, log_sink, status_sink):
        config = StreamConfig(idle_timeout_s=5.0, reconnect_delay_s=0.0, max_reconnects=0)
        session = StreamSession(FakeChannel(TransportError("refused")), config)
        session.init("install-1", log_sink=log_sink, status_sink=status_sink)

        assert await session.connect() is False
        assert session.state is SessionState.ERROR
        assert status_sink.statuses == ["error"]
        assert session.gate.color == COLOR_ERROR
        assert NOTICE_TRANSPORT_ERROR in log_sink.texts
        await session.aclose()
        assert session.state is SessionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_reconnects_from_last_event_id(self, stream_config, log_sink):
        channel = FakeChannel(
            [log_frame("Téléchargement", id="0"), TransportError("dropped")],
            [log_frame("Installation terminée avec succès", "SUCCESS", id="1")],
        )
        session = StreamSession(channel, stream_config)
        session.init("install-1", log_sink=log_sink)

        await session.connect()
        assert await session.wait() is Outcome.SUCCESS
        await session.aclose()

        assert channel.calls == [("install-1", None), ("install-1", "0")]
        assert [e.text for e in session.history] == [
            "Téléchargement",
            "Installation terminée avec succès",
        ]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_reconnects(self, log_sink):
        config = StreamConfig(idle_timeout_s=0.2, reconnect_delay_s=0.0, max_reconnects=1)
        channel = FakeChannel(TransportError("a"), TransportError("b"), TransportError("c"))
        session = StreamSession(channel, config)
        session.init("install-1", log_sink=log_sink)

        await session.connect()
        with pytest.raises(OperationAbandoned):
            await session.wait()
        await session.aclose()
        assert len(channel.calls) == 2

    @pytest.mark.asyncio
    async def test_idle_timeout_abandons(self, log_sink, status_sink):
        config = StreamConfig(idle_timeout_s=0.05, reconnect_delay_s=0.0)
        session = StreamSession(FakeChannel([]), config)
        session.init("install-1", log_sink=log_sink, status_sink=status_sink)

        assert await session.connect() is True
        with pytest.raises(OperationAbandoned):
            await session.wait()
        assert session.state is SessionState.DISCONNECTED
        assert status_sink.statuses[-1] == "disconnected"
        assert NOTICE_IDLE_TIMEOUT in log_sink.texts
        await session.aclose()

    @pytest.mark.asyncio
    async def test_ping_and_close_frames(self, stream_config, log_sink):
        channel = FakeChannel([
            ChannelFrame(PING, "2025-04-22 10:00:00"),
            ChannelFrame(CLOSE, "Fin de la connexion"),
            log_frame("Installation réussie", "SUCCESS"),
        ])
        session = StreamSession(channel, stream_config)
        session.init("install-1", log_sink=log_sink)

        await session.connect()
        assert await session.wait() is Outcome.SUCCESS
        await session.aclose()
        assert "Fin de la connexion" in log_sink.texts
        assert len(session.history) == 1

    @pytest.mark.asyncio
    async def test_scheduled_disconnect_keeps_complete(self, log_sink):
        config = StreamConfig(idle_timeout_s=5.0, disconnect_delay_s=0.01)
        session = StreamSession(FakeChannel([log_frame("Installation réussie", "SUCCESS")]), config)
        session.init("install-1", log_sink=log_sink)

        await session.connect()
        await session.wait()
        await asyncio.sleep(0.05)
        assert session.state is SessionState.COMPLETE
        await session.aclose()

    @pytest.mark.asyncio
    async def test_level_of_connection_notice(self, stream_config, log_sink):
        session = StreamSession(FakeChannel([]), stream_config)
        session.init("install-1", log_sink=log_sink)
        await session.connect()
        notice = next(line for line in log_sink.lines if line.text == NOTICE_CONNECTED)
        assert notice.level is LogLevel.SUCCESS
        await session.aclose()
