"""Install/uninstall orchestrator: start the operation, stream it, return the outcome."""

import logging
import secrets
import string
import time
from enum import Enum
from typing import Callable

import httpx

from ..core.config import InstallerConfig, StreamConfig
from ..core.constants import MODE_INSTALL, MODE_UNINSTALL, PLACEHOLDER_PACKAGE_MARKERS
from ..core.errors import RequestRejected, TransportError
from ..core.events import LogEvent, LogLevel, OperationResult, Outcome
from ..stream.channel import EventChannel, SseChannel
from ..stream.session import CompletionCallback, StreamSession
from ..stream.sinks import LogSink, ProgressSink, StatusSink, format_log_line
from .reporter import OutcomeReporter

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.ascii_lowercase + string.digits

# accept-response keys that may carry the operation id
ID_KEYS = ("installId", "uninstallId", "operationId", "InstallId", "UninstallId")


class Mode(str, Enum):
    INSTALL = MODE_INSTALL
    UNINSTALL = MODE_UNINSTALL


def new_operation_id(mode: Mode) -> str:
    """e.g. ``install-1745312345678-k3j9x0qa``."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(8))
    return f"{mode.value}-{int(time.time() * 1000)}-{suffix}"


def validate_package_url(package_url: str | None) -> str:
    """Reject empty or placeholder package URLs before anything is started."""
    if not package_url or any(marker in package_url for marker in PLACEHOLDER_PACKAGE_MARKERS):
        raise RequestRejected(f"Invalid package URL: {package_url or 'empty URL'}")
    return package_url


class Orchestrator:
    """Runs one install or uninstall end to end.

    Each call builds its own StreamSession (unless one is passed in for
    reuse), so concurrent operations share nothing but configuration.
    """

    def __init__(
        self,
        installer: InstallerConfig | None = None,
        stream: StreamConfig | None = None,
        *,
        reporter: OutcomeReporter | None = None,
        client: httpx.AsyncClient | None = None,
        channel_factory: Callable[[], EventChannel] | None = None,
    ):
        self.installer = installer or InstallerConfig()
        self.stream = stream or StreamConfig(base_url=self.installer.base_url)
        self.reporter = reporter
        self._client = client
        self._owns_client = client is None
        self._channel_factory = channel_factory or (lambda: SseChannel(self.stream.base_url))

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.installer.request_timeout_s)
        return self._client

    async def __aenter__(self) -> "Orchestrator":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
        if self.reporter is not None:
            await self.reporter.aclose()

    async def start_operation(
        self,
        mode: Mode,
        component_id: str,
        version: str = "",
        *,
        package_url: str | None = None,
        force: bool = False,
    ) -> str:
        """Ask the installer to start; return the accepted operation id.

        Raises RequestRejected on an HTTP error status, TransportError when
        the request cannot complete within the timeout.
        """
        operation_id = new_operation_id(mode)
        base = self.installer.base_url.rstrip("/")
        if mode is Mode.INSTALL:
            url = f"{base}/install"
            body = {
                "componentId": component_id,
                "version": version,
                "packageUrl": package_url,
                "installId": operation_id,
            }
        else:
            url = f"{base}/uninstall"
            body = {
                "componentId": component_id,
                "force": force,
                "uninstallId": operation_id,
            }

        logger.info("Starting %s of component %s (%s)", mode.value, component_id, operation_id)
        try:
            response = await self._get_client().post(
                url, json=body, timeout=self.installer.request_timeout_s,
            )
        except httpx.HTTPError as e:
            raise TransportError(f"{mode.value} request to {url} failed: {e}") from e

        if response.is_error:
            raise RequestRejected(
                f"Installer refused {mode.value} ({response.status_code}): {_error_detail(response)}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError:
            data = {}
        if isinstance(data, dict):
            for key in ID_KEYS:
                if data.get(key):
                    return str(data[key])
        return operation_id

    async def execute(
        self,
        component_id: str,
        version: str,
        mode: Mode = Mode.INSTALL,
        *,
        log_sink: LogSink,
        progress_sink: ProgressSink | None = None,
        status_sink: StatusSink | None = None,
        on_complete: CompletionCallback | None = None,
        package_url: str | None = None,
        force: bool = False,
        session: StreamSession | None = None,
    ) -> OperationResult:
        """Start the operation, stream it to completion and report the outcome."""
        if mode is Mode.INSTALL:
            validate_package_url(package_url)

        operation_id = await self.start_operation(
            mode, component_id, version, package_url=package_url, force=force,
        )

        owned = session is None
        if owned:
            session = StreamSession(self._channel_factory(), self.stream)
        else:
            session.reset()

        history: list[LogEvent] = []

        def _complete(is_success: bool, events: list[LogEvent]) -> None:
            history.extend(events)
            if on_complete is not None:
                on_complete(is_success, events)

        session.init(
            operation_id,
            log_sink=log_sink,
            progress_sink=progress_sink,
            status_sink=status_sink,
            on_complete=_complete,
        )
        try:
            await session.connect()
            outcome = await session.wait()
        finally:
            if owned:
                await session.aclose()

        result = OperationResult(
            operation_id=operation_id,
            mode=mode.value,
            component_id=str(component_id),
            version=version,
            outcome=outcome,
            history=history,
        )
        if self.reporter is not None and self.reporter.config.enabled:
            if not await self.reporter.report(result):
                _warn(log_sink, f"Avertissement: l'enregistrement du résultat a échoué ({result.report_error})")
        return result

    async def run(
        self,
        component_id: str,
        version: str,
        mode: Mode = Mode.INSTALL,
        **kwargs,
    ) -> Outcome:
        result = await self.execute(component_id, version, mode, **kwargs)
        return result.outcome


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.reason_phrase or response.text[:200]
    if isinstance(data, dict):
        return str(data.get("error") or data.get("message") or data)
    return str(data)


def _warn(log_sink: LogSink, text: str) -> None:
    line = format_log_line(LogEvent(text=text, level=LogLevel.WARNING))
    if line is not None:
        log_sink.write(line)
