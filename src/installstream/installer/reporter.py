"""Report an operation's outcome back to the catalog API."""

import logging

import httpx

from ..core.config import MarketplaceConfig
from ..core.constants import BACKUP_MARKER, DESTINATION_MARKER, MODE_INSTALL
from ..core.events import LogEvent, LogLevel, OperationResult

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


class OutcomeReporter:
    """Posts install/uninstall results to ``<api_url>/components/<id>/...``."""

    def __init__(
        self,
        config: MarketplaceConfig,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.config = config
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    def build_request(self, result: OperationResult) -> tuple[str, dict, dict]:
        """Return (url, query params, JSON body) for a result."""
        base = self.config.api_url.rstrip("/")
        if result.mode == MODE_INSTALL:
            url = f"{base}/components/{result.component_id}/install"
            params = {"clientId": self.config.client_id, "version": result.version}
            destination = extract_marker(result.history, DESTINATION_MARKER)
            if not destination and result.success:
                destination = f"Custom/Components/{result.component_id}"
            body = {
                "Success": result.success,
                "ComponentId": str(result.component_id),
                "Version": result.version,
                "InstallId": result.operation_id,
                "DestinationPath": destination or "",
                # non-critical errors are not reported on success
                "Error": "" if result.success else first_error(result.history),
            }
        else:
            url = f"{base}/components/{result.component_id}/uninstall"
            params = {"clientId": self.config.client_id}
            body = {
                "ComponentId": str(result.component_id),
                "Success": result.success,
                "UninstallId": result.operation_id,
                "BackupPath": extract_marker(result.history, BACKUP_MARKER),
            }
        return url, params, body

    async def report(self, result: OperationResult) -> bool:
        """Send the report. Failures are recorded on the result, never raised."""
        url, params, body = self.build_request(result)
        headers = {"Authorization": f"Bearer {self.config.api_key}"}
        try:
            response = await self._get_client().post(url, params=params, json=body, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            result.report_error = f"Catalog API returned HTTP {e.response.status_code}"
        except httpx.HTTPError as e:
            result.report_error = f"Catalog API unreachable: {e}"
        else:
            result.reported = True
            logger.info("Reported %s for %s", result.outcome.value, result.operation_id)
            return True

        logger.warning("Could not report %s: %s", result.operation_id, result.report_error)
        return False

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


def extract_marker(history: list[LogEvent], marker: str) -> str:
    """Return the text following marker on the last history line carrying it."""
    value = ""
    for event in history:
        if marker in event.text:
            value = event.text.split(marker, 1)[1].strip()
    return value


def first_error(history: list[LogEvent]) -> str:
    for event in history:
        if event.level is LogLevel.ERROR:
            return event.text
    return ""
