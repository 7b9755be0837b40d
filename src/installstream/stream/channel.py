"""One-way event channel: Server-Sent Events over httpx.

A channel yields an OPEN frame once the transport is up, then the server's
frames until the stream ends. Transport failures surface as TransportError;
reconnection policy belongs to the session.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator

import httpx
from httpx_sse import aconnect_sse

from ..core.errors import TransportError

logger = logging.getLogger(__name__)

OPEN = "open"
LOG = "log"
PING = "ping"
CLOSE = "close"

CONNECT_TIMEOUT = 10.0


@dataclass(frozen=True)
class ChannelFrame:
    """A single dispatched event from the channel."""
    event: str
    data: str = ""
    id: str | None = None


def stream_url(base_url: str, operation_id: str) -> str:
    return f"{base_url.rstrip('/')}/stream/{operation_id}"


class EventChannel(ABC):
    """Transport that delivers frames for one operation."""

    @abstractmethod
    def stream(
        self, operation_id: str, last_event_id: str | None = None,
    ) -> AsyncIterator[ChannelFrame]:
        """Open the channel and yield frames.

        Yields an OPEN frame first. Raises TransportError if the channel
        cannot be opened or drops mid-stream.
        """

    async def aclose(self) -> None:
        """Release transport resources."""


class SseChannel(EventChannel):
    """Reads ``<base_url>/stream/<operation_id>`` as text/event-stream."""

    def __init__(self, base_url: str, client: httpx.AsyncClient | None = None):
        self.base_url = base_url
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            # No read timeout: the session enforces its own idle timeout
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(connect=CONNECT_TIMEOUT, read=None, write=CONNECT_TIMEOUT, pool=CONNECT_TIMEOUT),
            )
        return self._client

    async def stream(
        self, operation_id: str, last_event_id: str | None = None,
    ) -> AsyncIterator[ChannelFrame]:
        url = stream_url(self.base_url, operation_id)
        headers = {}
        if last_event_id is not None:
            headers["Last-Event-ID"] = last_event_id

        client = self._get_client()
        try:
            async with aconnect_sse(client, "GET", url, headers=headers) as source:
                if source.response.status_code != 200:
                    raise TransportError(f"Stream {url} returned HTTP {source.response.status_code}")
                logger.debug("Channel open: %s", url)
                yield ChannelFrame(OPEN)

                async for sse in source.aiter_sse():
                    yield ChannelFrame(sse.event or "message", sse.data, sse.id or None)
        except httpx.HTTPError as e:
            raise TransportError(f"Stream {url} failed: {e}") from e

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
