"""Relay routes: producers POST log lines, installers' clients follow them over SSE."""

import asyncio
import json
import time
from datetime import datetime
from typing import AsyncIterator, Awaitable, Callable

from fastapi import APIRouter, Body, Request
from fastapi.responses import JSONResponse
from sse_starlette.sse import EventSourceResponse

from ...core.constants import NOTICE_CONNECTED, OPERATION_PREFIXES
from ..relay import LogRelay

router = APIRouter(prefix="/stream", tags=["stream"])

POLL_INTERVAL_S = 0.1

INVALID_ID_NOTICE = "Format d'ID invalide. L'opération peut ne pas fonctionner correctement."


@router.post("/log")
async def add_log(request: Request, payload: dict = Body(...)):
    """Append one producer line to an operation's stream."""
    install_id = payload.get("installId") or payload.get("InstallId")
    message = payload.get("message") or payload.get("Message")
    if not install_id or not isinstance(message, dict):
        return JSONResponse({"error": "installId and message are required"}, status_code=400)

    relay: LogRelay = request.app.state.relay
    added = relay.add(
        install_id,
        message.get("level") or message.get("Level"),
        message.get("text") or message.get("Text"),
    )
    return {"status": "ok", "added": added is not None}


@router.get("/{operation_id}")
async def stream_logs(request: Request, operation_id: str):
    """SSE endpoint: replay then follow an operation's log lines."""
    relay: LogRelay = request.app.state.relay
    config = request.app.state.relay_config

    start = resume_index(request.headers.get("last-event-id"))
    relay.ensure(operation_id)
    if not operation_id.startswith(OPERATION_PREFIXES):
        relay.add(operation_id, "ERROR", INVALID_ID_NOTICE)
    relay.add(operation_id, "INFO", NOTICE_CONNECTED)

    return EventSourceResponse(relay_events(
        relay, operation_id, start,
        ping_interval_s=config.ping_interval_s,
        connection_timeout_s=config.connection_timeout_s,
        is_disconnected=request.is_disconnected,
    ))


def resume_index(last_event_id: str | None) -> int:
    """Position after the last event the client saw (0 without a header)."""
    if last_event_id and last_event_id.strip().isdigit():
        return int(last_event_id.strip()) + 1
    return 0


async def relay_events(
    relay: LogRelay,
    operation_id: str,
    start: int = 0,
    *,
    ping_interval_s: float = 15.0,
    connection_timeout_s: float = 600.0,
    poll_interval_s: float = POLL_INTERVAL_S,
    is_disconnected: Callable[[], Awaitable[bool]] | None = None,
) -> AsyncIterator[dict]:
    """Yield SSE event dicts: log lines (id = queue index), pings, and a final close."""
    index = start
    deadline = time.monotonic() + connection_timeout_s
    next_ping = time.monotonic()

    while time.monotonic() < deadline:
        if is_disconnected is not None and await is_disconnected():
            return

        for message in relay.since(operation_id, index):
            yield {
                "event": "log",
                "id": str(index),
                "data": json.dumps(message.to_json(), ensure_ascii=False),
            }
            index += 1

        if time.monotonic() >= next_ping:
            yield {"event": "ping", "data": datetime.now().strftime("%Y-%m-%d %H:%M:%S")}
            next_ping = time.monotonic() + ping_interval_s

        await asyncio.sleep(poll_interval_s)

    yield {"event": "close", "data": f"Fin de la connexion (timeout après {connection_timeout_s:.0f}s)"}
