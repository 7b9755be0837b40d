"""installstream watch: attach to an operation that is already running."""

import asyncio
from pathlib import Path

import typer

from ..core.config import StreamConfig, load_config
from ..core.errors import OperationAbandoned
from ..core.events import Outcome
from ..stream.channel import SseChannel
from ..stream.session import StreamSession
from .install_cmd import OUTCOME_STYLES, console, session_sinks


def watch(
    operation_id: str = typer.Argument(..., help="e.g. install-1745312345678-k3j9x0qa"),
    config: Path = typer.Option(
        None,
        "--config", "-c",
        help="TOML file merged over the defaults",
    ),
) -> None:
    """Follow the live log of a running install or uninstall."""
    stream_cfg = StreamConfig.from_dict(load_config(config))

    try:
        outcome = asyncio.run(_watch(operation_id, stream_cfg))
    except OperationAbandoned as e:
        console.print(f"[red]Stream abandoned:[/red] {e}")
        raise typer.Exit(1)

    console.print(f"\nOutcome: {OUTCOME_STYLES[outcome]}")
    if not outcome.is_success:
        raise typer.Exit(1)


async def _watch(operation_id: str, stream_cfg: StreamConfig) -> Outcome:
    session = StreamSession(SseChannel(stream_cfg.base_url), stream_cfg)
    with session_sinks(console, operation_id) as sinks:
        session.init(operation_id, **sinks)
        try:
            await session.connect()
            return await session.wait()
        finally:
            await session.aclose()
