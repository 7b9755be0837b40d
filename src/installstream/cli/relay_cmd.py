"""installstream relay: run the log relay server."""

import typer
from rich.console import Console

from ..core.config import RelayConfig, load_defaults

console = Console()


def relay(
    port: int = typer.Option(
        None,
        "--port",
        help="HTTP port (defaults to relay.port)",
    ),
    host: str = typer.Option(
        None,
        "--host",
        help="Host to bind to (defaults to relay.host)",
    ),
) -> None:
    """Start the installation log relay (FastAPI + SSE)."""
    import uvicorn

    from ..web.app import create_app

    relay_cfg = RelayConfig.from_dict(load_defaults())
    host = host or relay_cfg.host
    port = port or relay_cfg.port

    console.print("[bold]Starting installstream relay[/bold]")
    console.print(f"Stream: http://localhost:{port}/stream/<operation-id>")
    console.print()

    uvicorn.run(create_app(relay_cfg), host=host, port=port)
