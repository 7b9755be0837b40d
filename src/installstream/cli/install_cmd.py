"""installstream install: install a component and follow its log stream."""

import asyncio
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

import typer
from rich.console import Console

from ..core.config import InstallerConfig, MarketplaceConfig, StreamConfig, load_config
from ..core.errors import InstallStreamError, OperationAbandoned, RequestRejected, TransportError
from ..core.events import OperationResult, Outcome
from ..installer.orchestrator import Mode, Orchestrator
from ..installer.reporter import OutcomeReporter
from ..stream.sinks import ConsoleLogSink, ConsoleProgressSink, ConsoleStatusSink, make_progress

console = Console()

OUTCOME_STYLES = {
    Outcome.SUCCESS: "[bold green]Success[/bold green]",
    Outcome.PARTIAL_SUCCESS: "[bold yellow]Success with warnings[/bold yellow]",
    Outcome.FAILURE: "[bold red]Failed[/bold red]",
}


def install(
    component_id: str = typer.Argument(..., help="Catalog component id"),
    version: str = typer.Argument(..., help="Version to install"),
    package_url: str = typer.Option(
        ...,
        "--package-url", "-u",
        help="Download URL of the component package",
    ),
    config: Path = typer.Option(
        None,
        "--config", "-c",
        help="TOML file merged over the defaults",
    ),
) -> None:
    """Install a component version and stream its installation log."""
    cfg = load_config(config)
    console.print(f"[bold]Installing component {component_id} v{version}[/bold]")

    result = _run_operation(cfg, Mode.INSTALL, component_id, version, package_url=package_url)
    _print_result(result)
    if not result.success:
        raise typer.Exit(1)


def build_orchestrator(cfg: dict) -> Orchestrator:
    market = MarketplaceConfig.from_dict(cfg)
    return Orchestrator(
        InstallerConfig.from_dict(cfg),
        StreamConfig.from_dict(cfg),
        reporter=OutcomeReporter(market) if market.enabled else None,
    )


def _run_operation(cfg: dict, mode: Mode, component_id: str, version: str, **kwargs) -> OperationResult:
    """Run one operation with console sinks, mapping errors to exit code 1."""

    async def _go() -> OperationResult:
        async with build_orchestrator(cfg) as orchestrator:
            with session_sinks(console, mode.value.capitalize()) as sinks:
                return await orchestrator.execute(component_id, version, mode, **sinks, **kwargs)

    try:
        return asyncio.run(_go())
    except RequestRejected as e:
        console.print(f"[red]Request rejected:[/red] {e}")
    except TransportError as e:
        console.print(f"[red]Installer unreachable:[/red] {e}")
    except OperationAbandoned as e:
        console.print(f"[red]Stream abandoned:[/red] {e}")
    except InstallStreamError as e:
        console.print(f"[red]{e}[/red]")
    raise typer.Exit(1)


@contextmanager
def session_sinks(console: Console, description: str) -> Iterator[dict]:
    """Log lines, a progress bar and a status line on one rich console."""
    progress = make_progress(console)
    with progress:
        yield {
            "log_sink": ConsoleLogSink(progress.console),
            "progress_sink": ConsoleProgressSink(progress, description),
            "status_sink": ConsoleStatusSink(progress.console),
        }


def _print_result(result: OperationResult) -> None:
    console.print()
    console.print(f"Operation: {result.operation_id}")
    console.print(f"Outcome:   {OUTCOME_STYLES[result.outcome]}")
    console.print(f"Events:    {len(result.history)}")
    if result.report_error:
        console.print(f"[yellow]Not recorded in the catalog:[/yellow] {result.report_error}")
    elif result.reported:
        console.print("[dim]Recorded in the catalog.[/dim]")
