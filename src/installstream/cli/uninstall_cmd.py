"""installstream uninstall: remove a component and follow its log stream."""

from pathlib import Path

import typer

from ..core.config import load_config
from ..installer.orchestrator import Mode
from .install_cmd import _print_result, _run_operation, console


def uninstall(
    component_id: str = typer.Argument(..., help="Catalog component id"),
    force: bool = typer.Option(False, "--force", help="Remove even if other components use it"),
    config: Path = typer.Option(
        None,
        "--config", "-c",
        help="TOML file merged over the defaults",
    ),
) -> None:
    """Uninstall a component and stream its uninstallation log."""
    cfg = load_config(config)
    console.print(f"[bold]Uninstalling component {component_id}[/bold]")

    result = _run_operation(cfg, Mode.UNINSTALL, component_id, "", force=force)
    _print_result(result)
    if not result.success:
        raise typer.Exit(1)
