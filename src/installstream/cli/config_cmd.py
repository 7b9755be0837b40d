"""installstream config: show or change the global defaults."""

import typer
from rich.console import Console
from rich.table import Table

from ..core.config import DEFAULTS_PATH, load_defaults, save_defaults, set_config_value

console = Console()

config_app = typer.Typer(help="Show or change defaults.toml", no_args_is_help=True)


@config_app.command("show")
def show() -> None:
    """Print the merged configuration."""
    config = load_defaults()
    table = Table(show_header=True, header_style="bold")
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    for section, values in config.items():
        for key, value in values.items():
            shown = "****" if key == "api_key" and value else str(value)
            table.add_row(f"{section}.{key}", shown)
    console.print(f"[dim]{DEFAULTS_PATH}[/dim]")
    console.print(table)


@config_app.command("set")
def set_value(
    key: str = typer.Argument(..., help="SECTION.KEY, e.g. stream.idle_timeout_s"),
    value: str = typer.Argument(..., help="New value"),
) -> None:
    """Change one key in defaults.toml."""
    config = load_defaults()
    try:
        set_config_value(config, key, value)
    except KeyError as e:
        console.print(f"[red]{e.args[0]}[/red]")
        raise typer.Exit(1)
    except ValueError:
        console.print(f"[red]Invalid value for {key}: {value!r}[/red]")
        raise typer.Exit(1)
    save_defaults(config)
    console.print(f"[green]{key}[/green] = {config[key.split('.')[0]][key.split('.', 1)[1]]}")
