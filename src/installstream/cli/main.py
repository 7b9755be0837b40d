"""installstream CLI: Typer application with subcommands."""

import typer

from ..core.logging_config import setup_logging
from .install_cmd import install
from .uninstall_cmd import uninstall
from .watch_cmd import watch
from .relay_cmd import relay
from .config_cmd import config_app

app = typer.Typer(
    name="installstream",
    help="Install marketplace components and follow their live installation logs.",
    no_args_is_help=True,
)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only log errors"),
) -> None:
    setup_logging(verbose=verbose, quiet=quiet)


app.command()(install)
app.command()(uninstall)
app.command()(watch)
app.command()(relay)
app.add_typer(config_app, name="config")


if __name__ == "__main__":
    app()
