"""CLI commands for mdreader.

Developer entry point for exercising plugins outside the editor.
"""

from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.markup import escape

from mdreader import __logo__, __version__
from mdreader.cli.command_groups.plugins_command import register_plugins_commands
from mdreader.cli.shared.logging_utils import configure_logging
from mdreader.config.loader import load_config
from mdreader.config.schema import Config

app = typer.Typer(
    name="mdreader",
    help=f"{__logo__} mdreader - MD Reader Pro plugin tooling",
    no_args_is_help=True,
)

console = Console()
_state: dict[str, Any] = {"config_path": None, "simulated": False}


def get_config() -> Config:
    try:
        cfg = load_config(_state["config_path"])
    except ValueError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(1)
    if _state["simulated"]:
        cfg.plugins.bridge.mode = "simulated"
    return cfg


def version_callback(value: bool) -> None:
    if value:
        console.print(f"{__logo__} mdreader v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(None, "--version", "-v", callback=version_callback, is_eager=True),
    verbose: bool = typer.Option(False, "--verbose", help="Debug logging to stderr"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to config.json"),
    simulated: bool = typer.Option(False, "--simulated", help="Answer from canned handlers instead of spawning plugins"),
) -> None:
    """mdreader - MD Reader Pro plugin tooling."""
    _state["config_path"] = config
    _state["simulated"] = simulated
    configure_logging(get_config().logging, verbose=verbose)


register_plugins_commands(app, console, get_config)


if __name__ == "__main__":
    app()
