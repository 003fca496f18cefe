"""Main CLI entry point for the AI provider orchestrator."""

from pathlib import Path

import typer
from rich.console import Console

from src.cli.commands import ask, cache, config, providers
from src.core.config import ConfigError
from src.core.logging import configure_root_logging

app = typer.Typer(
    name="aiorch",
    help="AI Provider Orchestrator CLI - route requests across AI providers",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

# Add subcommands
app.add_typer(providers.app, name="providers", help="Provider inspection")
app.add_typer(cache.app, name="cache", help="Cache maintenance")
app.add_typer(config.app, name="config", help="Configuration management")
app.command(name="ask")(ask.ask)


@app.command()
def version() -> None:
    """Show version information."""
    from src import __version__

    console = Console()
    console.print(f"[bold cyan]aiorch[/bold cyan] version [green]{__version__}[/green]")


@app.callback()
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
    config_file: Path = typer.Option(None, "--config", "-c", help="Routing table JSON file"),
) -> None:
    """AI Provider Orchestrator CLI."""
    ctx.obj = {"config_file": config_file}
    try:
        configure_root_logging("DEBUG" if verbose else None)
    except ConfigError:
        # Reported by `aiorch config validate`
        configure_root_logging("INFO")


if __name__ == "__main__":
    app()
