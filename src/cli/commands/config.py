"""Configuration commands for the aiorch CLI."""

import sys

import typer
from rich.console import Console
from rich.table import Table

from src.cli.runtime import config_file_option
from src.core.config import ConfigError, Settings, load_routing_table, validate_all
from src.core.config.schema import ConfigSchema
from src.core.exceptions import ConfigurationLoadError

app = typer.Typer(help="Configuration management")


@app.command()
def show() -> None:
    """Show effective environment settings."""
    console = Console()
    try:
        settings = Settings.load()
    except ConfigError as e:
        console.print(f"[red]❌ {e}[/red]")
        sys.exit(1)

    table = Table(title="Orchestrator Settings")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")
    for name, value in vars(settings).items():
        table.add_row(name, str(value))
    console.print(table)


@app.command()
def validate(ctx: typer.Context) -> None:
    """Validate environment variables and the routing table."""
    console = Console()
    failed = False

    errors = validate_all()
    if errors:
        failed = True
        for error in errors:
            console.print(f"[red]❌ {error}[/red]")
    else:
        console.print("✅ Environment variables are valid")

    try:
        path = config_file_option(ctx) or (None if errors else Settings.load().config_file)
        table = load_routing_table(path)
    except ConfigurationLoadError as e:
        failed = True
        console.print(f"[red]❌ {e}[/red]")
    else:
        source = str(path) if path else "built-in defaults"
        console.print(
            f"✅ Routing table ({source}): {len(table.providers)} providers, "
            f"{len(table.capability_preferences)} capability preferences"
        )

    if failed:
        sys.exit(1)


@app.command()
def docs() -> None:
    """Print environment variable documentation as Markdown."""
    typer.echo(ConfigSchema.generate_markdown_docs())
