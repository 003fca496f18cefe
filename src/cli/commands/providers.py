"""Provider inspection commands for the aiorch CLI."""

import sys

import typer
from rich.console import Console

from src.cli.presenters.providers import ProviderPresenter
from src.cli.runtime import run_with_manager
from src.core.capability import Capability
from src.core.models import ProviderSummary
from src.orchestrator import AIProviderManager

app = typer.Typer(help="Provider inspection")


def _parse_capability(value: str) -> Capability:
    capability = Capability.from_identifier(value)
    if capability is None:
        valid = ", ".join(c.value for c in Capability)
        raise typer.BadParameter(f"Unknown capability '{value}'. Valid values: {valid}")
    return capability


@app.command("list")
def list_providers(
    ctx: typer.Context,
    capability: str = typer.Option(
        None, "--capability", "-C", help="Show providers for one capability in fallback order"
    ),
) -> None:
    """List configured providers."""
    presenter = ProviderPresenter()
    selected = _parse_capability(capability) if capability else None

    async def collect(manager: AIProviderManager) -> list[ProviderSummary]:
        if selected is not None:
            return await manager.get_available_providers_for_capability(selected)
        summaries = []
        for provider_id in manager.providers:
            config = manager.resolver.provider_config(provider_id)
            if config is not None:
                summaries.append(
                    ProviderSummary(
                        id=provider_id,
                        display_name=config.display_name,
                        description=config.description,
                        capabilities=config.capabilities,
                        enabled=config.enabled,
                    )
                )
        return summaries

    summaries = run_with_manager(ctx, collect)
    title = f"Providers for {selected.display_name}" if selected else "Configured Providers"
    presenter.present_providers(summaries, title)


@app.command()
def health(ctx: typer.Context) -> None:
    """Check every enabled provider."""
    console = Console()
    console.print("[bold cyan]Checking provider health...[/bold cyan]")

    results = run_with_manager(ctx, lambda manager: manager.health_check())
    ProviderPresenter(console).present_health(results)

    if not all(results.values()):
        sys.exit(1)
