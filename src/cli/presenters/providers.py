"""Presenters for provider and response display in the CLI."""

from __future__ import annotations

from collections.abc import Mapping, Sequence

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from src.core.models import AIResponse, ProviderSummary

PROVIDER_COLORS = {
    "openai": "blue",
    "google": "red",
}


def provider_label(provider_id: str) -> str:
    color = PROVIDER_COLORS.get(provider_id, "white")
    return f"[{color}]{provider_id}[/{color}]"


class ProviderPresenter:
    """Turns orchestrator results into Rich output.

    Contains no business logic, only presentation.
    """

    def __init__(self, console: Console | None = None):
        self.console = console or Console()

    def present_providers(self, summaries: Sequence[ProviderSummary], title: str) -> None:
        if not summaries:
            self.console.print("[yellow]No providers configured[/yellow]")
            return

        table = Table(title=title)
        table.add_column("#", style="dim", justify="right")
        table.add_column("Provider")
        table.add_column("Name", style="cyan")
        table.add_column("Capabilities", style="green")
        table.add_column("Enabled", justify="center")

        for position, summary in enumerate(summaries, start=1):
            table.add_row(
                str(position),
                provider_label(summary.id),
                summary.display_name,
                ", ".join(c.value for c in summary.capabilities),
                "✅" if summary.enabled else "❌",
            )
        self.console.print(table)

    def present_health(self, results: Mapping[str, bool]) -> None:
        table = Table(title="Provider Health")
        table.add_column("Provider")
        table.add_column("Status")
        for provider_id, healthy in results.items():
            status = "[green]healthy[/green]" if healthy else "[red]unreachable[/red]"
            table.add_row(provider_label(provider_id), status)
        self.console.print(table)

    def present_response(self, response: AIResponse) -> None:
        body = response.text or "[dim](no text)[/dim]"
        if response.image is not None:
            location = response.image.url or "returned inline (use --save to store it)"
            body += f"\n\n🖼  Image: {location}"
        if response.audio is not None and response.audio.url:
            body += f"\n\n🔊 Audio: {response.audio.url}"
        self.console.print(
            Panel(body, title=f"Response from {provider_label(response.provider)}", expand=False)
        )
