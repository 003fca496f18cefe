"""One-shot request command for the aiorch CLI."""

import base64
import sys
from pathlib import Path

import typer
from rich.console import Console

from src.cli.commands.providers import _parse_capability
from src.cli.presenters.providers import ProviderPresenter
from src.cli.runtime import run_with_manager
from src.core.exceptions import OrchestratorError
from src.core.models import AdditionalParams, AIResponse, AudioParams
from src.orchestrator import AIProviderManager


def ask(
    ctx: typer.Context,
    capability: str = typer.Argument(..., help="Capability, e.g. text_generation"),
    message: str = typer.Argument(..., help="User message or prompt"),
    attachment: Path = typer.Option(
        None, "--file", "-f", exists=True, dir_okay=False, help="Image or audio to attach"
    ),
    mime_type: str = typer.Option(None, "--mime-type", help="MIME type of the attachment"),
    audio_format: str = typer.Option("m4a", "--audio-format", help="Output audio format"),
    save: bool = typer.Option(False, "--save", help="Store generated images on disk"),
) -> None:
    """Send MESSAGE for CAPABILITY through the fallback chain."""
    console = Console()
    selected = _parse_capability(capability)

    attachment_b64 = (
        base64.b64encode(attachment.read_bytes()).decode("ascii") if attachment else None
    )
    params = AdditionalParams(audio=AudioParams(audio_format=audio_format))

    async def send(manager: AIProviderManager) -> AIResponse:
        return await manager.send_message(
            selected,
            message,
            image_base64=attachment_b64,
            image_mime_type=mime_type,
            additional_params=params,
            save_to_cache=save,
        )

    try:
        response = run_with_manager(ctx, send)
    except OrchestratorError as e:
        console.print(f"[red]❌ {e}[/red]")
        sys.exit(1)

    ProviderPresenter(console).present_response(response)
