"""Cache maintenance commands for the aiorch CLI."""

from enum import Enum

import typer
from rich.console import Console
from rich.table import Table

from src.cli.runtime import build_manager

app = typer.Typer(help="Cache maintenance")


class CacheTarget(str, Enum):
    TEXT = "text"
    AUDIO = "audio"
    IMAGE = "image"
    MODELS = "models"
    ALL = "all"


@app.command()
def clear(
    ctx: typer.Context,
    target: CacheTarget = typer.Argument(CacheTarget.ALL, help="Which cache to clear"),
) -> None:
    """Clear one cache, or all of them."""
    console = Console()
    manager = build_manager(ctx)

    clearers = {
        CacheTarget.TEXT: manager.clear_text_cache,
        CacheTarget.AUDIO: manager.clear_audio_cache,
        CacheTarget.IMAGE: manager.clear_image_cache,
        CacheTarget.MODELS: manager.clear_models_cache,
    }
    selected = list(clearers) if target is CacheTarget.ALL else [target]

    table = Table(title="Cleared Caches")
    table.add_column("Cache", style="cyan")
    table.add_column("Removed", style="green", justify="right")
    for cache in selected:
        table.add_row(cache.value, str(clearers[cache]()))
    console.print(table)


@app.command()
def stats(ctx: typer.Context) -> None:
    """Show on-disk cache usage."""
    console = Console()
    manager = build_manager(ctx)

    table = Table(title=f"Cache Directory: {manager.settings.cache_dir}")
    table.add_column("Area", style="cyan")
    table.add_column("Files", style="green", justify="right")
    for area, count in manager.persistent_cache.stats().items():
        table.add_row(area, str(count))
    console.print(table)
