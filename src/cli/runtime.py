"""Helpers shared by CLI commands."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import replace
from pathlib import Path
from typing import TypeVar

import typer

from src.core.config import Settings
from src.orchestrator import AIProviderManager

T = TypeVar("T")


def config_file_option(ctx: typer.Context) -> Path | None:
    """Routing table path passed to the root ``--config`` option, if any."""
    obj = ctx.find_root().obj or {}
    return obj.get("config_file")


def build_manager(ctx: typer.Context) -> AIProviderManager:
    settings = Settings.load()
    config_file = config_file_option(ctx)
    if config_file is not None:
        settings = replace(settings, config_file=config_file)
    return AIProviderManager(settings)


def run_with_manager(
    ctx: typer.Context, action: Callable[[AIProviderManager], Awaitable[T]]
) -> T:
    """Initialize a manager, run ``action`` against it and dispose it."""

    async def _run() -> T:
        async with build_manager(ctx) as manager:
            return await action(manager)

    return asyncio.run(_run())
