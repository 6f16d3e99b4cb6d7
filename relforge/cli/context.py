"""CLI context and dependency container."""

from __future__ import annotations

from dataclasses import dataclass

import click
import typer

from relforge.cli.console import CLIConsole, console
from relforge.cluster import Kr8sOrchestrationClient, OrchestrationClient
from relforge.config import Settings, load_settings
from relforge.core.manager import ReleaseManager
from relforge.storage import StateStore, get_store


@dataclass(frozen=True)
class CLIContext:
    """Runtime dependencies for CLI commands."""

    console: CLIConsole
    settings: Settings
    store: StateStore
    client: OrchestrationClient
    manager: ReleaseManager


def build_cli_context(settings: Settings | None = None) -> CLIContext:
    """Build a fresh CLIContext."""
    settings = settings or load_settings()
    store = get_store(settings)
    client = Kr8sOrchestrationClient(namespace=settings.namespace)

    return CLIContext(
        console=console,
        settings=settings,
        store=store,
        client=client,
        manager=ReleaseManager(store, client, apply_timeout=settings.apply_timeout),
    )


def get_cli_context(ctx: typer.Context | None = None) -> CLIContext:
    """Return the CLIContext from Typer, falling back to a new instance."""
    context = ctx or click.get_current_context(silent=True)
    if context and isinstance(context.obj, CLIContext):
        return context.obj
    return build_cli_context()
