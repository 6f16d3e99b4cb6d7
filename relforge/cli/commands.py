"""Release management commands.

This module provides commands for installing, upgrading, rolling back,
scaling and inspecting releases.
"""

from pathlib import Path
from typing import Annotated

import typer
from rich.panel import Panel
from rich.table import Table

from relforge.core.loader import load_release
from relforge.core.manager import ReleaseResult
from relforge.core.models import ReleaseStatus
from relforge.utils.sync import run_sync

from .console import CLIConsole, with_error_handling
from .context import get_cli_context

release_app = typer.Typer()

STATUS_STYLES = {
    ReleaseStatus.APPLIED: "green",
    ReleaseStatus.ROLLED_BACK: "cyan",
    ReleaseStatus.FAILED: "red",
    ReleaseStatus.PENDING: "yellow",
}

SetOption = Annotated[
    list[str] | None,
    typer.Option(
        "--set",
        help="Override a component field, e.g. --set frontend.image=web:2.0",
    ),
]
DryRunOption = Annotated[
    bool,
    typer.Option("--dry-run", help="Show the planned operations without applying them"),
]


def _report(console: CLIConsole, result: ReleaseResult, verb: str) -> None:
    """Print the operation plan and outcome of a lifecycle command."""
    record = result.record
    if result.dry_run:
        console.print_operations(
            result.operations, f"Planned operations for '{record.name}'"
        )
        console.info(
            f"Dry run: {verb} would record revision {record.revision}. Nothing was applied."
        )
        return

    console.print_operations(result.operations, f"Applied operations for '{record.name}'")
    console.ok(
        f"{verb.capitalize()} of '{record.name}' complete: revision {record.revision}"
    )


@release_app.command()
@with_error_handling
def install(
    ctx: typer.Context,
    file: Annotated[
        Path,
        typer.Argument(help="Release description (YAML)", exists=True, dir_okay=False),
    ],
    name: Annotated[
        str | None,
        typer.Option("--name", help="Release name (overrides the file's name field)"),
    ] = None,
    set_values: SetOption = None,
    dry_run: DryRunOption = False,
) -> None:
    """Install a new release from a description file.

    Examples:
        relforge install webapp.yaml
        relforge install webapp.yaml --name webapp-staging --dry-run
    """
    context = get_cli_context(ctx)
    spec = load_release(file, name=name, overrides=set_values or [])

    context.console.print_header(f"Install {spec.name}")
    result = run_sync(context.manager.install(spec, dry_run=dry_run))
    _report(context.console, result, "install")


@release_app.command()
@with_error_handling
def upgrade(
    ctx: typer.Context,
    release: Annotated[str, typer.Argument(help="Release name")],
    file: Annotated[
        Path,
        typer.Argument(help="Release description (YAML)", exists=True, dir_okay=False),
    ],
    set_values: SetOption = None,
    dry_run: DryRunOption = False,
) -> None:
    """Upgrade a release to the state described in a file.

    Examples:
        relforge upgrade webapp webapp.yaml
        relforge upgrade webapp webapp.yaml --set frontend.image=web:2.0
    """
    context = get_cli_context(ctx)
    spec = load_release(file, name=release, overrides=set_values or [])

    context.console.print_header(f"Upgrade {release}")
    result = run_sync(context.manager.upgrade(spec, dry_run=dry_run))
    _report(context.console, result, "upgrade")


@release_app.command()
@with_error_handling
def rollback(
    ctx: typer.Context,
    release: Annotated[str, typer.Argument(help="Release name")],
    revision: Annotated[
        int | None,
        typer.Argument(help="Revision number to rollback to (default: previous revision)"),
    ] = None,
    dry_run: DryRunOption = False,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt"),
    ] = False,
) -> None:
    """Rollback a release to an earlier revision.

    The rollback is recorded as a new revision; history is never rewritten.

    Examples:
        relforge rollback webapp          # Previous revision
        relforge rollback webapp 3        # Specific revision
        relforge history webapp           # View history first
    """
    context = get_cli_context(ctx)
    console = context.console
    console.print_header(f"Rollback {release}")

    plan = run_sync(context.manager.rollback(release, revision, dry_run=True))
    if dry_run:
        _report(console, plan, "rollback")
        return

    console.print_operations(plan.operations, "📋 Rollback Plan")
    if not console.confirm_action(
        plan.record.description,
        f"This will reconcile '{release}' back to that revision's components "
        f"and record revision {plan.record.revision}.",
        force=yes,
    ):
        console.print("[dim]Rollback cancelled.[/dim]")
        raise typer.Exit(0)

    result = run_sync(context.manager.rollback(release, revision))
    _report(console, result, "rollback")


@release_app.command()
@with_error_handling
def scale(
    ctx: typer.Context,
    release: Annotated[str, typer.Argument(help="Release name")],
    component: Annotated[str, typer.Argument(help="Component to scale")],
    count: Annotated[int, typer.Argument(help="New replica count")],
    dry_run: DryRunOption = False,
) -> None:
    """Change the replica count of one component.

    Examples:
        relforge scale webapp backend 5
    """
    context = get_cli_context(ctx)
    context.console.print_header(f"Scale {release}/{component}")
    result = run_sync(context.manager.scale(release, component, count, dry_run=dry_run))
    _report(context.console, result, "scale")


@release_app.command()
@with_error_handling
def history(
    ctx: typer.Context,
    release: Annotated[str, typer.Argument(help="Release name")],
    max_revisions: Annotated[
        int,
        typer.Option("--max", "-m", min=1, help="Maximum number of revisions to show"),
    ] = 10,
) -> None:
    """Show the revision history of a release.

    Examples:
        relforge history webapp
        relforge history webapp --max 5
    """
    context = get_cli_context(ctx)
    records = run_sync(context.manager.history(release, max_revisions))

    table = Table(title=f"History of '{release}'", show_header=True, header_style="bold")
    table.add_column("Revision", justify="right")
    table.add_column("Updated")
    table.add_column("Status")
    table.add_column("Components")
    table.add_column("Description")

    for record in records:
        style = STATUS_STYLES[record.status]
        components = ", ".join(
            f"{c.name}={c.image}×{c.replicas}" for c in record.spec.components
        )
        table.add_row(
            str(record.revision),
            record.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            f"[{style}]{record.status.value}[/{style}]",
            components,
            record.description[:60],
        )

    context.console.print(table)
    if len(records) > 1:
        context.console.print(
            f"\n[dim]To rollback: relforge rollback {release} <revision>[/dim]"
        )


@release_app.command()
@with_error_handling
def status(
    ctx: typer.Context,
    release: Annotated[str, typer.Argument(help="Release name")],
    wait: Annotated[
        bool,
        typer.Option("--wait", help="Wait until every component is ready"),
    ] = False,
    timeout: Annotated[
        float,
        typer.Option("--timeout", help="Seconds to wait with --wait"),
    ] = 300.0,
) -> None:
    """Show the current revision and live component state of a release.

    Examples:
        relforge status webapp
        relforge status webapp --wait --timeout 120
    """
    context = get_cli_context(ctx)
    console = context.console

    if wait:
        with console.status(f"[cyan]Waiting for '{release}' to become ready...[/cyan]"):
            run_sync(context.manager.wait_until_ready(release, timeout=timeout))

    overview = run_sync(context.manager.status(release))
    record = overview.record
    style = STATUS_STYLES[record.status]
    console.print(
        Panel.fit(
            f"[bold]{release}[/bold]  revision {record.revision}  "
            f"[{style}]{record.status.value}[/{style}]  state {overview.state.value}\n"
            f"[dim]{record.description}[/dim]",
            border_style="blue",
        )
    )

    table = Table(show_header=True, header_style="bold")
    table.add_column("Component")
    table.add_column("Image")
    table.add_column("Ready", justify="right")
    table.add_column("Ports")
    table.add_column("Exposure")

    for name, state in overview.live.components.items():
        ready = f"{state.ready_replicas}/{state.replicas}"
        ready_style = "green" if state.ready else "yellow"
        table.add_row(
            name,
            state.image,
            f"[{ready_style}]{ready}[/{ready_style}]",
            ", ".join(str(p) for p in state.ports) or "-",
            state.exposure.value,
        )
    console.print(table)

    drifted = [
        c.name
        for c in record.spec.components
        if c.name not in overview.live.components
        or overview.live.components[c.name].image != c.image
        or overview.live.components[c.name].replicas != c.replicas
    ]
    if drifted:
        console.warn(f"Live state differs from revision {record.revision}: {', '.join(drifted)}")


@release_app.command("list")
@with_error_handling
def list_releases(ctx: typer.Context) -> None:
    """List known releases with their current revision and status."""
    context = get_cli_context(ctx)
    records = run_sync(context.manager.list_releases())
    if not records:
        context.console.info("No releases found")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Release")
    table.add_column("Revision", justify="right")
    table.add_column("Status")
    table.add_column("Updated")
    table.add_column("Components", justify="right")

    for record in records:
        style = STATUS_STYLES[record.status]
        table.add_row(
            record.name,
            str(record.revision),
            f"[{style}]{record.status.value}[/{style}]",
            record.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            str(len(record.spec.components)),
        )
    context.console.print(table)
