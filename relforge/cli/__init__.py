"""Main CLI application module.

This module provides the main entry point for the relforge CLI.

Commands:
- install: Install a release from a description file
- upgrade: Move a release to a new description
- rollback: Re-apply an earlier revision
- scale: Change one component's replica count
- history / status / list: Inspect releases
"""

from pathlib import Path
from typing import Annotated

import typer

from relforge.config import load_settings
from relforge.utils.log import configure_logging

from .commands import release_app
from .console import console
from .context import CLIContext, build_cli_context

# Create the main CLI application
app = typer.Typer(
    help="🚢 relforge - declarative release management for Kubernetes",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

app.add_typer(release_app)


@app.callback()
def main_callback(
    ctx: typer.Context,
    config: Annotated[
        Path | None,
        typer.Option(
            "--config",
            "-c",
            help="Config file (default: $RELFORGE_CONFIG or ./relforge.yaml)",
            envvar="RELFORGE_CONFIG",
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """Load settings, configure logging and build the command context."""
    if isinstance(ctx.obj, CLIContext):
        configure_logging("DEBUG" if verbose else ctx.obj.settings.log_level)
        return

    try:
        settings = load_settings(config)
    except (ValueError, OSError) as e:
        console.handle_error("Invalid configuration", str(e))
        return

    configure_logging("DEBUG" if verbose else settings.log_level)
    ctx.obj = build_cli_context(settings)


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
