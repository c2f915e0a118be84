"""Main Typer application — imports and registers all CLI commands.

Entry point: ``pwaforge`` (configured via pyproject.toml scripts).
"""

from __future__ import annotations

import typer

from pwaforge.cli.commands._runtime import active_config
from pwaforge.cli.commands.bundles import bundles_cmd, revert_cmd, versions_cmd
from pwaforge.cli.commands.demo import clear_device_cmd, demo_status_cmd, register_cmd, set_key_cmd
from pwaforge.cli.commands.generate import generate_cmd, rework_cmd
from pwaforge.cli.commands.serve import serve_cmd
from pwaforge.core.production_guard import ProductionConfigError, enforce_production_constraints
from pwaforge.logging_config import setup_logging

app = typer.Typer(
    name="pwaforge",
    help="pwaforge: turn a prompt into a locally served Progressive Web App.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level."),
) -> None:
    """Configure logging and check production constraints."""
    cfg = active_config()
    setup_logging("DEBUG" if verbose else cfg.log_level)
    try:
        enforce_production_constraints(cfg)
    except ProductionConfigError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=2)


# Register subcommands
app.command(name="generate", help="Generate a new app from a prompt.")(generate_cmd)
app.command(name="rework", help="Change an existing app.")(rework_cmd)
app.command(name="serve", help="Serve an app on its loopback port.")(serve_cmd)
app.command(name="bundles", help="List generated apps.")(bundles_cmd)
app.command(name="versions", help="List snapshots of an app.")(versions_cmd)
app.command(name="revert", help="Revert an app to a snapshot.")(revert_cmd)
app.command(name="demo-status", help="Show demo key and quota status.")(demo_status_cmd)
app.command(name="register", help="Register this device for the demo key.")(register_cmd)
app.command(name="clear-device", help="Forget the device identity.")(clear_device_cmd)
app.command(name="set-key", help="Store your own OpenRouter API key.")(set_key_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
