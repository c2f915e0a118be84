"""``pwaforge serve`` — serve a bundle on its loopback port."""

from __future__ import annotations

import threading

import typer

from pwaforge.cli.commands._runtime import active_config, console
from pwaforge.core.materializer import BundleNotFoundError
from pwaforge.core.server import ServerRegistry


def serve_until_interrupted(bundle_id: str, port: int | None = None) -> None:
    with ServerRegistry.from_config(active_config()) as registry:
        try:
            instance = registry.start(bundle_id, port=port)
        except BundleNotFoundError as exc:
            console.print(f"[red]{exc}[/red]")
            raise typer.Exit(code=1)
        except OSError as exc:
            console.print(f"[red]Could not start server:[/red] {exc}")
            raise typer.Exit(code=1)

        console.print(f"[bold green]Serving[/bold green] {bundle_id} at [link={instance.url}]{instance.url}[/link]")
        console.print("[dim]Press Ctrl-C to stop.[/dim]")
        try:
            threading.Event().wait()
        except KeyboardInterrupt:
            console.print("Stopping.")


def serve_cmd(
    bundle_id: str = typer.Argument(..., help="Bundle to serve."),
    port: int = typer.Option(None, "--port", "-p", help="Override the derived port."),
) -> None:
    """Serve a bundle over HTTP on 127.0.0.1."""
    serve_until_interrupted(bundle_id, port=port)
