"""``pwaforge bundles`` / ``versions`` / ``revert`` — inspect stored apps."""

from __future__ import annotations

from datetime import datetime, timezone

import typer
from rich.table import Table

from pwaforge.cli.commands._runtime import active_config, console, make_materializer, make_version_store
from pwaforge.core.port_allocator import allocate_port


def bundles_cmd() -> None:
    """List generated apps."""
    cfg = active_config()
    infos = make_materializer().list_bundles()
    if not infos:
        console.print("[dim]No apps generated yet.[/dim]")
        return

    table = Table(title="Apps")
    table.add_column("Name", style="cyan")
    table.add_column("Bundle ID")
    table.add_column("Port", justify="right", style="green")
    for info in infos:
        port = allocate_port(info.id, cfg.server_port_base, cfg.server_port_range)
        table.add_row(info.name, info.id, str(port))
    console.print(table)


def versions_cmd(bundle_id: str = typer.Argument(..., help="Bundle to inspect.")) -> None:
    """List snapshots of an app, newest first."""
    versions = make_version_store().list_versions(bundle_id)
    if not versions:
        console.print(f"[dim]No versions stored for {bundle_id}.[/dim]")
        return

    table = Table(title=f"Versions of {bundle_id}")
    table.add_column("Snapshot", style="cyan")
    table.add_column("Label")
    table.add_column("Taken (UTC)")
    table.add_column("Size", justify="right")
    for v in versions:
        taken = datetime.fromtimestamp(v.timestamp_ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        table.add_row(v.file_name, v.label, taken, f"{v.size_bytes:,} B")
    console.print(table)


def revert_cmd(
    bundle_id: str = typer.Argument(..., help="Bundle to revert."),
    snapshot: str = typer.Argument(..., help="Snapshot name from 'pwaforge versions'."),
) -> None:
    """Replace an app with one of its snapshots."""
    if make_version_store().revert(bundle_id, snapshot):
        console.print(f"[green]Reverted[/green] {bundle_id} to {snapshot}")
        return
    console.print(f"[red]Could not revert {bundle_id} to {snapshot}.[/red]")
    raise typer.Exit(code=1)
