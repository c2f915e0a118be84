"""Demo credential and API key commands."""

from __future__ import annotations

from datetime import datetime, timezone

import typer
from rich.panel import Panel

from pwaforge.cli.commands._runtime import console, make_broker


def _mask(secret: str | None) -> str:
    if not secret:
        return "[dim]not set[/dim]"
    if len(secret) <= 8:
        return "****"
    return f"{secret[:4]}...{secret[-4:]}"


def demo_status_cmd() -> None:
    """Show device registration and demo quota."""
    broker = make_broker()
    quota = broker.quota_status()
    opened = datetime.fromtimestamp(quota.window_start_ms / 1000, tz=timezone.utc)
    lines = [
        f"[bold]Device ID:[/bold] {broker.get_device_id() or '[dim]not registered[/dim]'}",
        f"[bold]Demo key cached:[/bold] {'yes' if broker.get_demo_api_key() else 'no'}",
        f"[bold]Own API key:[/bold] {_mask(broker.get_user_api_key())}",
        f"[bold]Demo uses:[/bold] {quota.usage_count}/{quota.max_uses} "
        f"({quota.remaining} left, window opened {opened:%Y-%m-%d %H:%M} UTC)",
    ]
    style = "red" if quota.exhausted else "cyan"
    console.print(Panel("\n".join(lines), title="Demo credential", border_style=style))


def register_cmd() -> None:
    """Register this device and fetch the demo key."""
    broker = make_broker()
    if broker.acquire_demo_credential():
        console.print("[green]Demo key ready.[/green]")
        return
    console.print("[red]Could not obtain a demo key.[/red] Check PWAFORGE_DEMO_API_URL and PWAFORGE_DEMO_PSK.")
    raise typer.Exit(code=1)


def clear_device_cmd() -> None:
    """Forget the device identity and cached demo key."""
    broker = make_broker()
    broker.clear_device_id()
    broker.clear_demo_api_key()
    console.print("Device identity cleared; the next demo use re-registers.")


def set_key_cmd(
    api_key: str = typer.Argument("", help="Your OpenRouter API key; empty to remove."),
) -> None:
    """Store your own API key (used before the demo key)."""
    make_broker().set_user_api_key(api_key or None)
    console.print("API key saved." if api_key else "API key removed.")
