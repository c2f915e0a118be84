"""pwaforge CLI — Typer-based command-line interface.

Provides the ``pwaforge`` command with subcommands for generating and
reworking apps, serving bundles locally, managing versions and inspecting
the demo credential.

All output uses Rich for formatted terminal display.
"""
