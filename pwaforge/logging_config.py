"""Logging setup for the CLI.

Library modules only ever call ``logging.getLogger(__name__)``; the
handler is installed once here by the command-line entry point.
"""

from __future__ import annotations

import logging

from rich.logging import RichHandler


def setup_logging(level: str = "INFO") -> None:
    """Install a Rich handler on the root logger.

    Parameters
    ----------
    level:
        Name of the log level (``DEBUG``, ``INFO``, ...). Unknown names
        fall back to ``INFO``.
    """
    numeric = getattr(logging, str(level).upper(), logging.INFO)
    if not isinstance(numeric, int):
        numeric = logging.INFO

    handler = RichHandler(
        rich_tracebacks=True,
        show_path=False,
        markup=False,
    )
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))

    root = logging.getLogger()
    for existing in list(root.handlers):
        if isinstance(existing, RichHandler):
            root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(numeric)

    # requests/urllib3 are chatty at DEBUG
    logging.getLogger("urllib3").setLevel(max(numeric, logging.WARNING))
