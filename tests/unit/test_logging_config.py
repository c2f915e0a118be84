"""Unit tests for CLI logging setup."""

from __future__ import annotations

import logging

import pytest
from rich.logging import RichHandler

from pwaforge.logging_config import setup_logging


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    urllib3_level = logging.getLogger("urllib3").level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    logging.getLogger("urllib3").setLevel(urllib3_level)


def _rich_handlers() -> list[logging.Handler]:
    return [h for h in logging.getLogger().handlers if isinstance(h, RichHandler)]


class TestSetupLogging:
    def test_installs_one_rich_handler(self):
        setup_logging("INFO")
        setup_logging("INFO")
        assert len(_rich_handlers()) == 1

    def test_level_applied(self):
        setup_logging("DEBUG")
        assert logging.getLogger().level == logging.DEBUG

    def test_unknown_level_falls_back(self):
        setup_logging("LOUD")
        assert logging.getLogger().level == logging.INFO

    def test_urllib3_kept_quiet(self):
        setup_logging("DEBUG")
        assert logging.getLogger("urllib3").level == logging.WARNING
