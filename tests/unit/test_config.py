"""Tests for runtime config — env-driven settings."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from pwaforge.config import AppConfig


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Run each test away from any real .env file or PWAFORGE_* variables."""
    monkeypatch.chdir(tmp_path)
    for key in list(os.environ):
        if key.startswith("PWAFORGE_"):
            monkeypatch.delenv(key)


class TestAppConfig:
    def test_defaults(self):
        config = AppConfig()
        assert config.environment == "development"
        assert config.log_level == "INFO"
        assert config.max_daily_demo_uses == 5
        assert config.max_attempts == 3
        assert config.server_port_base == 8080
        assert config.server_port_range == 1000
        assert config.max_versions == 5

    def test_is_production_false_by_default(self):
        assert AppConfig().is_production is False

    def test_is_production_when_set(self):
        assert AppConfig(environment="production").is_production is True

    def test_default_paths(self):
        config = AppConfig()
        assert config.bundles_path == Path(".pwaforge/bundles")
        assert config.state_db_path == Path(".pwaforge/state.db")
        assert config.versions_path == Path(".pwaforge/versions")
        assert config.assets_path is None

    def test_demo_window_ms(self):
        assert AppConfig().demo_window_ms == 86_400_000
        assert AppConfig(demo_window_hours=1).demo_window_ms == 3_600_000

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("PWAFORGE_MAX_DAILY_DEMO_USES", "10")
        monkeypatch.setenv("PWAFORGE_DEMO_API_URL", "https://demo.example.com")
        monkeypatch.setenv("PWAFORGE_PROMPT_REWRITE_ENABLED", "false")
        config = AppConfig()
        assert config.max_daily_demo_uses == 10
        assert config.demo_api_url == "https://demo.example.com"
        assert config.prompt_rewrite_enabled is False

    def test_dotenv_file(self, tmp_path):
        (tmp_path / ".env").write_text("PWAFORGE_USER_API_KEY=sk-from-dotenv\n", encoding="utf-8")
        assert AppConfig().user_api_key == "sk-from-dotenv"
