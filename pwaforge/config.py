"""Runtime configuration — env-driven.

Centralized config using pydantic-settings for environment variable
support. Reads from a .env file and PWAFORGE_* environment variables.
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class AppConfig(BaseSettings):
    """Application configuration with environment variable overrides.

    All settings can be overridden via PWAFORGE_* environment variables
    or a .env file in the working directory.

    Examples
    --------
    Override via environment::

        export PWAFORGE_LOG_LEVEL=DEBUG
        export PWAFORGE_DEMO_API_URL=https://demo.example.com
        export PWAFORGE_DEMO_PSK=...

    Or via .env file::

        PWAFORGE_ENVIRONMENT=production
        PWAFORGE_USER_API_KEY=sk-or-...
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PWAFORGE_",
        env_file_encoding="utf-8",
    )

    # Runtime environment
    environment: str = "development"
    log_level: str = "INFO"
    debug: bool = False

    # Storage paths
    bundles_path: Path = Path(".pwaforge/bundles")
    state_db_path: Path = Path(".pwaforge/state.db")
    versions_path: Path = Path(".pwaforge/versions")
    assets_path: Path | None = None  # shared static assets (tailwind, aos, ...)

    # Demo credential service
    demo_api_url: str = "http://localhost:3000"
    demo_psk: str = ""          # pre-shared key: HMAC key and AES key seed
    demo_app_secret: str = ""   # sent with device registration
    device_model: str = "pwaforge-cli"
    max_daily_demo_uses: int = 5
    demo_window_hours: int = 24
    demo_request_timeout_seconds: float = 30.0

    # Completion API
    completion_api_url: str = "https://openrouter.ai/api/v1/chat/completions"
    user_api_key: str = ""
    generation_model: str = "qwen/qwen-2.5-coder-32b-instruct:free"
    rework_model: str = "x-ai/grok-4-fast:free"
    rewrite_model: str = "mistralai/mistral-small-3.2-24b-instruct:free"
    prompt_rewrite_enabled: bool = True
    request_timeout_seconds: float = 120.0
    site_url: str = "https://github.com/pwaforge/pwaforge"
    site_title: str = "pwaforge"

    # Retry policy
    max_attempts: int = 3
    retry_backoff_seconds: float = 2.0

    # Bundle writer
    write_chunk_size: int = 3
    write_chunk_pause_seconds: float = 0.05
    rework_file_excerpt_chars: int = 2000

    # Local server
    server_host: str = "127.0.0.1"
    server_port_base: int = 8080
    server_port_range: int = 1000

    # Versions and jobs
    max_versions: int = 5
    max_workers: int = 2

    @property
    def is_production(self) -> bool:
        """Whether running in production mode."""
        return self.environment == "production"

    @property
    def demo_window_ms(self) -> int:
        """Length of the demo quota window in milliseconds."""
        return self.demo_window_hours * 60 * 60 * 1000


# Module-level singleton: import as `from pwaforge.config import config`
config = AppConfig()
