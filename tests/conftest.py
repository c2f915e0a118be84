"""Shared test fixtures for pwaforge."""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

import pytest
import requests

from pwaforge.bridge.crypto_bridge import encrypt_envelope, generate_hmac
from pwaforge.config import AppConfig
from pwaforge.core.credential_broker import CredentialBroker
from pwaforge.core.materializer import ArtifactMaterializer
from pwaforge.core.state_store import StateStore
from pwaforge.core.version_store import VersionStore
from pwaforge.models.completion import ChatMessage, CompletionChoice, CompletionResponse

TEST_PSK = "test-pre-shared-key"
TEST_DEMO_KEY = "sk-or-demo-0123456789"
EPOCH_MS = 1_700_000_000_000


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeClock:
    """Epoch-millisecond clock that only moves when told to."""

    def __init__(self, now_ms: int = EPOCH_MS) -> None:
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, ms: int) -> None:
        self.now_ms += ms


class FakeResponse:
    def __init__(self, status_code: int = 200, body: Any = None, text: str | None = None) -> None:
        self.status_code = status_code
        self._body = body
        self.text = text if text is not None else (json.dumps(body) if body is not None else "")

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def json(self) -> Any:
        if self._body is None:
            raise ValueError("no JSON body")
        return self._body


class FakeDemoService:
    """Stands in for ``requests.Session`` against the demo credential service."""

    def __init__(self, psk: str = TEST_PSK, api_key: str = TEST_DEMO_KEY) -> None:
        self.psk = psk
        self.api_key = api_key
        self.next_device_id = "device-0001"
        self.known_devices: set[str] = set()
        self.calls: list[tuple[str, dict]] = []
        self.register_status = 200
        self.key_status = 200
        self.envelope_override: str | None = None
        self.network_down = False

    def post(self, url: str, json: dict | None = None, timeout: float | None = None, **_: Any) -> FakeResponse:
        path = urlsplit(url).path
        self.calls.append((path, json or {}))
        if self.network_down:
            raise requests.ConnectionError("connection refused")

        if path == "/api/register-device":
            if self.register_status != 200:
                return FakeResponse(self.register_status, {"error": "registration failed"})
            device_id = self.next_device_id
            self.known_devices.add(device_id)
            return FakeResponse(200, {"deviceId": device_id})

        if path == "/api/get-api-key":
            if self.key_status != 200:
                return FakeResponse(self.key_status, {"error": "unavailable"})
            device_id = (json or {}).get("deviceId", "")
            if device_id not in self.known_devices:
                return FakeResponse(404, {"error": "unknown device"})
            if (json or {}).get("hmac") != generate_hmac(self.psk, device_id):
                return FakeResponse(401, {"error": "bad signature"})
            envelope = self.envelope_override or encrypt_envelope(self.api_key, self.psk)
            return FakeResponse(200, {"encryptedKey": envelope})

        return FakeResponse(404, {"error": "not found"})

    def paths(self) -> list[str]:
        return [p for p, _ in self.calls]

    def close(self) -> None:
        pass


def make_response(content: str) -> CompletionResponse:
    return CompletionResponse(
        choices=[CompletionChoice(message=ChatMessage(role="assistant", content=content))]
    )


class FakeCompletionClient:
    """Scripted completion client.

    Each call consumes the next script item: an exception is raised, a
    string becomes a one-choice response, a CompletionResponse is
    returned as-is.  The last item repeats once the script runs out.
    """

    def __init__(self, *script: Any) -> None:
        self.script = list(script)
        self.calls: list[tuple[Any, str]] = []

    def complete(self, request, api_key):
        self.calls.append((request, api_key))
        item = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, str):
            return make_response(item)
        return item


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def app_config(tmp_dir: Path) -> AppConfig:
    """An AppConfig rooted in a temp directory with fast retries."""
    return AppConfig(
        environment="development",
        bundles_path=tmp_dir / "bundles",
        state_db_path=tmp_dir / "state.db",
        versions_path=tmp_dir / "versions",
        assets_path=None,
        demo_api_url="https://demo.test",
        demo_psk=TEST_PSK,
        demo_app_secret="test-app-secret",
        user_api_key="",
        prompt_rewrite_enabled=False,
        retry_backoff_seconds=0.01,
        write_chunk_pause_seconds=0.0,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def state_store(app_config: AppConfig) -> StateStore:
    """Provide a fresh StateStore backed by a temp SQLite database."""
    return StateStore(app_config.state_db_path)


@pytest.fixture
def demo_service() -> FakeDemoService:
    return FakeDemoService()


@pytest.fixture
def broker(
    app_config: AppConfig, state_store: StateStore, demo_service: FakeDemoService, clock: FakeClock
) -> CredentialBroker:
    """CredentialBroker talking to the fake demo service on a fake clock."""
    return CredentialBroker(app_config, state_store, session=demo_service, clock=clock)


@pytest.fixture
def materializer(app_config: AppConfig, clock: FakeClock) -> ArtifactMaterializer:
    return ArtifactMaterializer(
        app_config.bundles_path,
        assets_dir=app_config.assets_path,
        chunk_pause_seconds=0.0,
        clock=clock,
    )


@pytest.fixture
def version_store(app_config: AppConfig, materializer: ArtifactMaterializer, clock: FakeClock) -> VersionStore:
    return VersionStore(app_config.versions_path, materializer, max_versions=app_config.max_versions, clock=clock)


@pytest.fixture
def make_client() -> Callable[..., FakeCompletionClient]:
    """Factory fixture: build a scripted FakeCompletionClient."""
    return FakeCompletionClient


@pytest.fixture
def assets_dir(tmp_dir: Path) -> Path:
    """A shared-assets directory with small stand-in library files."""
    path = tmp_dir / "assets"
    path.mkdir()
    for name in ("tailwind.min.js", "feather.min.js", "aos.js", "aos.css", "vanta.globe.min.js"):
        (path / name).write_text(f"/* {name} */\n", encoding="utf-8")
    (path / "favicon.ico").write_bytes(b"\x00\x00\x01\x00")
    return path


@pytest.fixture
def files_response() -> Callable[[dict[str, str]], str]:
    """Factory fixture: wrap a file map the way models usually answer."""

    def _factory(files: dict[str, str], prose: str = "Here is your app:") -> str:
        return f"{prose}\n\n```json\n{json.dumps({'files': files}, indent=2)}\n```\n\nEnjoy!"

    return _factory


@pytest.fixture
def sample_files() -> dict[str, str]:
    return {
        "index.html": "<!DOCTYPE html><html><head><title>Todo</title>"
                      "<link rel=\"manifest\" href=\"manifest.json\"></head>"
                      "<body><h1>Todo</h1><script src=\"app.js\"></script></body></html>",
        "app.js": "const todos = JSON.parse(localStorage.getItem('todos') || '[]');\n",
        "styles.css": "body { margin: 0; }\n",
    }
