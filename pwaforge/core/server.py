"""Loopback HTTP server for generated bundles.

Each bundle is served by its own ``ThreadingHTTPServer`` on a port derived
from the bundle id.  Only regular files whose resolved path lies inside
the resolved bundle root are served; everything else is a 404 that does
not reveal the requested path.  Per-request errors become 500 responses
and never reach the accept loop or other requests.
"""

from __future__ import annotations

import logging
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from urllib.parse import unquote, urlsplit

from pydantic import BaseModel, ConfigDict

from pwaforge.config import AppConfig
from pwaforge.core.materializer import BundleNotFoundError, validate_bundle_id
from pwaforge.core.port_allocator import allocate_port
from pwaforge.models.bundles import PRIMARY_ENTRY

logger = logging.getLogger(__name__)

CONTENT_TYPES: dict[str, str] = {
    ".html": "text/html",
    ".htm": "text/html",
    ".css": "text/css",
    ".js": "application/javascript",
    ".json": "application/json",
    ".webmanifest": "application/manifest+json",
    ".txt": "text/plain",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".svg": "image/svg+xml",
    ".ico": "image/x-icon",
    ".woff": "font/woff",
    ".woff2": "font/woff2",
}
DEFAULT_CONTENT_TYPE = "application/octet-stream"

NOT_FOUND_BODY = b"File not found"
SERVER_ERROR_BODY = b"Internal server error"

# Ports share this many start/stop locks
PORT_LOCK_STRIPES = 64


def content_type_for(path: Path | str) -> str:
    return CONTENT_TYPES.get(Path(path).suffix.lower(), DEFAULT_CONTENT_TYPE)


def resolve_request_path(bundle_root: Path, request_path: str) -> Path | None:
    """Map a request target to a file inside *bundle_root*, or None.

    ``/`` maps to ``index.html``.  Query strings and fragments are
    ignored; percent-escapes are decoded once.  Traversal, absolute paths
    and symlinks leading outside the root all yield None.
    """
    decoded = unquote(urlsplit(request_path).path)
    if "\x00" in decoded:
        return None
    relative = decoded.replace("\\", "/").lstrip("/") or PRIMARY_ENTRY

    root = bundle_root.resolve()
    candidate = (root / relative).resolve()
    if not candidate.is_relative_to(root) or not candidate.is_file():
        return None
    return candidate


# ---------------------------------------------------------------------------
# HTTP plumbing
# ---------------------------------------------------------------------------


class _BundleHTTPServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, address: tuple[str, int], bundle_root: Path) -> None:
        self.bundle_root = bundle_root
        super().__init__(address, _BundleRequestHandler)


class _BundleRequestHandler(BaseHTTPRequestHandler):
    server: _BundleHTTPServer
    server_version = "pwaforge"

    def _send(self, status: int, body: bytes, content_type: str, *, include_body: bool = True) -> None:
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Cache-Control", "no-cache")
        self.end_headers()
        if include_body:
            self.wfile.write(body)

    def _serve(self, include_body: bool) -> None:
        try:
            target = resolve_request_path(self.server.bundle_root, self.path)
            if target is None:
                self._send(404, NOT_FOUND_BODY, "text/plain", include_body=include_body)
                return
            body = target.read_bytes()
        except Exception:
            logger.exception("Error serving %s", self.path)
            self._send(500, SERVER_ERROR_BODY, "text/plain", include_body=include_body)
            return
        self._send(200, body, content_type_for(target), include_body=include_body)

    def do_GET(self) -> None:  # noqa: N802
        self._serve(include_body=True)

    def do_HEAD(self) -> None:  # noqa: N802
        self._serve(include_body=False)

    def log_message(self, format: str, *args: object) -> None:  # noqa: A002
        logger.debug("%s %s", self.address_string(), format % args)


class LocalArtifactServer:
    """Serves one bundle directory on one port.

    Parameters
    ----------
    bundle_root:
        Directory to serve.
    port:
        TCP port; 0 picks a free one.
    host:
        Interface to bind, loopback by default.
    """

    def __init__(self, bundle_root: Path, port: int, host: str = "127.0.0.1") -> None:
        self._root = Path(bundle_root)
        self._requested_port = port
        self._host = host
        self._httpd: _BundleHTTPServer | None = None
        self._thread: threading.Thread | None = None

    @property
    def bundle_root(self) -> Path:
        return self._root

    @property
    def port(self) -> int:
        if self._httpd is not None:
            return self._httpd.server_address[1]
        return self._requested_port

    @property
    def url(self) -> str:
        return f"http://{self._host}:{self.port}/"

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Bind and start the accept loop in a daemon thread.

        Raises
        ------
        OSError
            If the port cannot be bound.
        """
        if self.is_running:
            return
        self._httpd = _BundleHTTPServer((self._host, self._requested_port), self._root)
        self._thread = threading.Thread(
            target=self._httpd.serve_forever,
            name=f"pwaforge-server-{self.port}",
            daemon=True,
        )
        self._thread.start()
        logger.info("Serving %s on %s", self._root, self.url)

    def stop(self) -> None:
        if self._httpd is None:
            return
        self._httpd.shutdown()
        self._httpd.server_close()
        if self._thread is not None:
            self._thread.join(timeout=5.0)
        logger.info("Stopped server on port %d", self.port)
        self._httpd = None
        self._thread = None

    def __repr__(self) -> str:
        return f"LocalArtifactServer(root={str(self._root)!r}, port={self.port})"


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class ServerInstance(BaseModel):
    """A running server, as reported to callers."""

    model_config = ConfigDict(frozen=True)

    bundle_id: str
    port: int
    bundle_root: Path
    url: str


class ServerRegistry:
    """At most one server per port; start/stop serialized per port.

    Parameters
    ----------
    bundles_dir:
        Directory holding bundle subdirectories.
    host / port_base / port_range:
        Bind address and the deterministic port window.
    """

    def __init__(
        self,
        bundles_dir: Path,
        *,
        host: str = "127.0.0.1",
        port_base: int = 8080,
        port_range: int = 1000,
    ) -> None:
        self._bundles_dir = Path(bundles_dir)
        self._host = host
        self._port_base = port_base
        self._port_range = port_range
        self._servers: dict[int, tuple[ServerInstance, LocalArtifactServer]] = {}
        self._port_locks = tuple(threading.Lock() for _ in range(PORT_LOCK_STRIPES))
        self._registry_lock = threading.Lock()

    @classmethod
    def from_config(cls, config: AppConfig) -> "ServerRegistry":
        return cls(
            config.bundles_path,
            host=config.server_host,
            port_base=config.server_port_base,
            port_range=config.server_port_range,
        )

    def _lock_for(self, port: int) -> threading.Lock:
        return self._port_locks[port % PORT_LOCK_STRIPES]

    def port_for(self, bundle_id: str) -> int:
        return allocate_port(bundle_id, self._port_base, self._port_range)

    def start(self, bundle_id: str, port: int | None = None) -> ServerInstance:
        """Serve *bundle_id*, replacing whatever was on the same port.

        Raises
        ------
        BundleNotFoundError
            If the bundle directory does not exist.
        OSError
            If the port cannot be bound.
        """
        root = self._bundles_dir / validate_bundle_id(bundle_id)
        if not root.is_dir():
            raise BundleNotFoundError(f"Bundle not found: {bundle_id}")
        if port is None:
            port = self.port_for(bundle_id)

        with self._lock_for(port):
            self._stop_locked(port)
            server = LocalArtifactServer(root, port, self._host)
            server.start()
            instance = ServerInstance(
                bundle_id=bundle_id, port=server.port, bundle_root=root, url=server.url
            )
            with self._registry_lock:
                self._servers[instance.port] = (instance, server)
        return instance

    def _stop_locked(self, port: int) -> bool:
        with self._registry_lock:
            entry = self._servers.pop(port, None)
        if entry is None:
            return False
        entry[1].stop()
        return True

    def stop(self, port: int) -> bool:
        """Stop the server on *port*; False if none was running."""
        with self._lock_for(port):
            return self._stop_locked(port)

    def stop_all(self) -> None:
        with self._registry_lock:
            ports = list(self._servers)
        for port in ports:
            self.stop(port)

    def get(self, port: int) -> ServerInstance | None:
        with self._registry_lock:
            entry = self._servers.get(port)
        return entry[0] if entry else None

    def instances(self) -> list[ServerInstance]:
        with self._registry_lock:
            return [entry[0] for entry in self._servers.values()]

    def __enter__(self) -> "ServerRegistry":
        return self

    def __exit__(self, *exc: object) -> None:
        self.stop_all()
