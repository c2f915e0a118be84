"""Bundle layout models — required files, metadata, manifest, versions."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

PRIMARY_ENTRY = "index.html"

# Every materialized bundle contains at least these files.
REQUIRED_FILES: tuple[str, ...] = (
    "index.html",
    "manifest.json",
    "sw.js",
    "app.js",
    "styles.css",
)

# Third-party static assets that generated markup commonly references.
SHARED_ASSETS: tuple[str, ...] = (
    "favicon.ico",
    "tailwind.min.js",
    "vanta.globe.min.js",
    "aos.js",
    "aos.css",
    "feather.min.js",
)

APP_INFO_FILE = "app_info.json"


class BundleInfo(BaseModel):
    """Contents of ``app_info.json``."""

    model_config = ConfigDict(frozen=True)

    name: str
    id: str


class BundleVersion(BaseModel):
    """A snapshot of a bundle directory taken before a rework."""

    model_config = ConfigDict(frozen=True)

    file_name: str
    label: str
    timestamp_ms: int
    size_bytes: int


class WebManifest(BaseModel):
    """Default web app manifest."""

    model_config = ConfigDict(frozen=True)

    name: str = "Generated PWA"
    short_name: str = "PWA"
    start_url: str = PRIMARY_ENTRY
    display: str = "standalone"
    background_color: str = "#ffffff"
    theme_color: str = "#000000"
    icons: list[dict] = []
