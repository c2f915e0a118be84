"""Shared wiring for CLI commands."""

from __future__ import annotations

from rich.console import Console

from pwaforge.config import AppConfig, config
from pwaforge.core.credential_broker import CredentialBroker
from pwaforge.core.materializer import ArtifactMaterializer
from pwaforge.core.state_store import StateStore
from pwaforge.core.version_store import VersionStore

console = Console()


def active_config() -> AppConfig:
    return config


def make_broker() -> CredentialBroker:
    cfg = active_config()
    return CredentialBroker(cfg, StateStore(cfg.state_db_path))


def make_materializer() -> ArtifactMaterializer:
    cfg = active_config()
    return ArtifactMaterializer(
        cfg.bundles_path,
        assets_dir=cfg.assets_path,
        chunk_size=cfg.write_chunk_size,
        chunk_pause_seconds=cfg.write_chunk_pause_seconds,
    )


def make_version_store() -> VersionStore:
    cfg = active_config()
    return VersionStore(cfg.versions_path, make_materializer(), max_versions=cfg.max_versions)
