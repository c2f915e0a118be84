"""Artifact materializer — repairs an extracted file set and persists it.

Storage layout: {bundles_dir}/{bundle_id}/{index.html, manifest.json,
sw.js, app.js, styles.css, app_info.json, <shared assets>, ...}

A bundle directory is never visible half-written.  New bundles are
written to ``.staging-<id>-<rand>`` and renamed into place; reworks copy
the live bundle to staging, apply the update there and swap it in.  On
cancellation or error the staging directory is removed and the previous
bundle, if any, is left untouched.
"""

from __future__ import annotations

import json
import logging
import os
import re
import shutil
import threading
import time
import uuid
from collections.abc import Callable, Mapping
from pathlib import Path, PurePosixPath

from pwaforge.core import templates
from pwaforge.models.bundles import (
    APP_INFO_FILE,
    PRIMARY_ENTRY,
    REQUIRED_FILES,
    SHARED_ASSETS,
    BundleInfo,
    WebManifest,
)

logger = logging.getLogger(__name__)

_CACHE_NAME_RE = re.compile(r"""const\s+CACHE_NAME\s*=\s*['"]([^'"]*)['"]""")
_CACHE_VERSION_RE = re.compile(r"pwa-cache-v(\d+)$")
_BUNDLE_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]*$")

# Files scanned for references to shared assets.
_TEXT_SUFFIXES = frozenset({".html", ".htm", ".css", ".js", ".json", ".webmanifest", ".svg", ".txt"})

# Fields a manifest must carry; icons only appear in the default manifest.
MANIFEST_FIELDS: tuple[str, ...] = tuple(f for f in WebManifest.model_fields if f != "icons")


class MaterializationError(RuntimeError):
    """Raised when a bundle cannot be written."""


class MaterializationCancelled(MaterializationError):
    """Raised when the cancel event is set part-way through a write."""


class BundleNotFoundError(RuntimeError):
    """Raised when a bundle id does not name an existing bundle."""


def _now_ms() -> int:
    return int(time.time() * 1000)


def validate_bundle_id(bundle_id: str) -> str:
    """Return *bundle_id* if it is a plain identifier.

    Raises
    ------
    BundleNotFoundError
        For anything containing separators, dots or other path syntax.
    """
    if not _BUNDLE_ID_RE.match(bundle_id or ""):
        raise BundleNotFoundError(f"Invalid bundle id: {bundle_id!r}")
    return bundle_id


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def safe_relative_path(key: str) -> str | None:
    """Normalize a file key, or return None if it would escape the bundle."""
    key = key.replace("\\", "/").strip()
    if not key or key.startswith("/"):
        return None
    parts = [p for p in PurePosixPath(key).parts if p not in ("", ".")]
    if not parts or any(p == ".." for p in parts) or ":" in parts[0]:
        return None
    return "/".join(parts)


def fix_manifest(text: str | None, default_name: str = WebManifest().name) -> str:
    """Return a manifest with every required field present.

    Supplied fields are never overwritten; ``short_name`` defaults to the
    manifest's own ``name``.  A manifest that already has every field is
    returned byte-for-byte.  Anything that is not a JSON object is
    replaced by the default manifest.
    """
    if text is None:
        return templates.render_default_manifest(default_name)
    try:
        data = json.loads(text)
    except ValueError:
        data = None
    if not isinstance(data, dict):
        logger.warning("manifest.json is not a JSON object; replacing with default")
        return templates.render_default_manifest(default_name)

    missing = [f for f in MANIFEST_FIELDS if f not in data]
    if not missing:
        return text

    defaults = WebManifest(name=default_name).model_dump()
    for field in missing:
        if field == "short_name" and isinstance(data.get("name"), str) and data["name"]:
            data[field] = data["name"]
        else:
            data[field] = defaults[field]
    logger.info("Repaired manifest.json: added %s", ", ".join(missing))
    return json.dumps(data, indent=2, ensure_ascii=False)


def bump_cache_version(sw_text: str, now_ms: int) -> str:
    """Rewrite ``CACHE_NAME`` to ``pwa-cache-v<N>`` with N > previous N."""
    match = _CACHE_NAME_RE.search(sw_text)
    if match is None:
        logger.debug("sw.js has no CACHE_NAME constant; leaving it as-is")
        return sw_text
    version = now_ms
    previous = _CACHE_VERSION_RE.search(match.group(1))
    if previous is not None:
        version = max(version, int(previous.group(1)) + 1)
    replacement = f"const CACHE_NAME = 'pwa-cache-v{version}'"
    return sw_text[:match.start()] + replacement + sw_text[match.end():]


def referenced_assets(files: Mapping[str, str], candidates: tuple[str, ...] = SHARED_ASSETS) -> list[str]:
    """Shared asset names mentioned anywhere in the bundle's text files."""
    texts = [
        content for name, content in files.items()
        if PurePosixPath(name).suffix.lower() in _TEXT_SUFFIXES
    ]
    return [asset for asset in candidates if any(asset in text for text in texts)]


# ---------------------------------------------------------------------------
# Materializer
# ---------------------------------------------------------------------------


class ArtifactMaterializer:
    """Writes repaired file sets into bundle directories.

    Parameters
    ----------
    bundles_dir:
        Root directory holding one subdirectory per bundle.
    assets_dir:
        Directory holding shared static assets, or None to skip copying.
    chunk_size:
        Files written between pauses.
    chunk_pause_seconds:
        Pause between chunks.
    clock:
        Returns the current time in epoch milliseconds.
    """

    def __init__(
        self,
        bundles_dir: Path,
        *,
        assets_dir: Path | None = None,
        chunk_size: int = 3,
        chunk_pause_seconds: float = 0.05,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._base = Path(bundles_dir)
        self._base.mkdir(parents=True, exist_ok=True)
        self._assets = Path(assets_dir) if assets_dir else None
        self._chunk_size = max(1, chunk_size)
        self._pause = max(0.0, chunk_pause_seconds)
        self._clock = clock

    @property
    def bundles_dir(self) -> Path:
        return self._base

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def bundle_path(self, bundle_id: str) -> Path:
        """Directory for *bundle_id* (which need not exist yet).

        Raises
        ------
        BundleNotFoundError
            If *bundle_id* is not a plain identifier.
        """
        return self._base / validate_bundle_id(bundle_id)

    def exists(self, bundle_id: str) -> bool:
        try:
            return self.bundle_path(bundle_id).is_dir()
        except BundleNotFoundError:
            return False

    def read_info(self, bundle_id: str) -> BundleInfo | None:
        path = self.bundle_path(bundle_id) / APP_INFO_FILE
        try:
            return BundleInfo.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return None

    def list_bundles(self) -> list[BundleInfo]:
        """All bundles with readable metadata, sorted by name."""
        infos: list[BundleInfo] = []
        for child in sorted(self._base.iterdir()):
            if child.name.startswith(".") or not child.is_dir():
                continue
            info = self.read_info(child.name)
            infos.append(info or BundleInfo(name=child.name, id=child.name))
        return sorted(infos, key=lambda i: i.name.lower())

    def read_bundle_files(
        self, bundle_id: str, names: tuple[str, ...] | None = None
    ) -> dict[str, str]:
        """Text contents of a bundle's files; missing or binary files are skipped.

        With *names* None, every text file in the bundle is read.

        Raises
        ------
        BundleNotFoundError
            If the bundle directory does not exist.
        """
        root = self.bundle_path(bundle_id)
        if not root.is_dir():
            raise BundleNotFoundError(f"Bundle not found: {bundle_id}")
        if names is None:
            paths = [
                p for p in root.rglob("*")
                if p.is_file() and p.suffix.lower() in _TEXT_SUFFIXES and p.name != APP_INFO_FILE
            ]
        else:
            paths = [root / n for n in names]

        files: dict[str, str] = {}
        for path in paths:
            try:
                files[path.relative_to(root).as_posix()] = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError):
                continue
        return files

    def delete_bundle(self, bundle_id: str) -> bool:
        root = self.bundle_path(bundle_id)
        if not root.is_dir():
            return False
        shutil.rmtree(root)
        logger.info("Deleted bundle %s", bundle_id)
        return True

    # ------------------------------------------------------------------
    # Repair
    # ------------------------------------------------------------------

    def _available_assets(self) -> tuple[str, ...]:
        if self._assets is None or not self._assets.is_dir():
            return ()
        return tuple(a for a in SHARED_ASSETS if (self._assets / a).is_file())

    def prepare_files(
        self,
        files: Mapping[str, str],
        name: str,
        *,
        existing: Mapping[str, str] | None = None,
    ) -> dict[str, str]:
        """Return the complete, repaired file set for a bundle.

        *files* are the new or updated files; *existing* the current
        contents of a bundle being reworked.  Unsafe keys are dropped.
        """
        merged: dict[str, str] = dict(existing or {})
        for key, content in files.items():
            safe = safe_relative_path(key)
            if safe is None:
                logger.warning("Dropping unsafe file name from response: %r", key)
                continue
            if safe == APP_INFO_FILE:
                continue
            merged[safe] = content

        if PRIMARY_ENTRY not in merged:
            merged[PRIMARY_ENTRY] = templates.render_fallback_index(name)
        merged["manifest.json"] = fix_manifest(merged.get("manifest.json"), name)
        merged.setdefault("styles.css", templates.DEFAULT_STYLES_CSS)
        merged.setdefault("app.js", templates.DEFAULT_APP_JS)

        if "sw.js" not in merged:
            assets = referenced_assets(merged, self._available_assets())
            precache = [f for f in REQUIRED_FILES if f != "sw.js"] + assets
            merged["sw.js"] = templates.render_service_worker(precache)
        merged["sw.js"] = bump_cache_version(merged["sw.js"], self._clock())
        return merged

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def _write_chunked(
        self,
        root: Path,
        files: Mapping[str, str],
        cancel: threading.Event | None,
    ) -> None:
        items = list(files.items())
        for offset in range(0, len(items), self._chunk_size):
            if cancel is not None and cancel.is_set():
                raise MaterializationCancelled("Bundle write cancelled")
            if offset and self._pause:
                if cancel is not None:
                    if cancel.wait(self._pause):
                        raise MaterializationCancelled("Bundle write cancelled")
                else:
                    time.sleep(self._pause)
            for rel, content in items[offset:offset + self._chunk_size]:
                target = root / rel
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(content.encode("utf-8"))

    def _copy_assets(self, root: Path, files: Mapping[str, str]) -> list[str]:
        """Copy referenced shared assets that the bundle does not have yet."""
        copied: list[str] = []
        for asset in referenced_assets(files, self._available_assets()):
            target = root / asset
            if target.exists():
                continue
            shutil.copyfile(self._assets / asset, target)  # type: ignore[operator]
            copied.append(asset)
        if copied:
            logger.debug("Copied shared assets: %s", ", ".join(copied))
        return copied

    @staticmethod
    def _write_info(root: Path, info: BundleInfo) -> None:
        (root / APP_INFO_FILE).write_text(
            json.dumps(info.model_dump(), indent=2), encoding="utf-8"
        )

    def _staging_dir(self, bundle_id: str) -> Path:
        return self._base / f".staging-{bundle_id}-{uuid.uuid4().hex[:8]}"

    def create_bundle(
        self,
        files: Mapping[str, str],
        name: str,
        *,
        bundle_id: str | None = None,
        cancel: threading.Event | None = None,
    ) -> BundleInfo:
        """Write a new bundle and return its metadata.

        Raises
        ------
        MaterializationCancelled
            If *cancel* was set before the bundle was moved into place.
        MaterializationError
            If the target id already exists.
        OSError
            On filesystem failure.
        """
        bundle_id = bundle_id or str(uuid.uuid4())
        final = self.bundle_path(bundle_id)
        if final.exists():
            raise MaterializationError(f"Bundle already exists: {bundle_id}")

        info = BundleInfo(name=name, id=bundle_id)
        prepared = self.prepare_files(files, name)
        staging = self._staging_dir(bundle_id)
        staging.mkdir(parents=True)
        try:
            self._write_chunked(staging, prepared, cancel)
            self._copy_assets(staging, prepared)
            self._write_info(staging, info)
            if cancel is not None and cancel.is_set():
                raise MaterializationCancelled("Bundle write cancelled")
            os.replace(staging, final)
        except BaseException:
            shutil.rmtree(staging, ignore_errors=True)
            raise

        logger.info("Created bundle %s (%d files)", bundle_id, len(prepared))
        return info

    def update_bundle(
        self,
        bundle_id: str,
        files: Mapping[str, str],
        *,
        cancel: threading.Event | None = None,
    ) -> BundleInfo:
        """Apply updated files to an existing bundle.

        The service worker cache version is bumped whether or not
        ``sw.js`` itself was among the updates.

        Raises
        ------
        BundleNotFoundError
            If the bundle does not exist.
        MaterializationCancelled
            If *cancel* was set before the swap.
        """
        final = self.bundle_path(bundle_id)
        if not final.is_dir():
            raise BundleNotFoundError(f"Bundle not found: {bundle_id}")

        info = self.read_info(bundle_id) or BundleInfo(name=WebManifest().name, id=bundle_id)
        existing = self.read_bundle_files(bundle_id)
        prepared = self.prepare_files(files, info.name, existing=existing)
        changed = {k: v for k, v in prepared.items() if existing.get(k) != v}

        staging = self._staging_dir(bundle_id)
        shutil.copytree(final, staging)
        try:
            self._write_chunked(staging, changed, cancel)
            self._copy_assets(staging, prepared)
            self._write_info(staging, info)
            if cancel is not None and cancel.is_set():
                raise MaterializationCancelled("Bundle write cancelled")
            self._swap_in(staging, final)
        except BaseException:
            shutil.rmtree(staging, ignore_errors=True)
            raise

        logger.info("Updated bundle %s (%d files changed)", bundle_id, len(changed))
        return info

    def replace_from(self, bundle_id: str, source: Path) -> None:
        """Replace the bundle's contents with a copy of *source*."""
        final = self.bundle_path(bundle_id)
        staging = self._staging_dir(bundle_id)
        shutil.copytree(source, staging)
        try:
            if final.exists():
                self._swap_in(staging, final)
            else:
                os.replace(staging, final)
        except BaseException:
            shutil.rmtree(staging, ignore_errors=True)
            raise

    def _swap_in(self, staging: Path, final: Path) -> None:
        retired = self._base / f".retired-{final.name}-{uuid.uuid4().hex[:8]}"
        os.replace(final, retired)
        try:
            os.replace(staging, final)
        except OSError:
            os.replace(retired, final)
            raise
        shutil.rmtree(retired, ignore_errors=True)
