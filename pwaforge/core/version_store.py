"""Bundle version snapshots taken before a rework.

Layout: {versions_dir}/{bundle_id}/{Label_With_Underscores}_{timestampMs}/

Only the newest ``max_versions`` snapshots per bundle are kept.  All
operations report failure through their return value and log the cause.
"""

from __future__ import annotations

import logging
import shutil
import time
from collections.abc import Callable
from pathlib import Path

from pwaforge.core.materializer import ArtifactMaterializer, BundleNotFoundError
from pwaforge.models.bundles import BundleVersion

logger = logging.getLogger(__name__)

DEFAULT_LABEL = "Before Rework"


def _now_ms() -> int:
    return int(time.time() * 1000)


def _dir_size(path: Path) -> int:
    return sum(p.stat().st_size for p in path.rglob("*") if p.is_file())


def _parse_name(file_name: str) -> tuple[str, int]:
    label, sep, stamp = file_name.rpartition("_")
    if not sep or not stamp.isdigit():
        return "Version", 0
    return label.replace("_", " "), int(stamp)


class VersionStore:
    """Snapshots, lists, reverts and deletes bundle versions.

    Parameters
    ----------
    versions_dir:
        Root directory for snapshots.
    materializer:
        Used to locate bundles and to swap a snapshot back in.
    max_versions:
        Snapshots kept per bundle.
    """

    def __init__(
        self,
        versions_dir: Path,
        materializer: ArtifactMaterializer,
        *,
        max_versions: int = 5,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._base = Path(versions_dir)
        self._base.mkdir(parents=True, exist_ok=True)
        self._materializer = materializer
        self._max = max(1, max_versions)
        self._clock = clock

    def _bundle_versions_dir(self, bundle_id: str) -> Path:
        # bundle_path validates the id
        self._materializer.bundle_path(bundle_id)
        return self._base / bundle_id

    def _version_dir(self, bundle_id: str, file_name: str) -> Path | None:
        if not file_name or "/" in file_name or "\\" in file_name or file_name.startswith("."):
            return None
        path = self._bundle_versions_dir(bundle_id) / file_name
        return path if path.is_dir() else None

    def snapshot(self, bundle_id: str, label: str = DEFAULT_LABEL) -> BundleVersion | None:
        """Copy the current bundle into a new snapshot."""
        try:
            source = self._materializer.bundle_path(bundle_id)
            if not source.is_dir():
                logger.warning("Cannot snapshot missing bundle %s", bundle_id)
                return None
            target_root = self._bundle_versions_dir(bundle_id)
            target_root.mkdir(parents=True, exist_ok=True)

            stamp = self._clock()
            existing = {v.timestamp_ms for v in self.list_versions(bundle_id)}
            while stamp in existing:
                stamp += 1
            file_name = f"{label.replace(' ', '_')}_{stamp}"
            target = target_root / file_name
            shutil.copytree(source, target)
        except (OSError, BundleNotFoundError):
            logger.exception("Snapshot of bundle %s failed", bundle_id)
            return None

        self._prune(bundle_id)
        logger.info("Snapshot %s taken for bundle %s", file_name, bundle_id)
        return BundleVersion(
            file_name=file_name, label=label, timestamp_ms=stamp, size_bytes=_dir_size(target)
        )

    def list_versions(self, bundle_id: str) -> list[BundleVersion]:
        """Snapshots for *bundle_id*, newest first."""
        try:
            root = self._bundle_versions_dir(bundle_id)
        except BundleNotFoundError:
            return []
        if not root.is_dir():
            return []
        versions = []
        for child in root.iterdir():
            if not child.is_dir():
                continue
            label, stamp = _parse_name(child.name)
            versions.append(
                BundleVersion(
                    file_name=child.name, label=label, timestamp_ms=stamp, size_bytes=_dir_size(child)
                )
            )
        return sorted(versions, key=lambda v: v.timestamp_ms, reverse=True)

    def _prune(self, bundle_id: str) -> None:
        for stale in self.list_versions(bundle_id)[self._max:]:
            path = self._base / bundle_id / stale.file_name
            shutil.rmtree(path, ignore_errors=True)
            logger.debug("Pruned snapshot %s of bundle %s", stale.file_name, bundle_id)

    def revert(self, bundle_id: str, file_name: str) -> bool:
        """Replace the bundle with the named snapshot."""
        try:
            source = self._version_dir(bundle_id, file_name)
            if source is None:
                logger.warning("No snapshot %s for bundle %s", file_name, bundle_id)
                return False
            self._materializer.replace_from(bundle_id, source)
        except (OSError, BundleNotFoundError):
            logger.exception("Revert of bundle %s to %s failed", bundle_id, file_name)
            return False
        logger.info("Bundle %s reverted to %s", bundle_id, file_name)
        return True

    def delete_version(self, bundle_id: str, file_name: str) -> bool:
        try:
            path = self._version_dir(bundle_id, file_name)
            if path is None:
                return False
            shutil.rmtree(path)
        except (OSError, BundleNotFoundError):
            logger.exception("Deleting snapshot %s of bundle %s failed", file_name, bundle_id)
            return False
        return True
