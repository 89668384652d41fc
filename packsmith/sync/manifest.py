"""Manifest store — durable record of what was installed, one per package.

The core package keeps its manifest inside the core marker directory; each
expansion pack keeps its own inside ``.<pack-id>/``. Manifests are always
rewritten whole, through a temp file and a rename, and are never deleted by
the engine.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path

import yaml

from packsmith.config import CORE_PACKAGE_ID, InstallerSettings
from packsmith.errors import InvalidVersionError, ManifestCorruptError
from packsmith.models.installation import (
    InstallationRoot,
    InstallType,
    Manifest,
    ManifestEntry,
    is_valid_package_id,
)
from packsmith.sync.versions import parse_version
from packsmith.utils.fs_atomic import atomic_write_text

logger = logging.getLogger(__name__)


class ManifestStore:
    """Reads and writes install manifests for the packages in a root."""

    def __init__(self, settings: InstallerSettings | None = None):
        self.settings = settings or InstallerSettings()

    def manifest_path(self, root: InstallationRoot, package_id: str = CORE_PACKAGE_ID) -> Path:
        package_dir = self.settings.package_dir_name(package_id)
        return root.path / package_dir / self.settings.manifest_name

    def manifest_relative_path(self, package_id: str = CORE_PACKAGE_ID) -> str:
        return f"{self.settings.package_dir_name(package_id)}/{self.settings.manifest_name}"

    def exists(self, root: InstallationRoot, package_id: str = CORE_PACKAGE_ID) -> bool:
        return self.manifest_path(root, package_id).is_file()

    def read(self, root: InstallationRoot, package_id: str = CORE_PACKAGE_ID) -> Manifest | None:
        """Load a package's manifest.

        Returns None if there is no manifest, or if it cannot be parsed. A
        corrupt manifest is logged as a warning rather than raised, so state
        detection can degrade instead of aborting.
        """
        path = self.manifest_path(root, package_id)
        if not path.is_file():
            return None

        try:
            return self._load(path, package_id)
        except ManifestCorruptError as e:
            logger.warning("%s; treating it as absent", e)
            return None

    def write(
        self,
        root: InstallationRoot,
        manifest: Manifest,
        package_id: str | None = None,
    ) -> Path:
        """Atomically replace a package's manifest with *manifest*.

        The caller passes the complete file list; nothing is merged with
        what is already on disk.
        """
        package_id = package_id or manifest.package_id
        if package_id != CORE_PACKAGE_ID and not is_valid_package_id(package_id):
            raise ValueError(f"Invalid expansion pack id: {package_id!r}")
        if manifest.install_type == InstallType.EXPANSION_ONLY:
            raise ValueError("expansion-only installs have no core manifest")

        manifest.package_id = package_id
        if not manifest.installed_at:
            manifest.installed_at = datetime.now(timezone.utc).isoformat()

        path = self.manifest_path(root, package_id)
        text = yaml.safe_dump(_manifest_to_dict(manifest), sort_keys=False, allow_unicode=True)
        atomic_write_text(path, text)
        logger.debug("Wrote manifest %s (%d files)", path, len(manifest.files))
        return path

    def _load(self, path: Path, package_id: str) -> Manifest:
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, UnicodeDecodeError, yaml.YAMLError) as e:
            raise ManifestCorruptError(path, str(e)) from e

        if not isinstance(data, dict):
            raise ManifestCorruptError(path, "top level is not a mapping")

        try:
            return _dict_to_manifest(data, package_id)
        except InvalidVersionError as e:
            raise ManifestCorruptError(path, str(e)) from e
        except (KeyError, TypeError, ValueError) as e:
            raise ManifestCorruptError(path, f"bad field: {e}") from e


def _manifest_to_dict(manifest: Manifest) -> dict:
    data: dict = {
        "version": manifest.version,
        "installed_at": manifest.installed_at,
        "install_type": manifest.install_type.value,
    }
    if manifest.selected_resource:
        data["selected_resource"] = manifest.selected_resource
    if not manifest.is_core:
        data["expansion_pack_id"] = manifest.package_id
        data["expansion_pack_name"] = manifest.package_name
    data["ides_setup"] = sorted(manifest.ides_configured)
    if manifest.is_core:
        data["expansion_packs"] = list(manifest.expansion_packs)
    data["files"] = [
        {"path": entry.path, "hash": entry.hash} if entry.hash else {"path": entry.path}
        for entry in manifest.files
    ]
    return data


def _dict_to_manifest(data: dict, package_id: str) -> Manifest:
    version = str(data["version"])
    parse_version(version)

    files = []
    for item in data.get("files") or []:
        # Older manifests list bare paths with no fingerprint.
        if isinstance(item, str):
            files.append(ManifestEntry(path=item))
        else:
            files.append(ManifestEntry(path=str(item["path"]), hash=str(item.get("hash") or "")))

    # "agent" is the key used by releases that only supported single-agent installs.
    selected = data.get("selected_resource") or data.get("agent") or None

    return Manifest(
        version=version,
        install_type=InstallType(data["install_type"]),
        installed_at=str(data.get("installed_at") or ""),
        selected_resource=str(selected) if selected else None,
        ides_configured=set(data.get("ides_setup") or []),
        files=files,
        package_id=package_id,
        package_name=str(data.get("expansion_pack_name") or ""),
        expansion_packs=list(data.get("expansion_packs") or []),
    )
