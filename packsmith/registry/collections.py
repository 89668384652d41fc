"""Source collections and the locator that finds them in a source distribution.

A source distribution looks like::

    <source_root>/
        package.json              # "version" is the available core version
        bmad-core/                # core collection
            agents/  agent-teams/  tasks/  templates/  checklists/ ...
        common/                   # shared files copied into every package
        expansion-packs/<id>/     # one collection per expansion pack
            config.yaml           # name, version, description, author

Collections are read-only inputs; nothing here writes to disk.
"""

from __future__ import annotations

import fnmatch
import json
import logging
from dataclasses import dataclass
from pathlib import Path

import yaml

from packsmith.config import CORE_PACKAGE_ID, InstallerSettings
from packsmith.errors import PackSmithError, PathError
from packsmith.models.installation import is_valid_package_id
from packsmith.utils.file_scanner import scan_files

logger = logging.getLogger(__name__)

GLOB_CHARS = set("*?[")


def is_glob(reference: str) -> bool:
    return any(ch in GLOB_CHARS for ch in reference)


@dataclass(frozen=True)
class SourceCollection:
    """A directory of kind-named subfolders searched by the resolver."""

    name: str
    path: Path
    package_id: str | None = None  # None for the shared common collection

    def find(self, kind: str, filename: str) -> Path | None:
        candidate = self.path / kind / filename
        return candidate if candidate.is_file() else None

    def match(self, kind: str, pattern: str, default_extension: str = "") -> list[str]:
        """Filenames in *kind* matching a glob pattern, sorted.

        A pattern without an extension also matches names carrying the
        kind's default extension (``*-tmpl`` matches ``prd-tmpl.yaml``).
        """
        kind_dir = self.path / kind
        if not kind_dir.is_dir():
            return []
        names = sorted(p.name for p in kind_dir.iterdir() if p.is_file())
        patterns = [pattern]
        if default_extension and not Path(pattern).suffix:
            patterns.append(pattern + default_extension)
        return [n for n in names if any(fnmatch.fnmatchcase(n, p) for p in patterns)]

    def names(self, kind: str, suffix: str) -> list[str]:
        """Ids (filename stems) of every *suffix* file directly under *kind*."""
        kind_dir = self.path / kind
        if not kind_dir.is_dir():
            return []
        return sorted(p.stem for p in kind_dir.glob(f"*{suffix}") if p.is_file())

    def files(self, skip_dirs: set[str] | None = None) -> list[str]:
        return scan_files(self.path, skip_dirs)


@dataclass
class ExpansionPackInfo:
    """Metadata of an expansion pack available in the source distribution."""

    id: str
    name: str
    version: str
    path: Path
    description: str = ""
    author: str = ""

    @property
    def collection(self) -> SourceCollection:
        return SourceCollection(name=self.id, path=self.path, package_id=self.id)


class ResourceLocator:
    """Finds the core, common and expansion pack collections of a source tree."""

    def __init__(self, source_root: str | Path, settings: InstallerSettings | None = None):
        self.source_root = Path(source_root)
        self.settings = settings or InstallerSettings()
        if not self.source_root.is_dir():
            raise PathError("Source distribution not found", self.source_root)

    @classmethod
    def from_settings(cls, settings: InstallerSettings) -> ResourceLocator:
        if settings.source_root is None:
            raise PathError("No source distribution configured", Path("."))
        return cls(settings.source_root, settings)

    # -- collections ---------------------------------------------------------

    def core(self) -> SourceCollection:
        return SourceCollection(
            name=self.settings.core_collection,
            path=self.source_root / self.settings.core_collection,
            package_id=CORE_PACKAGE_ID,
        )

    def common(self) -> SourceCollection:
        return SourceCollection(
            name=self.settings.common_collection,
            path=self.source_root / self.settings.common_collection,
        )

    def collection_for_package(self, package_id: str) -> SourceCollection | None:
        if package_id == CORE_PACKAGE_ID:
            return self.core()
        pack = self.get_expansion_pack(package_id)
        return pack.collection if pack else None

    def search_order(self, package_id: str) -> list[SourceCollection]:
        """Collections searched for a package's dependencies, highest priority first."""
        order = []
        if package_id != CORE_PACKAGE_ID:
            own = self.collection_for_package(package_id)
            if own is not None:
                order.append(own)
        order.append(self.core())
        order.append(self.common())
        return order

    # -- versions ------------------------------------------------------------

    def core_version(self) -> str:
        """Version of the core package available for install."""
        package_json = self.source_root / "package.json"
        if package_json.is_file():
            try:
                with open(package_json, encoding="utf-8") as f:
                    version = json.load(f).get("version")
            except (OSError, ValueError) as e:
                raise PackSmithError(f"Could not read {package_json}: {e}") from e
            if version:
                return str(version)

        core_config = self.core().path / "core-config.yaml"
        if core_config.is_file():
            with open(core_config, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            if isinstance(data, dict) and data.get("version"):
                return str(data["version"])

        raise PackSmithError(f"Cannot determine the core version of {self.source_root}")

    # -- discovery -----------------------------------------------------------

    def available_agents(self) -> list[str]:
        return self.core().names("agents", ".md")

    def available_teams(self) -> list[str]:
        return self.core().names("agent-teams", ".yaml")

    def expansion_packs(self) -> list[ExpansionPackInfo]:
        """All expansion packs in the source distribution, sorted by id."""
        packs_dir = self.source_root / self.settings.expansion_packs_dir
        if not packs_dir.is_dir():
            return []

        packs = []
        for pack_dir in sorted(p for p in packs_dir.iterdir() if p.is_dir()):
            if not is_valid_package_id(pack_dir.name):
                logger.warning("Ignoring expansion pack with invalid id: %s", pack_dir.name)
                continue
            packs.append(self._read_pack(pack_dir))
        return packs

    def get_expansion_pack(self, pack_id: str) -> ExpansionPackInfo | None:
        pack_dir = self.source_root / self.settings.expansion_packs_dir / pack_id
        if not is_valid_package_id(pack_id) or not pack_dir.is_dir():
            return None
        return self._read_pack(pack_dir)

    def _read_pack(self, pack_dir: Path) -> ExpansionPackInfo:
        config: dict = {}
        config_path = pack_dir / self.settings.pack_config_name
        if config_path.is_file():
            try:
                with open(config_path, encoding="utf-8") as f:
                    loaded = yaml.safe_load(f)
                if isinstance(loaded, dict):
                    config = loaded
            except (OSError, yaml.YAMLError) as e:
                logger.warning("Could not read %s: %s", config_path, e)

        return ExpansionPackInfo(
            id=pack_dir.name,
            name=str(config.get("name") or pack_dir.name),
            version=str(config.get("version") or "1.0.0"),
            path=pack_dir,
            description=str(config.get("description") or config.get("short-title") or ""),
            author=str(config.get("author") or ""),
        )
