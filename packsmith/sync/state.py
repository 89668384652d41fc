"""State detection — classify an installation root before touching it.

Checks, in order: a core manifest (``core_present``), a legacy layout
(``legacy_structure_present``), a core directory without a usable manifest
(``unrecognized_existing``), and otherwise ``clean``. Expansion packs are
enumerated separately from any dot-directory carrying a manifest or a pack
config. Detection only reads.
"""

from __future__ import annotations

from pathlib import Path

from packsmith.config import CORE_PACKAGE_ID, InstallerSettings
from packsmith.errors import PathError
from packsmith.models.installation import (
    DetectedPack,
    InstallationRoot,
    InstallationState,
    StateKind,
    is_valid_package_id,
)
from packsmith.sync.manifest import ManifestStore
from packsmith.utils.file_scanner import has_any_file


def normalize_root(path: str | Path, settings: InstallerSettings | None = None) -> InstallationRoot:
    """Turn a user-supplied path into an installation root.

    Pointing at the core directory itself means its parent.
    """
    settings = settings or InstallerSettings()
    resolved = Path(path).expanduser().absolute()
    if resolved.name == settings.core_marker:
        resolved = resolved.parent
    return InstallationRoot(resolved)


def find_installation(start: str | Path, settings: InstallerSettings | None = None) -> InstallationRoot | None:
    """Walk up from *start* to the nearest root holding a core manifest."""
    settings = settings or InstallerSettings()
    store = ManifestStore(settings)
    current = normalize_root(start, settings).path
    while True:
        root = InstallationRoot(current)
        if store.exists(root, CORE_PACKAGE_ID):
            return root
        if current.parent == current:
            return None
        current = current.parent


class StateDetector:
    """Inspects marker paths to decide what a root already contains."""

    def __init__(self, store: ManifestStore | None = None, settings: InstallerSettings | None = None):
        self.settings = settings or (store.settings if store else InstallerSettings())
        self.store = store or ManifestStore(self.settings)

    def detect(self, root: InstallationRoot) -> InstallationState:
        state = InstallationState(kind=StateKind.CLEAN, root=root)
        if not root.path.exists():
            return state
        if not root.path.is_dir():
            raise PathError("Installation root is not a directory", root.path)

        state.expansion_packs = self.detect_expansion_packs(root)

        if self.store.exists(root, CORE_PACKAGE_ID):
            manifest = self.store.read(root, CORE_PACKAGE_ID)
            if manifest is not None:
                state.kind = StateKind.CORE_PRESENT
                state.manifest = manifest
            else:
                # Unreadable manifest: the core directory is ours but untrusted.
                state.kind = StateKind.UNRECOGNIZED
            return state

        if (root.path / self.settings.legacy_marker).is_dir():
            state.kind = StateKind.LEGACY
            return state

        if (root.path / self.settings.core_marker).is_dir():
            state.kind = StateKind.UNRECOGNIZED
            return state

        state.has_other_files = has_any_file(root.path, set(self.settings.ignore_dirs))
        return state

    def detect_expansion_packs(self, root: InstallationRoot) -> dict[str, DetectedPack]:
        """Dot-directories that look like installed expansion packs, by pack id."""
        packs: dict[str, DetectedPack] = {}
        if not root.path.is_dir():
            return packs

        for child in sorted(root.path.iterdir()):
            name = child.name
            if not child.is_dir() or not name.startswith("."):
                continue
            if name == self.settings.core_marker or name in self.settings.vcs_dirs:
                continue
            pack_id = name[1:]
            if not is_valid_package_id(pack_id):
                continue

            has_manifest_file = (child / self.settings.manifest_name).is_file()
            has_config = (child / self.settings.pack_config_name).is_file()
            if not (has_manifest_file or has_config):
                continue

            manifest = self.store.read(root, pack_id) if has_manifest_file else None
            packs[pack_id] = DetectedPack(package_id=pack_id, path=child, manifest=manifest)

        return packs
