"""Provenance — trace an installed file back to the source file it came from.

A manifest path such as ``.bmad-core/tasks/create-doc.md`` names its package
by the first path segment and its source file by the rest. The common
collection is checked first because common files are copied last and win
over same-named package files; expansion packs then fall back to core, where
their borrowed dependencies live.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from packsmith.config import CORE_PACKAGE_ID, InstallerSettings
from packsmith.models.installation import is_valid_package_id
from packsmith.registry.collections import ResourceLocator, SourceCollection


@dataclass(frozen=True)
class SourceRef:
    """Where a manifest entry's content comes from."""

    path: Path
    collection: str
    package_id: str
    token: str  # Value substituted for the path placeholder


class ProvenanceResolver:
    """Maps root-relative install paths to their source files."""

    def __init__(self, locator: ResourceLocator, settings: InstallerSettings | None = None):
        self.locator = locator
        self.settings = settings or locator.settings

    def split(self, relative_path: str) -> tuple[str, str] | None:
        """Return ``(package_id, suffix)`` for an install path, or None."""
        parts = PurePosixPath(relative_path).parts
        if len(parts) < 2:
            return None
        head, suffix = parts[0], "/".join(parts[1:])
        if head == self.settings.core_marker:
            return CORE_PACKAGE_ID, suffix
        if head.startswith(".") and is_valid_package_id(head[1:]):
            return head[1:], suffix
        return None

    def source_for(self, relative_path: str) -> SourceRef | None:
        split = self.split(relative_path)
        if split is None:
            return None
        package_id, suffix = split
        token = self.settings.package_dir_name(package_id)

        for collection in self._candidates(package_id):
            candidate = collection.path.joinpath(*PurePosixPath(suffix).parts)
            if candidate.is_file():
                return SourceRef(
                    path=candidate,
                    collection=collection.name,
                    package_id=package_id,
                    token=token,
                )
        return None

    def _candidates(self, package_id: str) -> list[SourceCollection]:
        candidates = [self.locator.common()]
        own = self.locator.collection_for_package(package_id)
        if own is not None:
            candidates.append(own)
        if package_id != CORE_PACKAGE_ID:
            candidates.append(self.locator.core())
        return candidates
