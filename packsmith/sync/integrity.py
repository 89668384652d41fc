"""Integrity checking — diff a manifest against the live filesystem.

Each manifest entry is classified as missing, modified, or intact. The
expected content fingerprint is the one recorded in the manifest. Entries
written without a fingerprint fall back to re-rendering their source file
(found through provenance) and fingerprinting that; if no source can be
found either, the entry is reported as unverified rather than guessed at.
"""

from __future__ import annotations

import logging

from packsmith.config import InstallerSettings
from packsmith.models.installation import InstallationRoot, IntegrityReport, Manifest
from packsmith.sync.file_sync import FileSyncEngine
from packsmith.sync.provenance import ProvenanceResolver
from packsmith.utils.fs_atomic import fingerprint_file

logger = logging.getLogger(__name__)


class IntegrityChecker:
    """Classifies manifest entries against what is on disk."""

    def __init__(
        self,
        provenance: ProvenanceResolver | None = None,
        settings: InstallerSettings | None = None,
    ):
        self.provenance = provenance
        self.settings = settings or (provenance.settings if provenance else InstallerSettings())
        self.engine = FileSyncEngine(self.settings)

    def check(self, root: InstallationRoot, manifest: Manifest) -> IntegrityReport:
        report = IntegrityReport()
        manifest_suffix = "/" + self.settings.manifest_name

        for entry in manifest.files:
            if entry.path.endswith(manifest_suffix):
                continue

            path = root.resolve(entry.path)
            if not path.is_file():
                report.missing.append(entry.path)
                continue

            expected = entry.hash or self._derive(entry.path)
            if not expected:
                report.unverified.append(entry.path)
                continue

            actual = fingerprint_file(path, len(expected))
            if actual != expected:
                report.modified.append(entry.path)

        if report.has_issues:
            logger.info("Integrity of %s: %s", manifest.package_id, report.summary())
        return report

    def modified_files(self, root: InstallationRoot, manifest: Manifest) -> list[str]:
        return self.check(root, manifest).modified

    def _derive(self, relative_path: str) -> str | None:
        if self.provenance is None:
            return None
        ref = self.provenance.source_for(relative_path)
        if ref is None:
            logger.debug("No source for %s; cannot verify it", relative_path)
            return None
        return self.engine.expected_fingerprint(ref.path, ref.token)
