"""File sync engine — materialize source files into an installation root.

Text resources (``.md``, ``.yaml``, ``.yml``) are copied with every path
placeholder rewritten to the package's own directory name, so one source
file serves the core package and any number of expansion packs. Other files
are copied byte for byte.

Writes are idempotent: a destination that already holds the rendered content
is left alone. A destination holding something else is a conflict, which is
either backed up and replaced or skipped, depending on the policy.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from packsmith.config import InstallerSettings
from packsmith.errors import WriteFailure
from packsmith.models.installation import InstallationRoot
from packsmith.utils.file_scanner import is_templated
from packsmith.utils.fs_atomic import (
    atomic_write_bytes,
    backup_file,
    fingerprint_bytes,
    fingerprint_file,
)

logger = logging.getLogger(__name__)


class ConflictPolicy(Enum):
    """What to do with an existing file whose content differs."""

    BACKUP = "backup"  # Back up beside the original, then overwrite
    SKIP = "skip"  # Leave the existing file alone, no backup


@dataclass(frozen=True)
class SyncItem:
    """One file to install: a source path and a root-relative target path."""

    source: Path
    target: str


@dataclass
class SyncResult:
    """Outcome of one sync() call."""

    written: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    backups: dict[str, str] = field(default_factory=dict)  # target -> backup path
    hashes: dict[str, str] = field(default_factory=dict)  # target -> installed fingerprint
    installed: list[str] = field(default_factory=list)  # written + unchanged, in item order


class FileSyncEngine:
    """Copies planned files into a root with placeholder substitution and backups."""

    def __init__(self, settings: InstallerSettings | None = None):
        self.settings = settings or InstallerSettings()

    def render(self, source: Path, path_token: str) -> bytes:
        """Content that installing *source* under *path_token* produces."""
        data = source.read_bytes()
        if not is_templated(source, self.settings.templated_suffixes):
            return data
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError:
            logger.debug("%s is not UTF-8 text; copying verbatim", source)
            return data
        return text.replace(self.settings.path_placeholder, path_token).encode("utf-8")

    def expected_fingerprint(self, source: Path, path_token: str) -> str:
        return fingerprint_bytes(self.render(source, path_token), self.settings.hash_length)

    def sync(
        self,
        items: Iterable[SyncItem],
        root: InstallationRoot,
        path_token: str,
        policy: ConflictPolicy = ConflictPolicy.BACKUP,
        pristine: dict[str, str] | None = None,
    ) -> SyncResult:
        """Install *items* under *root*.

        Args:
            items: Files to install.
            root: Installation root the targets are relative to.
            path_token: Replacement for the path placeholder in text files.
            policy: How to treat existing files whose content differs.
            pristine: Fingerprints recorded at the previous install. A file
                whose live content still matches its recorded fingerprint was
                not edited by the user and is replaced without a backup.

        Raises:
            WriteFailure: a file could not be read or written. Files already
                processed stay in place and are listed on the exception.
        """
        result = SyncResult()
        pristine = pristine or {}

        for item in items:
            try:
                self._sync_one(item, root, path_token, policy, pristine, result)
            except OSError as e:
                raise WriteFailure(item.target, e, completed=result.installed) from e

        logger.info(
            "Synced %s: %d written, %d unchanged, %d backed up, %d skipped",
            path_token,
            len(result.written),
            len(result.unchanged),
            len(result.backups),
            len(result.skipped),
        )
        return result

    def _sync_one(
        self,
        item: SyncItem,
        root: InstallationRoot,
        path_token: str,
        policy: ConflictPolicy,
        pristine: dict[str, str],
        result: SyncResult,
    ) -> None:
        content = self.render(item.source, path_token)
        new_hash = fingerprint_bytes(content, self.settings.hash_length)
        dest = root.resolve(item.target)

        if dest.exists():
            current_hash = fingerprint_file(dest, self.settings.hash_length)
            if current_hash == new_hash:
                result.unchanged.append(item.target)
                result.installed.append(item.target)
                result.hashes[item.target] = new_hash
                logger.debug("Up to date: %s", item.target)
                return

            if pristine.get(item.target) == current_hash:
                logger.debug("Replacing unmodified %s", item.target)
            elif policy == ConflictPolicy.SKIP:
                result.skipped.append(item.target)
                logger.debug("Skipping modified %s", item.target)
                return
            else:
                backup = backup_file(dest)
                result.backups[item.target] = root.relative(backup)
                logger.debug("Backed up %s to %s", item.target, backup.name)

        atomic_write_bytes(dest, content)
        result.written.append(item.target)
        result.installed.append(item.target)
        result.hashes[item.target] = new_hash
