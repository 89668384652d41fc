"""File scanner — list installable files and classify how they are copied.

Default skip directories and templated suffixes are the ``InstallerSettings``
defaults; callers holding settings pass their own.
"""

from __future__ import annotations

from pathlib import Path

from packsmith.config import InstallerSettings

_DEFAULTS = InstallerSettings()


def scan_files(root: Path, skip_dirs: set[str] | None = None) -> list[str]:
    """Recursively list files under *root* as sorted POSIX paths relative to it.

    Returns an empty list when *root* does not exist.
    """
    skip = set(_DEFAULTS.ignore_dirs if skip_dirs is None else skip_dirs)
    if not root.is_dir():
        return []

    files = []
    for item in root.rglob("*"):
        if not item.is_file():
            continue
        rel = item.relative_to(root)
        if any(part in skip for part in rel.parts[:-1]):
            continue
        files.append(rel.as_posix())
    return sorted(files)


def has_any_file(root: Path, skip_dirs: set[str] | None = None) -> bool:
    """True if *root* contains at least one file outside skipped directories."""
    skip = set(_DEFAULTS.ignore_dirs if skip_dirs is None else skip_dirs)
    if not root.is_dir():
        return False
    for item in root.rglob("*"):
        if item.is_file() and not any(part in skip for part in item.relative_to(root).parts[:-1]):
            return True
    return False


def is_templated(path: str | Path, suffixes: tuple[str, ...] | None = None) -> bool:
    """Return True if the file is copied as text with placeholder substitution."""
    if suffixes is None:
        suffixes = _DEFAULTS.templated_suffixes
    return Path(path).suffix.lower() in suffixes
