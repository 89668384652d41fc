"""Atomic file writes, streamed fingerprints, and timestamped backups.

Every write goes to a temporary file in the destination directory and is
renamed into place, so an interrupted run leaves either the old file or the
complete new one, never a truncated file.
"""

from __future__ import annotations

import hashlib
import os
import shutil
import tempfile
from datetime import datetime, timezone
from pathlib import Path

CHUNK_SIZE = 64 * 1024
BACKUP_INFIX = ".bak-"


def fsync_dir(path: Path) -> None:
    try:
        fd = os.open(str(path), os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        # Not supported for directories on every platform.
        pass
    finally:
        os.close(fd)


def atomic_write_bytes(path: Path, data: bytes) -> None:
    """Write *data* to *path* via temp-file-then-rename, creating parent dirs."""
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path: Path | None = None
    try:
        with tempfile.NamedTemporaryFile(
            mode="wb",
            dir=str(path.parent),
            prefix=path.name + ".",
            suffix=".tmp",
            delete=False,
        ) as tmp:
            temp_path = Path(tmp.name)
            tmp.write(data)
            tmp.flush()
            os.fsync(tmp.fileno())
        os.replace(str(temp_path), str(path))
        fsync_dir(path.parent)
    finally:
        if temp_path is not None and temp_path.exists():
            temp_path.unlink(missing_ok=True)


def atomic_write_text(path: Path, text: str) -> None:
    atomic_write_bytes(path, text.encode("utf-8"))


def fingerprint_bytes(data: bytes, length: int = 16) -> str:
    return hashlib.sha256(data).hexdigest()[:length]


def fingerprint_file(path: Path, length: int = 16) -> str:
    """SHA-256 of a file, read in chunks, truncated to *length* hex chars."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()[:length]


def backup_path_for(path: Path, now: datetime | None = None) -> Path:
    """Pick an unused timestamped backup name beside *path*."""
    stamp = (now or datetime.now(timezone.utc)).strftime("%Y%m%dT%H%M%S%fZ")
    candidate = path.with_name(f"{path.name}{BACKUP_INFIX}{stamp}")
    counter = 1
    while candidate.exists():
        candidate = path.with_name(f"{path.name}{BACKUP_INFIX}{stamp}-{counter}")
        counter += 1
    return candidate


def backup_file(path: Path) -> Path:
    """Copy *path* to a timestamped sibling and return the backup's path.

    The copy is written atomically and flushed before returning, so the
    original may be overwritten as soon as this returns.
    """
    target = backup_path_for(path)
    temp_path: Path | None = None
    try:
        with tempfile.NamedTemporaryFile(
            mode="wb",
            dir=str(path.parent),
            prefix=target.name + ".",
            suffix=".tmp",
            delete=False,
        ) as tmp:
            temp_path = Path(tmp.name)
            with open(path, "rb") as src:
                shutil.copyfileobj(src, tmp, CHUNK_SIZE)
            tmp.flush()
            os.fsync(tmp.fileno())
        shutil.copystat(path, temp_path)
        os.replace(str(temp_path), str(target))
        fsync_dir(path.parent)
    finally:
        if temp_path is not None and temp_path.exists():
            temp_path.unlink(missing_ok=True)
    return target


def is_backup_name(name: str) -> bool:
    return BACKUP_INFIX in name
