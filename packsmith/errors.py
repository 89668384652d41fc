"""Exception taxonomy for the reconciliation engine.

Unresolved dependencies and integrity mismatches are not exceptions: they are
reported as data (``UnresolvedReference`` and ``IntegrityReport``) so callers
can warn and carry on.
"""

from __future__ import annotations

from pathlib import Path


class PackSmithError(Exception):
    """Base class for all packsmith errors."""


class PathError(PackSmithError):
    """The installation root is missing, not a directory, or cannot be created."""

    def __init__(self, message: str, path: str | Path):
        self.path = Path(path)
        super().__init__(f"{message}: {self.path}")


class ManifestCorruptError(PackSmithError):
    """An install manifest exists but cannot be parsed."""

    def __init__(self, path: str | Path, reason: str = ""):
        self.path = Path(path)
        self.reason = reason
        message = f"Corrupt install manifest at {self.path}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class InvalidVersionError(PackSmithError, ValueError):
    """A version string is not three dot-separated non-negative integers."""

    def __init__(self, version: str):
        self.version = version
        super().__init__(f"Invalid version string: {version!r}")


class MetadataError(PackSmithError):
    """A resource file carries no metadata block, or one that does not parse."""

    def __init__(self, path: str | Path, reason: str):
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"Bad resource metadata in {self.path}: {reason}")


class WriteFailure(PackSmithError):
    """A sync batch stopped part-way through.

    Files listed in ``completed`` were fully written before the failure and
    are left in place. Nothing is retried.
    """

    def __init__(self, failed_path: str, cause: BaseException, completed: list[str] | None = None):
        self.failed_path = failed_path
        self.cause = cause
        self.completed = list(completed or [])
        super().__init__(
            f"Failed to write {failed_path} after {len(self.completed)} file(s) "
            f"were written: {cause}"
        )


class ActionNotAllowedError(PackSmithError):
    """The requested action is not available for the detected installation state."""

    def __init__(self, action: str, state: str):
        self.action = action
        self.state = state
        super().__init__(f"Action '{action}' is not available when the root is '{state}'")


class ResourceNotFoundError(PackSmithError):
    """A requested agent, team or expansion pack does not exist in the source."""

    def __init__(self, kind: str, resource_id: str):
        self.kind = kind
        self.resource_id = resource_id
        super().__init__(f"No {kind} named '{resource_id}' in the source distribution")


class InstallPlanError(PackSmithError, ValueError):
    """A core install cannot be planned from its install type and selected resource."""

    def __init__(self, install_type: str, reason: str):
        self.install_type = install_type
        super().__init__(f"Cannot plan a {install_type} install: {reason}")
