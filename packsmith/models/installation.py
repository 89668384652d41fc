"""Core data models for installation reconciliation.

Covers: installation roots, install manifests, resource descriptors,
dependency closures, integrity reports, and detected installation state.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path, PurePosixPath

from packsmith.config import CORE_PACKAGE_ID

PACKAGE_ID_RE = re.compile(r"[a-z0-9-]+")


def is_valid_package_id(package_id: str) -> bool:
    return bool(PACKAGE_ID_RE.fullmatch(package_id))


class InstallType(Enum):
    """What a manifest (or an install request) covers."""

    FULL = "full"  # Entire core collection
    SINGLE_AGENT = "single-agent"  # One agent and its dependency closure
    TEAM = "team"  # One team, its member agents, and their closures
    EXPANSION_PACK = "expansion-pack"  # Manifest of an expansion pack
    EXPANSION_ONLY = "expansion-only"  # Request only; never written to a manifest


class StateKind(Enum):
    """Classification of an installation root."""

    CLEAN = "clean"
    CORE_PRESENT = "core_present"
    LEGACY = "legacy_structure_present"
    UNRECOGNIZED = "unrecognized_existing"


# --- Installation root ---


@dataclass(frozen=True)
class InstallationRoot:
    """The directory a reconciliation runs against.

    Passed explicitly through every call; nothing in the engine holds a
    "current installation".
    """

    path: Path

    def __post_init__(self):
        object.__setattr__(self, "path", Path(self.path))

    def resolve(self, relative_path: str) -> Path:
        return self.path.joinpath(*PurePosixPath(relative_path).parts)

    def relative(self, path: Path) -> str:
        return path.relative_to(self.path).as_posix()

    def __str__(self) -> str:
        return str(self.path)


# --- Manifest ---


@dataclass
class ManifestEntry:
    """One file the installer wrote, relative to the installation root."""

    path: str
    hash: str = ""  # Empty for entries written without a fingerprint


@dataclass
class Manifest:
    """Record of everything the installer wrote for one package."""

    version: str
    install_type: InstallType
    installed_at: str = ""  # ISO 8601 timestamp
    selected_resource: str | None = None  # Agent or team id for partial installs
    ides_configured: set[str] = field(default_factory=set)
    files: list[ManifestEntry] = field(default_factory=list)
    package_id: str = CORE_PACKAGE_ID
    package_name: str = ""
    expansion_packs: list[str] = field(default_factory=list)

    @property
    def file_paths(self) -> list[str]:
        return [entry.path for entry in self.files]

    @property
    def is_core(self) -> bool:
        return self.package_id == CORE_PACKAGE_ID

    def entry(self, path: str) -> ManifestEntry | None:
        for entry in self.files:
            if entry.path == path:
                return entry
        return None

    def recorded_hashes(self) -> dict[str, str]:
        """Fingerprints by path, for entries that carry one."""
        return {entry.path: entry.hash for entry in self.files if entry.hash}


# --- Resources and dependencies ---


@dataclass
class ResourceDescriptor:
    """An agent or team with its declared dependencies."""

    id: str
    kind: str  # "agents" | "agent-teams"
    package: str  # Name of the collection the descriptor was read from
    source_path: Path
    dependencies: dict[str, list[str]] = field(default_factory=dict)
    agents: list[str] = field(default_factory=list)  # Team members; empty for agents

    @property
    def filename(self) -> str:
        return self.source_path.name

    @property
    def key(self) -> tuple[str, str]:
        return (self.kind, self.filename)

    @property
    def is_team(self) -> bool:
        return bool(self.agents) or self.kind == "agent-teams"


@dataclass(frozen=True)
class ResolvedFile:
    """A concrete file reached by dependency resolution."""

    kind: str
    filename: str
    collection: str
    source_path: Path

    @property
    def relative_path(self) -> str:
        return f"{self.kind}/{self.filename}"


@dataclass(frozen=True)
class UnresolvedReference:
    """A dependency that could not be located in any searched collection."""

    name: str
    kind: str
    requested_by: str
    reason: str = "not found"

    def describe(self) -> str:
        return f"{self.kind}/{self.name} (required by {self.requested_by}): {self.reason}"


@dataclass
class DependencyClosure:
    """Deduplicated transitive file set plus whatever could not be resolved."""

    files: list[ResolvedFile] = field(default_factory=list)
    unresolved: list[UnresolvedReference] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return not self.unresolved

    def keys(self) -> set[tuple[str, str]]:
        return {(f.kind, f.filename) for f in self.files}

    def contains(self, kind: str, filename: str) -> bool:
        return (kind, filename) in self.keys()


# --- Integrity ---


@dataclass
class IntegrityReport:
    """Differences between a manifest and the live filesystem."""

    missing: list[str] = field(default_factory=list)
    modified: list[str] = field(default_factory=list)
    unverified: list[str] = field(default_factory=list)  # No fingerprint and no source to compare

    @property
    def has_issues(self) -> bool:
        return bool(self.missing or self.modified)

    def summary(self) -> str:
        if not self.has_issues:
            return "all files intact"
        parts = []
        if self.missing:
            parts.append(f"{len(self.missing)} missing")
        if self.modified:
            parts.append(f"{len(self.modified)} modified")
        return ", ".join(parts)


# --- Detected state ---


@dataclass
class DetectedPack:
    """An expansion pack directory found beside the core package."""

    package_id: str
    path: Path
    manifest: Manifest | None = None

    @property
    def has_manifest(self) -> bool:
        return self.manifest is not None


@dataclass
class InstallationState:
    """Result of inspecting an installation root."""

    kind: StateKind
    root: InstallationRoot
    manifest: Manifest | None = None
    has_other_files: bool = False
    expansion_packs: dict[str, DetectedPack] = field(default_factory=dict)

    @property
    def is_installed(self) -> bool:
        return self.kind == StateKind.CORE_PRESENT
