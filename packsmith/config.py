"""Installer settings — reserved names and layout of the on-disk contract.

Defaults match the layout written by earlier releases, so existing
installations keep being recognized. A YAML file can override any field and
``PACKSMITH_SOURCE_ROOT`` points the locator at a source distribution.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path

import yaml

SOURCE_ROOT_ENV = "PACKSMITH_SOURCE_ROOT"

# Package id of the core package. Not a valid expansion pack id, so the two
# namespaces never collide.
CORE_PACKAGE_ID = "@core"

# Dependency kinds an agent may declare, in the order they are walked.
DEPENDENCY_KINDS = ("tasks", "templates", "checklists", "workflows", "utils", "data")

# Kinds whose files are themselves resources with their own dependencies.
AGENT_KIND = "agents"
TEAM_KIND = "agent-teams"


@dataclass
class InstallerSettings:
    """Reserved names and tunables shared by every engine component."""

    core_marker: str = ".bmad-core"
    legacy_marker: str = "bmad-agent"
    manifest_name: str = "install-manifest.yaml"
    pack_config_name: str = "config.yaml"
    path_placeholder: str = "{root}"
    orchestrator_agent: str = "bmad-orchestrator"

    # Source distribution layout
    source_root: Path | None = None
    core_collection: str = "bmad-core"
    common_collection: str = "common"
    expansion_packs_dir: str = "expansion-packs"

    templated_suffixes: tuple[str, ...] = (".md", ".yaml", ".yml")
    ignore_dirs: tuple[str, ...] = (".git", "node_modules", "__pycache__")
    vcs_dirs: tuple[str, ...] = (".git", ".svn", ".hg")
    dependency_kinds: tuple[str, ...] = DEPENDENCY_KINDS
    pack_folders: tuple[str, ...] = (
        "agents",
        "agent-teams",
        "templates",
        "tasks",
        "checklists",
        "workflows",
        "data",
        "utils",
        "schemas",
    )
    pack_extra_files: tuple[str, ...] = ("config.yaml", "README.md")
    default_extensions: dict[str, str] = field(
        default_factory=lambda: {"templates": ".yaml", "workflows": ".yaml", "agent-teams": ".yaml"}
    )
    fallback_extension: str = ".md"
    hash_length: int = 16

    def default_extension(self, kind: str) -> str:
        return self.default_extensions.get(kind, self.fallback_extension)

    def package_dir_name(self, package_id: str) -> str:
        """Directory (relative to the installation root) that holds a package."""
        if package_id == CORE_PACKAGE_ID:
            return self.core_marker
        return f".{package_id}"


def load_settings(path: str | Path | None = None) -> InstallerSettings:
    """Build settings from defaults, an optional YAML file, and the environment.

    Unknown keys in the YAML file are ignored.
    YAML lists are stored as tuples.
    """
    settings = InstallerSettings()

    if path:
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        known = {f.name for f in fields(InstallerSettings)}
        for key, value in data.items():
            if key not in known:
                continue
            if key == "source_root":
                value = Path(value) if value else None
            elif isinstance(value, list):
                value = tuple(value)
            setattr(settings, key, value)

    env_root = os.environ.get(SOURCE_ROOT_ENV, "")
    if env_root:
        settings.source_root = Path(env_root)

    return settings
