"""Resource metadata — typed descriptors parsed from agent and team files.

Agents are markdown files carrying a fenced ``yaml`` block; teams are plain
YAML files. Whatever the body says, only the metadata is read here.
"""

from __future__ import annotations

import re
from pathlib import Path

import yaml

from packsmith.config import AGENT_KIND, DEPENDENCY_KINDS, TEAM_KIND
from packsmith.errors import MetadataError
from packsmith.models.installation import ResourceDescriptor

# First fenced yaml/yml block in a markdown document.
_YAML_BLOCK_RE = re.compile(r"^```ya?ml[ \t]*\r?\n(.*?)^```[ \t]*$", re.MULTILINE | re.DOTALL)

RESOURCE_KINDS = (AGENT_KIND, TEAM_KIND)


def extract_yaml_block(text: str) -> str | None:
    """Return the body of the first fenced yaml block, or None if there is none."""
    match = _YAML_BLOCK_RE.search(text)
    return match.group(1) if match else None


def load_descriptor(path: Path, kind: str, package: str) -> ResourceDescriptor:
    """Parse a resource file of the given kind into a ResourceDescriptor."""
    if kind == AGENT_KIND:
        return parse_agent(path, package)
    if kind == TEAM_KIND:
        return parse_team(path, package)
    raise ValueError(f"{kind} files are not resources")


def parse_agent(path: Path, package: str) -> ResourceDescriptor:
    text = _read(path)
    block = extract_yaml_block(text)
    if block is None:
        raise MetadataError(path, "no yaml metadata block")

    data = _load_mapping(path, block)
    agent_info = data.get("agent")
    agent_id = path.stem
    if isinstance(agent_info, dict) and agent_info.get("id"):
        agent_id = str(agent_info["id"])

    return ResourceDescriptor(
        id=agent_id,
        kind=AGENT_KIND,
        package=package,
        source_path=path,
        dependencies=_parse_dependencies(path, data.get("dependencies")),
    )


def parse_team(path: Path, package: str) -> ResourceDescriptor:
    data = _load_mapping(path, _read(path))

    agents = data.get("agents") or []
    if isinstance(agents, str):
        agents = [agents]
    if not isinstance(agents, list) or not all(isinstance(a, str) for a in agents):
        raise MetadataError(path, "'agents' must be a list of agent ids")

    dependencies = _parse_dependencies(path, data.get("dependencies"))
    # Teams list workflows (and occasionally other kinds) at the top level.
    for kind in DEPENDENCY_KINDS:
        if kind in data:
            extra = _parse_dependencies(path, {kind: data[kind]})
            dependencies.setdefault(kind, [])
            dependencies[kind].extend(n for n in extra[kind] if n not in dependencies[kind])

    return ResourceDescriptor(
        id=path.stem,
        kind=TEAM_KIND,
        package=package,
        source_path=path,
        dependencies=dependencies,
        agents=list(agents),
    )


def _read(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise MetadataError(path, str(e)) from e


def _load_mapping(path: Path, text: str) -> dict:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise MetadataError(path, f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise MetadataError(path, "metadata is not a mapping")
    return data


def _parse_dependencies(path: Path, raw) -> dict[str, list[str]]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise MetadataError(path, "'dependencies' must be a mapping of kind to names")

    dependencies: dict[str, list[str]] = {}
    for kind, names in raw.items():
        if names is None:
            continue
        if isinstance(names, str):
            names = [names]
        if not isinstance(names, list) or not all(isinstance(n, str) for n in names):
            raise MetadataError(path, f"dependencies.{kind} must be a list of names")
        dependencies[str(kind)] = [n.strip() for n in names if n.strip()]
    return dependencies
