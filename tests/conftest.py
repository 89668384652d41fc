"""Shared fixtures: a small source distribution and an empty project directory."""

import json
import tempfile
from pathlib import Path

import pytest

PACK_ID = "bmad-2d-phaser-game-dev"

LOGO_BYTES = b"\x89PNG\r\n\x1a\n{root}\x00\xff\xfe"


def agent_md(agent_id: str, dependencies: dict, body: str = "") -> str:
    lines = ["agent:", f"  id: {agent_id}", f"  name: {agent_id.title()}", "dependencies:"]
    for kind, names in dependencies.items():
        lines.append(f"  {kind}:")
        lines.extend(f"    - {name}" for name in names)
    block = "\n".join(lines)
    return f"# {agent_id}\n\nActivate with the header below.\n\n```yaml\n{block}\n```\n\n{body}\n"


def write(path: Path, content) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(content, bytes):
        path.write_bytes(content)
    else:
        path.write_text(content, encoding="utf-8")
    return path


def set_core_version(source: Path, version: str) -> None:
    write(source / "package.json", json.dumps({"name": "bmad-method", "version": version}))


def build_source(source: Path, version: str = "1.2.0") -> Path:
    set_core_version(source, version)
    core = source / "bmad-core"

    write(
        core / "agents" / "dev.md",
        agent_md(
            "dev",
            {
                "tasks": ["develop-story"],
                "checklists": ["story-dod-checklist"],
                "templates": ["story-tmpl"],
            },
            body="Load {root}/tasks/develop-story.md before starting.",
        ),
    )
    write(
        core / "agents" / "pm.md",
        agent_md(
            "pm",
            {
                "tasks": ["create-doc", "execute-checklist"],
                "templates": ["prd-tmpl"],
                "data": ["technical-preferences"],
            },
        ),
    )
    write(core / "agents" / "architect.md", agent_md("architect", {"templates": ["architecture-*"]}))
    write(
        core / "agents" / "bmad-orchestrator.md",
        agent_md("bmad-orchestrator", {"data": ["bmad-kb"], "utils": ["workflow-management"]}),
    )
    write(
        core / "agent-teams" / "team-planning.yaml",
        "bundle:\n  name: Team Planning\nagents:\n  - pm\n  - architect\nworkflows:\n  - greenfield-service\n",
    )

    write(core / "tasks" / "develop-story.md", "# Develop Story\n\nRead {root}/core-config.yaml first.\n")
    write(core / "tasks" / "create-doc.md", "# Create Doc\n\nTemplates live in {root}/templates.\n")
    write(core / "templates" / "story-tmpl.yaml", "template:\n  id: story\n  output: docs/stories\n")
    write(core / "templates" / "prd-tmpl.yaml", "template:\n  id: prd\n")
    write(core / "templates" / "architecture-tmpl.yaml", "template:\n  id: architecture\n")
    write(core / "templates" / "architecture-frontend-tmpl.yaml", "template:\n  id: frontend-architecture\n")
    write(core / "checklists" / "story-dod-checklist.md", "# Story DoD\n\n- [ ] tests pass\n")
    write(core / "data" / "bmad-kb.md", "# Knowledge Base\n")
    write(core / "data" / "technical-preferences.md", "# Technical Preferences\n")
    write(core / "data" / "logo.png", LOGO_BYTES)
    write(core / "workflows" / "greenfield-service.yaml", "workflow:\n  id: greenfield-service\n")
    write(core / "core-config.yaml", "devStoryLocation: docs/stories\ndevLoadAlwaysFiles:\n  - {root}/data/technical-preferences.md\n")

    common = source / "common"
    write(common / "tasks" / "execute-checklist.md", "# Execute Checklist\n\nSee {root}/checklists.\n")
    write(common / "utils" / "workflow-management.md", "# Workflow Management\n")

    pack = source / "expansion-packs" / PACK_ID
    write(
        pack / "config.yaml",
        "name: bmad-2d-phaser-game-dev\nversion: 1.1.0\nshort-title: Phaser 2D game development\nauthor: Brian\n",
    )
    write(pack / "README.md", "# Phaser game dev pack\n")
    write(
        pack / "agents" / "game-designer.md",
        agent_md(
            "game-designer",
            {
                "tasks": ["create-game-doc", "create-doc"],
                "templates": ["game-design-doc-tmpl"],
                "checklists": ["game-design-checklist"],
            },
        ),
    )
    write(pack / "agent-teams" / "phaser-team.yaml", "agents:\n  - game-designer\n")
    write(pack / "tasks" / "create-game-doc.md", "# Create Game Doc\n\nUse {root}/templates/game-design-doc-tmpl.yaml.\n")
    write(pack / "templates" / "game-design-doc-tmpl.yaml", "template:\n  id: game-design-doc\n")

    return source


@pytest.fixture
def source_root():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield build_source(Path(tmpdir) / "source")


@pytest.fixture
def project_dir():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir) / "project"
