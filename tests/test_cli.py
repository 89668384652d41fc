"""Smoke tests for the packsmith CLI."""

import pytest
from click.testing import CliRunner

from conftest import PACK_ID
from packsmith.cli import main
from packsmith.models.installation import InstallationRoot, InstallType, Manifest
from packsmith.sync.manifest import ManifestStore


@pytest.fixture(autouse=True)
def _no_env_source(monkeypatch):
    monkeypatch.delenv("PACKSMITH_SOURCE_ROOT", raising=False)


def _run(source_root, *args):
    return CliRunner().invoke(main, ["--source", str(source_root), *args])


def test_install_then_status(source_root, project_dir):
    result = _run(source_root, "install", str(project_dir), "--ide", "cursor")
    assert result.exit_code == 0, result.output
    assert "Install" in result.output

    manifest = ManifestStore().read(InstallationRoot(project_dir))
    assert manifest.install_type == InstallType.FULL
    assert manifest.ides_configured == {"cursor"}

    result = _run(source_root, "status", str(project_dir))
    assert result.exit_code == 0, result.output
    assert "core_present" in result.output
    assert "Recommended: expansions" in result.output


def test_status_without_source(project_dir, monkeypatch):
    result = CliRunner().invoke(main, ["status", str(project_dir)])
    assert result.exit_code == 0, result.output
    assert "State: clean" in result.output


def test_install_single_agent_and_pack(source_root, project_dir):
    result = _run(source_root, "install", str(project_dir), "--agent", "dev", "-e", PACK_ID)
    assert result.exit_code == 0, result.output
    assert "game-design-checklist.md" in result.output

    root = InstallationRoot(project_dir)
    assert ManifestStore().read(root).selected_resource == "dev"
    assert ManifestStore().read(root, PACK_ID).version == "1.1.0"


def test_check_reports_modified_files(source_root, project_dir):
    _run(source_root, "install", str(project_dir))

    result = _run(source_root, "check", str(project_dir))
    assert result.exit_code == 0, result.output
    assert "all files intact" in result.output

    (project_dir / ".bmad-core" / "agents" / "dev.md").write_text("edited\n")
    result = _run(source_root, "check", str(project_dir))
    assert result.exit_code == 1
    assert "1 modified" in result.output


def test_disallowed_action_exits_nonzero(source_root, project_dir):
    result = _run(source_root, "install", str(project_dir), "--action", "upgrade")
    assert result.exit_code == 1
    assert "not available" in result.output
    assert not project_dir.exists()


def test_conflicting_install_types(source_root, project_dir):
    result = _run(source_root, "install", str(project_dir), "--full", "--agent", "dev")
    assert result.exit_code == 2


def test_bad_pack_action(source_root, project_dir):
    result = _run(source_root, "install", str(project_dir), "--pack-action", "phaser")
    assert result.exit_code == 2


def test_install_requires_source(project_dir):
    result = CliRunner().invoke(main, ["install", str(project_dir)])
    assert result.exit_code == 1
    assert "No source distribution" in result.output


def test_listings(source_root):
    result = _run(source_root, "list-agents")
    assert result.exit_code == 0, result.output
    assert "bmad-orchestrator" in result.output
    assert "team-planning" in result.output

    result = _run(source_root, "list-packs")
    assert result.exit_code == 0, result.output
    assert "1.1.0" in result.output


def test_unplannable_manifest_exits_cleanly(source_root, project_dir):
    ManifestStore().write(InstallationRoot(project_dir), Manifest(version="1.0.0", install_type=InstallType.TEAM))

    result = _run(source_root, "install", str(project_dir), "--action", "upgrade")
    assert result.exit_code == 1
    assert "no agent or team is selected" in result.output
    assert result.exception is None or isinstance(result.exception, SystemExit)
