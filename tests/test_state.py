"""Tests for installation state detection and root lookup."""

import tempfile
from pathlib import Path

import pytest

from packsmith.config import InstallerSettings, load_settings
from packsmith.errors import PathError
from packsmith.models.installation import (
    InstallationRoot,
    InstallType,
    Manifest,
    StateKind,
    is_valid_package_id,
)
from packsmith.sync.manifest import ManifestStore
from packsmith.sync.state import StateDetector, find_installation, normalize_root


def _write_manifest(root: Path, package_id: str = "@core", version: str = "1.2.0") -> None:
    install_type = InstallType.FULL if package_id == "@core" else InstallType.EXPANSION_PACK
    ManifestStore().write(InstallationRoot(root), Manifest(version=version, install_type=install_type), package_id)


def test_missing_root_is_clean():
    with tempfile.TemporaryDirectory() as tmpdir:
        state = StateDetector().detect(InstallationRoot(Path(tmpdir) / "nope"))
        assert state.kind == StateKind.CLEAN
        assert not state.has_other_files
        assert not (Path(tmpdir) / "nope").exists()


def test_empty_and_non_empty_roots_are_clean():
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        assert StateDetector().detect(InstallationRoot(root)).has_other_files is False

        (root / "README.md").write_text("# my project")
        state = StateDetector().detect(InstallationRoot(root))
        assert state.kind == StateKind.CLEAN
        assert state.has_other_files


def test_file_as_root_is_a_path_error():
    with tempfile.TemporaryDirectory() as tmpdir:
        target = Path(tmpdir) / "file.txt"
        target.write_text("x")
        with pytest.raises(PathError) as exc:
            StateDetector().detect(InstallationRoot(target))
        assert exc.value.path == target


def test_core_manifest_means_core_present():
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        _write_manifest(root)
        state = StateDetector().detect(InstallationRoot(root))
        assert state.kind == StateKind.CORE_PRESENT
        assert state.is_installed
        assert state.manifest.version == "1.2.0"


def test_manifest_wins_over_legacy_marker():
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        (root / "bmad-agent").mkdir()
        _write_manifest(root)
        assert StateDetector().detect(InstallationRoot(root)).kind == StateKind.CORE_PRESENT


def test_legacy_marker():
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        (root / "bmad-agent" / "personas").mkdir(parents=True)
        state = StateDetector().detect(InstallationRoot(root))
        assert state.kind == StateKind.LEGACY
        assert state.manifest is None


def test_core_dir_without_manifest_is_unrecognized():
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        (root / ".bmad-core" / "agents").mkdir(parents=True)
        assert StateDetector().detect(InstallationRoot(root)).kind == StateKind.UNRECOGNIZED


def test_corrupt_manifest_is_unrecognized():
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        (root / ".bmad-core").mkdir()
        (root / ".bmad-core" / "install-manifest.yaml").write_text("version: [unclosed\n")
        state = StateDetector().detect(InstallationRoot(root))
        assert state.kind == StateKind.UNRECOGNIZED
        assert state.manifest is None


def test_detects_expansion_packs():
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        _write_manifest(root)
        _write_manifest(root, "phaser", version="1.1.0")
        (root / ".infra").mkdir()
        (root / ".infra" / "config.yaml").write_text("name: infra\n")
        (root / ".git").mkdir()
        (root / ".git" / "config.yaml").write_text("")
        (root / ".vscode").mkdir()
        (root / ".vscode" / "settings.json").write_text("{}")
        (root / ".Bad_Pack").mkdir()
        (root / ".Bad_Pack" / "config.yaml").write_text("")

        state = StateDetector().detect(InstallationRoot(root))
        assert sorted(state.expansion_packs) == ["infra", "phaser"]
        assert state.expansion_packs["phaser"].has_manifest
        assert state.expansion_packs["phaser"].manifest.version == "1.1.0"
        assert not state.expansion_packs["infra"].has_manifest


def test_package_id_must_match_whole_name():
    assert is_valid_package_id("bmad-2d-phaser-game-dev")
    assert not is_valid_package_id("abc\n")
    assert not is_valid_package_id("Abc")
    assert not is_valid_package_id("")


def test_detection_does_not_write():
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        (root / ".bmad-core").mkdir()
        before = sorted(p.as_posix() for p in root.rglob("*"))
        StateDetector().detect(InstallationRoot(root))
        assert sorted(p.as_posix() for p in root.rglob("*")) == before


def test_normalize_root_strips_core_marker():
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        assert normalize_root(root / ".bmad-core").path == root.absolute()
        assert normalize_root(root).path == root.absolute()


def test_find_installation_walks_up():
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        _write_manifest(root)
        nested = root / "src" / "app"
        nested.mkdir(parents=True)

        found = find_installation(nested)
        assert found is not None
        assert found.path == root.absolute()


def test_find_installation_none_when_absent():
    with tempfile.TemporaryDirectory() as tmpdir:
        nested = Path(tmpdir) / "a" / "b"
        nested.mkdir(parents=True)
        found = find_installation(nested)
        assert found is None or not str(found.path).startswith(tmpdir)


def test_custom_markers_from_settings_file(monkeypatch):
    monkeypatch.delenv("PACKSMITH_SOURCE_ROOT", raising=False)
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        config = root / "settings.yaml"
        config.write_text("core_marker: .custom-core\nignore_dirs: [.git]\nunknown_key: 1\n")
        settings = load_settings(config)
        assert settings.core_marker == ".custom-core"
        assert settings.ignore_dirs == (".git",)
        assert settings.source_root is None

        ManifestStore(settings).write(
            InstallationRoot(root / "project"), Manifest(version="1.0.0", install_type=InstallType.FULL)
        )
        state = StateDetector(settings=settings).detect(InstallationRoot(root / "project"))
        assert state.kind == StateKind.CORE_PRESENT
        assert (root / "project" / ".custom-core" / "install-manifest.yaml").is_file()


def test_source_root_from_environment(monkeypatch):
    monkeypatch.setenv("PACKSMITH_SOURCE_ROOT", "/opt/bmad")
    assert load_settings().source_root == Path("/opt/bmad")
    assert InstallerSettings().source_root is None
