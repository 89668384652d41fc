"""Tests for integrity checking and provenance lookup."""

from conftest import PACK_ID
from packsmith.config import CORE_PACKAGE_ID
from packsmith.models.installation import InstallationRoot, InstallType, Manifest, ManifestEntry
from packsmith.registry.collections import ResourceLocator
from packsmith.sync.file_sync import FileSyncEngine
from packsmith.sync.integrity import IntegrityChecker
from packsmith.sync.plan import Planner
from packsmith.sync.provenance import ProvenanceResolver


def _install_full(source_root, project_dir):
    locator = ResourceLocator(source_root)
    plan = Planner(locator).core_plan(InstallType.FULL)
    root = InstallationRoot(project_dir)
    result = FileSyncEngine().sync(plan.items, root, plan.token)
    manifest = Manifest(
        version=plan.version,
        install_type=InstallType.FULL,
        files=[ManifestEntry(path=t, hash=result.hashes[t]) for t in plan.targets],
    )
    return locator, root, manifest


def test_clean_install_has_no_issues(source_root, project_dir):
    _, root, manifest = _install_full(source_root, project_dir)
    report = IntegrityChecker().check(root, manifest)
    assert not report.has_issues
    assert report.summary() == "all files intact"


def test_missing_and_modified_are_exclusive(source_root, project_dir):
    _, root, manifest = _install_full(source_root, project_dir)
    root.resolve(".bmad-core/agents/dev.md").unlink()
    root.resolve(".bmad-core/tasks/create-doc.md").write_text("edited\n")

    report = IntegrityChecker().check(root, manifest)
    assert report.missing == [".bmad-core/agents/dev.md"]
    assert report.modified == [".bmad-core/tasks/create-doc.md"]
    assert not set(report.missing) & set(report.modified)
    assert report.summary() == "1 missing, 1 modified"


def test_entries_without_hash_are_rederived_from_source(source_root, project_dir):
    locator, root, manifest = _install_full(source_root, project_dir)
    bare = Manifest(
        version=manifest.version,
        install_type=manifest.install_type,
        files=[ManifestEntry(path=entry.path) for entry in manifest.files],
    )
    checker = IntegrityChecker(ProvenanceResolver(locator))
    assert not checker.check(root, bare).has_issues

    root.resolve(".bmad-core/tasks/develop-story.md").write_text("edited\n")
    assert checker.modified_files(root, bare) == [".bmad-core/tasks/develop-story.md"]


def test_entries_without_hash_or_source_are_unverified(source_root, project_dir):
    _, root, _ = _install_full(source_root, project_dir)
    manifest = Manifest(
        version="1.2.0",
        install_type=InstallType.FULL,
        files=[ManifestEntry(path=".bmad-core/agents/dev.md")],
    )
    report = IntegrityChecker().check(root, manifest)
    assert report.unverified == [".bmad-core/agents/dev.md"]
    assert not report.has_issues


def test_manifest_file_itself_is_not_checked(source_root, project_dir):
    _, root, manifest = _install_full(source_root, project_dir)
    manifest.files.append(ManifestEntry(path=".bmad-core/install-manifest.yaml", hash="0" * 16))
    assert not IntegrityChecker().check(root, manifest).has_issues


def test_provenance_prefers_common_then_package(source_root):
    provenance = ProvenanceResolver(ResourceLocator(source_root))

    ref = provenance.source_for(".bmad-core/tasks/execute-checklist.md")
    assert ref.collection == "common"
    assert ref.package_id == CORE_PACKAGE_ID
    assert ref.token == ".bmad-core"

    ref = provenance.source_for(f".{PACK_ID}/tasks/create-game-doc.md")
    assert ref.collection == PACK_ID
    assert ref.token == f".{PACK_ID}"

    ref = provenance.source_for(f".{PACK_ID}/tasks/create-doc.md")
    assert ref.collection == "bmad-core"

    assert provenance.source_for(".bmad-core/tasks/nope.md") is None
    assert provenance.source_for("README.md") is None
