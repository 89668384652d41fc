"""Reconciliation — the install / upgrade / repair / reinstall state machine.

    clean ──install──────────────────────────────┐
    legacy ──migrate | alongside─────────────────┤
    unrecognized ──force─────────────────────────┤
                                                 ▼
    core_present ──upgrade | reinstall | repair──► installed (manifest rewritten)
                 ──expansions──► packs only
                 ──cancel──► untouched

Which actions are available is a pure function of the detected state, the
available version and the integrity report; the caller (a prompt, a CLI
flag, a test) picks one. Choosing a different root is the caller's business.

Every package follows the same order: back up conflicting files, write new
files, write the manifest last. A run interrupted before the manifest write
leaves the previous manifest in place, which understates what is on disk
and is repaired by the next run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from packsmith.config import CORE_PACKAGE_ID, InstallerSettings
from packsmith.errors import ActionNotAllowedError, PathError
from packsmith.models.installation import (
    InstallationRoot,
    InstallationState,
    InstallType,
    IntegrityReport,
    Manifest,
    ManifestEntry,
    StateKind,
    UnresolvedReference,
)
from packsmith.registry.collections import ResourceLocator
from packsmith.sync.file_sync import ConflictPolicy, FileSyncEngine, SyncItem, SyncResult
from packsmith.sync.integrity import IntegrityChecker
from packsmith.sync.manifest import ManifestStore
from packsmith.sync.plan import PackagePlan, Planner
from packsmith.sync.provenance import ProvenanceResolver
from packsmith.sync.state import StateDetector
from packsmith.sync.versions import compare_versions
from packsmith.utils.fs_atomic import fingerprint_file

logger = logging.getLogger(__name__)


class Action(Enum):
    """Root-level reconciliation actions."""

    INSTALL = "install"  # Fresh install on a clean root
    UPGRADE = "upgrade"  # Installed version is older than the available one
    REINSTALL = "reinstall"  # Same version again, or a downgrade
    REPAIR = "repair"  # Restore missing and modified files
    EXPANSIONS = "expansions"  # Add or update expansion packs only
    MIGRATE = "migrate"  # Leave a legacy layout behind and install fresh
    ALONGSIDE = "alongside"  # Install next to a legacy layout
    FORCE = "force"  # Install over an unrecognized core directory
    CANCEL = "cancel"


class PackAction(Enum):
    """Per expansion pack actions."""

    INSTALL = "install"
    UPGRADE = "upgrade"
    DOWNGRADE = "downgrade"
    OVERWRITE = "overwrite"
    REPAIR = "repair"
    SKIP = "skip"


FRESH_INSTALL_ACTIONS = {Action.INSTALL, Action.MIGRATE, Action.ALONGSIDE, Action.FORCE}


# --- Choosing an action ---


def available_actions(
    state: InstallationState,
    available_version: str,
    integrity: IntegrityReport | None = None,
) -> list[Action]:
    """Actions that make sense for *state*, most relevant first."""
    if state.kind == StateKind.CLEAN:
        return [Action.INSTALL, Action.CANCEL]
    if state.kind == StateKind.LEGACY:
        return [Action.MIGRATE, Action.ALONGSIDE, Action.CANCEL]
    if state.kind == StateKind.UNRECOGNIZED:
        return [Action.FORCE, Action.CANCEL]

    actions = []
    comparison = compare_versions(state.manifest.version, available_version)
    if comparison < 0:
        actions.append(Action.UPGRADE)
    elif comparison == 0:
        if integrity is not None and integrity.has_issues:
            actions.append(Action.REPAIR)
        actions.append(Action.REINSTALL)
    else:
        actions.append(Action.REINSTALL)
    actions += [Action.EXPANSIONS, Action.CANCEL]
    return actions


def recommended_action(
    state: InstallationState,
    available_version: str,
    integrity: IntegrityReport | None = None,
    expansion_only: bool = False,
) -> Action:
    """The action to take when nobody chose one.

    Legacy and unrecognized roots, and downgrades, always need an explicit
    choice, so the recommendation there is to cancel. An expansion-only
    request never touches an existing core package.
    """
    if state.kind == StateKind.CLEAN:
        return Action.INSTALL
    if state.kind != StateKind.CORE_PRESENT:
        return Action.CANCEL
    if expansion_only:
        return Action.EXPANSIONS

    comparison = compare_versions(state.manifest.version, available_version)
    if comparison < 0:
        return Action.UPGRADE
    if comparison > 0:
        return Action.CANCEL
    if integrity is not None and integrity.has_issues:
        return Action.REPAIR
    return Action.EXPANSIONS


def available_pack_actions(
    existing: Manifest | None,
    available_version: str,
    integrity: IntegrityReport | None = None,
) -> list[PackAction]:
    if existing is None:
        return [PackAction.INSTALL, PackAction.SKIP]

    comparison = compare_versions(existing.version, available_version)
    if comparison < 0:
        return [PackAction.UPGRADE, PackAction.SKIP]
    if comparison > 0:
        return [PackAction.SKIP, PackAction.DOWNGRADE]
    actions = []
    if integrity is not None and integrity.has_issues:
        actions.append(PackAction.REPAIR)
    return actions + [PackAction.OVERWRITE, PackAction.SKIP]


def recommended_pack_action(
    existing: Manifest | None,
    available_version: str,
    integrity: IntegrityReport | None = None,
) -> PackAction:
    if existing is None:
        return PackAction.INSTALL
    comparison = compare_versions(existing.version, available_version)
    if comparison < 0:
        return PackAction.UPGRADE
    if comparison == 0 and integrity is not None and integrity.has_issues:
        return PackAction.REPAIR
    return PackAction.SKIP


# --- Requests and results ---


@dataclass
class InstallRequest:
    """What the caller wants installed; supplied by the prompt or CLI layer."""

    install_type: InstallType | None = None  # None: full, or whatever is installed
    resource_id: str | None = None  # Agent or team id for partial installs
    expansion_packs: list[str] = field(default_factory=list)
    ides: set[str] = field(default_factory=set)
    conflict_policy: ConflictPolicy = ConflictPolicy.BACKUP
    pack_actions: dict[str, PackAction] = field(default_factory=dict)


@dataclass
class Assessment:
    """Everything needed to choose an action for a root."""

    state: InstallationState
    available_version: str
    integrity: IntegrityReport | None = None
    pack_integrity: dict[str, IntegrityReport] = field(default_factory=dict)
    actions: list[Action] = field(default_factory=list)
    recommended: Action = Action.CANCEL


@dataclass
class PackageOutcome:
    """What happened to one package during a reconciliation."""

    package_id: str
    action: str
    version: str = ""
    sync: SyncResult | None = None
    manifest_path: Path | None = None
    unresolved: list[UnresolvedReference] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)  # Stale files deleted
    kept: list[str] = field(default_factory=list)  # Stale files left because the user changed them
    unrestored: list[str] = field(default_factory=list)  # Repair targets with no source


@dataclass
class ReconcileResult:
    """Outcome of one reconcile() call."""

    action: Action
    state: InstallationState
    packages: list[PackageOutcome] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def cancelled(self) -> bool:
        return self.action == Action.CANCEL

    @property
    def unresolved(self) -> list[UnresolvedReference]:
        return [ref for outcome in self.packages for ref in outcome.unresolved]

    def package(self, package_id: str) -> PackageOutcome | None:
        for outcome in self.packages:
            if outcome.package_id == package_id:
                return outcome
        return None


# --- The engine ---


class Reconciler:
    """Runs reconciliation actions against installation roots."""

    def __init__(self, locator: ResourceLocator, settings: InstallerSettings | None = None):
        self.locator = locator
        self.settings = settings or locator.settings
        self.store = ManifestStore(self.settings)
        self.detector = StateDetector(self.store, self.settings)
        self.provenance = ProvenanceResolver(locator, self.settings)
        self.checker = IntegrityChecker(self.provenance, self.settings)
        self.engine = FileSyncEngine(self.settings)
        self.planner = Planner(locator, self.settings)

    def assess(self, root: InstallationRoot) -> Assessment:
        """Detect the root's state and work out which actions apply."""
        state = self.detector.detect(root)
        available = self.locator.core_version()
        assessment = Assessment(state=state, available_version=available)

        if state.manifest is not None:
            assessment.integrity = self.checker.check(root, state.manifest)
        for pack_id, detected in state.expansion_packs.items():
            if detected.manifest is not None:
                assessment.pack_integrity[pack_id] = self.checker.check(root, detected.manifest)

        assessment.actions = available_actions(state, available, assessment.integrity)
        assessment.recommended = recommended_action(state, available, assessment.integrity)
        return assessment

    def reconcile(
        self,
        root: InstallationRoot,
        action: Action | None = None,
        request: InstallRequest | None = None,
    ) -> ReconcileResult:
        """Apply *action* (default: the recommended one) to *root*.

        Raises:
            ActionNotAllowedError: the action does not apply to the root's state.
            PathError: the root cannot be created.
            WriteFailure: a file write failed; see the exception for progress.
        """
        request = request or InstallRequest()
        assessment = self.assess(root)
        state = assessment.state
        if action is None:
            expansion_only = request.install_type == InstallType.EXPANSION_ONLY
            action = recommended_action(state, assessment.available_version, assessment.integrity, expansion_only)

        if action not in assessment.actions:
            raise ActionNotAllowedError(action.value, state.kind.value)

        result = ReconcileResult(action=action, state=state)
        if action == Action.CANCEL:
            logger.info("Cancelled; %s left untouched", root)
            return result

        self._ensure_root(root)
        manifest = state.manifest

        if action in FRESH_INSTALL_ACTIONS:
            install_type = request.install_type or InstallType.FULL
            if install_type != InstallType.EXPANSION_ONLY:
                plan = self.planner.core_plan(install_type, request.resource_id)
                result.packages.append(
                    self._install_package(root, plan, None, request.conflict_policy, request.ides, action, state, request)
                )
        elif action == Action.UPGRADE:
            plan = self.planner.core_plan(manifest.install_type, manifest.selected_resource)
            ides = request.ides or manifest.ides_configured
            result.packages.append(
                self._install_package(root, plan, manifest, request.conflict_policy, ides, action, state, request)
            )
        elif action == Action.REINSTALL:
            install_type = request.install_type or manifest.install_type
            resource_id = request.resource_id
            if request.install_type is None:
                resource_id = manifest.selected_resource
            if install_type != InstallType.EXPANSION_ONLY:
                plan = self.planner.core_plan(install_type, resource_id)
                ides = request.ides or manifest.ides_configured
                result.packages.append(
                    self._install_package(root, plan, manifest, request.conflict_policy, ides, action, state, request)
                )
        elif action == Action.REPAIR:
            result.packages.append(self._repair(root, manifest, assessment.integrity))

        for pack_id in request.expansion_packs:
            outcome = self._reconcile_pack(root, pack_id, state, request, result)
            if outcome is not None:
                result.packages.append(outcome)

        if action in (Action.EXPANSIONS, Action.REPAIR):
            self._record_packs(root, state, request)

        for outcome in result.packages:
            for ref in outcome.unresolved:
                result.warnings.append(f"Unresolved dependency {ref.describe()}")
        return result

    # -- packages ------------------------------------------------------------

    def _reconcile_pack(
        self,
        root: InstallationRoot,
        pack_id: str,
        state: InstallationState,
        request: InstallRequest,
        result: ReconcileResult,
    ) -> PackageOutcome | None:
        pack = self.locator.get_expansion_pack(pack_id)
        if pack is None:
            message = f"Expansion pack {pack_id} not found, skipping"
            logger.warning(message)
            result.warnings.append(message)
            return None

        detected = state.expansion_packs.get(pack_id)
        existing = detected.manifest if detected else self.store.read(root, pack_id)
        integrity = self.checker.check(root, existing) if existing else None

        action = request.pack_actions.get(pack_id) or recommended_pack_action(
            existing, pack.version, integrity
        )
        if action not in available_pack_actions(existing, pack.version, integrity):
            raise ActionNotAllowedError(action.value, f"{pack_id} installed" if existing else f"{pack_id} absent")

        if action == PackAction.SKIP:
            return PackageOutcome(package_id=pack_id, action=action.value, version=existing.version if existing else "")
        if action == PackAction.REPAIR:
            return self._repair(root, existing, integrity)

        plan = self.planner.pack_plan(pack)
        ides = request.ides or (existing.ides_configured if existing else set())
        return self._install_package(root, plan, existing, request.conflict_policy, ides, action, state, request)

    def _install_package(
        self,
        root: InstallationRoot,
        plan: PackagePlan,
        previous: Manifest | None,
        policy: ConflictPolicy,
        ides: set[str],
        action: Action | PackAction,
        state: InstallationState,
        request: InstallRequest,
    ) -> PackageOutcome:
        outcome = PackageOutcome(
            package_id=plan.package_id,
            action=action.value,
            version=plan.version,
            unresolved=list(plan.unresolved),
        )
        pristine = previous.recorded_hashes() if previous else {}

        sync = self.engine.sync(plan.items, root, plan.token, policy, pristine)
        outcome.sync = sync

        entries = []
        for target in plan.targets:
            if target in sync.hashes:
                entries.append(ManifestEntry(path=target, hash=sync.hashes[target]))
            elif previous is not None and previous.entry(target) is not None:
                # Skipped: keep the old fingerprint so the edit stays visible.
                entries.append(previous.entry(target))

        if previous is not None:
            self._drop_stale(root, previous, set(plan.targets), outcome)
            self._cleanup_legacy_yml(root, plan.token, previous, set(plan.targets), outcome)

        manifest = Manifest(
            version=plan.version,
            install_type=plan.install_type,
            selected_resource=plan.selected_resource,
            ides_configured=set(ides),
            files=entries,
            package_id=plan.package_id,
            package_name=plan.package_name,
        )
        if plan.package_id == CORE_PACKAGE_ID:
            manifest.expansion_packs = self._pack_ids(state, request)

        outcome.manifest_path = self.store.write(root, manifest, plan.package_id)
        logger.info("%s %s %s (%d files)", action.value, plan.token, plan.version, len(entries))
        return outcome

    def _repair(
        self,
        root: InstallationRoot,
        manifest: Manifest,
        integrity: IntegrityReport | None,
    ) -> PackageOutcome:
        """Restore missing and modified files of one package from source.

        Modified files are backed up before being replaced. Missing files with
        no source left are dropped from the manifest.
        """
        integrity = integrity or self.checker.check(root, manifest)
        token = self.settings.package_dir_name(manifest.package_id)
        outcome = PackageOutcome(
            package_id=manifest.package_id,
            action=Action.REPAIR.value,
            version=manifest.version,
        )

        items = []
        for path in integrity.missing + integrity.modified:
            ref = self.provenance.source_for(path)
            if ref is None:
                logger.warning("Source file not found for %s; cannot restore it", path)
                outcome.unrestored.append(path)
                continue
            items.append(SyncItem(source=ref.path, target=path))

        sync = self.engine.sync(items, root, token, ConflictPolicy.BACKUP)
        outcome.sync = sync

        missing = set(integrity.missing)
        entries = []
        for entry in manifest.files:
            if entry.path in sync.hashes:
                entries.append(ManifestEntry(path=entry.path, hash=sync.hashes[entry.path]))
            elif entry.path in outcome.unrestored and entry.path in missing:
                continue
            else:
                entries.append(entry)

        self._cleanup_legacy_yml(root, token, manifest, set(manifest.file_paths), outcome)

        repaired = Manifest(
            version=manifest.version,
            install_type=manifest.install_type,
            installed_at=manifest.installed_at,
            selected_resource=manifest.selected_resource,
            ides_configured=set(manifest.ides_configured),
            files=entries,
            package_id=manifest.package_id,
            package_name=manifest.package_name,
            expansion_packs=list(manifest.expansion_packs),
        )
        outcome.manifest_path = self.store.write(root, repaired, manifest.package_id)
        logger.info(
            "Repaired %s: %d restored, %d backed up",
            token,
            len(sync.written),
            len(sync.backups),
        )
        return outcome

    # -- housekeeping --------------------------------------------------------

    def _drop_stale(
        self,
        root: InstallationRoot,
        previous: Manifest,
        targets: set[str],
        outcome: PackageOutcome,
    ) -> None:
        """Delete files the previous install wrote that the new one does not.

        Only files that still match their recorded fingerprint are deleted;
        anything the user changed, or that was recorded without a
        fingerprint, is left in place.
        """
        manifest_rel = self.store.manifest_relative_path(previous.package_id)
        for entry in previous.files:
            if entry.path in targets or entry.path == manifest_rel:
                continue
            path = root.resolve(entry.path)
            if not path.is_file():
                continue
            if entry.hash and fingerprint_file(path, len(entry.hash)) == entry.hash:
                path.unlink()
                outcome.removed.append(entry.path)
            else:
                logger.warning("Leaving %s in place: it is no longer installed but was modified", entry.path)
                outcome.kept.append(entry.path)

    def _cleanup_legacy_yml(
        self,
        root: InstallationRoot,
        token: str,
        previous: Manifest,
        keep: set[str],
        outcome: PackageOutcome,
    ) -> None:
        """Remove ``.yml`` files superseded by a ``.yaml`` sibling.

        A ``.yml`` file goes only if it is not part of the current install and
        is provably ours: it matches its recorded fingerprint, or it is
        byte-identical to its ``.yaml`` sibling.
        """
        package_dir = root.path / token
        if not package_dir.is_dir():
            return
        recorded = previous.recorded_hashes()
        for yml in sorted(package_dir.rglob("*.yml")):
            if not yml.with_suffix(".yaml").is_file():
                continue
            rel = root.relative(yml)
            if rel in keep:
                continue
            expected = recorded.get(rel)
            if expected:
                removable = fingerprint_file(yml, len(expected)) == expected
            else:
                removable = yml.read_bytes() == yml.with_suffix(".yaml").read_bytes()
            if removable:
                yml.unlink()
                outcome.removed.append(rel)
                logger.debug("Removed legacy %s", rel)

    def _record_packs(self, root: InstallationRoot, state: InstallationState, request: InstallRequest) -> None:
        """Refresh the core manifest's pack list when the core itself was not reinstalled."""
        manifest = self.store.read(root, CORE_PACKAGE_ID)
        if manifest is None:
            return
        pack_ids = self._pack_ids(state, request)
        if pack_ids == manifest.expansion_packs:
            return
        manifest.expansion_packs = pack_ids
        self.store.write(root, manifest, CORE_PACKAGE_ID)

    def _pack_ids(self, state: InstallationState, request: InstallRequest) -> list[str]:
        ids = {pack_id for pack_id, pack in state.expansion_packs.items() if pack.has_manifest}
        ids.update(
            pack_id
            for pack_id in request.expansion_packs
            if self.locator.get_expansion_pack(pack_id) is not None
            and request.pack_actions.get(pack_id) != PackAction.SKIP
        )
        return sorted(ids)

    def _ensure_root(self, root: InstallationRoot) -> None:
        if root.path.is_dir():
            return
        try:
            root.path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PathError(f"Cannot create installation root ({e})", root.path) from e
