"""Install planning — the complete file set for one package.

A plan lists every file a package install writes, with its source and its
root-relative target, before anything is written. Manifests are built from
plans, so they are never written from a partial list.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from packsmith.config import AGENT_KIND, CORE_PACKAGE_ID, TEAM_KIND, InstallerSettings
from packsmith.errors import InstallPlanError, MetadataError, ResourceNotFoundError
from packsmith.models.installation import (
    InstallType,
    ResourceDescriptor,
    UnresolvedReference,
)
from packsmith.registry.collections import ExpansionPackInfo, ResourceLocator, SourceCollection
from packsmith.registry.metadata import load_descriptor
from packsmith.registry.resolver import DependencyResolver
from packsmith.sync.file_sync import SyncItem

logger = logging.getLogger(__name__)


@dataclass
class PackagePlan:
    """Everything needed to install one package."""

    package_id: str
    token: str  # Package directory name; replaces the path placeholder
    install_type: InstallType
    version: str
    items: list[SyncItem] = field(default_factory=list)
    unresolved: list[UnresolvedReference] = field(default_factory=list)
    selected_resource: str | None = None
    package_name: str = ""

    @property
    def targets(self) -> list[str]:
        return [item.target for item in self.items]


class _ItemSet:
    """Ordered target -> SyncItem map; later additions replace earlier ones."""

    def __init__(self):
        self._items: dict[str, SyncItem] = {}

    def add(self, target: str, source: Path, replace: bool = True) -> None:
        if not replace and target in self._items:
            return
        self._items[target] = SyncItem(source=source, target=target)

    def __contains__(self, target: str) -> bool:
        return target in self._items

    def items(self) -> list[SyncItem]:
        return list(self._items.values())


class Planner:
    """Builds package plans from the source distribution."""

    def __init__(
        self,
        locator: ResourceLocator,
        settings: InstallerSettings | None = None,
        resolver: DependencyResolver | None = None,
    ):
        self.locator = locator
        self.settings = settings or locator.settings
        self.resolver = resolver or DependencyResolver(self.settings)

    def core_plan(self, install_type: InstallType, resource_id: str | None = None) -> PackagePlan:
        """Plan a core install: the full collection, one agent, or one team.

        Common files are always included and take precedence over same-named
        core files.
        """
        token = self.settings.core_marker
        core = self.locator.core()
        plan = PackagePlan(
            package_id=CORE_PACKAGE_ID,
            token=token,
            install_type=install_type,
            version=self.locator.core_version(),
        )
        items = _ItemSet()

        if install_type == InstallType.FULL:
            for rel in core.files(set(self.settings.ignore_dirs)):
                if rel == self.settings.manifest_name:
                    continue
                items.add(f"{token}/{rel}", core.path / rel)
        elif install_type in (InstallType.SINGLE_AGENT, InstallType.TEAM):
            if not resource_id:
                raise InstallPlanError(install_type.value, "no agent or team is selected")
            kind = AGENT_KIND if install_type == InstallType.SINGLE_AGENT else TEAM_KIND
            plan.selected_resource = resource_id
            self._add_resource_closure(plan, items, core, kind, resource_id)
        else:
            raise InstallPlanError(install_type.value, "not a core install type")

        self._add_common(items, token)
        plan.items = items.items()
        return plan

    def pack_plan(self, pack: ExpansionPackInfo) -> PackagePlan:
        """Plan an expansion pack install.

        Copies the pack's own folders and top-level files plus common files,
        then adds whatever core agents and dependencies the pack's agents and
        teams need but do not ship.
        """
        token = self.settings.package_dir_name(pack.id)
        collection = pack.collection
        plan = PackagePlan(
            package_id=pack.id,
            token=token,
            install_type=InstallType.EXPANSION_PACK,
            version=pack.version,
            package_name=pack.name,
        )
        items = _ItemSet()
        skip = set(self.settings.ignore_dirs)

        for folder in self.settings.pack_folders:
            folder_collection = SourceCollection(name=pack.id, path=pack.path / folder)
            for rel in folder_collection.files(skip):
                items.add(f"{token}/{folder}/{rel}", pack.path / folder / rel)

        for name in self.settings.pack_extra_files:
            if (pack.path / name).is_file():
                items.add(f"{token}/{name}", pack.path / name)

        self._add_common(items, token)

        descriptors: list[ResourceDescriptor] = []
        for kind, suffix in ((AGENT_KIND, ".md"), (TEAM_KIND, ".yaml")):
            for resource_id in collection.names(kind, suffix):
                path = pack.path / kind / f"{resource_id}{suffix}"
                try:
                    descriptors.append(load_descriptor(path, kind, pack.id))
                except MetadataError as e:
                    plan.unresolved.append(
                        UnresolvedReference(
                            name=path.name,
                            kind=kind,
                            requested_by=pack.id,
                            reason=f"unreadable metadata: {e.reason}",
                        )
                    )

        closure = self.resolver.resolve(descriptors, self.locator.search_order(pack.id))
        for resolved in closure.files:
            items.add(f"{token}/{resolved.relative_path}", resolved.source_path, replace=False)
        plan.unresolved.extend(closure.unresolved)

        plan.items = items.items()
        return plan

    def _add_resource_closure(
        self,
        plan: PackagePlan,
        items: _ItemSet,
        core: SourceCollection,
        kind: str,
        resource_id: str,
    ) -> None:
        path = core.find(kind, f"{resource_id}{self.settings.default_extension(kind)}")
        if path is None:
            raise ResourceNotFoundError("agent" if kind == AGENT_KIND else "team", resource_id)

        try:
            descriptor = load_descriptor(path, kind, core.name)
        except MetadataError as e:
            logger.warning("%s", e)
            items.add(f"{plan.token}/{kind}/{path.name}", path)
            plan.unresolved.append(
                UnresolvedReference(
                    name=path.name,
                    kind=kind,
                    requested_by=resource_id,
                    reason=f"unreadable metadata: {e.reason}",
                )
            )
            return

        closure = self.resolver.resolve([descriptor], self.locator.search_order(CORE_PACKAGE_ID))
        for resolved in closure.files:
            items.add(f"{plan.token}/{resolved.relative_path}", resolved.source_path)
        plan.unresolved.extend(closure.unresolved)

    def _add_common(self, items: _ItemSet, token: str) -> None:
        common = self.locator.common()
        if not common.path.is_dir():
            logger.warning("Common collection not found at %s", common.path)
            return
        for rel in common.files(set(self.settings.ignore_dirs)):
            items.add(f"{token}/{rel}", common.path / rel)
