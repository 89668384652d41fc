"""Dependency resolver — expand agents and teams into a concrete file set.

Resolution is breadth-first over declared references. Each reference is
looked up in the search order (owning package, then core, then common) and
the first collection that has it wins. Agents and teams reached this way are
parsed and expanded in turn; a visited set keyed on ``(kind, filename)``
keeps cyclic graphs finite. Missing files and unreadable metadata are
collected as unresolved references instead of being raised.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterable
from pathlib import Path

from packsmith.config import AGENT_KIND, InstallerSettings
from packsmith.errors import MetadataError
from packsmith.models.installation import (
    DependencyClosure,
    ResolvedFile,
    ResourceDescriptor,
    UnresolvedReference,
)
from packsmith.registry.collections import SourceCollection, is_glob
from packsmith.registry.metadata import RESOURCE_KINDS, load_descriptor

logger = logging.getLogger(__name__)

KNOWN_EXTENSIONS = {".md", ".yaml", ".yml", ".txt", ".json", ".csv"}


class DependencyResolver:
    """Computes dependency closures over a prioritized list of collections."""

    def __init__(self, settings: InstallerSettings | None = None):
        self.settings = settings or InstallerSettings()

    def normalize(self, kind: str, name: str) -> str:
        """Add the kind's default extension to a bare name."""
        if Path(name).suffix.lower() in KNOWN_EXTENSIONS:
            return name
        return name + self.settings.default_extension(kind)

    def resolve(
        self,
        resources: Iterable[ResourceDescriptor],
        search_order: list[SourceCollection],
    ) -> DependencyClosure:
        """Return every file reachable from *resources*, plus what was not found.

        The resources' own files are part of the closure. Results are sorted,
        so the closure does not depend on traversal order.
        """
        run = _Resolution(self, search_order)
        for resource in resources:
            run.seed(resource)
        run.drain()
        return run.closure()

    def references(self, resource: ResourceDescriptor) -> list[tuple[str, str]]:
        """``(kind, name)`` pairs declared by a resource, in walk order.

        A team always needs the orchestrator agent, listed or not.
        """
        refs: list[tuple[str, str]] = []
        if resource.is_team:
            agents = list(resource.agents)
            orchestrator = self.settings.orchestrator_agent
            if orchestrator not in agents and "*" not in agents:
                agents.insert(0, orchestrator)
            refs.extend((AGENT_KIND, agent) for agent in agents)

        ordered_kinds = list(self.settings.dependency_kinds)
        ordered_kinds += [k for k in resource.dependencies if k not in ordered_kinds]
        for kind in ordered_kinds:
            for name in resource.dependencies.get(kind, []):
                refs.append((kind, name))
        return refs


class _Resolution:
    """State of one resolve() call."""

    def __init__(self, resolver: DependencyResolver, search_order: list[SourceCollection]):
        self.resolver = resolver
        self.search_order = search_order
        self.visited: set[tuple[str, str]] = set()
        self.files: dict[tuple[str, str], ResolvedFile] = {}
        self.unresolved: set[UnresolvedReference] = set()
        self.queue: deque[ResourceDescriptor] = deque()

    def seed(self, resource: ResourceDescriptor) -> None:
        if resource.key in self.visited:
            return
        self.visited.add(resource.key)
        self.files[resource.key] = ResolvedFile(
            kind=resource.kind,
            filename=resource.filename,
            collection=resource.package,
            source_path=resource.source_path,
        )
        self.queue.append(resource)

    def drain(self) -> None:
        while self.queue:
            resource = self.queue.popleft()
            for kind, name in self.resolver.references(resource):
                self._resolve_reference(kind, name, resource)

    def closure(self) -> DependencyClosure:
        return DependencyClosure(
            files=sorted(self.files.values(), key=lambda f: (f.kind, f.filename)),
            unresolved=sorted(
                self.unresolved, key=lambda u: (u.kind, u.name, u.requested_by, u.reason)
            ),
        )

    def _resolve_reference(self, kind: str, name: str, requester: ResourceDescriptor) -> None:
        if is_glob(name):
            extension = self.resolver.settings.default_extension(kind)
            matched = False
            for collection in self.search_order:
                for filename in collection.match(kind, name, extension):
                    matched = True
                    path = collection.path / kind / filename
                    self._add(kind, filename, collection, path, requester)
            if not matched:
                self._unresolved(kind, name, requester, "pattern matched no files")
            return

        filename = self.resolver.normalize(kind, name)
        for collection in self.search_order:
            path = collection.find(kind, filename)
            if path is not None:
                self._add(kind, filename, collection, path, requester)
                return
        self._unresolved(kind, filename, requester, "not found in any collection")

    def _add(
        self,
        kind: str,
        filename: str,
        collection: SourceCollection,
        path: Path,
        requester: ResourceDescriptor,
    ) -> None:
        key = (kind, filename)
        if key in self.visited:
            return
        self.visited.add(key)
        self.files[key] = ResolvedFile(
            kind=kind, filename=filename, collection=collection.name, source_path=path
        )
        logger.debug("Resolved %s/%s from %s for %s", kind, filename, collection.name, requester.id)

        if kind not in RESOURCE_KINDS:
            return
        try:
            descriptor = load_descriptor(path, kind, collection.name)
        except MetadataError as e:
            self._unresolved(kind, filename, requester, f"unreadable metadata: {e.reason}")
            return
        self.queue.append(descriptor)

    def _unresolved(self, kind: str, name: str, requester: ResourceDescriptor, reason: str) -> None:
        reference = UnresolvedReference(name=name, kind=kind, requested_by=requester.id, reason=reason)
        if reference not in self.unresolved:
            logger.warning("Unresolved dependency %s", reference.describe())
        self.unresolved.add(reference)
