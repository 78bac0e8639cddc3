"""Resolution session: declares, deduplicates and populates a dependency tree."""

import logging
from collections import Counter
from pathlib import Path
from typing import Dict, List, Optional, Set, TextIO, Tuple, Union

from .config import ManagerConfig
from .exceptions import FetchFailed, MalformedVersion, UnresolvedDependency
from .fetcher import GitSourceFetcher, SourceFetcher
from .formatters import GraphExporter
from .models import DeclaredDependency, DependencyNode, NodeStatus
from .node_store import NodeStore
from .parsers import ManifestReader
from .population import PopulationGuard
from .resolver import Declaration, DuplicateResolver
from .version_parser import VersionParser, VersionRange, VersionSpec

logger = logging.getLogger(__name__)


class DependencyManager:
    """
    One resolution pass over a declaration tree.

    Owns the NodeStore, DuplicateResolver and PopulationGuard of the pass;
    nothing is shared between instances except what PopulationGuard persists
    on disk. Declarations made while a dependency is being made available
    name their declaring node explicitly through the parent argument.

    Usage:
        with DependencyManager(ManagerConfig.from_env()) as manager:
            manager.resolve_manifest("depmanager.json")
            print(manager.export_graph(fmt="tree"))
    """

    def __init__(self, config: Optional[ManagerConfig] = None, fetcher: Optional[SourceFetcher] = None):
        self.config = config or ManagerConfig.from_env()
        self.fetcher = fetcher or GitSourceFetcher()
        self.store = NodeStore()
        self.resolver = DuplicateResolver(self.store, self.config.policy)
        self.guard = PopulationGuard(
            self.fetcher,
            self.config.base_dir,
            self.config.effective_stamp_dir,
            force_update=self.config.force_update
        )
        self._configured: Set[int] = set()
        # (declaring chain, name, error) of declarations skipped for a malformed range
        self.malformed: List[Tuple[str, str, MalformedVersion]] = []

    @property
    def root_id(self) -> int:
        """Id of the top-level project node, created on first use."""
        if self.store.root_id is None:
            self.set_root("project")
        return self.store.root_id

    def set_root(self, name: str, version: Optional[VersionSpec] = None,
                 source_dir: Optional[Path] = None) -> int:
        """Create the top-level project node."""
        root_id = self.store.create_node(name, "", "")
        self.store.finalize(root_id, version)
        self.store.get(root_id).source_dir = source_dir
        logger.info(f"Resolving dependencies of '{name}'" + (f" {version}" if version else ""))
        return root_id

    def declare(
        self,
        name: str,
        repository: str,
        reference: str = "",
        version_range: Union[str, VersionRange, None] = None,
        parent: Optional[int] = None,
        patch_command: Optional[str] = None,
        version_error: Optional[bool] = None
    ) -> int:
        """
        Declare a dependency and return its node id.

        Args:
            name: Logical dependency name; declarations sharing it are duplicates
            repository: Git URL/path or source archive URL
            reference: Commit, tag or branch to check out
            version_range: Range expression (e.g. ">=1,2") or VersionRange
            parent: Declaring node id; the root project when omitted
            patch_command: Command run inside the checkout after fetching
            version_error: False downgrades a version conflict of this
                declaration to a warning

        Raises:
            VersionConflict: A strict-mode duplicate whose range rejects the
                already selected version
        """
        if not isinstance(version_range, VersionRange):
            version_range = VersionParser.parse_range(version_range)
        parent_id = self.root_id if parent is None else parent

        node_id, outcome = self.resolver.declare(
            name, repository, reference, version_range, parent_id, patch_command, version_error
        )
        if outcome is not Declaration.FIRST:
            logger.debug(f"Declaration of '{name}' under #{parent_id} classified as {outcome.value}")
        return node_id

    def populate(self, node_id: int, make_available: bool = True) -> DependencyNode:
        """
        Fetch a declared dependency if it owns the fetch, then configure it.

        Duplicates are never fetched: accepted ones already point at their
        primary's sources, deferred ones are checked once the primary
        populates. Populating a node twice is a no-op.

        Args:
            make_available: Also read the dependency's manifest and declare
                and populate its own dependencies under it

        Raises:
            FetchFailed: The fetch primitive failed for this node
            UnresolvedDependency: The node is a duplicate of a node whose
                fetch failed
            VersionConflict: A deferred duplicate rejects the fetched version
        """
        node = self.store.get(node_id)
        if node.is_root or node.status is not NodeStatus.PENDING:
            return node
        if node.failure is not None:
            if not node.is_primary:
                raise UnresolvedDependency(
                    node.name, self.store.describe_chain(node_id),
                    self.store.describe_chain(node.duplicate_of), node.failure
                )
            raise FetchFailed(node.name, node.reference, RuntimeError(node.failure),
                              self.store.describe_chain(node_id))
        if not node.is_primary:
            return node

        try:
            result = self.guard.populate(node.name, node.repository, node.reference, node.patch_command)
        except FetchFailed as e:
            self.store.mark_failed(node_id, str(e.error))
            try:
                self.resolver.notify_failed(node_id, e.error)
            except UnresolvedDependency as unresolved:
                logger.error(str(unresolved))
            raise FetchFailed(node.name, node.reference, e.error, self.store.describe_chain(node_id)) from e.error

        node.source_dir = result.source_dir
        version = self.fetcher.read_declared_version(result.source_dir)
        self.store.finalize(node_id, version)
        logger.info(
            f"Populated '{node.name}' {version if version is not None else '(no version)'} "
            f"at {result.source_dir}" + ("" if result.fetched else " (reused)")
        )

        self.resolver.notify_populated(node_id)

        if make_available:
            self._configure(node_id, make_available)
        return node

    def add(
        self,
        name: str,
        repository: str,
        reference: str = "",
        version_range: Union[str, VersionRange, None] = None,
        parent: Optional[int] = None,
        patch_command: Optional[str] = None,
        make_available: bool = True,
        version_error: Optional[bool] = None
    ) -> int:
        """Declare and populate in one step; returns the node id."""
        node_id = self.declare(name, repository, reference, version_range, parent, patch_command, version_error)
        self.populate(node_id, make_available)
        return node_id

    def resolve_manifest(self, manifest_path, make_available: bool = True) -> NodeStore:
        """Resolve every dependency declared by a top-level manifest."""
        manifest_path = Path(manifest_path)
        manifest = ManifestReader.read(manifest_path)
        root_id = self.set_root(
            manifest.name or manifest_path.resolve().parent.name,
            manifest.version,
            manifest_path.parent
        )

        for dep in manifest.dependencies:
            self._add_declared(dep, root_id, make_available)

        counts = self.status_counts()
        logger.info(
            f"Resolved {len(self.store) - 1} declarations: "
            + ", ".join(f"{counts[status]} {status.value}" for status in NodeStatus if counts[status])
        )
        logger.info(f"Fetched {self.guard.fetch_count} dependencies")
        if self.malformed:
            logger.warning(f"Skipped {len(self.malformed)} declarations with malformed version ranges")

        if self.config.dotgraph:
            self.write_dotgraph(self.config.dotgraph)
        return self.store

    def source_dir(self, name: str) -> Optional[Path]:
        """Sources selected for a dependency name, once populated."""
        primary_id = self.resolver.primary_for(name)
        if primary_id is None:
            return None
        return self.store.get(primary_id).source_dir

    def status_counts(self) -> Dict[NodeStatus, int]:
        """Non-root node counts per status."""
        return Counter(node.status for node in self.store.nodes() if not node.is_root)

    def export_graph(self, sink: Optional[TextIO] = None, fmt: str = "dot") -> str:
        """Render the dependency graph, writing it to sink when given."""
        text = GraphExporter.export(self.store, fmt)
        if sink is not None:
            sink.write(text)
        return text

    def write_dotgraph(self, path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            self.export_graph(f, "dot")
        logger.info(f"Dependency graph written to {path}")
        return path

    def _configure(self, node_id: int, make_available: bool) -> None:
        if node_id in self._configured:
            return
        self._configured.add(node_id)

        node = self.store.get(node_id)
        manifest = ManifestReader.read_source_tree(node.source_dir)
        for dep in manifest.dependencies:
            self._add_declared(dep, node_id, make_available)

    def _add_declared(self, dep: DeclaredDependency, declaring_id: int, make_available: bool) -> Optional[int]:
        """Add a manifest declaration; a malformed range only skips this declaration."""
        parent_id = declaring_id
        if dep.parent_name:
            named_parent = self.resolver.primary_for(dep.parent_name)
            if named_parent is None:
                logger.warning(
                    f"'{dep.name}' names unknown parent '{dep.parent_name}'; "
                    f"declaring it under [{self.store.describe_chain(declaring_id)}]"
                )
            else:
                parent_id = named_parent

        try:
            version_range = VersionParser.parse_range(dep.version_range)
        except MalformedVersion as e:
            self.malformed.append((self.store.describe_chain(parent_id), dep.name, e))
            logger.error(
                f"Skipping '{dep.name}' declared by [{self.store.describe_chain(parent_id)}]: {e}"
            )
            return None

        return self.add(
            dep.name, dep.repository, dep.reference, version_range,
            parent=parent_id, patch_command=dep.patch_command, make_available=make_available
        )

    def close(self) -> None:
        self.fetcher.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
