"""In-memory registry of dependency nodes for one resolution pass."""

import logging
from collections import defaultdict
from typing import Dict, Iterator, List, Optional

from .exceptions import InvalidTransition, NodeNotFound
from .models import DependencyNode, NodeStatus
from .version_parser import VersionRange, VersionSpec

logger = logging.getLogger(__name__)


class NodeStore:
    """
    Registry of every dependency declaration seen during a resolution pass.

    Ids are handed out in creation order and never reused, so id order is
    also declaration order. The node created without a parent is the root
    (the top-level project); only one root may exist.
    """

    def __init__(self):
        self._nodes: List[DependencyNode] = []
        self._by_name: Dict[str, List[int]] = defaultdict(list)
        self.root_id: Optional[int] = None

    def create_node(
        self,
        name: str,
        repository: str,
        reference: str,
        version_range: Optional[VersionRange] = None,
        parent_id: Optional[int] = None,
        patch_command: Optional[str] = None
    ) -> int:
        """Create a pending node and link it under its parent."""
        if parent_id is None:
            if self.root_id is not None:
                raise InvalidTransition(
                    f"Cannot create root '{name}': root '{self.get(self.root_id).name}' already exists"
                )
        else:
            parent = self.get(parent_id)

        node_id = len(self._nodes)
        node = DependencyNode(
            id=node_id,
            name=name,
            repository=repository,
            reference=reference,
            requested_range=version_range or VersionRange.any(),
            parent_id=parent_id,
            patch_command=patch_command
        )
        self._nodes.append(node)
        self._by_name[name].append(node_id)

        if parent_id is None:
            self.root_id = node_id
            logger.debug(f"Created root node {node}")
        else:
            parent.add_child(node_id)
            logger.debug(f"Created node {node} under #{parent_id}")

        return node_id

    def get(self, node_id: int) -> DependencyNode:
        if not isinstance(node_id, int) or node_id < 0 or node_id >= len(self._nodes):
            raise NodeNotFound(node_id)
        return self._nodes[node_id]

    def lookup_by_name(self, name: str) -> List[int]:
        """All node ids ever created with this name, in creation order."""
        return list(self._by_name.get(name, []))

    def finalize(self, node_id: int, resolved_version: Optional[VersionSpec]) -> None:
        """Transition a pending node to populated."""
        node = self._require_pending(node_id, "finalize")
        node.status = NodeStatus.POPULATED
        node.resolved_version = resolved_version
        node.failure = None
        logger.debug(f"Finalized {node}")

    def link_duplicate(self, node_id: int, against_id: int) -> None:
        """Record a pending duplicate whose range check waits on another node."""
        node = self._require_pending(node_id, "link duplicate")
        self.get(against_id)
        node.duplicate_of = against_id

    def mark_duplicate(self, node_id: int, accepted: bool, against_id: int) -> None:
        """Transition a pending node to duplicate-accepted or duplicate-rejected."""
        node = self._require_pending(node_id, "mark duplicate")
        against = self.get(against_id)
        node.status = NodeStatus.DUPLICATE_ACCEPTED if accepted else NodeStatus.DUPLICATE_REJECTED
        node.duplicate_of = against_id
        # Duplicates use whatever the primary selected
        node.resolved_version = against.resolved_version
        node.source_dir = against.source_dir
        logger.debug(f"Marked {node} against #{against_id}")

    def mark_failed(self, node_id: int, error: str) -> None:
        """Record a fetch failure on a pending node."""
        node = self._require_pending(node_id, "mark failed")
        node.failure = error

    def chain(self, node_id: int) -> List[DependencyNode]:
        """Nodes from the root down to node_id."""
        nodes = []
        current: Optional[int] = node_id
        while current is not None:
            node = self.get(current)
            nodes.append(node)
            current = node.parent_id
        nodes.reverse()
        return nodes

    def describe_chain(self, node_id: int) -> str:
        """Render the declaration chain, e.g. 'project -> A (>=1,0) -> B (==1,2)'."""
        parts = []
        for node in self.chain(node_id):
            if node.is_root:
                parts.append(node.name)
            else:
                parts.append(f"{node.name} ({node.requested_range})")
        return " -> ".join(parts)

    def nodes(self) -> Iterator[DependencyNode]:
        """Iterate nodes in id order."""
        return iter(list(self._nodes))

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id) -> bool:
        return isinstance(node_id, int) and 0 <= node_id < len(self._nodes)

    def _require_pending(self, node_id: int, action: str) -> DependencyNode:
        node = self.get(node_id)
        if node.status is not NodeStatus.PENDING:
            raise InvalidTransition(
                f"Cannot {action} node #{node_id} ({node.name}): status is {node.status.value}, expected pending"
            )
        return node
