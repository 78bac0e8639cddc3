"""Duplicate detection and version conflict policy."""

import logging
from collections import defaultdict
from enum import Enum
from typing import Dict, List, Optional, Tuple

from .exceptions import UnresolvedDependency, VersionConflict
from .models import NodeStatus
from .node_store import NodeStore
from .version_parser import VersionParser, VersionRange

logger = logging.getLogger(__name__)


class ResolutionPolicy(Enum):
    """What to do when a duplicate's range rejects the selected version."""

    STRICT = "strict"
    PERMISSIVE = "permissive"


class Declaration(Enum):
    """How a new declaration was classified against earlier ones."""

    FIRST = "first"  # First of its name; owns the fetch
    ACCEPTED = "accepted"
    REJECTED = "rejected"  # Only returned in permissive mode
    DEFERRED = "deferred"  # Primary still pending; check runs once it populates


class DuplicateResolver:
    """
    Classifies each declaration against earlier declarations of the same name.

    The first node created for a name is the primary: it is fetched and its
    version becomes the selection for every later duplicate. Duplicates never
    trigger a fetch; their ranges are checked against the primary's resolved
    version, immediately if it is known or once the primary populates.
    """

    def __init__(self, store: NodeStore, policy: ResolutionPolicy = ResolutionPolicy.STRICT):
        self.store = store
        self.policy = policy
        self._deferred: Dict[int, List[int]] = defaultdict(list)  # primary id -> waiting duplicate ids
        self._lenient: set = set()  # duplicate ids checked permissively regardless of policy

    def declare(
        self,
        name: str,
        repository: str,
        reference: str,
        version_range: Optional[VersionRange] = None,
        parent_id: Optional[int] = None,
        patch_command: Optional[str] = None,
        version_error: Optional[bool] = None
    ) -> Tuple[int, Declaration]:
        """
        Create the node for a declaration and classify it.

        Args:
            version_error: False checks this declaration permissively even
                under a strict policy; None follows the policy.

        Returns:
            Tuple of (node id, Declaration outcome)

        Raises:
            VersionConflict: In strict mode when the primary's resolved
                version does not satisfy the requested range
        """
        primary_id = self.primary_for(name)
        node_id = self.store.create_node(
            name, repository, reference, version_range, parent_id, patch_command
        )

        if primary_id is None:
            logger.debug(f"'{name}' first declared as #{node_id}")
            return node_id, Declaration.FIRST

        if version_error is False:
            self._lenient.add(node_id)

        primary = self.store.get(primary_id)
        if primary.failure is not None:
            self.store.link_duplicate(node_id, primary_id)
            self.store.mark_failed(node_id, primary.failure)
            raise UnresolvedDependency(
                name, self.store.describe_chain(node_id),
                self.store.describe_chain(primary_id), primary.failure
            )

        if primary.status is NodeStatus.POPULATED:
            return node_id, self._check(node_id, primary_id)

        self.store.link_duplicate(node_id, primary_id)
        self._deferred[primary_id].append(node_id)
        logger.debug(f"'{name}' #{node_id} deferred until #{primary_id} populates")
        return node_id, Declaration.DEFERRED

    def primary_for(self, name: str) -> Optional[int]:
        """Id of the first non-duplicate node declared with this name."""
        for node_id in self.store.lookup_by_name(name):
            if self.store.get(node_id).is_primary:
                return node_id
        return None

    def pending_duplicates(self, primary_id: int) -> List[int]:
        return list(self._deferred.get(primary_id, []))

    def notify_populated(self, primary_id: int) -> List[Declaration]:
        """Run the deferred range checks of a primary that just populated, in declaration order."""
        waiting = self._deferred.pop(primary_id, [])
        outcomes = []
        for index, node_id in enumerate(waiting):
            try:
                outcomes.append(self._check(node_id, primary_id))
            except VersionConflict:
                # Keep unchecked duplicates queued so the state stays inspectable
                remaining = waiting[index + 1:]
                if remaining:
                    self._deferred[primary_id] = remaining
                raise
        return outcomes

    def notify_failed(self, primary_id: int, error: Optional[BaseException] = None) -> None:
        """Fail the duplicates that were waiting on a primary whose fetch failed."""
        waiting = self._deferred.pop(primary_id, [])
        if not waiting:
            return

        primary_chain = self.store.describe_chain(primary_id)
        for node_id in waiting:
            self.store.mark_failed(node_id, f"'{self.store.get(primary_id).name}' never populated")

        first = waiting[0]
        raise UnresolvedDependency(
            self.store.get(first).name,
            self.store.describe_chain(first),
            primary_chain,
            str(error) if error else None
        )

    def _check(self, node_id: int, primary_id: int) -> Declaration:
        node = self.store.get(node_id)
        primary = self.store.get(primary_id)

        if VersionParser.satisfies(primary.resolved_version, node.requested_range):
            self.store.mark_duplicate(node_id, True, primary_id)
            logger.info(
                f"Duplicate '{node.name}' #{node_id} accepted: version {primary.resolved_version} "
                f"satisfies '{node.requested_range}'"
            )
            return Declaration.ACCEPTED

        self.store.mark_duplicate(node_id, False, primary_id)
        selected_chain = self.store.describe_chain(primary_id)
        requester_chain = self.store.describe_chain(node_id)

        if self.policy is ResolutionPolicy.STRICT and node_id not in self._lenient:
            raise VersionConflict(
                node.name, selected_chain, requester_chain,
                str(node.requested_range), str(primary.resolved_version)
            )

        logger.warning(
            f"Version mismatch for '{node.name}': using {primary.resolved_version} selected by "
            f"[{selected_chain}] although [{requester_chain}] requested '{node.requested_range}'"
        )
        return Declaration.REJECTED
