"""Core data models for depmanager."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional

from .version_parser import VersionRange, VersionSpec


class NodeStatus(Enum):
    """Lifecycle state of a dependency node."""

    PENDING = "pending"
    POPULATED = "populated"
    DUPLICATE_ACCEPTED = "duplicate-accepted"
    DUPLICATE_REJECTED = "duplicate-rejected"

    @property
    def is_duplicate(self) -> bool:
        return self in (NodeStatus.DUPLICATE_ACCEPTED, NodeStatus.DUPLICATE_REJECTED)


@dataclass
class DependencyNode:
    """Represents one declaration of a dependency in the build tree.

    Several nodes may share a name; later ones are duplicates that point at
    the node they were resolved against through duplicate_of.
    """

    id: int
    name: str
    repository: str
    reference: str
    requested_range: VersionRange = field(default_factory=VersionRange.any)
    parent_id: Optional[int] = None
    child_ids: List[int] = field(default_factory=list)
    status: NodeStatus = NodeStatus.PENDING
    resolved_version: Optional[VersionSpec] = None
    duplicate_of: Optional[int] = None  # Primary node this duplicate was compared against
    source_dir: Optional[Path] = None  # Own checkout, or the primary's for accepted duplicates
    patch_command: Optional[str] = None  # Run inside the checkout after fetching
    failure: Optional[str] = None  # Error text if the fetch failed

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    @property
    def is_primary(self) -> bool:
        """True for the node that owns the fetch for its name."""
        return self.duplicate_of is None

    @property
    def full_name(self) -> str:
        """Return name@reference, plus the resolved version once known."""
        if self.resolved_version is not None:
            return f"{self.name}@{self.reference} ({self.resolved_version})"
        return f"{self.name}@{self.reference}"

    def add_child(self, child_id: int) -> None:
        """Append a child id, keeping declaration order."""
        if child_id not in self.child_ids:
            self.child_ids.append(child_id)

    def __str__(self) -> str:
        return f"#{self.id} {self.full_name} [{self.status.value}]"


@dataclass
class DeclaredDependency:
    """A dependency as written in a manifest, before it becomes a node."""

    name: str
    repository: str
    reference: str = ""
    version_range: Optional[str] = None  # Range expression, e.g. ">=1,2"
    patch_command: Optional[str] = None
    parent_name: Optional[str] = None  # Declare under this dependency instead of the manifest's owner


@dataclass
class Manifest:
    """The declarations found in one source tree."""

    name: Optional[str] = None
    version: Optional[VersionSpec] = None
    dependencies: List[DeclaredDependency] = field(default_factory=list)
    path: Optional[Path] = None
