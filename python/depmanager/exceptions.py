"""Error taxonomy for dependency resolution."""

from typing import Optional


class DependencyManagerError(Exception):
    """Base class for all errors raised by depmanager."""


class MalformedVersion(DependencyManagerError, ValueError):
    """A version or range text could not be parsed."""

    def __init__(self, text: str, reason: str = "non-numeric segment"):
        self.text = text
        self.reason = reason
        super().__init__(f"Malformed version '{text}': {reason}")


class VersionConflict(DependencyManagerError):
    """A duplicate declaration requested a range the selected version does not satisfy."""

    def __init__(self, name: str, selected_chain: str, requester_chain: str,
                 requested_range: str, selected_version: Optional[str]):
        self.name = name
        self.selected_chain = selected_chain
        self.requester_chain = requester_chain
        self.requested_range = requested_range
        self.selected_version = selected_version
        super().__init__(
            f"Version conflict for '{name}': version {selected_version} selected by "
            f"[{selected_chain}] does not satisfy range '{requested_range}' "
            f"requested by [{requester_chain}]"
        )


class UnresolvedDependency(DependencyManagerError):
    """A duplicate could not be checked because the node it waits on never populated."""

    def __init__(self, name: str, requester_chain: str, primary_chain: str, cause: Optional[str] = None):
        self.name = name
        self.requester_chain = requester_chain
        self.primary_chain = primary_chain
        self.cause = cause
        message = (
            f"Unresolved dependency '{name}': [{requester_chain}] waits on "
            f"[{primary_chain}] which never populated"
        )
        if cause:
            message += f" ({cause})"
        super().__init__(message)


class FetchError(DependencyManagerError):
    """Raised by source fetchers when a checkout or download fails."""


class FetchFailed(DependencyManagerError):
    """The external fetch primitive failed for a dependency."""

    def __init__(self, name: str, reference: str, error: BaseException, chain: Optional[str] = None):
        self.name = name
        self.reference = reference
        self.error = error
        self.chain = chain
        where = f" (requested by [{chain}])" if chain else ""
        super().__init__(f"Failed to fetch '{name}' at '{reference}'{where}: {error}")


class InvalidTransition(DependencyManagerError):
    """Internal invariant violation in the node store."""


class NodeNotFound(DependencyManagerError, KeyError):
    """No node exists with the given id."""

    def __init__(self, node_id: int):
        self.node_id = node_id
        super().__init__(f"No dependency node with id {node_id}")

    def __str__(self) -> str:
        return self.args[0]


class ManifestError(DependencyManagerError):
    """A dependency manifest could not be read."""


class GraphRenderError(DependencyManagerError):
    """Graphviz is missing or failed to render the graph."""
