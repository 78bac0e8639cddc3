"""Stats command for showing resolution statistics."""

import logging

from ..models import NodeStatus

logger = logging.getLogger(__name__)


def show_stats(manager) -> None:
    """Print node statistics of a finished resolution.

    Args:
        manager: DependencyManager whose resolve pass has completed
    """
    store = manager.store
    counts = manager.status_counts()
    declarations = sum(counts.values())

    # Unique names among non-root nodes
    names = {node.name for node in store.nodes() if not node.is_root}

    print("Resolution Statistics:")
    print(f"  Declarations: {declarations}")
    print(f"  Unique Dependencies: {len(names)}")
    for status in NodeStatus:
        label = status.value.replace('-', ' ').title()
        print(f"  {label}: {counts.get(status, 0)}")
    print(f"  Fetches: {manager.guard.fetch_count}")
