"""Cluster materialization: a primary plus every contact linked to it."""

import logging

from reconcile.application.errors import ConsistencyError
from reconcile.application.ports import StoreTransaction
from reconcile.domain import Contact

logger = logging.getLogger(__name__)

# A healthy cluster is a flat star and needs a single level.
MAX_LINK_DEPTH = 8


class ClusterMaterializer:
    """Walks links breadth-first from a primary, guarded by a visited set and a depth bound."""

    def __init__(self, store: StoreTransaction, *, max_depth: int = MAX_LINK_DEPTH) -> None:
        self._store = store
        self._max_depth = max_depth

    def materialize(self, primary_id: int) -> list[Contact]:
        """Return the primary followed by its secondaries in (created_at, id) order."""
        root = self._store.get_by_id(primary_id)
        if root is None:
            raise ConsistencyError(f"Primary contact {primary_id} does not exist.")
        if not root.is_primary:
            raise ConsistencyError(
                f"Contact {primary_id} is linked to {root.linked_id} and cannot anchor a cluster."
            )

        visited = {root.id}
        members: list[Contact] = []
        frontier = [root.id]
        depth = 0
        while frontier:
            depth += 1
            next_frontier = []
            for contact_id in frontier:
                for child in self._store.list_linked_to(contact_id):
                    if child.id in visited:
                        continue
                    visited.add(child.id)
                    members.append(child)
                    next_frontier.append(child.id)
            if next_frontier and depth > self._max_depth:
                raise ConsistencyError(
                    f"Cluster of {primary_id} is deeper than {self._max_depth} links."
                )
            if next_frontier and depth > 1:
                logger.warning(
                    "Cluster %s has secondaries linked to secondaries at depth %d",
                    primary_id,
                    depth,
                )
            frontier = next_frontier

        members.sort(key=lambda c: c.sort_key)
        return [root, *members]
