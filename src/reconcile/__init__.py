"""
Identity reconciliation core: clean-architecture layout.

- domain: entities (Contact, LinkPrecedence). No outer dependencies.
- application: use cases (ContactService), ports (ContactStore), DTOs, errors.
- infrastructure: adapters (InMemoryContactStore, Neo4jContactStore).
"""

from reconcile.application import (
    ClusterMaterializer,
    ConsistencyError,
    ConsolidatedContact,
    ContactService,
    ContactStore,
    IdentifyRequest,
    InvalidObservation,
    ReconciliationError,
    TransientStoreError,
    WriteConflict,
    build_consolidated_view,
)
from reconcile.domain import Contact, LinkPrecedence
from reconcile.infrastructure import InMemoryContactStore, Neo4jContactStore

__all__ = [
    "ClusterMaterializer",
    "ConsistencyError",
    "ConsolidatedContact",
    "Contact",
    "ContactService",
    "ContactStore",
    "IdentifyRequest",
    "InMemoryContactStore",
    "InvalidObservation",
    "LinkPrecedence",
    "Neo4jContactStore",
    "ReconciliationError",
    "TransientStoreError",
    "WriteConflict",
    "build_consolidated_view",
]
