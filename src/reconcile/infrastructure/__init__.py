"""Infrastructure layer: concrete implementations of application ports."""

from reconcile.infrastructure.memory_repository import InMemoryContactStore
from reconcile.infrastructure.persistence.neo4j_repository import (
    Neo4jContactStore,
    ensure_contact_schema,
)
from reconcile.infrastructure.phone import lock_keys, normalize_phone

__all__ = [
    "InMemoryContactStore",
    "Neo4jContactStore",
    "ensure_contact_schema",
    "lock_keys",
    "normalize_phone",
]
